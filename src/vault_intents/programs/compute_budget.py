"""
Compute Budget Instructions

Compute budget directives sit at the top of a transaction and never pass
through the vault; the intent encoding carries them as preamble steps.
"""

import struct

from ..core.accounts import COMPUTE_BUDGET_PROGRAM_ID
from ..core.transactions import Instruction


SET_COMPUTE_UNIT_LIMIT = 2
SET_COMPUTE_UNIT_PRICE = 3
MAX_COMPUTE_UNIT_LIMIT = 1_400_000


class ComputeBudgetProgram:
    program_id = COMPUTE_BUDGET_PROGRAM_ID

    @staticmethod
    def set_compute_unit_limit(units: int) -> Instruction:
        if not 0 < units <= MAX_COMPUTE_UNIT_LIMIT:
            raise ValueError(f"Compute unit limit must be in 1..{MAX_COMPUTE_UNIT_LIMIT}, got {units}")
        return Instruction(COMPUTE_BUDGET_PROGRAM_ID, [], struct.pack("<BI", SET_COMPUTE_UNIT_LIMIT, units))

    @staticmethod
    def set_compute_unit_price(micro_lamports: int) -> Instruction:
        """Priority fee per compute unit, in micro-lamports."""
        if not 0 <= micro_lamports < 2 ** 64:
            raise ValueError(f"Compute unit price out of range: {micro_lamports}")
        return Instruction(COMPUTE_BUDGET_PROGRAM_ID, [], struct.pack("<BQ", SET_COMPUTE_UNIT_PRICE, micro_lamports))
