"""
System Program Instructions

Only the instructions the engine builds itself: lamport transfers for test
fixtures and fee payments.

Based on: https://docs.solanalabs.com/runtime/programs#system-program
"""

import struct

from ..core.accounts import SYSTEM_PROGRAM_ID, AccountMeta, Pubkey
from ..core.transactions import Instruction


TRANSFER = 2


class SystemProgram:
    program_id = SYSTEM_PROGRAM_ID

    @staticmethod
    def transfer(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int) -> Instruction:
        """Move lamports between two system-owned accounts."""
        if not 0 <= lamports < 2 ** 64:
            raise ValueError(f"Lamports out of range: {lamports}")
        return Instruction(
            program_id=SYSTEM_PROGRAM_ID,
            accounts=[
                AccountMeta(from_pubkey, is_signer=True, is_writable=True),
                AccountMeta(to_pubkey, is_signer=False, is_writable=True),
            ],
            data=struct.pack("<IQ", TRANSFER, lamports),
        )
