"""
Batch Packing

The vault program receives operation steps in deconstructed form: each step
contributes its payload and an account count to the instruction arguments,
and its accounts (target program first) to one flat remaining-accounts list.
The vault walks that list with running offsets to rebuild each step.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from .accounts import AccountMeta
from .errors import EncodingError
from .permissions import ResolvedAccount, ResolvedStep


logger = logging.getLogger(__name__)

MAX_ACCOUNTS_PER_STEP = 255


@dataclass(frozen=True)
class DeconstructedOperation:
    ix_data: bytes
    account_count: int

    def serialize(self) -> bytes:
        """Borsh: Vec<u8> ix_data, u8 account_count."""
        return len(self.ix_data).to_bytes(4, "little") + self.ix_data + bytes([self.account_count])


@dataclass(frozen=True)
class ExecutionPackage:
    operations: List[DeconstructedOperation]
    remaining_accounts: List[ResolvedAccount]

    def windows(self) -> List[List[ResolvedAccount]]:
        """Per-step account windows, recovered the way the vault does it."""
        windows = []
        offset = 0
        for operation in self.operations:
            windows.append(self.remaining_accounts[offset:offset + operation.account_count])
            offset += operation.account_count
        return windows

    def encode_args(self) -> bytes:
        """Borsh encoding of BatchExecuteArgs."""
        return len(self.operations).to_bytes(4, "little") + b"".join(
            operation.serialize() for operation in self.operations
        )

    def account_metas(self) -> List[AccountMeta]:
        return [account.to_meta() for account in self.remaining_accounts]


def pack(steps: Sequence[ResolvedStep]) -> ExecutionPackage:
    """
    Deconstruct resolved steps for the vault's batch instruction.

    Raises:
        EncodingError: if a step references more accounts than a u8 can count
        RuntimeError: if the account counts and the flat list disagree
    """
    operations = []
    remaining: List[ResolvedAccount] = []

    for index, step in enumerate(steps):
        account_count = 1 + len(step.accounts)
        if account_count > MAX_ACCOUNTS_PER_STEP:
            raise EncodingError(f"Step {index} references {account_count} accounts, more than {MAX_ACCOUNTS_PER_STEP}")
        operations.append(DeconstructedOperation(ix_data=step.data, account_count=account_count))
        remaining.append(step.program)
        remaining.extend(step.accounts)

    if sum(op.account_count for op in operations) != len(remaining):
        raise RuntimeError("Account counts do not match the remaining accounts list")

    logger.debug("Packed %d steps with %d remaining accounts", len(operations), len(remaining))
    return ExecutionPackage(operations=operations, remaining_accounts=remaining)
