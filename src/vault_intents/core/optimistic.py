"""
Optimistic Validation

The optimistic flow splits authorization from execution. A first transaction
pins a window on the smart account: the hash of the operations to run, the
last slot they may run in, and who pays. A later transaction runs the
operations against that window, and a final step clears it and settles fees.

The pinned hash covers the operations only. The fee is signed separately in
the validation message:

    LE64(max_slot) ++ target_hash ++ LE64(fee) ++ presence ++ [mint] ++ fee_payer
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .accounts import Pubkey
from .config import EngineConfig
from .errors import (
    EncodingError,
    OptimisticTransactionAlreadyExecuted,
    OptimisticTransactionNotExecuted,
    OptimisticValidationExpired,
    TransactionHashMismatch,
)
from .intent import Intent, IntentEncoder, u64_le


logger = logging.getLogger(__name__)


def optimistic_target_hash(intent: Intent, vault: Pubkey, config: Optional[EngineConfig] = None) -> bytes:
    """Hash of the intent's operations with no fee section and the vault left as the steps declare."""
    encoder = IntentEncoder(vault, config, vault_writable=None)
    return encoder.encode(replace(intent, fee_amount=None, fee_mint=None)).digest


def optimistic_message(max_slot: int, target_hash: bytes, fee_amount: int,
                       fee_mint: Optional[Pubkey], fee_payer: Pubkey) -> bytes:
    if len(target_hash) != 32:
        raise EncodingError("Target hash must be 32 bytes")
    return b"".join([
        u64_le(max_slot, "max slot"),
        bytes(target_hash),
        u64_le(fee_amount, "fee amount"),
        b"\x01" + fee_mint.raw if fee_mint is not None else b"\x00",
        fee_payer.raw,
    ])


@dataclass
class OptimisticValidationWindow:
    """
    Local model of the window pinned on the smart account.

    Executable once, at or before max_slot, by operations hashing to
    target_hash.
    """
    target_hash: bytes
    max_slot: int
    fee_payer: Pubkey
    fee_amount: int = 0
    fee_mint: Optional[Pubkey] = None
    is_executed: bool = False
    is_cleared: bool = False

    @classmethod
    def for_intent(cls, intent: Intent, vault: Pubkey, max_slot: int, fee_payer: Pubkey,
                   config: Optional[EngineConfig] = None) -> 'OptimisticValidationWindow':
        return cls(
            target_hash=optimistic_target_hash(intent, vault, config),
            max_slot=max_slot,
            fee_payer=fee_payer,
            fee_amount=intent.fee_amount or 0,
            fee_mint=intent.fee_mint,
        )

    def message(self) -> bytes:
        """The bytes the passkey signs to open this window."""
        return optimistic_message(self.max_slot, self.target_hash, self.fee_amount, self.fee_mint, self.fee_payer)

    def is_expired(self, current_slot: int) -> bool:
        return current_slot > self.max_slot

    def check_executable(self, current_slot: int, package_hash: bytes):
        """Reject an execution the engine would reject, before building it."""
        if self.is_expired(current_slot):
            raise OptimisticValidationExpired(
                f"Window closed at slot {self.max_slot}, current slot is {current_slot}"
            )
        if self.is_executed or self.is_cleared:
            raise OptimisticTransactionAlreadyExecuted("Window was already consumed")
        if package_hash != self.target_hash:
            raise TransactionHashMismatch(
                f"Operations hash to 0x{package_hash.hex()}, window expects 0x{self.target_hash.hex()}"
            )

    def mark_executed(self):
        if self.is_executed:
            raise OptimisticTransactionAlreadyExecuted("Window was already consumed")
        self.is_executed = True
        logger.info("Optimistic window 0x%s executed", self.target_hash.hex()[:16])

    def clear(self):
        if not self.is_executed:
            raise OptimisticTransactionNotExecuted("Window cannot be cleared before its execution")
        self.is_cleared = True
        logger.info("Optimistic window 0x%s cleared", self.target_hash.hex()[:16])
