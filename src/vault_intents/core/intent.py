"""
Canonical Intent Encoding

An intent is what the passkey owner actually approves: a nonce, the fee the
smart account pays, and the operation steps the vault will run. The
authorization engine rebuilds these exact bytes from the transaction it
receives and checks the signature against their hash, so the layout is a
frozen wire contract:

    LE64(nonce) ++ LE64(fee) ++ presence ++ [fee mint]
    ++ preamble steps:  data ++ program_id ++ (signer, writable, address)*
    ++ operation steps: data ++ program_id ++ (signer, writable, program_id)
                        ++ (signer, writable, address)*

Preamble steps (compute budget directives) keep their local flags and have
no program pseudo-account. Operation steps use merged verdicts.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from Crypto.Hash import keccak

from .accounts import Pubkey
from .config import EngineConfig
from .errors import EncodingError
from .permissions import PermissionResolver, Resolution
from .transactions import Instruction


logger = logging.getLogger(__name__)

U64_MAX = 2 ** 64 - 1


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def u64_le(value: int, what: str = "value") -> bytes:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= U64_MAX:
        raise EncodingError(f"{what} must be an unsigned 64-bit integer, got {value!r}")
    return value.to_bytes(8, "little")


@dataclass
class Intent:
    """
    A set of operations the smart account owner wants to authorize.

    `fee_amount=None` drops the fee section from the encoding entirely; the
    optimistic flow signs the fee separately.
    """
    nonce: int
    operations: List[Instruction]
    fee_amount: Optional[int] = 0
    fee_mint: Optional[Pubkey] = None
    preamble: List[Instruction] = field(default_factory=list)


@dataclass(frozen=True)
class EncodedIntent:
    data: bytes
    resolution: Resolution

    @property
    def digest(self) -> bytes:
        return keccak256(self.data)

    def hex(self) -> str:
        return self.data.hex()

    def __len__(self) -> int:
        return len(self.data)


class IntentEncoder:
    """
    Serializes intents into the canonical byte contract.

    Args:
        vault: vault address of the smart account executing the intent
        config: engine configuration (payload size limit)
        vault_writable: writable verdict forced onto the vault, or None to
            keep the verdict the steps declare
    """

    def __init__(self, vault: Pubkey, config: Optional[EngineConfig] = None,
                 vault_writable: Optional[bool] = True):
        self.vault = vault
        self.config = config or EngineConfig()
        self.resolver = PermissionResolver(vault, vault_writable)

    def encode(self, intent: Intent) -> EncodedIntent:
        if not intent.operations:
            raise EncodingError("An intent needs at least one operation step")

        for step in [*intent.preamble, *intent.operations]:
            if len(step.data) > self.config.max_payload_size:
                raise EncodingError(
                    f"Step payload of {len(step.data)} bytes exceeds {self.config.max_payload_size}"
                )

        resolution = self.resolver.resolve(intent.operations)

        parts = [u64_le(intent.nonce, "nonce")]

        if intent.fee_amount is not None:
            parts.append(u64_le(intent.fee_amount, "fee amount"))
            if intent.fee_mint is None:
                parts.append(b"\x00")
            elif isinstance(intent.fee_mint, Pubkey):
                parts.append(b"\x01" + intent.fee_mint.raw)
            else:
                raise EncodingError(f"Fee mint is not a 32-byte address: {intent.fee_mint!r}")

        for step in intent.preamble:
            if not isinstance(step.program_id, Pubkey):
                raise EncodingError(f"Preamble program id is not a 32-byte address: {step.program_id!r}")
            parts.append(bytes(step.data))
            parts.append(step.program_id.raw)
            for account in step.accounts:
                if not isinstance(account.pubkey, Pubkey):
                    raise EncodingError(f"Preamble account is not a 32-byte address: {account.pubkey!r}")
                parts.append(_flags(account.is_signer, account.is_writable) + account.pubkey.raw)

        for step in resolution.steps:
            parts.append(step.data)
            parts.append(step.program_id.raw)
            for account in (step.program, *step.accounts):
                parts.append(_flags(account.is_signer, account.is_writable) + account.pubkey.raw)

        encoded = EncodedIntent(data=b"".join(parts), resolution=resolution)
        logger.debug(
            "Encoded intent nonce=%d: %d preamble + %d operation steps, %d bytes",
            intent.nonce, len(intent.preamble), len(intent.operations), len(encoded),
        )
        return encoded


def _flags(is_signer: bool, is_writable: bool) -> bytes:
    return bytes([1 if is_signer else 0, 1 if is_writable else 0])
