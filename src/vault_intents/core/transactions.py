"""
Versioned Transaction and Instruction Model

This implements the ledger's v0 transaction structure where:
- Transactions contain multiple instructions that execute atomically
- All account access is declared upfront in a single ordered key list
- Instructions reference accounts by index, not by full address
- Address lookup tables let a message reference addresses by a one-byte
  index into an on-chain table, shrinking the serialized size

Based on: https://solana.com/docs/core/transactions
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ecdsa import Ed25519, SigningKey

from .accounts import AccountMeta, Pubkey, b58decode, b58encode


logger = logging.getLogger(__name__)

PACKET_DATA_SIZE = 1232          # Largest transaction the network accepts
SIGNATURE_LENGTH = 64
MESSAGE_VERSION_0_PREFIX = 0x80
LAMPORTS_PER_SIGNATURE = 5000
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
U64_MAX = 2 ** 64 - 1

LOOKUP_TABLE_META_SIZE = 56


def encode_length(length: int) -> bytes:
    """Compact-u16 ("shortvec") length prefix used throughout the wire format."""
    if not 0 <= length <= 0xFFFF:
        raise ValueError(f"Length {length} does not fit a compact-u16")
    out = bytearray()
    while True:
        elem = length & 0x7F
        length >>= 7
        if length == 0:
            out.append(elem)
            return bytes(out)
        out.append(elem | 0x80)


@dataclass
class Instruction:
    """
    High-level instruction before compilation to indices.

    This is the developer-friendly format for building transactions, and the
    "operation step" the intent engine encodes: a target program, ordered
    account references and an opaque payload.
    """
    program_id: Pubkey             # Program to invoke
    accounts: List[AccountMeta]    # Accounts with access metadata
    data: bytes                    # Instruction data

    def __str__(self) -> str:
        return f"Instruction({str(self.program_id)[:8]}..., {len(self.accounts)} accounts, {len(self.data)} bytes)"


@dataclass
class MessageHeader:
    """
    Transaction message header with account access metadata.

    This tells the runtime how many accounts need to sign and
    which accounts are read-only vs writable.
    """
    num_required_signatures: int         # Number of signatures required
    num_readonly_signed_accounts: int    # Read-only accounts that must sign
    num_readonly_unsigned_accounts: int  # Read-only accounts (no signature)

    def serialize(self) -> bytes:
        return bytes([
            self.num_required_signatures,
            self.num_readonly_signed_accounts,
            self.num_readonly_unsigned_accounts,
        ])


@dataclass
class CompiledInstruction:
    """
    Instruction compiled to reference accounts by index.

    Indexes point first into the static key list, then into the writable
    lookup-table addresses, then into the readonly ones.
    """
    program_id_index: int
    accounts: List[int]
    data: bytes

    def serialize(self) -> bytes:
        return b"".join([
            bytes([self.program_id_index]),
            encode_length(len(self.accounts)),
            bytes(self.accounts),
            encode_length(len(self.data)),
            self.data,
        ])

    def __str__(self) -> str:
        return f"Instruction(program_id_index={self.program_id_index}, accounts={self.accounts}, data_len={len(self.data)})"


@dataclass
class AddressLookupTableAccount:
    """
    On-chain address lookup table state.

    Addresses appended by an extension are only usable once the ledger has
    moved past the slot of that extension.
    """
    key: Pubkey
    addresses: List[Pubkey]
    deactivation_slot: int = U64_MAX
    last_extended_slot: int = 0
    last_extended_slot_start_index: int = 0
    authority: Optional[Pubkey] = None

    @property
    def is_active(self) -> bool:
        return self.deactivation_slot == U64_MAX

    def is_usable(self, current_slot: int) -> bool:
        """True once every address in the table can be referenced."""
        return self.is_active and current_slot > self.last_extended_slot

    @classmethod
    def deserialize(cls, key: Pubkey, data: bytes) -> 'AddressLookupTableAccount':
        """Decode the lookup table program's account layout."""
        if len(data) < LOOKUP_TABLE_META_SIZE:
            raise ValueError(f"Lookup table data too short: {len(data)} bytes")

        type_index, deactivation_slot, last_extended_slot, start_index, has_authority = (
            struct.unpack_from("<IQQBB", data, 0)
        )
        if type_index != 1:
            raise ValueError(f"Account is not a lookup table (type {type_index})")

        authority = Pubkey(data[22:54]) if has_authority else None

        body = data[LOOKUP_TABLE_META_SIZE:]
        if len(body) % 32:
            raise ValueError("Lookup table address area is not a multiple of 32 bytes")
        addresses = [Pubkey(body[i:i + 32]) for i in range(0, len(body), 32)]

        return cls(
            key=key,
            addresses=addresses,
            deactivation_slot=deactivation_slot,
            last_extended_slot=last_extended_slot,
            last_extended_slot_start_index=start_index,
            authority=authority,
        )

    def serialize(self) -> bytes:
        meta = struct.pack(
            "<IQQBB", 1, self.deactivation_slot, self.last_extended_slot,
            self.last_extended_slot_start_index, 1 if self.authority else 0,
        )
        meta += self.authority.raw if self.authority else bytes(32)
        meta += bytes(LOOKUP_TABLE_META_SIZE - len(meta))
        return meta + b"".join(address.raw for address in self.addresses)


@dataclass
class MessageAddressTableLookup:
    """Indexes of the accounts a message loads from one lookup table."""
    account_key: Pubkey
    writable_indexes: List[int]
    readonly_indexes: List[int]

    def serialize(self) -> bytes:
        return b"".join([
            self.account_key.raw,
            encode_length(len(self.writable_indexes)),
            bytes(self.writable_indexes),
            encode_length(len(self.readonly_indexes)),
            bytes(self.readonly_indexes),
        ])


@dataclass
class MessageV0:
    """
    The versioned (v0) transaction message.

    This contains everything needed to execute the transaction, with the
    account list split between static keys and lookup-table references.
    """
    header: MessageHeader
    account_keys: List[Pubkey]                 # Static account keys
    recent_blockhash: str                      # Base58 blockhash for replay protection
    instructions: List[CompiledInstruction]
    address_table_lookups: List[MessageAddressTableLookup] = field(default_factory=list)

    def serialize(self) -> bytes:
        """Serialize message for signing and transmission."""
        blockhash = b58decode(self.recent_blockhash)
        if len(blockhash) != 32:
            raise ValueError(f"Recent blockhash must decode to 32 bytes, got {len(blockhash)}")

        parts = [bytes([MESSAGE_VERSION_0_PREFIX]), self.header.serialize()]

        parts.append(encode_length(len(self.account_keys)))
        parts.extend(key.raw for key in self.account_keys)

        parts.append(blockhash)

        parts.append(encode_length(len(self.instructions)))
        parts.extend(instruction.serialize() for instruction in self.instructions)

        parts.append(encode_length(len(self.address_table_lookups)))
        parts.extend(lookup.serialize() for lookup in self.address_table_lookups)

        return b"".join(parts)

    @property
    def num_lookup_accounts(self) -> int:
        return sum(
            len(lookup.writable_indexes) + len(lookup.readonly_indexes)
            for lookup in self.address_table_lookups
        )

    def signer_keys(self) -> List[Pubkey]:
        return self.account_keys[:self.header.num_required_signatures]


@dataclass
class _KeyMeta:
    is_signer: bool = False
    is_writable: bool = False
    is_invoked: bool = False


class TransactionBuilder:
    """
    Builder for constructing versioned transactions.

    This handles the logic of ordering accounts correctly, moving
    eligible accounts into lookup tables and compiling instructions to
    their binary format.
    """

    def __init__(self, fee_payer: Pubkey, recent_blockhash: str):
        """
        Initialize transaction builder.

        Args:
            fee_payer: Account that pays transaction fees (must be signer)
            recent_blockhash: Recent blockhash for replay protection
        """
        self.fee_payer = fee_payer
        self.recent_blockhash = recent_blockhash
        self.instructions: List[Instruction] = []

    def add_instruction(self, instruction: Instruction) -> 'TransactionBuilder':
        """Add an instruction to the transaction (fluent interface)."""
        self.instructions.append(instruction)
        return self

    def add_instructions(self, instructions: Sequence[Instruction]) -> 'TransactionBuilder':
        """Add multiple instructions at once."""
        self.instructions.extend(instructions)
        return self

    def _collect_keys(self) -> Dict[Pubkey, _KeyMeta]:
        # Fee payer is always first, writable and a signer
        key_metas: Dict[Pubkey, _KeyMeta] = {self.fee_payer: _KeyMeta(True, True)}

        for instruction in self.instructions:
            key_metas.setdefault(instruction.program_id, _KeyMeta()).is_invoked = True
            for account in instruction.accounts:
                meta = key_metas.setdefault(account.pubkey, _KeyMeta())
                meta.is_signer = meta.is_signer or account.is_signer
                meta.is_writable = meta.is_writable or account.is_writable

        return key_metas

    def build(self, lookup_tables: Sequence[AddressLookupTableAccount] = ()) -> MessageV0:
        """
        Build the final v0 message.

        Accounts are ordered: writable signers (fee payer first), readonly
        signers, writable non-signers, readonly non-signers. Non-signer,
        non-program accounts found in a lookup table are loaded from it
        instead of being listed statically.
        """
        key_metas = self._collect_keys()

        lookups: List[MessageAddressTableLookup] = []
        lookup_writable: List[Pubkey] = []
        lookup_readonly: List[Pubkey] = []

        for table in lookup_tables:
            writable_indexes, writable_keys = self._drain(
                key_metas, table, lambda m: not m.is_signer and not m.is_invoked and m.is_writable
            )
            readonly_indexes, readonly_keys = self._drain(
                key_metas, table, lambda m: not m.is_signer and not m.is_invoked and not m.is_writable
            )
            if writable_indexes or readonly_indexes:
                lookups.append(MessageAddressTableLookup(table.key, writable_indexes, readonly_indexes))
                lookup_writable.extend(writable_keys)
                lookup_readonly.extend(readonly_keys)

        entries = list(key_metas.items())
        writable_signers = [k for k, m in entries if m.is_signer and m.is_writable]
        readonly_signers = [k for k, m in entries if m.is_signer and not m.is_writable]
        writable_non_signers = [k for k, m in entries if not m.is_signer and m.is_writable]
        readonly_non_signers = [k for k, m in entries if not m.is_signer and not m.is_writable]

        account_keys = writable_signers + readonly_signers + writable_non_signers + readonly_non_signers
        if len(account_keys) + len(lookup_writable) + len(lookup_readonly) > 256:
            raise ValueError("Transaction references more than 256 accounts")

        header = MessageHeader(
            num_required_signatures=len(writable_signers) + len(readonly_signers),
            num_readonly_signed_accounts=len(readonly_signers),
            num_readonly_unsigned_accounts=len(readonly_non_signers),
        )

        # Create account index mapping
        account_index = {
            key: i for i, key in enumerate(account_keys + lookup_writable + lookup_readonly)
        }

        compiled_instructions = []
        for instruction in self.instructions:
            try:
                compiled_instructions.append(CompiledInstruction(
                    program_id_index=account_index[instruction.program_id],
                    accounts=[account_index[acc.pubkey] for acc in instruction.accounts],
                    data=instruction.data,
                ))
            except KeyError as e:
                raise ValueError(f"Account not found in transaction: {e}")

        message = MessageV0(
            header=header,
            account_keys=account_keys,
            recent_blockhash=self.recent_blockhash,
            instructions=compiled_instructions,
            address_table_lookups=lookups,
        )
        logger.debug(
            "Compiled message: %d static keys, %d lookup keys, %d instructions",
            len(account_keys), message.num_lookup_accounts, len(compiled_instructions),
        )
        return message

    @staticmethod
    def _drain(key_metas, table, keep) -> Tuple[List[int], List[Pubkey]]:
        indexes: List[int] = []
        drained: List[Pubkey] = []
        positions = {address: i for i, address in reversed(list(enumerate(table.addresses)))}

        for key, meta in list(key_metas.items()):
            if not keep(meta):
                continue
            index = positions.get(key)
            if index is None:
                continue
            if index >= 256:
                raise ValueError("Max lookup table index exceeded")
            indexes.append(index)
            drained.append(key)
            del key_metas[key]

        return indexes, drained


@dataclass
class VersionedTransaction:
    """
    Complete transaction with signatures and message.

    Signature slots follow the order of the message's signer keys; unsigned
    slots are zero-filled until a signer provides them.
    """
    signatures: List[bytes]
    message: MessageV0

    @classmethod
    def unsigned(cls, message: MessageV0) -> 'VersionedTransaction':
        return cls(
            signatures=[bytes(SIGNATURE_LENGTH)] * message.header.num_required_signatures,
            message=message,
        )

    def sign(self, signers: Sequence[SigningKey]) -> 'VersionedTransaction':
        """Fill in the signature slot of each provided signer."""
        message_data = self.message.serialize()
        signer_keys = self.message.signer_keys()

        for signer in signers:
            pubkey = keypair_pubkey(signer)
            try:
                slot = signer_keys.index(pubkey)
            except ValueError:
                raise ValueError(f"{pubkey} is not a required signer of this transaction")
            try:
                self.signatures[slot] = signer.sign(message_data)
            except Exception as e:
                raise ValueError(f"Failed to sign transaction: {e}")

        return self

    def serialize(self) -> bytes:
        parts = [encode_length(len(self.signatures))]
        parts.extend(self.signatures)
        parts.append(self.message.serialize())
        return b"".join(parts)

    @property
    def size(self) -> int:
        return len(self.serialize())

    def signature(self) -> str:
        """Transaction id: the fee payer's signature in base58."""
        return b58encode(self.signatures[0])

    def is_fully_signed(self) -> bool:
        return all(sig != bytes(SIGNATURE_LENGTH) for sig in self.signatures)

    def calculate_fee(self, compute_units: int = 0, micro_lamports: int = 0) -> int:
        return estimate_fee(len(self.signatures), compute_units, micro_lamports)


def estimate_fee(num_signatures: int, compute_units: int = 0, micro_lamports: int = 0) -> int:
    """
    Calculate transaction fee in lamports.

    Fee structure:
    - Base fee: 5,000 lamports per signature
    - Priority fee: compute units times the unit price in micro-lamports
    """
    base_fee = num_signatures * LAMPORTS_PER_SIGNATURE
    priority_fee = compute_units * micro_lamports // MICRO_LAMPORTS_PER_LAMPORT
    return base_fee + priority_fee


def keypair_pubkey(signing_key: SigningKey) -> Pubkey:
    return Pubkey(signing_key.verifying_key.to_string())


def generate_keypair() -> Tuple[SigningKey, Pubkey]:
    """
    Generate a new Ed25519 keypair.

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = SigningKey.generate(curve=Ed25519)
    return private_key, keypair_pubkey(private_key)


def keypair_from_seed(seed: bytes) -> Tuple[SigningKey, Pubkey]:
    """Rebuild an Ed25519 keypair from its 32-byte secret seed."""
    private_key = SigningKey.from_string(seed, curve=Ed25519)
    return private_key, keypair_pubkey(private_key)


def sign_transaction(message: MessageV0, signers: Sequence[SigningKey]) -> VersionedTransaction:
    """
    Sign a transaction message with the provided private keys.

    Args:
        message: Transaction message to sign
        signers: Private keys for the required signers

    Returns:
        Signed transaction ready for submission
    """
    return VersionedTransaction.unsigned(message).sign(signers)
