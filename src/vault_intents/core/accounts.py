"""
Account Addressing for Smart-Account Vaults

This module holds everything the engine needs to talk about addresses:
- Pubkey: a 32-byte ledger address with native equality and hashing
- AccountMeta: how an instruction wants to access an account
- Program Derived Addresses (PDA) derived the same way the ledger does it
- SmartAccountAddresses: the fixed set of PDAs owned by one smart account

Address derivation is a frozen contract with the on-chain programs: the seed
strings and program ids below must match theirs byte for byte.

Based on: https://solana.com/docs/core/pda
"""

import hashlib
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ecdsa.eddsa import curve_ed25519
from ecdsa.ellipticcurve import PointEdwards
from ecdsa.errors import MalformedPointError


BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(BASE58_ALPHABET)}

PUBKEY_LENGTH = 32
MAX_SEED_LENGTH = 32
MAX_SEEDS = 16
PDA_MARKER = b"ProgramDerivedAddress"

# Seeds shared with the smart-account and vault programs
SMART_ACCOUNT_SEED = b"smart_account"
SMART_ACCOUNT_VAULT_SEED = b"smart_account_vault"
VAULT_STATE_SEED = b"vault_state"
VAULT_CONFIG_SEED = b"vault_config"
CONFIG_SEED = b"config"
WEB_AUTHN_TABLE_SEED = b"webauthn_table"


def b58encode(data: bytes) -> str:
    """Base58 encoder (no checksum) used for ledger addresses."""
    if not data:
        return ""

    # Leading zero bytes are encoded as '1'
    zeros = len(data) - len(data.lstrip(b"\0"))

    value = int.from_bytes(data, "big")
    encoded = ""
    while value:
        value, remainder = divmod(value, 58)
        encoded = BASE58_ALPHABET[remainder] + encoded

    return "1" * zeros + encoded


def b58decode(text: str) -> bytes:
    """Decode a base58 string, rejecting characters outside the alphabet."""
    value = 0
    for char in text:
        try:
            value = value * 58 + _BASE58_INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid base58 character {char!r}") from None

    zeros = len(text) - len(text.lstrip("1"))
    body = value.to_bytes((value.bit_length() + 7) // 8, "big") if value else b""
    return b"\0" * zeros + body


@dataclass(frozen=True)
class Pubkey:
    """
    A ledger address.

    Frozen so it can key ordered maps directly: two Pubkeys are equal exactly
    when their 32 bytes are equal, with no string coercion involved.
    """
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)):
            raise ValueError(f"Pubkey must be built from bytes, got {type(self.raw).__name__}")
        if len(self.raw) != PUBKEY_LENGTH:
            raise ValueError(f"Pubkey must be {PUBKEY_LENGTH} bytes, got {len(self.raw)}")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_string(cls, address: str) -> 'Pubkey':
        """Parse a base58 address."""
        return cls(b58decode(address))

    @classmethod
    def from_hex(cls, address: str) -> 'Pubkey':
        return cls(bytes.fromhex(address))

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return b58encode(self.raw)

    def __repr__(self) -> str:
        return f"Pubkey({self})"

    def is_on_curve(self) -> bool:
        return is_on_curve(self.raw)


# Well-known native programs and sysvars
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")
SECP256R1_PROGRAM_ID = Pubkey.from_string("Secp256r1SigVerify1111111111111111111111111")


@dataclass
class AccountMeta:
    """
    Account metadata for instruction building.

    This tells the runtime how an instruction wants to access each account.
    The flags are mutable only while permissions are being resolved; resolved
    steps carry frozen copies.
    """
    pubkey: Pubkey       # Account address
    is_signer: bool      # Must sign transaction
    is_writable: bool    # Can be modified

    def __str__(self) -> str:
        """Human-readable representation."""
        flags = []
        if self.is_signer:
            flags.append("signer")
        if self.is_writable:
            flags.append("writable")
        flag_str = f"({', '.join(flags)})" if flags else "(readonly)"
        return f"{str(self.pubkey)[:8]}...{flag_str}"


def is_on_curve(raw: bytes) -> bool:
    """
    Check whether 32 bytes decode to a point on the ed25519 curve.

    Program derived addresses must be off the curve so that no private key
    can ever sign for them.
    """
    try:
        PointEdwards.from_bytes(curve_ed25519, raw)
    except MalformedPointError:
        return False
    return True


def create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey:
    """
    Derive the address for an exact seed list (bump included).

    Raises:
        ValueError: if a seed is too long or the hash lands on the curve
    """
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"At most {MAX_SEEDS} seeds are allowed, got {len(seeds)}")

    hasher = hashlib.sha256()
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise ValueError(f"Seed exceeds {MAX_SEED_LENGTH} bytes: {len(seed)}")
        hasher.update(seed)
    hasher.update(program_id.raw)
    hasher.update(PDA_MARKER)
    digest = hasher.digest()

    if is_on_curve(digest):
        raise ValueError("Derived address lands on the ed25519 curve")
    return Pubkey(digest)


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """
    Find the canonical program derived address and its bump seed.

    Bumps are tried from 255 down to 0; the first off-curve hash wins.
    """
    for bump in range(255, -1, -1):
        try:
            address = create_program_address([*seeds, bytes([bump])], program_id)
        except ValueError as e:
            if "curve" in str(e):
                continue
            raise
        return address, bump

    raise ValueError("Unable to find a viable program address bump seed")


def account_id_from_string(value: str) -> bytes:
    """
    Turn a human supplied smart-account identifier into its 32-byte id.

    A 64-character hex string is taken as the raw id; anything else is
    hashed with SHA-256.
    """
    if len(value) == 64:
        try:
            return bytes.fromhex(value)
        except ValueError:
            pass
    return hashlib.sha256(value.encode()).digest()


@dataclass(frozen=True)
class SmartAccountAddresses:
    """Addresses derived from one smart-account id."""
    account_id: bytes
    smart_account: Pubkey
    vault: Pubkey
    vault_state: Pubkey

    @classmethod
    def derive(cls, account_id: bytes, smart_account_program_id: Pubkey,
               vault_program_id: Pubkey) -> 'SmartAccountAddresses':
        if len(account_id) != 32:
            raise ValueError(f"Smart account id must be 32 bytes, got {len(account_id)}")

        smart_account, _ = find_program_address(
            [SMART_ACCOUNT_SEED, account_id], smart_account_program_id
        )
        vault, _ = find_program_address(
            [SMART_ACCOUNT_VAULT_SEED, account_id], vault_program_id
        )
        vault_state, _ = find_program_address(
            [VAULT_STATE_SEED, account_id], vault_program_id
        )
        return cls(
            account_id=bytes(account_id),
            smart_account=smart_account,
            vault=vault,
            vault_state=vault_state,
        )

    def as_list(self) -> List[Pubkey]:
        return [self.smart_account, self.vault, self.vault_state]


def webauthn_table_address(smart_account_program_id: Pubkey, index: int = 0) -> Pubkey:
    """Address of the on-chain table holding registered WebAuthn envelopes."""
    address, _ = find_program_address([WEB_AUTHN_TABLE_SEED, bytes([index])], smart_account_program_id)
    return address
