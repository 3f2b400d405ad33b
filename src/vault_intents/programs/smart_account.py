"""
Smart Account and Vault Program Instructions

Both programs are Anchor programs: instruction data is an 8-byte
discriminator followed by Borsh-encoded arguments, and an optional account
left out by the caller is passed as the program's own id.

Smart account program (authorization engine):
- validate_execution: checks a passkey-signed intent, then CPIs the vault's
  approve_execution
- optimistic_validation / validate_optimistic_execution /
  post_optimistic_execution: the slot-bounded optimistic flow

Vault program:
- approve_execution: marks the vault state validated
- execute_batch / simulate_batch: runs deconstructed operation steps
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from ..core.accounts import (
    SYSTEM_PROGRAM_ID,
    SYSVAR_INSTRUCTIONS_ID,
    AccountMeta,
    Pubkey,
    SmartAccountAddresses,
)
from ..core.batch import ExecutionPackage
from ..core.config import EngineConfig
from ..core.transactions import Instruction


VALIDATE_EXECUTION = bytes([151, 103, 96, 183, 173, 138, 255, 71])
OPTIMISTIC_VALIDATION = bytes([168, 232, 143, 98, 225, 229, 203, 67])
VALIDATE_OPTIMISTIC_EXECUTION = bytes([156, 136, 120, 197, 85, 221, 121, 127])
POST_OPTIMISTIC_EXECUTION = bytes([127, 90, 16, 72, 234, 138, 33, 185])

APPROVE_EXECUTION = bytes([22, 96, 20, 190, 177, 12, 242, 141])
EXECUTE_BATCH = bytes([112, 159, 211, 51, 238, 70, 212, 60])
SIMULATE_BATCH = bytes([113, 167, 25, 177, 186, 96, 255, 194])


# Borsh primitives

def borsh_u8(value: int) -> bytes:
    return value.to_bytes(1, "little")


def borsh_u64(value: int) -> bytes:
    return value.to_bytes(8, "little")


def borsh_string(value: str) -> bytes:
    encoded = value.encode()
    return len(encoded).to_bytes(4, "little") + encoded


def borsh_option(value: Optional[bytes]) -> bytes:
    return b"\x00" if value is None else b"\x01" + value


def borsh_hash_vec(hashes: Sequence[bytes]) -> bytes:
    for item in hashes:
        if len(item) != 32:
            raise ValueError("Proof entries must be 32 bytes")
    return len(hashes).to_bytes(4, "little") + b"".join(hashes)


@dataclass(frozen=True)
class WebAuthnArgs:
    """
    Where the engine finds the WebAuthn envelope.

    Each part is either carried directly or referenced by index into the
    registered WebAuthn table: the client JSON by a (pre, post) index pair
    around the challenge, the authenticator data by one index.
    """
    client_data_json: Union[str, tuple] = (0, 0)
    auth_data: Union[bytes, int] = 0

    def serialize(self) -> bytes:
        if isinstance(self.client_data_json, str):
            client = b"\x00" + borsh_string(self.client_data_json)
        else:
            pre, post = self.client_data_json
            client = b"\x01" + bytes([pre, post])

        if isinstance(self.auth_data, (bytes, bytearray)):
            if len(self.auth_data) != 37:
                raise ValueError("Direct authenticator data must be 37 bytes")
            auth = b"\x00" + bytes(self.auth_data)
        else:
            auth = b"\x01" + borsh_u8(self.auth_data)

        return client + auth

    @property
    def uses_table(self) -> bool:
        return not isinstance(self.client_data_json, str) or not isinstance(self.auth_data, (bytes, bytearray))


def _optional(pubkey: Optional[Pubkey], program_id: Pubkey, is_signer=False, is_writable=False) -> AccountMeta:
    if pubkey is None:
        return AccountMeta(program_id, is_signer=False, is_writable=False)
    return AccountMeta(pubkey, is_signer=is_signer, is_writable=is_writable)


@dataclass(frozen=True)
class TokenAccounts:
    """Accounts needed when the fee is paid in an SPL token instead of lamports."""
    vault_token_account: Pubkey
    token_mint: Pubkey
    destination_token_account: Pubkey
    token_program: Pubkey


class SmartAccountProgram:
    """Instruction builders for the smart account program."""

    def __init__(self, addresses: SmartAccountAddresses, config: Optional[EngineConfig] = None):
        self.addresses = addresses
        self.config = config or EngineConfig()

    @property
    def program_id(self) -> Pubkey:
        return self.config.smart_account_program_id

    def _token_metas(self, token: Optional[TokenAccounts]) -> List[AccountMeta]:
        pid = self.program_id
        return [
            _optional(token and token.vault_token_account, pid, is_writable=True),
            _optional(token and token.token_mint, pid),
            _optional(token and token.destination_token_account, pid, is_writable=True),
            _optional(token and token.token_program, pid),
        ]

    def validate_execution(self, tx_payer: Pubkey, token_amount: int,
                           webauthn_args: Optional[WebAuthnArgs] = None,
                           intent_proof: Optional[Sequence[bytes]] = None,
                           solana_signer: Optional[Pubkey] = None,
                           token: Optional[TokenAccounts] = None,
                           webauthn_table: Optional[Pubkey] = None) -> Instruction:
        pid = self.program_id
        accounts = [
            AccountMeta(tx_payer, is_signer=True, is_writable=False),
            _optional(solana_signer, pid, is_signer=True),
            AccountMeta(self.addresses.smart_account, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
            AccountMeta(self.config.vault_program_id, is_signer=False, is_writable=False),
            AccountMeta(self.addresses.vault_state, is_signer=False, is_writable=True),
            AccountMeta(self.addresses.vault, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            *self._token_metas(token),
            _optional(webauthn_table, pid),
        ]
        data = b"".join([
            VALIDATE_EXECUTION,
            borsh_option(webauthn_args.serialize() if webauthn_args else None),
            borsh_u64(token_amount),
            borsh_option(borsh_hash_vec(intent_proof) if intent_proof is not None else None),
        ])
        return Instruction(pid, accounts, data)

    def optimistic_validation(self, tx_payer: Pubkey, max_slot: int, target_hash: bytes, token_amount: int,
                              webauthn_args: Optional[WebAuthnArgs] = None,
                              intent_proof: Optional[Sequence[bytes]] = None,
                              solana_signer: Optional[Pubkey] = None,
                              token_mint: Optional[Pubkey] = None,
                              webauthn_table: Optional[Pubkey] = None) -> Instruction:
        if len(target_hash) != 32:
            raise ValueError("Target hash must be 32 bytes")
        pid = self.program_id
        accounts = [
            AccountMeta(tx_payer, is_signer=True, is_writable=True),
            _optional(solana_signer, pid, is_signer=True),
            AccountMeta(self.addresses.smart_account, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
            _optional(token_mint, pid),
            _optional(webauthn_table, pid),
        ]
        data = b"".join([
            OPTIMISTIC_VALIDATION,
            borsh_u64(max_slot),
            bytes(target_hash),
            borsh_u64(token_amount),
            borsh_option(webauthn_args.serialize() if webauthn_args else None),
            borsh_option(borsh_hash_vec(intent_proof) if intent_proof is not None else None),
        ])
        return Instruction(pid, accounts, data)

    def validate_optimistic_execution(self, tx_payer: Pubkey) -> Instruction:
        accounts = [
            AccountMeta(tx_payer, is_signer=True, is_writable=False),
            AccountMeta(self.addresses.smart_account, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
            AccountMeta(self.config.vault_program_id, is_signer=False, is_writable=False),
            AccountMeta(self.addresses.vault_state, is_signer=False, is_writable=True),
            AccountMeta(self.addresses.vault, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, accounts, VALIDATE_OPTIMISTIC_EXECUTION)

    def post_optimistic_execution(self, tx_payer: Pubkey, jito_tip_amount: int = 0,
                                  jito_tip_account: Optional[Pubkey] = None,
                                  token: Optional[TokenAccounts] = None) -> Instruction:
        pid = self.program_id
        accounts = [
            AccountMeta(tx_payer, is_signer=True, is_writable=False),
            AccountMeta(self.addresses.smart_account, is_signer=False, is_writable=True),
            _optional(jito_tip_account, pid, is_writable=True),
            AccountMeta(self.config.vault_program_id, is_signer=False, is_writable=False),
            AccountMeta(self.addresses.vault_state, is_signer=False, is_writable=False),
            AccountMeta(self.addresses.vault, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            *self._token_metas(token),
        ]
        return Instruction(pid, accounts, POST_OPTIMISTIC_EXECUTION + borsh_u64(jito_tip_amount))


class VaultProgram:
    """Instruction builders for the vault program."""

    def __init__(self, addresses: SmartAccountAddresses, config: Optional[EngineConfig] = None):
        self.addresses = addresses
        self.config = config or EngineConfig()

    @property
    def program_id(self) -> Pubkey:
        return self.config.vault_program_id

    def approve_execution(self) -> Instruction:
        accounts = [
            AccountMeta(self.addresses.vault_state, is_signer=False, is_writable=True),
            AccountMeta(self.addresses.smart_account, is_signer=True, is_writable=False),
        ]
        return Instruction(self.program_id, accounts, APPROVE_EXECUTION)

    def execute_batch(self, package: ExecutionPackage, simulate: bool = False) -> Instruction:
        accounts = [
            AccountMeta(self.addresses.vault_state, is_signer=False, is_writable=True),
            AccountMeta(self.addresses.vault, is_signer=False, is_writable=False),
            *package.account_metas(),
        ]
        discriminator = SIMULATE_BATCH if simulate else EXECUTE_BATCH
        return Instruction(self.program_id, accounts, discriminator + package.encode_args())

    def simulate_batch(self, package: ExecutionPackage) -> Instruction:
        return self.execute_batch(package, simulate=True)
