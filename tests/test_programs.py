import struct

import pytest

from vault_intents.core.accounts import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_INSTRUCTIONS_ID,
    find_program_address,
)
from vault_intents.core.batch import pack
from vault_intents.core.permissions import PermissionResolver
from vault_intents.programs.compute_budget import ComputeBudgetProgram
from vault_intents.programs.lookup_table import AddressLookupTableProgram
from vault_intents.programs.smart_account import (
    EXECUTE_BATCH,
    OPTIMISTIC_VALIDATION,
    POST_OPTIMISTIC_EXECUTION,
    SIMULATE_BATCH,
    VALIDATE_EXECUTION,
    VALIDATE_OPTIMISTIC_EXECUTION,
    SmartAccountProgram,
    TokenAccounts,
    VaultProgram,
    WebAuthnArgs,
)
from vault_intents.programs.system import SystemProgram

from conftest import key


# ---------------------------------------------------------------------------
# Native programs
# ---------------------------------------------------------------------------

def test_system_transfer():
    instruction = SystemProgram.transfer(key("from"), key("to"), 1_000)
    assert instruction.program_id == SYSTEM_PROGRAM_ID
    assert instruction.data == bytes.fromhex("02000000" "e803000000000000")
    assert [(a.pubkey, a.is_signer, a.is_writable) for a in instruction.accounts] == [
        (key("from"), True, True),
        (key("to"), False, True),
    ]


def test_compute_budget():
    limit = ComputeBudgetProgram.set_compute_unit_limit(200_000)
    assert limit.program_id == COMPUTE_BUDGET_PROGRAM_ID
    assert limit.data == b"\x02" + (200_000).to_bytes(4, "little")

    price = ComputeBudgetProgram.set_compute_unit_price(1_000)
    assert price.data == b"\x03" + (1_000).to_bytes(8, "little")

    with pytest.raises(ValueError):
        ComputeBudgetProgram.set_compute_unit_limit(0)


def test_create_lookup_table():
    authority, payer = key("authority"), key("payer")
    instruction, table = AddressLookupTableProgram.create_lookup_table(authority, payer, 1234)
    expected, bump = find_program_address([authority.raw, (1234).to_bytes(8, "little")], ADDRESS_LOOKUP_TABLE_PROGRAM_ID)

    assert table == expected
    assert instruction.data == struct.pack("<IQB", 0, 1234, bump)
    assert [a.pubkey for a in instruction.accounts] == [table, authority, payer, SYSTEM_PROGRAM_ID]
    assert instruction.accounts[2].is_signer


def test_extend_lookup_table():
    addresses = [key("a"), key("b")]
    instruction = AddressLookupTableProgram.extend_lookup_table(key("t"), key("auth"), key("payer"), addresses)
    assert instruction.data[:12] == struct.pack("<IQ", 2, 2)
    assert instruction.data[12:] == key("a").raw + key("b").raw
    assert instruction.accounts[1].is_signer
    with pytest.raises(ValueError):
        AddressLookupTableProgram.extend_lookup_table(key("t"), key("auth"), key("payer"), [])


# ---------------------------------------------------------------------------
# Smart account and vault programs
# ---------------------------------------------------------------------------

def test_webauthn_args_serialization():
    assert WebAuthnArgs().serialize() == bytes([1, 0, 0, 1, 0])
    direct = WebAuthnArgs('{"a":1}', bytes(37)).serialize()
    assert direct[:5] == b"\x00" + (7).to_bytes(4, "little")
    assert direct[5:12] == b'{"a":1}'
    assert direct[12:] == b"\x00" + bytes(37)
    with pytest.raises(ValueError):
        WebAuthnArgs(auth_data=bytes(36)).serialize()


def test_validate_execution(addresses, config):
    program = SmartAccountProgram(addresses, config)
    instruction = program.validate_execution(key("payer"), token_amount=15000, webauthn_args=WebAuthnArgs())

    assert instruction.program_id == config.smart_account_program_id
    assert instruction.data == VALIDATE_EXECUTION + b"\x01" + bytes([1, 0, 0, 1, 0]) + (15000).to_bytes(8, "little") + b"\x00"

    pubkeys = [a.pubkey for a in instruction.accounts]
    assert len(pubkeys) == 13
    assert pubkeys[0] == key("payer")
    assert pubkeys[1] == config.smart_account_program_id  # no solana signer
    assert pubkeys[2:8] == [
        addresses.smart_account, SYSVAR_INSTRUCTIONS_ID, config.vault_program_id,
        addresses.vault_state, addresses.vault, SYSTEM_PROGRAM_ID,
    ]
    # absent optional accounts are the program id, read-only
    for meta in instruction.accounts[8:]:
        assert meta.pubkey == config.smart_account_program_id
        assert not meta.is_writable and not meta.is_signer


def test_validate_execution_with_proof_and_token(addresses, config):
    token = TokenAccounts(key("vta"), key("mint"), key("dta"), key("token program"))
    proof = [b"\x01" * 32, b"\x02" * 32]
    instruction = SmartAccountProgram(addresses, config).validate_execution(
        key("payer"), 1, intent_proof=proof, token=token, solana_signer=key("signer")
    )
    assert instruction.data.endswith(b"\x01" + (2).to_bytes(4, "little") + proof[0] + proof[1])
    assert instruction.data[8] == 0  # no webauthn args
    assert instruction.accounts[1].pubkey == key("signer") and instruction.accounts[1].is_signer
    assert [a.pubkey for a in instruction.accounts[8:12]] == [key("vta"), key("mint"), key("dta"), key("token program")]
    assert instruction.accounts[8].is_writable and instruction.accounts[10].is_writable


def test_optimistic_instructions(addresses, config):
    program = SmartAccountProgram(addresses, config)
    target = b"\x44" * 32

    validation = program.optimistic_validation(key("payer"), 900, target, 5000)
    assert validation.data == (
        OPTIMISTIC_VALIDATION + (900).to_bytes(8, "little") + target + (5000).to_bytes(8, "little") + b"\x00\x00"
    )
    assert validation.accounts[0].is_writable and validation.accounts[0].is_signer
    assert len(validation.accounts) == 7

    execute = program.validate_optimistic_execution(key("payer"))
    assert execute.data == VALIDATE_OPTIMISTIC_EXECUTION
    assert [a.pubkey for a in execute.accounts][-1] == addresses.vault

    post = program.post_optimistic_execution(key("payer"), jito_tip_amount=10_000, jito_tip_account=key("tip"))
    assert post.data == POST_OPTIMISTIC_EXECUTION + (10_000).to_bytes(8, "little")
    assert post.accounts[2].pubkey == key("tip") and post.accounts[2].is_writable
    assert len(post.accounts) == 11


def test_vault_instructions(addresses, config):
    vault_program = VaultProgram(addresses, config)
    approve = vault_program.approve_execution()
    assert approve.accounts[1].pubkey == addresses.smart_account and approve.accounts[1].is_signer

    steps = PermissionResolver(addresses.vault).resolve([SystemProgram.transfer(addresses.vault, key("r"), 1)]).steps
    package = pack(steps)

    execute = vault_program.execute_batch(package)
    assert execute.data == EXECUTE_BATCH + package.encode_args()
    assert [a.pubkey for a in execute.accounts] == [
        addresses.vault_state, addresses.vault, SYSTEM_PROGRAM_ID, addresses.vault, key("r"),
    ]
    assert vault_program.simulate_batch(package).data.startswith(SIMULATE_BATCH)
