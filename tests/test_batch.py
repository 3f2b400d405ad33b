import pytest

from vault_intents.core.accounts import AccountMeta
from vault_intents.core.batch import DeconstructedOperation, pack
from vault_intents.core.errors import EncodingError
from vault_intents.core.intent import Intent, IntentEncoder
from vault_intents.core.permissions import PermissionResolver
from vault_intents.core.transactions import Instruction
from vault_intents.programs.system import SystemProgram

from conftest import key


def test_account_counts_and_remaining_accounts(vault):
    steps = [
        SystemProgram.transfer(vault, key("r1"), 1),
        Instruction(key("program"), [AccountMeta(key("a"), False, False)], b"\x01\x02"),
        Instruction(key("empty"), [], b""),
    ]
    resolution = PermissionResolver(vault).resolve(steps)
    package = pack(resolution.steps)

    assert [op.account_count for op in package.operations] == [3, 2, 1]
    assert sum(op.account_count for op in package.operations) == len(package.remaining_accounts)
    for operation, step in zip(package.operations, steps):
        assert operation.account_count == 1 + len(step.accounts)


def test_windows_rebuild_each_step(vault):
    steps = [
        SystemProgram.transfer(vault, key("r1"), 1),
        Instruction(key("program"), [AccountMeta(key("a"), False, True), AccountMeta(key("r1"), False, False)], b""),
    ]
    package = pack(PermissionResolver(vault).resolve(steps).steps)
    first, second = package.windows()

    assert [a.pubkey for a in first] == [steps[0].program_id, vault, key("r1")]
    assert [a.pubkey for a in second] == [key("program"), key("a"), key("r1")]
    # merged verdict: r1 is writable everywhere
    assert second[2].is_writable
    assert not first[1].is_signer


def test_encode_args_borsh_layout():
    operations = [DeconstructedOperation(b"\xaa\xbb", 3), DeconstructedOperation(b"", 1)]
    package = pack([])
    assert package.encode_args() == b"\x00\x00\x00\x00"

    encoded = (2).to_bytes(4, "little") + b"".join(op.serialize() for op in operations)
    assert encoded == bytes.fromhex("02000000" "02000000aabb03" "0000000001")


def test_package_from_encoded_intent(vault):
    encoded = IntentEncoder(vault).encode(Intent(nonce=1, operations=[SystemProgram.transfer(vault, key("r"), 5)]))
    package = pack(encoded.resolution.steps)
    assert package.operations[0].ix_data == SystemProgram.transfer(vault, key("r"), 5).data
    metas = package.account_metas()
    assert metas[1].pubkey == vault
    assert (metas[1].is_signer, metas[1].is_writable) == (False, True)


def test_too_many_accounts_in_one_step(vault):
    accounts = [AccountMeta(key(f"a{i}"), False, False) for i in range(255)]
    resolution = PermissionResolver(vault).resolve([Instruction(key("program"), accounts, b"")])
    with pytest.raises(EncodingError):
        pack(resolution.steps)
