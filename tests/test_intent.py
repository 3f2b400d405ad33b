import struct

import pytest

from vault_intents.core.accounts import SYSTEM_PROGRAM_ID, AccountMeta
from vault_intents.core.config import EngineConfig
from vault_intents.core.errors import EncodingError
from vault_intents.core.intent import Intent, IntentEncoder, keccak256
from vault_intents.core.transactions import Instruction
from vault_intents.programs.compute_budget import ComputeBudgetProgram
from vault_intents.programs.system import SystemProgram

from conftest import key


def le64(value):
    return value.to_bytes(8, "little")


def test_keccak256_known_vector():
    assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


def test_single_transfer_layout(vault):
    recipient = key("recipient")
    transfer = SystemProgram.transfer(vault, recipient, 1_000_000)
    encoded = IntentEncoder(vault).encode(Intent(nonce=5, operations=[transfer], fee_amount=15000))

    expected = b"".join([
        le64(5),
        le64(15000),
        b"\x00",
        struct.pack("<IQ", 2, 1_000_000),
        SYSTEM_PROGRAM_ID.raw,
        bytes([0, 0]) + SYSTEM_PROGRAM_ID.raw,
        bytes([0, 1]) + vault.raw,
        bytes([0, 1]) + recipient.raw,
    ])
    assert encoded.data == expected
    assert encoded.digest == keccak256(expected)


def test_vault_never_serializes_as_signer(vault):
    steps = [
        SystemProgram.transfer(vault, key("a"), 1),
        Instruction(key("program"), [AccountMeta(vault, True, False)], b""),
    ]
    encoded = IntentEncoder(vault).encode(Intent(nonce=0, operations=steps))
    data = encoded.data
    index = data.find(vault.raw)
    while index != -1:
        assert data[index - 2] == 0
        index = data.find(vault.raw, index + 1)


def test_encoding_is_deterministic(vault):
    def build():
        return Intent(nonce=9, operations=[SystemProgram.transfer(vault, key("r"), 42)], fee_amount=7)

    encoder = IntentEncoder(vault)
    assert encoder.encode(build()).data == encoder.encode(build()).data
    assert IntentEncoder(vault).encode(build()).digest == encoder.encode(build()).digest


def test_fee_mint_presence(vault):
    mint = key("mint")
    operations = [SystemProgram.transfer(vault, key("r"), 1)]
    encoded = IntentEncoder(vault).encode(Intent(nonce=1, operations=operations, fee_amount=3, fee_mint=mint))
    assert encoded.data[:17] == le64(1) + le64(3) + b"\x01"
    assert encoded.data[17:49] == mint.raw


def test_no_fee_section(vault):
    operations = [SystemProgram.transfer(vault, key("r"), 1)]
    with_fee = IntentEncoder(vault).encode(Intent(nonce=1, operations=operations, fee_amount=0))
    without_fee = IntentEncoder(vault).encode(Intent(nonce=1, operations=operations, fee_amount=None))
    assert without_fee.data == with_fee.data[:8] + with_fee.data[17:]


def test_preamble_uses_local_flags_and_no_pseudo_account(vault):
    limit = ComputeBudgetProgram.set_compute_unit_limit(200_000)
    operation = SystemProgram.transfer(vault, key("r"), 1)
    encoded = IntentEncoder(vault).encode(
        Intent(nonce=0, operations=[operation], fee_amount=0, preamble=[limit])
    )
    header = le64(0) + le64(0) + b"\x00"
    preamble = limit.data + limit.program_id.raw
    assert encoded.data.startswith(header + preamble + operation.data + SYSTEM_PROGRAM_ID.raw)


def test_vault_writable_flag(vault):
    operations = [Instruction(key("program"), [AccountMeta(vault, False, False)], b"")]
    writable = IntentEncoder(vault).encode(Intent(nonce=0, operations=operations))
    readonly = IntentEncoder(vault, vault_writable=False).encode(Intent(nonce=0, operations=operations))
    assert writable.data.endswith(bytes([0, 1]) + vault.raw)
    assert readonly.data.endswith(bytes([0, 0]) + vault.raw)


def test_empty_intent(vault):
    with pytest.raises(EncodingError):
        IntentEncoder(vault).encode(Intent(nonce=0, operations=[]))


def test_payload_size_limit(vault):
    config = EngineConfig(max_payload_size=16)
    big = Instruction(key("program"), [], bytes(17))
    with pytest.raises(EncodingError, match="exceeds"):
        IntentEncoder(vault, config).encode(Intent(nonce=0, operations=[big]))
    IntentEncoder(vault, config).encode(Intent(nonce=0, operations=[Instruction(key("program"), [], bytes(16))]))


@pytest.mark.parametrize("nonce, fee", [(-1, 0), (2 ** 64, 0), (0, -5), (0, 2 ** 64)])
def test_out_of_range_integers(vault, nonce, fee):
    operations = [SystemProgram.transfer(vault, key("r"), 1)]
    with pytest.raises(EncodingError):
        IntentEncoder(vault).encode(Intent(nonce=nonce, operations=operations, fee_amount=fee))


def test_malformed_fee_mint(vault):
    operations = [SystemProgram.transfer(vault, key("r"), 1)]
    with pytest.raises(EncodingError):
        IntentEncoder(vault).encode(Intent(nonce=0, operations=operations, fee_mint=b"mint"))
