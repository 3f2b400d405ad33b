import json

import pytest

from vault_intents.core.challenge import ChallengeSigner, PasskeyCredential
from vault_intents.core.intent import Intent, IntentEncoder, keccak256
from vault_intents.core.merkle import IntentMerkleTree
from vault_intents.programs.system import SystemProgram
from vault_intents.vault_cli import main

from conftest import key


SECRET = "11" * 32


def test_derive(capsys, addresses):
    main(["derive", "alice"])
    out = capsys.readouterr().out
    assert str(addresses.smart_account) in out
    assert str(addresses.vault) in out
    assert str(addresses.vault_state) in out


def test_encode_transfer(capsys, vault):
    recipient = key("recipient")
    main(["encode", "alice", "--nonce", "5", "--fee", "15000", "--transfer", f"{recipient}:1000000"])
    out = capsys.readouterr().out

    expected = IntentEncoder(vault).encode(
        Intent(nonce=5, operations=[SystemProgram.transfer(vault, recipient, 1_000_000)], fee_amount=15000)
    )
    assert f"Digest: 0x{expected.digest.hex()}" in out
    assert f"[-w] {vault}" in out


def test_encode_from_json_file(tmp_path, capsys, vault):
    steps = [{
        "program_id": str(key("program")),
        "data": "0102",
        "accounts": [{"pubkey": str(vault), "is_signer": True, "is_writable": False}],
    }]
    path = tmp_path / "steps.json"
    path.write_text(json.dumps(steps))

    main(["encode", "alice", "--nonce", "0", "--no-fee", "--instructions", str(path)])
    assert "1 operations" in capsys.readouterr().out


def test_encode_without_operations_fails(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["encode", "alice", "--nonce", "0"])
    assert excinfo.value.code == 1
    assert "❌ Error" in capsys.readouterr().out


def test_merkle_proof(capsys):
    digests = [keccak256(bytes([i])) for i in range(3)]
    main(["merkle", *("0x" + d.hex() for d in digests), "--proof", digests[1].hex()])
    out = capsys.readouterr().out

    assert f"0x{IntentMerkleTree(digests).root.hex()}" in out
    assert "Verified: True" in out


def test_challenge_raw(capsys):
    root = keccak256(b"root")
    main(["challenge", root.hex(), "--secret", SECRET, "--raw"])
    out = capsys.readouterr().out

    signed = ChallengeSigner().sign_root(root, PasskeyCredential.from_secret(bytes.fromhex(SECRET)))
    assert f"WebAuthn challenge: 0x{root.hex()}" in out
    assert signed.signature.hex() in out
