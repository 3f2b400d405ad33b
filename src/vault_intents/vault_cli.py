#!/usr/bin/env python3
"""
Vault Intents CLI

A developer command line for the offline half of the engine: derive a smart
account's addresses, encode and hash intents, build Merkle trees over intent
digests and sign WebAuthn challenges with a local passkey secret.

Usage:
    vault-intents derive <account-id>                      # Smart account addresses
    vault-intents encode <account-id> --nonce 5 --fee 15000 --transfer <to>:<lamports>
    vault-intents merkle <digest> <digest> ... [--proof <digest>]
    vault-intents challenge <intent-hex> --secret <hex> [--raw]

Operations for `encode` come from repeated --transfer flags (lamports moved
out of the vault) or from a JSON file:

    [{"program_id": "...", "data": "<hex>",
      "accounts": [{"pubkey": "...", "is_signer": false, "is_writable": true}]}]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core.accounts import AccountMeta, Pubkey, SmartAccountAddresses, account_id_from_string, webauthn_table_address
from .core.challenge import ChallengeSigner, PasskeyCredential
from .core.config import EngineConfig
from .core.errors import VaultIntentError
from .core.intent import Intent, IntentEncoder
from .core.merkle import IntentMerkleTree
from .core.transactions import Instruction
from .programs.compute_budget import ComputeBudgetProgram
from .programs.system import SystemProgram


def load_instructions(path: Path) -> List[Instruction]:
    """Read operation steps from a JSON file."""
    with open(path) as f:
        raw = json.load(f)

    instructions = []
    for step in raw:
        instructions.append(Instruction(
            program_id=Pubkey.from_string(step["program_id"]),
            accounts=[
                AccountMeta(
                    Pubkey.from_string(account["pubkey"]),
                    bool(account.get("is_signer", False)),
                    bool(account.get("is_writable", False)),
                )
                for account in step.get("accounts", [])
            ],
            data=bytes.fromhex(step.get("data", "")),
        ))
    return instructions


def parse_hex(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def parse_digest(value: str) -> bytes:
    digest = parse_hex(value)
    if len(digest) != 32:
        raise argparse.ArgumentTypeError(f"Expected a 32-byte hex digest, got {len(digest)} bytes")
    return digest


class VaultCLI:
    """Command implementations for the vault intents CLI."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.from_env()

    def addresses(self, account_id: str) -> SmartAccountAddresses:
        return SmartAccountAddresses.derive(
            account_id_from_string(account_id),
            self.config.smart_account_program_id,
            self.config.vault_program_id,
        )

    def derive(self, account_id: str):
        addresses = self.addresses(account_id)
        print(f"🔑 Smart account id: {addresses.account_id.hex()}")
        print(f"   Smart account:  {addresses.smart_account}")
        print(f"   Vault:          {addresses.vault}")
        print(f"   Vault state:    {addresses.vault_state}")
        print(f"   WebAuthn table: {webauthn_table_address(self.config.smart_account_program_id)}")

    def encode(self, account_id: str, nonce: int, fee: Optional[int], mint: Optional[str],
               transfers: List[str], instructions_file: Optional[Path],
               compute_units: Optional[int], keep_vault_flags: bool):
        addresses = self.addresses(account_id)

        operations = load_instructions(instructions_file) if instructions_file else []
        for transfer in transfers:
            to, _, lamports = transfer.rpartition(":")
            operations.append(SystemProgram.transfer(addresses.vault, Pubkey.from_string(to), int(lamports)))

        intent = Intent(
            nonce=nonce,
            operations=operations,
            fee_amount=fee,
            fee_mint=Pubkey.from_string(mint) if mint else None,
            preamble=[ComputeBudgetProgram.set_compute_unit_limit(compute_units)] if compute_units else [],
        )
        encoder = IntentEncoder(addresses.vault, self.config, vault_writable=None if keep_vault_flags else True)
        encoded = encoder.encode(intent)

        print(f"📦 Intent for {addresses.smart_account} (nonce {nonce})")
        print(f"   Steps:  {len(intent.preamble)} preamble, {len(operations)} operations")
        for pubkey, permission in encoded.resolution.permissions.items():
            flags = "".join([
                "s" if permission.is_signer else "-",
                "w" if permission.is_writable else "-",
            ])
            print(f"   [{flags}] {pubkey}")
        print(f"   Bytes ({len(encoded)}): {encoded.hex()}")
        print(f"   Digest: 0x{encoded.digest.hex()}")

    def merkle(self, digests: List[bytes], proof_for: Optional[bytes]):
        tree = IntentMerkleTree(digests)
        print(f"🌳 Merkle root over {len(tree)} intents: 0x{tree.root.hex()}")
        print(tree.render())
        if proof_for is not None:
            proof = tree.proof(proof_for)
            print(f"\n🧾 Proof for 0x{proof_for.hex()}:")
            for node in proof:
                print(f"   0x{node.hex()}")
            print(f"   Verified: {IntentMerkleTree.verify(tree.root, proof_for, proof)}")

    def challenge(self, data: bytes, secret: bytes, raw: bool):
        credential = PasskeyCredential.from_secret(secret)
        signer = ChallengeSigner(self.config)
        signed = signer.sign_root(data, credential) if raw else signer.sign_intent(data, credential)

        print(f"✍️  WebAuthn challenge: 0x{signed.challenge.hex()}")
        print(f"   Client data:    {signed.envelope_json}")
        print(f"   Auth data:      {signed.authenticator_data.hex()}")
        print(f"   Message:        {signed.message.hex()}")
        print(f"   Signature:      {signed.signature.hex()}")
        print(f"   Passkey pubkey: {credential.public_key.hex()}")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Vault Intents CLI - intent encoding and signing tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vault-intents derive alice
  vault-intents encode alice --nonce 5 --fee 15000 --transfer <recipient>:1000000
  vault-intents merkle 0x<digest-a> 0x<digest-b> --proof 0x<digest-a>
  vault-intents challenge 0x<root> --secret <hex> --raw
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    derive_parser = subparsers.add_parser('derive', help='Derive smart account addresses')
    derive_parser.add_argument('account_id', help='Smart account id (64 hex chars, or any text to hash)')

    encode_parser = subparsers.add_parser('encode', help='Encode and hash an intent')
    encode_parser.add_argument('account_id', help='Smart account id')
    encode_parser.add_argument('--nonce', type=int, required=True, help='Smart account nonce')
    encode_parser.add_argument('--fee', type=int, default=0, help='Fee amount (omit section with --no-fee)')
    encode_parser.add_argument('--no-fee', action='store_true', help='Encode without a fee section')
    encode_parser.add_argument('--mint', help='Fee token mint')
    encode_parser.add_argument('--transfer', action='append', default=[], metavar='TO:LAMPORTS',
                               help='Transfer lamports out of the vault')
    encode_parser.add_argument('--instructions', type=Path, help='JSON file with operation steps')
    encode_parser.add_argument('--compute-units', type=int, help='Compute unit limit preamble')
    encode_parser.add_argument('--keep-vault-flags', action='store_true',
                               help='Do not force the vault writable (optimistic target hash)')

    merkle_parser = subparsers.add_parser('merkle', help='Build a Merkle tree over intent digests')
    merkle_parser.add_argument('digests', nargs='+', type=parse_digest, help='32-byte hex digests')
    merkle_parser.add_argument('--proof', type=parse_digest, help='Print the proof for this digest')

    challenge_parser = subparsers.add_parser('challenge', help='Sign a WebAuthn challenge')
    challenge_parser.add_argument('data', help='Intent bytes (hex), or a 32-byte Merkle root with --raw')
    challenge_parser.add_argument('--secret', required=True, help='Passkey P-256 secret, hex')
    challenge_parser.add_argument('--raw', action='store_true', help='Sign the digest as-is (Merkle root)')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cli = VaultCLI()

        if args.command == 'derive':
            cli.derive(args.account_id)

        elif args.command == 'encode':
            cli.encode(
                args.account_id, args.nonce, None if args.no_fee else args.fee, args.mint,
                args.transfer, args.instructions, args.compute_units, args.keep_vault_flags,
            )

        elif args.command == 'merkle':
            cli.merkle(args.digests, args.proof)

        elif args.command == 'challenge':
            cli.challenge(parse_hex(args.data), parse_hex(args.secret), args.raw)

        else:
            parser.print_help()

    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        sys.exit(0)

    except (VaultIntentError, ValueError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
