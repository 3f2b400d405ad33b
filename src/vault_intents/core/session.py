"""
Intent Sessions

An IntentSession drives one smart account from operations to a signed,
submittable transaction:

    nonce -> encode -> passkey signature -> pack -> compile -> payer signature

Intent construction for a smart account must not interleave: two intents
built from the same nonce would both be valid until one lands. Each session
therefore serializes its work behind a per-account lock shared by every
session for that account.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ecdsa import SigningKey

from ..programs.compute_budget import ComputeBudgetProgram
from ..programs.smart_account import SmartAccountProgram, TokenAccounts, VaultProgram, WebAuthnArgs
from .accounts import Pubkey, SmartAccountAddresses, webauthn_table_address
from .batch import ExecutionPackage, pack
from .challenge import ChallengeSigner, PasskeyCredential, SignedChallenge, secp256r1_verify_instruction
from .compressor import TransactionCompressor
from .config import EngineConfig
from .errors import EngineRejection, OptimisticTransactionNotExecuted
from .intent import EncodedIntent, Intent, IntentEncoder
from .ledger import LedgerClient
from .merkle import IntentMerkleTree
from .optimistic import OptimisticValidationWindow
from .transactions import Instruction, VersionedTransaction, keypair_pubkey, sign_transaction


logger = logging.getLogger(__name__)

_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary[Pubkey, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def account_lock(smart_account: Pubkey) -> asyncio.Lock:
    """
    The lock serializing intent construction for one smart account on the running loop.

    A lock lives only while some session or pending construction holds it.
    """
    loop = asyncio.get_running_loop()
    locks = _locks.get(loop)
    if locks is None:
        locks = _locks[loop] = weakref.WeakValueDictionary()
    lock = locks.get(smart_account)
    if lock is None:
        lock = asyncio.Lock()
        locks[smart_account] = lock
    return lock


@dataclass
class PreparedExecution:
    """Everything produced for one intent, ready for submission."""
    intent: Intent
    encoded: EncodedIntent
    package: ExecutionPackage
    transaction: VersionedTransaction
    challenge: Optional[SignedChallenge] = None
    proof: Optional[List[bytes]] = None

    @property
    def digest(self) -> bytes:
        return self.encoded.digest


@dataclass
class PreparedOptimistic:
    validation: VersionedTransaction
    window: OptimisticValidationWindow
    encoded: EncodedIntent
    package: ExecutionPackage
    challenge: SignedChallenge


class IntentSession:
    """
    Builds execution transactions for one smart account.

    Args:
        ledger: ledger access
        addresses: the smart account's derived addresses
        credential: registered passkey of the account owner
        fee_payer: Ed25519 key paying transaction fees
        solana_signer: optional mandatory co-signer required by the account
        config: engine configuration
        use_webauthn_table: reference the registered envelope by table index
            instead of carrying it in the instruction
    """

    def __init__(self, ledger: LedgerClient, addresses: SmartAccountAddresses,
                 credential: Optional[PasskeyCredential], fee_payer: SigningKey,
                 solana_signer: Optional[SigningKey] = None,
                 config: Optional[EngineConfig] = None,
                 use_webauthn_table: bool = True):
        self.ledger = ledger
        self.addresses = addresses
        self.credential = credential
        self.fee_payer = fee_payer
        self.solana_signer = solana_signer
        self.config = config or EngineConfig()
        self.use_webauthn_table = use_webauthn_table

        self.smart_account_program = SmartAccountProgram(addresses, self.config)
        self.vault_program = VaultProgram(addresses, self.config)
        self.challenge_signer = ChallengeSigner(self.config)
        self.compressor = TransactionCompressor(ledger, self.config)

    @property
    def fee_payer_key(self) -> Pubkey:
        return keypair_pubkey(self.fee_payer)

    @property
    def lock(self) -> asyncio.Lock:
        return account_lock(self.addresses.smart_account)

    def _signers(self) -> List[SigningKey]:
        return [self.fee_payer] + ([self.solana_signer] if self.solana_signer else [])

    def _webauthn(self, signed: SignedChallenge):
        if self.use_webauthn_table:
            return WebAuthnArgs(), webauthn_table_address(self.config.smart_account_program_id)
        return WebAuthnArgs(signed.envelope_json, signed.authenticator_data), None

    def _intent(self, nonce: int, operations: Sequence[Instruction], fee_amount: Optional[int],
                fee_mint: Optional[Pubkey], compute_unit_limit: Optional[int]) -> Intent:
        preamble = [ComputeBudgetProgram.set_compute_unit_limit(compute_unit_limit)] if compute_unit_limit else []
        return Intent(nonce=nonce, operations=list(operations), fee_amount=fee_amount,
                      fee_mint=fee_mint, preamble=preamble)

    async def _validated_execution(self, intent: Intent, encoded: EncodedIntent, signed: SignedChallenge,
                                   proof: Optional[List[bytes]], token: Optional[TokenAccounts],
                                   simulate: bool = False) -> PreparedExecution:
        package = pack(encoded.resolution.steps)
        webauthn_args, table = self._webauthn(signed)
        solana_signer = keypair_pubkey(self.solana_signer) if self.solana_signer else None

        instructions = [
            *intent.preamble,
            secp256r1_verify_instruction(signed, self.credential.public_key),
            self.smart_account_program.validate_execution(
                tx_payer=self.fee_payer_key,
                token_amount=intent.fee_amount or 0,
                webauthn_args=webauthn_args,
                intent_proof=proof,
                solana_signer=solana_signer,
                token=token,
                webauthn_table=table,
            ),
            self.vault_program.execute_batch(package, simulate=simulate),
        ]
        message = await self.compressor.compile(self.fee_payer_key, instructions)
        transaction = sign_transaction(message, self._signers())
        return PreparedExecution(intent, encoded, package, transaction, signed, proof)

    async def prepare(self, operations: Sequence[Instruction], fee_amount: int = 0,
                      fee_mint: Optional[Pubkey] = None, compute_unit_limit: Optional[int] = None,
                      token: Optional[TokenAccounts] = None, simulate: bool = False) -> PreparedExecution:
        """Build a passkey-validated execution using the account's current nonce."""
        async with self.lock:
            nonce = await self.ledger.get_nonce(self.addresses.smart_account)
            intent = self._intent(nonce, operations, fee_amount, fee_mint, compute_unit_limit)
            encoded = IntentEncoder(self.addresses.vault, self.config).encode(intent)
            signed = self.challenge_signer.sign_intent(encoded, self.credential)
            prepared = await self._validated_execution(intent, encoded, signed, None, token, simulate)

        logger.info("Prepared intent nonce=%d for %s", nonce, self.addresses.smart_account)
        return prepared

    async def prepare_many(self, batches: Sequence[Sequence[Instruction]], fee_amount: int = 0,
                           fee_mint: Optional[Pubkey] = None,
                           token: Optional[TokenAccounts] = None) -> List[PreparedExecution]:
        """
        Authorize several intents with a single passkey signature.

        Intent i uses nonce current + i; they must land in that order. Each
        execution carries the Merkle proof of its own intent hash.
        """
        async with self.lock:
            nonce = await self.ledger.get_nonce(self.addresses.smart_account)
            encoder = IntentEncoder(self.addresses.vault, self.config)
            intents = [self._intent(nonce + i, ops, fee_amount, fee_mint, None) for i, ops in enumerate(batches)]
            encoded = [encoder.encode(intent) for intent in intents]

            tree = IntentMerkleTree([e.digest for e in encoded])
            signed = self.challenge_signer.sign_root(tree.root, self.credential)

            prepared = []
            for intent, enc in zip(intents, encoded):
                prepared.append(await self._validated_execution(intent, enc, signed, tree.proof(enc.digest), token))

        logger.info("Prepared %d intents under root 0x%s", len(prepared), tree.root.hex())
        return prepared

    async def prepare_direct(self, operations: Sequence[Instruction],
                             compute_unit_limit: Optional[int] = None) -> VersionedTransaction:
        """
        Approve and execute through the vault alone, with no passkey check.

        The vault requires the smart account as signer; only the fee payer
        slot is filled here.
        """
        encoder = IntentEncoder(self.addresses.vault, self.config)
        intent = self._intent(0, operations, 0, None, compute_unit_limit)
        package = pack(encoder.encode(intent).resolution.steps)
        instructions = [
            *intent.preamble,
            self.vault_program.approve_execution(),
            self.vault_program.execute_batch(package),
        ]
        message = await self.compressor.compile(self.fee_payer_key, instructions)
        return VersionedTransaction.unsigned(message).sign([self.fee_payer])

    async def simulate(self, operations: Sequence[Instruction], fee_amount: int = 0,
                       fee_mint: Optional[Pubkey] = None,
                       token: Optional[TokenAccounts] = None) -> int:
        """
        Dry-run operations through simulate_batch and return the compute units used.

        The vault ends a successful simulation with its SimulationComplete
        error; any other engine error is raised as-is.
        """
        prepared = await self.prepare(operations, fee_amount, fee_mint, token=token, simulate=True)
        result = await self.ledger.simulate_transaction(prepared.transaction)
        rejection = result.rejection(self.config.vault_program_id)
        if rejection is not None and not rejection.is_simulation_complete:
            raise rejection
        return result.units_consumed or 0

    async def prepare_optimistic(self, operations: Sequence[Instruction], fee_amount: int,
                                 max_slot_offset: int = 60, fee_mint: Optional[Pubkey] = None) -> PreparedOptimistic:
        """Open an optimistic window for the given operations."""
        async with self.lock:
            nonce = await self.ledger.get_nonce(self.addresses.smart_account)
            intent = self._intent(nonce, operations, fee_amount, fee_mint, None)
            max_slot = await self.ledger.get_slot() + max_slot_offset

            window = OptimisticValidationWindow.for_intent(
                intent, self.addresses.vault, max_slot, self.fee_payer_key, self.config
            )
            signed = self.challenge_signer.sign_intent(window.message(), self.credential)
            webauthn_args, table = self._webauthn(signed)

            validation = self.smart_account_program.optimistic_validation(
                tx_payer=self.fee_payer_key,
                max_slot=max_slot,
                target_hash=window.target_hash,
                token_amount=fee_amount,
                webauthn_args=webauthn_args,
                solana_signer=keypair_pubkey(self.solana_signer) if self.solana_signer else None,
                token_mint=fee_mint,
                webauthn_table=table,
            )
            instructions = [validation, secp256r1_verify_instruction(signed, self.credential.public_key)]
            message = await self.compressor.compile(self.fee_payer_key, instructions)

            encoded = IntentEncoder(self.addresses.vault, self.config, vault_writable=None).encode(
                Intent(nonce=nonce, operations=list(operations), fee_amount=None)
            )
            package = pack(encoded.resolution.steps)

        logger.info("Prepared optimistic window until slot %d", max_slot)
        return PreparedOptimistic(
            validation=sign_transaction(message, self._signers()),
            window=window,
            encoded=encoded,
            package=package,
            challenge=signed,
        )

    async def prepare_optimistic_execution(self, window: OptimisticValidationWindow,
                                           operations: Sequence[Instruction]) -> VersionedTransaction:
        """
        Execute operations against an open window.

        The window is checked locally first so that an expired, consumed or
        mismatched execution is never assembled. Once assembled, the window is
        marked executed.
        """
        current_slot = await self.ledger.get_slot()
        async with self.lock:
            nonce = await self.ledger.get_nonce(self.addresses.smart_account)
            encoded = IntentEncoder(self.addresses.vault, self.config, vault_writable=None).encode(
                Intent(nonce=nonce, operations=list(operations), fee_amount=None)
            )
            window.check_executable(current_slot, encoded.digest)

            instructions = [
                self.smart_account_program.validate_optimistic_execution(self.fee_payer_key),
                self.vault_program.execute_batch(pack(encoded.resolution.steps)),
            ]
            message = await self.compressor.compile(self.fee_payer_key, instructions)
            window.mark_executed()
        return VersionedTransaction.unsigned(message).sign([self.fee_payer])

    async def prepare_post_optimistic(self, window: OptimisticValidationWindow, jito_tip_amount: int = 0,
                                      jito_tip_account: Optional[Pubkey] = None,
                                      token: Optional[TokenAccounts] = None) -> VersionedTransaction:
        """Settle fees and clear an executed window."""
        if not window.is_executed:
            raise OptimisticTransactionNotExecuted("Window cannot be cleared before its execution")
        instruction = self.smart_account_program.post_optimistic_execution(
            self.fee_payer_key, jito_tip_amount, jito_tip_account, token
        )
        message = await self.compressor.compile(self.fee_payer_key, [instruction])
        window.clear()
        return VersionedTransaction.unsigned(message).sign([self.fee_payer])


def is_nonce_stale(error: BaseException) -> bool:
    """True when an error means the intent must be rebuilt with a fresh nonce."""
    return isinstance(error, EngineRejection) and error.is_nonce_stale
