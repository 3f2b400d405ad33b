"""
Vault Intents Core Components

Leaves first: addresses and transactions, permission resolution, intent
encoding, batch packing, Merkle batching, challenge signing, optimistic
windows, compression and the ledger-facing session.
"""

from .accounts import AccountMeta, Pubkey, SmartAccountAddresses, account_id_from_string, find_program_address
from .transactions import (
    AddressLookupTableAccount,
    Instruction,
    MessageV0,
    TransactionBuilder,
    VersionedTransaction,
)
from .config import EngineConfig
from .errors import (
    ChallengeSigningFailure,
    CompressionFailure,
    EncodingError,
    EngineRejection,
    OptimisticTransactionAlreadyExecuted,
    OptimisticTransactionNotExecuted,
    OptimisticValidationExpired,
    PermissionConflict,
    ProofNotFound,
    TransactionHashMismatch,
    VaultIntentError,
)
from .permissions import Permission, PermissionResolver, ResolvedPermissions
from .intent import EncodedIntent, Intent, IntentEncoder, keccak256
from .batch import DeconstructedOperation, ExecutionPackage, pack
from .merkle import IntentMerkleTree
from .challenge import ChallengeSigner, PasskeyCredential, SignedChallenge, secp256r1_verify_instruction
from .optimistic import OptimisticValidationWindow, optimistic_target_hash
from .ledger import LedgerClient, SimulationResult
from .compressor import LookupTableActivator, TransactionCompressor
from .session import IntentSession, PreparedExecution, is_nonce_stale

__all__ = [
    'AccountMeta', 'Pubkey', 'SmartAccountAddresses', 'account_id_from_string', 'find_program_address',
    'AddressLookupTableAccount', 'Instruction', 'MessageV0', 'TransactionBuilder', 'VersionedTransaction',
    'EngineConfig',
    'ChallengeSigningFailure', 'CompressionFailure', 'EncodingError', 'EngineRejection',
    'OptimisticTransactionAlreadyExecuted', 'OptimisticTransactionNotExecuted', 'OptimisticValidationExpired', 'PermissionConflict',
    'ProofNotFound', 'TransactionHashMismatch', 'VaultIntentError',
    'Permission', 'PermissionResolver', 'ResolvedPermissions',
    'EncodedIntent', 'Intent', 'IntentEncoder', 'keccak256',
    'DeconstructedOperation', 'ExecutionPackage', 'pack',
    'IntentMerkleTree',
    'ChallengeSigner', 'PasskeyCredential', 'SignedChallenge', 'secp256r1_verify_instruction',
    'OptimisticValidationWindow', 'optimistic_target_hash',
    'LedgerClient', 'SimulationResult',
    'LookupTableActivator', 'TransactionCompressor',
    'IntentSession', 'PreparedExecution', 'is_nonce_stale',
]
