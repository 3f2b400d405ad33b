"""
Vault Intents

Intent encoding and batched execution preparation for passkey-controlled
smart-account vaults.

An owner approves a set of ledger operations once, with a passkey. This
package turns those operations into:
- the canonical intent bytes the on-chain authorization engine recomputes
- a WebAuthn-wrapped signature over their hash (or over a Merkle root of many)
- a deconstructed batch the vault program executes
- a compact v0 transaction, compressed through lookup tables when possible
"""

__version__ = "1.0.0"

from .core import *

__all__ = [
    'Pubkey', 'AccountMeta', 'SmartAccountAddresses',
    'Instruction', 'TransactionBuilder', 'VersionedTransaction',
    'EngineConfig',
    'PermissionResolver', 'ResolvedPermissions',
    'Intent', 'IntentEncoder', 'EncodedIntent',
    'ExecutionPackage', 'DeconstructedOperation', 'pack',
    'IntentMerkleTree',
    'ChallengeSigner', 'PasskeyCredential', 'SignedChallenge',
    'OptimisticValidationWindow',
    'LedgerClient', 'TransactionCompressor', 'LookupTableActivator',
    'IntentSession',
    'VaultIntentError', 'EncodingError', 'EngineRejection',
]
