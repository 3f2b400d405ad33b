"""
Error Taxonomy

Every failure the engine raises derives from VaultIntentError. Local errors
describe bad caller input or a locally detectable rejection; EngineRejection
carries a failure reported by the on-chain programs, untouched.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple


class VaultIntentError(Exception):
    """Base class for all engine errors."""


class EncodingError(VaultIntentError):
    """Raised when caller input cannot be encoded."""


class PermissionConflict(VaultIntentError):
    """Raised when a resolved permission is requested for an unknown address."""


class ProofNotFound(VaultIntentError):
    """Raised when a Merkle proof is requested for a leaf that is not in the tree."""


class ChallengeSigningFailure(VaultIntentError):
    """Raised when the passkey credential is unavailable or refuses to sign."""


class CompressionFailure(VaultIntentError):
    """Raised when a lookup table never becomes usable."""


class OptimisticValidationExpired(VaultIntentError):
    """The optimistic validation window has passed its max slot."""


class OptimisticTransactionAlreadyExecuted(VaultIntentError):
    """The optimistic validation window was already consumed."""


class TransactionHashMismatch(VaultIntentError):
    """The operations being executed do not hash to the pinned target."""


class OptimisticTransactionNotExecuted(VaultIntentError):
    """The optimistic window is being cleared before its execution happened."""


# Published error tables of the on-chain programs: code -> (name, message)
SMART_ACCOUNT_ERRORS: Dict[int, Tuple[str, str]] = {
    6000: ("NotCreator", "Smart account creation only through creator"),
    6001: ("InvalidVaultProgram", "Invalid vault program"),
    6002: ("NotAdmin", "Only updated by admin"),
    6003: ("PasskeyAlreadyExists", "Passkey already exists"),
    6004: ("RemovingLastPasskey", "Removing last passkey"),
    6005: ("PasskeyNotFound", "Passkey not found"),
    6006: ("InvalidPasskeySession", "Invalid passkey session"),
    6007: ("InvalidSignerSession", "Invalid signer session"),
    6008: ("RecoverySignerNotFound", "Recovery signer not found"),
    6009: ("RecoverySignerAlreadyExists", "Recovery signer already exists"),
    6010: ("InvalidAdmin", "Invalid admin"),
    6011: ("UnauthorizedSigner", "Unauthorized signer"),
    6012: ("RecoveryExpired", "Recovery expired"),
    6013: ("InvalidNonce", "Invalid nonce"),
    6014: ("InvalidRecoveryTimestamp", "Invalid recovery timestamp"),
    6015: ("InvalidTransactionStructure", "Invalid transaction structure"),
    6016: ("Secp256r1IxNotFound", "Secp256r1 instruction not found"),
    6017: ("InvalidVaultIx", "Invalid vault instruction"),
    6018: ("SimulationComplete", "Simulation completed successfully"),
    6019: ("InvalidTransactionInBuffer", "Invalid transaction hash in buffer"),
    6020: ("BufferAccountNotAuthorizedToBeClosed", "Buffer account not authorized to be closed"),
    6021: ("MissingRequiredAccounts", "Missing required accounts"),
    6022: ("ExcessAccounts", "Excess accounts"),
    6023: ("BufferAccountExpired", "Buffer account expired"),
    6024: ("RestrictedSigner", "Restricted signer"),
    6025: ("OptimisticValidationExpired", "Optimistic validation expired"),
    6026: ("InvalidTransactionHash", "Invalid transaction hash"),
    6027: ("OptimisticTransactionNotExecuted", "Optimistic transaction not executed"),
    6028: ("InvalidMaxSlot", "Invalid max slot"),
    6029: ("OptimisticValidationStateNotInitialized", "Optimistic validation state not initialized"),
    6030: ("OptimisticTransactionAlreadyExecuted", "Optimistic transaction already executed"),
    6031: ("TokenMintNotInitialized", "Token mint not initialized"),
    6032: ("RequiredOptionalAccountNotFound", "Required optional account not found"),
    6033: ("TokenTransferArgsNotFound", "Token transfer args not found"),
    6034: ("InvalidSmartAccountType", "Invalid smart account type in arguments"),
    6035: ("WebAuthnArgsNotFound", "Webauthn args not found"),
    6036: ("InvalidAuthorizationModel", "Invalid authorization model"),
    6037: ("InvalidMandatorySigner", "Invalid mandatory signer"),
    6038: ("MandatorySignerNotFound", "Mandatory signer not found"),
    6039: ("InitialSolanaKeySignerNotFound", "Initial Solana keysigner not found"),
    6040: ("InitialSolanaKeySignerNotAllowed", "Initial Solana keysigner not allowed"),
    6041: ("SolanaKeyNotSupportedInPayMultisig",
           "Solana key signers not supported in PayMultisig authorization model"),
    6042: ("SolanaKeyNotFound", "Solana key not found"),
    6043: ("InvalidWebAuthnIndex", "Invalid webauthn index"),
    6044: ("DuplicateEntry", "Duplicate entry"),
    6045: ("EntryNotFound", "Entry not found"),
    6046: ("MissingWebAuthnTable", "Missing WebAuthn table"),
    6047: ("NotWebauthnModerator", "Not WebAuthn moderator"),
    6048: ("InvalidTxPayer", "Invalid tx payer"),
    6049: ("ShouldSerializeVaultIxUsingSerializeVaultIx",
           "Should serialize vault instruction using serialize_vault_ix"),
    6050: ("InvalidRecoverySigner", "Invalid recovery signer"),
    6051: ("InvalidResponseType", "Invalid response type"),
    6052: ("InvalidChallenge", "Invalid challenge"),
    6053: ("InvalidSolTransfer", "Invalid sol transfer"),
    6054: ("RemovingLastSigner", "Removing last signer"),
    6055: ("JitoTipAccountNotFound", "Jito tip account not found when jito tip amount is greater than 0"),
}

VAULT_ERRORS: Dict[int, Tuple[str, str]] = {
    6000: ("InvalidVersion", "Invalid version"),
    6001: ("InvalidAdmin", "Invalid admin"),
    6002: ("InvalidMandatorySigner", "Invalid mandatory signer"),
    6003: ("InvalidOwner", "Invalid account owner"),
    6004: ("InvalidAccountData", "Invalid account data structure"),
    6005: ("UnauthorizedProgram", "Unauthorized program"),
    6006: ("UnauthorizedSmartAccount", "Unauthorized smart account"),
    6007: ("Unauthorized", "Unauthorized admin"),
    6008: ("ProgramNotFound", "Program not found"),
    6009: ("UnauthorizedExecution", "Unauthorized execution"),
    6010: ("MissingRequiredAccounts", "Missing required accounts"),
    6011: ("AccountOrderMismatch", "Account order mismatch"),
    6012: ("InvalidProgramAccount", "Invalid program account"),
    6013: ("ProgramAlreadyAuthorized", "Program already authorized"),
    6014: ("SimulationComplete", "Simulation completed successfully"),
}

INVALID_NONCE = 6013

_ANCHOR_ERROR = re.compile(
    r"Error Code: (?P<name>\w+)\. Error Number: (?P<code>\d+)\. Error Message: (?P<message>.*?)\.?$"
)
_CUSTOM_ERROR = re.compile(r"Program (?P<program>\w+) failed: custom program error: 0x(?P<code>[0-9a-fA-F]+)")
_PROGRAM_INVOKE = re.compile(r"Program (?P<program>\w+) invoke \[\d+\]")
_PROGRAM_EXIT = re.compile(r"Program (?P<program>\w+) (?:success|failed)")


class EngineRejection(VaultIntentError):
    """
    A failure reported by the smart-account or vault program.

    The program, numeric code, error name and message are kept exactly as the
    engine reported them.
    """

    def __init__(self, code: int, name: Optional[str] = None, message: Optional[str] = None,
                 program: Optional[str] = None, logs: Iterable[str] = ()):
        self.code = code
        self.name = name
        self.message = message
        self.program = program
        self.logs = list(logs)
        super().__init__(f"{name or 'Unknown'} ({code}): {message or 'no message'}")

    @property
    def is_nonce_stale(self) -> bool:
        """True when refreshing the nonce and re-signing is the right recovery."""
        return self.code == INVALID_NONCE and self.name in (None, "InvalidNonce")

    @property
    def is_simulation_complete(self) -> bool:
        return self.name == "SimulationComplete"

    @classmethod
    def from_logs(cls, logs: Iterable[str], vault_program_id: Optional[str] = None) -> Optional['EngineRejection']:
        """
        Extract the engine rejection from transaction logs.

        Anchor's "Error Code: ... Error Number: ... Error Message: ..." line
        wins; otherwise a "custom program error: 0x.." line is mapped through
        the published tables. Returns None when the logs hold neither.
        """
        logs = list(logs)
        # Programs currently executing, innermost last
        invoked: List[str] = []
        custom = None

        for line in logs:
            invoke = _PROGRAM_INVOKE.search(line)
            if invoke:
                invoked.append(invoke.group("program"))
                continue

            anchor = _ANCHOR_ERROR.search(line)
            if anchor:
                return cls(
                    code=int(anchor.group("code")),
                    name=anchor.group("name"),
                    message=anchor.group("message"),
                    program=invoked[-1] if invoked else None,
                    logs=logs,
                )

            match = _CUSTOM_ERROR.search(line)
            if match and custom is None:
                custom = match

            leaving = _PROGRAM_EXIT.search(line)
            if leaving and invoked and invoked[-1] == leaving.group("program"):
                invoked.pop()

        if custom is None:
            return None

        code = int(custom.group("code"), 16)
        program = custom.group("program")
        table = VAULT_ERRORS if vault_program_id and program == vault_program_id else SMART_ACCOUNT_ERRORS
        name, message = table.get(code, (None, None))
        return cls(code=code, name=name, message=message, program=program, logs=logs)
