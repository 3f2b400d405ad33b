"""
WebAuthn Challenge Signing

Passkeys never sign raw bytes: the authenticator signs a WebAuthn assertion
whose client data embeds the challenge. The smart-account program rebuilds
the same assertion from a fixed template, so the envelope here is fixed too:

    clientDataJSON = {"type":"webauthn.get","challenge":"<b64url digest>",
                      "origin":"<origin>","androidPackageName":"<package>"}
    authenticatorData = sha256(origin) ++ flags(0x01) ++ counter(0)
    message = sha256(authenticatorData ++ sha256(clientDataJSON))

The message is signed with ECDSA over secp256r1 (P-256) and SHA-256, with
the signature as 64 bytes r ++ s in low-S form. The native secp256r1
precompile checks it in the same transaction.

Based on: https://www.w3.org/TR/webauthn-2/#sctn-op-get-assertion
"""

import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

from ecdsa import BadSignatureError, NIST256p, SigningKey, VerifyingKey
from ecdsa.util import sigencode_string_canonize

from .accounts import SECP256R1_PROGRAM_ID
from .config import EngineConfig
from .errors import ChallengeSigningFailure, EncodingError
from .intent import EncodedIntent, keccak256
from .transactions import Instruction


logger = logging.getLogger(__name__)

AUTH_DATA_FLAGS = b"\x01"          # User present
AUTH_DATA_COUNTER = b"\x00" * 4
AUTH_DATA_LENGTH = 37
COMPRESSED_PUBKEY_LENGTH = 33
SIGNATURE_LENGTH = 64

# secp256r1 precompile layout: 2-byte header, one 14-byte offsets record
SIGNATURE_OFFSETS_START = 2
SIGNATURE_OFFSETS_SIZE = 14
CURRENT_INSTRUCTION = 0xFFFF


def base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


class PasskeyCredential:
    """
    A registered passkey able to sign WebAuthn messages.

    A credential without a signing key is locked.
    """

    def __init__(self, signing_key: Optional[SigningKey]):
        if signing_key is not None and signing_key.curve != NIST256p:
            raise ValueError("Passkey credentials use the NIST P-256 curve")
        self.signing_key = signing_key

    @classmethod
    def generate(cls) -> 'PasskeyCredential':
        return cls(SigningKey.generate(curve=NIST256p))

    @classmethod
    def from_secret(cls, secret: bytes) -> 'PasskeyCredential':
        return cls(SigningKey.from_string(secret, curve=NIST256p))

    @property
    def is_locked(self) -> bool:
        return self.signing_key is None

    @property
    def public_key(self) -> bytes:
        """33-byte compressed public key."""
        if self.signing_key is None:
            raise ChallengeSigningFailure("Passkey credential is locked")
        return self.signing_key.verifying_key.to_string("compressed")

    def sign(self, message: bytes) -> bytes:
        if self.signing_key is None:
            raise ChallengeSigningFailure("Passkey credential is locked")
        return self.signing_key.sign_deterministic(
            message, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize
        )


@dataclass(frozen=True)
class SignedChallenge:
    message: bytes
    signature: bytes
    authenticator_data: bytes
    envelope_json: str
    challenge: bytes

    def verify(self, public_key: bytes) -> bool:
        """Check the signature against a compressed P-256 public key."""
        verifying_key = VerifyingKey.from_string(public_key, curve=NIST256p)
        try:
            return verifying_key.verify(self.signature, self.message, hashfunc=hashlib.sha256)
        except BadSignatureError:
            return False


class ChallengeSigner:
    """Wraps digests in the WebAuthn envelope and has a passkey sign them."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    @property
    def authenticator_data(self) -> bytes:
        return hashlib.sha256(self.config.webauthn_origin.encode()).digest() + AUTH_DATA_FLAGS + AUTH_DATA_COUNTER

    def envelope_json(self, challenge: bytes) -> str:
        # Key order and compact separators are part of the contract
        envelope = {
            "type": "webauthn.get",
            "challenge": base64url(challenge),
            "origin": self.config.webauthn_origin,
            "androidPackageName": self.config.android_package_name,
        }
        return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)

    def webauthn_message(self, challenge: bytes) -> bytes:
        client_hash = hashlib.sha256(self.envelope_json(challenge).encode()).digest()
        return hashlib.sha256(self.authenticator_data + client_hash).digest()

    def sign_intent(self, intent: Union[EncodedIntent, bytes], credential: Optional[PasskeyCredential]) -> SignedChallenge:
        """Hashed mode: the challenge is keccak256 of the intent bytes."""
        data = intent.data if isinstance(intent, EncodedIntent) else bytes(intent)
        return self._sign(keccak256(data), credential)

    def sign_root(self, root: bytes, credential: Optional[PasskeyCredential]) -> SignedChallenge:
        """Raw mode: a 32-byte digest, typically a Merkle root, is the challenge."""
        if not isinstance(root, (bytes, bytearray)) or len(root) != 32:
            raise EncodingError("Raw challenges must be 32-byte digests")
        return self._sign(bytes(root), credential)

    def _sign(self, challenge: bytes, credential: Optional[PasskeyCredential]) -> SignedChallenge:
        if credential is None or getattr(credential, "is_locked", False):
            raise ChallengeSigningFailure("No usable passkey credential")

        message = self.webauthn_message(challenge)
        try:
            signature = credential.sign(message)
        except ChallengeSigningFailure:
            raise
        except Exception as e:
            raise ChallengeSigningFailure(f"Passkey refused to sign: {e}") from e

        if len(signature) != SIGNATURE_LENGTH:
            raise ChallengeSigningFailure(f"Passkey returned a {len(signature)}-byte signature")

        logger.debug("Signed challenge 0x%s", challenge.hex())
        return SignedChallenge(
            message=message,
            signature=signature,
            authenticator_data=self.authenticator_data,
            envelope_json=self.envelope_json(challenge),
            challenge=challenge,
        )


def secp256r1_verify_instruction(signed: SignedChallenge, public_key: bytes) -> Instruction:
    """
    Native secp256r1 precompile instruction verifying one signature.

    Data: num_signatures, padding, one offsets record (all u16 LE, every
    instruction index pointing at this instruction), then the public key,
    the signature and the message.
    """
    if len(public_key) != COMPRESSED_PUBKEY_LENGTH:
        raise EncodingError(f"Expected a {COMPRESSED_PUBKEY_LENGTH}-byte compressed public key")

    public_key_offset = SIGNATURE_OFFSETS_START + SIGNATURE_OFFSETS_SIZE
    signature_offset = public_key_offset + COMPRESSED_PUBKEY_LENGTH
    message_offset = signature_offset + SIGNATURE_LENGTH

    offsets = b"".join(value.to_bytes(2, "little") for value in (
        signature_offset, CURRENT_INSTRUCTION,
        public_key_offset, CURRENT_INSTRUCTION,
        message_offset, len(signed.message), CURRENT_INSTRUCTION,
    ))

    data = bytes([1, 0]) + offsets + public_key + signed.signature + signed.message
    return Instruction(program_id=SECP256R1_PROGRAM_ID, accounts=[], data=data)
