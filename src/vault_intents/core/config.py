"""
Engine Configuration

Program ids, the fixed WebAuthn envelope fields and tuning knobs, read from
VAULT_INTENTS_* environment variables (12-factor style) using pydantic
settings. A config is built once and passed explicitly to the components
that need it.

Usage:

    config = EngineConfig()                         # defaults + environment
    config = EngineConfig(webauthn_origin="...")    # explicit values win
"""

from typing import Annotated, Any, Mapping, Optional

from pydantic import Field, PlainValidator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .accounts import Pubkey


ENV_PREFIX = "VAULT_INTENTS_"

DEFAULT_SMART_ACCOUNT_PROGRAM_ID = Pubkey.from_string("sa12qbQyuQqEaDcEqEPKmZEGTdzSMaqj87nKRYbE3QE")
DEFAULT_VAULT_PROGRAM_ID = Pubkey.from_string("va1t8sdGkReA6XFgAeZGXmdQoiEtMirwy4ifLv7yGdH")


def _to_pubkey(v: Any) -> Pubkey:
    if isinstance(v, Pubkey):
        return v
    if isinstance(v, str):
        return Pubkey.from_string(v)
    if isinstance(v, (bytes, bytearray)):
        return Pubkey(bytes(v))
    raise ValueError(f"Expected a base58 address, got {v!r}")


def _to_optional_pubkey(v: Any) -> Optional[Pubkey]:
    return None if v is None else _to_pubkey(v)


# Base58 text from the environment, never JSON
PubkeyField = Annotated[Pubkey, NoDecode, PlainValidator(_to_pubkey)]
OptionalPubkeyField = Annotated[Optional[Pubkey], NoDecode, PlainValidator(_to_optional_pubkey)]


class EngineConfig(BaseSettings):
    """Engine settings. Frozen; derive variants with `with_overrides`."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        frozen=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    smart_account_program_id: PubkeyField = Field(
        default=DEFAULT_SMART_ACCOUNT_PROGRAM_ID,
        description="Authorization engine (smart account) program id.",
    )
    vault_program_id: PubkeyField = Field(
        default=DEFAULT_VAULT_PROGRAM_ID,
        description="Vault program id.",
    )
    webauthn_origin: str = Field(
        default="https://example.com",
        description="Origin embedded in every WebAuthn envelope.",
    )
    android_package_name: str = Field(
        default="com.okinc.okex.gp",
        description="Application package identifier embedded in every WebAuthn envelope.",
    )
    max_payload_size: int = Field(
        default=1232,
        gt=0,
        description="Largest accepted instruction payload, in bytes.",
    )
    lookup_table_poll_attempts: int = Field(
        default=10,
        ge=1,
        description="How many times to poll a lookup table for activation.",
    )
    lookup_table_poll_interval: float = Field(
        default=1.0,
        ge=0,
        description="Seconds between lookup table polls.",
    )
    lookup_table_address: OptionalPubkeyField = Field(
        default=None,
        description="Pre-existing lookup table used to compress transactions.",
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EngineConfig':
        """
        Build a config from VAULT_INTENTS_* variables.

        Reads the process environment. Values from a given mapping take
        precedence over it. Each field maps to its upper-cased name, e.g.
        VAULT_INTENTS_VAULT_PROGRAM_ID.
        """
        if environ is None:
            return cls()
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw:
                values[name] = raw
        return cls(**values)

    def with_overrides(self, **changes) -> 'EngineConfig':
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(changes)
        return type(self)(**values)
