"""
Account Permission Resolution

The same address often appears in several operation steps with different
flags: a token account read in one step and written in the next. The
authorization engine sees a single transaction, so each address ends up with
one verdict: the logical OR of every appearance.

The vault address is special. It can never sign (only the vault program can
act for it). Its writable flag is either forced by the caller or, when the
caller passes None, left as the steps declare it.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .accounts import AccountMeta, Pubkey
from .errors import EncodingError, PermissionConflict
from .transactions import Instruction


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Permission:
    is_signer: bool
    is_writable: bool

    def merge(self, other: 'Permission') -> 'Permission':
        return Permission(
            is_signer=self.is_signer or other.is_signer,
            is_writable=self.is_writable or other.is_writable,
        )


NO_PERMISSION = Permission(False, False)


@dataclass(frozen=True)
class ResolvedAccount:
    """An account reference carrying its final, merged verdict."""
    pubkey: Pubkey
    is_signer: bool
    is_writable: bool

    def to_meta(self) -> AccountMeta:
        return AccountMeta(self.pubkey, self.is_signer, self.is_writable)


@dataclass(frozen=True)
class ResolvedStep:
    """
    An operation step after permission resolution.

    `program` is the target id dressed as an account reference, with the
    verdict the target received if it also appeared as an account, else
    neither signer nor writable.
    """
    program: ResolvedAccount
    accounts: Tuple[ResolvedAccount, ...]
    data: bytes

    @property
    def program_id(self) -> Pubkey:
        return self.program.pubkey

    def to_instruction(self) -> Instruction:
        return Instruction(
            program_id=self.program_id,
            accounts=[account.to_meta() for account in self.accounts],
            data=self.data,
        )


class ResolvedPermissions:
    """Insertion-ordered map from address to merged permission."""

    def __init__(self, verdicts: Dict[Pubkey, Permission]):
        self._verdicts = dict(verdicts)

    def get(self, pubkey: Pubkey) -> Optional[Permission]:
        return self._verdicts.get(pubkey)

    def __getitem__(self, pubkey: Pubkey) -> Permission:
        try:
            return self._verdicts[pubkey]
        except KeyError:
            raise PermissionConflict(f"No resolved permission for {pubkey}") from None

    def __contains__(self, pubkey: Pubkey) -> bool:
        return pubkey in self._verdicts

    def __iter__(self) -> Iterator[Pubkey]:
        return iter(self._verdicts)

    def __len__(self) -> int:
        return len(self._verdicts)

    def items(self):
        return self._verdicts.items()

    @property
    def num_signers(self) -> int:
        return sum(1 for permission in self._verdicts.values() if permission.is_signer)

    def __repr__(self) -> str:
        return f"ResolvedPermissions({len(self)} accounts, {self.num_signers} signers)"


@dataclass(frozen=True)
class Resolution:
    permissions: ResolvedPermissions
    steps: Tuple[ResolvedStep, ...]


class PermissionResolver:
    """
    Merges duplicate account references across operation steps.

    Args:
        vault: the smart account's vault address
        vault_writable: writable verdict forced onto the vault, or None to
            keep the merged verdict of the steps
    """

    def __init__(self, vault: Pubkey, vault_writable: Optional[bool] = True):
        self.vault = vault
        self.vault_writable = vault_writable

    def merge(self, steps: Sequence[Instruction]) -> ResolvedPermissions:
        verdicts: Dict[Pubkey, Permission] = {}

        for index, step in enumerate(steps):
            _check_pubkey(step.program_id, f"step {index} program id")
            for account in step.accounts:
                _check_pubkey(account.pubkey, f"step {index} account")
                seen = Permission(bool(account.is_signer), bool(account.is_writable))
                previous = verdicts.get(account.pubkey)
                verdicts[account.pubkey] = previous.merge(seen) if previous else seen

        if self.vault in verdicts:
            is_writable = verdicts[self.vault].is_writable if self.vault_writable is None else self.vault_writable
            verdicts[self.vault] = Permission(is_signer=False, is_writable=is_writable)

        return ResolvedPermissions(verdicts)

    def resolve(self, steps: Sequence[Instruction]) -> Resolution:
        """Merge permissions, then rewrite every step with the final verdicts."""
        permissions = self.merge(steps)

        resolved = []
        for step in steps:
            program = permissions.get(step.program_id) or NO_PERMISSION
            accounts = []
            for account in step.accounts:
                verdict = permissions[account.pubkey]
                accounts.append(ResolvedAccount(account.pubkey, verdict.is_signer, verdict.is_writable))
            resolved.append(ResolvedStep(
                program=ResolvedAccount(step.program_id, program.is_signer, program.is_writable),
                accounts=tuple(accounts),
                data=bytes(step.data),
            ))

        logger.debug("Resolved %d steps over %r", len(resolved), permissions)
        return Resolution(permissions=permissions, steps=tuple(resolved))


def _check_pubkey(value, what: str):
    if not isinstance(value, Pubkey):
        raise EncodingError(f"{what} is not a 32-byte address: {value!r}")
