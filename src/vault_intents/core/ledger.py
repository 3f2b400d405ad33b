"""
Ledger Client Interface

The engine's only view of the network. Everything here is asynchronous and
awaited in sequence by the caller; implementations own transport, retries
and commitment levels.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .accounts import Pubkey
from .errors import EngineRejection
from .transactions import AddressLookupTableAccount, VersionedTransaction


logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    err: Optional[Any] = None
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    def rejection(self, vault_program_id: Optional[Pubkey] = None) -> Optional[EngineRejection]:
        if self.err is None:
            return None
        rejection = EngineRejection.from_logs(
            self.logs, str(vault_program_id) if vault_program_id else None
        )
        if rejection is None:
            rejection = EngineRejection(code=-1, message=str(self.err), logs=self.logs)
        return rejection


class LedgerClient(ABC):
    """Asynchronous access to ledger state."""

    @abstractmethod
    async def get_nonce(self, smart_account: Pubkey) -> int:
        """Current sequence counter of a smart account."""

    @abstractmethod
    async def get_latest_blockhash(self) -> str:
        """Recent blockhash, base58."""

    @abstractmethod
    async def get_slot(self) -> int:
        ...

    @abstractmethod
    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""

    @abstractmethod
    async def simulate_transaction(self, transaction: VersionedTransaction) -> SimulationResult:
        ...

    @abstractmethod
    async def send_transaction(self, transaction: VersionedTransaction) -> str:
        """Submit a signed transaction and return its signature."""

    async def get_lookup_table(self, address: Pubkey) -> Optional[AddressLookupTableAccount]:
        data = await self.get_account_data(address)
        if data is None:
            return None
        return AddressLookupTableAccount.deserialize(address, data)
