import asyncio
import hashlib

import pytest

from vault_intents.core.accounts import Pubkey, SmartAccountAddresses, b58encode
from vault_intents.core.challenge import PasskeyCredential
from vault_intents.core.config import EngineConfig
from vault_intents.core.ledger import LedgerClient, SimulationResult
from vault_intents.core.transactions import keypair_from_seed


def key(label: str) -> Pubkey:
    """Deterministic test address."""
    return Pubkey(hashlib.sha256(label.encode()).digest())


class FakeLedger(LedgerClient):
    """In-memory ledger that records every call."""

    def __init__(self, nonce: int = 0, slot: int = 100):
        self.nonce = nonce
        self.slot = slot
        self.slot_step = 0
        self.blockhash = b58encode(hashlib.sha256(b"blockhash").digest())
        self.accounts = {}
        self.simulation = SimulationResult()
        self.simulated = []
        self.sent = []
        self.events = []

    async def get_nonce(self, smart_account):
        self.events.append("nonce")
        await asyncio.sleep(0)
        return self.nonce

    async def get_latest_blockhash(self):
        self.events.append("blockhash")
        await asyncio.sleep(0)
        return self.blockhash

    async def get_slot(self):
        self.slot += self.slot_step
        return self.slot

    async def get_account_data(self, address):
        return self.accounts.get(address)

    async def simulate_transaction(self, transaction):
        self.simulated.append(transaction)
        return self.simulation

    async def send_transaction(self, transaction):
        self.sent.append(transaction)
        return transaction.signature()


@pytest.fixture
def config():
    return EngineConfig(lookup_table_poll_interval=0)


@pytest.fixture
def addresses(config):
    return SmartAccountAddresses.derive(
        hashlib.sha256(b"alice").digest(),
        config.smart_account_program_id,
        config.vault_program_id,
    )


@pytest.fixture
def vault(addresses):
    return addresses.vault


@pytest.fixture
def credential():
    return PasskeyCredential.from_secret(hashlib.sha256(b"passkey").digest())


@pytest.fixture
def fee_payer():
    signing_key, _ = keypair_from_seed(hashlib.sha256(b"fee payer").digest())
    return signing_key


@pytest.fixture
def ledger():
    return FakeLedger(nonce=5)
