"""
Transaction Compression

A vault execution repeats many addresses: the vault, its state, every program
and token account the steps touch. Through an address lookup table each of
them costs one byte instead of 32, which is often the difference between
fitting in a packet and not.

Lookup tables have a warm-up: addresses added by an extension are usable only
once the ledger has moved past the extension's slot. The activator polls for
that with a bounded number of attempts; if the table never becomes usable the
transaction is built without it.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from ecdsa import SigningKey

from ..programs.lookup_table import AddressLookupTableProgram
from .accounts import Pubkey
from .config import EngineConfig
from .errors import CompressionFailure, EncodingError
from .ledger import LedgerClient
from .transactions import (
    PACKET_DATA_SIZE,
    SIGNATURE_LENGTH,
    AddressLookupTableAccount,
    Instruction,
    MessageV0,
    TransactionBuilder,
    encode_length,
    keypair_pubkey,
    sign_transaction,
)


logger = logging.getLogger(__name__)

EXTEND_CHUNK_SIZE = 20


class LookupTableActivator:
    """Waits for a lookup table to become usable."""

    def __init__(self, ledger: LedgerClient, config: Optional[EngineConfig] = None):
        self.ledger = ledger
        self.config = config or EngineConfig()

    async def wait_until_usable(self, address: Pubkey) -> AddressLookupTableAccount:
        attempts = self.config.lookup_table_poll_attempts
        for attempt in range(1, attempts + 1):
            table = await self.ledger.get_lookup_table(address)
            slot = await self.ledger.get_slot()
            if table is not None and table.is_usable(slot):
                logger.debug("Lookup table %s usable at slot %d", address, slot)
                return table
            logger.debug("Lookup table %s not usable yet (attempt %d/%d)", address, attempt, attempts)
            if attempt < attempts:
                await asyncio.sleep(self.config.lookup_table_poll_interval)

        raise CompressionFailure(f"Lookup table {address} did not activate after {attempts} attempts")


def transaction_size(message: MessageV0) -> int:
    signatures = message.header.num_required_signatures
    return len(encode_length(signatures)) + signatures * SIGNATURE_LENGTH + len(message.serialize())


class TransactionCompressor:
    """Compiles instructions into a v0 message, through a lookup table when one is usable."""

    def __init__(self, ledger: LedgerClient, config: Optional[EngineConfig] = None):
        self.ledger = ledger
        self.config = config or EngineConfig()
        self.activator = LookupTableActivator(ledger, self.config)

    async def compile(self, fee_payer: Pubkey, instructions: Sequence[Instruction],
                      lookup_table: Optional[Pubkey] = None) -> MessageV0:
        """
        Build the v0 message for a transaction.

        Raises:
            EncodingError: if the transaction does not fit in a packet
        """
        lookup_table = lookup_table or self.config.lookup_table_address
        tables: List[AddressLookupTableAccount] = []
        if lookup_table is not None:
            try:
                tables.append(await self.activator.wait_until_usable(lookup_table))
            except CompressionFailure as e:
                logger.warning("Building uncompressed transaction: %s", e)

        blockhash = await self.ledger.get_latest_blockhash()
        message = TransactionBuilder(fee_payer, blockhash).add_instructions(instructions).build(tables)

        size = transaction_size(message)
        if size > PACKET_DATA_SIZE:
            raise EncodingError(f"Transaction is {size} bytes, limit is {PACKET_DATA_SIZE}")

        logger.info(
            "Assembled transaction: %d instructions, %d bytes%s",
            len(instructions), size, " (compressed)" if message.address_table_lookups else "",
        )
        return message

    async def create_lookup_table(self, authority: SigningKey, payer: SigningKey,
                                  addresses: Sequence[Pubkey]) -> Pubkey:
        """
        Create a lookup table holding the given addresses.

        The table is created and extended in chunks; callers should wait for
        activation before compressing against it.
        """
        authority_key = keypair_pubkey(authority)
        payer_key = keypair_pubkey(payer)
        signers = [payer] if authority_key == payer_key else [payer, authority]

        slot = await self.ledger.get_slot()
        create, table = AddressLookupTableProgram.create_lookup_table(authority_key, payer_key, slot)

        chunks = [addresses[i:i + EXTEND_CHUNK_SIZE] for i in range(0, len(addresses), EXTEND_CHUNK_SIZE)]
        for index, chunk in enumerate(chunks or [[]]):
            instructions = [create] if index == 0 else []
            if chunk:
                instructions.append(
                    AddressLookupTableProgram.extend_lookup_table(table, authority_key, payer_key, chunk)
                )
            blockhash = await self.ledger.get_latest_blockhash()
            message = TransactionBuilder(payer_key, blockhash).add_instructions(instructions).build()
            # Create alone only needs the payer's signature
            needed = [s for s in signers if keypair_pubkey(s) in message.signer_keys()]
            await self.ledger.send_transaction(sign_transaction(message, needed))

        logger.info("Created lookup table %s with %d addresses", table, len(addresses))
        return table
