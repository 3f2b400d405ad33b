"""
Address Lookup Table Program Instructions

A lookup table is created at an address derived from its authority and a
recent slot, then extended with the addresses transactions should reference
by index.

Based on: https://solana.com/docs/advanced/lookup-tables
"""

import struct
from typing import Sequence, Tuple

from ..core.accounts import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    AccountMeta,
    Pubkey,
    find_program_address,
)
from ..core.transactions import Instruction


CREATE_LOOKUP_TABLE = 0
EXTEND_LOOKUP_TABLE = 2
MAX_ADDRESSES = 256


def lookup_table_address(authority: Pubkey, recent_slot: int) -> Tuple[Pubkey, int]:
    return find_program_address(
        [authority.raw, recent_slot.to_bytes(8, "little")], ADDRESS_LOOKUP_TABLE_PROGRAM_ID
    )


class AddressLookupTableProgram:
    program_id = ADDRESS_LOOKUP_TABLE_PROGRAM_ID

    @staticmethod
    def create_lookup_table(authority: Pubkey, payer: Pubkey, recent_slot: int) -> Tuple[Instruction, Pubkey]:
        """Returns the create instruction and the new table's address."""
        table, bump = lookup_table_address(authority, recent_slot)
        instruction = Instruction(
            program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
            accounts=[
                AccountMeta(table, is_signer=False, is_writable=True),
                AccountMeta(authority, is_signer=False, is_writable=False),
                AccountMeta(payer, is_signer=True, is_writable=True),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
            data=struct.pack("<IQB", CREATE_LOOKUP_TABLE, recent_slot, bump),
        )
        return instruction, table

    @staticmethod
    def extend_lookup_table(table: Pubkey, authority: Pubkey, payer: Pubkey,
                            addresses: Sequence[Pubkey]) -> Instruction:
        if not addresses:
            raise ValueError("Nothing to add to the lookup table")
        if len(addresses) > MAX_ADDRESSES:
            raise ValueError(f"A lookup table holds at most {MAX_ADDRESSES} addresses")
        return Instruction(
            program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
            accounts=[
                AccountMeta(table, is_signer=False, is_writable=True),
                AccountMeta(authority, is_signer=True, is_writable=False),
                AccountMeta(payer, is_signer=True, is_writable=True),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
            data=struct.pack("<IQ", EXTEND_LOOKUP_TABLE, len(addresses)) + b"".join(a.raw for a in addresses),
        )
