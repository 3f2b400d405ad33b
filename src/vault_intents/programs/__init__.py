"""
Program Instruction Builders

Instructions for the programs an intent execution touches:
- System Program: lamport transfers
- Compute Budget: unit limit and price directives
- Address Lookup Table: table creation and extension
- Smart account and vault programs: validation and batch execution
"""

from .system import SystemProgram
from .compute_budget import ComputeBudgetProgram
from .lookup_table import AddressLookupTableProgram
from .smart_account import SmartAccountProgram, TokenAccounts, VaultProgram, WebAuthnArgs

__all__ = [
    'SystemProgram',
    'ComputeBudgetProgram',
    'AddressLookupTableProgram',
    'SmartAccountProgram',
    'TokenAccounts',
    'VaultProgram',
    'WebAuthnArgs',
]
