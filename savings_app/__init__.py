"""
Savings App - Recurring Savings Ledger and Relayer

A custodial savings ledger where owners pre-authorize a recurring token
transfer, plus the off-chain relayer that discovers plans from ledger
notifications and executes them once per interval for a fee.
"""

__version__ = "0.1.0"
__author__ = "Savings Team"
