"""Mintable: pull balances and transactions from banking providers into spreadsheets.

This package provides:
- Provider clients for Plaid, MX, Finicity and local CSV exports
- Sink clients that write accounts and transactions to Google Sheets or CSV files
- A fetch orchestrator tying providers and sinks together
- A Typer-based command line interface (`mintable fetch`, `mintable setup`, ...)
"""

__version__ = "0.1.0"
