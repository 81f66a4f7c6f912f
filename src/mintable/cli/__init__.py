"""Mintable CLI package.

Commands for fetching data, configuring integrations and linking accounts.
"""

from .main import app, main

__all__ = ["app", "main"]
