"""Command implementations registered on the Mintable CLI."""
