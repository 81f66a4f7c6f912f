"""Sinks that persist fetched accounts (Google Sheets, CSV export)."""

from typing import Protocol

from ..config import Config
from ..errors import ConfigError
from ..models import Account, AccountType, IntegrationId
from .csv_export import CSVExportClient
from .google import GoogleSheetsClient
from .ranges import DataRange, Range, column_letter, translate_range


class SinkClient(Protocol):
    """Protocol implemented by every sink."""

    def update_balances(self, accounts: list[Account]) -> None: ...

    def update_transactions(
        self, accounts: list[Account], account_type: AccountType = ...
    ) -> None: ...

    def update_holdings(self, accounts: list[Account]) -> None: ...


def get_sink_client(integration: IntegrationId | str, config: Config) -> SinkClient:
    """Build the sink selected by a ``balances``/``transactions`` section.

    Raises:
        ConfigError: If the integration is not a sink
    """
    integration = IntegrationId(integration)
    if integration == IntegrationId.GOOGLE:
        return GoogleSheetsClient(config)
    if integration == IntegrationId.CSV_EXPORT:
        return CSVExportClient(config)
    raise ConfigError(f"'{integration.value}' is not a sink integration")


__all__ = [
    "CSVExportClient",
    "DataRange",
    "GoogleSheetsClient",
    "Range",
    "SinkClient",
    "column_letter",
    "get_sink_client",
    "translate_range",
]
