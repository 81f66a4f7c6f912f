"""CSV export sink.

Every run overwrites the export files with what was fetched.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any

import polars as pl

from ..config import Config, CSVExportConfig
from ..errors import ConfigError, SinkError
from ..models import Account, AccountType

logger = logging.getLogger(__name__)


class CSVExportClient:
    """Writes balances, transactions and holdings to local CSV files."""

    def __init__(self, config: Config):
        export_config = config.integrations.csv_export
        if export_config is None:
            raise ConfigError("CSV export is not configured, run 'mintable csv-export-setup'")
        self.config = config
        self.export_config: CSVExportConfig = export_config

    def _format(self, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, date):
            return value.strftime(self.export_config.date_format)
        return str(value)

    def to_frame(self, rows: list[dict[str, Any]], columns: list[str]) -> pl.DataFrame:
        """Project records onto ``columns`` as a string-typed frame."""
        return pl.DataFrame(
            {column: [self._format(row.get(column)) for row in rows] for column in columns},
            schema={column: pl.String for column in columns},
        )

    def write(self, path: Path, rows: list[dict[str, Any]], columns: list[str]) -> Path:
        path = path.expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.to_frame(rows, columns).write_csv(path)
        except OSError as e:
            logger.error(f"❌ Error writing {path}: {e}")
            raise SinkError("csv-export", f"Error writing {path}: {e}") from e

        logger.info(f"Wrote {len(rows)} rows to {path}")
        return path

    def update_balances(self, accounts: list[Account]) -> None:
        self.write(
            self.export_config.balances_path,
            [account.to_row() for account in accounts],
            self.config.balances.properties,
        )

    def update_transactions(
        self,
        accounts: list[Account],
        account_type: AccountType = AccountType.TRANSACTIONAL,
    ) -> None:
        """Write all transactions of the given account type sorted by date."""
        if account_type == AccountType.INVESTMENT:
            path = self.export_config.investment_transactions_path
            properties = self.config.investment_transactions.properties
            if path is None:
                return
        else:
            path = self.export_config.transactions_path
            properties = self.config.transactions.properties

        transactions = sorted(
            (
                t
                for account in accounts
                if account.account_type == account_type
                for t in account.transactions
            ),
            key=lambda t: t.date,
        )
        self.write(path, [t.to_row() for t in transactions], properties)

    def update_holdings(self, accounts: list[Account]) -> None:
        path = self.export_config.holdings_path
        if path is None:
            return
        holdings = [h.to_row() for account in accounts for h in account.holdings]
        self.write(path, holdings, self.config.holdings.properties)
