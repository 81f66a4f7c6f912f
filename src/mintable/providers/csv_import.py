"""CSV import provider.

Reads transactions from local CSV exports (e.g. a bank's statement download).
Each configured CSV account becomes one ``Account`` whose id is the config id.
"""

import glob
import hashlib
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

import polars as pl
from pydantic import ValidationError

from ..config import CSVAccountConfig
from ..errors import FetchErrorKind
from ..models import Account, IntegrationId, Transaction
from .base import FetchResult

logger = logging.getLogger(__name__)

AMOUNT_NOISE = str.maketrans("", "", "$,€£ ")


def resolve_paths(patterns: list[str]) -> list[Path]:
    """Expand glob patterns into a sorted, de-duplicated list of files."""
    paths: set[Path] = set()
    for pattern in patterns:
        matches = glob.glob(str(Path(pattern).expanduser()))
        if not matches:
            logger.warning(f"No files matched '{pattern}'")
        paths.update(Path(match) for match in matches)
    return sorted(paths)


def parse_amount(value: str | None) -> float:
    """Parse amounts such as ``$1,234.56`` or ``(12.00)``."""
    text = (value or "").strip().translate(AMOUNT_NOISE)
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    return float(text)


def _row_id(account_id: str, row: dict[str, Any], position: int) -> str:
    # Position keeps identical rows in one file apart
    content = "|".join(f"{k}={v}" for k, v in sorted(row.items()))
    digest = hashlib.sha256(f"{position}|{content}".encode()).hexdigest()
    return f"{account_id}-{digest[:16]}"


def map_row(
    row: dict[str, Any], account_config: CSVAccountConfig, position: int = 0
) -> Transaction:
    """Map one CSV row to a Transaction using the configured transformer.

    Without a mapped ``transaction_id`` the id hashes the row and its
    ``position`` in the file.

    Raises:
        KeyError: If a transformer column is missing from the row
        ValueError: If the date or amount cannot be parsed
    """
    fields: dict[str, Any] = {}
    for column, field_name in account_config.transformer.items():
        value = row[column]
        fields[field_name] = value.strip() if isinstance(value, str) else value

    fields["date"] = datetime.strptime(fields["date"], account_config.date_format).date()

    amount = parse_amount(fields["amount"])
    fields["amount"] = -amount if account_config.negate_values else amount

    fields.setdefault("transaction_id", _row_id(account_config.id, row, position))
    fields.setdefault("currency", account_config.currency)
    fields.setdefault("institution", account_config.institution)
    fields.setdefault("account", account_config.account or account_config.id)

    return Transaction(
        integration=IntegrationId.CSV_IMPORT,
        account_id=account_config.id,
        **{k: v for k, v in fields.items() if k not in ("integration", "account_id")},
    )


def read_transactions(path: Path, account_config: CSVAccountConfig) -> list[Transaction]:
    """Read every row of one CSV file as strings and map it."""
    df = pl.read_csv(path, infer_schema_length=0)
    missing = set(account_config.transformer) - set(df.columns)
    if missing:
        raise KeyError(f"{path} is missing columns: {', '.join(sorted(missing))}")

    return [
        map_row(row, account_config, position)
        for position, row in enumerate(df.iter_rows(named=True))
    ]


class CSVImportClient:
    """Provider for transactions stored in local CSV files."""

    def fetch_account(
        self, account_config: CSVAccountConfig, start_date: date, end_date: date
    ) -> Account:
        paths = resolve_paths(account_config.paths)
        if not paths:
            raise FileNotFoundError(
                f"No CSV files matched {', '.join(account_config.paths)}"
            )

        transactions: list[Transaction] = []
        for path in paths:
            rows = read_transactions(path, account_config)
            logger.debug(f"Read {len(rows)} rows from {path}")
            transactions.extend(rows)

        in_range = [t for t in transactions if start_date <= t.date <= end_date]
        in_range.sort(key=lambda t: t.date)
        logger.info(
            f"Imported {len(in_range)} of {len(transactions)} transactions from {len(paths)} file(s)"
        )

        return Account(
            integration=IntegrationId.CSV_IMPORT,
            account_type=account_config.type,
            account_id=account_config.id,
            institution=account_config.institution,
            account=account_config.account or account_config.id,
            currency=account_config.currency,
            transactions=in_range,
        )

    def fetch(
        self, account_config: CSVAccountConfig, start_date: date, end_date: date
    ) -> FetchResult:
        """Import one CSV account, never raising."""
        try:
            account = self.fetch_account(account_config, start_date, end_date)
        except FileNotFoundError as e:
            logger.error(f"❌ {e}")
            return FetchResult.failure(
                FetchErrorKind.CONFIGURATION, str(e), account_config.id
            )
        except (
            KeyError, TypeError, ValueError, ValidationError, pl.exceptions.PolarsError
        ) as e:
            logger.error(f"❌ Error importing account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.MAPPING, str(e), account_config.id
            )

        return FetchResult(accounts=[account])
