"""Provider-agnostic account, transaction and holding models.

Every provider client maps its own payloads into these models, and every sink
consumes them. Provider-specific extras (location details, security metadata)
are kept as extra fields so they can still be selected as spreadsheet columns.
"""

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IntegrationId(str, Enum):
    """Known providers and sinks."""

    PLAID = "plaid"
    MX = "mx"
    FINICITY = "finicity"
    GOOGLE = "google"
    CSV_IMPORT = "csv-import"
    CSV_EXPORT = "csv-export"


class AccountType(str, Enum):
    """How an account should be fetched."""

    TRANSACTIONAL = "Transactional"
    INVESTMENT = "Investment"
    DISABLED = "Disabled"


class BaseRecord(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        extra="allow",
        use_enum_values=True,
        populate_by_name=True,
    )

    def to_row(self) -> dict[str, Any]:
        """Flatten the record into a column name -> value mapping."""
        return self.model_dump(mode="python", exclude={"transactions", "holdings"})


class Transaction(BaseRecord):
    """One ledger entry. The amount sign is whatever the provider reports."""

    integration: IntegrationId
    transaction_id: str | None = None
    account_id: str | None = None
    date: datetime.date
    amount: float
    name: str | None = None
    category: str | None = None
    pending: bool = False
    currency: str | None = None
    type: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def join_category(cls, v: Any) -> Any:
        """Plaid reports categories as a hierarchy list."""
        if isinstance(v, (list, tuple)):
            return " - ".join(str(part) for part in v)
        return v


class Holding(BaseRecord):
    """Snapshot of an investment position."""

    integration: IntegrationId
    account_id: str
    security_id: str | None = None
    quantity: float | None = None
    cost_basis: float | None = None
    institution_price: float | None = None
    institution_value: float | None = None
    ticker: str | None = None
    security_name: str | None = None
    currency: str | None = None


class Account(BaseRecord):
    """A single financial account with its transactions and holdings."""

    integration: IntegrationId
    account_type: AccountType = AccountType.TRANSACTIONAL
    account_id: str | None = None
    mask: str | None = None
    institution: str | None = None
    account: str | None = None
    type: str | None = None
    current: float | None = None
    available: float | None = None
    limit: float | None = None
    currency: str | None = None
    transactions: list[Transaction] = Field(default_factory=list)
    holdings: list[Holding] = Field(default_factory=list)


def count_transactions(accounts: list[Account]) -> int:
    """Total number of transactions across accounts."""
    return sum(len(account.transactions) for account in accounts)
