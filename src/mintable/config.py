"""Configuration management for Mintable.

Two layers of configuration exist:

- ``MintableSettings``: process-level settings loaded from environment variables
  (``MINTABLE_`` prefix) and ``.env`` files, e.g. where the config file lives.
- ``Config``: the user's configuration file (JSON) holding provider credentials,
  the accounts to fetch and which sinks receive balances and transactions.

``Config`` is immutable. Setup steps build an updated copy and hand it back to
the caller, which persists it with ``save_config`` or ``update_config``.
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import AccountType, IntegrationId

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".mintable" / "config.json"


class FrozenModel(BaseModel):
    """Base for immutable configuration sections."""

    model_config = ConfigDict(frozen=True, extra="ignore")


# Integrations


class PlaidEnvironment(str, Enum):
    """Plaid API environment options."""

    SANDBOX = "sandbox"
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class PlaidCredentials(FrozenModel):
    """Plaid API credentials."""

    client_id: str = Field(..., description="Plaid client ID")
    secret: str = Field(..., description="Plaid secret key")


class PlaidConfig(FrozenModel):
    """Plaid integration settings."""

    name: str = "Plaid"
    environment: PlaidEnvironment = PlaidEnvironment.SANDBOX
    credentials: PlaidCredentials
    country_codes: list[str] = Field(default_factory=lambda: ["US"])
    language: str = "en"


class MxEnvironment(str, Enum):
    """MX Platform API environment options."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class MxCredentials(FrozenModel):
    """MX Platform API credentials."""

    client_id: str
    api_key: str


class MxConfig(FrozenModel):
    """MX integration settings."""

    name: str = "MX"
    environment: MxEnvironment = MxEnvironment.DEVELOPMENT
    credentials: MxCredentials
    user_guid: str = ""


class FinicityEnvironment(str, Enum):
    """Finicity environment options."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"


class FinicityCredentials(FrozenModel):
    """Finicity partner credentials."""

    partner_id: str
    app_key: str
    secret: str


class FinicityConfig(FrozenModel):
    """Finicity integration settings."""

    name: str = "Finicity"
    environment: FinicityEnvironment = FinicityEnvironment.PRODUCTION
    credentials: FinicityCredentials
    customer_id: str = ""
    username: str = "mintable"


class GoogleCredentials(FrozenModel):
    """OAuth client and token for the Google Sheets API."""

    client_id: str
    client_secret: str
    redirect_uri: str = "http://localhost:8000"
    scope: list[str] = Field(
        default_factory=lambda: ["https://www.googleapis.com/auth/spreadsheets"]
    )
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    expiry_date: int | None = None


class GoogleTemplate(FrozenModel):
    """Sheet tab cloned when a new monthly tab is created."""

    sheet_title: str
    document_id: str | None = None


class GoogleConfig(FrozenModel):
    """Google Sheets sink settings."""

    name: str = "Google Sheets"
    credentials: GoogleCredentials
    document_ids: list[str] = Field(..., min_length=1)
    template: GoogleTemplate | None = None
    date_format: str = "%Y.%m.%d"
    month_format: str = "%Y.%m"


class CSVImportConfig(FrozenModel):
    """CSV import settings shared by all CSV accounts."""

    name: str = "CSV Import"


class CSVExportConfig(FrozenModel):
    """CSV export sink settings."""

    name: str = "CSV Export"
    balances_path: Path = Path("exports/balances.csv")
    transactions_path: Path = Path("exports/transactions.csv")
    investment_transactions_path: Path | None = None
    holdings_path: Path | None = None
    date_format: str = "%Y-%m-%d"


class Integrations(FrozenModel):
    """Credentials and settings for every configured integration."""

    plaid: PlaidConfig | None = None
    mx: MxConfig | None = None
    finicity: FinicityConfig | None = None
    google: GoogleConfig | None = None
    csv_import: CSVImportConfig | None = None
    csv_export: CSVExportConfig | None = None


# Accounts


class BaseAccountConfig(FrozenModel):
    """Fields every configured account carries."""

    id: str
    type: AccountType = AccountType.TRANSACTIONAL


class PlaidAccountConfig(BaseAccountConfig):
    """A Plaid item, identified by its access token."""

    integration: Literal["plaid"] = "plaid"
    token: str


class MxAccountConfig(BaseAccountConfig):
    """All accounts linked to the configured MX user."""

    integration: Literal["mx"] = "mx"


class FinicityAccountConfig(BaseAccountConfig):
    """Accounts linked to the configured Finicity customer."""

    integration: Literal["finicity"] = "finicity"
    account_ids: list[str] = Field(
        default_factory=list, description="Restrict to these accounts; empty = all"
    )


class CSVAccountConfig(BaseAccountConfig):
    """Transactions read from local CSV exports."""

    integration: Literal["csv-import"] = "csv-import"
    paths: list[str] = Field(..., min_length=1)
    transformer: dict[str, str] = Field(
        ..., description="Input column name -> Transaction field"
    )
    date_format: str = "%Y-%m-%d"
    negate_values: bool = False
    account: str | None = None
    institution: str | None = None
    currency: str | None = None


AccountConfig = Annotated[
    PlaidAccountConfig | MxAccountConfig | FinicityAccountConfig | CSVAccountConfig,
    Field(discriminator="integration"),
]


# Sync sections


class TransactionsConfig(FrozenModel):
    """Where transactions go and which columns are written."""

    integration: IntegrationId | None = IntegrationId.GOOGLE
    properties: list[str] = Field(
        default_factory=lambda: ["date", "amount", "name", "account", "category"]
    )
    start_date: date | None = None
    end_date: date | None = None


class InvestmentTransactionsConfig(FrozenModel):
    """Columns written for investment transactions."""

    properties: list[str] = Field(
        default_factory=lambda: [
            "date",
            "account",
            "ticker",
            "security_name",
            "type",
            "quantity",
            "price",
            "amount",
            "fees",
        ]
    )


class BalancesConfig(FrozenModel):
    """Where balances go and which columns are written."""

    integration: IntegrationId | None = IntegrationId.GOOGLE
    properties: list[str] = Field(
        default_factory=lambda: [
            "institution",
            "account",
            "type",
            "current",
            "available",
            "limit",
            "currency",
        ]
    )


class HoldingsConfig(FrozenModel):
    """Columns written for investment holdings."""

    properties: list[str] = Field(
        default_factory=lambda: [
            "account",
            "ticker",
            "security_name",
            "quantity",
            "cost_basis",
            "institution_price",
            "institution_value",
        ]
    )


class Config(FrozenModel):
    """The user's configuration file."""

    integrations: Integrations = Field(default_factory=Integrations)
    accounts: dict[str, AccountConfig] = Field(default_factory=dict)
    transactions: TransactionsConfig = Field(default_factory=TransactionsConfig)
    investment_transactions: InvestmentTransactionsConfig = Field(
        default_factory=InvestmentTransactionsConfig
    )
    balances: BalancesConfig = Field(default_factory=BalancesConfig)
    holdings: HoldingsConfig = Field(default_factory=HoldingsConfig)

    def with_integration(self, name: str, section: FrozenModel) -> "Config":
        """Return a copy with one integration section replaced."""
        integrations = self.integrations.model_copy(update={name: section})
        return self.model_copy(update={"integrations": integrations})

    def with_account(self, account: BaseAccountConfig) -> "Config":
        """Return a copy with an account added or replaced."""
        accounts = {**self.accounts, account.id: account}
        return self.model_copy(update={"accounts": accounts})

    def without_account(self, account_id: str) -> "Config":
        """Return a copy with an account removed."""
        accounts = {k: v for k, v in self.accounts.items() if k != account_id}
        return self.model_copy(update={"accounts": accounts})


# Process settings


class MintableSettings(BaseSettings):
    """Process-level settings with environment variable integration.

    Environment variables are loaded with the MINTABLE_ prefix, e.g.
    ``MINTABLE_CONFIG_FILE=/path/to/config.json``.
    """

    config_file: Path = Field(
        default=DEFAULT_CONFIG_PATH, description="Path to the JSON config file"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MINTABLE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("config_file")
    @classmethod
    def expand_config_file(cls, v: Path) -> Path:
        """Expand ``~`` in the configured path."""
        return v.expanduser()


_settings: MintableSettings | None = None


def get_settings() -> MintableSettings:
    """Get the process settings, loading them on first use."""
    global _settings

    if _settings is None:
        _settings = MintableSettings()
    return _settings


def clear_settings_cache() -> None:
    """Forget cached settings and any config path override."""
    global _settings, _config_path_override
    _settings = None
    _config_path_override = None


_config_path_override: Path | None = None


def set_config_path(path: Path | None) -> None:
    """Override the config file location for this process (``--config``)."""
    global _config_path_override
    _config_path_override = path.expanduser() if path is not None else None


def get_config_path(path: Path | None = None) -> Path:
    """Resolve the config file path: explicit path, then override, then settings."""
    if path is not None:
        return path
    if _config_path_override is not None:
        return _config_path_override
    return get_settings().config_file


# Config file IO


def load_config(path: Path | None = None) -> Config:
    """Read and validate the configuration file.

    Args:
        path: Config file location. Defaults to ``MintableSettings.config_file``.

    Returns:
        Config: The validated configuration

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation
    """
    config_path = get_config_path(path)

    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}. Run 'mintable setup' first."
        )

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e

    try:
        config = Config.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug(f"Loaded config from {config_path}")
    return config


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write the configuration file.

    Returns:
        Path: Where the file was written
    """
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json", exclude_none=True)
    config_path.write_text(json.dumps(data, indent=4) + "\n", encoding="utf-8")

    logger.info(f"Saved config to {config_path}")
    return config_path


def update_config(
    fn: Callable[[Config], Config], path: Path | None = None, create: bool = False
) -> Config:
    """Read the config, apply ``fn`` and write the result back.

    Args:
        fn: Receives the current config and returns the updated one
        path: Config file location
        create: Start from an empty config when the file does not exist

    Returns:
        Config: The config that was written
    """
    config_path = get_config_path(path)

    if create and not config_path.exists():
        current = Config()
    else:
        current = load_config(config_path)

    updated = fn(current)
    save_config(updated, config_path)
    return updated


def _start_of_month_before(day: date, months: int) -> date:
    year, month = day.year, day.month - months
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


def default_fetch_window(
    config: Config, today: date | None = None
) -> tuple[date, date]:
    """Resolve the transaction window.

    Defaults to the start of the month two months ago through today.
    """
    today = today or date.today()
    start = config.transactions.start_date or _start_of_month_before(today, 2)
    end = config.transactions.end_date or today
    return start, end


# Legacy config migration

_LEGACY_KEY_RENAMES = {
    "documentId": "document_ids",
    "userGUID": "user_guid",
    "csv-import": "csv_import",
    "csv-export": "csv_export",
    "negateValues": "negate_values",
    "accountId": "account_id",
    "transactionId": "transaction_id",
}

_LEGACY_DATE_TOKENS = [
    ("yyyy", "%Y"),
    ("yy", "%y"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
]


def _snake_case(key: str) -> str:
    if key in _LEGACY_KEY_RENAMES:
        return _LEGACY_KEY_RENAMES[key]
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def convert_date_pattern(pattern: str) -> str:
    """Translate a ``yyyy.MM.dd`` style pattern into strftime syntax.

    Patterns that already contain ``%`` are returned unchanged.
    """
    if "%" in pattern:
        return pattern
    for token, replacement in _LEGACY_DATE_TOKENS:
        pattern = pattern.replace(token, replacement)
    return pattern


def _migrate_value(key: str, value: Any) -> Any:
    if key in ("date_format", "month_format") and isinstance(value, str):
        return convert_date_pattern(value)
    if key == "type" and value == "Transaction":
        return AccountType.TRANSACTIONAL.value
    if key == "document_ids" and isinstance(value, str):
        return [value]
    if key == "template" and isinstance(value, dict):
        template = migrate_config(value)
        document_ids = template.pop("document_ids", None)
        if document_ids:
            template["document_id"] = document_ids[0]
        return template
    if key == "transformer" and isinstance(value, dict):
        return {col: _snake_case(field) for col, field in value.items()}
    if key == "properties" and isinstance(value, list):
        return [_snake_case(p) if isinstance(p, str) else p for p in value]
    if key == "accounts" and isinstance(value, dict):
        return {
            account_id: migrate_config(account)
            for account_id, account in value.items()
        }
    if isinstance(value, dict):
        return migrate_config(value)
    return value


def migrate_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Convert a configuration written by older Mintable releases.

    Older releases used camelCase keys (``documentId``, ``userGUID``,
    ``investmentTransactions``) and ``yyyy.MM.dd`` date patterns. Keys are
    converted to snake_case and patterns to strftime syntax; account ids and CSV
    column names are left untouched.
    """
    migrated: dict[str, Any] = {}
    for key, value in raw.items():
        new_key = _snake_case(key)
        migrated[new_key] = _migrate_value(new_key, value)
    return migrated
