"""Integration setup commands for the Mintable CLI.

Each ``configure_*`` step prompts for one integration's settings and returns an
updated ``Config``; the command persists it with ``update_config``.
"""

import logging
from collections.abc import Callable
from pathlib import Path

import requests
import typer
from plaid.exceptions import ApiException

from mintable.config import (
    Config,
    CSVAccountConfig,
    CSVExportConfig,
    CSVImportConfig,
    FinicityConfig,
    FinicityCredentials,
    FinicityEnvironment,
    GoogleConfig,
    GoogleCredentials,
    MxConfig,
    MxCredentials,
    MxEnvironment,
    PlaidConfig,
    PlaidCredentials,
    PlaidEnvironment,
    get_config_path,
    save_config,
    update_config,
)
from mintable.errors import ConfigError
from mintable.models import IntegrationId
from mintable.providers.mx import MxClient
from mintable.sinks.google import exchange_auth_code, get_auth_url

logger = logging.getLogger(__name__)

CSV_FIELDS = ["date", "amount", "name", "category"]


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def prompt_choice(text: str, choices: list[str], default: str) -> str:
    """Prompt until the answer is one of ``choices``."""
    while True:
        answer = typer.prompt(f"{text} ({'/'.join(choices)})", default=default)
        if answer in choices:
            return answer
        logger.warning(f"⚠️  Please choose one of: {', '.join(choices)}")


def run_setup_step(step: Callable[[Config], Config]) -> Config:
    """Apply a setup step to the config file, creating the file if needed."""
    try:
        return update_config(step, create=True)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(1) from e
    except (requests.RequestException, LookupError) as e:
        logger.error(f"❌ Setup failed: {e}")
        raise typer.Exit(1) from e


# Setup steps


def configure_plaid(config: Config) -> Config:
    existing = config.integrations.plaid
    logger.info("Plaid: create API keys at https://dashboard.plaid.com/account/keys")

    environment = prompt_choice(
        "Plaid environment",
        [e.value for e in PlaidEnvironment],
        existing.environment.value if existing else PlaidEnvironment.SANDBOX.value,
    )
    client_id = typer.prompt(
        "Plaid client ID", default=existing.credentials.client_id if existing else None
    )
    secret = typer.prompt("Plaid secret", hide_input=True)

    changes = {
        "environment": PlaidEnvironment(environment),
        "credentials": PlaidCredentials(client_id=client_id, secret=secret),
    }
    plaid = existing.model_copy(update=changes) if existing else PlaidConfig(**changes)
    logger.info("✅ Plaid configured")
    return config.with_integration("plaid", plaid)


def configure_google(config: Config) -> Config:
    existing = config.integrations.google
    logger.info(
        "Google: create an OAuth client (Desktop app) at "
        "https://console.cloud.google.com/apis/credentials"
    )

    client_id = typer.prompt(
        "Google client ID", default=existing.credentials.client_id if existing else None
    )
    client_secret = typer.prompt("Google client secret", hide_input=True)
    document_ids = _split(
        typer.prompt(
            "Spreadsheet ID(s), comma separated (second one receives investments)",
            default=",".join(existing.document_ids) if existing else None,
        )
    )

    credentials = GoogleCredentials(client_id=client_id, client_secret=client_secret)
    logger.info(f"Open this URL to authorize Mintable:\n{get_auth_url(credentials)}")
    auth_code = typer.prompt("Authorization code")
    credentials = exchange_auth_code(credentials, auth_code)

    kept = (
        existing.model_dump(include={"template", "date_format", "month_format"})
        if existing
        else {}
    )
    google = GoogleConfig(credentials=credentials, document_ids=document_ids, **kept)
    logger.info("✅ Google Sheets configured")
    return config.with_integration("google", google)


def configure_mx(config: Config) -> Config:
    existing = config.integrations.mx
    logger.info("MX: find your API keys at https://dashboard.mx.com")

    environment = prompt_choice(
        "MX environment",
        [e.value for e in MxEnvironment],
        existing.environment.value if existing else MxEnvironment.DEVELOPMENT.value,
    )
    client_id = typer.prompt(
        "MX client ID", default=existing.credentials.client_id if existing else None
    )
    api_key = typer.prompt("MX API key", hide_input=True)

    mx = MxConfig(
        environment=MxEnvironment(environment),
        credentials=MxCredentials(client_id=client_id, api_key=api_key),
    )
    user_guid = MxClient(mx).get_or_create_user()
    logger.info(f"✅ MX configured for user {user_guid}")
    return config.with_integration("mx", mx.model_copy(update={"user_guid": user_guid}))


def configure_finicity(config: Config) -> Config:
    existing = config.integrations.finicity
    logger.info("Finicity: find your partner credentials at https://developer.mastercard.com")

    environment = prompt_choice(
        "Finicity environment",
        [e.value for e in FinicityEnvironment],
        existing.environment.value if existing else FinicityEnvironment.SANDBOX.value,
    )
    partner_id = typer.prompt(
        "Finicity partner ID",
        default=existing.credentials.partner_id if existing else None,
    )
    secret = typer.prompt("Finicity partner secret", hide_input=True)
    app_key = typer.prompt("Finicity app key", hide_input=True)

    changes = {
        "environment": FinicityEnvironment(environment),
        "credentials": FinicityCredentials(
            partner_id=partner_id, secret=secret, app_key=app_key
        ),
    }
    finicity = (
        existing.model_copy(update=changes) if existing else FinicityConfig(**changes)
    )
    logger.info("✅ Finicity configured")
    return config.with_integration("finicity", finicity)


def configure_csv_import(config: Config) -> Config:
    account_id = typer.prompt("Account name (used as its id)")
    paths = _split(typer.prompt("CSV path(s) or glob pattern(s), comma separated"))

    transformer: dict[str, str] = {}
    for field_name in CSV_FIELDS:
        column = typer.prompt(
            f"Column holding the transaction {field_name} (blank to skip)",
            default="",
            show_default=False,
        )
        if column:
            transformer[column] = field_name

    date_format = typer.prompt("Date format (strftime)", default="%Y-%m-%d")
    negate_values = typer.confirm("Negate amounts?", default=False)

    account = CSVAccountConfig(
        id=account_id,
        paths=paths,
        transformer=transformer,
        date_format=date_format,
        negate_values=negate_values,
        account=account_id,
    )
    logger.info(f"✅ CSV account {account_id} configured")
    return config.with_integration("csv_import", CSVImportConfig()).with_account(account)


def configure_csv_export(config: Config) -> Config:
    existing = config.integrations.csv_export or CSVExportConfig()
    balances_path = typer.prompt(
        "Balances file", default=str(existing.balances_path)
    )
    transactions_path = typer.prompt(
        "Transactions file", default=str(existing.transactions_path)
    )

    export = existing.model_copy(
        update={
            "balances_path": Path(balances_path),
            "transactions_path": Path(transactions_path),
        }
    )
    config = config.with_integration("csv_export", export)

    if typer.confirm("Write balances and transactions to CSV instead of Google Sheets?", default=True):
        config = config.model_copy(
            update={
                "balances": config.balances.model_copy(
                    update={"integration": IntegrationId.CSV_EXPORT}
                ),
                "transactions": config.transactions.model_copy(
                    update={"integration": IntegrationId.CSV_EXPORT}
                ),
            }
        )
    logger.info("✅ CSV export configured")
    return config


# Commands


def plaid_setup() -> None:
    """Configure Plaid API credentials."""
    run_setup_step(configure_plaid)


def google_setup() -> None:
    """Configure Google Sheets credentials and spreadsheets."""
    run_setup_step(configure_google)


def mx_setup() -> None:
    """Configure MX credentials and create the MX user."""
    run_setup_step(configure_mx)


def finicity_setup() -> None:
    """Configure Finicity partner credentials."""
    run_setup_step(configure_finicity)


def csv_import_setup() -> None:
    """Add an account imported from CSV files."""
    run_setup_step(configure_csv_import)


def csv_export_setup() -> None:
    """Configure CSV export file locations."""
    run_setup_step(configure_csv_export)


def setup_wizard() -> None:
    """Create a config file: Plaid, then Google Sheets, then a first Plaid account."""
    from .accounts import link_plaid_account

    config_path = get_config_path()
    if config_path.exists() and not typer.confirm(
        f"Config already exists at {config_path}. Overwrite it?", default=False
    ):
        logger.error("❌ Config update cancelled by user.")
        raise typer.Exit(1)

    config = Config()
    try:
        config = configure_plaid(config)
        config = configure_google(config)
        save_config(config, config_path)

        config = link_plaid_account(config)
        save_config(config, config_path)
    except (requests.RequestException, ApiException) as e:
        logger.error(f"❌ Request failed during setup: {e}")
        raise typer.Exit(1) from e

    logger.info("✅ Setup complete. Run 'mintable fetch' to pull your data.")
