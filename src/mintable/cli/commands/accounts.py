"""Account linking commands for the Mintable CLI.

Linking happens in the terminal: Mintable prints the provider's link URL or
token, the user completes linking in a browser and the resulting account is
added to the config.
"""

import logging
from collections.abc import Callable
from typing import Annotated

import requests
import typer
from plaid.exceptions import ApiException

from mintable.config import (
    Config,
    FinicityAccountConfig,
    MxAccountConfig,
    PlaidAccountConfig,
    PlaidEnvironment,
    update_config,
)
from mintable.errors import ConfigError
from mintable.models import AccountType
from mintable.providers.finicity import FinicityClient
from mintable.providers.mx import MxClient
from mintable.providers.plaid import PlaidClient

from .setup import prompt_choice

logger = logging.getLogger(__name__)

LINKABLE_TYPES = [AccountType.TRANSACTIONAL.value, AccountType.INVESTMENT.value]


def _prompt_account(default_id: str | None = None) -> tuple[str, AccountType]:
    account_id = typer.prompt("Account name (used as its id)", default=default_id)
    account_type = prompt_choice(
        "Account type", LINKABLE_TYPES, AccountType.TRANSACTIONAL.value
    )
    return account_id, AccountType(account_type)


def _link(step: Callable[[Config], Config]) -> None:
    try:
        update_config(step)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(1) from e
    except (requests.RequestException, ApiException, LookupError, ValueError) as e:
        logger.error(f"❌ Unable to link account: {e}")
        raise typer.Exit(1) from e


def link_plaid_account(config: Config) -> Config:
    """Link one Plaid item and add it to the config."""
    plaid_config = config.integrations.plaid
    if plaid_config is None:
        raise ConfigError("Plaid is not configured, run 'mintable plaid-setup'")

    client = PlaidClient(plaid_config)
    account_id, account_type = _prompt_account()

    if plaid_config.environment == PlaidEnvironment.SANDBOX and typer.confirm(
        "Create a Plaid sandbox test item?", default=True
    ):
        _, access_token = client.create_sandbox_access_token()
    else:
        link_token = client.create_link_token()
        logger.info(
            "Complete Plaid Link with this link token, e.g. from "
            "https://plaid.com/docs/link/web/ or the Plaid Quickstart app:"
        )
        logger.info(link_token)
        public_token = typer.prompt("Public token returned by Plaid Link")
        _, access_token = client.exchange_public_token(public_token)

    account = PlaidAccountConfig(id=account_id, type=account_type, token=access_token)
    logger.info(f"✅ Linked Plaid account {account_id}")
    return config.with_account(account)


def link_mx_accounts(config: Config) -> Config:
    """Open the MX Connect widget and add the MX user's accounts to the config."""
    mx_config = config.integrations.mx
    if mx_config is None:
        raise ConfigError("MX is not configured, run 'mintable mx-setup'")

    client = MxClient(mx_config)
    user_guid = client.get_or_create_user()
    if user_guid != mx_config.user_guid:
        config = config.with_integration(
            "mx", mx_config.model_copy(update={"user_guid": user_guid})
        )

    logger.info("1. Open this URL and sign in with each bank you want to link:")
    logger.info(client.request_widget_url(user_guid))
    logger.info("2. Come back here when you are done linking.")
    typer.confirm("Done linking accounts?", default=True, abort=True)

    account_id, account_type = _prompt_account(default_id="mx")
    logger.info(f"✅ Linked MX accounts as {account_id}")
    return config.with_account(MxAccountConfig(id=account_id, type=account_type))


def link_finicity_accounts(config: Config) -> Config:
    """Create the Finicity customer, print a Connect URL and add the accounts."""
    finicity_config = config.integrations.finicity
    if finicity_config is None:
        raise ConfigError("Finicity is not configured, run 'mintable finicity-setup'")

    client = FinicityClient(finicity_config)
    customer_id = client.get_or_create_customer()
    if customer_id != finicity_config.customer_id:
        config = config.with_integration(
            "finicity", finicity_config.model_copy(update={"customer_id": customer_id})
        )

    logger.info("1. Open this URL and sign in with each bank you want to link:")
    logger.info(client.generate_connect_url(customer_id))
    typer.confirm("Done linking accounts?", default=True, abort=True)

    account_id, account_type = _prompt_account(default_id="finicity")
    logger.info(f"✅ Linked Finicity accounts as {account_id}")
    return config.with_account(
        FinicityAccountConfig(id=account_id, type=account_type)
    )


def plaid_account_setup() -> None:
    """Link a bank account through Plaid."""
    _link(link_plaid_account)


def mx_account_setup() -> None:
    """Link bank accounts through the MX Connect widget."""
    _link(link_mx_accounts)


def finicity_account_setup() -> None:
    """Link bank accounts through Finicity Connect."""
    _link(link_finicity_accounts)


def remove_account(
    account_id: Annotated[str, typer.Argument(help="Id of the account to remove")],
) -> None:
    """Remove an account from the config."""

    def step(config: Config) -> Config:
        if account_id not in config.accounts:
            raise ConfigError(f"No account named '{account_id}'")
        return config.without_account(account_id)

    _link(step)
    logger.info(f"✅ Removed account {account_id}")
