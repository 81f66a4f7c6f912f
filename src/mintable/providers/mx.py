"""MX Platform provider.

Talks to the MX Platform REST API with ``requests``. Every account linked to
the configured MX user is returned, each with its own transactions.
"""

import logging
from datetime import date, timedelta
from typing import Any

import requests
from pydantic import ValidationError

from ..config import MxAccountConfig, MxConfig, MxEnvironment
from ..errors import FetchErrorKind
from ..models import Account, IntegrationId, Transaction
from .base import FetchResult, Page, paginate

logger = logging.getLogger(__name__)

MX_HOSTS = {
    MxEnvironment.DEVELOPMENT: "https://int-api.mx.com",
    MxEnvironment.PRODUCTION: "https://api.mx.com",
}
MX_USER_ID = "mintable"
ACCOUNTS_PAGE_SIZE = 10
TRANSACTIONS_PAGE_SIZE = 500
HISTORY_WARNING_DAYS = 150
REQUEST_TIMEOUT = 30


def map_account(account: dict[str, Any], config: MxAccountConfig) -> Account:
    """Map an MX account to an Account without transactions."""
    return Account(
        integration=IntegrationId.MX,
        account_type=config.type,
        account_id=account["guid"],
        mask=account.get("account_number"),
        institution=account.get("institution_code"),
        account=account.get("name"),
        type=account.get("subtype") or account.get("type"),
        current=account.get("balance"),
        available=account.get("available_balance"),
        limit=account.get("credit_limit"),
        currency=account.get("currency_code"),
    )


def map_transaction(transaction: dict[str, Any], account: Account) -> Transaction:
    """Map an MX transaction. MX reports positive amounts with a DEBIT/CREDIT type."""
    return Transaction(
        integration=IntegrationId.MX,
        transaction_id=transaction["guid"],
        account_id=transaction["account_guid"],
        date=transaction["date"],
        amount=transaction["amount"],
        name=transaction.get("description"),
        category=transaction.get("category"),
        pending=transaction.get("status") == "PENDING",
        currency=transaction.get("currency_code"),
        type=transaction.get("type"),
        latitude=transaction.get("latitude"),
        longitude=transaction.get("longitude"),
        institution=account.institution,
        account=account.account,
    )


class MxClient:
    """MX Platform API client."""

    def __init__(self, mx_config: MxConfig, session: requests.Session | None = None):
        self.config = mx_config
        self.base_url = MX_HOSTS[mx_config.environment]

        self.session = session or requests.Session()
        self.session.auth = (
            mx_config.credentials.client_id,
            mx_config.credentials.api_key,
        )
        self.session.headers.update({
            "Accept": "application/vnd.mx.api.v1+json",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = self.session.request(
            method, f"{self.base_url}{path}", timeout=REQUEST_TIMEOUT, **kwargs
        )
        response.raise_for_status()
        return response.json()

    # Users and linking

    def get_or_create_user(self) -> str:
        """Return the configured user GUID, creating the MX user if needed.

        The caller persists the returned GUID into the config.
        """
        if self.config.user_guid:
            return self.config.user_guid

        try:
            data = self._request("POST", "/users", json={"user": {"id": MX_USER_ID}})
            guid = data["user"]["guid"]
            logger.info(f"Created MX user {guid}")
            return guid
        except requests.HTTPError as e:
            logger.warning(f"Failed to create MX user, looking it up instead: {e}")

        data = self._request(
            "GET",
            "/users",
            params={"page": 1, "records_per_page": 1, "id": MX_USER_ID},
        )
        users = data.get("users") or []
        if not users:
            raise LookupError(f"No MX user with id '{MX_USER_ID}' exists")
        return users[0]["guid"]

    def request_widget_url(self, user_guid: str | None = None) -> str:
        """Request a Connect widget URL for linking institutions."""
        guid = user_guid or self.config.user_guid
        data = self._request(
            "POST",
            f"/users/{guid}/widget_urls",
            json={
                "widget_url": {
                    "include_transactions": True,
                    "is_mobile_webview": False,
                    "mode": "aggregation",
                    "ui_message_version": 4,
                    "widget_type": "connect_widget",
                }
            },
        )
        return data["widget_url"]["url"]

    # Paginated listings

    def fetch_paged_accounts(self) -> list[dict[str, Any]]:
        """Fetch every account linked to the user."""

        def fetch_page(offset: int, count: int) -> Page[dict[str, Any]]:
            data = self._request(
                "GET",
                f"/users/{self.config.user_guid}/accounts",
                params={"page": offset // count + 1, "records_per_page": count},
            )
            return Page(data.get("accounts", []), data["pagination"]["total_entries"])

        return paginate(fetch_page, ACCOUNTS_PAGE_SIZE, key=lambda a: a["guid"])

    def fetch_paged_transactions(
        self, start_date: date, end_date: date
    ) -> list[dict[str, Any]]:
        """Fetch every transaction in the window across all accounts."""

        def fetch_page(offset: int, count: int) -> Page[dict[str, Any]]:
            data = self._request(
                "GET",
                f"/users/{self.config.user_guid}/transactions",
                params={
                    "from_date": start_date.isoformat(),
                    "to_date": end_date.isoformat(),
                    "page": offset // count + 1,
                    "records_per_page": count,
                },
            )
            return Page(
                data.get("transactions", []), data["pagination"]["total_entries"]
            )

        return paginate(fetch_page, TRANSACTIONS_PAGE_SIZE, key=lambda t: t["guid"])

    def fetch_account(
        self, account_config: MxAccountConfig, start_date: date, end_date: date
    ) -> list[Account]:
        """Fetch all accounts with their transactions."""
        if start_date < date.today() - timedelta(days=HISTORY_WARNING_DAYS):
            logger.warning(
                "Transaction history older than 6 months may not be available for some institutions"
            )

        accounts = [map_account(a, account_config) for a in self.fetch_paged_accounts()]
        by_id = {account.account_id: account for account in accounts}

        raw_transactions = self.fetch_paged_transactions(start_date, end_date)
        for raw in raw_transactions:
            owner = by_id.get(raw.get("account_guid"))
            if owner is None:
                logger.debug(f"Skipping transaction for unknown account {raw.get('account_guid')}")
                continue
            owner.transactions.append(map_transaction(raw, owner))

        logger.info(
            f"Fetched {len(accounts)} sub-accounts and {len(raw_transactions)} transactions"
        )
        return accounts

    def fetch(
        self, account_config: MxAccountConfig, start_date: date, end_date: date
    ) -> FetchResult:
        """Fetch the MX user's accounts, never raising."""
        if not self.config.user_guid:
            logger.error("❌ MX user GUID is not configured, run 'mintable mx-setup'")
            return FetchResult.failure(
                FetchErrorKind.CONFIGURATION,
                "MX user GUID is not configured",
                account_config.id,
            )

        try:
            accounts = self.fetch_account(account_config, start_date, end_date)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            kind = (
                FetchErrorKind.AUTHENTICATION
                if status in (401, 403)
                else FetchErrorKind.REQUEST
            )
            logger.error(f"❌ Error fetching account {account_config.id}: {e}")
            return FetchResult.failure(kind, str(e), account_config.id)
        except requests.RequestException as e:
            logger.error(f"❌ Error fetching account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.REQUEST, str(e), account_config.id
            )
        except (KeyError, TypeError, ValidationError) as e:
            logger.error(f"❌ Error mapping account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.MAPPING, str(e), account_config.id
            )

        return FetchResult(accounts=accounts)
