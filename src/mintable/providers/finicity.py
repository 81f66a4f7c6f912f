"""Finicity provider.

Authenticates with partner credentials, manages the ``mintable`` customer and
pulls the customer's accounts and transactions over the Finicity REST API.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any

import requests
from pydantic import ValidationError

from ..config import FinicityAccountConfig, FinicityConfig, FinicityEnvironment
from ..errors import FetchErrorKind
from ..models import Account, IntegrationId, Transaction
from .base import FetchResult, Page, paginate

logger = logging.getLogger(__name__)

FINICITY_BASE_URL = "https://api.finicity.com"
ENDPOINTS = {
    "authentication": "/aggregation/v2/partners/authentication",
    "customers": "/aggregation/v1/customers",
    "add_testing_customer": "/aggregation/v2/customers/testing",
    "add_customer": "/aggregation/v2/customers/active",
    "generate_connect_url": "/connect/v2/generate",
}
TRANSACTIONS_PAGE_SIZE = 1000
REQUEST_TIMEOUT = 30


def _to_epoch(day: date, end_of_day: bool = False) -> int:
    moment = datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    return int(moment.timestamp())


def _from_epoch(value: int | str) -> date:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).date()


def map_account(account: dict[str, Any], config: FinicityAccountConfig) -> Account:
    detail = account.get("detail") or {}
    return Account(
        integration=IntegrationId.FINICITY,
        account_type=config.type,
        account_id=str(account["id"]),
        mask=account.get("accountNumberDisplay") or account.get("number"),
        institution=str(account["institutionId"]) if account.get("institutionId") else None,
        account=account.get("name"),
        type=account.get("type"),
        current=account.get("balance"),
        available=detail.get("availableBalanceAmount"),
        limit=detail.get("creditMaxAmount"),
        currency=account.get("currency"),
    )


def map_transaction(transaction: dict[str, Any], account: Account) -> Transaction:
    categorization = transaction.get("categorization") or {}
    posted = transaction.get("postedDate") or transaction["transactionDate"]
    return Transaction(
        integration=IntegrationId.FINICITY,
        transaction_id=str(transaction["id"]),
        account_id=str(transaction["accountId"]),
        date=_from_epoch(posted),
        amount=transaction["amount"],
        name=transaction.get("description"),
        category=categorization.get("category"),
        pending=transaction.get("status") == "pending",
        currency=account.currency,
        type=transaction.get("type"),
        memo=transaction.get("memo"),
        institution=account.institution,
        account=account.account,
    )


class FinicityClient:
    """Finicity API client.

    The app token from ``authenticate`` is kept on the session headers and
    reused for every later request.
    """

    def __init__(
        self, finicity_config: FinicityConfig, session: requests.Session | None = None
    ):
        self.config = finicity_config
        self.base_url = FINICITY_BASE_URL
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Finicity-App-Key": finicity_config.credentials.app_key,
        })

    @property
    def authenticated(self) -> bool:
        return "Finicity-App-Token" in self.session.headers

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.authenticated:
            self.authenticate()
        response = self.session.request(
            method, f"{self.base_url}{path}", timeout=REQUEST_TIMEOUT, **kwargs
        )
        response.raise_for_status()
        return response.json() if response.content else {}

    def authenticate(self) -> str:
        """Exchange partner credentials for an app token."""
        response = self.session.post(
            f"{self.base_url}{ENDPOINTS['authentication']}",
            json={
                "partnerId": self.config.credentials.partner_id,
                "partnerSecret": self.config.credentials.secret,
            },
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        token = response.json()["token"]
        self.session.headers["Finicity-App-Token"] = token
        logger.debug("Authenticated with Finicity")
        return token

    # Customers and linking

    def get_customers(self, username: str | None = None) -> list[dict[str, Any]]:
        params = {"username": username} if username else None
        return self._request("GET", ENDPOINTS["customers"], params=params).get(
            "customers", []
        )

    def add_testing_customer(self, username: str) -> dict[str, Any]:
        return self._request(
            "POST", ENDPOINTS["add_testing_customer"], json={"username": username}
        )

    def add_customer(self, username: str) -> dict[str, Any]:
        return self._request(
            "POST", ENDPOINTS["add_customer"], json={"username": username}
        )

    def delete_customer(self, customer_id: str) -> None:
        self._request("DELETE", f"{ENDPOINTS['customers']}/{customer_id}")
        logger.info(f"Deleted Finicity customer {customer_id}")

    def get_or_create_customer(self) -> str:
        """Return the configured customer id, creating the customer if needed.

        Sandbox credentials can only create testing customers. The caller
        persists the returned id into the config.
        """
        if self.config.customer_id:
            return self.config.customer_id

        username = self.config.username
        try:
            if self.config.environment == FinicityEnvironment.SANDBOX:
                customer = self.add_testing_customer(username)
            else:
                customer = self.add_customer(username)
            logger.info(f"Created Finicity customer {customer['id']}")
            return str(customer["id"])
        except requests.HTTPError as e:
            logger.warning(f"Failed to create customer, looking it up instead: {e}")

        customers = self.get_customers(username)
        if not customers:
            raise LookupError(f"No Finicity customer named '{username}' exists")
        return str(customers[0]["id"])

    def generate_connect_url(self, customer_id: str | None = None) -> str:
        """Generate a Finicity Connect URL for linking institutions."""
        data = self._request(
            "POST",
            ENDPOINTS["generate_connect_url"],
            json={
                "language": "en",
                "partnerId": self.config.credentials.partner_id,
                "customerId": customer_id or self.config.customer_id,
                "singleUseUrl": False,
            },
        )
        return data["link"]

    # Accounts and transactions

    def fetch_accounts(self) -> list[dict[str, Any]]:
        path = f"{ENDPOINTS['customers']}/{self.config.customer_id}/accounts"
        return self._request("GET", path).get("accounts", [])

    def fetch_paged_transactions(
        self, start_date: date, end_date: date
    ) -> list[dict[str, Any]]:
        """Fetch every transaction for the customer in the window."""
        path = f"/aggregation/v3/customers/{self.config.customer_id}/transactions"

        def fetch_page(offset: int, count: int) -> Page[dict[str, Any]]:
            data = self._request(
                "GET",
                path,
                params={
                    "fromDate": _to_epoch(start_date),
                    "toDate": _to_epoch(end_date, end_of_day=True),
                    "start": offset // count + 1,
                    "limit": count,
                },
            )
            return Page(data.get("transactions", []), int(data.get("found", 0)))

        return paginate(fetch_page, TRANSACTIONS_PAGE_SIZE, key=lambda t: t["id"])

    def fetch_account(
        self, account_config: FinicityAccountConfig, start_date: date, end_date: date
    ) -> list[Account]:
        accounts = [map_account(a, account_config) for a in self.fetch_accounts()]
        if account_config.account_ids:
            wanted = set(account_config.account_ids)
            accounts = [a for a in accounts if a.account_id in wanted]
        by_id = {account.account_id: account for account in accounts}

        for raw in self.fetch_paged_transactions(start_date, end_date):
            owner = by_id.get(str(raw.get("accountId")))
            if owner is not None:
                owner.transactions.append(map_transaction(raw, owner))

        logger.info(f"Fetched {len(accounts)} Finicity accounts")
        return accounts

    def fetch(
        self, account_config: FinicityAccountConfig, start_date: date, end_date: date
    ) -> FetchResult:
        """Fetch the customer's accounts, never raising."""
        if not self.config.customer_id:
            logger.error(
                "❌ Finicity customer is not configured, run 'mintable finicity-account-setup'"
            )
            return FetchResult.failure(
                FetchErrorKind.CONFIGURATION,
                "Finicity customer id is not configured",
                account_config.id,
            )

        if not self.authenticated:
            try:
                self.authenticate()
            except (requests.RequestException, KeyError) as e:
                logger.error(f"❌ Finicity authentication failed: {e}")
                return FetchResult.failure(
                    FetchErrorKind.AUTHENTICATION, str(e), account_config.id
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
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"❌ Error mapping account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.MAPPING, str(e), account_config.id
            )

        return FetchResult(accounts=accounts)
