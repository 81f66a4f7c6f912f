"""Plaid provider using the Plaid Python SDK.

Fetches balances, transactions, investment transactions and holdings for a
Plaid item (one access token) and maps them to Mintable's account model.
"""

import json
import logging
from datetime import date
from enum import Enum
from typing import Any

from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException, OpenApiException
from plaid.model.country_code import CountryCode
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.investments_transactions_get_request import (
    InvestmentsTransactionsGetRequest,
)
from plaid.model.investments_transactions_get_request_options import (
    InvestmentsTransactionsGetRequestOptions,
)
from plaid.model.item_public_token_exchange_request import (
    ItemPublicTokenExchangeRequest,
)
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions
from pydantic import ValidationError
from urllib3.exceptions import HTTPError as TransportError

from ..config import PlaidAccountConfig, PlaidConfig, PlaidEnvironment
from ..errors import FetchErrorKind
from ..models import Account, AccountType, Holding, IntegrationId, Transaction
from .base import FetchResult, Page, paginate

logger = logging.getLogger(__name__)

PLAID_USER_ID = "LOCAL"
PLAID_PAGE_SIZE = 500

AUTH_ERROR_CODES = {
    "INVALID_ACCESS_TOKEN",
    "INVALID_API_KEYS",
    "ITEM_LOGIN_REQUIRED",
    "INVALID_CREDENTIALS",
    "ACCESS_NOT_GRANTED",
}

PLAID_HOSTS = {
    PlaidEnvironment.SANDBOX: "https://sandbox.plaid.com",
    PlaidEnvironment.DEVELOPMENT: "https://development.plaid.com",
    PlaidEnvironment.PRODUCTION: "https://production.plaid.com",
}


def _as_dict(obj: Any) -> dict[str, Any]:
    """Plaid SDK models expose ``to_dict``; tests pass plain dicts."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Cannot read Plaid payload of type {type(obj).__name__}")


def _text(value: Any) -> str | None:
    """Coerce Plaid SDK enums into plain strings."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    inner = getattr(value, "value", None)
    if isinstance(inner, str):
        return inner
    return str(value)


def _error_code(error: ApiException) -> str | None:
    body = getattr(error, "body", None)
    if isinstance(body, (str, bytes)):
        try:
            return json.loads(body).get("error_code")
        except ValueError:
            return None
    return None


def map_account(account: dict[str, Any], account_type: AccountType) -> Account:
    """Map a Plaid account to an Account without transactions."""
    balances = account.get("balances") or {}
    return Account(
        integration=IntegrationId.PLAID,
        account_type=account_type,
        account_id=account["account_id"],
        mask=account.get("mask"),
        institution=account.get("name"),
        account=account.get("official_name"),
        type=_text(account.get("subtype")) or _text(account.get("type")),
        current=balances.get("current"),
        available=balances.get("available"),
        limit=balances.get("limit"),
        currency=balances.get("iso_currency_code")
        or balances.get("unofficial_currency_code"),
    )


def map_transaction(transaction: dict[str, Any], account: Account) -> Transaction:
    """Map a Plaid transaction, carrying its account's display names."""
    location = transaction.get("location") or {}
    return Transaction(
        integration=IntegrationId.PLAID,
        transaction_id=transaction["transaction_id"],
        account_id=transaction["account_id"],
        date=transaction["date"],
        amount=transaction["amount"],
        name=transaction.get("name"),
        category=transaction.get("category"),
        pending=bool(transaction.get("pending")),
        currency=transaction.get("iso_currency_code")
        or transaction.get("unofficial_currency_code"),
        type=_text(transaction.get("transaction_type")),
        pending_transaction_id=transaction.get("pending_transaction_id"),
        address=location.get("address"),
        city=location.get("city"),
        state=location.get("region"),
        postal_code=location.get("postal_code"),
        country=location.get("country"),
        latitude=location.get("lat"),
        longitude=location.get("lon"),
        institution=account.institution,
        account=account.account,
    )


def map_investment_transaction(
    transaction: dict[str, Any],
    securities: dict[str, dict[str, Any]],
    account: Account,
) -> Transaction:
    """Map a Plaid investment transaction, resolving its security."""
    security = securities.get(transaction.get("security_id") or "", {})
    kind = _text(transaction.get("type")) or ""
    return Transaction(
        integration=IntegrationId.PLAID,
        transaction_id=transaction["investment_transaction_id"],
        account_id=transaction["account_id"],
        date=transaction["date"],
        amount=transaction["amount"],
        name=transaction.get("name"),
        currency=transaction.get("iso_currency_code")
        or transaction.get("unofficial_currency_code"),
        type=kind[:1].upper() + kind[1:],
        subtype=_text(transaction.get("subtype")),
        security_id=transaction.get("security_id"),
        quantity=abs(transaction.get("quantity") or 0),
        price=transaction.get("price"),
        fees=transaction.get("fees"),
        ticker=security.get("ticker_symbol"),
        security_name=security.get("name"),
        security_type=_text(security.get("type")),
        institution=account.institution,
        account=account.account,
    )


def map_holding(
    holding: dict[str, Any],
    securities: dict[str, dict[str, Any]],
    account: Account,
) -> Holding:
    """Map a Plaid holding, resolving its security."""
    security = securities.get(holding.get("security_id") or "", {})
    return Holding(
        integration=IntegrationId.PLAID,
        account_id=holding["account_id"],
        security_id=holding.get("security_id"),
        quantity=holding.get("quantity"),
        cost_basis=holding.get("cost_basis"),
        institution_price=holding.get("institution_price"),
        institution_price_as_of=holding.get("institution_price_as_of"),
        institution_value=holding.get("institution_value"),
        currency=holding.get("iso_currency_code")
        or holding.get("unofficial_currency_code"),
        ticker=security.get("ticker_symbol"),
        security_name=security.get("name"),
        security_type=_text(security.get("type")),
        institution=account.institution,
        account=account.account,
    )


class PlaidClient:
    """Plaid API client for one configured Plaid integration."""

    def __init__(self, plaid_config: PlaidConfig, client: Any | None = None):
        """Initialize the Plaid client.

        Args:
            plaid_config: Credentials and environment
            client: Optional pre-built ``PlaidApi`` (used by tests)
        """
        self.config = plaid_config

        if client is None:
            configuration = Configuration(
                host=PLAID_HOSTS[plaid_config.environment],
                api_key={
                    "clientId": plaid_config.credentials.client_id,
                    "secret": plaid_config.credentials.secret,
                },
            )
            client = plaid_api.PlaidApi(ApiClient(configuration))

        # Typed as Any: the SDK stubs are only partially typed
        self.client: Any = client

        logger.debug(f"Initialized Plaid client for {plaid_config.environment.value}")

    # Paginated listings

    def fetch_paged_transactions(
        self, access_token: str, start_date: date, end_date: date
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Fetch every transaction in the window.

        Returns:
            tuple: (accounts, transactions) as plain dicts
        """
        accounts: list[dict[str, Any]] = []

        def fetch_page(offset: int, count: int) -> Page[dict[str, Any]]:
            request = TransactionsGetRequest(
                access_token=access_token,
                start_date=start_date,
                end_date=end_date,
                options=TransactionsGetRequestOptions(count=count, offset=offset),
            )
            response = _as_dict(self.client.transactions_get(request))
            if not accounts:
                accounts.extend(_as_dict(a) for a in response.get("accounts", []))
            return Page(
                [_as_dict(t) for t in response.get("transactions", [])],
                response.get("total_transactions", 0),
            )

        transactions = paginate(
            fetch_page, PLAID_PAGE_SIZE, key=lambda t: t["transaction_id"]
        )
        return accounts, transactions

    def fetch_paged_investment_transactions(
        self, access_token: str, start_date: date, end_date: date
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], dict[str, dict[str, Any]]]:
        """Fetch every investment transaction in the window.

        Returns:
            tuple: (accounts, investment transactions, securities by id)
        """
        accounts: list[dict[str, Any]] = []
        securities: dict[str, dict[str, Any]] = {}

        def fetch_page(offset: int, count: int) -> Page[dict[str, Any]]:
            request = InvestmentsTransactionsGetRequest(
                access_token=access_token,
                start_date=start_date,
                end_date=end_date,
                options=InvestmentsTransactionsGetRequestOptions(
                    count=count, offset=offset
                ),
            )
            response = _as_dict(self.client.investments_transactions_get(request))
            if not accounts:
                accounts.extend(_as_dict(a) for a in response.get("accounts", []))
            for security in response.get("securities", []):
                security = _as_dict(security)
                securities[security["security_id"]] = security
            return Page(
                [_as_dict(t) for t in response.get("investment_transactions", [])],
                response.get("total_investment_transactions", 0),
            )

        transactions = paginate(
            fetch_page, PLAID_PAGE_SIZE, key=lambda t: t["investment_transaction_id"]
        )
        return accounts, transactions, securities

    def fetch_holdings(
        self, access_token: str
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], dict[str, dict[str, Any]]]:
        """Fetch current holdings.

        Returns:
            tuple: (accounts, holdings, securities by id)
        """
        request = InvestmentsHoldingsGetRequest(access_token=access_token)
        response = _as_dict(self.client.investments_holdings_get(request))
        securities = {
            s["security_id"]: s
            for s in (_as_dict(x) for x in response.get("securities", []))
        }
        return (
            [_as_dict(a) for a in response.get("accounts", [])],
            [_as_dict(h) for h in response.get("holdings", [])],
            securities,
        )

    # Account assembly

    def fetch_account_with_transactions(
        self, account_config: PlaidAccountConfig, start_date: date, end_date: date
    ) -> list[Account]:
        """Fetch balances and transactions for every sub-account of an item."""
        raw_accounts, raw_transactions = self.fetch_paged_transactions(
            account_config.token, start_date, end_date
        )

        accounts = [map_account(a, account_config.type) for a in raw_accounts]
        by_id = {account.account_id: account for account in accounts}
        for raw in raw_transactions:
            owner = by_id.get(raw["account_id"])
            if owner is not None:
                owner.transactions.append(map_transaction(raw, owner))

        logger.info(
            f"Fetched {len(accounts)} sub-accounts and {len(raw_transactions)} transactions"
        )
        return accounts

    def fetch_account_with_investment_transactions(
        self, account_config: PlaidAccountConfig, start_date: date, end_date: date
    ) -> list[Account]:
        """Fetch investment transactions for every sub-account of an item.

        Transactions whose security has no ticker (cash movements) are dropped.
        """
        raw_accounts, raw_transactions, securities = (
            self.fetch_paged_investment_transactions(
                account_config.token, start_date, end_date
            )
        )

        accounts = [map_account(a, account_config.type) for a in raw_accounts]
        by_id = {account.account_id: account for account in accounts}
        for raw in raw_transactions:
            owner = by_id.get(raw["account_id"])
            if owner is None:
                continue
            transaction = map_investment_transaction(raw, securities, owner)
            if getattr(transaction, "ticker", None):
                owner.transactions.append(transaction)

        logger.info(
            f"Fetched {len(accounts)} sub-accounts and {len(raw_transactions)} investment transactions"
        )
        return accounts

    def fetch_account_with_holdings(
        self, account_config: PlaidAccountConfig
    ) -> list[Account]:
        """Fetch holdings for every sub-account of an item."""
        raw_accounts, raw_holdings, securities = self.fetch_holdings(
            account_config.token
        )

        accounts = [map_account(a, account_config.type) for a in raw_accounts]
        by_id = {account.account_id: account for account in accounts}
        for raw in raw_holdings:
            owner = by_id.get(raw["account_id"])
            if owner is not None:
                owner.holdings.append(map_holding(raw, securities, owner))

        logger.info(
            f"Fetched {len(accounts)} sub-accounts and {len(raw_holdings)} holdings"
        )
        return accounts

    def fetch_investment_accounts(
        self, account_config: PlaidAccountConfig, start_date: date, end_date: date
    ) -> list[Account]:
        """Fetch holdings and investment transactions, merged by account id."""
        with_holdings = self.fetch_account_with_holdings(account_config)
        accounts = self.fetch_account_with_investment_transactions(
            account_config, start_date, end_date
        )

        by_id = {account.account_id: account for account in accounts}
        for holding_account in with_holdings:
            existing = by_id.get(holding_account.account_id)
            if existing is None:
                accounts.append(holding_account)
            else:
                existing.holdings = holding_account.holdings
        return accounts

    def fetch(
        self, account_config: PlaidAccountConfig, start_date: date, end_date: date
    ) -> FetchResult:
        """Fetch one configured Plaid item, never raising."""
        try:
            if account_config.type == AccountType.INVESTMENT:
                accounts = self.fetch_investment_accounts(
                    account_config, start_date, end_date
                )
            else:
                accounts = self.fetch_account_with_transactions(
                    account_config, start_date, end_date
                )
        except ApiException as e:
            code = _error_code(e)
            kind = (
                FetchErrorKind.AUTHENTICATION
                if code in AUTH_ERROR_CODES or e.status in (401, 403)
                else FetchErrorKind.REQUEST
            )
            logger.error(f"❌ Error fetching account {account_config.id}: {code or e}")
            return FetchResult.failure(kind, str(code or e), account_config.id)
        except (KeyError, TypeError, ValidationError) as e:
            logger.error(f"❌ Error mapping account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.MAPPING, str(e), account_config.id
            )
        except (OpenApiException, TransportError) as e:
            logger.error(f"❌ Error reaching Plaid for account {account_config.id}: {e}")
            return FetchResult.failure(
                FetchErrorKind.REQUEST, str(e), account_config.id
            )

        return FetchResult(accounts=accounts)

    # Account linking

    def create_link_token(self) -> str:
        """Create a Link token for linking a new institution."""
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=PLAID_USER_ID),
            client_name="Mintable",
            products=[Products("transactions")],
            country_codes=[CountryCode(code) for code in self.config.country_codes],
            language=self.config.language,
        )
        response = _as_dict(self.client.link_token_create(request))
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        """Exchange a Link public token.

        Returns:
            tuple: (item_id, access_token)
        """
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = _as_dict(self.client.item_public_token_exchange(request))
        logger.info("Plaid access token saved")
        return response["item_id"], response["access_token"]

    def create_sandbox_access_token(
        self,
        institution_id: str = "ins_109508",
        initial_products: list[str] | None = None,
    ) -> tuple[str, str]:
        """Create and exchange a Plaid Sandbox public token.

        Returns:
            tuple: (item_id, access_token)
        """
        if self.config.environment != PlaidEnvironment.SANDBOX:
            raise ValueError("create_sandbox_access_token is only available in sandbox")

        # Only needed for sandbox linking
        from plaid.model.sandbox_public_token_create_request import (
            SandboxPublicTokenCreateRequest,
        )

        products = initial_products or ["transactions"]
        request = SandboxPublicTokenCreateRequest(
            institution_id=institution_id,
            initial_products=[Products(p) for p in products],
        )

        logger.info("Creating Plaid sandbox public token…")
        response = _as_dict(self.client.sandbox_public_token_create(request))
        public_token = response.get("public_token")
        if not isinstance(public_token, str) or not public_token:
            raise RuntimeError("Failed to create sandbox public token")

        return self.exchange_public_token(public_token)
