# ruff: noqa: S101,S106
"""Tests for the Plaid provider client."""

import json
from datetime import date
from typing import Any
from unittest.mock import MagicMock

import pytest
from plaid.exceptions import ApiException
from urllib3.exceptions import MaxRetryError, ProtocolError

from mintable.config import (
    PlaidAccountConfig,
    PlaidConfig,
    PlaidCredentials,
    PlaidEnvironment,
)
from mintable.errors import FetchErrorKind
from mintable.models import AccountType
from mintable.providers.plaid import PlaidClient

START = date(2024, 1, 1)
END = date(2024, 2, 29)


def _account(account_id: str = "acc-1", **overrides: Any) -> dict[str, Any]:
    account = {
        "account_id": account_id,
        "name": "Plaid Checking",
        "official_name": "Plaid Gold Standard 0% Interest Checking",
        "mask": "0000",
        "type": "depository",
        "subtype": "checking",
        "balances": {
            "current": 110.0,
            "available": 100.0,
            "limit": None,
            "iso_currency_code": "USD",
        },
    }
    account.update(overrides)
    return account


def _transaction(transaction_id: str, day: date, amount: float = 12.5) -> dict[str, Any]:
    return {
        "transaction_id": transaction_id,
        "account_id": "acc-1",
        "date": day,
        "amount": amount,
        "name": "Coffee Shop",
        "category": ["Food and Drink", "Restaurants", "Coffee Shop"],
        "pending": False,
        "iso_currency_code": "USD",
        "location": {"city": "San Francisco", "region": "CA", "lat": 37.7, "lon": -122.4},
    }


@pytest.fixture
def plaid_config() -> PlaidConfig:
    return PlaidConfig(
        environment=PlaidEnvironment.SANDBOX,
        credentials=PlaidCredentials(client_id="id", secret="secret"),
    )


@pytest.fixture
def api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(plaid_config: PlaidConfig, api: MagicMock) -> PlaidClient:
    return PlaidClient(plaid_config, client=api)


def _api_exception(status: int, error_code: str) -> ApiException:
    error = ApiException(status=status, reason="Bad Request")
    error.body = json.dumps({"error_code": error_code, "error_message": "nope"})
    return error


class TestTransactionalFetch:
    """Tests for fetching balances and transactions."""

    @pytest.mark.unit
    def test_fetches_all_pages(self, client: PlaidClient, api: MagicMock) -> None:
        api.transactions_get.side_effect = [
            {
                "accounts": [_account()],
                "transactions": [
                    _transaction("tx-1", date(2024, 1, 5)),
                    _transaction("tx-2", date(2024, 1, 20)),
                ],
                "total_transactions": 3,
            },
            {
                "accounts": [_account()],
                "transactions": [_transaction("tx-3", date(2024, 2, 2), amount=-40.0)],
                "total_transactions": 3,
            },
        ]

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        assert result.ok
        assert api.transactions_get.call_count == 2
        [account] = result.accounts
        assert [t.transaction_id for t in account.transactions] == ["tx-1", "tx-2", "tx-3"]
        assert account.transactions[2].amount == -40.0

    @pytest.mark.unit
    def test_maps_account_and_transaction(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        api.transactions_get.return_value = {
            "accounts": [_account()],
            "transactions": [_transaction("tx-1", date(2024, 1, 5))],
            "total_transactions": 1,
        }

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        [account] = result.accounts
        assert account.integration == "plaid"
        assert account.account_type == AccountType.TRANSACTIONAL
        assert account.institution == "Plaid Checking"
        assert account.account == "Plaid Gold Standard 0% Interest Checking"
        assert account.type == "checking"
        assert account.current == 110.0
        assert account.currency == "USD"

        row = account.transactions[0].to_row()
        assert row["category"] == "Food and Drink - Restaurants - Coffee Shop"
        assert row["city"] == "San Francisco"
        assert row["state"] == "CA"
        assert row["institution"] == "Plaid Checking"
        assert row["date"] == date(2024, 1, 5)

    @pytest.mark.unit
    def test_auth_error_becomes_failure(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        api.transactions_get.side_effect = _api_exception(400, "ITEM_LOGIN_REQUIRED")

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        assert not result.ok
        assert result.accounts == []
        assert result.error.kind == FetchErrorKind.AUTHENTICATION
        assert result.error.account_id == "chase"

    @pytest.mark.unit
    def test_other_api_error_is_request_failure(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        api.transactions_get.side_effect = _api_exception(500, "INTERNAL_SERVER_ERROR")

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        assert result.error.kind == FetchErrorKind.REQUEST

    @pytest.mark.unit
    def test_connection_error_is_request_failure(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        api.transactions_get.side_effect = MaxRetryError(
            None, "/transactions/get", reason="connection refused"
        )

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        assert not result.ok
        assert result.error.kind == FetchErrorKind.REQUEST
        assert result.error.account_id == "chase"

    @pytest.mark.unit
    def test_dropped_connection_on_investments(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        api.investments_holdings_get.side_effect = ProtocolError("Connection aborted.")
        api.investments_transactions_get.side_effect = ProtocolError(
            "Connection aborted."
        )

        result = client.fetch(
            PlaidAccountConfig(id="brokerage", token="t", type=AccountType.INVESTMENT),
            START,
            END,
        )

        assert result.error.kind == FetchErrorKind.REQUEST

    @pytest.mark.unit
    def test_malformed_payload_is_mapping_failure(
        self, client: PlaidClient, api: MagicMock
    ) -> None:
        broken = _transaction("tx-1", date(2024, 1, 5))
        del broken["amount"]
        api.transactions_get.return_value = {
            "accounts": [_account()],
            "transactions": [broken],
            "total_transactions": 1,
        }

        result = client.fetch(PlaidAccountConfig(id="chase", token="t"), START, END)

        assert result.error.kind == FetchErrorKind.MAPPING


class TestInvestmentFetch:
    """Tests for holdings and investment transactions."""

    @pytest.fixture
    def investment_api(self, api: MagicMock) -> MagicMock:
        securities = [
            {"security_id": "sec-1", "ticker_symbol": "VTI", "name": "Vanguard Total", "type": "etf"},
            {"security_id": "cash", "ticker_symbol": None, "name": "Cash", "type": "cash"},
        ]
        brokerage = _account("inv-1", name="Brokerage", type="investment", subtype="brokerage")
        ira = _account("inv-2", name="IRA", type="investment", subtype="ira")
        api.investments_holdings_get.return_value = {
            "accounts": [brokerage, ira],
            "holdings": [
                {
                    "account_id": "inv-1",
                    "security_id": "sec-1",
                    "quantity": 10.0,
                    "cost_basis": 2000.0,
                    "institution_price": 250.0,
                    "institution_value": 2500.0,
                    "iso_currency_code": "USD",
                },
                {
                    "account_id": "inv-2",
                    "security_id": "sec-1",
                    "quantity": 1.0,
                    "institution_price": 250.0,
                    "institution_value": 250.0,
                },
            ],
            "securities": securities,
        }
        api.investments_transactions_get.return_value = {
            "accounts": [brokerage],
            "investment_transactions": [
                {
                    "investment_transaction_id": "itx-1",
                    "account_id": "inv-1",
                    "security_id": "sec-1",
                    "date": date(2024, 1, 10),
                    "name": "BUY VTI",
                    "type": "buy",
                    "subtype": "buy",
                    "quantity": -10.0,
                    "price": 200.0,
                    "fees": 0.0,
                    "amount": 2000.0,
                },
                {
                    "investment_transaction_id": "itx-2",
                    "account_id": "inv-1",
                    "security_id": "cash",
                    "date": date(2024, 1, 9),
                    "name": "Deposit",
                    "type": "cash",
                    "quantity": 0.0,
                    "amount": -2000.0,
                },
            ],
            "securities": securities,
            "total_investment_transactions": 2,
        }
        return api

    @pytest.mark.unit
    def test_merges_holdings_and_transactions(
        self, client: PlaidClient, investment_api: MagicMock
    ) -> None:
        config = PlaidAccountConfig(id="broker", token="t", type=AccountType.INVESTMENT)

        result = client.fetch(config, START, END)

        assert result.ok
        by_id = {a.account_id: a for a in result.accounts}
        assert set(by_id) == {"inv-1", "inv-2"}
        assert all(a.account_type == AccountType.INVESTMENT for a in result.accounts)

        brokerage = by_id["inv-1"]
        assert len(brokerage.holdings) == 1
        assert brokerage.holdings[0].ticker == "VTI"
        assert brokerage.holdings[0].institution_value == 2500.0

        # holdings-only account is still reported
        assert len(by_id["inv-2"].holdings) == 1
        assert by_id["inv-2"].transactions == []

    @pytest.mark.unit
    def test_investment_transactions_without_ticker_are_dropped(
        self, client: PlaidClient, investment_api: MagicMock
    ) -> None:
        config = PlaidAccountConfig(id="broker", token="t", type=AccountType.INVESTMENT)

        result = client.fetch(config, START, END)

        brokerage = next(a for a in result.accounts if a.account_id == "inv-1")
        [transaction] = brokerage.transactions
        row = transaction.to_row()
        assert row["ticker"] == "VTI"
        assert row["type"] == "Buy"
        assert row["quantity"] == 10.0
        assert row["security_name"] == "Vanguard Total"


class TestAccountLinking:
    """Tests for Link token and access token helpers."""

    @pytest.mark.unit
    def test_exchange_public_token(self, client: PlaidClient, api: MagicMock) -> None:
        api.item_public_token_exchange.return_value = {
            "item_id": "item-1",
            "access_token": "access-sandbox-1",
        }

        assert client.exchange_public_token("public-sandbox-1") == (
            "item-1",
            "access-sandbox-1",
        )

    @pytest.mark.unit
    def test_sandbox_token_requires_sandbox(self, api: MagicMock) -> None:
        production = PlaidConfig(
            environment=PlaidEnvironment.PRODUCTION,
            credentials=PlaidCredentials(client_id="id", secret="secret"),
        )
        client = PlaidClient(production, client=api)

        with pytest.raises(ValueError, match="sandbox"):
            client.create_sandbox_access_token()
        api.sandbox_public_token_create.assert_not_called()

    @pytest.mark.unit
    def test_sandbox_token_is_exchanged(self, client: PlaidClient, api: MagicMock) -> None:
        api.sandbox_public_token_create.return_value = {"public_token": "public-1"}
        api.item_public_token_exchange.return_value = {
            "item_id": "item-1",
            "access_token": "access-1",
        }

        assert client.create_sandbox_access_token() == ("item-1", "access-1")
