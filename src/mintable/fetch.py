"""Fetch orchestration: pull every configured account, then push to the sinks.

Accounts are fetched one at a time. A failing account or sink step is logged
and recorded on the returned summary; the run carries on with the rest.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from .config import Config
from .errors import ConfigError, FetchError, FetchErrorKind, MintableError, SinkError
from .models import Account, AccountType, IntegrationId, count_transactions
from .providers import ProviderClient, get_provider_client
from .sinks import SinkClient, get_sink_client

logger = logging.getLogger(__name__)


@dataclass
class FetchSummary:
    """Outcome of a fetch run."""

    accounts: list[Account] = field(default_factory=list)
    failures: list[MintableError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def transaction_count(self) -> int:
        return count_transactions(self.accounts)


def fetch_accounts(
    config: Config,
    start_date: date,
    end_date: date,
    clients: dict[str, ProviderClient] | None = None,
) -> FetchSummary:
    """Fetch every enabled account.

    Args:
        config: Loaded configuration
        start_date: First day of the transaction window
        end_date: Last day of the transaction window
        clients: Provider clients keyed by integration id; missing ones are
            built from the config on first use and shared across accounts

    Returns:
        FetchSummary: Accounts from every provider plus one failure per
        account that could not be fetched
    """
    clients = dict(clients or {})
    summary = FetchSummary()

    for account_config in config.accounts.values():
        if account_config.type == AccountType.DISABLED:
            logger.info(f"Skipping disabled account {account_config.id}")
            continue

        integration = account_config.integration
        client = clients.get(integration)
        if client is None:
            try:
                client = get_provider_client(integration, config)
            except ConfigError as e:
                logger.error(f"❌ {e}")
                summary.failures.append(
                    FetchError(FetchErrorKind.CONFIGURATION, str(e), account_config.id)
                )
                continue
            clients[integration] = client

        logger.info(f"Fetching account {account_config.id} using {integration}")
        result = client.fetch(account_config, start_date, end_date)

        if result.ok:
            summary.accounts.extend(result.accounts)
        else:
            summary.failures.append(result.error)

    return summary


def _run_sink_step(
    summary: FetchSummary,
    sinks: dict[str, SinkClient],
    config: Config,
    integration: IntegrationId | str,
    step: str,
    action: Callable[[SinkClient], None],
) -> None:
    integration = IntegrationId(integration).value
    try:
        sink = sinks.get(integration)
        if sink is None:
            sink = get_sink_client(integration, config)
            sinks[integration] = sink
        action(sink)
    except MintableError as e:
        logger.error(f"❌ Failed to write {step} to {integration}: {e}")
        summary.failures.append(e)
    except OSError as e:
        logger.error(f"❌ Failed to write {step} to {integration}: {e}")
        summary.failures.append(SinkError(integration, f"Error writing {step}: {e}"))


def sync(
    config: Config,
    start_date: date,
    end_date: date,
    sinks: dict[str, SinkClient] | None = None,
    clients: dict[str, ProviderClient] | None = None,
) -> FetchSummary:
    """Fetch all accounts and write balances and transactions to their sinks.

    Balances go to ``config.balances.integration``. Transactions, holdings and
    investment transactions go to ``config.transactions.integration``. A sink
    step that fails does not undo earlier steps.
    """
    logger.info(f"Fetching transactions from {start_date} to {end_date}")
    summary = fetch_accounts(config, start_date, end_date, clients)
    accounts = summary.accounts
    sinks = dict(sinks or {})

    if config.balances.integration:
        _run_sink_step(
            summary,
            sinks,
            config,
            config.balances.integration,
            "balances",
            lambda sink: sink.update_balances(accounts),
        )

    if config.transactions.integration:
        integration = config.transactions.integration
        _run_sink_step(
            summary,
            sinks,
            config,
            integration,
            "transactions",
            lambda sink: sink.update_transactions(accounts, AccountType.TRANSACTIONAL),
        )

        if any(a.account_type == AccountType.INVESTMENT for a in accounts):
            _run_sink_step(
                summary,
                sinks,
                config,
                integration,
                "holdings",
                lambda sink: sink.update_holdings(accounts),
            )
            _run_sink_step(
                summary,
                sinks,
                config,
                integration,
                "investment transactions",
                lambda sink: sink.update_transactions(accounts, AccountType.INVESTMENT),
            )

    if summary.ok:
        logger.info(
            f"✅ Done. Fetched {len(accounts)} accounts with {summary.transaction_count} transactions"
        )
    else:
        logger.warning(
            f"❌ Done with {len(summary.failures)} failure(s). "
            f"Fetched {len(accounts)} accounts with {summary.transaction_count} transactions"
        )
    return summary
