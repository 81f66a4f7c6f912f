"""Shared contract for provider clients.

Every provider exposes ``fetch(account_config, start_date, end_date)`` and
returns a ``FetchResult`` instead of raising, so one broken account never stops
the rest of a fetch run.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Generic, NamedTuple, Protocol, TypeVar

from ..errors import FetchError, FetchErrorKind
from ..models import Account

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FetchResult:
    """Accounts returned for one configured account, or the reason there are none."""

    accounts: list[Account] = field(default_factory=list)
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls, kind: FetchErrorKind, message: str, account_id: str | None = None
    ) -> "FetchResult":
        return cls(accounts=[], error=FetchError(kind, message, account_id))


class ProviderClient(Protocol):
    """Protocol implemented by every provider client."""

    def fetch(
        self, account_config: Any, start_date: date, end_date: date
    ) -> FetchResult:
        """Fetch accounts with transactions and/or holdings for one config entry."""
        ...


class Page(NamedTuple, Generic[T]):
    """One page of a paginated listing."""

    items: list[T]
    total: int


def paginate(
    fetch_page: Callable[[int, int], Page[T]],
    page_size: int,
    key: Callable[[T], Any] | None = None,
) -> list[T]:
    """Accumulate every page of a listing.

    ``fetch_page(offset, count)`` is called with ``offset`` equal to the number
    of items received so far until that number reaches the reported total.
    An empty page ends the loop early so a provider that over-reports its total
    cannot cause an endless loop. Errors from ``fetch_page`` propagate.

    Args:
        fetch_page: Callable returning one ``Page`` for (offset, count)
        page_size: Items requested per page, must be positive
        key: Optional identity function used to drop duplicate items

    Returns:
        list: All items, in provider order, without duplicates
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")

    items: list[T] = []
    received = 0

    while True:
        page = fetch_page(received, page_size)
        items.extend(page.items)
        received += len(page.items)

        if received >= page.total:
            break
        if not page.items:
            logger.warning(
                f"Provider returned an empty page after {received} of {page.total} items"
            )
            break

    if key is None:
        return items

    seen: set[Any] = set()
    unique: list[T] = []
    for item in items:
        identity = key(item)
        if identity in seen:
            continue
        seen.add(identity)
        unique.append(item)

    if len(unique) != len(items):
        logger.debug(f"Dropped {len(items) - len(unique)} duplicate items")
    return unique
