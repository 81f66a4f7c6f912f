"""Exception types shared across providers, sinks and the CLI."""

from enum import Enum


class MintableError(Exception):
    """Base class for all Mintable errors."""


class ConfigError(MintableError):
    """Raised when the configuration file is missing or invalid."""


class FetchErrorKind(str, Enum):
    """Why a provider fetch failed."""

    AUTHENTICATION = "authentication"
    REQUEST = "request"
    MAPPING = "mapping"
    CONFIGURATION = "configuration"


class FetchError(MintableError):
    """A provider failed to return data for one configured account."""

    def __init__(
        self, kind: FetchErrorKind, message: str, account_id: str | None = None
    ):
        self.kind = kind
        self.message = message
        self.account_id = account_id
        super().__init__(f"[{kind.value}] {message}")


class SinkError(MintableError):
    """A sink failed to persist data."""

    def __init__(self, sink: str, message: str):
        self.sink = sink
        self.message = message
        super().__init__(f"{sink}: {message}")
