"""Provider clients that pull accounts and transactions into the common model."""

from ..config import Config
from ..errors import ConfigError
from ..models import IntegrationId
from .base import FetchResult, Page, ProviderClient, paginate
from .csv_import import CSVImportClient
from .finicity import FinicityClient
from .mx import MxClient
from .plaid import PlaidClient


def get_provider_client(integration: IntegrationId | str, config: Config) -> ProviderClient:
    """Build the provider client for an account's ``integration`` tag.

    Raises:
        ConfigError: If the integration is not a provider or is not configured
    """
    integration = IntegrationId(integration)
    integrations = config.integrations

    if integration == IntegrationId.CSV_IMPORT:
        return CSVImportClient()

    if integration == IntegrationId.PLAID:
        section = integrations.plaid
        factory = PlaidClient
    elif integration == IntegrationId.MX:
        section = integrations.mx
        factory = MxClient
    elif integration == IntegrationId.FINICITY:
        section = integrations.finicity
        factory = FinicityClient
    else:
        raise ConfigError(f"'{integration.value}' is not a provider integration")

    if section is None:
        raise ConfigError(
            f"Integration '{integration.value}' is not configured, "
            f"run 'mintable {integration.value}-setup'"
        )
    return factory(section)


__all__ = [
    "CSVImportClient",
    "FetchResult",
    "FinicityClient",
    "MxClient",
    "Page",
    "PlaidClient",
    "ProviderClient",
    "get_provider_client",
    "paginate",
]
