"""
Azure account clients.

One bundle per subscription: a Network client (virtual networks, peerings,
network security groups) and a Resource client (tags), all sharing a single
DefaultAzureCredential.
"""

import logging
from typing import Any, Iterable, List, Optional

import structlog
import tenacity
from azure.core.exceptions import AzureError, ServiceRequestError, ServiceResponseError
from azure.identity.aio import DefaultAzureCredential
from azure.mgmt.network.aio import NetworkManagementClient
from azure.mgmt.resource.resources.aio import ResourceManagementClient
from azure.mgmt.resource.subscriptions.aio import SubscriptionClient

from infraguard.shared.connections.registry import AccountClientRegistry, HandleSpec
from infraguard.shared.core.config import Settings, get_settings
from infraguard.shared.core.exceptions import ConstructionError
from infraguard.shared.core.provider import PROVIDER_AZURE
from infraguard.shared.core.timeout import timeout_operation

logger = structlog.get_logger()

# Retry decorator for Azure transient failures
azure_retry = tenacity.retry(
    retry=tenacity.retry_if_exception_type((ServiceRequestError, ServiceResponseError)),
    wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
    stop=tenacity.stop_after_attempt(3),
    before_sleep=tenacity.before_sleep_log(logging.getLogger(__name__), logging.WARNING),
    reraise=True,
)


def new_network_client(account_id: str, credential: Any) -> NetworkManagementClient:
    return NetworkManagementClient(credential=credential, subscription_id=account_id)


def new_resource_client(account_id: str, credential: Any) -> ResourceManagementClient:
    return ResourceManagementClient(credential=credential, subscription_id=account_id)


class AzureClientRegistry(AccountClientRegistry):
    provider_name = PROVIDER_AZURE
    handle_specs = (
        HandleSpec("network", "Network Client", new_network_client),
        HandleSpec("resources", "Resource Client", new_resource_client),
    )


@timeout_operation("cloud_api")
@azure_retry
async def list_subscription_ids(credential: Any) -> List[str]:
    """Enumerate every subscription the credential can see."""
    subscription_ids: List[str] = []
    async with SubscriptionClient(credential=credential) as client:
        async for subscription in client.subscriptions.list():
            if subscription.subscription_id:
                subscription_ids.append(subscription.subscription_id)
    logger.info("azure_subscriptions_listed", count=len(subscription_ids))
    return subscription_ids


async def create_azure_registry(
    settings: Optional[Settings] = None,
    *,
    credential: Any = None,
    accounts: Optional[Iterable[str]] = None,
) -> AzureClientRegistry:
    """
    Obtain a credential, resolve the subscriptions to provision and build the registry.

    Subscriptions come from `accounts`, then AZURE_SUBSCRIPTION_IDS, then the
    subscriptions API. A credential created here is closed again on failure.
    """
    settings = settings or get_settings()
    owns_credential = credential is None
    if credential is None:
        try:
            credential = DefaultAzureCredential()
        except (AzureError, ValueError) as exc:
            raise ConstructionError(
                f"failed to obtain a credential: {exc}",
                details={"provider": PROVIDER_AZURE},
            ) from exc

    try:
        if accounts is None:
            if settings.AZURE_SUBSCRIPTION_IDS:
                accounts = settings.AZURE_SUBSCRIPTION_IDS
            else:
                try:
                    accounts = await list_subscription_ids(credential)
                except AzureError as exc:
                    raise ConstructionError(
                        f"failed to list subscriptions: {exc}",
                        details={"provider": PROVIDER_AZURE},
                    ) from exc
        registry = await AzureClientRegistry.initialize(credential, list(accounts))
    except BaseException:
        if owns_credential:
            await credential.close()
        raise
    return registry
