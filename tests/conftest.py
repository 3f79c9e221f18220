"""
Global pytest fixtures for the infraguard test suite.

Provides:
- Resource stores backed by temporary SQLite files or in-memory SQLite
- Resource factories for every catalog kind
- Fake credentials and handle constructors for the client registry
"""
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
import tenacity

# Set test environment BEFORE any infraguard imports
os.environ["INVENTORY_DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORE_OPERATION_TIMEOUT_SECONDS"] = "30"
os.environ.pop("AZURE_SUBSCRIPTION_IDS", None)


# Mock tenacity to avoid retry delays
def mock_retry(*args, **kwargs):
    def decorator(f):
        return f
    return decorator
tenacity.retry = mock_retry


from infraguard.shared.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from infraguard.schemas.resources import (  # noqa: E402
    ACL,
    Account,
    Cluster,
    Instance,
    KubernetesNode,
    KubernetesService,
    Namespace,
    Pod,
    RouteTable,
    SecurityGroup,
    Subnet,
    SyncTime,
    VPC,
)
from infraguard.shared.connections.registry import HandleSpec  # noqa: E402
from infraguard.shared.db.catalog import ResourceKind  # noqa: E402
from infraguard.shared.db.store import ResourceStore  # noqa: E402

SYNCED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def sample_resource(kind: ResourceKind, suffix: str = "1", provider: str = "Azure") -> Any:
    """One well-formed object of `kind`; `suffix` keeps ids distinct."""
    labels = {"env": "test", "owner": f"team-{suffix}"}
    if kind is ResourceKind.VPC:
        return VPC(id=f"vnet-{suffix}", provider=provider, name=f"vnet {suffix}",
                   region="westeurope", ipv4_cidr="10.0.0.0/16", labels=labels)
    if kind is ResourceKind.INSTANCE:
        return Instance(id=f"vm-{suffix}", provider=provider, private_ip="10.0.1.4",
                        subnet_id="subnet-1", vpc_id="vnet-1", state="running", labels=labels)
    if kind is ResourceKind.SUBNET:
        return Subnet(id=f"subnet-{suffix}", provider=provider, cidr_block="10.0.1.0/24",
                      vpc_id="vnet-1", zone="1")
    if kind is ResourceKind.CLUSTER:
        return Cluster(id=f"aks-{suffix}", provider=provider, name=f"aks-{suffix}", vpc_id="vnet-1")
    if kind is ResourceKind.POD:
        return Pod(cluster="aks-1", namespace="default", name=f"web-{suffix}",
                   provider=provider, ip="10.244.0.5", state="Running")
    if kind is ResourceKind.KUBERNETES_SERVICE:
        return KubernetesService(cluster="aks-1", namespace="default", name=f"svc-{suffix}",
                                 provider=provider, type="LoadBalancer", ingresses=["20.1.2.3"])
    if kind is ResourceKind.KUBERNETES_NODE:
        return KubernetesNode(cluster="aks-1", name=f"node-{suffix}", provider=provider,
                              addresses=["10.0.1.10"], instance_id="vm-1")
    if kind is ResourceKind.NAMESPACE:
        return Namespace(cluster="aks-1", name=f"ns-{suffix}", provider=provider)
    if kind is ResourceKind.ACCOUNT:
        return Account(id=f"sub-{suffix}", provider=provider, name=f"Subscription {suffix}")
    if kind is ResourceKind.ROUTE_TABLE:
        return RouteTable(id=f"rt-{suffix}", provider=provider, vpc_id="vnet-1",
                          routes=[{"destination": "0.0.0.0/0", "target": "igw-1", "status": "active"}])
    if kind is ResourceKind.ACL:
        return ACL(id=f"acl-{suffix}", provider=provider, vpc_id="vnet-1",
                   rules=[{"number": 100, "protocol": "tcp", "port_range": "443",
                           "source_ranges": ["0.0.0.0/0"], "action": "allow", "direction": "inbound"}])
    if kind is ResourceKind.SECURITY_GROUP:
        return SecurityGroup(id=f"nsg-{suffix}", provider=provider, vpc_id="vnet-1",
                             rules=[{"protocol": "tcp", "port_range": "22", "source": ["10.0.0.0/8"],
                                     "direction": "inbound"}])
    if kind is ResourceKind.SYNC_TIME:
        return SyncTime(provider=provider, resource_type=f"type-{suffix}", last_sync_time=SYNCED_AT)
    raise AssertionError(f"no sample for {kind}")


@pytest.fixture
def make_resource():
    return sample_resource


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[ResourceStore, None]:
    """Open store on a temporary SQLite file."""
    resource_store = ResourceStore()
    await resource_store.open(tmp_path / "inventory.db")
    try:
        yield resource_store
    finally:
        await resource_store.close()


@pytest_asyncio.fixture
async def memory_store() -> AsyncGenerator[ResourceStore, None]:
    """Open store on in-memory SQLite (single shared connection)."""
    resource_store = ResourceStore()
    await resource_store.open(":memory:")
    try:
        yield resource_store
    finally:
        await resource_store.close()


@pytest_asyncio.fixture(params=["file", "memory"])
async def any_store(request, tmp_path) -> AsyncGenerator[ResourceStore, None]:
    """Open store on each backend: a temporary file and shared-connection memory."""
    location = tmp_path / "inventory.db" if request.param == "file" else ":memory:"
    resource_store = ResourceStore()
    await resource_store.open(location)
    try:
        yield resource_store
    finally:
        await resource_store.close()


# ============================================================================
# Client registry fixtures
# ============================================================================

class FakeCredential:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakeHandle:
    def __init__(self, name: str, account_id: str, credential: Any):
        self.name = name
        self.account_id = account_id
        self.credential = credential
        self.closed = False

    def close(self):
        self.closed = True


def fake_factory(name: str):
    def factory(account_id: str, credential: Any) -> FakeHandle:
        return FakeHandle(name, account_id, credential)
    return factory


@pytest.fixture
def credential() -> FakeCredential:
    return FakeCredential()


@pytest.fixture
def handle_specs() -> tuple:
    return (
        HandleSpec("network", "Network Client", fake_factory("network")),
        HandleSpec("peering", "Peering Client", fake_factory("peering")),
        HandleSpec("security", "Security Group Client", fake_factory("security")),
        HandleSpec("tags", "Tag Client", fake_factory("tags")),
    )


@pytest.fixture
def handle_factory():
    return fake_factory
