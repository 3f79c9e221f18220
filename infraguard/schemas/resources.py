"""
Resource Inventory Schemas

Common resource model for everything the inventory persists. Provider adapters
convert provider-native records into these shapes before writing them through
the resource store.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infraguard.shared.core.provider import normalize_provider


class StoredObject(BaseModel):
    """Base for every persisted resource: a kind-scoped id, a provider tag and a sync timestamp."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    provider: str = Field(frozen=True)
    last_sync_time: Optional[datetime] = None

    @field_validator("provider")
    @classmethod
    def _provider_required(cls, value: str) -> str:
        provider = normalize_provider(value)
        if not provider:
            raise ValueError("provider must not be empty")
        return provider

    def db_id(self) -> str:
        raise NotImplementedError()

    def get_provider(self) -> str:
        return self.provider

    def set_sync_time(self, when: datetime) -> None:
        self.last_sync_time = when


class CloudResource(StoredObject):
    """Resources addressed by their provider-assigned id."""

    id: str = Field(frozen=True)
    name: str = ""
    account_id: str = ""
    region: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)

    def db_id(self) -> str:
        return self.id


class VPC(CloudResource):
    """Virtual network (AWS VPC, Azure VNet, GCP network)."""

    ipv4_cidr: str = ""
    ipv6_cidr: str = ""
    project: str = ""
    self_link: str = ""


class Instance(CloudResource):
    public_ip: str = ""
    private_ip: str = ""
    subnet_id: str = ""
    vpc_id: str = ""
    state: str = ""
    zone: str = ""
    project: str = ""
    self_link: str = ""


class Subnet(CloudResource):
    cidr_block: str = ""
    vpc_id: str = ""
    zone: str = ""
    project: str = ""
    self_link: str = ""


class Cluster(CloudResource):
    """Managed Kubernetes cluster (EKS, AKS, GKE)."""

    full_name: str = ""
    arn: str = ""
    vpc_id: str = ""
    project: str = ""


class Account(StoredObject):
    """Cloud account / subscription / project."""

    id: str = Field(frozen=True)
    name: str = ""

    def db_id(self) -> str:
        return self.id


class Route(BaseModel):
    destination: str = ""
    target: str = ""
    status: str = ""


class RouteTable(CloudResource):
    vpc_id: str = ""
    routes: List[Route] = Field(default_factory=list)


class ACLRule(BaseModel):
    number: int = 0
    protocol: str = ""
    port_range: str = ""
    source_ranges: List[str] = Field(default_factory=list)
    destination_ranges: List[str] = Field(default_factory=list)
    action: str = ""
    direction: str = ""


class ACL(CloudResource):
    """Network access control list."""

    vpc_id: str = ""
    rules: List[ACLRule] = Field(default_factory=list)


class SecurityGroupRule(BaseModel):
    protocol: str = ""
    port_range: str = ""
    source: List[str] = Field(default_factory=list)
    direction: str = ""


class SecurityGroup(CloudResource):
    vpc_id: str = ""
    rules: List[SecurityGroupRule] = Field(default_factory=list)


def _id_segment(value: str) -> str:
    # Composite ids join their parts with "/".
    if "/" in value:
        raise ValueError(f"must not contain '/': {value!r}")
    return value


class KubernetesResource(StoredObject):
    """Objects scoped to a cluster; their id is derived from where they live."""

    cluster: str = Field(frozen=True)
    name: str = Field(frozen=True)
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("cluster", "name")
    @classmethod
    def _cluster_and_name_are_segments(cls, value: str) -> str:
        return _id_segment(value)


class Namespace(KubernetesResource):
    def db_id(self) -> str:
        return f"{self.cluster}/{self.name}"


class Pod(KubernetesResource):
    namespace: str = Field(frozen=True)
    ip: str = ""
    state: str = ""
    instance_id: str = ""

    @field_validator("namespace")
    @classmethod
    def _namespace_is_segment(cls, value: str) -> str:
        return _id_segment(value)

    def db_id(self) -> str:
        return f"{self.cluster}/{self.namespace}/{self.name}"


class KubernetesService(KubernetesResource):
    namespace: str = Field(frozen=True)
    type: str = ""
    ingresses: List[str] = Field(default_factory=list)

    @field_validator("namespace")
    @classmethod
    def _namespace_is_segment(cls, value: str) -> str:
        return _id_segment(value)

    def db_id(self) -> str:
        return f"{self.cluster}/{self.namespace}/{self.name}"


class KubernetesNode(KubernetesResource):
    namespace: str = ""
    addresses: List[str] = Field(default_factory=list)
    instance_id: str = ""

    def db_id(self) -> str:
        return f"{self.cluster}/{self.name}"


class SyncTime(StoredObject):
    """
    Last successful synchronization of a domain, independent of the
    timestamps carried by individual resources.

    An empty resource_type covers the provider as a whole.
    """

    resource_type: str = Field(default="", frozen=True)

    @field_validator("provider", "resource_type")
    @classmethod
    def _sync_id_segments(cls, value: str) -> str:
        return _id_segment(value)

    def db_id(self) -> str:
        return sync_time_id(self.provider, self.resource_type)


def sync_time_id(provider: str, resource_type: str = "") -> str:
    provider = normalize_provider(provider)
    return f"{provider}/{resource_type}" if resource_type else provider
