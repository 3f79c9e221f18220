"""
Resource catalog.

The closed set of kinds the inventory persists, each bound to its payload
schema and its storage table.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Type, TypeVar

from infraguard.models.resources import (
    ACLRecord,
    AccountRecord,
    ClusterRecord,
    InstanceRecord,
    KubernetesNodeRecord,
    KubernetesServiceRecord,
    NamespaceRecord,
    PodRecord,
    RouteTableRecord,
    SecurityGroupRecord,
    SubnetRecord,
    SyncTimeRecord,
    VPCRecord,
)
from infraguard.schemas.resources import (
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
    StoredObject,
    Subnet,
    SyncTime,
    VPC,
)
from infraguard.shared.core.exceptions import UnknownResourceKindError
from infraguard.shared.db.base import ResourceRecordMixin

T = TypeVar("T", bound=StoredObject)

# Names used for kinds outside this codebase (RPC layer, other providers).
_KIND_ALIASES = {
    "virtualnetwork": "vpc",
    "vnet": "vpc",
    "accesscontrollist": "acl",
    "k8sservice": "kubernetesservice",
    "k8snode": "kubernetesnode",
    "syncrecord": "synctime",
}


class ResourceKind(str, Enum):
    VPC = "vpcs"
    INSTANCE = "instances"
    SUBNET = "subnets"
    CLUSTER = "clusters"
    POD = "pods"
    KUBERNETES_SERVICE = "kubernetes_services"
    KUBERNETES_NODE = "kubernetes_nodes"
    NAMESPACE = "namespaces"
    ACCOUNT = "accounts"
    ROUTE_TABLE = "route_tables"
    ACL = "acls"
    SECURITY_GROUP = "security_groups"
    SYNC_TIME = "sync_time"

    @classmethod
    def parse(cls, value: Any) -> "ResourceKind":
        """Accept a member, a collection name, a member name or a kind alias; reject anything else."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip()
            try:
                return cls(key.lower())
            except ValueError:
                pass
            compact = re.sub(r"[^a-z0-9]", "", key.lower())
            compact = _KIND_ALIASES.get(compact, compact)
            for member in cls:
                if member.name.replace("_", "").lower() == compact:
                    return member
        raise UnknownResourceKindError(
            f"Unknown resource kind: {value!r}",
            details={"kind": str(value), "valid_kinds": [k.value for k in cls]},
        )


@dataclass(frozen=True)
class KindSpec(Generic[T]):
    kind: ResourceKind
    schema: Type[T]
    record: Type[ResourceRecordMixin]

    @property
    def table_name(self) -> str:
        return self.kind.value


CATALOG: Dict[ResourceKind, KindSpec[Any]] = {
    spec.kind: spec
    for spec in (
        KindSpec(ResourceKind.VPC, VPC, VPCRecord),
        KindSpec(ResourceKind.INSTANCE, Instance, InstanceRecord),
        KindSpec(ResourceKind.SUBNET, Subnet, SubnetRecord),
        KindSpec(ResourceKind.CLUSTER, Cluster, ClusterRecord),
        KindSpec(ResourceKind.POD, Pod, PodRecord),
        KindSpec(ResourceKind.KUBERNETES_SERVICE, KubernetesService, KubernetesServiceRecord),
        KindSpec(ResourceKind.KUBERNETES_NODE, KubernetesNode, KubernetesNodeRecord),
        KindSpec(ResourceKind.NAMESPACE, Namespace, NamespaceRecord),
        KindSpec(ResourceKind.ACCOUNT, Account, AccountRecord),
        KindSpec(ResourceKind.ROUTE_TABLE, RouteTable, RouteTableRecord),
        KindSpec(ResourceKind.ACL, ACL, ACLRecord),
        KindSpec(ResourceKind.SECURITY_GROUP, SecurityGroup, SecurityGroupRecord),
        KindSpec(ResourceKind.SYNC_TIME, SyncTime, SyncTimeRecord),
    )
}


def spec_for(kind: Any) -> KindSpec[Any]:
    return CATALOG[ResourceKind.parse(kind)]
