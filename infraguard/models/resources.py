from infraguard.shared.db.base import Base, ResourceRecordMixin


class VPCRecord(ResourceRecordMixin, Base):
    __tablename__ = "vpcs"


class InstanceRecord(ResourceRecordMixin, Base):
    __tablename__ = "instances"


class SubnetRecord(ResourceRecordMixin, Base):
    __tablename__ = "subnets"


class ClusterRecord(ResourceRecordMixin, Base):
    __tablename__ = "clusters"


class PodRecord(ResourceRecordMixin, Base):
    __tablename__ = "pods"


class KubernetesServiceRecord(ResourceRecordMixin, Base):
    __tablename__ = "kubernetes_services"


class KubernetesNodeRecord(ResourceRecordMixin, Base):
    __tablename__ = "kubernetes_nodes"


class NamespaceRecord(ResourceRecordMixin, Base):
    __tablename__ = "namespaces"


class AccountRecord(ResourceRecordMixin, Base):
    __tablename__ = "accounts"


class RouteTableRecord(ResourceRecordMixin, Base):
    __tablename__ = "route_tables"


class ACLRecord(ResourceRecordMixin, Base):
    __tablename__ = "acls"


class SecurityGroupRecord(ResourceRecordMixin, Base):
    __tablename__ = "security_groups"


class SyncTimeRecord(ResourceRecordMixin, Base):
    __tablename__ = "sync_time"
