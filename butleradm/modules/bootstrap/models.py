"""
Data models for the bootstrap workflow.

Intent objects (ProviderConfig, ClusterBootstrap) and the ClusterBootstrap
status are pydantic models so that optional blocks are dropped on dump
instead of being sent as nulls. Local bookkeeping uses plain dataclasses.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

API_GROUP = "butler.butlerlabs.dev"
API_VERSION = f"{API_GROUP}/v1alpha1"

ROLE_CONTROL_PLANE = "control-plane"
ROLE_WORKER = "worker"


class BootstrapPhase(str, Enum):
    """Phases reported by the bootstrap controller in ClusterBootstrap status."""
    PENDING = "Pending"
    PROVISIONING_MACHINES = "ProvisioningMachines"
    CONFIGURING_TALOS = "ConfiguringTalos"
    BOOTSTRAPPING_CLUSTER = "BootstrappingCluster"
    INSTALLING_ADDONS = "InstallingAddons"
    READY = "Ready"
    FAILED = "Failed"


class _Resource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ObjectMeta(_Resource):
    name: str
    namespace: Optional[str] = None
    labels: Optional[Dict[str, str]] = None


class ObjectRef(_Resource):
    name: str
    namespace: str
    key: Optional[str] = None


class HarvesterSpec(_Resource):
    namespace: str
    network_name: str = Field(alias="networkName")
    image_name: str = Field(alias="imageName")


class NutanixSpec(_Resource):
    endpoint: str
    port: int
    insecure: bool = False
    cluster_uuid: str = Field(alias="clusterUUID")
    subnet_uuid: str = Field(alias="subnetUUID")
    image_uuid: str = Field(default="", alias="imageUUID")
    storage_container_uuid: Optional[str] = Field(default=None, alias="storageContainerUUID")


class ProxmoxSpec(_Resource):
    endpoint: str
    insecure: bool = False
    nodes: List[str]
    storage: Optional[str] = None
    template_id: Optional[int] = Field(default=None, alias="templateID")
    vmid_start: Optional[int] = Field(default=None, alias="vmidStart")
    vmid_end: Optional[int] = Field(default=None, alias="vmidEnd")


class ProviderConfigSpec(_Resource):
    provider: str
    credentials_ref: ObjectRef = Field(alias="credentialsRef")
    harvester: Optional[HarvesterSpec] = None
    nutanix: Optional[NutanixSpec] = None
    proxmox: Optional[ProxmoxSpec] = None


class ExtraDisk(_Resource):
    size_gb: int = Field(alias="sizeGB")
    storage_class: Optional[str] = Field(default=None, alias="storageClass")


class NodePoolSpec(_Resource):
    replicas: int
    cpu: int
    memory_mb: int = Field(alias="memoryMB")
    disk_gb: int = Field(alias="diskGB")
    extra_disks: Optional[List[ExtraDisk]] = Field(default=None, alias="extraDisks")


class ClusterSpec(_Resource):
    name: str
    topology: str
    control_plane: NodePoolSpec = Field(alias="controlPlane")
    workers: Optional[NodePoolSpec] = None


class NetworkSpec(_Resource):
    pod_cidr: str = Field(alias="podCIDR")
    service_cidr: str = Field(alias="serviceCIDR")
    vip: str


class TalosSpec(_Resource):
    version: str
    schematic: str


class TypedAddon(_Resource):
    type: str


class LoadBalancerAddon(_Resource):
    type: str
    address_pool: str = Field(alias="addressPool")


class VersionedAddon(_Resource):
    enabled: bool
    version: str


class ButlerControllerAddon(_Resource):
    enabled: bool
    version: str
    image: str


class ConsoleIngress(_Resource):
    enabled: bool
    host: str
    class_name: str = Field(alias="className")
    tls: bool
    tls_secret_name: str = Field(alias="tlsSecretName")


class ConsoleAddon(_Resource):
    enabled: bool
    version: Optional[str] = None
    ingress: Optional[ConsoleIngress] = None


class AddonsSpec(_Resource):
    cni: TypedAddon
    storage: TypedAddon
    load_balancer: LoadBalancerAddon = Field(alias="loadBalancer")
    git_ops: TypedAddon = Field(alias="gitOps")
    capi: VersionedAddon
    butler_controller: ButlerControllerAddon = Field(alias="butlerController")
    console: ConsoleAddon


class ClusterBootstrapSpec(_Resource):
    provider: str
    provider_ref: ObjectRef = Field(alias="providerRef")
    cluster: ClusterSpec
    network: NetworkSpec
    talos: TalosSpec
    addons: AddonsSpec


class _Intent(_Resource):
    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    metadata: ObjectMeta

    def to_manifest(self) -> Dict[str, Any]:
        """Render the object as a plain Kubernetes manifest dict."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ProviderConfigResource(_Intent):
    kind: str = "ProviderConfig"
    spec: ProviderConfigSpec


class ClusterBootstrapResource(_Intent):
    kind: str = "ClusterBootstrap"
    spec: ClusterBootstrapSpec


class _Status(_Resource):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        """Controllers may publish explicit nulls for fields not yet known."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class MachineStatus(_Status):
    name: str = ""
    role: str = ""
    phase: str = ""
    ip_address: str = Field(default="", alias="ipAddress")
    ready: bool = False


class ClusterBootstrapStatus(_Status):
    """The subset of ClusterBootstrap status read by the watcher."""

    phase: str = ""
    machines: List[MachineStatus] = Field(default_factory=list)
    kubeconfig: str = ""
    talosconfig: str = ""
    console_url: str = Field(default="", alias="consoleURL")
    failure_reason: str = Field(default="", alias="failureReason")
    failure_message: str = Field(default="", alias="failureMessage")

    @property
    def control_plane_addresses(self) -> List[str]:
        """IPs of control-plane machines that have one, in status order."""
        return [
            m.ip_address for m in self.machines
            if m.role == ROLE_CONTROL_PLANE and m.ip_address
        ]


@dataclass(frozen=True)
class ClusterCredentials:
    """Credentials of the provisioned cluster, captured once at Ready."""
    kubeconfig: bytes
    talosconfig: Optional[bytes] = None
    control_plane_addresses: List[str] = field(default_factory=list)
    console_url: Optional[str] = None


@dataclass
class SubstrateHandle:
    """The local KIND cluster hosting the controllers."""
    name: str
    kubeconfig_path: Path
    reused: bool = False


@dataclass(frozen=True)
class CredentialPaths:
    kubeconfig: Path
    talosconfig: Optional[Path] = None
