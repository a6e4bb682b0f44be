"""Bootstrap configuration model.

The bootstrap file describes the management cluster to build: provider,
topology, node pools, network, Talos image and addons. It is loaded once,
validated, and then treated as read-only for the rest of the run.

Config file lookup order:
1. Explicit --config path
2. ./bootstrap.yaml
3. ~/.butler/config.yaml
"""
import ipaddress
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ...errors import ValidationError

logger = logging.getLogger("butleradm.bootstrap.config")

PROVIDERS = ("harvester", "nutanix", "proxmox")
TOPOLOGY_SINGLE_NODE = "single-node"
TOPOLOGY_HA = "ha"
TOPOLOGIES = (TOPOLOGY_SINGLE_NODE, TOPOLOGY_HA)

DEFAULT_CONFIG_FILENAME = "bootstrap.yaml"
DEFAULT_HOME_CONFIG = "config.yaml"

# Applied when the field is missing or empty
DEFAULTS = {
    "pod_cidr": "10.244.0.0/16",
    "service_cidr": "10.96.0.0/12",
    "version": "v1.9.0",
    "cni": "cilium",
    "storage": "longhorn",
    "load_balancer": "metallb",
    "git_ops": "flux",
    "topology": TOPOLOGY_HA,
    "port": 9440,
}

DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def expand_path(path: str) -> str:
    """Expand a leading ~ and make the path absolute."""
    if not path:
        return path
    return str(Path(os.path.expanduser(path)).absolute())


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class DiskConfig(_Model):
    """An additional disk attached to every node of a pool."""
    size_gb: int = Field(alias="sizeGB")
    storage_class: Optional[str] = Field(default=None, alias="storageClass")


class NodePoolConfig(_Model):
    """A pool of identically sized nodes."""
    replicas: int = 0
    cpu: int = 0
    memory_mb: int = Field(default=0, alias="memoryMB")
    disk_gb: int = Field(default=0, alias="diskGB")
    extra_disks: List[DiskConfig] = Field(default_factory=list, alias="extraDisks")


class ClusterConfig(_Model):
    name: str = ""
    topology: str = TOPOLOGY_HA
    control_plane: NodePoolConfig = Field(default_factory=NodePoolConfig, alias="controlPlane")
    workers: NodePoolConfig = Field(default_factory=NodePoolConfig)

    @field_validator("topology", mode="before")
    @classmethod
    def default_topology(cls, v: Any) -> Any:
        return DEFAULTS["topology"] if not v else v

    @model_validator(mode="before")
    @classmethod
    def single_node_has_one_control_plane(cls, data: Any) -> Any:
        """A single-node cluster always runs exactly one control plane node."""
        if not isinstance(data, dict) or data.get("topology") != TOPOLOGY_SINGLE_NODE:
            return data
        data = dict(data)
        key = "controlPlane" if "controlPlane" in data or "control_plane" not in data else "control_plane"
        pool = data.get(key)
        pool = dict(pool) if isinstance(pool, dict) else {}
        if pool.get("replicas") not in (None, 1):
            logger.warning("⚠️ single-node topology: forcing controlPlane.replicas to 1")
        pool["replicas"] = 1
        data[key] = pool
        return data


class NetworkConfig(_Model):
    pod_cidr: str = Field(default=DEFAULTS["pod_cidr"], alias="podCIDR")
    service_cidr: str = Field(default=DEFAULTS["service_cidr"], alias="serviceCIDR")
    vip: str = ""

    @field_validator("pod_cidr", "service_cidr", mode="before")
    @classmethod
    def default_cidr(cls, v: Any, info: ValidationInfo) -> Any:
        return DEFAULTS[info.field_name] if not v else v


class TalosConfig(_Model):
    """Talos Linux image: version plus the image-factory schematic (variant) id."""
    version: str = DEFAULTS["version"]
    schematic: str = ""

    @field_validator("version", mode="before")
    @classmethod
    def default_version(cls, v: Any) -> Any:
        return DEFAULTS["version"] if not v else v


class CNIConfig(_Model):
    type: str = DEFAULTS["cni"]


class StorageConfig(_Model):
    type: str = DEFAULTS["storage"]


class LoadBalancerConfig(_Model):
    type: str = DEFAULTS["load_balancer"]
    address_pool: str = Field(default="", alias="addressPool")


class GitOpsConfig(_Model):
    type: str = DEFAULTS["git_ops"]


class CAPIConfig(_Model):
    enabled: bool = False
    version: str = ""


class ButlerControllerConfig(_Model):
    enabled: bool = False
    version: str = ""
    image: str = ""


class ConsoleIngressConfig(_Model):
    enabled: bool = False
    host: str = ""
    class_name: str = Field(default="", alias="className")
    tls: bool = False
    tls_secret_name: str = Field(default="", alias="tlsSecretName")


class ConsoleConfig(_Model):
    enabled: bool = False
    version: str = ""
    ingress: ConsoleIngressConfig = Field(default_factory=ConsoleIngressConfig)


class AddonsConfig(_Model):
    cni: CNIConfig = Field(default_factory=CNIConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    load_balancer: LoadBalancerConfig = Field(default_factory=LoadBalancerConfig, alias="loadBalancer")
    git_ops: GitOpsConfig = Field(default_factory=GitOpsConfig, alias="gitOps")
    capi: CAPIConfig = Field(default_factory=CAPIConfig)
    butler_controller: ButlerControllerConfig = Field(
        default_factory=ButlerControllerConfig, alias="butlerController"
    )
    console: ConsoleConfig = Field(default_factory=ConsoleConfig)

    @model_validator(mode="before")
    @classmethod
    def default_addon_types(cls, data: Any) -> Any:
        """Empty addon types fall back to the standard stack."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key, default in (("cni", "cni"), ("storage", "storage"),
                             ("loadBalancer", "load_balancer"), ("gitOps", "git_ops")):
            block = data.get(key)
            if isinstance(block, dict) and not block.get("type"):
                data[key] = {**block, "type": DEFAULTS[default]}
        return data


class HarvesterProviderConfig(_Model):
    kubeconfig_path: str = Field(default="", alias="kubeconfigPath")
    namespace: str = ""
    network_name: str = Field(default="", alias="networkName")
    image_name: str = Field(default="", alias="imageName")

    @field_validator("kubeconfig_path")
    @classmethod
    def expand_kubeconfig_path(cls, v: str) -> str:
        """Expand the user home directory in the kubeconfig path."""
        return expand_path(v)


class NutanixProviderConfig(_Model):
    endpoint: str = ""
    port: int = DEFAULTS["port"]
    insecure: bool = False
    username: str = ""
    password: str = ""
    cluster_uuid: str = Field(default="", alias="clusterUUID")
    subnet_uuid: str = Field(default="", alias="subnetUUID")
    image_uuid: str = Field(default="", alias="imageUUID")
    storage_container_uuid: Optional[str] = Field(default=None, alias="storageContainerUUID")
    # "ip hostname" entries added to the KIND node's /etc/hosts
    host_aliases: List[str] = Field(default_factory=list, alias="hostAliases")

    @field_validator("port", mode="before")
    @classmethod
    def default_port(cls, v: Any) -> Any:
        return DEFAULTS["port"] if not v else v


class ProxmoxProviderConfig(_Model):
    endpoint: str = ""
    insecure: bool = False
    username: str = ""
    password: str = ""
    token_id: str = Field(default="", alias="tokenID")
    token_secret: str = Field(default="", alias="tokenSecret")
    nodes: List[str] = Field(default_factory=list)
    storage: str = ""
    template_id: Optional[int] = Field(default=None, alias="templateID")
    vmid_start: Optional[int] = Field(default=None, alias="vmidStart")
    vmid_end: Optional[int] = Field(default=None, alias="vmidEnd")
    host_aliases: List[str] = Field(default_factory=list, alias="hostAliases")


class ProviderConfig(_Model):
    harvester: Optional[HarvesterProviderConfig] = None
    nutanix: Optional[NutanixProviderConfig] = None
    proxmox: Optional[ProxmoxProviderConfig] = None


class BootstrapConfig(_Model):
    """The complete, validated description of the management cluster."""
    provider: str = ""
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    talos: TalosConfig = Field(default_factory=TalosConfig)
    addons: AddonsConfig = Field(default_factory=AddonsConfig)
    provider_config: ProviderConfig = Field(default_factory=ProviderConfig, alias="providerConfig")

    @property
    def is_single_node(self) -> bool:
        return self.cluster.topology == TOPOLOGY_SINGLE_NODE

    @property
    def provider_settings(self):
        """The provider block selected by ``provider``."""
        return getattr(self.provider_config, self.provider, None) if self.provider in PROVIDERS else None

    @property
    def host_aliases(self) -> List[str]:
        settings = self.provider_settings
        return list(getattr(settings, "host_aliases", None) or [])

    def problems(self) -> List[str]:
        """Semantic checks that go beyond field types."""
        problems: List[str] = []

        if not self.provider:
            problems.append("provider is required")
        elif self.provider not in PROVIDERS:
            problems.append(f"unsupported provider {self.provider!r} (expected one of {', '.join(PROVIDERS)})")

        name = self.cluster.name
        if not name:
            problems.append("cluster.name is required")
        elif not DNS_LABEL.match(name):
            problems.append(f"cluster.name {name!r} must be a lowercase DNS label")

        if self.cluster.topology not in TOPOLOGIES:
            problems.append(
                f"cluster.topology {self.cluster.topology!r} must be one of {', '.join(TOPOLOGIES)}"
            )
        if self.cluster.control_plane.replicas < 1:
            problems.append("cluster.controlPlane.replicas must be at least 1")
        if self.cluster.workers.replicas < 0:
            problems.append("cluster.workers.replicas must not be negative")

        if not self.network.vip:
            problems.append("network.vip is required")
        for label, cidr in (("network.podCIDR", self.network.pod_cidr),
                            ("network.serviceCIDR", self.network.service_cidr)):
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                problems.append(f"{label} {cidr!r} is not a valid CIDR")

        if self.provider in PROVIDERS:
            problems.extend(self._provider_problems())
        return problems

    def _provider_problems(self) -> List[str]:
        problems = []
        for other in PROVIDERS:
            if other != self.provider and getattr(self.provider_config, other) is not None:
                problems.append(f"providerConfig.{other} must not be set when provider is {self.provider}")

        settings = self.provider_settings
        prefix = f"providerConfig.{self.provider}"
        if settings is None:
            problems.append(f"{prefix} is required")
            return problems

        required = REQUIRED_PROVIDER_FIELDS[self.provider]
        for attr, label in required:
            if not getattr(settings, attr):
                problems.append(f"{prefix}.{label} is required")

        if self.provider == "proxmox":
            has_password = settings.username and settings.password
            has_token = settings.token_id and settings.token_secret
            if not (has_password or has_token):
                problems.append(f"{prefix} requires username/password or tokenID/tokenSecret")

        for alias in self.host_aliases:
            parts = alias.split()
            if len(parts) < 2 or not _is_ip(parts[0]):
                problems.append(f"{prefix}.hostAliases entry {alias!r} must look like 'IP hostname'")
        return problems


REQUIRED_PROVIDER_FIELDS: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "harvester": (
        ("kubeconfig_path", "kubeconfigPath"),
        ("namespace", "namespace"),
        ("network_name", "networkName"),
        ("image_name", "imageName"),
    ),
    "nutanix": (
        ("endpoint", "endpoint"),
        ("username", "username"),
        ("password", "password"),
        ("cluster_uuid", "clusterUUID"),
        ("subnet_uuid", "subnetUUID"),
    ),
    "proxmox": (
        ("endpoint", "endpoint"),
        ("nodes", "nodes"),
    ),
}


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def resolve_config_path(explicit: Optional[Union[str, Path]], butler_home: Path) -> Path:
    """Find the bootstrap file: explicit path, ./bootstrap.yaml, then ~/.butler/config.yaml."""
    if explicit:
        return Path(expand_path(str(explicit)))

    candidates = [Path(DEFAULT_CONFIG_FILENAME).absolute(), butler_home / DEFAULT_HOME_CONFIG]
    for candidate in candidates:
        if candidate.exists():
            logger.debug(f"Using config file {candidate}")
            return candidate
    tried = ', '.join(str(c) for c in candidates)
    raise ValidationError(f"no bootstrap config found (use --config). Tried: {tried}")


def _read_document(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ValidationError(f"config file not found: {path}")
    except yaml.YAMLError as e:
        raise ValidationError(f"config file {path} is not valid YAML: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"config file {path} must contain a mapping")
    return data


def apply_credential_env(
    data: Dict[str, Any],
    credential_env: Mapping[str, Tuple[str, ...]],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Fill empty provider credentials from environment variables.

    Only provider blocks present in the document are touched, so a missing
    block is still reported as missing.
    """
    environ = os.environ if environ is None else environ
    provider_config = data.get("providerConfig")
    if not isinstance(provider_config, dict):
        return data

    provider_config = dict(provider_config)
    for key, variables in credential_env.items():
        provider, _, field = key.partition(".")
        block = provider_config.get(provider)
        if not isinstance(block, dict) or block.get(field):
            continue
        for variable in variables:
            if environ.get(variable):
                logger.debug(f"Using ${variable} for providerConfig.{key}")
                block = {**block, field: environ[variable]}
                break
        provider_config[provider] = block
    return {**data, "providerConfig": provider_config}


def load_config(
    source: Union[str, Path, Mapping[str, Any]],
    credential_env: Optional[Mapping[str, Tuple[str, ...]]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BootstrapConfig:
    """Load and validate a bootstrap configuration.

    Args:
        source: Path to a YAML file or an already parsed mapping
        credential_env: Environment fallbacks for empty provider credentials
        environ: Environment to read fallbacks from (defaults to os.environ)

    Returns:
        The validated, immutable configuration

    Raises:
        ValidationError: Listing every problem found
    """
    if isinstance(source, Mapping):
        data = dict(source)
    else:
        data = _read_document(Path(source))

    if credential_env:
        data = apply_credential_env(data, credential_env, environ)

    try:
        cfg = BootstrapConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError([
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]) from e

    problems = cfg.problems()
    if problems:
        raise ValidationError(problems)
    return cfg
