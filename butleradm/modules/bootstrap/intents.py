"""Build the intent objects submitted to the bootstrap controllers.

Every builder here is pure: the same configuration always yields the same
manifest. The only I/O is reading the Harvester kubeconfig into its
credentials Secret and loading CRD schemas for validation.
"""
import base64
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import jsonschema
import yaml

from ...config import BUTLER_NAMESPACE
from ...errors import ValidationError
from .config import BootstrapConfig, NodePoolConfig
from .models import (
    AddonsSpec,
    ButlerControllerAddon,
    ClusterBootstrapResource,
    ClusterBootstrapSpec,
    ClusterSpec,
    ConsoleAddon,
    ConsoleIngress,
    ExtraDisk,
    HarvesterSpec,
    LoadBalancerAddon,
    NetworkSpec,
    NodePoolSpec,
    NutanixSpec,
    ObjectMeta,
    ObjectRef,
    ProviderConfigResource,
    ProviderConfigSpec,
    ProxmoxSpec,
    TalosSpec,
    TypedAddon,
    VersionedAddon,
)

logger = logging.getLogger("butleradm.bootstrap.intents")

CRD_DIR = Path(__file__).parent / "manifests" / "crds"


def provider_config_name(cfg: BootstrapConfig) -> str:
    return f"{cfg.cluster.name}-provider"


def credentials_secret_name(cfg: BootstrapConfig) -> str:
    return f"{cfg.cluster.name}-{cfg.provider}-credentials"


def build_provider_config(cfg: BootstrapConfig, namespace: str = BUTLER_NAMESPACE) -> ProviderConfigResource:
    """Build the ProviderConfig pointing the controllers at the provider.

    Credentials never appear here; ``credentialsRef`` names the Secret
    created by ``build_credentials_secret``.
    """
    key = "kubeconfig" if cfg.provider == "harvester" else None
    ref = ObjectRef(name=credentials_secret_name(cfg), namespace=namespace, key=key)
    spec = ProviderConfigSpec(provider=cfg.provider, credentials_ref=ref)

    settings = cfg.provider_settings
    if cfg.provider == "harvester":
        spec.harvester = HarvesterSpec(
            namespace=settings.namespace,
            network_name=settings.network_name,
            image_name=settings.image_name,
        )
    elif cfg.provider == "nutanix":
        spec.nutanix = NutanixSpec(
            endpoint=settings.endpoint,
            port=settings.port,
            insecure=settings.insecure,
            cluster_uuid=settings.cluster_uuid,
            subnet_uuid=settings.subnet_uuid,
            image_uuid=settings.image_uuid,
            storage_container_uuid=settings.storage_container_uuid,
        )
    elif cfg.provider == "proxmox":
        spec.proxmox = ProxmoxSpec(
            endpoint=settings.endpoint,
            insecure=settings.insecure,
            nodes=list(settings.nodes),
            storage=settings.storage or None,
            template_id=settings.template_id,
            vmid_start=settings.vmid_start,
            vmid_end=settings.vmid_end,
        )

    return ProviderConfigResource(
        metadata=ObjectMeta(name=provider_config_name(cfg), namespace=namespace),
        spec=spec,
    )


def _node_pool(pool: NodePoolConfig, replicas: int, with_disks: bool = True) -> NodePoolSpec:
    disks = []
    if with_disks:
        disks = [ExtraDisk(size_gb=d.size_gb, storage_class=d.storage_class or None) for d in pool.extra_disks]
    return NodePoolSpec(
        replicas=replicas,
        cpu=pool.cpu,
        memory_mb=pool.memory_mb,
        disk_gb=pool.disk_gb,
        extra_disks=disks or None,
    )


def _console(cfg: BootstrapConfig) -> ConsoleAddon:
    console = cfg.addons.console
    if not console.enabled:
        return ConsoleAddon(enabled=False)

    ingress = None
    if console.ingress.enabled:
        ingress = ConsoleIngress(
            enabled=True,
            host=console.ingress.host,
            class_name=console.ingress.class_name,
            tls=console.ingress.tls,
            tls_secret_name=console.ingress.tls_secret_name,
        )
    return ConsoleAddon(enabled=True, version=console.version, ingress=ingress)


def build_cluster_bootstrap(cfg: BootstrapConfig, namespace: str = BUTLER_NAMESPACE) -> ClusterBootstrapResource:
    """Build the ClusterBootstrap describing the cluster to provision.

    Single-node clusters get exactly one control plane node and no
    ``workers`` block; the block is also dropped when no workers are wanted.
    """
    cluster = cfg.cluster
    control_plane_replicas = 1 if cfg.is_single_node else cluster.control_plane.replicas
    # Extra disks are only attached to workers
    control_plane = _node_pool(cluster.control_plane, control_plane_replicas, with_disks=False)

    workers = None
    if not cfg.is_single_node and cluster.workers.replicas > 0:
        workers = _node_pool(cluster.workers, cluster.workers.replicas)

    addons = cfg.addons
    spec = ClusterBootstrapSpec(
        provider=cfg.provider,
        provider_ref=ObjectRef(name=provider_config_name(cfg), namespace=namespace),
        cluster=ClusterSpec(
            name=cluster.name,
            topology=cluster.topology,
            control_plane=control_plane,
            workers=workers,
        ),
        network=NetworkSpec(
            pod_cidr=cfg.network.pod_cidr,
            service_cidr=cfg.network.service_cidr,
            vip=cfg.network.vip,
        ),
        talos=TalosSpec(version=cfg.talos.version, schematic=cfg.talos.schematic),
        addons=AddonsSpec(
            cni=TypedAddon(type=addons.cni.type),
            storage=TypedAddon(type=addons.storage.type),
            load_balancer=LoadBalancerAddon(
                type=addons.load_balancer.type,
                address_pool=addons.load_balancer.address_pool,
            ),
            git_ops=TypedAddon(type=addons.git_ops.type),
            capi=VersionedAddon(enabled=addons.capi.enabled, version=addons.capi.version),
            butler_controller=ButlerControllerAddon(
                enabled=addons.butler_controller.enabled,
                version=addons.butler_controller.version,
                image=addons.butler_controller.image,
            ),
            console=_console(cfg),
        ),
    )
    return ClusterBootstrapResource(
        metadata=ObjectMeta(name=cluster.name, namespace=namespace),
        spec=spec,
    )


def build_credentials_secret(cfg: BootstrapConfig, namespace: str = BUTLER_NAMESPACE) -> Dict[str, Any]:
    """Build the Secret holding the provider credentials.

    Harvester stores the kubeconfig file under ``kubeconfig``; Nutanix and
    Proxmox store their username/password or token material as string data.

    Raises:
        FileNotFoundError: If the Harvester kubeconfig cannot be read
    """
    secret: Dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": credentials_secret_name(cfg), "namespace": namespace},
        "type": "Opaque",
    }

    settings = cfg.provider_settings
    if cfg.provider == "harvester":
        with open(settings.kubeconfig_path, 'rb') as f:
            secret["data"] = {"kubeconfig": base64.b64encode(f.read()).decode("ascii")}
    elif cfg.provider == "nutanix":
        secret["stringData"] = {"username": settings.username, "password": settings.password}
    elif cfg.provider == "proxmox":
        values = {
            "username": settings.username,
            "password": settings.password,
            "token": settings.token_id,
            "tokenSecret": settings.token_secret,
        }
        secret["stringData"] = {k: v for k, v in values.items() if v}
    return secret


@lru_cache(maxsize=None)
def _crd_schemas(crd_dir: Path) -> Dict[str, Dict[str, Any]]:
    """Map ``group/version/Kind`` to the openAPIV3Schema of each bundled CRD."""
    schemas = {}
    for path in sorted(crd_dir.glob("*.yaml")):
        with open(path, 'r') as f:
            for doc in yaml.safe_load_all(f):
                if not doc or doc.get("kind") != "CustomResourceDefinition":
                    continue
                spec = doc["spec"]
                for version in spec.get("versions", []):
                    schema = (version.get("schema") or {}).get("openAPIV3Schema")
                    if schema:
                        key = f"{spec['group']}/{version['name']}/{spec['names']['kind']}"
                        schemas[key] = schema
    return schemas


def validate_intent(manifest: Dict[str, Any], crd_dir: Path = CRD_DIR) -> None:
    """Check an intent object against the schema of its bundled CRD.

    Raises:
        ValidationError: Listing every schema violation
    """
    key = f"{manifest.get('apiVersion')}/{manifest.get('kind')}"
    schema = _crd_schemas(crd_dir).get(key)
    if schema is None:
        raise ValidationError(f"no bundled definition for {key}")

    validator = jsonschema.Draft7Validator(schema)
    problems: List[str] = []
    for error in sorted(validator.iter_errors(manifest), key=lambda e: list(e.path)):
        location = ".".join(str(p) for p in error.path) or "<root>"
        problems.append(f"{manifest['kind']} {location}: {error.message}")
    if problems:
        raise ValidationError(problems)
    logger.debug(f"{manifest['kind']} {manifest['metadata']['name']} matches its schema")
