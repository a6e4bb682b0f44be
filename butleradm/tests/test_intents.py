import base64

import pytest
import yaml

from butleradm.errors import ValidationError
from butleradm.modules.bootstrap.config import load_config
from butleradm.modules.bootstrap.intents import (
    build_cluster_bootstrap,
    build_credentials_secret,
    build_provider_config,
    validate_intent,
)


def test_single_node_has_no_workers(harvester_config):
    cfg = load_config(harvester_config)
    cluster = build_cluster_bootstrap(cfg).to_manifest()["spec"]["cluster"]
    assert "workers" not in cluster
    assert cluster["controlPlane"]["replicas"] == 1
    assert cluster["topology"] == "single-node"


def test_ha_includes_workers_with_extra_disks(nutanix_config):
    cfg = load_config(nutanix_config)
    cluster = build_cluster_bootstrap(cfg).to_manifest()["spec"]["cluster"]
    assert cluster["controlPlane"] == {"replicas": 3, "cpu": 4, "memoryMB": 8192, "diskGB": 50}
    assert cluster["workers"]["replicas"] == 2
    assert cluster["workers"]["extraDisks"] == [{"sizeGB": 200, "storageClass": "fast"}, {"sizeGB": 50}]


def test_zero_workers_omits_block(nutanix_config):
    nutanix_config["cluster"]["workers"]["replicas"] = 0
    cfg = load_config(nutanix_config)
    assert "workers" not in build_cluster_bootstrap(cfg).to_manifest()["spec"]["cluster"]


def test_cluster_bootstrap_shape(nutanix_config):
    cfg = load_config(nutanix_config)
    manifest = build_cluster_bootstrap(cfg).to_manifest()
    assert manifest["apiVersion"] == "butler.butlerlabs.dev/v1alpha1"
    assert manifest["kind"] == "ClusterBootstrap"
    assert manifest["metadata"] == {"name": "mgmt", "namespace": "butler-system"}

    spec = manifest["spec"]
    assert spec["provider"] == "nutanix"
    assert spec["providerRef"] == {"name": "mgmt-provider", "namespace": "butler-system"}
    assert spec["network"] == {"podCIDR": "10.244.0.0/16", "serviceCIDR": "10.96.0.0/12", "vip": "10.0.0.10"}
    assert spec["talos"]["version"] == "v1.9.0"
    assert spec["addons"]["cni"] == {"type": "cilium"}
    assert spec["addons"]["loadBalancer"] == {"type": "metallb", "addressPool": "10.0.0.100-10.0.0.150"}
    assert spec["addons"]["capi"] == {"enabled": False, "version": ""}
    assert spec["addons"]["console"] == {"enabled": False}


def test_console_with_ingress(nutanix_config):
    nutanix_config["addons"]["console"] = {
        "enabled": True,
        "version": "v0.3.0",
        "ingress": {"enabled": True, "host": "butler.example.com", "className": "nginx", "tls": True},
    }
    console = build_cluster_bootstrap(load_config(nutanix_config)).to_manifest()["spec"]["addons"]["console"]
    assert console["enabled"] is True
    assert console["version"] == "v0.3.0"
    assert console["ingress"]["host"] == "butler.example.com"
    assert console["ingress"]["className"] == "nginx"


def test_console_without_ingress(nutanix_config):
    nutanix_config["addons"]["console"] = {"enabled": True, "version": "v0.3.0"}
    console = build_cluster_bootstrap(load_config(nutanix_config)).to_manifest()["spec"]["addons"]["console"]
    assert console == {"enabled": True, "version": "v0.3.0"}


def test_builders_are_deterministic(nutanix_config):
    cfg = load_config(nutanix_config)
    assert build_cluster_bootstrap(cfg).to_manifest() == build_cluster_bootstrap(cfg).to_manifest()
    assert build_provider_config(cfg).to_manifest() == build_provider_config(cfg).to_manifest()


def test_nutanix_provider_config(nutanix_config):
    manifest = build_provider_config(load_config(nutanix_config)).to_manifest()
    assert manifest["kind"] == "ProviderConfig"
    assert manifest["metadata"]["name"] == "mgmt-provider"
    spec = manifest["spec"]
    assert spec["credentialsRef"] == {"name": "mgmt-nutanix-credentials", "namespace": "butler-system"}
    assert spec["nutanix"] == {
        "endpoint": "prism.example.com",
        "port": 9440,
        "insecure": False,
        "clusterUUID": "0005-cluster",
        "subnetUUID": "0005-subnet",
        "imageUUID": "0005-image",
    }
    assert "harvester" not in spec and "proxmox" not in spec


def test_provider_config_never_embeds_credentials(nutanix_config):
    text = yaml.safe_dump(build_provider_config(load_config(nutanix_config)).to_manifest())
    assert "s3cret" not in text
    assert "password" not in text


def test_harvester_provider_config(harvester_config):
    spec = build_provider_config(load_config(harvester_config)).to_manifest()["spec"]
    assert spec["credentialsRef"] == {
        "name": "edge-harvester-credentials",
        "namespace": "butler-system",
        "key": "kubeconfig",
    }
    assert spec["harvester"] == {
        "namespace": "default",
        "networkName": "default/vlan40",
        "imageName": "default/talos-1.9.0",
    }


def test_proxmox_provider_config_omits_unset_fields(proxmox_config):
    spec = build_provider_config(load_config(proxmox_config)).to_manifest()["spec"]
    assert spec["proxmox"] == {
        "endpoint": "https://pve.lab:8006",
        "insecure": False,
        "nodes": ["pve1", "pve2"],
        "storage": "local-lvm",
    }


def test_built_intents_match_bundled_schemas(nutanix_config, harvester_config, proxmox_config):
    for raw in (nutanix_config, harvester_config, proxmox_config):
        cfg = load_config(raw)
        validate_intent(build_provider_config(cfg).to_manifest())
        validate_intent(build_cluster_bootstrap(cfg).to_manifest())


def test_schema_violation_rejected(nutanix_config):
    manifest = build_cluster_bootstrap(load_config(nutanix_config)).to_manifest()
    manifest["spec"]["cluster"]["controlPlane"]["replicas"] = 0
    with pytest.raises(ValidationError) as exc:
        validate_intent(manifest)
    assert "spec.cluster.controlPlane.replicas" in str(exc.value)


def test_unknown_kind_rejected():
    with pytest.raises(ValidationError):
        validate_intent({"apiVersion": "butler.butlerlabs.dev/v1alpha1", "kind": "Tenant", "metadata": {"name": "x"}})


def test_nutanix_secret_uses_string_data(nutanix_config):
    secret = build_credentials_secret(load_config(nutanix_config))
    assert secret["metadata"] == {"name": "mgmt-nutanix-credentials", "namespace": "butler-system"}
    assert secret["stringData"] == {"username": "admin", "password": "s3cret"}


def test_proxmox_secret_only_has_populated_keys(proxmox_config):
    secret = build_credentials_secret(load_config(proxmox_config))
    assert secret["stringData"] == {"token": "root@pam!butler", "tokenSecret": "abc-123"}


def test_harvester_secret_carries_kubeconfig(harvester_config):
    secret = build_credentials_secret(load_config(harvester_config))
    assert base64.b64decode(secret["data"]["kubeconfig"]) == b"apiVersion: v1\nkind: Config\n"
