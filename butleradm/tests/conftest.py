import copy
import subprocess
from pathlib import Path

import pytest

from butleradm.config import Settings
from butleradm.modules.bootstrap.models import SubstrateHandle
from butleradm.utils.kube import AlreadyExists, NotFound


class FakeKubeClient:
    """In-memory stand-in for KubeClient.

    CRDs are established as soon as they are created and Deployments report
    all replicas ready, unless told otherwise. ``bootstrap_statuses`` scripts
    the status returned by successive reads of a ClusterBootstrap; the last
    entry repeats.
    """

    def __init__(self, establish_crds=True, ready_deployments=True):
        self.objects = {}
        self.calls = []
        self.establish_crds = establish_crds
        self.ready_deployments = ready_deployments
        self.bootstrap_statuses = []
        self.create_errors = {}
        self.get_errors = []
        self._version = 0

    @staticmethod
    def key(api_version, kind, name, namespace=None):
        return (api_version, kind, namespace, name)

    def _key_of(self, obj):
        metadata = obj["metadata"]
        return self.key(obj["apiVersion"], obj["kind"], metadata["name"], metadata.get("namespace"))

    def _next_version(self):
        self._version += 1
        return str(self._version)

    def _simulate_status(self, obj):
        if obj["kind"] == "CustomResourceDefinition" and self.establish_crds:
            obj["status"] = {"conditions": [{"type": "Established", "status": "True"}]}
        if obj["kind"] == "Deployment" and self.ready_deployments:
            replicas = obj.get("spec", {}).get("replicas", 1)
            obj["status"] = {"readyReplicas": replicas}

    def create(self, obj):
        self.calls.append(("create", obj["kind"], obj["metadata"]["name"]))
        error = self.create_errors.get((obj["kind"], obj["metadata"]["name"]))
        if error is not None:
            raise error
        key = self._key_of(obj)
        if key in self.objects:
            raise AlreadyExists(f"{obj['kind']} {obj['metadata']['name']} already exists", status=409)
        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self._simulate_status(stored)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def get(self, api_version, kind, name, namespace=None):
        self.calls.append(("get", kind, name))
        if self.get_errors:
            raise self.get_errors.pop(0)
        key = self.key(api_version, kind, name, namespace)
        if key not in self.objects:
            raise NotFound(f"{kind} {name} not found", status=404)
        obj = self.objects[key]
        if kind == "ClusterBootstrap" and self.bootstrap_statuses:
            status = self.bootstrap_statuses.pop(0) if len(self.bootstrap_statuses) > 1 else self.bootstrap_statuses[0]
            if status is None:
                obj.pop("status", None)
            else:
                obj["status"] = status
        return copy.deepcopy(obj)

    def replace(self, obj):
        self.calls.append(("replace", obj["kind"], obj["metadata"]["name"]))
        key = self._key_of(obj)
        current = self.objects.get(key)
        if current is None:
            raise NotFound(f"{obj['kind']} {obj['metadata']['name']} not found", status=404)
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise AssertionError("replace without the current resourceVersion")
        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self._simulate_status(stored)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def count(self, kind):
        return sum(1 for key in self.objects if key[1] == kind)

    def find(self, kind, name):
        for key, obj in self.objects.items():
            if key[1] == kind and key[3] == name:
                return obj
        return None


class FakeRunner:
    """Records commands instead of running them.

    ``handlers`` maps a command prefix (tuple) to either a CompletedProcess
    stdout string or an exception to raise.
    """

    def __init__(self, handlers=None):
        self.commands = []
        self.handlers = dict(handlers or {})

    def run(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        for prefix, outcome in self.handlers.items():
            if tuple(cmd[:len(prefix)]) == prefix:
                if isinstance(outcome, BaseException):
                    raise outcome
                return subprocess.CompletedProcess(cmd, 0, outcome, "")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def ran(self, *prefix):
        return [c for c in self.commands if tuple(c[:len(prefix)]) == prefix]


class FakeSubstrate:
    def __init__(self, kubeconfig_path, release_error=None):
        self.kubeconfig_path = Path(kubeconfig_path)
        self.release_error = release_error
        self.calls = []

    def acquire(self, ctx, host_aliases=()):
        self.calls.append(("acquire", list(host_aliases)))
        return SubstrateHandle("butler-bootstrap", self.kubeconfig_path)

    def release(self, handle):
        self.calls.append(("release", handle.name))
        if self.release_error:
            raise self.release_error


@pytest.fixture
def settings(tmp_path):
    return Settings(
        butler_home=tmp_path / ".butler",
        bootstrap_timeout=30,
        watch_interval=0.01,
        readiness_interval=0.01,
        definitions_timeout=5,
        controllers_timeout=5,
    )


@pytest.fixture
def kube():
    return FakeKubeClient()


@pytest.fixture
def nutanix_config():
    return {
        "provider": "nutanix",
        "cluster": {
            "name": "mgmt",
            "topology": "ha",
            "controlPlane": {"replicas": 3, "cpu": 4, "memoryMB": 8192, "diskGB": 50},
            "workers": {
                "replicas": 2,
                "cpu": 8,
                "memoryMB": 16384,
                "diskGB": 100,
                "extraDisks": [{"sizeGB": 200, "storageClass": "fast"}, {"sizeGB": 50}],
            },
        },
        "network": {"vip": "10.0.0.10"},
        "talos": {"schematic": "376567988ad370138ad8b2698212367b8edcb69b5fd68c80be1f2ec7d603b4ba"},
        "addons": {"loadBalancer": {"addressPool": "10.0.0.100-10.0.0.150"}},
        "providerConfig": {
            "nutanix": {
                "endpoint": "prism.example.com",
                "username": "admin",
                "password": "s3cret",
                "clusterUUID": "0005-cluster",
                "subnetUUID": "0005-subnet",
                "imageUUID": "0005-image",
                "hostAliases": ["192.168.1.20 prism.example.com"],
            }
        },
    }


@pytest.fixture
def harvester_config(tmp_path):
    kubeconfig = tmp_path / "harvester.yaml"
    kubeconfig.write_text("apiVersion: v1\nkind: Config\n")
    return {
        "provider": "harvester",
        "cluster": {
            "name": "edge",
            "topology": "single-node",
            "controlPlane": {"replicas": 3, "cpu": 8, "memoryMB": 16384, "diskGB": 100},
            "workers": {"replicas": 2, "cpu": 4, "memoryMB": 8192, "diskGB": 50},
        },
        "network": {"vip": "10.1.0.10"},
        "providerConfig": {
            "harvester": {
                "kubeconfigPath": str(kubeconfig),
                "namespace": "default",
                "networkName": "default/vlan40",
                "imageName": "default/talos-1.9.0",
            }
        },
    }


@pytest.fixture
def proxmox_config():
    return {
        "provider": "proxmox",
        "cluster": {
            "name": "lab",
            "controlPlane": {"replicas": 1, "cpu": 2, "memoryMB": 4096, "diskGB": 40},
        },
        "network": {"vip": "192.168.10.5"},
        "providerConfig": {
            "proxmox": {
                "endpoint": "https://pve.lab:8006",
                "tokenID": "root@pam!butler",
                "tokenSecret": "abc-123",
                "nodes": ["pve1", "pve2"],
                "storage": "local-lvm",
            }
        },
    }
