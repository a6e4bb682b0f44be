from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError

from butleradm.utils import redact_sensitive_data
from butleradm.utils.kube import AlreadyExists, KubeApiError, KubeClient, NotFound

CONFIGMAP = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {"name": "settings", "namespace": "butler-system"},
}


def api_error(status, reason):
    return DynamicApiError(ApiException(status=status, reason=reason))


@pytest.fixture
def dynamic():
    return MagicMock()


def test_create_passes_namespace(dynamic):
    resource = dynamic.resources.get.return_value
    resource.create.return_value.to_dict.return_value = {"kind": "ConfigMap"}
    assert KubeClient(dynamic).create(CONFIGMAP) == {"kind": "ConfigMap"}
    dynamic.resources.get.assert_called_once_with(api_version="v1", kind="ConfigMap")
    resource.create.assert_called_once_with(body=CONFIGMAP, namespace="butler-system")


@pytest.mark.parametrize("status, error", [(409, AlreadyExists), (404, NotFound), (500, KubeApiError)])
def test_api_errors_translated(dynamic, status, error):
    dynamic.resources.get.return_value.create.side_effect = api_error(status, "boom")
    with pytest.raises(error) as exc:
        KubeClient(dynamic).create(CONFIGMAP)
    assert exc.value.status == status
    assert "ConfigMap.v1 butler-system/settings" in str(exc.value)


def test_discovery_refreshed_once_for_new_kinds(dynamic):
    resource = MagicMock()
    resource.get.return_value.to_dict.return_value = {"kind": "ClusterBootstrap"}
    dynamic.resources.get.side_effect = [ResourceNotFoundError("missing"), resource]

    client = KubeClient(dynamic)
    client.get("butler.butlerlabs.dev/v1alpha1", "ClusterBootstrap", "mgmt", "butler-system")
    dynamic.resources.invalidate_cache.assert_called_once()
    resource.get.assert_called_once_with(name="mgmt", namespace="butler-system")


def test_unserved_kind_is_not_found(dynamic):
    dynamic.resources.get.side_effect = ResourceNotFoundError("missing")
    with pytest.raises(NotFound):
        KubeClient(dynamic).get("butler.butlerlabs.dev/v1alpha1", "Tenant", "x")


def test_missing_kubeconfig(tmp_path):
    with pytest.raises(FileNotFoundError):
        KubeClient.from_kubeconfig(tmp_path / "nope")


def test_redact_sensitive_data():
    data = {
        "provider": "proxmox",
        "providerConfig": {"proxmox": {"password": "pw", "tokenSecret": "abc", "tokenID": "root@pam!b", "nodes": ["a"]}},
        "list": [{"Password": "x"}],
    }
    redacted = redact_sensitive_data(data, ("password", "secret", "token"))
    proxmox = redacted["providerConfig"]["proxmox"]
    assert proxmox["password"] == "[REDACTED]"
    assert proxmox["tokenSecret"] == "[REDACTED]"
    assert proxmox["tokenID"] == "[REDACTED]"
    assert proxmox["nodes"] == ["a"]
    assert redacted["list"] == [{"Password": "[REDACTED]"}]
    assert data["providerConfig"]["proxmox"]["password"] == "pw"
