"""Kubernetes access for the bootstrap workflow.

Everything the orchestrator does against a cluster goes through
``KubeClient``: create, get and replace of plain manifest dicts. It wraps the
dynamic client so bundled manifests of any kind (CRDs, RBAC, Deployments,
custom resources) can be applied without per-kind API classes.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import urllib3
from kubernetes import config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError

logger = logging.getLogger("butleradm.kube")


class KubeApiError(Exception):
    """A request against the Kubernetes API failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class AlreadyExists(KubeApiError):
    pass


class NotFound(KubeApiError):
    pass


def _describe(api_version: str, kind: str, name: str, namespace: Optional[str]) -> str:
    target = f"{namespace}/{name}" if namespace else name
    return f"{kind}.{api_version} {target}"


def _translate(error: DynamicApiError, what: str) -> KubeApiError:
    status = getattr(error, "status", None)
    reason = getattr(error, "reason", "") or str(error)
    if status == 409:
        return AlreadyExists(f"{what} already exists", status=status)
    if status == 404:
        return NotFound(f"{what} not found", status=status)
    return KubeApiError(f"{what}: {status} {reason}", status=status)


class KubeClient:
    """Create/get/replace of manifest dicts through the dynamic client."""

    def __init__(self, dynamic_client: DynamicClient):
        self.dynamic = dynamic_client

    @classmethod
    def from_kubeconfig(cls, path: Union[str, Path]) -> "KubeClient":
        """Build a client for the cluster described by a kubeconfig file."""
        resolved = Path(path).expanduser().resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {resolved}")
        api_client = config.new_client_from_config(config_file=str(resolved))
        return cls(DynamicClient(api_client))

    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError:
            # Kinds served by freshly established CRDs are missing from the
            # cached discovery document until it is refreshed.
            logger.debug(f"Refreshing API discovery for {kind}.{api_version}")
            self.dynamic.resources.invalidate_cache()
            try:
                return self.dynamic.resources.get(api_version=api_version, kind=kind)
            except ResourceNotFoundError as e:
                raise NotFound(f"{kind}.{api_version} is not served by the cluster") from e

    def _call(self, what: str, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            return fn(*args, **kwargs).to_dict()
        except DynamicApiError as e:
            raise _translate(e, what) from e
        except urllib3.exceptions.HTTPError as e:
            raise KubeApiError(f"{what}: {e}") from e

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        api_version, kind, name, namespace = _identity(obj)
        what = _describe(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        return self._call(what, resource.create, body=obj, namespace=namespace)

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        what = _describe(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        return self._call(what, resource.get, name=name, namespace=namespace)

    def replace(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        api_version, kind, name, namespace = _identity(obj)
        what = _describe(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        return self._call(what, resource.replace, body=obj, namespace=namespace)


def _identity(obj: Dict[str, Any]):
    metadata = obj.get("metadata") or {}
    return obj["apiVersion"], obj["kind"], metadata.get("name"), metadata.get("namespace")
