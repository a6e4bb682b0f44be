"""Apply the bundled CRDs and controller workloads to the KIND cluster."""
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from ...errors import DeployError
from ...utils.context import RunContext
from ...utils.kube import AlreadyExists, KubeApiError, KubeClient
from ...utils.poll import poll_until

logger = logging.getLogger("butleradm.bootstrap.deployer")

MANIFEST_ROOT = Path(__file__).parent / "manifests"
BOOTSTRAP_CONTROLLER = "butler-bootstrap"

CRD_API_VERSION = "apiextensions.k8s.io/v1"
CRD_KIND = "CustomResourceDefinition"


def _label(obj: Dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name", "<unnamed>")
    if metadata.get("namespace"):
        name = f"{metadata['namespace']}/{name}"
    return f"{obj['kind']} {name}"


class ManifestDeployer:
    """Create-or-update of bundled manifests, plus readiness waits.

    Args:
        client: Client for the KIND cluster
        manifest_root: Directory holding ``crds/`` and ``controllers/``
        poll_interval: Pause between readiness checks in seconds
    """

    def __init__(self, client: KubeClient, manifest_root: Path = MANIFEST_ROOT, poll_interval: float = 2.0):
        self.client = client
        self.manifest_root = Path(manifest_root)
        self.poll_interval = poll_interval

    def deploy_definitions(self, ctx: RunContext) -> List[str]:
        """Apply every CRD bundle. Returns the names of the applied definitions."""
        names = []
        for path in sorted((self.manifest_root / "crds").glob("*.y*ml")):
            applied = self.apply_file(ctx, path)
            names.extend(obj["metadata"]["name"] for obj in applied if obj["kind"] == CRD_KIND)
        logger.info(f"✅ Applied {len(names)} custom resource definitions")
        return names

    def controller_bundles(self, provider: str) -> List[Path]:
        directory = self.manifest_root / "controllers"
        return [
            directory / f"{BOOTSTRAP_CONTROLLER}.yaml",
            directory / f"butler-provider-{provider}.yaml",
        ]

    def deploy_controllers(self, ctx: RunContext, provider: str) -> List[Tuple[str, str]]:
        """Apply the bootstrap controller and the controller for ``provider``.

        Returns:
            (namespace, name) of every Deployment applied, in bundle order
        """
        deployments = []
        for path in self.controller_bundles(provider):
            if not path.exists():
                raise DeployError(f"no controller bundle for provider {provider!r}", source=str(path))
            for obj in self.apply_file(ctx, path):
                if obj["kind"] == "Deployment":
                    metadata = obj["metadata"]
                    deployments.append((metadata.get("namespace", "default"), metadata["name"]))
        return deployments

    def apply_file(self, ctx: RunContext, path: Path) -> List[Dict[str, Any]]:
        with open(path, 'r') as f:
            text = f.read()
        logger.debug(f"Applying {path.name}")
        return self.apply_documents(ctx, text, source=path.name)

    def apply_documents(self, ctx: RunContext, text: str, source: str = "<inline>") -> List[Dict[str, Any]]:
        """Apply every object of a multi-document YAML stream.

        Empty documents and documents without a ``kind`` are skipped.

        Returns:
            The applied objects as parsed from the stream
        """
        try:
            documents = [doc for doc in yaml.safe_load_all(text) if isinstance(doc, dict) and doc.get("kind")]
        except yaml.YAMLError as e:
            raise DeployError(f"invalid YAML: {e}", source=source)

        for obj in documents:
            ctx.raise_if_done()
            self.apply(obj, source=source)
        return documents

    def apply(self, obj: Dict[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
        """Create ``obj``, or replace the live object if it already exists."""
        label = _label(obj)
        where = f"{source}: {label}" if source else label
        try:
            try:
                result = self.client.create(obj)
                logger.debug(f"Created {label}")
                return result
            except AlreadyExists:
                metadata = obj["metadata"]
                current = self.client.get(obj["apiVersion"], obj["kind"], metadata["name"], metadata.get("namespace"))
                updated = dict(obj)
                updated["metadata"] = {
                    **metadata,
                    "resourceVersion": current["metadata"]["resourceVersion"],
                }
                result = self.client.replace(updated)
                logger.debug(f"Updated {label}")
                return result
        except KubeApiError as e:
            raise DeployError(str(e), source=where) from e

    def ensure(self, obj: Dict[str, Any]) -> bool:
        """Create ``obj`` unless it already exists; existing objects are left as they are.

        Returns:
            True if the object was created
        """
        try:
            self.client.create(obj)
        except AlreadyExists:
            logger.debug(f"{_label(obj)} already exists, reusing it")
            return False
        except KubeApiError as e:
            raise DeployError(str(e), source=_label(obj)) from e
        logger.debug(f"Created {_label(obj)}")
        return True

    def _is_established(self, name: str) -> bool:
        try:
            crd = self.client.get(CRD_API_VERSION, CRD_KIND, name)
        except KubeApiError as e:
            logger.debug(f"{name} not readable yet: {e}")
            return False
        conditions = (crd.get("status") or {}).get("conditions") or []
        return any(c.get("type") == "Established" and c.get("status") == "True" for c in conditions)

    def await_established(self, ctx: RunContext, names: Iterable[str], timeout: float) -> None:
        """Wait until every named CRD reports the Established condition."""
        pending = list(names)
        bounded = ctx.with_timeout(timeout)

        def _all_established() -> bool:
            pending[:] = [name for name in pending if not self._is_established(name)]
            return not pending

        poll_until(bounded, _all_established, self.poll_interval, description="definitions established")
        logger.info("✅ Custom resource definitions established")

    def await_ready(self, ctx: RunContext, namespace: str, name: str, timeout: float) -> None:
        """Wait until a Deployment has all desired replicas ready."""
        bounded = ctx.with_timeout(timeout)

        def _ready() -> bool:
            try:
                deployment = self.client.get("apps/v1", "Deployment", name, namespace)
            except KubeApiError as e:
                logger.debug(f"Deployment {namespace}/{name} not readable yet: {e}")
                return False
            desired = (deployment.get("spec") or {}).get("replicas")
            if desired is None:
                desired = 1
            ready = (deployment.get("status") or {}).get("readyReplicas") or 0
            logger.debug(f"Deployment {namespace}/{name}: {ready}/{desired} ready")
            return desired > 0 and ready >= desired

        poll_until(bounded, _ready, self.poll_interval, description=f"deployment {name} ready")
        logger.info(f"✅ {name} is ready")
