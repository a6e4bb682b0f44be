"""
Bootstrap orchestrator.

Sequences one management-cluster bootstrap run:

    init -> acquire-substrate -> build-local-images (local dev only)
         -> deploy-definitions -> await-definitions-established
         -> create-namespace-and-secrets -> deploy-controllers
         -> await-controllers-ready -> submit-provider-config
         -> submit-cluster-bootstrap -> watch -> persist-credentials
         -> release-substrate

Every phase is fatal except release-substrate, which always runs once the
KIND cluster has been acquired and never raises. The whole run is bounded by
one RunContext: cancelling it (SIGINT/SIGTERM) or reaching its deadline
unwinds whichever phase is active.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence

import typer
import yaml

from ...config import Settings
from ...errors import DeployError, IntentConflictError, PhaseError
from ...logging import log_phase
from ...utils.context import RunContext
from ...utils.kube import AlreadyExists, KubeApiError, KubeClient
from ...utils.runner import CommandRunner
from .config import BootstrapConfig
from .credentials import persist_credentials
from .deployer import ManifestDeployer
from .images import build_and_load_images
from .intents import (
    build_cluster_bootstrap,
    build_credentials_secret,
    build_provider_config,
    validate_intent,
)
from .kind import discover_ca_certificates
from .models import (
    ROLE_CONTROL_PLANE,
    ROLE_WORKER,
    ClusterCredentials,
    CredentialPaths,
    SubstrateHandle,
)
from .watcher import BootstrapWatcher

logger = logging.getLogger("butleradm.bootstrap.orchestrator")


class Phase(str, Enum):
    INIT = "init"
    ACQUIRE_SUBSTRATE = "acquire-substrate"
    BUILD_LOCAL_IMAGES = "build-local-images"
    DEPLOY_DEFINITIONS = "deploy-definitions"
    AWAIT_DEFINITIONS = "await-definitions-established"
    CREATE_NAMESPACE_AND_SECRETS = "create-namespace-and-secrets"
    DEPLOY_CONTROLLERS = "deploy-controllers"
    AWAIT_CONTROLLERS = "await-controllers-ready"
    SUBMIT_PROVIDER_CONFIG = "submit-provider-config"
    SUBMIT_CLUSTER_BOOTSTRAP = "submit-cluster-bootstrap"
    WATCH = "watch"
    PERSIST_CREDENTIALS = "persist-credentials"
    RELEASE_SUBSTRATE = "release-substrate"


PHASE_TITLES = {
    Phase.INIT: "Initializing bootstrap",
    Phase.ACQUIRE_SUBSTRATE: "Creating temporary KIND cluster",
    Phase.BUILD_LOCAL_IMAGES: "Building and loading local controller images",
    Phase.DEPLOY_DEFINITIONS: "Deploying Butler CRDs",
    Phase.AWAIT_DEFINITIONS: "Waiting for CRDs to be established",
    Phase.CREATE_NAMESPACE_AND_SECRETS: "Creating namespace and provider credentials",
    Phase.DEPLOY_CONTROLLERS: "Deploying Butler controllers",
    Phase.AWAIT_CONTROLLERS: "Waiting for controllers to be ready",
    Phase.SUBMIT_PROVIDER_CONFIG: "Creating ProviderConfig",
    Phase.SUBMIT_CLUSTER_BOOTSTRAP: "Creating ClusterBootstrap",
    Phase.WATCH: "Waiting for cluster bootstrap",
    Phase.PERSIST_CREDENTIALS: "Saving cluster credentials",
    Phase.RELEASE_SUBSTRATE: "Cleaning up temporary KIND cluster",
}


class Substrate(Protocol):
    """Provides the local cluster the controllers run in."""

    def acquire(self, ctx: RunContext, host_aliases: Sequence[str] = ()) -> SubstrateHandle:
        ...

    def release(self, handle: SubstrateHandle) -> None:
        ...


@dataclass
class Options:
    """Per-run switches coming from the command line."""
    dry_run: bool = False
    skip_cleanup: bool = False
    timeout: Optional[float] = None
    local_dev: bool = False
    repo_root: Optional[Path] = None


@dataclass
class BootstrapResult:
    dry_run: bool = False
    credentials: Optional[ClusterCredentials] = None
    paths: Optional[CredentialPaths] = None


class Orchestrator:
    """Drives one bootstrap run from configuration to saved credentials.

    Args:
        settings: Runtime settings (namespace, timeouts, ~/.butler location)
        options: Per-run switches
        substrate: Creates and deletes the KIND cluster
        client_factory: Builds a KubeClient from a kubeconfig path
        runner: Command runner used for local image builds
        echo: Sink for user-facing output (dry-run report, success summary)
    """

    def __init__(
        self,
        settings: Settings,
        options: Options,
        substrate: Substrate,
        client_factory: Callable[[Path], KubeClient] = KubeClient.from_kubeconfig,
        runner: Optional[CommandRunner] = None,
        echo: Callable[[str], Any] = typer.echo,
    ):
        self.settings = settings
        self.options = options
        self.substrate = substrate
        self.client_factory = client_factory
        self.runner = runner or CommandRunner()
        self.echo = echo
        self.current_phase: Optional[Phase] = None

    @contextmanager
    def _phase(self, phase: Phase, target: Optional[str] = None) -> Iterator[None]:
        self.current_phase = phase
        log_phase(logger, PHASE_TITLES[phase])
        try:
            yield
        except PhaseError:
            raise
        except Exception as e:
            raise PhaseError(phase, e, target) from e

    def run(self, ctx: RunContext, cfg: BootstrapConfig) -> BootstrapResult:
        """Bootstrap the management cluster described by ``cfg``.

        Raises:
            PhaseError: Naming the failed phase and carrying the cause
        """
        if self.options.dry_run:
            self.dry_run(cfg)
            return BootstrapResult(dry_run=True)

        namespace = self.settings.namespace
        handle: Optional[SubstrateHandle] = None
        try:
            with self._phase(Phase.INIT):
                ctx = ctx.with_timeout(self.options.timeout or self.settings.bootstrap_timeout)
                provider_config = build_provider_config(cfg, namespace).to_manifest()
                cluster_bootstrap = build_cluster_bootstrap(cfg, namespace).to_manifest()
                validate_intent(provider_config)
                validate_intent(cluster_bootstrap)
                ctx.raise_if_done()

            with self._phase(Phase.ACQUIRE_SUBSTRATE):
                handle = self.substrate.acquire(ctx, cfg.host_aliases)
                client = self.client_factory(handle.kubeconfig_path)

            if self.options.local_dev:
                with self._phase(Phase.BUILD_LOCAL_IMAGES):
                    repo_root = self.options.repo_root or self.settings.repo_root
                    build_and_load_images(ctx, self.runner, cfg.provider, repo_root, handle.name)

            deployer = ManifestDeployer(client, poll_interval=self.settings.readiness_interval)
            with self._phase(Phase.DEPLOY_DEFINITIONS):
                definitions = deployer.deploy_definitions(ctx)

            with self._phase(Phase.AWAIT_DEFINITIONS):
                deployer.await_established(ctx, definitions, self.settings.definitions_timeout)

            with self._phase(Phase.CREATE_NAMESPACE_AND_SECRETS):
                namespace_obj = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}
                deployer.ensure(namespace_obj)
                deployer.ensure(build_credentials_secret(cfg, namespace))
                logger.info("✅ Namespace and secrets ready")

            with self._phase(Phase.DEPLOY_CONTROLLERS):
                deployments = deployer.deploy_controllers(ctx, cfg.provider)

            controllers_ctx = ctx.with_timeout(self.settings.controllers_timeout)
            for deployment_ns, name in deployments:
                with self._phase(Phase.AWAIT_CONTROLLERS, target=name):
                    deployer.await_ready(controllers_ctx, deployment_ns, name, self.settings.controllers_timeout)

            with self._phase(Phase.SUBMIT_PROVIDER_CONFIG, target=provider_config["metadata"]["name"]):
                self._submit(client, provider_config)

            with self._phase(Phase.SUBMIT_CLUSTER_BOOTSTRAP, target=cluster_bootstrap["metadata"]["name"]):
                self._submit(client, cluster_bootstrap)

            with self._phase(Phase.WATCH):
                watcher = BootstrapWatcher(client, namespace, cfg.cluster.name, self.settings.watch_interval)
                credentials = watcher.watch(ctx)

            with self._phase(Phase.PERSIST_CREDENTIALS):
                paths = persist_credentials(cfg.cluster.name, credentials, self.settings.butler_home)
        finally:
            if handle is not None:
                self._release(handle)

        logger.info("🎉 Bootstrap complete!")
        self.report(cfg, credentials, paths)
        return BootstrapResult(credentials=credentials, paths=paths)

    def _submit(self, client: KubeClient, manifest: Dict[str, Any]) -> None:
        label = f"{manifest['kind']} {manifest['metadata']['name']}"
        try:
            client.create(manifest)
        except AlreadyExists as e:
            raise IntentConflictError(
                "already exists; delete it (or the KIND cluster) before bootstrapping again",
                source=label,
            ) from e
        except KubeApiError as e:
            raise DeployError(str(e), source=label) from e
        logger.info(f"✅ {label} created")

    def _release(self, handle: SubstrateHandle) -> None:
        self.current_phase = Phase.RELEASE_SUBSTRATE
        log_phase(logger, PHASE_TITLES[Phase.RELEASE_SUBSTRATE])
        try:
            self.substrate.release(handle)
        except Exception as e:
            logger.warning(f"⚠️ {Phase.RELEASE_SUBSTRATE.value}: {e}")

    def dry_run(self, cfg: BootstrapConfig) -> None:
        """Print what a run would create without touching any cluster."""
        logger.info("🔍 DRY RUN - showing what would be created")
        echo = self.echo
        namespace = self.settings.namespace
        cluster = cfg.cluster

        echo("\n--- Cluster Topology ---")
        echo(f"Topology: {cluster.topology}")
        if cfg.is_single_node:
            echo("Mode: Single control plane node running workloads (no workers)")
            echo("Note: Control plane replicas forced to 1, workers ignored")
        else:
            echo("Mode: HA with separate control plane and workers")

        echo("\n--- ProviderConfig ---")
        echo(yaml.safe_dump(build_provider_config(cfg, namespace).to_manifest(), sort_keys=False))
        echo("--- ClusterBootstrap ---")
        echo(yaml.safe_dump(build_cluster_bootstrap(cfg, namespace).to_manifest(), sort_keys=False))

        echo("--- MachineRequests (created by controller) ---")
        for i in range(cluster.control_plane.replicas):
            pool = cluster.control_plane
            echo(f"- {cluster.name}-cp-{i} ({ROLE_CONTROL_PLANE}, {pool.cpu} CPU, {pool.memory_mb} MB RAM)")
        if cfg.is_single_node:
            echo("(no workers - single-node topology)")
        else:
            for i in range(cluster.workers.replicas):
                pool = cluster.workers
                echo(f"- {cluster.name}-worker-{i} ({ROLE_WORKER}, {pool.cpu} CPU, {pool.memory_mb} MB RAM)")

        ca_certs = discover_ca_certificates(self.settings)
        if ca_certs:
            echo("\n--- CA Certificates (will be injected into KIND) ---")
            for cert in ca_certs:
                echo(f"- {cert}")

        if cfg.host_aliases:
            echo("\n--- Host Aliases (will be injected into KIND /etc/hosts) ---")
            for alias in cfg.host_aliases:
                echo(f"- {alias}")

        console = cfg.addons.console
        if console.enabled:
            echo("\n--- Butler Console ---")
            echo(f"Version: {console.version}")
            if console.ingress.enabled:
                scheme = "https" if console.ingress.tls else "http"
                echo(f"URL: {scheme}://{console.ingress.host}")
                if console.ingress.class_name:
                    echo(f"Ingress Class: {console.ingress.class_name}")
            else:
                echo("Access: via port-forward (no ingress configured)")

    def report(self, cfg: BootstrapConfig, credentials: ClusterCredentials, paths: CredentialPaths) -> None:
        """Print where the credentials went and how to use them."""
        echo = self.echo
        echo("")
        echo("Cluster credentials saved to:")
        echo(f"  Kubeconfig:   {paths.kubeconfig}")
        if paths.talosconfig:
            echo(f"  Talosconfig:  {paths.talosconfig}")

        for line in kubeconfig_summary(credentials.kubeconfig):
            echo(f"  {line}")
        echo("")

        if credentials.console_url:
            echo("Butler Console:")
            if credentials.console_url.startswith("kubectl"):
                echo(f"  Access via: {credentials.console_url}")
            else:
                echo(f"  URL: {credentials.console_url}")
            echo("  Credentials: admin / admin (change after first login)")
            echo("")

        node = credentials.control_plane_addresses[0] if credentials.control_plane_addresses else "<CONTROL_PLANE_IP>"
        echo("Usage:")
        echo(f"  export KUBECONFIG={paths.kubeconfig}")
        if paths.talosconfig:
            echo(f"  export TALOSCONFIG={paths.talosconfig}")
        echo("")
        echo("  kubectl get nodes")
        if paths.talosconfig:
            echo(f"  talosctl health --nodes {node}")


def kubeconfig_summary(kubeconfig: bytes) -> List[str]:
    """Describe the current context of a kubeconfig, or nothing if it cannot be read."""
    try:
        config = yaml.safe_load(kubeconfig)
    except yaml.YAMLError:
        return []
    if not isinstance(config, dict):
        return []

    current = config.get("current-context")
    context = next(
        (c.get("context") or {} for c in config.get("contexts") or [] if c.get("name") == current),
        {},
    )
    server = next(
        ((c.get("cluster") or {}).get("server") for c in config.get("clusters") or []
         if c.get("name") == context.get("cluster")),
        None,
    )
    lines = []
    if current:
        lines.append(f"Context:      {current}")
    if server:
        lines.append(f"API server:   {server}")
    return lines
