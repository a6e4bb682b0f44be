"""Lifecycle of the local KIND cluster that hosts the bootstrap controllers.

The cluster has a fixed name so that an interrupted bootstrap can be resumed
against the same control plane. Node fix-ups (inotify limits, custom CA
certificates, /etc/hosts entries, CoreDNS upstreams) are applied through
``docker exec`` and ``kubectl``; their failures are logged, never fatal.
"""
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Sequence

import yaml

from ...config import Settings
from ...errors import EnvironmentSetupError
from ...utils.context import RunContext
from ...utils.runner import CommandRunner
from .models import SubstrateHandle

logger = logging.getLogger("butleradm.bootstrap.kind")

CA_MOUNT_TEMPLATE = "/usr/local/share/ca-certificates/butler-custom-{index}.crt"
CERT_SUFFIXES = (".crt", ".pem")

INOTIFY_LIMITS = (
    "fs.inotify.max_user_instances=1024",
    "fs.inotify.max_user_watches=524288",
)

# Upstream resolvers reachable from the provider networks; the node's
# resolv.conf often is not (VPNs, Docker Desktop).
COREFILE = """.:53 {
    errors
    health {
       lameduck 5s
    }
    ready
    kubernetes cluster.local in-addr.arpa ip6.arpa {
       pods insecure
       fallthrough in-addr.arpa ip6.arpa
       ttl 30
    }
    prometheus :9153
    forward . 8.8.8.8 8.8.4.4 {
       max_concurrent 1000
    }
    cache 30
    loop
    reload
    loadbalance
}
"""

# Appends $1 to /etc/hosts unless the exact line is already there.
APPEND_HOSTS_ENTRY = 'grep -qxF -- "$1" /etc/hosts || echo "$1" >> /etc/hosts'

RELEASE_TIMEOUT = 300
FIXUP_ERRORS = (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError)


def _scan_cert_directory(directory: Path) -> List[Path]:
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix in CERT_SUFFIXES
    )


def discover_ca_certificates(settings: Settings) -> List[Path]:
    """Find custom CA certificates to trust inside the KIND node.

    BUTLER_CA_CERT_PATH (a file or a directory) comes first, then every
    .crt/.pem file under ~/.butler/certificates.
    """
    certs: List[Path] = []
    if settings.ca_cert_path:
        path = Path(os.path.expanduser(settings.ca_cert_path)).absolute()
        if path.is_dir():
            certs.extend(_scan_cert_directory(path))
        elif path.is_file():
            certs.append(path)
        else:
            logger.warning(f"⚠️ CA certificate path does not exist: {path}")

    if settings.certificates_dir.is_dir():
        certs.extend(_scan_cert_directory(settings.certificates_dir))
    return certs


def build_kind_config(ca_certs: Sequence[Path]) -> str:
    """Render a single-node KIND config mounting each certificate read-only."""
    node = {"role": "control-plane"}
    if ca_certs:
        node["extraMounts"] = [
            {
                "hostPath": str(cert),
                "containerPath": CA_MOUNT_TEMPLATE.format(index=i),
                "readOnly": True,
            }
            for i, cert in enumerate(ca_certs)
        ]
    config = {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "nodes": [node],
    }
    return yaml.safe_dump(config, sort_keys=False)


class KindManager:
    """Creates, reuses and deletes the bootstrap KIND cluster."""

    def __init__(self, runner: CommandRunner, settings: Settings, skip_cleanup: bool = False):
        self.runner = runner
        self.settings = settings
        self.skip_cleanup = skip_cleanup
        self.name = settings.kind_cluster_name

    @property
    def node_name(self) -> str:
        return f"{self.name}-control-plane"

    def exists(self, ctx: RunContext) -> bool:
        result = self._kind(ctx, ["get", "clusters"])
        return self.name in result.stdout.split()

    def acquire(self, ctx: RunContext, host_aliases: Sequence[str] = ()) -> SubstrateHandle:
        """Create the KIND cluster, or reuse it if it already exists.

        A reused cluster gets its /etc/hosts entries and CoreDNS patch
        applied again, since the run that created it may have stopped before
        reaching them. A cluster created here is deleted again (unless
        cleanup is skipped) when any later setup step fails or is cancelled.

        Raises:
            EnvironmentSetupError: If the cluster cannot be listed, created
                or its kubeconfig exported
        """
        ca_certs = discover_ca_certificates(self.settings)
        if self.exists(ctx):
            logger.warning(f"⚠️ KIND cluster {self.name} already exists, reusing it")
            kubeconfig_path = self._export_kubeconfig(ctx)
            if ca_certs or host_aliases:
                self._inject_host_aliases(ctx, host_aliases)
                self._patch_coredns(ctx, kubeconfig_path)
            return SubstrateHandle(self.name, kubeconfig_path, reused=True)

        if ca_certs:
            logger.info(f"🔐 Injecting {len(ca_certs)} CA certificate(s) into the KIND node")
            for cert in ca_certs:
                logger.debug(f"CA certificate: {cert}")

        self._create(ctx, build_kind_config(ca_certs))
        logger.info(f"✅ KIND cluster {self.name} created")

        kubeconfig_path = None
        try:
            self._tune_node(ctx)
            if ca_certs:
                self._install_ca_certificates(ctx)

            kubeconfig_path = self._export_kubeconfig(ctx)
            if ca_certs or host_aliases:
                self._inject_host_aliases(ctx, host_aliases)
                self._patch_coredns(ctx, kubeconfig_path)
        except BaseException as e:
            logger.error(f"❌ Setup of KIND cluster {self.name} did not finish: {e}")
            self.release(SubstrateHandle(self.name, kubeconfig_path, reused=False))
            raise
        return SubstrateHandle(self.name, kubeconfig_path, reused=False)

    def release(self, handle: SubstrateHandle) -> None:
        """Delete the KIND cluster. Never raises."""
        if self.skip_cleanup:
            logger.info(f"🧹 Skipping cleanup; KIND cluster {handle.name} kept (kubeconfig: {handle.kubeconfig_path})")
            return

        logger.info(f"🧹 Deleting KIND cluster {handle.name}")
        try:
            self.runner.run(["kind", "delete", "cluster", "--name", handle.name], timeout=RELEASE_TIMEOUT)
        except FIXUP_ERRORS as e:
            logger.warning(f"⚠️ Failed to delete KIND cluster {handle.name}: {e}")
        if handle.kubeconfig_path is None:
            return
        try:
            Path(handle.kubeconfig_path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"⚠️ Failed to remove {handle.kubeconfig_path}: {e}")

    def _kind(self, ctx: RunContext, args: List[str], **kwargs) -> subprocess.CompletedProcess:
        try:
            return self.runner.run(["kind", *args], ctx=ctx, **kwargs)
        except FileNotFoundError as e:
            raise EnvironmentSetupError("kind executable not found in PATH") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
            raise EnvironmentSetupError(f"kind {' '.join(args)} failed: {detail}") from e

    def _create(self, ctx: RunContext, kind_config: str) -> None:
        fd, config_path = tempfile.mkstemp(prefix="kind-config-", suffix=".yaml")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(kind_config)
            logger.info(f"🚀 Creating KIND cluster {self.name}")
            self._kind(ctx, ["create", "cluster", "--name", self.name, "--config", config_path])
        finally:
            os.unlink(config_path)

    def _export_kubeconfig(self, ctx: RunContext) -> Path:
        result = self._kind(ctx, ["get", "kubeconfig", "--name", self.name])
        # mkstemp creates the file readable by the owner only
        fd, path = tempfile.mkstemp(prefix=f"{self.name}-", suffix=".kubeconfig")
        with os.fdopen(fd, 'w') as f:
            f.write(result.stdout)
        logger.debug(f"KIND kubeconfig written to {path}")
        return Path(path)

    def _node_exec(self, ctx: RunContext, *args: str) -> None:
        self.runner.run(["docker", "exec", self.node_name, *args], ctx=ctx)

    def _tune_node(self, ctx: RunContext) -> None:
        for limit in INOTIFY_LIMITS:
            try:
                self._node_exec(ctx, "sysctl", "-w", limit)
            except FIXUP_ERRORS as e:
                logger.warning(f"⚠️ Failed to set {limit} in KIND node: {e}")

    def _install_ca_certificates(self, ctx: RunContext) -> None:
        try:
            self._node_exec(ctx, "update-ca-certificates")
            logger.info("✅ CA certificates installed in KIND node")
        except FIXUP_ERRORS as e:
            logger.warning(f"⚠️ Failed to install CA certificates: {e}")

    def _inject_host_aliases(self, ctx: RunContext, host_aliases: Sequence[str]) -> None:
        for alias in host_aliases:
            try:
                self._node_exec(ctx, "sh", "-c", APPEND_HOSTS_ENTRY, "_", alias)
                logger.debug(f"Injected host alias: {alias}")
            except FIXUP_ERRORS as e:
                logger.warning(f"⚠️ Failed to inject host alias {alias!r}: {e}")

    def _patch_coredns(self, ctx: RunContext, kubeconfig_path: Path) -> None:
        patch = json.dumps({"data": {"Corefile": COREFILE}})
        kubectl = ["kubectl", "--kubeconfig", str(kubeconfig_path)]
        try:
            self.runner.run(
                kubectl + ["patch", "configmap", "coredns", "-n", "kube-system", "--type=merge", "-p", patch],
                ctx=ctx,
            )
            self.runner.run(kubectl + ["rollout", "restart", "deployment/coredns", "-n", "kube-system"], ctx=ctx)
            logger.debug("CoreDNS now forwards to 8.8.8.8 and 8.8.4.4")
        except FIXUP_ERRORS as e:
            logger.warning(f"⚠️ Failed to patch CoreDNS: {e}")

