"""Persist the provisioned cluster's kubeconfig and talosconfig."""
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import yaml

from ...errors import PersistError
from .models import ClusterCredentials, CredentialPaths

logger = logging.getLogger("butleradm.bootstrap.credentials")

DIR_MODE = 0o700
FILE_MODE = 0o600


def kubeconfig_path(directory: Path, cluster_name: str) -> Path:
    return Path(directory) / f"{cluster_name}-kubeconfig"


def talosconfig_path(directory: Path, cluster_name: str) -> Path:
    return Path(directory) / f"{cluster_name}-talosconfig"


def repair_talosconfig_endpoints(
    talosconfig: bytes,
    cluster_name: str,
    control_plane_addresses: Sequence[str],
) -> bytes:
    """Point a talosconfig without endpoints at the control plane.

    The context named after the cluster (or the current context when none
    matches) gets ``endpoints`` set to the control-plane addresses when that
    list is empty, and ``nodes`` likewise. Populated lists are never touched.
    Input that cannot be parsed is returned unchanged.
    """
    if not control_plane_addresses:
        return talosconfig

    try:
        config = yaml.safe_load(talosconfig)
    except yaml.YAMLError as e:
        logger.warning(f"⚠️ Failed to parse talosconfig, saving it as-is: {e}")
        return talosconfig

    if not isinstance(config, dict) or not isinstance(config.get("contexts"), dict):
        return talosconfig

    contexts = config["contexts"]
    context = contexts.get(cluster_name)
    if not isinstance(context, dict):
        context = contexts.get(config.get("context"))
    if not isinstance(context, dict):
        return talosconfig

    if context.get("endpoints"):
        return talosconfig

    addresses: List[str] = list(control_plane_addresses)
    context["endpoints"] = addresses
    if not context.get("nodes"):
        context["nodes"] = list(addresses)
    logger.debug(f"Set talosconfig endpoints to {', '.join(addresses)}")
    return yaml.safe_dump(config, sort_keys=False).encode()


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)
    # O_CREAT's mode does not apply to files that already existed
    os.chmod(path, FILE_MODE)


def persist_credentials(
    cluster_name: str,
    creds: ClusterCredentials,
    directory: Path,
) -> CredentialPaths:
    """Write the cluster credentials under ``directory``.

    Files are owner read/write only; the directory is created owner-only.

    Raises:
        PersistError: If the directory or a file cannot be written
    """
    directory = Path(directory)
    try:
        directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

        kubeconfig = kubeconfig_path(directory, cluster_name)
        _write_private(kubeconfig, creds.kubeconfig)
        logger.info(f"💾 Kubeconfig saved to {kubeconfig}")

        talosconfig: Optional[Path] = None
        if creds.talosconfig is not None:
            talosconfig = talosconfig_path(directory, cluster_name)
            data = repair_talosconfig_endpoints(creds.talosconfig, cluster_name, creds.control_plane_addresses)
            _write_private(talosconfig, data)
            logger.info(f"💾 Talosconfig saved to {talosconfig}")
        else:
            logger.warning("⚠️ No talosconfig was published for this cluster")
    except OSError as e:
        raise PersistError(f"writing credentials to {directory}: {e}") from e

    return CredentialPaths(kubeconfig=kubeconfig, talosconfig=talosconfig)
