"""Follow a ClusterBootstrap until the controllers report Ready or Failed."""
import base64
import binascii
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ...errors import CredentialDecodeError, ProvisioningFailure
from ...utils.context import RunContext
from ...utils.kube import KubeApiError, KubeClient
from ...utils.poll import poll_until
from .models import API_VERSION, BootstrapPhase, ClusterBootstrapStatus, ClusterCredentials

logger = logging.getLogger("butleradm.bootstrap.watcher")

KNOWN_PHASES = {phase.value for phase in BootstrapPhase}


def _decode(field: str, value: str) -> bytes:
    try:
        # line-wrapped payloads are accepted; anything else outside the alphabet is not
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CredentialDecodeError(f"status.{field} is not valid base64: {e}") from e


def extract_credentials(status: ClusterBootstrapStatus) -> ClusterCredentials:
    """Decode the credentials published in a Ready status.

    Raises:
        CredentialDecodeError: If the kubeconfig is missing or a payload is not base64
    """
    if not status.kubeconfig:
        raise CredentialDecodeError("status.kubeconfig is empty although the cluster is Ready")

    talosconfig = _decode("talosconfig", status.talosconfig) if status.talosconfig else None
    return ClusterCredentials(
        kubeconfig=_decode("kubeconfig", status.kubeconfig),
        talosconfig=talosconfig,
        control_plane_addresses=status.control_plane_addresses,
        console_url=status.console_url or None,
    )


class BootstrapWatcher:
    """Polls one ClusterBootstrap object and turns its status into a result.

    Only ``status.phase`` drives the outcome; machine details are logged for
    diagnostics. Read errors and unknown phases are not terminal.
    """

    def __init__(self, client: KubeClient, namespace: str, name: str, poll_interval: float = 5.0):
        self.client = client
        self.namespace = namespace
        self.name = name
        self.poll_interval = poll_interval
        self.last_phase: Optional[str] = None

    def watch(self, ctx: RunContext) -> ClusterCredentials:
        """Block until Ready (returning the credentials) or Failed.

        Raises:
            ProvisioningFailure: If the controllers report Failed
            CredentialDecodeError: If the Ready status carries bad credentials
            Cancelled: If the run is cancelled
            DeadlineExceeded: If the run deadline passes first
        """
        logger.info(f"⏳ Waiting for ClusterBootstrap {self.namespace}/{self.name}")
        return poll_until(ctx, self.check, self.poll_interval, description=f"ClusterBootstrap {self.name}")

    def read_status(self) -> Optional[ClusterBootstrapStatus]:
        try:
            obj = self.client.get(API_VERSION, "ClusterBootstrap", self.name, self.namespace)
        except KubeApiError as e:
            logger.warning(f"⚠️ Failed to get ClusterBootstrap {self.name}: {e}")
            return None

        status = obj.get("status")
        if not status:
            logger.debug("No status yet")
            return None
        try:
            return ClusterBootstrapStatus.model_validate(status)
        except PydanticValidationError as e:
            logger.warning(f"⚠️ Unreadable ClusterBootstrap status: {e}")
            return None

    def check(self) -> Optional[ClusterCredentials]:
        """One observation. Returns credentials once Ready, None to keep polling."""
        status = self.read_status()
        if status is None:
            return None

        if status.phase != self.last_phase:
            logger.info(f"phase changed phase={status.phase}")
            self.last_phase = status.phase

        for machine in status.machines:
            logger.debug(
                f"machine status name={machine.name} phase={machine.phase} "
                f"ip={machine.ip_address} ready={machine.ready}"
            )

        if status.phase == BootstrapPhase.READY.value:
            logger.info("✅ Cluster is ready!")
            return extract_credentials(status)
        if status.phase == BootstrapPhase.FAILED.value:
            raise ProvisioningFailure(status.failure_reason, status.failure_message)
        if status.phase and status.phase not in KNOWN_PHASES:
            logger.debug(f"Unrecognized phase {status.phase!r}, still waiting")
        return None
