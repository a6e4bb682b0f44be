"""Error taxonomy for the bootstrap workflow."""
from typing import Optional


class BootstrapError(Exception):
    """Base class for every error raised by butleradm."""


class ValidationError(BootstrapError):
    """The bootstrap configuration is invalid. Never retried."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))


class EnvironmentSetupError(BootstrapError):
    """The local KIND cluster could not be created or prepared."""


class DeployError(BootstrapError):
    """A manifest or intent object could not be applied."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class IntentConflictError(DeployError):
    """An intent object already exists; intents are created exactly once."""


class ProvisioningFailure(BootstrapError):
    """The bootstrap controllers reported the Failed phase."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"bootstrap failed: {reason} - {message}")


class Cancelled(BootstrapError):
    """The run was cancelled, usually by an interrupt."""


class DeadlineExceeded(BootstrapError, TimeoutError):
    """The run (or a bounded wait inside it) ran out of time."""


class PersistError(BootstrapError):
    """Cluster credentials could not be decoded or written."""


class CredentialDecodeError(PersistError):
    """A credential payload in the ClusterBootstrap status is not valid base64."""


class PhaseError(BootstrapError):
    """Wraps the cause of a failed orchestrator phase with the phase name."""

    def __init__(self, phase, cause: BaseException, target: Optional[str] = None):
        self.phase = phase
        self.cause = cause
        self.target = target
        label = getattr(phase, "value", phase)
        if target:
            label = f"{label} ({target})"
        super().__init__(f"{label}: {cause}")
