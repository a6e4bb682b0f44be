"""Runtime settings for the butleradm application."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from .errors import ValidationError

KIND_CLUSTER_NAME = "butler-bootstrap"
BUTLER_NAMESPACE = "butler-system"

# Environment variables consulted, in order, when a provider credential is
# left empty in the bootstrap file. Keys are "<provider>.<field>".
DEFAULT_CREDENTIAL_ENV: Dict[str, Tuple[str, ...]] = {
    "nutanix.username": ("BUTLER_NUTANIX_USERNAME", "NUTANIX_USERNAME"),
    "nutanix.password": ("BUTLER_NUTANIX_PASSWORD", "NUTANIX_PASSWORD"),
    "proxmox.username": ("BUTLER_PROXMOX_USERNAME", "PROXMOX_USERNAME"),
    "proxmox.password": ("BUTLER_PROXMOX_PASSWORD", "PROXMOX_PASSWORD"),
    "proxmox.tokenID": ("BUTLER_PROXMOX_TOKEN_ID", "PROXMOX_TOKEN_ID"),
    "proxmox.tokenSecret": ("BUTLER_PROXMOX_TOKEN_SECRET", "PROXMOX_TOKEN_SECRET"),
}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"{name} must be a number of seconds, got {value!r}") from None


@dataclass(frozen=True)
class Settings:
    """Application settings with sensible defaults."""

    butler_home: Path = field(default_factory=lambda: Path.home() / ".butler")
    kind_cluster_name: str = KIND_CLUSTER_NAME
    namespace: str = BUTLER_NAMESPACE

    # Timeouts and poll intervals (in seconds)
    bootstrap_timeout: float = 1800.0
    watch_interval: float = 5.0
    readiness_interval: float = 2.0
    definitions_timeout: float = 60.0
    controllers_timeout: float = 300.0

    ca_cert_path: Optional[str] = None
    repo_root: Optional[Path] = None

    credential_env: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_CREDENTIAL_ENV)
    )

    # Security
    redact_keys: Tuple[str, ...] = ("password", "secret", "token")

    @property
    def certificates_dir(self) -> Path:
        return self.butler_home / "certificates"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from the environment, loading a local .env first."""
        if dotenv:
            load_dotenv()

        home = os.getenv("BUTLER_HOME")
        repo_root = os.getenv("BUTLER_REPO_ROOT")
        return cls(
            butler_home=Path(home).expanduser() if home else Path.home() / ".butler",
            kind_cluster_name=os.getenv("BUTLER_KIND_CLUSTER_NAME", KIND_CLUSTER_NAME),
            bootstrap_timeout=_env_float("BUTLER_BOOTSTRAP_TIMEOUT", 1800.0),
            watch_interval=_env_float("BUTLER_WATCH_INTERVAL", 5.0),
            readiness_interval=_env_float("BUTLER_READINESS_INTERVAL", 2.0),
            definitions_timeout=_env_float("BUTLER_DEFINITIONS_TIMEOUT", 60.0),
            controllers_timeout=_env_float("BUTLER_CONTROLLERS_TIMEOUT", 300.0),
            ca_cert_path=os.getenv("BUTLER_CA_CERT_PATH") or None,
            repo_root=Path(repo_root).expanduser() if repo_root else None,
        )
