"""Local development mode: build controller images from source and load them into KIND."""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ...errors import EnvironmentSetupError
from ...utils.context import RunContext
from ...utils.runner import CommandRunner

logger = logging.getLogger("butleradm.bootstrap.images")

IMAGE_REGISTRY = "ghcr.io/butlerdotdev"


@dataclass(frozen=True)
class LocalImage:
    name: str
    source_dir: Path

    @property
    def image(self) -> str:
        return f"{IMAGE_REGISTRY}/{self.name}:latest"


def controller_images(provider: str, repo_root: Path) -> List[LocalImage]:
    """The images the bundled controller manifests run, with their source checkouts."""
    names = ["butler-bootstrap", f"butler-provider-{provider}"]
    return [LocalImage(name, Path(repo_root) / name) for name in names]


def build_and_load_images(
    ctx: RunContext,
    runner: CommandRunner,
    provider: str,
    repo_root: Optional[Path],
    cluster_name: str,
) -> List[str]:
    """Build the controller images with docker and load them into the KIND cluster.

    Build output is streamed to the terminal.

    Returns:
        The image references that were loaded

    Raises:
        EnvironmentSetupError: If the repo root or a checkout is missing, or a
            build or load fails
    """
    if not repo_root:
        raise EnvironmentSetupError("repo root not set - use --repo-root or BUTLER_REPO_ROOT")

    images = controller_images(provider, repo_root)
    missing = [str(img.source_dir) for img in images if not img.source_dir.is_dir()]
    if missing:
        raise EnvironmentSetupError(f"repo directory not found: {', '.join(missing)}")

    loaded = []
    for img in images:
        try:
            logger.info(f"🔨 Building {img.image} from {img.source_dir}")
            runner.run(["docker", "build", "-t", img.image, "."], ctx=ctx, cwd=img.source_dir, capture_output=False)
            logger.info(f"📦 Loading {img.image} into KIND")
            runner.run(
                ["kind", "load", "docker-image", img.image, "--name", cluster_name],
                ctx=ctx,
                capture_output=False,
            )
        except (subprocess.CalledProcessError, OSError) as e:
            raise EnvironmentSetupError(f"building {img.name}: {e}") from e
        logger.info(f"✅ Loaded {img.image}")
        loaded.append(img.image)
    return loaded
