import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from butleradm.config import Settings
from butleradm.errors import BootstrapError
from butleradm.modules.bootstrap.config import load_config, resolve_config_path
from butleradm.modules.bootstrap.kind import KindManager
from butleradm.modules.bootstrap.orchestrator import Options, Orchestrator
from butleradm.utils import redact_sensitive_data
from butleradm.utils.context import RunContext
from butleradm.utils.runner import CommandRunner

logger = logging.getLogger("butleradm.commands.bootstrap")

app = typer.Typer(help="Bootstrap a Butler management cluster.")

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def cancel_on_interrupt(ctx: RunContext) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a single cancellation of ``ctx``."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        if ctx.cancel():
            logger.warning(f"⚠️ Received {signal.Signals(signum).name}, cancelling bootstrap...")

    previous = {sig: signal.signal(sig, _handler) for sig in INTERRUPT_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run_bootstrap(
    provider: str,
    config: Optional[Path],
    dry_run: bool,
    skip_cleanup: bool,
    local: bool,
    repo_root: Optional[Path],
    timeout: Optional[float],
) -> None:
    try:
        settings = Settings.from_env()
        config_path = resolve_config_path(config, settings.butler_home)
        cfg = load_config(config_path, credential_env=settings.credential_env)
    except BootstrapError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)

    if cfg.provider != provider:
        typer.echo(
            f"❌ {config_path} configures provider '{cfg.provider}', use 'butleradm bootstrap {cfg.provider}'",
            err=True,
        )
        raise typer.Exit(code=1)

    logger.debug(f"Loaded config from {config_path}: "
                 f"{redact_sensitive_data(cfg.model_dump(by_alias=True), settings.redact_keys)}")

    options = Options(
        dry_run=dry_run,
        skip_cleanup=skip_cleanup,
        timeout=timeout,
        local_dev=local,
        repo_root=repo_root,
    )
    runner = CommandRunner()
    orchestrator = Orchestrator(
        settings,
        options,
        substrate=KindManager(runner, settings, skip_cleanup=skip_cleanup),
        runner=runner,
    )

    if not dry_run:
        typer.echo(f"🚀 Bootstrapping {provider} management cluster '{cfg.cluster.name}'")
    ctx = RunContext()
    with cancel_on_interrupt(ctx):
        try:
            orchestrator.run(ctx, cfg)
        except BootstrapError as e:
            typer.echo(f"❌ {e}", err=True)
            raise typer.Exit(code=1)


CONFIG_HELP = "Path to the bootstrap config (default: ./bootstrap.yaml, then ~/.butler/config.yaml)"


@app.command("harvester")
def bootstrap_harvester(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be created without creating anything"),
    skip_cleanup: bool = typer.Option(False, "--skip-cleanup", help="Keep the KIND cluster after the run"),
    local: bool = typer.Option(False, "--local", help="Build controller images from local checkouts"),
    repo_root: Optional[Path] = typer.Option(None, "--repo-root", help="Directory holding the controller checkouts"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall timeout in seconds (default: 1800)"),
):
    """Bootstrap a management cluster on Harvester HCI."""
    run_bootstrap("harvester", config, dry_run, skip_cleanup, local, repo_root, timeout)


@app.command("nutanix")
def bootstrap_nutanix(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be created without creating anything"),
    skip_cleanup: bool = typer.Option(False, "--skip-cleanup", help="Keep the KIND cluster after the run"),
    local: bool = typer.Option(False, "--local", help="Build controller images from local checkouts"),
    repo_root: Optional[Path] = typer.Option(None, "--repo-root", help="Directory holding the controller checkouts"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall timeout in seconds (default: 1800)"),
):
    """Bootstrap a management cluster on Nutanix AHV."""
    run_bootstrap("nutanix", config, dry_run, skip_cleanup, local, repo_root, timeout)


@app.command("proxmox")
def bootstrap_proxmox(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be created without creating anything"),
    skip_cleanup: bool = typer.Option(False, "--skip-cleanup", help="Keep the KIND cluster after the run"),
    local: bool = typer.Option(False, "--local", help="Build controller images from local checkouts"),
    repo_root: Optional[Path] = typer.Option(None, "--repo-root", help="Directory holding the controller checkouts"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall timeout in seconds (default: 1800)"),
):
    """Bootstrap a management cluster on Proxmox VE."""
    run_bootstrap("proxmox", config, dry_run, skip_cleanup, local, repo_root, timeout)
