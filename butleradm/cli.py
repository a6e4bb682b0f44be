import logging
import sys

import typer

from butleradm import __version__
from butleradm.commands import bootstrap
from butleradm.logging import setup_logging

app = typer.Typer(help="Butler administration CLI.", no_args_is_help=True)

app.add_typer(bootstrap.app, name="bootstrap")


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Alias for --debug"),
):
    """butleradm - Butler management cluster administration."""
    setup_logging(debug or verbose)
    if debug or verbose:
        logging.debug("Debug mode enabled")


@app.command("version")
def version():
    """Print the butleradm version."""
    typer.echo(f"butleradm {__version__}")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        logging.error(f"Error: {e}")
        sys.exit(1)
