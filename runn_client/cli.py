"""CLI entrypoint for runn-client."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__


@click.group()
@click.version_option(__version__, prog_name="runn-client")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="warning",
    show_default=True,
    help="Client log verbosity (protocol traces use --trace on run)",
)
def cli(log_level: str) -> None:
    """runn-client - connect an editing host to the runn language server.

    The server executable is taken from $SERVER_PATH, falling back to
    runn-language-server on PATH.
    """
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@cli.command()
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=".",
    show_default=True,
    help="Workspace root sent to the server and watched for .clientrc changes",
)
@click.option(
    "--trace",
    type=click.Choice(["off", "messages", "verbose"]),
    default=None,
    help="Protocol trace level (overrides runn-client.toml)",
)
@click.option("--debug", is_flag=True, help="Use the debug launch configuration")
@click.option(
    "--shutdown-timeout",
    type=float,
    default=None,
    metavar="SECONDS",
    help="Bound on the shutdown sequence before the server is killed",
)
@click.option(
    "--open",
    "open_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Open a document once connected. Repeatable.",
)
@click.option(
    "--duration",
    type=float,
    default=None,
    metavar="SECONDS",
    help="Disconnect after this many seconds instead of waiting for Ctrl+C",
)
def run(
    workspace: Path,
    trace: str | None,
    debug: bool,
    shutdown_timeout: float | None,
    open_files: tuple[Path, ...],
    duration: float | None,
) -> None:
    """Start the language server and stay connected.

    Examples:

        runn-client run --open runbooks/login.yml --trace messages

        SERVER_PATH=./target/debug/runn-language-server runn-client run --duration 10
    """
    from .commands.run_cmd import run_client

    exit_code = run_client(
        workspace,
        trace=trace,
        debug=debug,
        shutdown_timeout=shutdown_timeout,
        open_files=list(open_files),
        duration=duration,
    )
    sys.exit(exit_code)


@cli.command("launch-spec")
def launch_spec() -> None:
    """Show the resolved executable, environment and document scope."""
    from .commands.run_cmd import run_launch_spec

    sys.exit(run_launch_spec())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
