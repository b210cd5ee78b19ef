"""Main entry point for the ocipush CLI.

Commands:
    ocipush name IMAGE [--lock]: Print the canonical (or digest-locked) name
    ocipush push PATH IMAGE: Publish a local layout or tarball

Global options configure registry access and logging for every command.

Example:
    $ ocipush name ubuntu
    index.docker.io/library/ubuntu:latest
    $ ocipush --insecure push ./layout localhost:5000/app:v1 --index
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version
from pathlib import Path

import click

from ocipush.cli.name import name_command
from ocipush.cli.push import push_command
from ocipush.cli.utils import fail
from ocipush.oci.errors import OCIError
from ocipush.schemas.oci import RegistryConfig
from ocipush.telemetry.logging import configure_logging


def _get_version() -> str:
    try:
        return get_version("ocipush")
    except Exception:
        return "unknown"


@click.group(
    name="ocipush",
    help="ocipush - Resolve image references and publish local images to registries.",
    epilog="Use 'ocipush <command> --help' for command-specific help.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(
    version=_get_version(),
    prog_name="ocipush",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with a 'registry' section.",
)
@click.option(
    "--insecure",
    is_flag=True,
    default=False,
    help="Talk plain HTTP to registries and skip TLS verification.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum log level written to stderr.",
)
@click.option(
    "--json-logs",
    is_flag=True,
    default=False,
    help="Write logs as JSON lines.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    insecure: bool,
    log_level: str,
    json_logs: bool,
) -> None:
    """Root command group for the ocipush CLI."""
    ctx.ensure_object(dict)
    configure_logging(log_level=log_level, json_output=json_logs)

    try:
        config = (
            RegistryConfig.from_file(config_path) if config_path else RegistryConfig.from_env()
        )
    except OCIError as e:
        fail(e)
    if insecure:
        config = config.model_copy(update={"insecure": True})
    ctx.obj["config"] = config


cli.add_command(name_command)
cli.add_command(push_command)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ocipush CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except OCIError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
