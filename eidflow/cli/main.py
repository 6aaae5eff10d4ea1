"""CLI entry point for eidflow."""

from pathlib import Path

import click

from eidflow import __version__
from eidflow.cli import config as config_commands
from eidflow.cli import login as login_commands
from eidflow.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="eidflow")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="EIDFLOW_CONFIG",
    help="Config file to use instead of ~/.eidflow/config.yaml",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default="ERROR",
    show_default=True,
    help="Protocol log verbosity",
)
@click.option("--trace", "trace_enabled", is_flag=True, help="Allow TRACE output (shows tokens and codes)")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str,
    trace_enabled: bool,
    log_file: str | None,
) -> None:
    """eidflow - PKCE login with national e-ID schemes through an OIDC broker."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(log_level, trace_enabled=trace_enabled, log_file=log_file)


cli.add_command(config_commands.config)
cli.add_command(login_commands.login)
cli.add_command(login_commands.logout)
cli.add_command(login_commands.probe)
