"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from eidflow.core.config import DEFAULT_CONFIG_FILE, FlowConfig, get_default_config_yaml, load_config

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or formatted text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        if isinstance(value, dict):
            click.echo(f"{key}:")
            for sub_key, sub_value in value.items():
                click.echo(f"  {sub_key}: {sub_value}")
        else:
            click.echo(f"{key}: {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def config_from_context(ctx: click.Context) -> FlowConfig:
    """Load the configuration named by the global ``--config`` option."""
    obj = ctx.find_object(dict) or {}
    return load_config(obj.get("config_path"))


@click.group()
def config() -> None:
    """Manage eidflow configuration."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Write a commented configuration template.

    Examples:

        # Create ~/.eidflow/config.yaml
        eidflow config init

        # Write somewhere else
        eidflow --config ./eidflow.yaml config init
    """
    path: Path = (ctx.find_object(dict) or {}).get("config_path") or DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists. Use --force to overwrite it.")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())
    click.echo(f"Configuration template written to: {path}")
    click.echo("")
    click.echo("Next steps:")
    click.echo("  1. Set 'domain' and 'client_id' in the file")
    click.echo("  2. Run 'eidflow login --scheme mock' to try a login")


@config.command("show")
@json_option
@click.pass_context
def config_show(ctx: click.Context, output_json: bool) -> None:
    """Show the effective configuration (file plus environment)."""
    flow_config = config_from_context(ctx)
    data = flow_config.to_dict()
    data["config_path"] = str(flow_config.config_path) if flow_config.config_path else None
    output_result(data, output_json)


@config.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Print the config file location."""
    path = (ctx.find_object(dict) or {}).get("config_path") or DEFAULT_CONFIG_FILE
    click.echo(str(path))


@config.command("validate")
@json_option
@click.pass_context
def config_validate(ctx: click.Context, output_json: bool) -> None:
    """Check the effective configuration for problems."""
    problems = config_from_context(ctx).validate()
    if output_json:
        click.echo(json.dumps({"valid": not problems, "errors": problems}, indent=2))
        if problems:
            sys.exit(1)
        return
    if problems:
        for problem in problems:
            click.echo(f"  - {problem}", err=True)
        raise click.ClickException(f"Configuration has {len(problems)} problem(s)")
    click.echo("Configuration is valid.")
