"""Login, logout and probe commands."""

from __future__ import annotations

import json
from typing import Any

import click

from eidflow.cli.config import config_from_context, error_result, json_option
from eidflow.core.config import FlowConfig
from eidflow.core.errors import EidFlowError
from eidflow.core.launcher import BrowserCapabilityProbe, select_presentation_mode
from eidflow.core.oidc import IdentityScheme, LoginFlow, VerifiedClaims, describe_scheme, format_token_claims

SCHEME_CHOICES = {
    "mock": IdentityScheme.MOCK,
    "mitid": IdentityScheme.DK_MITID,
    "se-bankid": IdentityScheme.SE_BANKID,
    "no-bankid": IdentityScheme.NO_BANKID,
}


def _ready_flow(flow_config: FlowConfig, as_json: bool) -> LoginFlow:
    problems = flow_config.validate()
    if problems:
        error_result("Invalid configuration: " + "; ".join(problems), as_json)

    flow = LoginFlow(flow_config)
    if not flow.prepare():
        flow.close()
        error_result(f"Could not load provider metadata and signing keys from {flow_config.issuer}", as_json)
    return flow


def _claims_to_dict(claims: VerifiedClaims) -> dict[str, Any]:
    return {
        "subject": claims.subject,
        "identity_scheme": claims.identity_scheme,
        "display_name": claims.display_name,
        "claims": claims.claims,
        "id_token": claims.raw_token,
    }


@click.command()
@click.option(
    "--scheme",
    "-s",
    type=click.Choice(sorted(SCHEME_CHOICES)),
    default="mock",
    show_default=True,
    help="Identity scheme to authenticate with",
)
@click.option("--acr", help="Raw acr_values selector; overrides --scheme")
@click.option("--hint", "hints", multiple=True, help="Extra login_hint token (repeatable)")
@json_option
@click.pass_context
def login(ctx: click.Context, scheme: str, acr: str | None, hints: tuple[str, ...], output_json: bool) -> None:
    """Log in through the browser and print the verified ID token claims.

    Examples:

        # Log in with the mock scheme
        eidflow login

        # Log in with Danish MitID, JSON output
        eidflow login --scheme mitid --json
    """
    flow_config = config_from_context(ctx)
    with _ready_flow(flow_config, output_json) as flow:
        if not output_json:
            click.echo(f"Opening {flow.presentation_mode} for {describe_scheme(acr or SCHEME_CHOICES[scheme])}...")
        try:
            claims = flow.login(acr or SCHEME_CHOICES[scheme], extra_hints=hints)
        except EidFlowError as e:
            error_result(str(e), output_json)

    if output_json:
        click.echo(json.dumps(_claims_to_dict(claims), indent=2, default=str))
        return

    click.echo("")
    click.echo(f"Logged in: {claims.display_name or claims.subject}")
    click.echo(f"Identity scheme: {describe_scheme(claims.identity_scheme)}")
    click.echo("")
    for name, value, description in format_token_claims(claims.claims):
        click.echo(f"  {name:<24} {value}  ({description})")


@click.command()
@click.option("--id-token", help="ID token to send as id_token_hint")
@json_option
@click.pass_context
def logout(ctx: click.Context, id_token: str | None, output_json: bool) -> None:
    """End the session at the provider through the browser."""
    flow_config = config_from_context(ctx)
    with _ready_flow(flow_config, output_json) as flow:
        try:
            flow.logout(id_token)
        except EidFlowError as e:
            error_result(str(e), output_json)

    if output_json:
        click.echo(json.dumps({"logged_out": True}))
    else:
        click.echo("Logged out.")


@click.command()
@json_option
@click.pass_context
def probe(ctx: click.Context, output_json: bool) -> None:
    """Show which browser presentation mode this machine supports."""
    flow_config = config_from_context(ctx)
    capability_probe = BrowserCapabilityProbe()
    browser = capability_probe.auth_tab_browser()
    mode = select_presentation_mode(capability_probe, prefer_auth_tab=flow_config.presentation.prefer_auth_tab)
    data = {
        "presentation_mode": str(mode),
        "auth_tab_browser": browser.executable if browser else None,
        "auth_tab_version": browser.major_version if browser else None,
        "installed_browsers": capability_probe.installed_browsers(flow_config.presentation.preferred_browsers),
    }
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return
    click.echo(f"Presentation mode: {data['presentation_mode']}")
    click.echo(f"Auth tab browser: {data['auth_tab_browser'] or 'none'}")
    click.echo(f"Preferred browsers found: {', '.join(data['installed_browsers']) or 'none'}")
