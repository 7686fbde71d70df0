"""CLI entrypoint for blast-onboard."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import requests
import typer
import yaml
from pydantic import ValidationError

from .config import OnboardConfig, load_config
from .console import TerminalConsole
from .errors import OnboardingError, OperatorAbort
from .models import ManagementGroupScope, ScopeSelector, SkipScope, SubscriptionScope
from .report import render_summary, write_record
from .service import OnboardingService
from .session import resolve_session


def _configure_logging() -> None:
    env_level = os.getenv("BLAST_ONBOARD_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, env_level, None)
    if not isinstance(level, int):
        level = logging.WARNING
        logging.warning(
            "Unrecognized BLAST_ONBOARD_LOG_LEVEL '%s'; defaulting to WARNING",
            env_level,
        )
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")


_configure_logging()

app = typer.Typer(help="Provision the Azure identity and access Blast needs in your tenant")

ConfigOption = typer.Option(None, exists=True, readable=True, help="Optional YAML file overriding defaults")


def _scope_from_options(
    management_group: Optional[str],
    subscriptions: Optional[str],
    skip_rbac: bool,
) -> Optional[ScopeSelector]:
    selected = [value for value in (management_group, subscriptions, skip_rbac or None) if value is not None]
    if len(selected) > 1:
        raise typer.BadParameter("Use only one of --management-group, --subscriptions or --skip-rbac")
    if management_group is not None:
        if not management_group.strip():
            raise typer.BadParameter("--management-group must not be empty")
        return ManagementGroupScope(management_group.strip())
    if subscriptions is not None:
        return SubscriptionScope.from_input(subscriptions)
    if skip_rbac:
        return SkipScope()
    return None


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.secho(f"  ✗ {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=code)


def _load_config(config: Optional[Path]) -> OnboardConfig:
    try:
        return load_config(config)
    except (ValidationError, yaml.YAMLError) as exc:
        raise _fail(f"Invalid configuration {config}: {exc}") from exc


def _run_setup(
    config: Optional[Path] = None,
    app_name: Optional[str] = None,
    yes: bool = False,
    management_group: Optional[str] = None,
    subscriptions: Optional[str] = None,
    skip_rbac: bool = False,
    output_json: Optional[Path] = None,
) -> None:
    scope = _scope_from_options(management_group, subscriptions, skip_rbac)
    onboard_config = _load_config(config)
    run_config = onboard_config.run_config(app_name=app_name, assume_yes=yes, scope=scope)

    typer.secho("Blast Self-Managed Integration Setup", bold=True)
    typer.echo("─" * 48)

    service = OnboardingService(onboard_config, TerminalConsole())
    try:
        result = service.run(run_config)
    except OperatorAbort as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=0) from exc
    except OnboardingError as exc:
        raise _fail(str(exc)) from exc

    for line in render_summary(run_config, result):
        typer.echo(line)
    if output_json is not None:
        path = write_record(output_json, run_config, result)
        typer.echo(f"Structured record written to {path}")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Run the interactive setup when no command is given."""
    if ctx.invoked_subcommand is None:
        _run_setup()


@app.command("setup")
def setup(
    config: Optional[Path] = ConfigOption,
    app_name: Optional[str] = typer.Option(None, help="App registration display name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm the tenant and reuse an existing app without asking"),
    management_group: Optional[str] = typer.Option(None, help="Assign the role on this management group"),
    subscriptions: Optional[str] = typer.Option(None, help="Comma-separated subscription ids to assign the role on"),
    skip_rbac: bool = typer.Option(False, "--skip-rbac", help="Do not assign the role now"),
    output_json: Optional[Path] = typer.Option(None, help="Also write the result as JSON to this path"),
) -> None:
    """Create the app registration, secret, Graph permissions and role assignment."""
    _run_setup(config, app_name, yes, management_group, subscriptions, skip_rbac, output_json)


@app.command("revoke")
def revoke(
    config: Optional[Path] = ConfigOption,
    client_id: Optional[str] = typer.Option(None, help="Client id of the app to remove (default: look up by name)"),
    app_name: Optional[str] = typer.Option(None, help="App registration display name"),
    management_group: Optional[str] = typer.Option(None, help="Remove role assignments on this management group"),
    subscriptions: Optional[str] = typer.Option(None, help="Comma-separated subscription ids to clean up"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Remove role assignments, the service principal and the app registration."""
    scope = _scope_from_options(management_group, subscriptions, False) or SkipScope()
    onboard_config = _load_config(config)
    name = app_name or onboard_config.app_name
    service = OnboardingService(onboard_config, TerminalConsole())

    try:
        session = resolve_session(service.cli)
        target = client_id or name
        if not yes and not typer.confirm(
            f"Delete '{target}' and its access in tenant {session.tenant_name} ({session.tenant_id})?",
            default=False,
        ):
            typer.echo("Aborted.")
            raise typer.Exit(code=0)
        result = service.revoke(name, scope, client_id=client_id)
    except OnboardingError as exc:
        raise _fail(str(exc)) from exc
    except requests.RequestException as exc:
        raise _fail(f"Revocation failed: {exc}") from exc

    typer.echo(f"Role assignments removed: {result.role_assignments_removed}")
    typer.echo(f"Service principal deleted: {'yes' if result.service_principal_deleted else 'no'}")
    typer.echo(f"App registration deleted:  {'yes' if result.application_deleted else 'no'}")
    if result.failed_scopes:
        for target_scope in result.failed_scopes:
            typer.secho(f"  ! Could not clean up {target_scope}", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
