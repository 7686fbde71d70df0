"""Operator interaction: progress lines and interactive prompts."""
from __future__ import annotations

from typing import Callable, Protocol

import typer

from .azure import ManagementGroup, Subscription
from .errors import PreflightError
from .models import (
    ApplicationRef,
    ManagementGroupScope,
    ScopeSelector,
    SessionInfo,
    SkipScope,
    SubscriptionScope,
)

TOTAL_STEPS = 5


class OperatorConsole(Protocol):
    def step(self, index: int, title: str) -> None: ...

    def ok(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def confirm_tenant(self, session: SessionInfo) -> bool: ...

    def reuse_existing_application(self, application: ApplicationRef) -> bool: ...

    def choose_scope(
        self,
        list_management_groups: Callable[[], list[ManagementGroup]],
        list_subscriptions: Callable[[], list[Subscription]],
    ) -> ScopeSelector: ...

    def acknowledge_manual_consent(self, app_name: str) -> bool:
        """Return True once the operator granted consent by hand, False when skipped."""
        ...


class TerminalConsole:
    """Interactive console backed by typer prompts."""

    def step(self, index: int, title: str) -> None:
        typer.echo("")
        typer.secho(f"[{index}/{TOTAL_STEPS}] ", fg=typer.colors.CYAN, bold=True, nl=False)
        typer.secho(title, bold=True)

    def ok(self, message: str) -> None:
        typer.secho("  ✓ ", fg=typer.colors.GREEN, nl=False)
        typer.echo(message)

    def warn(self, message: str) -> None:
        typer.secho("  ! ", fg=typer.colors.YELLOW, nl=False)
        typer.echo(message)

    def info(self, message: str) -> None:
        typer.echo(f"  {message}")

    def confirm_tenant(self, session: SessionInfo) -> bool:
        typer.echo("")
        typer.echo(f"  Tenant:  {session.tenant_name} ({session.tenant_id})")
        typer.echo(f"  User:    {session.user_name}")
        typer.echo("")
        return typer.confirm("  Continue with this tenant?", default=False)

    def reuse_existing_application(self, application: ApplicationRef) -> bool:
        self.warn(
            f"App registration '{application.display_name}' already exists (Client ID: {application.client_id})"
        )
        return typer.confirm("  Use existing app?", default=False)

    def choose_scope(
        self,
        list_management_groups: Callable[[], list[ManagementGroup]],
        list_subscriptions: Callable[[], list[Subscription]],
    ) -> ScopeSelector:
        typer.echo("")
        typer.echo("  Choose the scope for the Reader role:")
        typer.echo("")
        typer.echo("  1) Management group (recommended - covers all child subscriptions)")
        typer.echo("  2) Specific subscription(s)")
        typer.echo("  3) Skip (assign later)")
        typer.echo("")
        choice = typer.prompt("  Enter choice (1/2/3)", default="", show_default=False).strip()

        if choice == "1":
            self.info("Available management groups:")
            try:
                for group in list_management_groups():
                    self.info(f"  {group.name:<40} {group.display_name}")
            except Exception as exc:  # noqa: BLE001 - listing is informational only
                self.warn(f"Could not list management groups: {exc}")
            group_id = typer.prompt("  Enter Management Group ID (name column)", default="", show_default=False)
            if not group_id.strip():
                raise PreflightError("No management group ID provided.")
            return ManagementGroupScope(group_id.strip())
        if choice == "2":
            self.info("Available subscriptions:")
            try:
                for subscription in list_subscriptions():
                    self.info(f"  {subscription.subscription_id}  {subscription.name} ({subscription.state})")
            except Exception as exc:  # noqa: BLE001 - listing is informational only
                self.warn(f"Could not list subscriptions: {exc}")
            raw = typer.prompt("  Enter subscription ID(s), comma-separated", default="", show_default=False)
            return SubscriptionScope.from_input(raw)
        if choice != "3":
            self.warn("Invalid choice - skipping RBAC assignment")
        return SkipScope()

    def acknowledge_manual_consent(self, app_name: str) -> bool:
        self.warn("Admin consent could not be granted automatically.")
        self.info("Please grant consent manually:")
        self.info(f"  Azure Portal > Entra ID > App registrations > {app_name} > API permissions > Grant admin consent")
        answer = typer.prompt(
            "  Press Enter once you've granted consent manually (or 's' to skip)",
            default="",
            show_default=False,
        )
        return answer.strip().lower() != "s"
