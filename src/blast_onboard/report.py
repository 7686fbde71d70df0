"""Final summary and optional structured record of an onboarding run."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from .models import (
    ConsentState,
    ManagementGroupScope,
    RunConfig,
    RunResult,
    ScopeSelector,
    SkipScope,
    SubscriptionScope,
    format_timestamp,
)

RULE = "─" * 48


def revocation_commands(
    client_id: str, role_name: str, scope: Optional[ScopeSelector] = None
) -> dict[str, str]:
    revoke = f"blast-onboard revoke --client-id {client_id}"
    if isinstance(scope, ManagementGroupScope):
        revoke += f" --management-group {scope.group_id}"
    elif isinstance(scope, SubscriptionScope) and scope.subscription_ids:
        revoke += " --subscriptions " + ",".join(scope.subscription_ids)
    return {
        "delete_app": f"az ad app delete --id {client_id}",
        "remove_rbac": f"az role assignment delete --assignee {client_id} --role {role_name}",
        "blast_onboard": revoke,
    }


def _consent_text(result: RunResult) -> str:
    if result.consent_state is ConsentState.GRANTED:
        return "granted"
    if result.consent_skipped:
        return "skipped - grant admin consent before using the integration"
    if result.consent_state is ConsentState.DEFERRED_TO_OPERATOR:
        return "granted manually by operator"
    return "not attempted"


def render_summary(run_config: RunConfig, result: RunResult) -> list[str]:
    """Lines of the human-readable summary. Includes the client secret."""
    session = result.session
    client_id = result.client_id
    secret = result.secret
    permissions = ", ".join(permission.name for permission in run_config.permissions)

    lines = [
        "",
        RULE,
        "Setup complete!",
        RULE,
        "",
        "Share the following credentials with Blast:",
        "",
        f"  Tenant ID:     {session.tenant_id if session else ''}",
        f"  Client ID:     {client_id}",
        f"  Client Secret: {secret.value if secret else ''}",
        "",
        "Important:",
        "  - Save the Client Secret now - it cannot be retrieved later",
    ]
    if secret:
        lines.append(f"  - The secret expires on {format_timestamp(secret.expires_on)}")
    lines += [
        "  - Share these values securely (not via plain email)",
        "",
        "What was configured:",
        f"  App Registration:      {run_config.app_name}",
        f"  Graph API Permissions: {permissions}",
        f"  Admin Consent:         {_consent_text(result)}",
        f"  RBAC Role:             {run_config.role_name}",
    ]

    if result.scope is None or isinstance(result.scope, SkipScope) or not result.scope.scopes():
        lines.append("  RBAC Scope:            skipped")
        lines.append(
            f"    Assign later: az role assignment create --assignee {client_id} "
            f"--role {run_config.role_name} --subscription <SUBSCRIPTION_ID>"
        )
    else:
        lines.append(f"  RBAC Scope:            {result.scope.describe()}")
        for scope_result in result.role_results:
            status = "ok" if scope_result.succeeded else f"FAILED ({scope_result.message})"
            lines.append(f"    {scope_result.scope}: {status}")
            if not scope_result.succeeded:
                lines.append(
                    f"    Retry: az role assignment create --assignee {client_id} "
                    f"--role {run_config.role_name} --scope {scope_result.scope}"
                )

    commands = revocation_commands(client_id, run_config.role_name, result.scope)
    lines += [
        "",
        "To revoke access later:",
        f"  Delete the app:   {commands['delete_app']}",
        f"  Remove RBAC only: {commands['remove_rbac']}",
        f"  Or run:           {commands['blast_onboard']}",
        "",
    ]
    return lines


def build_record(run_config: RunConfig, result: RunResult) -> dict[str, Any]:
    """Machine-readable counterpart of the summary."""
    client_id = result.client_id
    return {
        "tenant_id": result.session.tenant_id if result.session else None,
        "client_id": client_id,
        "client_secret": result.secret.value if result.secret else None,
        "secret_expires_at": format_timestamp(result.secret.expires_on) if result.secret else None,
        "app_name": run_config.app_name,
        "service_principal_id": result.service_principal.object_id if result.service_principal else None,
        "permissions": [
            {"name": permission.name, "id": permission.permission_id, "outcome": outcome.value}
            for permission, outcome in result.permissions
        ],
        "admin_consent": {
            "state": result.consent_state.value if result.consent_state else None,
            "skipped": result.consent_skipped,
        },
        "role": {
            "name": run_config.role_name,
            "id": run_config.role_definition_id,
            "assignments": [
                {
                    "scope": scope_result.scope,
                    "succeeded": scope_result.succeeded,
                    "already_existed": scope_result.already_existed,
                    "message": scope_result.message,
                }
                for scope_result in result.role_results
            ],
        },
        "revoke": revocation_commands(client_id, run_config.role_name, result.scope),
        "started_at": format_timestamp(result.started_at),
    }


def write_record(path: str | Path, run_config: RunConfig, result: RunResult) -> Path:
    """Write the record as JSON, readable only by the current user."""
    target = Path(path).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(build_record(run_config, result), indent=2, sort_keys=True)
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as handle:
        handle.write(payload)
    return target
