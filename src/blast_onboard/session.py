"""Azure CLI session discovery."""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any, Optional

from .errors import AzureCliError, NotAuthenticatedError, PreflightError
from .models import SessionInfo

logger = logging.getLogger(__name__)

AZ_INSTALL_URL = "https://learn.microsoft.com/en-us/cli/azure/install-azure-cli"


class AzureCli:
    """Thin wrapper around the ``az`` executable returning parsed JSON."""

    def __init__(self, executable: str = "az") -> None:
        self._executable = executable

    def ensure_available(self) -> str:
        path = shutil.which(self._executable)
        if path is None:
            raise PreflightError(f"Azure CLI (az) is not installed. Install it: {AZ_INSTALL_URL}")
        return path

    def run_json(self, args: list[str]) -> Any:
        command = [self._executable, *args, "--output", "json"]
        logger.debug("Running: %s", " ".join(command))
        result = subprocess.run(command, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise AzureCliError(args, result.returncode, result.stderr)
        if not result.stdout.strip():
            return None
        return json.loads(result.stdout)


def resolve_session(cli: AzureCli) -> SessionInfo:
    """Read tenant and principal of the signed-in session. Performs no mutation."""
    cli.ensure_available()
    try:
        account = cli.run_json(["account", "show"])
    except AzureCliError as exc:
        logger.debug("az account show failed: %s", exc.stderr)
        raise NotAuthenticatedError("Not logged in to Azure CLI. Run 'az login' first.") from exc
    if not isinstance(account, dict) or not account.get("tenantId"):
        raise NotAuthenticatedError("Azure CLI returned no active account. Run 'az login' first.")

    user: Optional[dict] = account.get("user") or {}
    return SessionInfo(
        tenant_id=account["tenantId"],
        tenant_name=account.get("tenantDisplayName") or "unknown",
        user_name=user.get("name") or "unknown",
        subscription_id=account.get("id"),
    )
