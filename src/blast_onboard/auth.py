"""Access tokens borrowed from the operator's Azure CLI session."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict

from .errors import AzureCliError, NotAuthenticatedError
from .session import AzureCli

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"


@dataclass(slots=True)
class OAuthToken:
    access_token: str
    expires_at: float

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at - 60  # refresh 1 min early


class CliTokenProvider:
    """Caches one token per scope obtained via ``az account get-access-token``."""

    def __init__(self, cli: AzureCli) -> None:
        self._cli = cli
        self._cache: Dict[str, OAuthToken] = {}

    def acquire_token(self, scope: str) -> str:
        cached = self._cache.get(scope)
        if cached and not cached.is_expired():
            return cached.access_token

        token = self._request_token(scope)
        self._cache[scope] = token
        return token.access_token

    def _request_token(self, scope: str) -> OAuthToken:
        try:
            body = self._cli.run_json(["account", "get-access-token", "--scope", scope])
        except AzureCliError as exc:
            logger.error("Failed to acquire token for %s: %s", scope, exc.stderr)
            raise NotAuthenticatedError(
                f"Could not get an access token for {scope}. Run 'az login' and retry."
            ) from exc
        if not isinstance(body, dict) or not body.get("accessToken"):
            raise NotAuthenticatedError(f"Azure CLI returned no access token for {scope}")
        expires_on = body.get("expires_on")
        expires_at = float(expires_on) if expires_on else time.time() + 300
        return OAuthToken(access_token=body["accessToken"], expires_at=expires_at)
