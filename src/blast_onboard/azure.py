"""Azure Resource Manager role assignments and scope discovery."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import requests

from .auth import MANAGEMENT_SCOPE, CliTokenProvider
from .errors import OnboardingError
from .http import error_preview, parse_json
from .models import ScopeResult

logger = logging.getLogger(__name__)

ROLE_ASSIGNMENTS_API_VERSION = "2022-04-01"
MANAGEMENT_GROUPS_API_VERSION = "2020-05-01"
SUBSCRIPTIONS_API_VERSION = "2022-12-01"


@dataclass(slots=True)
class ManagementGroup:
    name: str
    display_name: str


@dataclass(slots=True)
class Subscription:
    subscription_id: str
    name: str
    state: str


class RoleAssignmentProvisioner:
    """Binds role definitions to principals at management group or subscription scope."""

    def __init__(self, credential_provider: CliTokenProvider, management_url: str = "https://management.azure.com") -> None:
        self._credentials = credential_provider
        self._mgmt_url = management_url.rstrip("/")

    def assign_role(self, principal_id: str, scope: str, role_definition_id: str) -> ScopeResult:
        """Create one assignment. Failures are returned in the result, never raised."""
        assignment_id = str(uuid.uuid4())
        url = (
            f"{self._mgmt_url}{scope}/providers/Microsoft.Authorization/roleAssignments/{assignment_id}"
            f"?api-version={ROLE_ASSIGNMENTS_API_VERSION}"
        )
        body = {
            "properties": {
                "roleDefinitionId": f"{scope}/providers/Microsoft.Authorization/roleDefinitions/{role_definition_id}",
                "principalId": principal_id,
                "principalType": "ServicePrincipal",
            }
        }
        logger.info("Assigning role '%s' on scope '%s'", role_definition_id, scope)
        try:
            response = self._authorized_request("PUT", url, json=body)
        except (requests.RequestException, OnboardingError) as exc:
            logger.error("Role assignment on '%s' failed: %s", scope, exc)
            return ScopeResult(scope=scope, succeeded=False, message=str(exc))
        if response.status_code in {200, 201}:
            return ScopeResult(scope=scope, succeeded=True)
        if response.status_code == 409:
            logger.info("Role assignment already exists for principal '%s' on '%s'", principal_id, scope)
            return ScopeResult(scope=scope, succeeded=True, already_existed=True)
        logger.error("Role assignment on '%s' failed: %s", scope, response.text)
        return ScopeResult(scope=scope, succeeded=False, message=error_preview(response))

    def remove_role_assignments(self, principal_id: str, scope: str) -> int:
        """Remove all role assignments for the principal at the supplied scope."""
        url = f"{self._mgmt_url}{scope}/providers/Microsoft.Authorization/roleAssignments"
        params = {
            "api-version": ROLE_ASSIGNMENTS_API_VERSION,
            "$filter": f"atScope() and assignedTo('{principal_id}')",
        }
        response = self._authorized_request("GET", url, params=params)
        if response.status_code == 404:
            return 0
        response.raise_for_status()
        assignments = parse_json(response).get("value", [])
        removed = 0
        for assignment in assignments:
            assignment_id = assignment.get("id")
            if not assignment_id:
                continue
            if assignment.get("properties", {}).get("principalId") not in {None, principal_id}:
                continue
            delete_url = f"{self._mgmt_url}{assignment_id}?api-version={ROLE_ASSIGNMENTS_API_VERSION}"
            delete_resp = self._authorized_request("DELETE", delete_url)
            if delete_resp.status_code in {200, 202, 204, 404}:
                removed += 1
                continue
            delete_resp.raise_for_status()
        logger.info("Removed %d role assignment(s) for '%s' on '%s'", removed, principal_id, scope)
        return removed

    def list_management_groups(self) -> list[ManagementGroup]:
        url = f"{self._mgmt_url}/providers/Microsoft.Management/managementGroups"
        items = self._paged_get(url, {"api-version": MANAGEMENT_GROUPS_API_VERSION})
        return [
            ManagementGroup(
                name=item["name"],
                display_name=(item.get("properties") or {}).get("displayName") or item["name"],
            )
            for item in items
        ]

    def list_subscriptions(self) -> list[Subscription]:
        url = f"{self._mgmt_url}/subscriptions"
        items = self._paged_get(url, {"api-version": SUBSCRIPTIONS_API_VERSION})
        return [
            Subscription(
                subscription_id=item["subscriptionId"],
                name=item.get("displayName", ""),
                state=item.get("state", ""),
            )
            for item in items
        ]

    def _paged_get(self, url: str, params: dict[str, str]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params: dict[str, str] | None = params
        while next_url:
            response = self._authorized_request("GET", next_url, params=next_params)
            response.raise_for_status()
            payload = parse_json(response)
            items.extend(payload.get("value", []))
            next_url = payload.get("nextLink")
            next_params = None
        return items

    def _authorized_request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        token = self._credentials.acquire_token(MANAGEMENT_SCOPE)
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"
        headers.setdefault("Content-Type", "application/json")
        headers.setdefault("Accept", "application/json")
        return requests.request(method, url, headers=headers, timeout=60, **kwargs)
