"""Microsoft Entra ID (Azure AD) operations over Microsoft Graph."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import requests

from .auth import GRAPH_SCOPE, CliTokenProvider
from .errors import ConsentNotReadyError, OnboardingError, SecretIssuanceError
from .http import IncompleteResponseError, error_preview, parse_json
from .models import (
    ApplicationRef,
    GraphPermission,
    IssuedSecret,
    PermissionOutcome,
    ServicePrincipalRef,
    format_timestamp,
)

logger = logging.getLogger(__name__)

ALREADY_ASSIGNED_MARKER = "already exists"


def _odata_literal(value: str) -> str:
    return value.replace("'", "''")


class IdentityProvisioner:
    """Creates and inspects applications, service principals, secrets and app role grants."""

    def __init__(self, credential_provider: CliTokenProvider, graph_url: str = "https://graph.microsoft.com") -> None:
        self._credentials = credential_provider
        self._base_url = graph_url.rstrip("/")

    def find_application(self, name: str) -> Optional[ApplicationRef]:
        """Return the first application whose display name matches exactly."""
        query = f"$filter=displayName eq '{_odata_literal(name)}'"
        return self._first_application(query)

    def find_application_by_client_id(self, client_id: str) -> Optional[ApplicationRef]:
        query = f"$filter=appId eq '{_odata_literal(client_id)}'"
        return self._first_application(query)

    def create_application(self, name: str) -> ApplicationRef:
        payload = {
            "displayName": name,
            "signInAudience": "AzureADMyOrg",
        }
        response = self._authorized_request("POST", "/v1.0/applications", json=payload)
        response.raise_for_status()
        body = parse_json(response)
        logger.info("Created application '%s' (appId %s)", name, body["appId"])
        return ApplicationRef(
            object_id=body["id"],
            client_id=body["appId"],
            display_name=body["displayName"],
            created=True,
        )

    def ensure_service_principal(self, client_id: str) -> ServicePrincipalRef:
        existing = self.find_service_principal(client_id)
        if existing:
            return existing
        response = self._authorized_request("POST", "/v1.0/servicePrincipals", json={"appId": client_id})
        response.raise_for_status()
        body = parse_json(response)
        logger.info("Created service principal %s for appId %s", body["id"], client_id)
        return ServicePrincipalRef(
            object_id=body["id"],
            client_id=body["appId"],
            display_name=body.get("displayName", ""),
            created=True,
        )

    def find_service_principal(self, app_id: str) -> Optional[ServicePrincipalRef]:
        query = f"$filter=appId eq '{_odata_literal(app_id)}'"
        response = self._authorized_request("GET", f"/v1.0/servicePrincipals?{query}")
        response.raise_for_status()
        data = parse_json(response).get("value", [])
        if not data:
            return None
        item = data[0]
        return ServicePrincipalRef(
            object_id=item["id"],
            client_id=item["appId"],
            display_name=item.get("displayName", ""),
        )

    def reset_password(self, application: ApplicationRef, description: str, expires_on: datetime) -> IssuedSecret:
        """Replace every password credential named ``description`` with a fresh one."""
        for key_id in self._password_key_ids(application.object_id, description):
            logger.info("Removing previous secret '%s' (keyId %s)", description, key_id)
            response = self._authorized_request(
                "POST",
                f"/v1.0/applications/{application.object_id}/removePassword",
                json={"keyId": key_id},
            )
            response.raise_for_status()

        payload = {
            "passwordCredential": {
                "displayName": description,
                "endDateTime": format_timestamp(expires_on),
            }
        }
        response = self._authorized_request(
            "POST",
            f"/v1.0/applications/{application.object_id}/addPassword",
            json=payload,
        )
        response.raise_for_status()
        try:
            body = parse_json(response)
        except IncompleteResponseError as exc:
            raise SecretIssuanceError("Failed to create client secret: empty response from Microsoft Graph") from exc
        secret_text = body.get("secretText")
        if not secret_text:
            raise SecretIssuanceError("Failed to create client secret: Microsoft Graph returned no secret value")
        return IssuedSecret(value=secret_text, expires_on=expires_on, key_id=body.get("keyId", ""))

    def declare_permission(self, app_object_id: str, api_id: str, permission: GraphPermission) -> PermissionOutcome:
        """Add one permission to the application's required resource access.

        Any remote failure yields UNKNOWN instead of raising, so reruns stay harmless.
        """
        try:
            response = self._authorized_request(
                "GET", f"/v1.0/applications/{app_object_id}?$select=requiredResourceAccess"
            )
            response.raise_for_status()
            required = parse_json(response).get("requiredResourceAccess") or []

            resource = next((item for item in required if item.get("resourceAppId") == api_id), None)
            if resource is None:
                resource = {"resourceAppId": api_id, "resourceAccess": []}
                required.append(resource)
            access = resource.setdefault("resourceAccess", [])
            if any(
                entry.get("id") == permission.permission_id and entry.get("type") == permission.grant_type
                for entry in access
            ):
                return PermissionOutcome.ALREADY_EXISTS

            access.append({"id": permission.permission_id, "type": permission.grant_type})
            response = self._authorized_request(
                "PATCH",
                f"/v1.0/applications/{app_object_id}",
                json={"requiredResourceAccess": required},
            )
            response.raise_for_status()
            return PermissionOutcome.ADDED
        except (requests.RequestException, OnboardingError) as exc:
            logger.warning("Could not confirm permission %s: %s", permission.name, exc)
            return PermissionOutcome.UNKNOWN

    def grant_admin_consent(self, principal_object_id: str, api_id: str, permissions: list[GraphPermission]) -> None:
        """Grant tenant-wide consent for app role permissions by assigning them to the principal.

        Raises ConsentNotReadyError when any assignment is rejected.
        """
        try:
            self._assign_app_roles(principal_object_id, api_id, permissions)
        except ConsentNotReadyError:
            raise
        except (requests.RequestException, OnboardingError) as exc:
            raise ConsentNotReadyError(f"Consent attempt failed: {exc}") from exc

    def _assign_app_roles(self, principal_object_id: str, api_id: str, permissions: list[GraphPermission]) -> None:
        resource = self.find_service_principal(api_id)
        if resource is None:
            raise ConsentNotReadyError(f"Service principal for API {api_id} not found in tenant")
        for permission in permissions:
            payload = {
                "principalId": principal_object_id,
                "resourceId": resource.object_id,
                "appRoleId": permission.permission_id,
            }
            response = self._authorized_request(
                "POST",
                f"/v1.0/servicePrincipals/{principal_object_id}/appRoleAssignments",
                json=payload,
            )
            if response.status_code in {200, 201}:
                logger.info("Granted %s to principal %s", permission.name, principal_object_id)
                continue
            if response.status_code in {400, 409} and ALREADY_ASSIGNED_MARKER in response.text:
                logger.info("%s already granted to principal %s", permission.name, principal_object_id)
                continue
            raise ConsentNotReadyError(
                f"Consent for {permission.name} rejected (status {response.status_code}): {error_preview(response)}"
            )

    def delete_service_principal(self, app_id: str) -> bool:
        service_principal = self.find_service_principal(app_id)
        if not service_principal:
            logger.info("Service principal with appId '%s' not found; skipping delete", app_id)
            return False
        response = self._authorized_request("DELETE", f"/v1.0/servicePrincipals/{service_principal.object_id}")
        if response.status_code in {200, 202, 204}:
            logger.info("Deleted service principal %s", service_principal.object_id)
            return True
        if response.status_code == 404:
            return False
        logger.error("Failed to delete service principal for appId '%s': %s", app_id, response.text)
        response.raise_for_status()
        return False

    def delete_application(self, application: ApplicationRef) -> bool:
        response = self._authorized_request("DELETE", f"/v1.0/applications/{application.object_id}")
        if response.status_code in {200, 202, 204}:
            logger.info("Deleted application '%s'", application.display_name)
            return True
        if response.status_code == 404:
            logger.info("Application '%s' not found during delete", application.display_name)
            return False
        logger.error("Failed to delete application '%s': %s", application.display_name, response.text)
        response.raise_for_status()
        return False

    def _first_application(self, query: str) -> Optional[ApplicationRef]:
        response = self._authorized_request("GET", f"/v1.0/applications?{query}")
        response.raise_for_status()
        data = parse_json(response).get("value", [])
        if not data:
            return None
        item = data[0]
        return ApplicationRef(object_id=item["id"], client_id=item["appId"], display_name=item["displayName"])

    def _password_key_ids(self, app_object_id: str, description: str) -> list[str]:
        response = self._authorized_request("GET", f"/v1.0/applications/{app_object_id}?$select=passwordCredentials")
        response.raise_for_status()
        credentials = parse_json(response).get("passwordCredentials") or []
        return [item["keyId"] for item in credentials if item.get("displayName") == description and item.get("keyId")]

    def _authorized_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        token = self._credentials.acquire_token(GRAPH_SCOPE)
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"
        headers.setdefault("Content-Type", "application/json")
        headers.setdefault("Accept", "application/json")
        url = f"{self._base_url}{path}"
        return requests.request(method, url, headers=headers, timeout=40, **kwargs)
