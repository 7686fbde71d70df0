from __future__ import annotations

from typing import Any, Dict

import pytest
import requests

from blast_onboard.azure import RoleAssignmentProvisioner
from blast_onboard.errors import NotAuthenticatedError

READER = "acdd72a7-3385-48ef-bd42-f606fba81ae7"
MG_SCOPE = "/providers/Microsoft.Management/managementGroups/mg-root"


class DummyCredentials:
    def acquire_token(self, scope: str) -> str:
        return "dummy-token"


class DummyResponse:
    def __init__(self, *, status_code: int = 200, json_data: Dict[str, Any] | None = None, text: str = "") -> None:
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text
        self.content = b"{}" if json_data is not None else b""

    def json(self) -> Dict[str, Any]:
        return self._json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(self.text or f"http error {self.status_code}")


def _provisioner() -> RoleAssignmentProvisioner:
    return RoleAssignmentProvisioner(DummyCredentials(), "https://management.azure.com")  # type: ignore[arg-type]


def test_assign_role_on_management_group(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, str, dict[str, Any]]] = []

    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        calls.append((method, url, kwargs["json"]))
        return DummyResponse(status_code=201, json_data={})

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    result = _provisioner().assign_role("sp-1", MG_SCOPE, READER)

    assert result.succeeded is True
    assert result.already_existed is False
    method, url, body = calls[0]
    assert method == "PUT"
    assert url.startswith(f"https://management.azure.com{MG_SCOPE}/providers/Microsoft.Authorization/roleAssignments/")
    assert url.endswith("?api-version=2022-04-01")
    assert body["properties"] == {
        "roleDefinitionId": f"{MG_SCOPE}/providers/Microsoft.Authorization/roleDefinitions/{READER}",
        "principalId": "sp-1",
        "principalType": "ServicePrincipal",
    }


def test_assign_role_conflict_counts_as_existing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        RoleAssignmentProvisioner,
        "_authorized_request",
        lambda self, method, url, **kwargs: DummyResponse(status_code=409, text="RoleAssignmentExists"),
    )

    result = _provisioner().assign_role("sp-1", "/subscriptions/sub-1", READER)

    assert result.succeeded is True
    assert result.already_existed is True


def test_assign_role_failure_is_returned(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        RoleAssignmentProvisioner,
        "_authorized_request",
        lambda self, method, url, **kwargs: DummyResponse(status_code=403, text="AuthorizationFailed"),
    )

    result = _provisioner().assign_role("sp-1", "/subscriptions/sub-1", READER)

    assert result.succeeded is False
    assert result.message == "AuthorizationFailed"


def test_assign_role_network_error_is_returned(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        raise requests.ConnectionError("connection reset")

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    result = _provisioner().assign_role("sp-1", "/subscriptions/sub-1", READER)

    assert result.succeeded is False
    assert "connection reset" in (result.message or "")


def test_assign_role_token_failure_is_returned(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        raise NotAuthenticatedError("Could not get an access token for https://management.azure.com/.default")

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    result = _provisioner().assign_role("sp-1", MG_SCOPE, READER)

    assert result.scope == MG_SCOPE
    assert result.succeeded is False
    assert "access token" in (result.message or "")


def test_list_management_groups_follows_next_link(monkeypatch: pytest.MonkeyPatch) -> None:
    pages = {
        "https://management.azure.com/providers/Microsoft.Management/managementGroups": {
            "value": [{"name": "mg-root", "properties": {"displayName": "Tenant Root Group"}}],
            "nextLink": "https://management.azure.com/page2",
        },
        "https://management.azure.com/page2": {"value": [{"name": "mg-prod", "properties": {}}]},
    }

    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        return DummyResponse(json_data=pages[url])

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    groups = _provisioner().list_management_groups()

    assert [(group.name, group.display_name) for group in groups] == [
        ("mg-root", "Tenant Root Group"),
        ("mg-prod", "mg-prod"),
    ]


def test_list_subscriptions(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        assert kwargs["params"] == {"api-version": "2022-12-01"}
        return DummyResponse(
            json_data={"value": [{"subscriptionId": "sub-1", "displayName": "Production", "state": "Enabled"}]}
        )

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    subscriptions = _provisioner().list_subscriptions()

    assert subscriptions[0].subscription_id == "sub-1"
    assert subscriptions[0].name == "Production"


def test_remove_role_assignments_deletes_each(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, str]] = []

    def fake_request(self, method: str, url: str, **kwargs: Any) -> DummyResponse:
        calls.append((method, url))
        if method == "GET":
            return DummyResponse(
                json_data={
                    "value": [
                        {"id": "/subscriptions/sub-1/providers/Microsoft.Authorization/roleAssignments/a1",
                         "properties": {"principalId": "sp-1"}},
                        {"id": "/subscriptions/sub-1/providers/Microsoft.Authorization/roleAssignments/a2",
                         "properties": {"principalId": "someone-else"}},
                    ]
                }
            )
        return DummyResponse(status_code=200)

    monkeypatch.setattr(RoleAssignmentProvisioner, "_authorized_request", fake_request)

    removed = _provisioner().remove_role_assignments("sp-1", "/subscriptions/sub-1")

    assert removed == 1
    assert calls[1] == (
        "DELETE",
        "https://management.azure.com/subscriptions/sub-1/providers/Microsoft.Authorization/roleAssignments/a1"
        "?api-version=2022-04-01",
    )
    assert len(calls) == 2
