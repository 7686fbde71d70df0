from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

import pytest
import requests

from blast_onboard.azure import ManagementGroup, Subscription
from blast_onboard.config import ConsentRetryPolicy, OnboardConfig
from blast_onboard.errors import ConsentNotReadyError, SecretIssuanceError
from blast_onboard.models import (
    ApplicationRef,
    GraphPermission,
    IssuedSecret,
    PermissionOutcome,
    ScopeResult,
    ScopeSelector,
    ServicePrincipalRef,
    SessionInfo,
    SkipScope,
)
from blast_onboard.service import OnboardingService


class FakeCli:
    def __init__(self, account: Optional[dict[str, Any]] = None) -> None:
        self.account = account or {
            "id": "sub-default",
            "tenantId": "tenant-1",
            "tenantDisplayName": "Contoso",
            "user": {"name": "admin@contoso.com"},
        }

    def ensure_available(self) -> str:
        return "/usr/bin/az"

    def run_json(self, args: list[str]) -> Any:
        if args == ["account", "show"]:
            return self.account
        raise AssertionError(f"Unexpected az call {args}")


class FakeIdentity:
    """In-memory directory standing in for Microsoft Graph."""

    def __init__(self) -> None:
        self.applications: list[ApplicationRef] = []
        self.principals: dict[str, ServicePrincipalRef] = {}
        self.declared: dict[str, set[str]] = {}
        self.secrets: dict[str, list[str]] = {}
        self.consent_failures = 0
        self.consent_attempts = 0
        self.consent_error: Exception = ConsentNotReadyError("not propagated yet")
        self.secret_value: Optional[str] = "generated-secret"
        self.created_apps = 0
        self.created_principals = 0
        self.fail_create: Optional[Exception] = None
        self.deleted: list[str] = []

    def find_application(self, name: str) -> Optional[ApplicationRef]:
        for application in self.applications:
            if application.display_name == name:
                return ApplicationRef(application.object_id, application.client_id, application.display_name)
        return None

    def find_application_by_client_id(self, client_id: str) -> Optional[ApplicationRef]:
        for application in self.applications:
            if application.client_id == client_id:
                return ApplicationRef(application.object_id, application.client_id, application.display_name)
        return None

    def create_application(self, name: str) -> ApplicationRef:
        if self.fail_create is not None:
            raise self.fail_create
        self.created_apps += 1
        application = ApplicationRef(f"obj-{self.created_apps}", f"client-{self.created_apps}", name, created=True)
        self.applications.append(application)
        return application

    def find_service_principal(self, app_id: str) -> Optional[ServicePrincipalRef]:
        principal = self.principals.get(app_id)
        if principal is None:
            return None
        return ServicePrincipalRef(principal.object_id, principal.client_id, principal.display_name)

    def ensure_service_principal(self, client_id: str) -> ServicePrincipalRef:
        existing = self.find_service_principal(client_id)
        if existing:
            return existing
        self.created_principals += 1
        principal = ServicePrincipalRef(f"sp-{client_id}", client_id, "blast-collector", created=True)
        self.principals[client_id] = principal
        return principal

    def reset_password(self, application: ApplicationRef, description: str, expires_on: datetime) -> IssuedSecret:
        if not self.secret_value:
            raise SecretIssuanceError("Failed to create client secret: Microsoft Graph returned no secret value")
        self.secrets[application.object_id] = [description]
        return IssuedSecret(value=self.secret_value, expires_on=expires_on, key_id="key-1")

    def declare_permission(self, app_object_id: str, api_id: str, permission: GraphPermission) -> PermissionOutcome:
        declared = self.declared.setdefault(app_object_id, set())
        if permission.permission_id in declared:
            return PermissionOutcome.ALREADY_EXISTS
        declared.add(permission.permission_id)
        return PermissionOutcome.ADDED

    def grant_admin_consent(self, principal_object_id: str, api_id: str, permissions: list[GraphPermission]) -> None:
        self.consent_attempts += 1
        if self.consent_attempts <= self.consent_failures:
            raise self.consent_error

    def delete_service_principal(self, app_id: str) -> bool:
        self.deleted.append(f"sp:{app_id}")
        return self.principals.pop(app_id, None) is not None

    def delete_application(self, application: ApplicationRef) -> bool:
        self.deleted.append(f"app:{application.client_id}")
        self.applications = [item for item in self.applications if item.client_id != application.client_id]
        return True


class FakeRoles:
    def __init__(self) -> None:
        self.assignments: list[tuple[str, str, str]] = []
        self.failing_scopes: set[str] = set()
        self.raising_scopes: dict[str, Exception] = {}
        self.removed: list[tuple[str, str]] = []
        self.remove_errors: set[str] = set()

    def assign_role(self, principal_id: str, scope: str, role_definition_id: str) -> ScopeResult:
        self.assignments.append((principal_id, scope, role_definition_id))
        if scope in self.raising_scopes:
            raise self.raising_scopes[scope]
        if scope in self.failing_scopes:
            return ScopeResult(scope=scope, succeeded=False, message="AuthorizationFailed")
        return ScopeResult(scope=scope, succeeded=True)

    def remove_role_assignments(self, principal_id: str, scope: str) -> int:
        if scope in self.remove_errors:
            raise requests.HTTPError("403 Forbidden")
        self.removed.append((principal_id, scope))
        return 1

    def list_management_groups(self) -> list[ManagementGroup]:
        return [ManagementGroup(name="mg-root", display_name="Tenant Root Group")]

    def list_subscriptions(self) -> list[Subscription]:
        return [Subscription(subscription_id="sub-1", name="Production", state="Enabled")]


class ScriptedConsole:
    def __init__(
        self,
        *,
        confirm_tenant: bool = True,
        reuse: bool = True,
        scope: Optional[ScopeSelector] = None,
        manual_consent: bool = True,
    ) -> None:
        self.answers = {"confirm_tenant": confirm_tenant, "reuse": reuse, "manual_consent": manual_consent}
        self.scope = scope if scope is not None else SkipScope()
        self.messages: list[tuple[str, str]] = []
        self.prompts: list[str] = []

    def step(self, index: int, title: str) -> None:
        self.messages.append(("step", f"{index}:{title}"))

    def ok(self, message: str) -> None:
        self.messages.append(("ok", message))

    def warn(self, message: str) -> None:
        self.messages.append(("warn", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def confirm_tenant(self, session: SessionInfo) -> bool:
        self.prompts.append("confirm_tenant")
        return self.answers["confirm_tenant"]

    def reuse_existing_application(self, application: ApplicationRef) -> bool:
        self.prompts.append("reuse")
        return self.answers["reuse"]

    def choose_scope(
        self,
        list_management_groups: Callable[[], list[ManagementGroup]],
        list_subscriptions: Callable[[], list[Subscription]],
    ) -> ScopeSelector:
        self.prompts.append("scope")
        return self.scope

    def acknowledge_manual_consent(self, app_name: str) -> bool:
        self.prompts.append("manual_consent")
        return self.answers["manual_consent"]

    def texts(self, kind: str) -> list[str]:
        return [text for message_kind, text in self.messages if message_kind == kind]


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def roles() -> FakeRoles:
    return FakeRoles()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def onboard_config() -> OnboardConfig:
    return OnboardConfig(consent_retry=ConsentRetryPolicy(initial_delay_seconds=5, retry_delay_seconds=10, max_attempts=2))


@pytest.fixture
def make_service(identity: FakeIdentity, roles: FakeRoles, sleeps: list[float], onboard_config: OnboardConfig):
    def factory(console: ScriptedConsole) -> OnboardingService:
        return OnboardingService(
            onboard_config,
            console,
            cli=FakeCli(),  # type: ignore[arg-type]
            identity=identity,  # type: ignore[arg-type]
            roles=roles,  # type: ignore[arg-type]
            sleep=sleeps.append,
        )

    return factory
