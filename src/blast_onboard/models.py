"""Domain models for a single onboarding run."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

MANAGEMENT_GROUP_SCOPE_PREFIX = "/providers/Microsoft.Management/managementGroups/"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def add_calendar_years(moment: datetime, years: int) -> datetime:
    """Shift ``moment`` by whole calendar years, mapping Feb 29 to Feb 28 when needed."""
    target_year = moment.year + years
    try:
        return moment.replace(year=target_year)
    except ValueError:
        return moment.replace(year=target_year, day=28)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class PermissionOutcome(str, Enum):
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"
    UNKNOWN = "unknown"


class ConsentState(str, Enum):
    GRANTED = "granted"
    DEFERRED_TO_OPERATOR = "deferred_to_operator"


@dataclass(slots=True, frozen=True)
class ManagementGroupScope:
    group_id: str

    def scopes(self) -> list[str]:
        return [f"{MANAGEMENT_GROUP_SCOPE_PREFIX}{self.group_id}"]

    def describe(self) -> str:
        return f"management group {self.group_id}"


@dataclass(slots=True, frozen=True)
class SubscriptionScope:
    subscription_ids: tuple[str, ...]

    @classmethod
    def from_input(cls, raw: str | list[str] | tuple[str, ...]) -> "SubscriptionScope":
        """Build from operator input: comma-separated text or a list; blank entries are dropped."""
        parts = raw.split(",") if isinstance(raw, str) else list(raw)
        return cls(tuple(part.strip() for part in parts if part.strip()))

    def scopes(self) -> list[str]:
        return [f"/subscriptions/{subscription_id}" for subscription_id in self.subscription_ids]

    def describe(self) -> str:
        return "subscription(s) " + ", ".join(self.subscription_ids)


@dataclass(slots=True, frozen=True)
class SkipScope:
    def scopes(self) -> list[str]:
        return []

    def describe(self) -> str:
        return "skipped"


ScopeSelector = Union[ManagementGroupScope, SubscriptionScope, SkipScope]


@dataclass(slots=True, frozen=True)
class GraphPermission:
    """An application permission (app role) on a resource API."""

    name: str
    permission_id: str
    grant_type: str = "Role"


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Operator choices and constants for one run. Never mutated once built."""

    app_name: str
    secret_description: str
    secret_expiry_years: int
    api_id: str
    permissions: tuple[GraphPermission, ...]
    role_definition_id: str
    role_name: str
    assume_yes: bool = False
    scope: Optional[ScopeSelector] = None


@dataclass(slots=True)
class SessionInfo:
    tenant_id: str
    tenant_name: str
    user_name: str
    subscription_id: Optional[str] = None


@dataclass(slots=True)
class ApplicationRef:
    object_id: str
    client_id: str
    display_name: str
    created: bool = False


@dataclass(slots=True)
class ServicePrincipalRef:
    object_id: str
    client_id: str
    display_name: str
    created: bool = False


@dataclass(slots=True)
class IssuedSecret:
    value: str = field(repr=False)
    expires_on: datetime
    key_id: str = ""


@dataclass(slots=True)
class ScopeResult:
    scope: str
    succeeded: bool
    already_existed: bool = False
    message: Optional[str] = None


@dataclass(slots=True)
class RunResult:
    """Accumulates what each provisioning step produced."""

    session: Optional[SessionInfo] = None
    application: Optional[ApplicationRef] = None
    service_principal: Optional[ServicePrincipalRef] = None
    secret: Optional[IssuedSecret] = None
    permissions: list[tuple[GraphPermission, PermissionOutcome]] = field(default_factory=list)
    consent_state: Optional[ConsentState] = None
    consent_skipped: bool = False
    scope: Optional[ScopeSelector] = None
    role_results: list[ScopeResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)

    @property
    def client_id(self) -> str:
        if self.application is None:
            raise RuntimeError("Application has not been provisioned yet")
        return self.application.client_id

    @property
    def failed_scopes(self) -> list[ScopeResult]:
        return [result for result in self.role_results if not result.succeeded]


@dataclass(slots=True)
class RevocationResult:
    client_id: str
    role_assignments_removed: int = 0
    service_principal_deleted: bool = False
    application_deleted: bool = False
    failed_scopes: list[str] = field(default_factory=list)
