"""Configuration loading for blast-onboard.

Every setting has a default, so the tool runs without a config file. A YAML
file passed with ``--config`` may override any subset of them.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import GraphPermission, RunConfig, ScopeSelector

MICROSOFT_GRAPH_API_ID = "00000003-0000-0000-c000-000000000000"
READER_ROLE_ID = "acdd72a7-3385-48ef-bd42-f606fba81ae7"


class PermissionConfig(BaseModel):
    name: str
    id: str
    type: str = Field("Role", description="Only application permissions (app roles) are supported")

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        if value != "Role":
            raise ValueError("permission type must be 'Role'; delegated scopes are not supported")
        return value


def _default_permissions() -> list[PermissionConfig]:
    return [
        PermissionConfig(name="AuditLog.Read.All", id="b0afded3-3588-46d8-8b3d-9842eff778da"),
        PermissionConfig(name="Directory.Read.All", id="7ab1d382-f21e-4acd-a863-ba3e13f7da61"),
    ]


class ConsentRetryPolicy(BaseModel):
    """Bounded fixed-delay retry for admin consent after permissions are declared."""

    initial_delay_seconds: float = Field(5.0, ge=0, description="Wait before the first consent attempt")
    retry_delay_seconds: float = Field(10.0, ge=0, description="Wait between consent attempts")
    max_attempts: int = Field(2, ge=1, description="Automatic attempts before asking the operator")


class OnboardConfig(BaseModel):
    app_name: str = "blast-collector"
    secret_description: str = "blast-collector-secret"
    secret_expiry_years: int = Field(2, ge=1, le=100)
    graph_url: str = "https://graph.microsoft.com"
    management_url: str = "https://management.azure.com"
    graph_api_id: str = MICROSOFT_GRAPH_API_ID
    permissions: list[PermissionConfig] = Field(default_factory=_default_permissions)
    role_definition_id: str = READER_ROLE_ID
    role_name: str = "Reader"
    consent_retry: ConsentRetryPolicy = Field(default_factory=ConsentRetryPolicy)

    @field_validator("graph_url", "management_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _ensure_names(self) -> "OnboardConfig":
        if not self.app_name.strip():
            raise ValueError("app_name must not be empty")
        if not self.permissions:
            raise ValueError("at least one permission is required")
        return self

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "OnboardConfig":
        return cls.model_validate(raw or {})

    @classmethod
    def from_yaml(cls, path: Path) -> "OnboardConfig":
        data = yaml.safe_load(path.read_text())
        return cls.from_dict(data)

    def run_config(
        self,
        *,
        app_name: Optional[str] = None,
        assume_yes: bool = False,
        scope: Optional[ScopeSelector] = None,
    ) -> RunConfig:
        """Freeze these settings plus any pre-answered operator choices."""
        return RunConfig(
            app_name=app_name or self.app_name,
            secret_description=self.secret_description,
            secret_expiry_years=self.secret_expiry_years,
            api_id=self.graph_api_id,
            permissions=tuple(
                GraphPermission(name=item.name, permission_id=item.id, grant_type=item.type)
                for item in self.permissions
            ),
            role_definition_id=self.role_definition_id,
            role_name=self.role_name,
            assume_yes=assume_yes,
            scope=scope,
        )


def load_config(path: str | Path | None = None) -> OnboardConfig:
    """Load an OnboardConfig from a YAML file, or the defaults when no path is given."""
    if path is None:
        return OnboardConfig()
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return OnboardConfig.from_yaml(config_path)
