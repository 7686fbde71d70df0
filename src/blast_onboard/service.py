"""Orchestration of the five onboarding steps."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from .auth import CliTokenProvider
from .azure import RoleAssignmentProvisioner
from .config import ConsentRetryPolicy, OnboardConfig
from .console import OperatorConsole
from .errors import DuplicateApplicationError, OnboardingError, OperatorAbort, PreflightError
from .identity import IdentityProvisioner
from .models import (
    ConsentState,
    IssuedSecret,
    PermissionOutcome,
    RevocationResult,
    RunConfig,
    RunResult,
    ScopeResult,
    ScopeSelector,
    SessionInfo,
    SkipScope,
    add_calendar_years,
    format_timestamp,
    utc_now,
)
from .session import AzureCli, resolve_session
from .workflow import WorkflowRunner, WorkflowStep

logger = logging.getLogger(__name__)

CONSENT_RETRYABLE = (OnboardingError, requests.RequestException)


def manual_role_command(client_id: str, role_name: str) -> str:
    return f"az role assignment create --assignee {client_id} --role {role_name} --subscription <SUBSCRIPTION_ID>"


def manual_consent_path(app_name: str) -> str:
    return f"Azure Portal > Entra ID > App registrations > {app_name} > API permissions > Grant admin consent"


class OnboardingService:
    """Provisions the Blast collector identity and its access in one tenant."""

    def __init__(
        self,
        config: OnboardConfig,
        console: OperatorConsole,
        *,
        cli: Optional[AzureCli] = None,
        identity: Optional[IdentityProvisioner] = None,
        roles: Optional[RoleAssignmentProvisioner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._console = console
        self._cli = cli or AzureCli()
        credentials = CliTokenProvider(self._cli)
        self._identity = identity or IdentityProvisioner(credentials, config.graph_url)
        self._roles = roles or RoleAssignmentProvisioner(credentials, config.management_url)
        self._sleep = sleep

    @property
    def cli(self) -> AzureCli:
        return self._cli

    def run(self, run_config: RunConfig) -> RunResult:
        result = RunResult()
        result.session = self.resolve_session(run_config)

        steps = [
            WorkflowStep("Creating App Registration", lambda res: self._step_application(run_config, res)),
            WorkflowStep("Creating Client Secret", lambda res: self._step_secret(run_config, res)),
            WorkflowStep("Granting Graph API Permissions", lambda res: self._step_permissions(run_config, res)),
            WorkflowStep("Granting Admin Consent", lambda res: self._step_consent(run_config, res)),
            WorkflowStep(f"Assigning {run_config.role_name} Role (RBAC)", lambda res: self._step_roles(run_config, res)),
        ]
        numbered = [self._numbered(index, step) for index, step in enumerate(steps, start=1)]
        return WorkflowRunner().run(numbered, result)

    def resolve_session(self, run_config: RunConfig) -> SessionInfo:
        session = resolve_session(self._cli)
        logger.info("Using tenant %s as %s", session.tenant_id, session.user_name)
        if not run_config.assume_yes and not self._console.confirm_tenant(session):
            raise OperatorAbort("Aborted.")
        return session

    def ensure_application(self, run_config: RunConfig, result: RunResult) -> str:
        """Reuse or create the application and make sure it has a service principal."""
        name = run_config.app_name
        application = self._identity.find_application(name)
        if application is not None:
            if not (run_config.assume_yes or self._console.reuse_existing_application(application)):
                raise DuplicateApplicationError(
                    f"Aborted. App registration '{name}' already exists; delete it first or choose a different name."
                )
            self._console.ok(f"Using existing app registration: {application.client_id}")
        else:
            application = self._identity.create_application(name)
            self._console.ok(f"Created app registration: {application.client_id}")
        result.application = application

        service_principal = self._identity.ensure_service_principal(application.client_id)
        if service_principal.created:
            self._console.ok(f"Created service principal: {service_principal.object_id}")
        else:
            self._console.ok(f"Service principal already exists: {service_principal.object_id}")
        result.service_principal = service_principal
        return application.client_id

    def issue_secret(self, run_config: RunConfig, result: RunResult) -> IssuedSecret:
        if result.application is None:
            raise RuntimeError("Application must exist before a secret is issued")
        expires_on = add_calendar_years(utc_now().replace(microsecond=0), run_config.secret_expiry_years)
        if not result.application.created:
            self._console.warn(
                f"Any existing secret named '{run_config.secret_description}' on this app will be replaced"
            )
        secret = self._identity.reset_password(result.application, run_config.secret_description, expires_on)
        result.secret = secret
        self._console.ok(f"Created client secret (expires: {format_timestamp(secret.expires_on)})")
        return secret

    def declare_permissions(self, run_config: RunConfig, result: RunResult) -> list[PermissionOutcome]:
        if result.application is None:
            raise RuntimeError("Application must exist before permissions are declared")
        outcomes: list[PermissionOutcome] = []
        for permission in run_config.permissions:
            outcome = self._identity.declare_permission(result.application.object_id, run_config.api_id, permission)
            result.permissions.append((permission, outcome))
            outcomes.append(outcome)
            if outcome is PermissionOutcome.ADDED:
                self._console.ok(f"Added {permission.name}")
            elif outcome is PermissionOutcome.ALREADY_EXISTS:
                self._console.ok(f"{permission.name} already declared")
            else:
                self._console.warn(f"Could not confirm {permission.name}; check API permissions in the portal")
        return outcomes

    def grant_admin_consent(self, run_config: RunConfig, result: RunResult, policy: ConsentRetryPolicy) -> ConsentState:
        """Attempt consent with bounded fixed-delay retries; defer to the operator when exhausted."""
        if result.service_principal is None:
            raise RuntimeError("Service principal must exist before consent is granted")
        principal_id = result.service_principal.object_id
        permissions = list(run_config.permissions)
        attempts: list[int] = []

        def attempt() -> None:
            attempts.append(len(attempts) + 1)
            self._identity.grant_admin_consent(principal_id, run_config.api_id, permissions)

        self._console.info("Waiting for permissions to propagate...")
        self._sleep(policy.initial_delay_seconds)
        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_fixed(policy.retry_delay_seconds),
            retry=retry_if_exception_type(CONSENT_RETRYABLE),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            retrying(attempt)
        except CONSENT_RETRYABLE as exc:
            logger.warning("Admin consent not granted after %d attempt(s): %s", len(attempts), exc)
            result.consent_state = ConsentState.DEFERRED_TO_OPERATOR
            return result.consent_state

        result.consent_state = ConsentState.GRANTED
        if len(attempts) > 1:
            self._console.ok("Admin consent granted (retry succeeded)")
        else:
            self._console.ok("Admin consent granted")
        return result.consent_state

    def assign_role(self, principal_id: str, role_definition_id: str, scope: ScopeSelector) -> list[ScopeResult]:
        """One assignment attempt per scope; failures are collected, not raised."""
        results: list[ScopeResult] = []
        for target in scope.scopes():
            try:
                results.append(self._roles.assign_role(principal_id, target, role_definition_id))
            except (requests.RequestException, OnboardingError) as exc:
                logger.error("Role assignment on '%s' failed: %s", target, exc)
                results.append(ScopeResult(scope=target, succeeded=False, message=str(exc)))
        return results

    def choose_scope(self, run_config: RunConfig) -> ScopeSelector:
        if run_config.scope is not None:
            return run_config.scope
        return self._console.choose_scope(self._roles.list_management_groups, self._roles.list_subscriptions)

    def _numbered(self, index: int, step: WorkflowStep) -> WorkflowStep:
        def action(result: RunResult) -> None:
            self._console.step(index, step.name)
            step.action(result)

        return WorkflowStep(step.name, action)

    def _step_application(self, run_config: RunConfig, result: RunResult) -> None:
        self.ensure_application(run_config, result)

    def _step_secret(self, run_config: RunConfig, result: RunResult) -> None:
        self.issue_secret(run_config, result)

    def _step_permissions(self, run_config: RunConfig, result: RunResult) -> None:
        self.declare_permissions(run_config, result)

    def _step_consent(self, run_config: RunConfig, result: RunResult) -> None:
        state = self.grant_admin_consent(run_config, result, self._config.consent_retry)
        if state is not ConsentState.DEFERRED_TO_OPERATOR:
            return
        if run_config.assume_yes:
            result.consent_skipped = True
            self._console.warn("Admin consent could not be granted automatically.")
            self._console.info(f"Grant it later: {manual_consent_path(run_config.app_name)}")
            return
        if not self._console.acknowledge_manual_consent(run_config.app_name):
            result.consent_skipped = True
            self._console.warn("Skipped admin consent - remember to grant it before using the integration")

    def _step_roles(self, run_config: RunConfig, result: RunResult) -> None:
        scope = self.choose_scope(run_config)
        result.scope = scope
        client_id = result.client_id
        if isinstance(scope, SkipScope) or not scope.scopes():
            self._console.warn(
                f"Skipped RBAC assignment - remember to assign {run_config.role_name} role before using the integration"
            )
            self._console.info(f"Command: {manual_role_command(client_id, run_config.role_name)}")
            return
        if result.service_principal is None:
            raise RuntimeError("Service principal must exist before roles are assigned")
        result.role_results = self.assign_role(
            result.service_principal.object_id, run_config.role_definition_id, scope
        )
        for scope_result in result.role_results:
            if scope_result.succeeded:
                suffix = " (already assigned)" if scope_result.already_existed else ""
                self._console.ok(f"{run_config.role_name} role assigned on {scope_result.scope}{suffix}")
            else:
                self._console.warn(f"Failed to assign {run_config.role_name} on {scope_result.scope}: {scope_result.message}")

    def revoke(self, app_name: str, scope: ScopeSelector, client_id: Optional[str] = None) -> RevocationResult:
        """Remove role assignments at ``scope``, then the service principal and the application."""
        if client_id:
            application = self._identity.find_application_by_client_id(client_id)
        else:
            application = self._identity.find_application(app_name)
        if application is None:
            raise PreflightError(f"No app registration found for '{client_id or app_name}'")

        result = RevocationResult(client_id=application.client_id)
        service_principal = self._identity.find_service_principal(application.client_id)
        if service_principal is not None:
            for target in scope.scopes():
                try:
                    result.role_assignments_removed += self._roles.remove_role_assignments(
                        service_principal.object_id, target
                    )
                except requests.RequestException as exc:
                    logger.error("Could not remove role assignments on '%s': %s", target, exc)
                    result.failed_scopes.append(target)
            result.service_principal_deleted = self._identity.delete_service_principal(application.client_id)
        result.application_deleted = self._identity.delete_application(application)
        return result
