"""Exception taxonomy for the onboarding workflow."""
from __future__ import annotations


class OnboardingError(RuntimeError):
    """Base class for all errors raised by blast-onboard."""


class PreflightError(OnboardingError):
    """A precondition for provisioning is not met (missing tool, missing input)."""


class NotAuthenticatedError(PreflightError):
    """No authenticated Azure CLI session is available."""


class OperatorAbort(OnboardingError):
    """The operator declined to continue. Not a failure."""


class DuplicateApplicationError(OnboardingError):
    """An application with the requested name exists and reuse was declined."""


class ProvisioningError(OnboardingError):
    """A remote create or update call failed."""


class SecretIssuanceError(ProvisioningError):
    """The directory did not return a usable client secret."""


class ConsentNotReadyError(OnboardingError):
    """Admin consent could not be granted yet, usually due to propagation delay."""


class AzureCliError(OnboardingError):
    """An ``az`` invocation exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.command = ["az", *args]
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"Command failed ({returncode}): {' '.join(self.command)}: {self.stderr}")
