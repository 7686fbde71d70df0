"""Sequential runner for the onboarding steps."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .errors import OnboardingError, ProvisioningError
from .models import RunResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkflowStep:
    name: str
    action: Callable[[RunResult], None]


class WorkflowRunner:
    """Runs steps in order and stops at the first failure.

    Nothing is rolled back: completed steps stay in place and a rerun picks
    them up again through remote lookups.
    """

    def __init__(self) -> None:
        self._log = logger

    def run(self, steps: list[WorkflowStep], result: RunResult) -> RunResult:
        for step in steps:
            self._log.info("Running workflow step '%s'", step.name)
            try:
                step.action(result)
            except OnboardingError:
                self._log.info("Workflow step '%s' stopped the run", step.name)
                raise
            except Exception as exc:  # noqa: BLE001 - remote failures become ProvisioningError
                self._log.exception("Workflow step '%s' failed: %s", step.name, exc)
                raise ProvisioningError(f"{step.name} failed: {exc}") from exc
        return result
