"""HTTP utilities for working with Graph and ARM JSON responses."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from requests import Response

from .errors import OnboardingError


@dataclass(slots=True)
class IncompleteResponseError(OnboardingError):
    """Raised when a call succeeded but the payload is empty or not JSON."""

    status_code: int
    url: str
    body_preview: str

    def __str__(self) -> str:  # noqa: D401 - simple representation
        return (
            f"Incomplete response from {self.url} (status {self.status_code}): "
            f"{self.body_preview}"
        )


def _request_url(response: Response) -> str:
    return response.request.url if response.request else "<unknown>"


def parse_json(response: Response) -> Any:
    """Return JSON content or raise IncompleteResponseError with helpful context."""

    if not response.content:
        raise IncompleteResponseError(
            status_code=response.status_code,
            url=_request_url(response),
            body_preview="<empty body>",
        )
    try:
        return response.json()
    except json.JSONDecodeError as exc:  # pragma: no cover - depends on http responses
        preview = response.text[:500].replace("\n", " ").strip()
        raise IncompleteResponseError(
            status_code=response.status_code,
            url=_request_url(response),
            body_preview=preview or "<no text>",
        ) from exc


def error_preview(response: Response, limit: int = 300) -> str:
    """Short single-line rendering of an error body for log and result messages."""
    text = (response.text or "").replace("\n", " ").strip()
    return text[:limit] or f"HTTP {response.status_code}"
