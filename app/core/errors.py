"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Version conflicts on counter updates are not errors: they are reported as
``UpdateOutcome.CONFLICT`` by the counter store and retried by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    user_id_hash: str
    tier: str
    key: str
    attempts: int
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class ConfigNotFoundError(AppError):
    """Raised when a user account, the tier table, or a tier entry is missing."""


class StoreUnavailableError(AppError):
    """Raised when the backing store cannot serve a read or write."""


class DownstreamAppError(AppError):
    """Raised when forwarding an admitted request fails.

    The quota unit has already been consumed when this is raised.
    """


class ConfigRefreshError(AppError):
    """Raised when tier definitions cannot be fetched from the tier source."""
