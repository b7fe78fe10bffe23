"""Production hardening utilities for Ember.

Provides user-friendly error formatting, input validation for values
arriving at the HTTP boundary, and component health checking. Review
prompting must never break the host's primary flow, so every helper
here reports problems instead of raising past the boundary.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ember.src.coordinator import InvariantViolation, TransientFetchError
from ember.src.storage import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (gate, skips, engagements, api).
        error_code: Machine-readable identifier (e.g. "FETCH_003").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or implementation details to the end user.
    """

    def format_fetch_error(self, error: Exception) -> UserFriendlyError:
        """Format an engagement-fetch error.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="engagements", code_prefix="FETCH")

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a gate or skip persistence error.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="storage", code_prefix="STOR")

    def format_request_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised while handling an API request.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="api", code_prefix="REQ")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, ValidationError):
        return (
            "Invalid input was provided.",
            "Check the identifier and try again.",
            "001",
        )
    if isinstance(error, PersistenceError):
        return (
            "Review preferences could not be saved or loaded.",
            "Your choice applies for now. Check storage permissions if this persists.",
            "002",
        )
    if isinstance(error, (TransientFetchError, TimeoutError, ConnectionError)):
        return (
            "Recent activity could not be loaded.",
            "Try again later. No review request was shown.",
            "003",
        )
    if isinstance(error, InvariantViolation):
        return (
            "The review request was skipped due to an internal problem.",
            "If this keeps happening, please report the issue.",
            "004",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 2. Input Validation
# ---------------------------------------------------------------------------

# Engagement and user identifiers: document-store style IDs.
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure unless
    documented otherwise.
    """

    def validate_identifier(self, value: str, *, max_length: int = 200) -> str:
        """Validate an engagement or user identifier.

        Args:
            value: Raw identifier from user input.
            max_length: Maximum accepted length.

        Returns:
            The identifier with surrounding whitespace removed.

        Raises:
            ValidationError: If the identifier is empty, too long, or
                contains characters outside ``[A-Za-z0-9_.:-]``.
        """
        cleaned = value.strip()
        if not cleaned:
            raise ValidationError("Identifier must not be empty.")
        if len(cleaned) > max_length:
            raise ValidationError(f"Identifier exceeds {max_length} characters.")
        if not _IDENTIFIER_PATTERN.match(cleaned):
            raise ValidationError("Identifier contains unsupported characters.")
        return cleaned

    def sanitize_string(
        self,
        value: str,
        *,
        max_length: int = 1000,
    ) -> str:
        """Sanitize a user-provided string.

        Strips HTML entities, control characters, and truncates.

        Args:
            value: Raw user string.
            max_length: Maximum allowed length after sanitization.

        Returns:
            Cleaned string.
        """
        cleaned = html.escape(value, quote=True)
        cleaned = _strip_control_chars(cleaned)
        cleaned = cleaned.strip()
        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        return cleaned


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace."""
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)


# ---------------------------------------------------------------------------
# 3. Graceful Degradation / Health Checks
# ---------------------------------------------------------------------------

_HEALTH_KEY = "ember.health.check"


@dataclass
class HealthCheck:
    """Result of a single component health check.

    Attributes:
        component: Subsystem name (storage, coordinator).
        status: One of "healthy", "degraded", "unavailable".
        message: Human-readable description.
        detail: User-safe error payload when the check hit an error.
        checked_at: UTC timestamp of the check.
    """

    component: str
    status: str
    message: str
    detail: dict[str, str] | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses.

        Returns:
            Dictionary with component, status, message, checked_at, and
            detail when present.
        """
        data: dict[str, Any] = {
            "component": self.component,
            "status": self.status,
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }
        if self.detail is not None:
            data["detail"] = self.detail
        return data


class SystemHealthChecker:
    """Check health of Ember's components.

    Each check returns a ``HealthCheck`` with status:
      - ``healthy``: Fully operational.
      - ``degraded``: Working from in-memory state only.
      - ``unavailable``: Not configured.

    Args:
        kv_store: The persistence backing gate and skip state.
        coordinator: The configured prompt coordinator, if any.
    """

    def __init__(
        self,
        kv_store: KeyValueStore | None = None,
        coordinator: Any = None,
    ) -> None:
        self.kv_store = kv_store
        self.coordinator = coordinator

    def check_storage(self) -> HealthCheck:
        """Round-trip a marker value through the key-value store.

        Returns:
            HealthCheck for the storage component.
        """
        if self.kv_store is None:
            return HealthCheck(
                component="storage",
                status="unavailable",
                message="storage is not configured.",
            )
        detail = None
        try:
            self.kv_store.set_bool(_HEALTH_KEY, True)
            ok = self.kv_store.get_bool(_HEALTH_KEY) is True
            self.kv_store.remove(_HEALTH_KEY)
        except PersistenceError as exc:
            logger.warning("Storage health check failed: %s", exc)
            ok = False
            detail = ErrorFormatter().format_storage_error(exc).to_dict()
        if not ok:
            return HealthCheck(
                component="storage",
                status="degraded",
                message="storage is failing; state is kept in memory only.",
                detail=detail,
            )
        return HealthCheck(
            component="storage",
            status="healthy",
            message="storage is operational.",
        )

    def check_coordinator(self) -> HealthCheck:
        """Check that a prompt coordinator is configured.

        Returns:
            HealthCheck for the coordinator component.
        """
        if self.coordinator is None:
            return HealthCheck(
                component="coordinator",
                status="unavailable",
                message="coordinator is not configured.",
            )
        return HealthCheck(
            component="coordinator",
            status="healthy",
            message="coordinator is operational.",
        )

    def full_check(self) -> list[HealthCheck]:
        """Run health checks for all components.

        Returns:
            List of HealthCheck results.
        """
        return [self.check_storage(), self.check_coordinator()]
