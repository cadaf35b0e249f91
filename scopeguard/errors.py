"""Exception taxonomy for the authorization engine.

Normal denials are results (``PermissionResult``, ``CompiledFilter``,
``ElementVisibility``), not exceptions. The classes here are for structural
failures, plus ``PermissionDenied`` for callers that prefer raising on denial.
"""

from __future__ import annotations

from collections.abc import Sequence

SECURITY_UNAVAILABLE = "Security evaluation unavailable"


class SecurityEvaluationError(Exception):
    """Base class for failures that prevent a security decision from being computed."""

    public_message = SECURITY_UNAVAILABLE


class IdentityNotFound(SecurityEvaluationError):
    """Raised when the user record is missing or inactive."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"user {user_id!r} not found or inactive")
        self.user_id = user_id


class StoreUnavailable(SecurityEvaluationError):
    """Raised when a rule store read fails or times out. Not retried here."""


class MalformedRuleError(SecurityEvaluationError):
    """Raised when stored rule data cannot be interpreted (e.g. unknown rule kind)."""


class CacheDegraded(SecurityEvaluationError):
    """Raised by cache stores when the backing store is unreachable."""


class PermissionDenied(Exception):
    """Raised by ``require``-style helpers. Carries a human-readable reason only."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class HierarchyValidationError(ValueError):
    """Raised when a manager assignment would create a cycle or exceed the maximum depth."""

    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    DEPTH_EXCEEDED = "DEPTH_EXCEEDED"

    def __init__(self, reason: str, message: str, path: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.reason = reason
        self.path = tuple(path)
