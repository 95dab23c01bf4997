"""Entitlement and billing exceptions.

Only storage-touching operations raise at runtime; tier resolution and limit
lookups are total. ``UnknownFeatureError`` is a programming error.
"""

from typing import Any


class EntitlementError(Exception):
    """Base exception for entitlement and subscription errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(EntitlementError):
    """Referenced user (or the user linked to a subscription) does not exist."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} {identifier} not found",
            {"resource": resource, "id": str(identifier)},
        )


class InvariantViolation(EntitlementError):
    """A write would break the subscription facts consistency rule."""

    def __init__(self, violations: list[str]):
        super().__init__(
            "Subscription fields are inconsistent: " + "; ".join(violations),
            {"violations": list(violations)},
        )
        self.violations = list(violations)


class DuplicateEventError(EntitlementError):
    """Event id was already processed. Treated as success by the webhook route."""

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} already processed", {"event_id": event_id})
        self.event_id = event_id


class StorageError(EntitlementError):
    """Transient storage failure. Callers may retry; nothing retries internally."""

    def __init__(self, operation: str, original_error: Exception | None = None):
        super().__init__(f"Storage failure during {operation}", {"operation": operation})
        self.original_error = original_error


class UnknownFeatureError(EntitlementError, LookupError):
    """Gate asked about a feature key it does not know."""

    def __init__(self, feature: Any):
        super().__init__(f"Unknown feature: {feature!r}", {"feature": str(feature)})
