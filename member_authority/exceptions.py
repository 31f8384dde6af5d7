"""Engine exceptions.

Provides a typed exception hierarchy so collaborators can tell apart
rejections (validation), missing entities, terminal-state errors,
transient conflicts that are worth retrying, and idempotent no-ops.
"""

from typing import Any


class MemberAuthorityError(Exception):
    """Base exception for all engine errors."""

    error_type: str = "member_authority_error"
    http_status_hint: int = 500
    is_retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# ===========================================
# VALIDATION
# ===========================================


class ValidationError(MemberAuthorityError):
    """Raised when input is rejected before anything is written."""

    error_type = "validation_error"
    http_status_hint = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors

        super().__init__(message, details)
        self.field = field
        self.errors = errors or []


class InvalidActivityType(ValidationError):
    """Raised when an activity type is not in the configured point table."""

    error_type = "invalid_activity_type"

    def __init__(self, activity_type: str, known: list[str] | None = None) -> None:
        super().__init__(
            f"Unknown activity type '{activity_type}'",
            field="activity_type",
            errors=[f"must be one of: {sorted(known)}"] if known else None,
        )
        self.activity_type = activity_type


class InvalidPayload(ValidationError):
    """Raised when an activity or review payload does not match its variant."""

    error_type = "invalid_payload"


class InvalidRating(ValidationError):
    """Raised when a review rating is missing, unexpected or out of range."""

    error_type = "invalid_rating"

    def __init__(self, message: str, rating: int | None = None) -> None:
        super().__init__(message, field="rating")
        self.rating = rating


# ===========================================
# NOT FOUND
# ===========================================


class EntityNotFoundError(MemberAuthorityError):
    """Raised when a referenced entity does not exist."""

    error_type = "not_found"
    http_status_hint = 404

    def __init__(self, entity_type: str, entity_id: str | None = None) -> None:
        details = {"entity_type": entity_type}
        message = f"{entity_type} not found"
        if entity_id:
            details["entity_id"] = entity_id
            message = f"{entity_type} with id '{entity_id}' not found"

        super().__init__(message, details)
        self.entity_type = entity_type
        self.entity_id = entity_id


class ActivityEventNotFound(EntityNotFoundError):
    def __init__(self, event_id: int) -> None:
        super().__init__("ActivityEvent", str(event_id))


class ReviewNotFound(EntityNotFoundError):
    def __init__(self, review_id: Any) -> None:
        super().__init__("PeerReview", str(review_id))


class GracePeriodRequestNotFound(EntityNotFoundError):
    def __init__(self, request_id: Any) -> None:
        super().__init__("GracePeriodRequest", str(request_id))


# ===========================================
# STATE
# ===========================================


class StateError(MemberAuthorityError):
    """Raised when the action is no longer possible. Never retried."""

    error_type = "state_error"
    http_status_hint = 409


class DuplicateEvent(StateError):
    """Raised when an at-most-once activity was already recorded."""

    error_type = "duplicate_event"

    def __init__(
        self,
        user_id: str,
        activity_type: str,
        related_entity_id: str | None,
    ) -> None:
        super().__init__(
            f"Activity '{activity_type}' already recorded for user '{user_id}'",
            {
                "user_id": user_id,
                "activity_type": activity_type,
                "related_entity_id": related_entity_id,
            },
        )
        self.user_id = user_id
        self.activity_type = activity_type
        self.related_entity_id = related_entity_id


class ReviewAlreadyFinalized(StateError):
    """Raised when disputing a review that can no longer be disputed."""

    error_type = "review_already_finalized"

    def __init__(self, review_id: Any) -> None:
        super().__init__(
            f"Review '{review_id}' is finalized and can no longer be disputed",
            {"review_id": str(review_id)},
        )


class DuplicateRequest(StateError):
    """Raised when a pending grace period request already exists for a review."""

    error_type = "duplicate_request"

    def __init__(self, review_id: Any) -> None:
        super().__init__(
            f"A pending grace period request already exists for review '{review_id}'",
            {"review_id": str(review_id)},
        )


class AlreadyResolved(StateError):
    """Raised when resolving a grace period request that is not pending."""

    error_type = "already_resolved"

    def __init__(self, request_id: Any, status: str) -> None:
        super().__init__(
            f"Grace period request '{request_id}' is already {status}",
            {"request_id": str(request_id), "status": status},
        )
        self.status = status


# ===========================================
# CONCURRENCY / CONSISTENCY
# ===========================================


class ConcurrencyConflict(MemberAuthorityError):
    """Raised when a per-user update lost a race. Retried automatically."""

    error_type = "concurrency_conflict"
    http_status_hint = 503
    is_retryable = True

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if user_id:
            details["user_id"] = user_id
        if original_error:
            details["error_type"] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class ConsistencyViolation(MemberAuthorityError):
    """Raised when a write would break a uniqueness invariant.

    The desired state already holds, so callers treat this as success.
    """

    error_type = "consistency_violation"
    http_status_hint = 200


__all__ = [
    "MemberAuthorityError",
    "ValidationError",
    "InvalidActivityType",
    "InvalidPayload",
    "InvalidRating",
    "EntityNotFoundError",
    "ActivityEventNotFound",
    "ReviewNotFound",
    "GracePeriodRequestNotFound",
    "StateError",
    "DuplicateEvent",
    "ReviewAlreadyFinalized",
    "DuplicateRequest",
    "AlreadyResolved",
    "ConcurrencyConflict",
    "ConsistencyViolation",
]
