"""Grace period request lifecycle.

Request states: pending → approved | rejected | expired (all terminal)
"""

from member_authority.exceptions import AlreadyResolved
from member_authority.shared.schemas.base import GracePeriodStatus

VALID_TRANSITIONS: dict[str, list[tuple[str, str]]] = {
    GracePeriodStatus.PENDING.value: [
        (GracePeriodStatus.APPROVED.value, "approver_upheld_dispute"),
        (GracePeriodStatus.REJECTED.value, "approver_dismissed_dispute"),
        (GracePeriodStatus.EXPIRED.value, "no_decision_before_expiry"),
    ],
    GracePeriodStatus.APPROVED.value: [],  # terminal
    GracePeriodStatus.REJECTED.value: [],  # terminal
    GracePeriodStatus.EXPIRED.value: [],  # terminal
}


def is_terminal(status: str) -> bool:
    return not VALID_TRANSITIONS.get(status)


def can_transition(current: str, target: str) -> bool:
    """Check if a request state transition is valid."""
    transitions = VALID_TRANSITIONS.get(current, [])
    return any(t == target for t, _ in transitions)


def transition_reason(current: str, target: str) -> str:
    for t, reason in VALID_TRANSITIONS.get(current, []):
        if t == target:
            return reason
    return ""


def validate_transition(request_id: object, current: str, target: str) -> None:
    """Validate a request state transition, raising AlreadyResolved if invalid."""
    if not can_transition(current, target):
        raise AlreadyResolved(request_id, current)
