"""Authority calculation: stateless, deterministic.

Sub-score deltas are computed here from configuration and the immutable
facts they derive from (a ledger event, a review with its weight
snapshot). Persisting and auditing them is the service's job.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Final

from member_authority.config import ENDORSEMENT_DELTA_KEY, EngineSettings
from member_authority.shared.schemas.base import ActivityType, Dimension, ReviewType

SUB_SCORE_MIN: Final[int] = 0
SUB_SCORE_MAX: Final[int] = 100
MA_MIN: Final[int] = 0
MA_MAX: Final[int] = 1000

# Dimensions each review type feeds.
REVIEW_DIMENSIONS: Final[dict[ReviewType, tuple[Dimension, ...]]] = {
    ReviewType.STAR_RATING: (Dimension.EXPERTISE, Dimension.TRUST),
    ReviewType.DETAILED_REVIEW: (Dimension.EXPERTISE, Dimension.TRUST),
    ReviewType.THUMBS_UP: (Dimension.TRUST,),
    ReviewType.THUMBS_DOWN: (Dimension.TRUST,),
}

SELECTION_ACTIVITIES: Final[frozenset[str]] = frozenset(
    {ActivityType.REVIEWER_SELECTED.value, ActivityType.MENTOR_ASSIGNED.value}
)

Deltas = dict[str, int]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: Decimal | float) -> int:
    """Round to the nearest integer, halves away from zero.

    Positive and negative contributions of the same size round to the same
    magnitude, so an applied delta and its reversal cancel exactly.
    """
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def authority_weight(reviewer_ma: int, settings: EngineSettings) -> float:
    """Reviewer credibility snapshot, 1.0 at the reference MA."""
    raw = reviewer_ma / settings.weight_reference_ma
    weight = clamp(raw, settings.min_authority_weight, settings.max_authority_weight)
    return round(weight, 2)


def weighted_delta(base_delta: int, weight: float, sign: int) -> int:
    """round(base_delta * weight * sign)."""
    return round_half_up(Decimal(base_delta) * Decimal(str(weight)) * sign)


def review_deltas(
    review_type: str,
    weight: float,
    sentiment: int,
    settings: EngineSettings,
) -> Deltas:
    """Raw sub-score deltas a review applies to its reviewee."""
    kind = ReviewType(review_type)
    if sentiment == 0:
        return {}

    base = settings.base_deltas[kind.value]
    deltas: Deltas = {
        dim.value: weighted_delta(base, weight, sentiment) for dim in REVIEW_DIMENSIONS[kind]
    }

    if sentiment > 0 and weight >= settings.endorsement_weight_threshold:
        endorsement = weighted_delta(settings.base_deltas.get(ENDORSEMENT_DELTA_KEY, 0), weight, 1)
        deltas[Dimension.AUTHORITY.value] = deltas.get(Dimension.AUTHORITY.value, 0) + endorsement

    return {dim: delta for dim, delta in deltas.items() if delta != 0}


def event_deltas(activity_type: str, point_value: int, settings: EngineSettings) -> Deltas:
    """Raw sub-score deltas of a ledger event. Compensations negate them."""
    sign = -1 if point_value < 0 else 1
    if activity_type == ActivityType.TASK_COMPLETED.value:
        delta = settings.experience_delta_per_task
        return {Dimension.EXPERIENCE.value: sign * delta} if delta else {}
    if activity_type in SELECTION_ACTIVITIES:
        delta = settings.authority_delta_per_selection
        return {Dimension.AUTHORITY.value: sign * delta} if delta else {}
    return {}


def apply_deltas(values: dict[str, int], deltas: Deltas) -> tuple[dict[str, int], Deltas]:
    """Apply raw deltas with clamping.

    Returns:
        (new values, effective deltas actually applied)
    """
    new_values = dict(values)
    effective: Deltas = {}
    for dim, delta in deltas.items():
        old = new_values[dim]
        new = int(clamp(old + delta, SUB_SCORE_MIN, SUB_SCORE_MAX))
        new_values[dim] = new
        if new != old:
            effective[dim] = new - old
    return new_values, effective


def member_authority(values: dict[str, int], settings: EngineSettings) -> int:
    """Weighted composite of the four sub-scores, scaled to [0, 1000]."""
    total = sum(
        Decimal(str(settings.dimension_weights[dim])) * values[dim]
        for dim in settings.dimension_weights
    )
    return int(clamp(round_half_up(total * settings.member_authority_scale), MA_MIN, MA_MAX))


def decayed_value(value: int, settings: EngineSettings) -> int:
    """One decay step. Values at or below the floor are left alone."""
    if value <= settings.decay_floor:
        return value
    return max(math.floor(Decimal(value) * Decimal(str(settings.decay_rate))), settings.decay_floor)
