"""Threshold classification policy.

Maps a confidence score to exactly one pipeline status. The partition is
total: every score in [0, 1] falls in exactly one band.
"""

from recolink.decision.models import ReasonCode, Thresholds
from recolink.models.jobs import MatchStatus


def classify(
    confidence: float,
    thresholds: Thresholds,
    forced_reasons: list[ReasonCode] | None = None,
) -> tuple[MatchStatus, list[ReasonCode]]:
    """Classify a single confidence score.

    Parameters
    ----------
    confidence : float
        Aggregated confidence (0.0-1.0).
    thresholds : Thresholds
        Validated thresholds.
    forced_reasons : list[ReasonCode] | None, optional
        Reasons that force PENDING_REVIEW regardless of the score.

    Returns
    -------
    tuple[MatchStatus, list[ReasonCode]]
        Status and the reason codes explaining it.
    """
    if forced_reasons:
        return MatchStatus.PENDING_REVIEW, list(forced_reasons)

    if confidence >= thresholds.exact:
        return MatchStatus.EXACT_MATCH, [ReasonCode.ABOVE_EXACT]

    if confidence >= thresholds.fuzzy:
        return MatchStatus.FUZZY_MATCH, [ReasonCode.ABOVE_FUZZY]

    if confidence >= thresholds.partial:
        return MatchStatus.PARTIAL_MATCH, [ReasonCode.ABOVE_PARTIAL]

    if confidence >= thresholds.review_floor:
        return MatchStatus.PENDING_REVIEW, [ReasonCode.IN_REVIEW_BAND]

    return MatchStatus.NO_MATCH, [ReasonCode.BELOW_REVIEW_FLOOR]


# Statuses strong enough to link two records: they count a source record as
# matched and merge records into one duplicate cluster.
LINKING_STATUSES = frozenset({MatchStatus.EXACT_MATCH, MatchStatus.FUZZY_MATCH})


def is_linked(status: MatchStatus) -> bool:
    """Whether *status* links the two records of a pair."""
    return status in LINKING_STATUSES
