"""Data models for match classification.

This module defines the ordered thresholds that partition the confidence
range and the reason codes attached to each classification.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from recolink.errors import ConfigurationError

__all__ = ["ReasonCode", "Thresholds"]


class ReasonCode(StrEnum):
    """Reason codes for classification outcomes.

    Attributes
    ----------
    ABOVE_EXACT : str
        confidence >= exact.
    ABOVE_FUZZY : str
        fuzzy <= confidence < exact.
    ABOVE_PARTIAL : str
        partial <= confidence < fuzzy.
    IN_REVIEW_BAND : str
        review_floor <= confidence < partial.
    BELOW_REVIEW_FLOOR : str
        confidence < review_floor.
    FORCED_REVIEW_EXCEPTION_RULE : str
        An active exception rule matched the pair.
    """

    ABOVE_EXACT = "above_exact"
    ABOVE_FUZZY = "above_fuzzy"
    ABOVE_PARTIAL = "above_partial"
    IN_REVIEW_BAND = "in_review_band"
    BELOW_REVIEW_FLOOR = "below_review_floor"
    FORCED_REVIEW_EXCEPTION_RULE = "forced_review_exception_rule"


@dataclass(frozen=True)
class Thresholds:
    """Ordered classification thresholds.

    Attributes
    ----------
    exact : float
        Lower bound of EXACT_MATCH.
    fuzzy : float
        Lower bound of FUZZY_MATCH.
    partial : float
        Lower bound of PARTIAL_MATCH.
    review_floor : float
        Lower bound of the PENDING_REVIEW band; below it is NO_MATCH.

    Notes
    -----
    Construction does not validate; ``validate()`` is called once at job
    start so that a bad configuration is rejected before any scoring.
    """

    exact: float = 0.95
    fuzzy: float = 0.80
    partial: float = 0.60
    review_floor: float = 0.40

    def validate(self) -> None:
        """Check range and ordering.

        Raises
        ------
        ConfigurationError
            If any threshold is outside [0, 1] or the order
            ``exact >= fuzzy >= partial >= review_floor`` is violated.
        """
        for name, value in self.to_dict().items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"Threshold {name} must be in [0, 1], got {value}")

        if not self.exact >= self.fuzzy >= self.partial >= self.review_floor:
            raise ConfigurationError(
                "Thresholds must satisfy exact >= fuzzy >= partial >= review_floor, got "
                f"exact={self.exact}, fuzzy={self.fuzzy}, partial={self.partial}, "
                f"review_floor={self.review_floor}"
            )

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Thresholds:
        """Build from a mapping, keeping defaults for absent keys."""
        known = {k: float(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
