"""Data models for pairwise scoring."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from recolink.decision.models import ReasonCode
from recolink.models.jobs import FieldDifference, MatchStatus


@dataclass(frozen=True, slots=True)
class FieldComparison:
    """Comparison result for a single field.

    Attributes
    ----------
    field : str
        Field name.
    kind : str
        ``"exact"`` or ``"fuzzy"``.
    similarity : float
        Signal value (0.0-1.0); exact fields are 0.0 or 1.0.
    weight : float
        Weight of the signal in the aggregate.
    """

    field: str
    kind: str
    similarity: float
    weight: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class MatchScore:
    """Aggregated score of one candidate pair with explainability.

    Attributes
    ----------
    confidence : float
        Clamped weighted mean of the signals plus rule boosts (0.0-1.0).
    status : MatchStatus
        Classification of ``confidence``.
    matched_fields : frozenset[str]
        Compared fields whose normalized values agree exactly.
    differences : tuple[FieldDifference, ...]
        Compared fields that do not agree exactly.
    comparisons : tuple[FieldComparison, ...]
        Every participating field signal.
    model_score : float | None
        Model prediction, when a model participated.
    model_version : str | None
        Version of the participating model.
    rule_boost : float
        Sum of fired matching-rule boosts.
    fired_rules : tuple[str, ...]
        Names of fired matching and exception rules.
    reasons : tuple[ReasonCode, ...]
        Why ``status`` was chosen.
    """

    confidence: float
    status: MatchStatus
    matched_fields: frozenset[str] = frozenset()
    differences: tuple[FieldDifference, ...] = ()
    comparisons: tuple[FieldComparison, ...] = ()
    model_score: float | None = None
    model_version: str | None = None
    rule_boost: float = 0.0
    fired_rules: tuple[str, ...] = ()
    reasons: tuple[ReasonCode, ...] = field(default_factory=tuple)

    @property
    def signals(self) -> dict[str, float]:
        """Flat view of every signal, keyed ``kind:field`` plus ``model``."""
        data = {f"{c.kind}:{c.field}": c.similarity for c in self.comparisons}
        if self.model_score is not None:
            data["model"] = self.model_score
        return data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "confidence": self.confidence,
            "status": str(self.status),
            "matched_fields": sorted(self.matched_fields),
            "differences": [d.to_dict() for d in self.differences],
            "signals": self.signals,
            "model_version": self.model_version,
            "rule_boost": self.rule_boost,
            "fired_rules": list(self.fired_rules),
            "reasons": [str(r) for r in self.reasons],
        }
