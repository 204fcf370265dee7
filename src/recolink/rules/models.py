"""Reconciliation rule variants.

All rules share ``name``, ``priority`` and ``is_active``; the subclass
determines the ``rule_type`` and what the rule does when it applies.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

from recolink.errors import ConfigurationError
from recolink.models.records import Record
from recolink.rules.conditions import PairCondition, RecordCondition

__all__ = [
    "RuleType",
    "ReconciliationRule",
    "MatchingRule",
    "ExceptionRule",
    "ValidationRule",
    "TransformationRule",
    "TRANSFORMS",
]


class RuleType(StrEnum):
    """Kind of reconciliation rule."""

    MATCHING = "MATCHING"
    VALIDATION = "VALIDATION"
    TRANSFORMATION = "TRANSFORMATION"
    EXCEPTION = "EXCEPTION"


def _digits_only(value: str) -> str:
    return "".join(ch for ch in value if ch.isdigit())


# name → str transform
TRANSFORMS: dict[str, Callable[[str], str]] = {
    "lower": str.lower,
    "upper": str.upper,
    "strip": str.strip,
    "digits_only": _digits_only,
    "collapse_whitespace": lambda v: " ".join(v.split()),
}


@dataclass(frozen=True)
class ReconciliationRule:
    """Common rule attributes.

    Attributes
    ----------
    name : str
        Rule name, reported in audit events and match explanations.
    priority : int
        Higher priority rules are evaluated first.
    is_active : bool
        Inactive rules never participate.
    """

    rule_type: ClassVar[RuleType]

    name: str
    priority: int = 0
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": str(self.rule_type),
            "name": self.name,
            "priority": self.priority,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class MatchingRule(ReconciliationRule):
    """Adds ``boost`` to the confidence of pairs satisfying ``condition``.

    In deduplication a matching rule also force-includes a candidate.
    """

    rule_type: ClassVar[RuleType] = RuleType.MATCHING

    condition: PairCondition | None = None
    boost: float = 0.0

    def __post_init__(self) -> None:
        if self.condition is None:
            raise ConfigurationError(f"Matching rule {self.name!r} needs a condition")
        if not -1.0 <= self.boost <= 1.0:
            raise ConfigurationError(f"Boost of rule {self.name!r} must be in [-1, 1]")

    def applies(self, left: Record, right: Record) -> bool:
        """Whether the rule's predicate holds for the pair."""
        return self.condition is not None and self.condition(left, right)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["condition"] = self.condition.to_dict() if self.condition else None
        data["boost"] = self.boost
        return data


@dataclass(frozen=True)
class ExceptionRule(ReconciliationRule):
    """Forces PENDING_REVIEW on matching pairs; excludes dedup candidates."""

    rule_type: ClassVar[RuleType] = RuleType.EXCEPTION

    condition: PairCondition | None = None

    def __post_init__(self) -> None:
        if self.condition is None:
            raise ConfigurationError(f"Exception rule {self.name!r} needs a condition")

    def applies(self, left: Record, right: Record) -> bool:
        """Whether the rule's predicate holds for the pair."""
        return self.condition is not None and self.condition(left, right)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["condition"] = self.condition.to_dict() if self.condition else None
        return data


@dataclass(frozen=True)
class ValidationRule(ReconciliationRule):
    """Records failing ``condition`` are dropped at ingestion."""

    rule_type: ClassVar[RuleType] = RuleType.VALIDATION

    condition: RecordCondition | None = None

    def __post_init__(self) -> None:
        if self.condition is None:
            raise ConfigurationError(f"Validation rule {self.name!r} needs a condition")

    def passes(self, record: Record) -> bool:
        """Whether *record* satisfies the rule."""
        return self.condition is not None and self.condition(record)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["condition"] = self.condition.to_dict() if self.condition else None
        return data


@dataclass(frozen=True)
class TransformationRule(ReconciliationRule):
    """Rewrites one field of every ingested record.

    Attributes
    ----------
    field : str
        Field to rewrite; records without it are left unchanged.
    transform : str
        Key in ``TRANSFORMS``.
    """

    rule_type: ClassVar[RuleType] = RuleType.TRANSFORMATION

    field: str = ""
    transform: str = "strip"

    def __post_init__(self) -> None:
        if not self.field:
            raise ConfigurationError(f"Transformation rule {self.name!r} needs a field")
        if self.transform not in TRANSFORMS:
            valid = ", ".join(sorted(TRANSFORMS))
            raise ConfigurationError(
                f"Unknown transform {self.transform!r} in rule {self.name!r}. Valid: {valid}"
            )

    def apply(self, record: Record) -> Record:
        """Return *record* with the field rewritten."""
        value = record.get(self.field)
        if value is None:
            return record
        return record.with_fields(**{self.field: TRANSFORMS[self.transform](str(value))})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["transform"] = self.transform
        return data
