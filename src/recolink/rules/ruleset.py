"""Priority-ordered rule evaluation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from recolink.models.records import Record
from recolink.rules.models import (
    ExceptionRule,
    MatchingRule,
    ReconciliationRule,
    TransformationRule,
    ValidationRule,
)

__all__ = ["RuleSet", "RuleHits"]


@dataclass(frozen=True)
class RuleHits:
    """Rules that fired on one pair.

    Attributes
    ----------
    boost : float
        Sum of the boosts of the matching rules that fired.
    matching : tuple[str, ...]
        Names of fired matching rules, in evaluation order.
    exceptions : tuple[str, ...]
        Names of fired exception rules, in evaluation order.
    """

    boost: float = 0.0
    matching: tuple[str, ...] = ()
    exceptions: tuple[str, ...] = ()


class RuleSet:
    """Active rules sorted by descending priority.

    Ties keep the order in which the rules were given. Inactive rules are
    dropped at construction and never evaluated.
    """

    def __init__(self, rules: Iterable[ReconciliationRule] = ()) -> None:
        active = [r for r in rules if r.is_active]
        self.rules: tuple[ReconciliationRule, ...] = tuple(
            sorted(active, key=lambda r: -r.priority)
        )
        self.matching = tuple(r for r in self.rules if isinstance(r, MatchingRule))
        self.exceptions = tuple(r for r in self.rules if isinstance(r, ExceptionRule))
        self.validations = tuple(r for r in self.rules if isinstance(r, ValidationRule))
        self.transformations = tuple(r for r in self.rules if isinstance(r, TransformationRule))

    def __len__(self) -> int:
        return len(self.rules)

    def evaluate_pair(self, left: Record, right: Record) -> RuleHits:
        """Evaluate matching and exception rules on a pair."""
        fired = [r for r in self.matching if r.applies(left, right)]
        excepted = [r.name for r in self.exceptions if r.applies(left, right)]
        return RuleHits(
            boost=sum(r.boost for r in fired),
            matching=tuple(r.name for r in fired),
            exceptions=tuple(excepted),
        )

    def transform(self, record: Record) -> Record:
        """Apply every transformation rule in priority order."""
        for rule in self.transformations:
            record = rule.apply(record)
        return record

    def failed_validations(self, record: Record) -> list[str]:
        """Names of the validation rules *record* fails."""
        return [r.name for r in self.validations if not r.passes(record)]

    def passes_all(self, left: Record, right: Record) -> bool:
        """Whether *right* passes every validation rule and no exception fires on the pair."""
        if self.failed_validations(right):
            return False
        return not any(r.applies(left, right) for r in self.exceptions)
