"""Declarative predicates used by reconciliation rules.

Two small vocabularies are supported, deliberately without a query
language:

Pair operators (MATCHING and EXCEPTION rules)
    ``fields_equal``   every listed field is present on both sides and equal
    ``fields_differ``  some listed field is present on both sides and differs
    ``both_present``   every listed field is present on both sides
    ``any_missing``    some listed field is missing on either side

Record operators (VALIDATION rules)
    ``present``  the field holds a non-empty value
    ``matches``  the field matches a regular expression
    ``in``       the normalized field value is one of a set of values

Values are compared after ``normalize_text``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from recolink.errors import ConfigurationError
from recolink.models.records import Record, normalize_text

__all__ = [
    "PAIR_OPERATORS",
    "RECORD_OPERATORS",
    "PairCondition",
    "RecordCondition",
]

PAIR_OPERATORS = ("fields_equal", "fields_differ", "both_present", "any_missing")
RECORD_OPERATORS = ("present", "matches", "in")


@dataclass(frozen=True)
class PairCondition:
    """Predicate over a (left, right) record pair.

    Attributes
    ----------
    op : str
        One of ``PAIR_OPERATORS``.
    fields : tuple[str, ...]
        Fields the operator inspects.
    """

    op: str
    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        """Validate operator and field list."""
        if self.op not in PAIR_OPERATORS:
            raise ConfigurationError(
                f"Unknown pair operator {self.op!r}. Valid: {', '.join(PAIR_OPERATORS)}"
            )
        if not self.fields:
            raise ConfigurationError(f"Pair operator {self.op!r} needs at least one field")

    def __call__(self, left: Record, right: Record) -> bool:
        """Evaluate the predicate on a pair."""
        present = [left.has(f) and right.has(f) for f in self.fields]

        if self.op == "both_present":
            return all(present)
        if self.op == "any_missing":
            return not all(present)

        equal = [
            p and normalize_text(left.get(f)) == normalize_text(right.get(f))
            for f, p in zip(self.fields, present, strict=True)
        ]
        if self.op == "fields_equal":
            return all(equal)
        # fields_differ
        return any(p and not e for p, e in zip(present, equal, strict=True))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"op": self.op, "fields": list(self.fields)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PairCondition:
        """Build from ``{"op": ..., "fields": [...]}``."""
        return cls(op=str(data["op"]), fields=tuple(data.get("fields", ())))


@dataclass(frozen=True)
class RecordCondition:
    """Predicate over a single record.

    Attributes
    ----------
    op : str
        One of ``RECORD_OPERATORS``.
    field : str
        Inspected field.
    pattern : str | None
        Regular expression for ``matches`` (searched in the raw value).
    values : frozenset[str]
        Accepted normalized values for ``in``.
    """

    op: str
    field: str
    pattern: str | None = None
    values: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        """Validate operator arguments and compile the pattern."""
        if self.op not in RECORD_OPERATORS:
            raise ConfigurationError(
                f"Unknown record operator {self.op!r}. Valid: {', '.join(RECORD_OPERATORS)}"
            )
        if self.op == "matches":
            if not self.pattern:
                raise ConfigurationError("Operator 'matches' needs a pattern")
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ConfigurationError(f"Invalid pattern {self.pattern!r}: {e}") from e
        if self.op == "in" and not self.values:
            raise ConfigurationError("Operator 'in' needs at least one value")

    def __call__(self, record: Record) -> bool:
        """Evaluate the predicate on a record."""
        if not record.has(self.field):
            return False
        if self.op == "present":
            return True
        if self.op == "matches":
            return re.search(self.pattern or "", str(record.get(self.field))) is not None
        return normalize_text(record.get(self.field)) in {normalize_text(v) for v in self.values}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {"op": self.op, "field": self.field}
        if self.pattern is not None:
            data["pattern"] = self.pattern
        if self.values:
            data["values"] = sorted(self.values)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RecordCondition:
        """Build from ``{"op": ..., "field": ..., "pattern"?: ..., "values"?: [...]}``."""
        return cls(
            op=str(data["op"]),
            field=str(data["field"]),
            pattern=data.get("pattern"),
            values=frozenset(str(v) for v in data.get("values", ())),
        )
