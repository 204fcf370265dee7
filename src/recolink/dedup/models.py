"""Data models for entity deduplication."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from recolink.candidates.factory import BlockerConfig
from recolink.errors import ValidationError
from recolink.models.records import EntityRecord
from recolink.models.request import ReconciliationConfiguration

__all__ = [
    "DeduplicationConfig",
    "EntityCluster",
    "compute_cluster_id",
]


def _default_scoring() -> ReconciliationConfiguration:
    return ReconciliationConfiguration(
        fuzzy_fields=("name",),
        blocking_keys=(
            BlockerConfig(type="name_token", params={"field": "name"}),
            BlockerConfig(type="field_exact", params={"field": "id"}),
        ),
    )


@dataclass(frozen=True)
class DeduplicationConfig:
    """Configuration of the deduplication engine.

    Attributes
    ----------
    max_candidates : int
        Cap on candidates retrieved from the search index per entity.
    min_model_score : float
        Candidates whose model score falls below this are dropped (only
        when a model is available).
    name_fields : tuple[str, ...]
        Index fields searched with the entity's names.
    alias_field : str
        Record field holding alternative names.
    scoring : ReconciliationConfiguration
        Fields, blockers, thresholds and rules used to compare entities.
    """

    max_candidates: int = 20
    min_model_score: float = 0.5
    name_fields: tuple[str, ...] = ("name", "aliases")
    alias_field: str = "aliases"
    scoring: ReconciliationConfiguration = field(default_factory=_default_scoring)

    def __post_init__(self) -> None:
        """Validate bounds."""
        if self.max_candidates < 1:
            raise ValueError(f"max_candidates must be >= 1, got {self.max_candidates}")
        if not 0.0 <= self.min_model_score <= 1.0:
            raise ValueError(f"min_model_score must be in [0, 1], got {self.min_model_score}")


def compute_cluster_id(identifiers: Sequence[str]) -> str:
    """Deterministic cluster id from member identifiers (order-independent)."""
    digest = hashlib.sha256("\n".join(sorted(identifiers)).encode("utf-8")).hexdigest()
    return f"c:{digest[:16]}"


@dataclass(frozen=True)
class EntityCluster:
    """Entities representing the same real-world subject.

    Attributes
    ----------
    cluster_id : str
        Deterministic id derived from member identifiers.
    members : tuple[EntityRecord, ...]
        Golden record first, then the others by identifier.
    """

    cluster_id: str
    members: tuple[EntityRecord, ...]

    def __post_init__(self) -> None:
        """Enforce one golden record and unique identifiers."""
        if not self.members:
            raise ValidationError("A cluster needs at least one member")
        golden = [m for m in self.members if m.is_golden_record]
        if len(golden) != 1:
            raise ValidationError(
                f"Cluster {self.cluster_id} must have exactly one golden record, found {len(golden)}"
            )
        identifiers = [m.primary_identifier for m in self.members]
        if len(set(identifiers)) != len(identifiers):
            raise ValidationError(f"Cluster {self.cluster_id} repeats an identifier")

    @property
    def golden(self) -> EntityRecord:
        """The authoritative member."""
        return next(m for m in self.members if m.is_golden_record)

    @property
    def identifiers(self) -> list[str]:
        """Member identifiers in member order."""
        return [m.primary_identifier for m in self.members]

    def __len__(self) -> int:
        return len(self.members)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "cluster_id": self.cluster_id,
            "golden": self.golden.primary_identifier,
            "size": len(self.members),
            "members": [m.to_dict() for m in self.members],
        }
