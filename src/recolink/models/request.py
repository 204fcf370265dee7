"""Reconciliation request and per-job matching configuration.

Requests reach the core already authenticated and schema-checked; the
configuration is validated once more, semantically, when the job starts.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from recolink.candidates.factory import BlockerConfig, create_blockers
from recolink.decision.models import Thresholds
from recolink.errors import ConfigurationError, ValidationError
from recolink.models.jobs import JobType
from recolink.rules import ReconciliationRule, RuleSet, rules_from_dicts

__all__ = [
    "DEFAULT_BLOCKING_KEYS",
    "ReconciliationConfiguration",
    "ReconciliationRequest",
]

DEFAULT_BLOCKING_KEYS = (BlockerConfig(type="name_token", params={"field": "name"}),)


@dataclass(frozen=True)
class ReconciliationConfiguration:
    """How a job matches, scores and classifies records.

    Attributes
    ----------
    fuzzy_match_threshold : float
        Similarity at which a differing fuzzy field counts as similar.
    enable_ml_matching : bool
        Add the registry model's prediction as a signal.
    ml_required : bool
        Fail the job instead of degrading when the model is unavailable.
    model_name : str
        Registry name of the scoring model.
    matching_fields : tuple[str, ...]
        Fields compared for exact equality.
    fuzzy_fields : tuple[str, ...]
        Fields compared by string similarity.
    field_weights : Mapping[str, float]
        Per-field signal weight (default 1.0).
    model_weight : float
        Weight of the model signal.
    blocking_keys : tuple[BlockerConfig, ...]
        Blockers used for candidate generation.
    thresholds : Thresholds
        Classification thresholds.
    rules : tuple[ReconciliationRule, ...]
        Matching, exception, validation and transformation rules.
    """

    fuzzy_match_threshold: float = 0.85
    enable_ml_matching: bool = False
    ml_required: bool = False
    model_name: str = "scoring-v1"
    matching_fields: tuple[str, ...] = ()
    fuzzy_fields: tuple[str, ...] = ("name",)
    field_weights: Mapping[str, float] = field(default_factory=dict)
    model_weight: float = 1.0
    blocking_keys: tuple[BlockerConfig, ...] = DEFAULT_BLOCKING_KEYS
    thresholds: Thresholds = field(default_factory=Thresholds)
    rules: tuple[ReconciliationRule, ...] = ()

    def validate(self) -> None:
        """Semantic validation performed at job start.

        Raises
        ------
        ConfigurationError
            On inconsistent thresholds, negative weights, blockers the
            factory rejects, or a configuration that compares no field at all.
        """
        self.thresholds.validate()

        if not 0.0 <= self.fuzzy_match_threshold <= 1.0:
            raise ConfigurationError(
                f"fuzzy_match_threshold must be in [0, 1], got {self.fuzzy_match_threshold}"
            )
        if self.model_weight < 0:
            raise ConfigurationError(f"model_weight must be >= 0, got {self.model_weight}")
        for name, weight in self.field_weights.items():
            if weight < 0:
                raise ConfigurationError(f"Weight of field {name!r} must be >= 0, got {weight}")

        if not self.matching_fields and not self.fuzzy_fields:
            raise ConfigurationError("At least one matching or fuzzy field is required")
        if not any(b.enabled for b in self.blocking_keys):
            raise ConfigurationError("At least one enabled blocking key is required")
        create_blockers(list(self.blocking_keys))

    def weight(self, field_name: str) -> float:
        """Signal weight of *field_name*."""
        return float(self.field_weights.get(field_name, 1.0))

    @cached_property
    def rule_set(self) -> RuleSet:
        """Active rules in evaluation order."""
        return RuleSet(self.rules)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "fuzzy_match_threshold": self.fuzzy_match_threshold,
            "enable_ml_matching": self.enable_ml_matching,
            "ml_required": self.ml_required,
            "model_name": self.model_name,
            "matching_fields": list(self.matching_fields),
            "fuzzy_fields": list(self.fuzzy_fields),
            "field_weights": dict(self.field_weights),
            "model_weight": self.model_weight,
            "blocking_keys": [
                {"type": b.type, "enabled": b.enabled, "params": dict(b.params)}
                for b in self.blocking_keys
            ],
            "thresholds": self.thresholds.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReconciliationConfiguration:
        """Build from the JSON form used by requests.

        Raises
        ------
        ConfigurationError
            If a blocker or rule entry cannot be built.
        """
        kwargs: dict[str, Any] = {}
        for key in ("fuzzy_match_threshold", "model_weight"):
            if key in data:
                kwargs[key] = float(data[key])
        for key in ("enable_ml_matching", "ml_required"):
            if key in data:
                kwargs[key] = bool(data[key])
        if "model_name" in data:
            kwargs["model_name"] = str(data["model_name"])
        for key in ("matching_fields", "fuzzy_fields"):
            if key in data:
                kwargs[key] = tuple(str(f) for f in data[key])
        if "field_weights" in data:
            kwargs["field_weights"] = {str(k): float(v) for k, v in data["field_weights"].items()}
        if "blocking_keys" in data:
            try:
                kwargs["blocking_keys"] = tuple(BlockerConfig.parse(b) for b in data["blocking_keys"])
            except KeyError as e:
                raise ConfigurationError(f"Blocking key entry is missing {e}") from e
        if "thresholds" in data:
            kwargs["thresholds"] = Thresholds.from_dict(data["thresholds"])
        if "rules" in data:
            kwargs["rules"] = tuple(rules_from_dicts(list(data["rules"])))
        return cls(**kwargs)


@dataclass(frozen=True)
class ReconciliationRequest:
    """A validated request to reconcile two datasets.

    Attributes
    ----------
    request_id : str
        Idempotency key.
    tenant_id : str
        Requesting tenant.
    environment : str
        Environment both datasets are read from.
    job_type : JobType
        Kind of reconciliation.
    source_dataset : str
        Name of the source dataset.
    target_dataset : str
        Name of the target dataset.
    configuration : ReconciliationConfiguration
        Matching configuration.
    """

    request_id: str
    tenant_id: str
    environment: str
    source_dataset: str
    target_dataset: str
    job_type: JobType = JobType.FULL
    configuration: ReconciliationConfiguration = field(
        default_factory=ReconciliationConfiguration
    )

    def __post_init__(self) -> None:
        """Reject empty identifiers."""
        for name in ("request_id", "tenant_id", "environment", "source_dataset", "target_dataset"):
            if not getattr(self, name):
                raise ValidationError(f"{name} must not be empty")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "request_id": self.request_id,
            "tenant_id": self.tenant_id,
            "environment": self.environment,
            "job_type": str(self.job_type),
            "source_dataset": self.source_dataset,
            "target_dataset": self.target_dataset,
            "configuration": self.configuration.to_dict(),
        }
