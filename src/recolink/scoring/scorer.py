"""Confidence scoring of candidate pairs.

The confidence of a pair is the weighted mean of its participating
signals plus the boosts of the matching rules that fire, clamped to
[0, 1]:

* exact signal (1.0 or 0.0) for each field in ``matching_fields``;
* string similarity for each field in ``fuzzy_fields``;
* the registry model's prediction when ML matching is enabled.

A field missing on either side does not participate. With non-negative
weights the result is monotonic in every signal.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from recolink.audit.logger import AuditLogger
from recolink.candidates.models import CandidatePair
from recolink.decision.models import ReasonCode
from recolink.decision.policy import classify
from recolink.errors import ModelLoadError, ModelNotFoundError
from recolink.models.jobs import FieldDifference, MatchStatus
from recolink.models.records import Record
from recolink.models.request import ReconciliationConfiguration
from recolink.registry.models import ScoringModel
from recolink.scoring.comparators import exact_agreement, string_similarity
from recolink.scoring.models import FieldComparison, MatchScore

if TYPE_CHECKING:
    from recolink.registry.model_registry import ModelRegistry

__all__ = ["MatchScorer", "resolve_model", "summarize", "STAGE_NAME"]

STAGE_NAME = "scoring"


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class MatchScorer:
    """Score candidate pairs for one configuration.

    Parameters
    ----------
    model : ScoringModel | None, optional
        Model contributing the ML signal; ``None`` scores on rules and
        field similarity only.

    Examples
    --------
    >>> scorer = MatchScorer()
    >>> config = ReconciliationConfiguration(matching_fields=("tax_id",))
    >>> left = Record("s1", {"name": "Acme Corp", "tax_id": "123"})
    >>> right = Record("t1", {"name": "Acme Corporation", "tax_id": "123"})
    >>> scorer.score_records(left, right, config).status
    <MatchStatus.FUZZY_MATCH: 'FUZZY_MATCH'>
    """

    def __init__(self, model: ScoringModel | None = None) -> None:
        self.model = model

    def score(self, pair: CandidatePair, config: ReconciliationConfiguration) -> MatchScore:
        """Score a candidate pair."""
        return self.score_records(pair.left, pair.right, config)

    def score_records(
        self,
        left: Record,
        right: Record,
        config: ReconciliationConfiguration,
    ) -> MatchScore:
        """Score two records directly.

        Parameters
        ----------
        left : Record
            Source record (or first record of a within-dataset pair).
        right : Record
            Target record.
        config : ReconciliationConfiguration
            Fields, weights, thresholds and rules to apply.

        Returns
        -------
        MatchScore
            Confidence, status and explanation.
        """
        comparisons: list[FieldComparison] = []
        matched: set[str] = set()
        differences: list[FieldDifference] = []

        for name in config.matching_fields:
            agree = exact_agreement(left.get(name), right.get(name))
            if agree is None:
                continue
            comparisons.append(
                FieldComparison(
                    field=name,
                    kind="exact",
                    similarity=1.0 if agree else 0.0,
                    weight=config.weight(name),
                )
            )
            if agree:
                matched.add(name)
            else:
                differences.append(FieldDifference(name, left.get(name), right.get(name)))

        for name in config.fuzzy_fields:
            if name in config.matching_fields:
                continue
            sim = string_similarity(left.get(name), right.get(name))
            if sim is None:
                continue
            comparisons.append(
                FieldComparison(field=name, kind="fuzzy", similarity=sim, weight=config.weight(name))
            )
            if sim >= 1.0:
                matched.add(name)
            else:
                differences.append(
                    FieldDifference(
                        name,
                        left.get(name),
                        right.get(name),
                        similarity=sim,
                        similar=sim >= config.fuzzy_match_threshold,
                    )
                )

        weighted = [(c.weight, c.similarity) for c in comparisons]

        model_score: float | None = None
        if self.model is not None and comparisons:
            features = {c.field: c.similarity for c in comparisons}
            model_score = round(self.model.predict(features), 6)
            weighted.append((config.model_weight, model_score))

        total_weight = sum(w for w, _ in weighted)
        base = sum(w * v for w, v in weighted) / total_weight if total_weight > 0 else 0.0

        hits = config.rule_set.evaluate_pair(left, right)
        confidence = round(_clamp(base + hits.boost), 6)

        forced = [ReasonCode.FORCED_REVIEW_EXCEPTION_RULE] if hits.exceptions else None
        status, reasons = classify(confidence, config.thresholds, forced)

        return MatchScore(
            confidence=confidence,
            status=status,
            matched_fields=frozenset(matched),
            differences=tuple(differences),
            comparisons=tuple(comparisons),
            model_score=model_score,
            model_version=self.model.version if model_score is not None and self.model else None,
            rule_boost=hits.boost,
            fired_rules=hits.matching + hits.exceptions,
            reasons=tuple(reasons),
        )


def summarize(scores: Iterable[MatchScore]) -> dict[str, Any]:
    """Counters per status plus the number of rule-forced reviews."""
    counters: dict[str, Any] = {str(s): 0 for s in MatchStatus if s != MatchStatus.REVIEWED}
    counters["forced_reviews"] = 0
    for score in scores:
        counters[str(score.status)] += 1
        if ReasonCode.FORCED_REVIEW_EXCEPTION_RULE in score.reasons:
            counters["forced_reviews"] += 1
    return counters


def resolve_model(
    config: ReconciliationConfiguration,
    registry: ModelRegistry | None,
    *,
    logger: AuditLogger | None = None,
    job_id: str | None = None,
) -> ScoringModel | None:
    """Return the model a job should score with.

    When ML matching is disabled, ``None``. When the model cannot be
    served, ``None`` as well, unless ``config.ml_required`` is set, in
    which case the registry error propagates.

    Raises
    ------
    ModelNotFoundError
        If the model is unknown and ML scoring is required.
    ModelLoadError
        If the model cannot be loaded and ML scoring is required.
    """
    if not config.enable_ml_matching:
        return None

    if registry is None:
        if config.ml_required:
            raise ModelLoadError(config.model_name, "no model registry configured")
        _log_degraded(logger, config.model_name, "no model registry configured", job_id)
        return None

    try:
        return registry.get_model(config.model_name)
    except (ModelNotFoundError, ModelLoadError) as e:
        if config.ml_required:
            raise
        _log_degraded(logger, config.model_name, str(e), job_id)
        return None


def _log_degraded(
    logger: AuditLogger | None, model_name: str, reason: str, job_id: str | None
) -> None:
    if logger:
        logger.event(
            "ml_scoring_degraded",
            data={"model_name": model_name, "reason": reason},
            level="WARN",
            stage=STAGE_NAME,
            job_id=job_id,
        )
