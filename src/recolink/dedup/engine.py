"""Entity deduplication engine.

Two entry points:

``find_duplicates``
    Look up existing entities that represent the same subject as one
    incoming entity, through a search index.
``deduplicate``
    Cluster a whole dataset: candidate pairs from the blocking generator
    are scored, EXACT and FUZZY pairs are union-found into clusters, and
    each cluster receives exactly one golden record.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from recolink.adapters.memory import InMemorySearchIndex
from recolink.audit.logger import AuditLogger
from recolink.candidates import CandidateGenerator, create_blockers
from recolink.decision.policy import is_linked
from recolink.dedup.models import DeduplicationConfig, EntityCluster
from recolink.dedup.survivor import build_cluster, merge_into, ranking_key
from recolink.dedup.union_find import UnionFind
from recolink.errors import InvalidStateError, ValidationError
from recolink.models.records import EntityRecord, Record
from recolink.rules import ExceptionRule, MatchingRule, ReconciliationRule
from recolink.scoring import MatchScorer, resolve_model

if TYPE_CHECKING:
    from recolink.ports import SearchIndex
    from recolink.registry.model_registry import ModelRegistry

__all__ = ["DeduplicationEngine", "STAGE_NAME"]

STAGE_NAME = "deduplication"


class DeduplicationEngine:
    """Detect and cluster duplicate entities.

    Parameters
    ----------
    index : SearchIndex | None, optional
        Index searched by ``find_duplicates`` when no corpus is given.
    config : DeduplicationConfig | None, optional
        Engine configuration; defaults apply when omitted.
    registry : ModelRegistry | None, optional
        Source of the scoring model when ``config.scoring`` enables ML.
    logger : AuditLogger | None, optional
        Audit logger for observability events.
    """

    def __init__(
        self,
        index: SearchIndex | None = None,
        *,
        config: DeduplicationConfig | None = None,
        registry: ModelRegistry | None = None,
        logger: AuditLogger | None = None,
    ) -> None:
        self.index = index
        self.config = config or DeduplicationConfig()
        self.registry = registry
        self.logger = logger

    # ------------------------------------------------------------------
    # Lookup against an index
    # ------------------------------------------------------------------

    def find_duplicates(
        self,
        entity: EntityRecord,
        corpus: Sequence[EntityRecord] | None = None,
    ) -> list[EntityRecord]:
        """Existing entities that duplicate *entity*.

        Parameters
        ----------
        entity : EntityRecord
            Incoming entity.
        corpus : Sequence[EntityRecord] | None, optional
            Search this collection instead of the configured index.

        Returns
        -------
        list[EntityRecord]
            Duplicates with ``confidence`` set to their score against
            *entity*, unique by identifier, golden first, then highest
            confidence, then earliest creation time.

        Raises
        ------
        InvalidStateError
            If neither an index nor a corpus is available.
        """
        index = InMemorySearchIndex(corpus) if corpus is not None else self.index
        if index is None:
            raise InvalidStateError("find_duplicates needs a search index or a corpus")

        cfg = self.config
        scoring = cfg.scoring
        model = resolve_model(scoring, self.registry, logger=self.logger)
        scorer = MatchScorer(model)
        rules = scoring.rule_set
        probe = entity.as_record()

        retrieved = self._retrieve(index, entity)

        stats = {"retrieved": len(retrieved), "below_model_score": 0, "excluded": 0, "forced": 0}
        kept: list[EntityRecord] = []
        for candidate in retrieved:
            score = scorer.score_records(probe, candidate.as_record(), scoring)

            verdict = _rule_verdict(rules.rules, probe, candidate.as_record())
            if verdict is False:
                stats["excluded"] += 1
                continue
            if verdict is None and score.model_score is not None:
                if score.model_score < cfg.min_model_score:
                    stats["below_model_score"] += 1
                    continue
            if verdict is True:
                stats["forced"] += 1

            kept.append(_with_confidence(candidate, score.confidence))

        kept.sort(key=_duplicate_order)

        if self.logger:
            self.logger.event(
                "duplicates_found",
                data={
                    "entity": entity.primary_identifier,
                    "duplicates": len(kept),
                    "model_version": model.version if model else None,
                    **stats,
                },
                stage=STAGE_NAME,
            )
        return kept

    def _retrieve(self, index: SearchIndex, entity: EntityRecord) -> list[EntityRecord]:
        """Identifier hit first, then fuzzy hits per name; unique, capped."""
        cap = self.config.max_candidates
        found: dict[str, EntityRecord] = {}

        exact = index.find_by_identifier(entity.primary_identifier)
        if exact is not None:
            found[exact.primary_identifier] = exact

        for name in entity.names():
            if len(found) >= cap:
                break
            if not name:
                continue
            for hit in index.fuzzy_search(name, list(self.config.name_fields), cap):
                found.setdefault(hit.primary_identifier, hit)

        return list(found.values())[:cap]

    # ------------------------------------------------------------------
    # Whole-dataset clustering
    # ------------------------------------------------------------------

    def deduplicate(
        self,
        records: Iterable[Record | EntityRecord],
        config: DeduplicationConfig | None = None,
        *,
        job_id: str | None = None,
    ) -> list[EntityCluster]:
        """Cluster duplicates inside one dataset.

        Parameters
        ----------
        records : Iterable[Record | EntityRecord]
            Dataset to deduplicate; identifiers must be unique.
        config : DeduplicationConfig | None, optional
            Overrides the engine configuration for this pass.
        job_id : str | None, optional
            Job the pass belongs to, for audit events.

        Returns
        -------
        list[EntityCluster]
            Every input entity in exactly one cluster, singletons included,
            ordered by golden identifier.

        Raises
        ------
        ValidationError
            If an identifier repeats.
        """
        cfg = config or self.config
        scoring = cfg.scoring
        start = time.perf_counter()
        if self.logger:
            self.logger.stage_started(STAGE_NAME, job_id=job_id)

        entities = self._entities(records, cfg)
        as_records = [e.as_record() for e in entities.values()]

        model = resolve_model(scoring, self.registry, logger=self.logger, job_id=job_id)
        scorer = MatchScorer(model)
        generator = CandidateGenerator(create_blockers(list(scoring.blocking_keys)))

        uf = UnionFind(entities)
        best: dict[str, float] = {}
        pairs_scored = 0
        pairs_linked = 0
        for pair in generator.generate(as_records):
            score = scorer.score(pair, scoring)
            pairs_scored += 1
            if not is_linked(score.status):
                continue
            pairs_linked += 1
            uf.union(pair.left.rid, pair.right.rid)
            for rid in (pair.left.rid, pair.right.rid):
                best[rid] = max(best.get(rid, 0.0), score.confidence)

        clusters: list[EntityCluster] = []
        for component in uf.components():
            members = [
                _with_confidence(entities[rid], best[rid]) if rid in best else entities[rid]
                for rid in component
            ]
            clusters.append(build_cluster(members))
        clusters.sort(key=lambda c: c.golden.primary_identifier)

        if self.logger:
            self.logger.stage_finished(
                stage=STAGE_NAME,
                duration_seconds=time.perf_counter() - start,
                counters={
                    "records_in": len(entities),
                    "pairs_scored": pairs_scored,
                    "pairs_linked": pairs_linked,
                    "clusters": len(clusters),
                    "clusters_gt1": sum(1 for c in clusters if len(c) > 1),
                },
                job_id=job_id,
            )
        return clusters

    def merge_cluster(self, cluster: EntityCluster, candidate: EntityRecord) -> list[EntityRecord]:
        """Add *candidate* to *cluster*; golden transfers only to a strictly better candidate.

        See ``recolink.dedup.survivor.merge_into``.
        """
        members = merge_into(cluster, candidate, self.config.scoring.rule_set)
        if self.logger:
            self.logger.event(
                "cluster_merged",
                data={
                    "cluster_id": cluster.cluster_id,
                    "candidate": candidate.primary_identifier,
                    "golden_before": cluster.golden.primary_identifier,
                    "golden_after": members[0].primary_identifier,
                },
                stage=STAGE_NAME,
            )
        return members

    @staticmethod
    def _entities(
        records: Iterable[Record | EntityRecord], cfg: DeduplicationConfig
    ) -> dict[str, EntityRecord]:
        entities: dict[str, EntityRecord] = {}
        for item in records:
            entity = (
                item
                if isinstance(item, EntityRecord)
                else EntityRecord.from_record(item, alias_field=cfg.alias_field)
            )
            if entity.primary_identifier in entities:
                raise ValidationError(f"Duplicate identifier {entity.primary_identifier!r}")
            entities[entity.primary_identifier] = entity
        return entities


def _rule_verdict(rules: Sequence[ReconciliationRule], left: Record, right: Record) -> bool | None:
    """First applicable rule in priority order: False excludes, True forces inclusion."""
    for rule in rules:
        if isinstance(rule, ExceptionRule) and rule.applies(left, right):
            return False
        if isinstance(rule, MatchingRule) and rule.applies(left, right):
            return True
    return None


def _with_confidence(entity: EntityRecord, confidence: float) -> EntityRecord:
    return replace(entity, confidence=confidence)


def _duplicate_order(entity: EntityRecord) -> tuple[Any, ...]:
    golden_first, neg_confidence, _, created, identifier = ranking_key(entity)
    return (golden_first, neg_confidence, created, identifier)
