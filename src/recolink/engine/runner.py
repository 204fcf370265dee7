"""Phase pipeline executed for one reconciliation job.

Architecture Flow:
    Phase 1: ingest    load source and target, apply transformation and
                       validation rules                        (progress 25)
    Phase 2: match     candidate generation and block-parallel scoring,
                       matches persisted block by block        (progress 60)
    Phase 3: dedup     cluster duplicates inside the source    (progress 85)
    Phase 4: finalize  assemble the result                     (progress 100)

Cancellation and the processing deadline are checked before the first
phase and after every phase. Calls to collaborators go through
``call_with_retry``; counters already committed are never reset.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from recolink.audit.helpers import generate_id
from recolink.audit.logger import AuditLogger
from recolink.candidates import CandidateBlock, CandidateGenerator, create_blockers
from recolink.decision import is_linked
from recolink.dedup import DeduplicationConfig, DeduplicationEngine, EntityCluster
from recolink.engine.config import EngineConfig, ReconciliationResult, ResourceLimits
from recolink.engine.job_state import record_attempt
from recolink.engine.retry import call_with_retry
from recolink.errors import JobCancelledError, ProcessingTimeoutError
from recolink.models.jobs import ReconciliationJob, ReconciliationMatch
from recolink.models.records import Record
from recolink.models.request import ReconciliationConfiguration, ReconciliationRequest
from recolink.rules import RuleSet
from recolink.scoring import MatchScore, MatchScorer, resolve_model, summarize

if TYPE_CHECKING:
    from recolink.ports import DataIngestor, JobStore, MatchStore
    from recolink.registry.model_registry import ModelRegistry

T = TypeVar("T")

PHASE_PROGRESS = {"ingest": 25, "match": 60, "dedup": 85, "finalize": 100}


@dataclass
class _JobState:
    """Mutable working state of a run, owned by the job's worker thread."""

    source: list[Record] = field(default_factory=list)
    target: list[Record] = field(default_factory=list)
    invalid_records: dict[str, int] = field(default_factory=dict)
    candidate_pairs: int = 0
    matches_by_status: Counter[str] = field(default_factory=Counter)
    clusters: list[EntityCluster] = field(default_factory=list)
    model_version: str | None = None


def prepare_records(records: list[Record], rules: RuleSet) -> tuple[list[Record], int]:
    """Apply transformation rules, then drop records failing validation rules.

    Returns
    -------
    tuple[list[Record], int]
        Valid records in input order and the number dropped.
    """
    valid: list[Record] = []
    dropped = 0
    for record in records:
        transformed = rules.transform(record)
        if rules.failed_validations(transformed):
            dropped += 1
            continue
        valid.append(transformed)
    return valid, dropped


class JobRun:
    """Execute the phases of one job.

    Parameters
    ----------
    job_id : str
        Job being executed; its snapshot is read from ``job_store``.
    request : ReconciliationRequest
        Originating request.
    ingestor, job_store, match_store
        Collaborators.
    registry : ModelRegistry | None
        Model source for ML scoring.
    config : EngineConfig
        Engine settings (retry policy, scoring pool size).
    limits : ResourceLimits
        Limits of the requesting tenant.
    cancel_event : threading.Event
        Set to request cooperative cancellation.
    logger : AuditLogger | None
        Audit logger.
    clock : Callable[[], float]
        Monotonic clock.
    """

    def __init__(
        self,
        job_id: str,
        request: ReconciliationRequest,
        *,
        ingestor: DataIngestor,
        job_store: JobStore,
        match_store: MatchStore,
        registry: ModelRegistry | None,
        config: EngineConfig,
        limits: ResourceLimits,
        cancel_event: threading.Event,
        logger: AuditLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_id = job_id
        self.request = request
        self.ingestor = ingestor
        self.job_store = job_store
        self.match_store = match_store
        self.registry = registry
        self.config = config
        self.cancel_event = cancel_event
        self.logger = logger
        self.clock = clock
        self.started = clock()
        self.deadline = self.started + limits.max_processing_time
        self.max_processing_time = limits.max_processing_time
        self.state = _JobState()

    @property
    def configuration(self) -> ReconciliationConfiguration:
        return self.request.configuration

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> _JobState:
        """Run every phase; raises on cancellation, timeout or failure."""
        self.checkpoint()
        for name, phase in (
            ("ingest", self._ingest),
            ("match", self._match),
            ("dedup", self._dedup),
        ):
            start = time.perf_counter()
            if self.logger:
                self.logger.stage_started(name, job_id=self.job_id)
            counters = phase()
            self.commit(progress=PHASE_PROGRESS[name])
            if self.logger:
                self.logger.stage_finished(
                    stage=name,
                    duration_seconds=time.perf_counter() - start,
                    counters=counters,
                    job_id=self.job_id,
                )
            self.checkpoint()
        return self.state

    def result(self, job: ReconciliationJob) -> ReconciliationResult:
        """Assemble the result for a terminal snapshot of the job."""
        return ReconciliationResult.from_job(
            job,
            duration_seconds=self.clock() - self.started,
            invalid_records=dict(self.state.invalid_records),
            candidate_pairs=self.state.candidate_pairs,
            matches_by_status=dict(self.state.matches_by_status),
            clusters=[c for c in self.state.clusters if len(c) > 1],
            model_version=self.state.model_version,
        )

    # ------------------------------------------------------------------
    # Phase boundaries and persistence
    # ------------------------------------------------------------------

    def checkpoint(self) -> None:
        """Observe cancellation and the deadline.

        Raises
        ------
        JobCancelledError
            If cancellation was requested.
        ProcessingTimeoutError
            If the job ran past its maximum processing time.
        """
        if self.cancel_event.is_set():
            raise JobCancelledError(f"Job {self.job_id} was cancelled")
        if self.clock() > self.deadline:
            raise ProcessingTimeoutError(
                f"Job {self.job_id} exceeded max processing time of {self.max_processing_time}s"
            )

    def retry(self, phase: str, fn: Callable[[], T]) -> T:
        """Call a collaborator with the engine retry policy and the job deadline."""

        def on_retry(attempt: int, error: BaseException) -> None:
            job = record_attempt(self.job_store.get_job(self.job_id))
            self.job_store.update_job(job)
            if self.logger:
                self.logger.event(
                    "phase_retry",
                    data={"attempt": attempt, "error": str(error), "attempts_total": job.attempts},
                    level="WARN",
                    stage=phase,
                    job_id=self.job_id,
                )

        return call_with_retry(
            fn,
            self.config.retry,
            deadline=self.deadline,
            on_retry=on_retry,
            clock=self.clock,
        )

    def commit(self, **counters: int) -> ReconciliationJob:
        """Persist counter updates; values never move backwards."""

        def write() -> ReconciliationJob:
            job = self.job_store.get_job(self.job_id).with_counters(**counters)
            self.job_store.update_job(job)
            return job

        return self.retry("commit", write)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _ingest(self) -> dict[str, int]:
        request = self.request
        rules = self.configuration.rule_set

        def load(dataset: str) -> Callable[[], list[Record]]:
            return lambda: self.ingestor.load(
                dataset,
                tenant_id=request.tenant_id,
                environment=request.environment,
                job_type=request.job_type,
            )

        raw_source = self.retry("ingest", load(request.source_dataset))
        raw_target = self.retry("ingest", load(request.target_dataset))

        self.state.source, dropped_source = prepare_records(raw_source, rules)
        self.state.target, dropped_target = prepare_records(raw_target, rules)
        self.state.invalid_records = {"source": dropped_source, "target": dropped_target}

        self.commit(total_records=len(self.state.source))
        return {
            "source_records": len(raw_source),
            "target_records": len(raw_target),
            "source_invalid": dropped_source,
            "target_invalid": dropped_target,
        }

    def _match(self) -> dict[str, int]:
        config = self.configuration
        model = resolve_model(config, self.registry, logger=self.logger, job_id=self.job_id)
        self.state.model_version = model.version if model else None
        scorer = MatchScorer(model)

        generator = CandidateGenerator(
            create_blockers(list(config.blocking_keys)),
            logger=self.logger,
            max_block_size=self.config.max_block_size,
        )
        blocks = list(generator.iter_blocks(self.state.source, self.state.target))

        # Blocks each source record still waits for; at zero it is processed.
        pending: Counter[str] = Counter()
        for block in blocks:
            pending.update({pair.left.rid for pair in block.pairs})

        processed = 0
        matched = 0
        linked: set[str] = set()
        scores: list[MatchScore] = []

        def score_block(block: CandidateBlock) -> list[tuple[str, str, MatchScore]]:
            return [(p.left.rid, p.right.rid, scorer.score(p, config)) for p in block.pairs]

        with ThreadPoolExecutor(
            max_workers=self.config.scoring_workers,
            thread_name_prefix=f"recolink-score-{self.job_id}",
        ) as pool:
            futures = [pool.submit(score_block, block) for block in blocks]
            for future in futures:
                scored = future.result()
                matches = [self._to_match(left, right, score) for left, right, score in scored]
                self.retry("match", lambda m=matches: self.match_store.add_matches(m))

                self.state.candidate_pairs += len(scored)
                for left, _right, score in scored:
                    scores.append(score)
                    self.state.matches_by_status[str(score.status)] += 1
                    if is_linked(score.status):
                        linked.add(left)

                for left in {left for left, _right, _score in scored}:
                    pending[left] -= 1
                    if pending[left] == 0:
                        processed += 1
                        if left in linked:
                            matched += 1

                self.commit(processed_records=processed, matched_records=matched)

        # Source records that shared no key with any target record
        processed = len(self.state.source)
        self.commit(processed_records=processed, matched_records=matched)
        if self.logger:
            self.logger.artifact_written(
                "matches", stage="match", record_count=len(scores), job_id=self.job_id
            )

        return {
            "blocks": len(blocks),
            "pairs_scored": self.state.candidate_pairs,
            "records_matched": matched,
            **{k.lower(): v for k, v in summarize(scores).items()},
        }

    def _dedup(self) -> dict[str, int]:
        engine = DeduplicationEngine(
            config=DeduplicationConfig(scoring=self.configuration),
            registry=self.registry,
            logger=self.logger,
        )
        self.state.clusters = engine.deduplicate(self.state.source, job_id=self.job_id)
        duplicates = [c for c in self.state.clusters if len(c) > 1]
        return {
            "clusters": len(self.state.clusters),
            "duplicate_clusters": len(duplicates),
            "duplicate_records": sum(len(c) - 1 for c in duplicates),
        }

    def _to_match(self, source_ref: str, target_ref: str, score: MatchScore) -> ReconciliationMatch:
        return ReconciliationMatch(
            match_id=generate_id("match"),
            job_id=self.job_id,
            tenant_id=self.request.tenant_id,
            source_ref=source_ref,
            target_ref=target_ref,
            match_status=score.status,
            confidence_score=score.confidence,
            matched_fields=score.matched_fields,
            differences=score.differences,
        )


def describe(request: ReconciliationRequest) -> dict[str, Any]:
    """Parameters logged with ``job_started``."""
    return {
        "request_id": request.request_id,
        "tenant_id": request.tenant_id,
        "environment": request.environment,
        "job_type": str(request.job_type),
        "source_dataset": request.source_dataset,
        "target_dataset": request.target_dataset,
        "configuration": request.configuration.to_dict(),
    }
