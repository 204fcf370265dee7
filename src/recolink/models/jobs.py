"""Job and match records owned by the reconciliation pipeline.

Both types are frozen: the orchestrator and the review workflow produce
new snapshots with ``dataclasses.replace`` and hand them to the store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

__all__ = [
    "JobStatus",
    "JobType",
    "MatchStatus",
    "TERMINAL_STATUSES",
    "FieldDifference",
    "ReconciliationJob",
    "ReconciliationMatch",
    "MatchFilter",
    "Page",
]

T = TypeVar("T")


class JobStatus(StrEnum):
    """Lifecycle status of a reconciliation job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Whether no further pipeline mutation can happen."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobType(StrEnum):
    """Kind of reconciliation requested."""

    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"
    DELTA = "DELTA"
    REAL_TIME = "REAL_TIME"


class MatchStatus(StrEnum):
    """Outcome of scoring a candidate pair.

    Attributes
    ----------
    EXACT_MATCH : str
        confidence >= exact threshold.
    FUZZY_MATCH : str
        confidence >= fuzzy threshold.
    PARTIAL_MATCH : str
        confidence >= partial threshold.
    NO_MATCH : str
        confidence below the review floor.
    PENDING_REVIEW : str
        Ambiguous band, or forced by an exception rule.
    REVIEWED : str
        Set only by the review workflow.
    """

    EXACT_MATCH = "EXACT_MATCH"
    FUZZY_MATCH = "FUZZY_MATCH"
    PARTIAL_MATCH = "PARTIAL_MATCH"
    NO_MATCH = "NO_MATCH"
    PENDING_REVIEW = "PENDING_REVIEW"
    REVIEWED = "REVIEWED"


def utcnow() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class FieldDifference:
    """A compared field on which source and target do not agree exactly.

    Attributes
    ----------
    field : str
        Field name.
    source_value : Any
        Raw source value.
    target_value : Any
        Raw target value.
    similarity : float | None
        Normalized similarity for fuzzy fields, ``None`` for exact fields.
    similar : bool
        Whether the similarity reached the fuzzy match threshold.
    """

    field: str
    source_value: Any
    target_value: Any
    similarity: float | None = None
    similar: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class ReconciliationJob:
    """Snapshot of a reconciliation job.

    Attributes
    ----------
    job_id : str
        Unique job identifier.
    request_id : str
        Idempotency key of the originating request.
    tenant_id : str
        Owning tenant.
    environment : str
        Environment the datasets were drawn from.
    job_type : JobType
        Kind of reconciliation.
    status : JobStatus
        Lifecycle status.
    progress : int
        Percentage (0-100), never decreasing.
    total_records : int
        Source records to reconcile.
    processed_records : int
        Source records whose candidate pairs have been scored.
    matched_records : int
        Processed source records with at least one linking (EXACT or FUZZY) pair.
    attempts : int
        Retry attempts consumed by transient failures.
    error_message : str | None
        Terminal error, if any.
    created_at : datetime
        Creation time.
    updated_at : datetime
        Last update time.
    """

    job_id: str
    request_id: str
    tenant_id: str
    environment: str
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    total_records: int = 0
    processed_records: int = 0
    matched_records: int = 0
    attempts: int = 0
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        """Validate counter invariants."""
        if not 0 <= self.progress <= 100:
            raise ValueError(f"progress must be in [0, 100], got {self.progress}")
        if self.processed_records > self.total_records:
            raise ValueError(
                f"processed_records ({self.processed_records}) exceeds "
                f"total_records ({self.total_records})"
            )
        if self.matched_records > self.processed_records:
            raise ValueError(
                f"matched_records ({self.matched_records}) exceeds "
                f"processed_records ({self.processed_records})"
            )

    def with_counters(
        self,
        *,
        progress: int | None = None,
        total_records: int | None = None,
        processed_records: int | None = None,
        matched_records: int | None = None,
    ) -> ReconciliationJob:
        """Return a copy with updated counters; progress never moves backwards."""
        return replace(
            self,
            progress=max(self.progress, progress if progress is not None else self.progress),
            total_records=total_records if total_records is not None else self.total_records,
            processed_records=max(
                self.processed_records,
                processed_records if processed_records is not None else 0,
            ),
            matched_records=max(
                self.matched_records,
                matched_records if matched_records is not None else 0,
            ),
            updated_at=utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["job_type"] = str(self.job_type)
        data["status"] = str(self.status)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class ReconciliationMatch:
    """Result of scoring one candidate pair.

    ``confidence_score`` is fixed by the pipeline; the review workflow only
    touches the status, the human fields and ``version``.
    """

    match_id: str
    job_id: str
    tenant_id: str
    source_ref: str
    target_ref: str
    match_status: MatchStatus
    confidence_score: float
    matched_fields: frozenset[str] = frozenset()
    differences: tuple[FieldDifference, ...] = ()
    human_confidence: float | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_comments: str | None = None
    version: int = 0

    def __post_init__(self) -> None:
        """Validate score ranges."""
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(f"confidence_score must be in [0, 1], got {self.confidence_score}")
        if self.human_confidence is not None and not 0.0 <= self.human_confidence <= 1.0:
            raise ValueError(f"human_confidence must be in [0, 1], got {self.human_confidence}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "match_id": self.match_id,
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            "source_ref": self.source_ref,
            "target_ref": self.target_ref,
            "match_status": str(self.match_status),
            "confidence_score": self.confidence_score,
            "matched_fields": sorted(self.matched_fields),
            "differences": [d.to_dict() for d in self.differences],
            "human_confidence": self.human_confidence,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_comments": self.review_comments,
            "version": self.version,
        }


@dataclass(frozen=True)
class MatchFilter:
    """Filter for listing matches."""

    status: MatchStatus | None = None
    min_confidence: float = 0.0

    def accepts(self, match: ReconciliationMatch) -> bool:
        """Whether *match* passes the filter."""
        if self.status is not None and match.match_status != self.status:
            return False
        return match.confidence_score >= self.min_confidence


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a listing.

    Attributes
    ----------
    content : list[T]
        Items on this page.
    page : int
        Zero-based page number.
    size : int
        Requested page size.
    total_elements : int
        Items across all pages.
    partial : bool
        True when the owning job has not COMPLETED; the content is
        in-progress or leftover output, never a final result.
    """

    content: list[T]
    page: int
    size: int
    total_elements: int
    partial: bool = False

    @property
    def total_pages(self) -> int:
        """Number of pages for the current size."""
        if self.size <= 0:
            return 0
        return (self.total_elements + self.size - 1) // self.size
