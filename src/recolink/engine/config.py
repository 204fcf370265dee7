"""Engine configuration and job result dataclasses."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from recolink.candidates.generator import DEFAULT_MAX_BLOCK_SIZE
from recolink.dedup.models import EntityCluster
from recolink.models.jobs import JobStatus, ReconciliationJob


@dataclass(frozen=True)
class ResourceLimits:
    """Per-tenant resource limits.

    Attributes
    ----------
    max_concurrent_jobs : int
        Jobs a tenant may have PENDING or RUNNING at once.
    max_processing_time : float
        Seconds a job may run before it fails with a timeout.
    """

    max_concurrent_jobs: int = 4
    max_processing_time: float = 3600.0

    def __post_init__(self) -> None:
        """Validate bounds."""
        if self.max_concurrent_jobs < 1:
            raise ValueError(f"max_concurrent_jobs must be >= 1, got {self.max_concurrent_jobs}")
        if self.max_processing_time <= 0:
            raise ValueError(f"max_processing_time must be > 0, got {self.max_processing_time}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for transient collaborator failures.

    Attributes
    ----------
    max_attempts : int
        Total attempts, the first one included.
    initial_backoff : float
        Wait before the second attempt; doubles afterwards (0 disables waits).
    max_backoff : float
        Upper bound of a single wait.
    """

    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0

    def __post_init__(self) -> None:
        """Validate bounds."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("Backoff values must be >= 0")


@dataclass
class EngineConfig:
    """Configuration of the job orchestrator.

    Attributes
    ----------
    max_workers : int
        Jobs executed concurrently; further jobs wait PENDING.
    scoring_workers : int
        Threads scoring blocks inside one job.
    default_limits : ResourceLimits
        Limits of tenants without an override.
    tenant_limits : dict[str, ResourceLimits]
        Per-tenant overrides.
    retry : RetryPolicy
        Policy for transient failures.
    max_block_size : int
        Blocks larger than this are reported to the audit log.
    """

    max_workers: int = 4
    scoring_workers: int = 4
    default_limits: ResourceLimits = field(default_factory=ResourceLimits)
    tenant_limits: dict[str, ResourceLimits] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    max_block_size: int = DEFAULT_MAX_BLOCK_SIZE

    def __post_init__(self) -> None:
        """Validate pool sizes."""
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.scoring_workers < 1:
            raise ValueError(f"scoring_workers must be >= 1, got {self.scoring_workers}")

    def limits_for(self, tenant_id: str) -> ResourceLimits:
        """Limits applying to *tenant_id*."""
        return self.tenant_limits.get(tenant_id, self.default_limits)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class ReconciliationResult:
    """Outcome of one job.

    Attributes
    ----------
    job_id : str
        Job identifier.
    status : JobStatus
        Terminal status.
    total_records : int
        Valid source records.
    processed_records : int
        Source records whose pairs were scored.
    matched_records : int
        Processed source records with at least one EXACT_MATCH or
        FUZZY_MATCH pair (``recolink.decision.LINKING_STATUSES``). PARTIAL_MATCH
        and PENDING_REVIEW pairs do not count.
    invalid_records : dict[str, int]
        Records dropped by validation rules, per side.
    candidate_pairs : int
        Unique pairs scored.
    matches_by_status : dict[str, int]
        Persisted matches per status.
    clusters : list[EntityCluster]
        Source-side duplicate clusters with more than one member.
    model_version : str | None
        Version of the model used, ``None`` for rule/fuzzy-only scoring.
    duration_seconds : float
        Wall-clock time of the job.
    error_message : str | None
        Terminal error, if any.
    """

    job_id: str
    status: JobStatus
    total_records: int = 0
    processed_records: int = 0
    matched_records: int = 0
    invalid_records: dict[str, int] = field(default_factory=dict)
    candidate_pairs: int = 0
    matches_by_status: dict[str, int] = field(default_factory=dict)
    clusters: list[EntityCluster] = field(default_factory=list)
    model_version: str | None = None
    duration_seconds: float = 0.0
    error_message: str | None = None

    @property
    def success(self) -> bool:
        """Whether the job COMPLETED."""
        return self.status == JobStatus.COMPLETED

    @classmethod
    def from_job(
        cls, job: ReconciliationJob, duration_seconds: float = 0.0, **extra: Any
    ) -> ReconciliationResult:
        """Result carrying the counters of a job snapshot."""
        return cls(
            job_id=job.job_id,
            status=job.status,
            total_records=job.total_records,
            processed_records=job.processed_records,
            matched_records=job.matched_records,
            duration_seconds=duration_seconds,
            error_message=job.error_message,
            **extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "job_id": self.job_id,
            "status": str(self.status),
            "success": self.success,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "matched_records": self.matched_records,
            "invalid_records": dict(self.invalid_records),
            "candidate_pairs": self.candidate_pairs,
            "matches_by_status": dict(self.matches_by_status),
            "clusters": [c.to_dict() for c in self.clusters],
            "model_version": self.model_version,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
        }

