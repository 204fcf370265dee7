"""Job lifecycle state machine.

PENDING → RUNNING → {COMPLETED, FAILED, CANCELLED}; PENDING may also go
straight to CANCELLED or FAILED. Terminal statuses have no way out.
"""

from __future__ import annotations

from dataclasses import replace

from recolink.errors import InvalidStateError
from recolink.models.jobs import JobStatus, ReconciliationJob, utcnow

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Whether *current* → *target* is legal."""
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    job: ReconciliationJob,
    target: JobStatus,
    *,
    error_message: str | None = None,
) -> ReconciliationJob:
    """New snapshot of *job* in status *target*.

    Completing a job sets progress to 100; other transitions keep the
    committed counters untouched.

    Raises
    ------
    InvalidStateError
        If the transition is not allowed.
    """
    if not can_transition(job.status, target):
        raise InvalidStateError(f"Job {job.job_id}: illegal transition {job.status} -> {target}")

    progress = 100 if target == JobStatus.COMPLETED else job.progress
    return replace(
        job,
        status=target,
        progress=progress,
        error_message=error_message if error_message is not None else job.error_message,
        updated_at=utcnow(),
    )


def record_attempt(job: ReconciliationJob) -> ReconciliationJob:
    """Snapshot with one more consumed retry attempt; the status is unchanged."""
    return replace(job, attempts=job.attempts + 1, updated_at=utcnow())
