"""Job orchestration: one cancellable, retryable job per request.

Jobs run on a bounded thread pool. ``start`` is idempotent per request id
while the request's job is not terminal; resource limits are enforced
before a job is created.
"""

from __future__ import annotations

import threading
import time
import traceback
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

from recolink.audit.helpers import generate_id
from recolink.audit.logger import AuditLogger
from recolink.engine.config import EngineConfig, ReconciliationResult, ResourceLimits
from recolink.engine.job_state import transition
from recolink.engine.retry import call_with_retry
from recolink.engine.runner import JobRun, describe
from recolink.errors import (
    InvalidStateError,
    JobCancelledError,
    ReconciliationError,
    RecolinkError,
    ResourceExhaustedError,
    ValidationError,
)
from recolink.models.jobs import (
    JobStatus,
    MatchFilter,
    Page,
    ReconciliationJob,
    ReconciliationMatch,
)
from recolink.models.request import ReconciliationRequest

if TYPE_CHECKING:
    from recolink.ports import DataIngestor, JobStore, MatchStore
    from recolink.registry.model_registry import ModelRegistry

__all__ = ["JobHandle", "JobOrchestrator"]

MAX_PAGE_SIZE = 1000


class JobHandle:
    """Caller-side handle of a submitted job.

    Attributes
    ----------
    job_id : str
        Job identifier.
    request_id : str
        Idempotency key the job was started for.
    """

    def __init__(
        self,
        job_id: str,
        request_id: str,
        future: Future[ReconciliationResult] | None,
        orchestrator: JobOrchestrator,
    ) -> None:
        self.job_id = job_id
        self.request_id = request_id
        self._future = future
        self._orchestrator = orchestrator

    def __repr__(self) -> str:
        return f"JobHandle(job_id={self.job_id!r}, request_id={self.request_id!r})"

    def done(self) -> bool:
        """Whether the job reached a terminal status."""
        if self._future is None:
            return self.status().status.is_terminal
        return self._future.done()

    def result(self, timeout: float | None = None) -> ReconciliationResult:
        """Wait for the job and return its result.

        Failed and cancelled jobs also return a result; inspect ``status``.

        Raises
        ------
        InvalidStateError
            If the job is not executed by this orchestrator.
        TimeoutError
            If *timeout* elapses first.
        """
        if self._future is None:
            raise InvalidStateError(f"Job {self.job_id} is not executed by this orchestrator")
        try:
            return self._future.result(timeout)
        except CancelledError:
            return self._orchestrator.result_of(self.job_id)

    def status(self) -> ReconciliationJob:
        """Current job snapshot."""
        return self._orchestrator.get_status(self.job_id)

    def cancel(self) -> bool:
        """Request cancellation of the job."""
        return self._orchestrator.cancel(self.job_id)


class JobOrchestrator:
    """Run reconciliation jobs.

    Parameters
    ----------
    ingestor : DataIngestor
        Loads datasets.
    job_store : JobStore
        Job persistence.
    match_store : MatchStore
        Match persistence.
    registry : ModelRegistry | None, optional
        Scoring model source; ``None`` disables ML scoring.
    config : EngineConfig | None, optional
        Pool sizes, limits and retry policy.
    logger : AuditLogger | None, optional
        Audit logger shared by every job.
    clock : Callable[[], float], optional
        Monotonic clock used for deadlines.
    """

    def __init__(
        self,
        ingestor: DataIngestor,
        job_store: JobStore,
        match_store: MatchStore,
        *,
        registry: ModelRegistry | None = None,
        config: EngineConfig | None = None,
        logger: AuditLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ingestor = ingestor
        self.job_store = job_store
        self.match_store = match_store
        self.registry = registry
        self.config = config or EngineConfig()
        self.logger = logger
        self.clock = clock

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="recolink-job"
        )
        self._lock = threading.Lock()
        self._handles: dict[str, JobHandle] = {}
        self._cancel_events: dict[str, threading.Event] = {}
        self._active_by_tenant: dict[str, set[str]] = defaultdict(set)
        self._results: dict[str, ReconciliationResult] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def start(self, request: ReconciliationRequest) -> JobHandle:
        """Submit *request*, or return the handle of its running job.

        Raises
        ------
        ConfigurationError
            If the request's configuration is inconsistent.
        ResourceExhaustedError
            If the tenant already runs its maximum of concurrent jobs.
        InvalidStateError
            If the orchestrator was shut down.
        """
        with self._lock:
            if self._closed:
                raise InvalidStateError("Orchestrator is shut down")

            existing = self.job_store.find_by_request_id(request.tenant_id, request.request_id)
            if existing is not None and not existing.status.is_terminal:
                handle = self._handles.get(existing.job_id)
                if handle is None:
                    handle = JobHandle(existing.job_id, request.request_id, None, self)
                if self.logger:
                    self.logger.event(
                        "duplicate_request",
                        data={"request_id": request.request_id, "status": str(existing.status)},
                        job_id=existing.job_id,
                    )
                return handle

            request.configuration.validate()

            limits = self.config.limits_for(request.tenant_id)
            active = self._active_by_tenant[request.tenant_id]
            if len(active) >= limits.max_concurrent_jobs:
                raise ResourceExhaustedError(
                    f"Tenant {request.tenant_id!r} already runs {len(active)} jobs "
                    f"(max_concurrent_jobs={limits.max_concurrent_jobs})",
                    tenant_id=request.tenant_id,
                )

            job = ReconciliationJob(
                job_id=generate_id("job"),
                request_id=request.request_id,
                tenant_id=request.tenant_id,
                environment=request.environment,
                job_type=request.job_type,
            )
            call_with_retry(lambda: self.job_store.create_job(job), self.config.retry)

            cancel_event = threading.Event()
            self._cancel_events[job.job_id] = cancel_event
            active.add(job.job_id)

            future = self._executor.submit(self._execute, job.job_id, request, cancel_event, limits)
            handle = JobHandle(job.job_id, request.request_id, future, self)
            self._handles[job.job_id] = handle

        if self.logger:
            self.logger.job_started(job.job_id, describe(request))
        return handle

    def cancel(self, job_id: str, tenant_id: str | None = None) -> bool:
        """Request cooperative cancellation.

        A job still waiting for a worker is cancelled at once; a running job
        stops at its next phase boundary. With *tenant_id*, only a job of that
        tenant can be cancelled.

        Returns
        -------
        bool
            False if the job is already terminal.

        Raises
        ------
        JobNotFoundError
            If the job is unknown (to *tenant_id*).
        """
        job = self.job_store.get_job(job_id, tenant_id=tenant_id)
        if job.status.is_terminal:
            return False

        with self._lock:
            event = self._cancel_events.get(job_id)
            handle = self._handles.get(job_id)
        if event is None or handle is None:
            raise InvalidStateError(f"Job {job_id} is not executed by this orchestrator")

        event.set()
        if handle._future is not None and handle._future.cancel():
            self._finish_unstarted(job_id)
        if self.logger:
            self.logger.event("job_cancel_requested", job_id=job_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, job_id: str, tenant_id: str | None = None) -> ReconciliationJob:
        """Current snapshot; raises ``JobNotFoundError`` when unknown to *tenant_id*."""
        return self.job_store.get_job(job_id, tenant_id=tenant_id)

    def get_handle(self, job_id: str) -> JobHandle:
        """Handle of a job started by this orchestrator."""
        with self._lock:
            handle = self._handles.get(job_id)
        if handle is None:
            raise InvalidStateError(f"Job {job_id} is not executed by this orchestrator")
        return handle

    def get_matches(
        self,
        job_id: str,
        match_filter: MatchFilter | None = None,
        page: int = 0,
        size: int = 50,
        tenant_id: str | None = None,
    ) -> Page[ReconciliationMatch]:
        """One page of a job's matches.

        The page is ``partial`` unless the job COMPLETED: matches of running
        jobs are in progress and matches of failed jobs are leftovers. With
        *tenant_id*, the job must belong to that tenant.

        Raises
        ------
        ValidationError
            If *page* is negative or *size* outside [1, MAX_PAGE_SIZE].
        JobNotFoundError
            If the job is unknown (to *tenant_id*).
        """
        if page < 0:
            raise ValidationError(f"page must be >= 0, got {page}")
        if not 1 <= size <= MAX_PAGE_SIZE:
            raise ValidationError(f"size must be in [1, {MAX_PAGE_SIZE}], got {size}")

        job = self.job_store.get_job(job_id, tenant_id=tenant_id)
        items, total = self.match_store.list_matches(
            job_id, match_filter or MatchFilter(), page * size, size
        )
        return Page(
            content=items,
            page=page,
            size=size,
            total_elements=total,
            partial=job.status != JobStatus.COMPLETED,
        )

    def result_of(self, job_id: str) -> ReconciliationResult:
        """Result of a finished job executed by this orchestrator."""
        with self._lock:
            result = self._results.get(job_id)
        if result is None:
            raise InvalidStateError(f"Job {job_id} has no result yet")
        return result

    def active_jobs(self, tenant_id: str) -> int:
        """Jobs of *tenant_id* currently PENDING or RUNNING here."""
        with self._lock:
            return len(self._active_by_tenant.get(tenant_id, ()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True, *, cancel_jobs: bool = False) -> None:
        """Stop accepting jobs and tear down the worker pool.

        Parameters
        ----------
        wait : bool, optional
            Block until running jobs finish.
        cancel_jobs : bool, optional
            Request cancellation of every unfinished job first.
        """
        with self._lock:
            self._closed = True
            pending = list(self._cancel_events) if cancel_jobs else []
        for job_id in pending:
            if not self.job_store.get_job(job_id).status.is_terminal:
                self.cancel(job_id)
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> JobOrchestrator:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True, cancel_jobs=True)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _execute(
        self,
        job_id: str,
        request: ReconciliationRequest,
        cancel_event: threading.Event,
        limits: ResourceLimits,
    ) -> ReconciliationResult:
        run = JobRun(
            job_id,
            request,
            ingestor=self.ingestor,
            job_store=self.job_store,
            match_store=self.match_store,
            registry=self.registry,
            config=self.config,
            limits=limits,
            cancel_event=cancel_event,
            logger=self.logger,
            clock=self.clock,
        )
        try:
            if cancel_event.is_set():
                raise JobCancelledError(f"Job {job_id} was cancelled")
            self._transition(job_id, JobStatus.RUNNING)
            run.run()
            job = self._transition(job_id, JobStatus.COMPLETED)
            if self.logger:
                self.logger.stage_finished(
                    stage="finalize", duration_seconds=0.0, job_id=job_id
                )
        except JobCancelledError:
            job = self._transition(job_id, JobStatus.CANCELLED)
        except Exception as e:
            error = e if isinstance(e, RecolinkError) else ReconciliationError(str(e), cause=e)
            message = f"{type(error).__name__}: {error}"
            if self.logger:
                self.logger.error(
                    exception_class=type(e).__name__,
                    message=str(e),
                    job_id=job_id,
                    traceback=traceback.format_exc(),
                )
            job = self._transition(job_id, JobStatus.FAILED, error_message=message)
        finally:
            self._release(job_id, request.tenant_id)

        result = run.result(job)
        with self._lock:
            self._results[job_id] = result
        if self.logger:
            self.logger.job_finished(
                job_id,
                status=str(job.status),
                duration_seconds=result.duration_seconds,
                records_processed=job.processed_records,
            )
        return result

    def _transition(
        self, job_id: str, target: JobStatus, error_message: str | None = None
    ) -> ReconciliationJob:
        def write() -> ReconciliationJob:
            job = transition(self.job_store.get_job(job_id), target, error_message=error_message)
            self.job_store.update_job(job)
            return job

        return call_with_retry(write, self.config.retry)

    def _finish_unstarted(self, job_id: str) -> None:
        """Terminal bookkeeping for a job cancelled before a worker picked it up."""
        job = self._transition(job_id, JobStatus.CANCELLED)
        self._release(job_id, job.tenant_id)
        with self._lock:
            self._results[job_id] = ReconciliationResult.from_job(job)
        if self.logger:
            self.logger.job_finished(job_id, status=str(job.status), duration_seconds=0.0)

    def _release(self, job_id: str, tenant_id: str) -> None:
        with self._lock:
            self._active_by_tenant[tenant_id].discard(job_id)
            self._cancel_events.pop(job_id, None)
