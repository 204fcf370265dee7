"""Public API of the reconciliation service.

This module provides:
- ``ReconciliationService``, the facade over orchestration and review
- ``build_in_memory_service``, a single-process wiring of every port
- ``request_from_dict`` / ``load_request``, JSON request ingestion
  validated against the bundled JSON schema
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import cache
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jsonschema

from recolink.adapters.memory import (
    InMemoryEventBus,
    InMemoryIngestor,
    InMemoryJobStore,
    InMemoryMatchStore,
)
from recolink.audit.logger import AuditLogger
from recolink.engine import EngineConfig, JobHandle, JobOrchestrator
from recolink.errors import ValidationError
from recolink.models.jobs import (
    JobType,
    MatchFilter,
    MatchStatus,
    Page,
    ReconciliationJob,
    ReconciliationMatch,
)
from recolink.models.records import Record
from recolink.models.request import ReconciliationConfiguration, ReconciliationRequest
from recolink.review import ReviewWorkflow

if TYPE_CHECKING:
    from recolink.registry.model_registry import ModelRegistry

__all__ = [
    "ReconciliationService",
    "ReviewUpdate",
    "build_in_memory_service",
    "load_request",
    "load_schema",
    "request_from_dict",
]


@dataclass(frozen=True)
class ReviewUpdate:
    """Reviewer decision submitted through the service.

    Attributes
    ----------
    status : MatchStatus
        New match status.
    reviewer_id : str
        Reviewer identity.
    confidence : float | None
        Human confidence in [0, 1].
    comments : str | None
        Free-text comments.
    expected_version : int | None
        Version the reviewer saw, for optimistic concurrency.
    """

    status: MatchStatus
    reviewer_id: str
    confidence: float | None = None
    comments: str | None = None
    expected_version: int | None = None


class ReconciliationService:
    """Facade exposing job submission, queries and review.

    Parameters
    ----------
    orchestrator : JobOrchestrator
        Runs jobs.
    review_workflow : ReviewWorkflow
        Applies reviewer decisions.
    """

    def __init__(self, orchestrator: JobOrchestrator, review_workflow: ReviewWorkflow) -> None:
        self.orchestrator = orchestrator
        self.review_workflow = review_workflow

    def __enter__(self) -> ReconciliationService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def start(self, request: ReconciliationRequest) -> str:
        """Submit *request* and return its job id (idempotent per request id)."""
        return self.orchestrator.start(request).job_id

    def handle(self, job_id: str) -> JobHandle:
        """Handle of a job started through this service."""
        return self.orchestrator.get_handle(job_id)

    def get_status(self, job_id: str, tenant_id: str | None = None) -> ReconciliationJob:
        """Current job snapshot, scoped to *tenant_id* when given."""
        return self.orchestrator.get_status(job_id, tenant_id=tenant_id)

    def get_matches(
        self,
        job_id: str,
        match_filter: MatchFilter | None = None,
        page: int = 0,
        size: int = 50,
        tenant_id: str | None = None,
    ) -> Page[ReconciliationMatch]:
        """One page of a job's matches, scoped to *tenant_id* when given."""
        return self.orchestrator.get_matches(job_id, match_filter, page, size, tenant_id=tenant_id)

    def cancel(self, job_id: str, tenant_id: str | None = None) -> bool:
        """Request cancellation of a job."""
        return self.orchestrator.cancel(job_id, tenant_id=tenant_id)

    def review(
        self, match_id: str, update: ReviewUpdate, tenant_id: str | None = None
    ) -> ReconciliationMatch:
        """Apply a reviewer decision to a match of a terminal job."""
        return self.review_workflow.review(
            match_id,
            update.status,
            update.reviewer_id,
            confidence=update.confidence,
            comments=update.comments,
            expected_version=update.expected_version,
            tenant_id=tenant_id,
        )

    def close(self, wait: bool = True) -> None:
        """Shut the orchestrator down."""
        self.orchestrator.shutdown(wait=wait)


def build_in_memory_service(
    datasets: Mapping[str, Iterable[Record]] | None = None,
    *,
    config: EngineConfig | None = None,
    registry: ModelRegistry | None = None,
    logger: AuditLogger | None = None,
    event_bus: InMemoryEventBus | None = None,
) -> ReconciliationService:
    """Wire a service whose collaborators all live in memory.

    Parameters
    ----------
    datasets : Mapping[str, Iterable[Record]] | None, optional
        Datasets served by the ingestor.
    config : EngineConfig | None, optional
        Engine configuration.
    registry : ModelRegistry | None, optional
        Model registry for ML scoring.
    logger : AuditLogger | None, optional
        Audit logger shared by every component.
    event_bus : InMemoryEventBus | None, optional
        Bus receiving review events; a fresh one is created if omitted.

    Returns
    -------
    ReconciliationService
        Ready-to-use service.

    Examples
    --------
        >>> from recolink import Record, build_in_memory_service
        >>> service = build_in_memory_service({"crm": [Record("1", {"name": "Acme"})]})
    """
    job_store = InMemoryJobStore()
    match_store = InMemoryMatchStore()
    orchestrator = JobOrchestrator(
        InMemoryIngestor(datasets),
        job_store,
        match_store,
        registry=registry,
        config=config,
        logger=logger,
    )
    workflow = ReviewWorkflow(job_store, match_store, event_bus or InMemoryEventBus(), logger)
    return ReconciliationService(orchestrator, workflow)


@cache
def load_schema(name: str) -> dict[str, Any]:
    """Load a bundled JSON schema (``request`` or ``log_event``)."""
    path = resources.files("recolink.schemas").joinpath(f"{name}.schema.json")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def request_from_dict(data: Mapping[str, Any]) -> ReconciliationRequest:
    """Build a request from its JSON form.

    Parameters
    ----------
    data : Mapping[str, Any]
        Request document.

    Returns
    -------
    ReconciliationRequest
        Structurally valid request. Semantic configuration checks happen
        when the job starts.

    Raises
    ------
    ValidationError
        If *data* violates the request schema.
    ConfigurationError
        If a blocker or rule entry cannot be built.
    """
    try:
        jsonschema.validate(instance=dict(data), schema=load_schema("request"))
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ValidationError(f"Invalid request at {location}: {e.message}") from e

    return ReconciliationRequest(
        request_id=data["request_id"],
        tenant_id=data["tenant_id"],
        environment=data["environment"],
        source_dataset=data["source_dataset"],
        target_dataset=data["target_dataset"],
        job_type=JobType(data.get("job_type", JobType.FULL)),
        configuration=ReconciliationConfiguration.from_dict(data.get("configuration", {})),
    )


def load_request(path: str | Path) -> ReconciliationRequest:
    """Read and validate a JSON request file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValidationError
        If the file is not valid JSON or violates the schema.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    try:
        with file_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{file_path.name} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"{file_path.name} must contain a JSON object")
    return request_from_dict(data)
