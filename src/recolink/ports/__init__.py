"""Interfaces of the collaborators the reconciliation core consumes.

Every port is a structural ``Protocol``: any object with the right methods
plugs in. Reference implementations live in ``recolink.adapters``.

Implementations signal unavailability with ``TransientIOError`` so that
the orchestrator can retry; any other exception is treated as permanent.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from recolink.models.jobs import JobType, MatchFilter, ReconciliationJob, ReconciliationMatch
from recolink.models.records import EntityRecord, Record
from recolink.registry.models import ModelMetadata

__all__ = [
    "DataIngestor",
    "JobStore",
    "MatchStore",
    "SearchIndex",
    "ModelStore",
    "EventBus",
]


@runtime_checkable
class DataIngestor(Protocol):
    """Loads the records of a named dataset."""

    def load(
        self,
        dataset: str,
        *,
        tenant_id: str,
        environment: str,
        job_type: JobType,
    ) -> list[Record]:
        """Return every record of *dataset* visible to *tenant_id*."""
        ...


@runtime_checkable
class JobStore(Protocol):
    """Durable job state."""

    def create_job(self, job: ReconciliationJob) -> None:
        """Persist a new job; raises ``InvalidStateError`` if the id exists."""
        ...

    def get_job(self, job_id: str, tenant_id: str | None = None) -> ReconciliationJob:
        """Return the job; raises ``JobNotFoundError`` when unknown.

        With *tenant_id*, a job of another tenant is reported as unknown.
        """
        ...

    def update_job(self, job: ReconciliationJob) -> None:
        """Replace the stored snapshot of an existing job."""
        ...

    def find_by_request_id(self, tenant_id: str, request_id: str) -> ReconciliationJob | None:
        """Most recent job created for *request_id*, if any."""
        ...


@runtime_checkable
class MatchStore(Protocol):
    """Durable match state with optimistic concurrency."""

    def add_matches(self, matches: Sequence[ReconciliationMatch]) -> None:
        """Persist newly created matches."""
        ...

    def get_match(self, match_id: str, tenant_id: str | None = None) -> ReconciliationMatch:
        """Return the match; raises ``MatchNotFoundError`` when unknown.

        With *tenant_id*, a match of another tenant is reported as unknown.
        """
        ...

    def list_matches(
        self,
        job_id: str,
        match_filter: MatchFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[ReconciliationMatch], int]:
        """One slice of the job's matches plus the filtered total."""
        ...

    def update_match(
        self, match: ReconciliationMatch, expected_version: int
    ) -> ReconciliationMatch:
        """Compare-and-set on ``version``.

        Stores *match* with ``version = expected_version + 1`` and returns the
        stored copy; raises ``ConcurrentModificationError`` when the stored
        version differs from *expected_version*.
        """
        ...


@runtime_checkable
class SearchIndex(Protocol):
    """Entity lookup for duplicate detection."""

    def fuzzy_search(self, query: str, fields: Sequence[str], limit: int) -> list[EntityRecord]:
        """Entities whose *fields* resemble *query*, best first, at most *limit*."""
        ...

    def find_by_identifier(self, identifier: str) -> EntityRecord | None:
        """Entity with this primary identifier, if indexed."""
        ...


@runtime_checkable
class ModelStore(Protocol):
    """Binary store of scoring model artifacts."""

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        """Metadata of the newest version of *name*, or None if unknown."""
        ...

    def download(self, metadata: ModelMetadata) -> bytes:
        """Artifact bytes for *metadata*."""
        ...


@runtime_checkable
class EventBus(Protocol):
    """Fire-and-forget event publication."""

    def publish(self, topic: str, event: Any) -> None:
        """Publish *event* on *topic*."""
        ...
