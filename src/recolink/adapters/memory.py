"""In-memory reference implementations of every port.

They are thread-safe and complete enough to run the service in a single
process (tests, the CLI, local experiments). Nothing survives the process.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from rapidfuzz import fuzz, process

from recolink.errors import (
    ConcurrentModificationError,
    InvalidStateError,
    JobNotFoundError,
    MatchNotFoundError,
    ValidationError,
)
from recolink.models.jobs import JobType, MatchFilter, ReconciliationJob, ReconciliationMatch
from recolink.models.records import EntityRecord, Record, normalize_text
from recolink.registry.models import ModelMetadata
from recolink.utils import calculate_bytes_sha256

__all__ = [
    "InMemoryJobStore",
    "InMemoryMatchStore",
    "InMemorySearchIndex",
    "InMemoryModelStore",
    "InMemoryEventBus",
    "InMemoryIngestor",
]

DEFAULT_MIN_SIMILARITY = 0.6


class InMemoryJobStore:
    """Dictionary-backed job store."""

    def __init__(self) -> None:
        self._jobs: dict[str, ReconciliationJob] = {}
        self._by_request: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def create_job(self, job: ReconciliationJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise InvalidStateError(f"Job {job.job_id!r} already exists")
            self._jobs[job.job_id] = job
            self._by_request[(job.tenant_id, job.request_id)] = job.job_id

    def get_job(self, job_id: str, tenant_id: str | None = None) -> ReconciliationJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            raise JobNotFoundError(f"Unknown job: {job_id!r}")
        return job

    def update_job(self, job: ReconciliationJob) -> None:
        with self._lock:
            if job.job_id not in self._jobs:
                raise JobNotFoundError(f"Unknown job: {job.job_id!r}")
            self._jobs[job.job_id] = job

    def find_by_request_id(self, tenant_id: str, request_id: str) -> ReconciliationJob | None:
        with self._lock:
            job_id = self._by_request.get((tenant_id, request_id))
            return self._jobs.get(job_id) if job_id else None


class InMemoryMatchStore:
    """Dictionary-backed match store with compare-and-set updates."""

    def __init__(self) -> None:
        self._matches: dict[str, ReconciliationMatch] = {}
        self._by_job: dict[str, list[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_matches(self, matches: Sequence[ReconciliationMatch]) -> None:
        with self._lock:
            for match in matches:
                if match.match_id in self._matches:
                    raise InvalidStateError(f"Match {match.match_id!r} already exists")
            for match in matches:
                self._matches[match.match_id] = match
                self._by_job[match.job_id].append(match.match_id)

    def get_match(self, match_id: str, tenant_id: str | None = None) -> ReconciliationMatch:
        with self._lock:
            match = self._matches.get(match_id)
        if match is None or (tenant_id is not None and match.tenant_id != tenant_id):
            raise MatchNotFoundError(f"Unknown match: {match_id!r}")
        return match

    def list_matches(
        self,
        job_id: str,
        match_filter: MatchFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[ReconciliationMatch], int]:
        with self._lock:
            matches = [self._matches[mid] for mid in self._by_job.get(job_id, ())]
        selected = [m for m in matches if match_filter.accepts(m)]
        return selected[offset : offset + limit], len(selected)

    def update_match(
        self, match: ReconciliationMatch, expected_version: int
    ) -> ReconciliationMatch:
        with self._lock:
            current = self._matches.get(match.match_id)
            if current is None:
                raise MatchNotFoundError(f"Unknown match: {match.match_id!r}")
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    match.match_id, expected=expected_version, actual=current.version
                )
            stored = replace(match, version=expected_version + 1)
            self._matches[match.match_id] = stored
            return stored

    def count(self, job_id: str) -> int:
        """Number of matches stored for *job_id*."""
        with self._lock:
            return len(self._by_job.get(job_id, ()))


class InMemorySearchIndex:
    """Entity index ranked with ``rapidfuzz``.

    Parameters
    ----------
    entities : Iterable[EntityRecord], optional
        Initial content.
    min_similarity : float, optional
        Hits below this similarity (0.0-1.0) are not returned.
    """

    def __init__(
        self,
        entities: Iterable[EntityRecord] = (),
        *,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        self.min_similarity = min_similarity
        self._entities: dict[str, EntityRecord] = {}
        self._lock = threading.Lock()
        for entity in entities:
            self.add(entity)

    def __len__(self) -> int:
        return len(self._entities)

    def add(self, entity: EntityRecord) -> None:
        """Index or replace *entity*."""
        with self._lock:
            self._entities[entity.primary_identifier] = entity

    def remove(self, identifier: str) -> None:
        """Drop *identifier* from the index (no-op when absent)."""
        with self._lock:
            self._entities.pop(identifier, None)

    def find_by_identifier(self, identifier: str) -> EntityRecord | None:
        with self._lock:
            return self._entities.get(identifier)

    def fuzzy_search(self, query: str, fields: Sequence[str], limit: int) -> list[EntityRecord]:
        with self._lock:
            entities = list(self._entities.values())

        choices: list[str] = []
        owners: list[str] = []
        for entity in entities:
            for value in _field_values(entity, fields):
                choices.append(value)
                owners.append(entity.primary_identifier)

        query_norm = normalize_text(query)
        if not query_norm or not choices:
            return []

        hits = process.extract(
            query_norm,
            choices,
            scorer=fuzz.ratio,
            processor=normalize_text,
            score_cutoff=self.min_similarity * 100,
            limit=None,
        )

        best: dict[str, float] = {}
        for _choice, score, idx in hits:
            owner = owners[idx]
            best[owner] = max(best.get(owner, 0.0), score)

        ranked = sorted(best, key=lambda rid: (-best[rid], rid))[:limit]
        by_id = {e.primary_identifier: e for e in entities}
        return [by_id[rid] for rid in ranked]


def _field_values(entity: EntityRecord, fields: Sequence[str]) -> list[str]:
    values: list[str] = []
    for name in fields:
        if name == "name":
            values.append(entity.primary_name)
        elif name == "aliases":
            values.extend(sorted(entity.aliases))
        else:
            raw = entity.attributes.get(name)
            if raw is not None:
                values.append(str(raw))
    return [v for v in values if v]


class InMemoryModelStore:
    """Versioned artifact store.

    ``put`` computes the digest of the payload; passing ``digest``
    explicitly publishes metadata that may not match (useful to exercise
    verification).
    """

    def __init__(self) -> None:
        self._latest: dict[str, ModelMetadata] = {}
        self._payloads: dict[tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def put(
        self,
        name: str,
        version: str,
        payload: bytes,
        *,
        digest: str | None = None,
        model_type: str = "logistic",
    ) -> ModelMetadata:
        """Publish *payload* as the latest version of *name*."""
        metadata = ModelMetadata(
            name=name,
            version=version,
            digest=digest or calculate_bytes_sha256(payload),
            model_type=model_type,
            location=f"memory://{name}/{version}",
        )
        with self._lock:
            self._payloads[(name, version)] = payload
            self._latest[name] = metadata
        return metadata

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        with self._lock:
            return self._latest.get(name)

    def download(self, metadata: ModelMetadata) -> bytes:
        with self._lock:
            payload = self._payloads.get((metadata.name, metadata.version))
        if payload is None:
            raise ValidationError(f"No artifact for {metadata.name!r} version {metadata.version!r}")
        return payload


class InMemoryEventBus:
    """Synchronous event bus that also records every publication.

    Attributes
    ----------
    published : list[tuple[str, Any]]
        ``(topic, event)`` in publication order.
    """

    def __init__(self) -> None:
        self.published: list[tuple[str, Any]] = []
        self._subscribers: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> None:
        """Call *handler* for every event published on *topic*."""
        with self._lock:
            self._subscribers[topic].append(handler)

    def publish(self, topic: str, event: Any) -> None:
        with self._lock:
            self.published.append((topic, event))
            handlers = list(self._subscribers.get(topic, ()))
        for handler in handlers:
            handler(event)

    def events(self, topic: str) -> list[Any]:
        """Events published on *topic*."""
        with self._lock:
            return [e for t, e in self.published if t == topic]


class InMemoryIngestor:
    """Serves datasets held in memory.

    Parameters
    ----------
    datasets : Mapping[str, Iterable[Record]]
        Dataset name to records.
    """

    def __init__(self, datasets: Mapping[str, Iterable[Record]] | None = None) -> None:
        self._datasets: dict[str, list[Record]] = {
            name: list(records) for name, records in (datasets or {}).items()
        }

    def add_dataset(self, name: str, records: Iterable[Record]) -> None:
        """Register or replace a dataset."""
        self._datasets[name] = list(records)

    def load(
        self,
        dataset: str,
        *,
        tenant_id: str,
        environment: str,
        job_type: JobType,
    ) -> list[Record]:
        try:
            return list(self._datasets[dataset])
        except KeyError:
            raise ValidationError(f"Unknown dataset: {dataset!r}") from None
