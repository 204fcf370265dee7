"""Pytest configuration and fixtures for test suite."""

import json
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

# Add src directory to path for imports
SRC_PATH = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(SRC_PATH))

from recolink.adapters import (  # noqa: E402
    InMemoryEventBus,
    InMemoryIngestor,
    InMemoryJobStore,
    InMemoryMatchStore,
    InMemoryModelStore,
)
from recolink.audit import AuditLogger  # noqa: E402
from recolink.candidates import BlockerConfig  # noqa: E402
from recolink.engine import EngineConfig, JobOrchestrator, RetryPolicy  # noqa: E402
from recolink.models import EntityRecord, Record  # noqa: E402
from recolink.models.request import (  # noqa: E402
    ReconciliationConfiguration,
    ReconciliationRequest,
)
from recolink.registry import ModelRegistry, teardown_registry  # noqa: E402

SOURCE = [
    Record("s1", {"name": "Acme Corp", "tax_id": "123", "city": "Berlin"}),
    Record("s2", {"name": "Globex Industries", "tax_id": "456", "city": "Paris"}),
    Record("s3", {"name": "Initech LLC", "tax_id": "789", "city": "Austin"}),
    Record("s4", {"name": "Umbrella Holdings", "tax_id": "999", "city": "Raccoon"}),
]

TARGET = [
    Record("t1", {"name": "Acme Corporation", "tax_id": "123", "city": "Berlin"}),
    Record("t2", {"name": "Globex Industries", "tax_id": "456", "city": "Paris"}),
    Record("t3", {"name": "Initech", "tax_id": "000", "city": "Dallas"}),
    Record("t5", {"name": "Hooli", "tax_id": "555", "city": "Palo Alto"}),
]

MODEL_ARTIFACT = {
    "name": "scoring-v1",
    "version": "1",
    "model_type": "logistic",
    "bias": -4.0,
    "weights": {"name": 5.0, "tax_id": 3.0},
}


def model_payload(**overrides: Any) -> bytes:
    """Serialize a logistic model artifact."""
    return json.dumps({**MODEL_ARTIFACT, **overrides}).encode("utf-8")


@pytest.fixture
def make_config() -> Callable[..., ReconciliationConfiguration]:
    """Factory for configurations comparing tax_id exactly and name fuzzily."""

    def _factory(**overrides: Any) -> ReconciliationConfiguration:
        kwargs: dict[str, Any] = {
            "matching_fields": ("tax_id",),
            "fuzzy_fields": ("name",),
            "blocking_keys": (
                BlockerConfig(type="name_token", params={"field": "name"}),
                BlockerConfig(type="field_exact", params={"field": "tax_id"}),
            ),
        }
        kwargs.update(overrides)
        return ReconciliationConfiguration(**kwargs)

    return _factory


@pytest.fixture
def make_request(
    make_config: Callable[..., ReconciliationConfiguration],
) -> Callable[..., ReconciliationRequest]:
    """Factory for requests reconciling the ``crm`` dataset against ``erp``."""

    def _factory(
        request_id: str = "req-1",
        *,
        tenant_id: str = "tenant-a",
        configuration: ReconciliationConfiguration | None = None,
        **overrides: Any,
    ) -> ReconciliationRequest:
        kwargs: dict[str, Any] = {
            "request_id": request_id,
            "tenant_id": tenant_id,
            "environment": "prod",
            "source_dataset": "crm",
            "target_dataset": "erp",
            "configuration": configuration or make_config(),
        }
        kwargs.update(overrides)
        return ReconciliationRequest(**kwargs)

    return _factory


@pytest.fixture
def make_entity() -> Callable[..., EntityRecord]:
    """Factory for entity records with minimal boilerplate."""

    def _factory(
        identifier: str,
        name: str,
        *,
        aliases: tuple[str, ...] = (),
        golden: bool = False,
        confidence: float = 0.0,
        **attributes: Any,
    ) -> EntityRecord:
        return EntityRecord(
            primary_identifier=identifier,
            primary_name=name,
            aliases=frozenset(aliases),
            is_golden_record=golden,
            confidence=confidence,
            attributes={"id": identifier, "name": name, **attributes},
        )

    return _factory


@pytest.fixture
def ingestor() -> InMemoryIngestor:
    """Ingestor serving the ``crm`` (source) and ``erp`` (target) datasets."""
    return InMemoryIngestor({"crm": SOURCE, "erp": TARGET})


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def match_store() -> InMemoryMatchStore:
    return InMemoryMatchStore()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def fast_engine_config() -> EngineConfig:
    """Engine config with immediate retries."""
    return EngineConfig(
        max_workers=2,
        scoring_workers=2,
        retry=RetryPolicy(max_attempts=3, initial_backoff=0.0, max_backoff=0.0),
    )


@pytest.fixture
def orchestrator(
    ingestor: InMemoryIngestor,
    job_store: InMemoryJobStore,
    match_store: InMemoryMatchStore,
    fast_engine_config: EngineConfig,
) -> Iterator[JobOrchestrator]:
    """Orchestrator over in-memory stores, shut down after the test."""
    orch = JobOrchestrator(ingestor, job_store, match_store, config=fast_engine_config)
    yield orch
    orch.shutdown(wait=True, cancel_jobs=True)


@pytest.fixture
def model_store() -> InMemoryModelStore:
    """Model store publishing version 1 of ``scoring-v1``."""
    store = InMemoryModelStore()
    store.put("scoring-v1", "1", model_payload())
    return store


@pytest.fixture
def registry(model_store: InMemoryModelStore) -> Iterator[ModelRegistry]:
    """Registry without waits between load attempts."""
    reg = ModelRegistry(model_store, load_backoff=0.0)
    yield reg
    reg.stop()


@pytest.fixture(autouse=True)
def _reset_process_registry() -> Iterator[None]:
    """Keep the process-wide registry from leaking between tests."""
    yield
    teardown_registry()


@pytest.fixture
def audit_logger(tmp_path: Path) -> Iterator[AuditLogger]:
    """Create a logger that auto-closes after test."""
    lg = AuditLogger(run_id="test_run", log_path=tmp_path / "events.jsonl")
    yield lg
    lg.close()


@pytest.fixture
def source_records() -> list[Record]:
    """Source (``crm``) dataset."""
    return list(SOURCE)


@pytest.fixture
def target_records() -> list[Record]:
    """Target (``erp``) dataset."""
    return list(TARGET)


@pytest.fixture
def make_model_payload() -> Callable[..., bytes]:
    """Factory for logistic model artifacts."""
    return model_payload
