"""Tests for the versioned model registry."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from recolink.adapters import InMemoryModelStore
from recolink.audit.logger import AuditLogger
from recolink.errors import InvalidStateError, ModelLoadError, ModelNotFoundError, TransientIOError
from recolink.registry import (
    ModelMetadata,
    ModelRegistry,
    get_registry,
    init_registry,
    teardown_registry,
)

BAD_DIGEST = "sha256:" + "0" * 64


class FlakyStore:
    """Model store whose metadata lookups fail transiently a few times."""

    def __init__(self, inner: InMemoryModelStore, failures: int) -> None:
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientIOError("model store unreachable")
        return self.inner.fetch_latest_metadata(name)

    def download(self, metadata: ModelMetadata) -> bytes:
        return self.inner.download(metadata)


class BrokenDownloadStore:
    """Model store whose artifact downloads fail with a raw socket error."""

    def __init__(self, inner: InMemoryModelStore) -> None:
        self.inner = inner
        self.broken = False

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        return self.inner.fetch_latest_metadata(name)

    def download(self, metadata: ModelMetadata) -> bytes:
        if self.broken:
            raise ConnectionResetError("connection reset by peer")
        return self.inner.download(metadata)


class GatedStore:
    """Model store whose downloads of ``slow`` block until released."""

    def __init__(self, inner: InMemoryModelStore) -> None:
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        return self.inner.fetch_latest_metadata(name)

    def download(self, metadata: ModelMetadata) -> bytes:
        if metadata.name == "slow":
            self.entered.set()
            self.release.wait(5.0)
        return self.inner.download(metadata)


def _read_events(path: Path) -> list[dict]:
    """Read JSONL events from file."""
    with path.open("r") as fh:
        return [json.loads(line) for line in fh]


# ============================================================================
# Loading
# ============================================================================


@pytest.mark.unit
def test_model_loaded_lazily(registry: ModelRegistry) -> None:
    """Test the first read loads the model and later reads reuse it."""
    assert "scoring-v1" not in registry.active_models

    model = registry.get_model("scoring-v1")

    assert model.version == "1"
    assert model.weights == {"name": 5.0, "tax_id": 3.0}
    assert model.digest.startswith("sha256:")
    assert registry.get_model("scoring-v1") is model
    assert dict(registry.active_models) == {"scoring-v1": model}


@pytest.mark.unit
def test_unknown_model(registry: ModelRegistry) -> None:
    """Test unknown names raise ModelNotFoundError."""
    with pytest.raises(ModelNotFoundError, match="missing"):
        registry.get_model("missing")


@pytest.mark.unit
def test_digest_mismatch_rejected(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test artifacts whose digest differs from the metadata are refused."""
    model_store.put("tampered", "1", make_model_payload(), digest=BAD_DIGEST)
    registry = ModelRegistry(model_store, load_backoff=0.0)

    with pytest.raises(ModelLoadError, match="digest mismatch"):
        registry.get_model("tampered")
    assert "tampered" not in registry.active_models


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[1, 2]", json.dumps({"model_type": "forest", "weights": {"a": 1}}).encode()],
    ids=["invalid_json", "not_object", "unsupported_type"],
)
def test_invalid_artifact_rejected(model_store: InMemoryModelStore, payload: bytes) -> None:
    """Test unparseable artifacts raise ModelLoadError."""
    model_store.put("broken", "1", payload)

    with pytest.raises(ModelLoadError):
        ModelRegistry(model_store, load_backoff=0.0).get_model("broken")


@pytest.mark.unit
def test_transient_failures_are_retried(model_store: InMemoryModelStore) -> None:
    """Test store outages shorter than the attempt budget are absorbed."""
    store = FlakyStore(model_store, failures=2)

    model = ModelRegistry(store, load_attempts=3, load_backoff=0.0).get_model("scoring-v1")

    assert model.version == "1"
    assert store.calls == 3


@pytest.mark.unit
def test_transient_failures_exhaust_attempts(model_store: InMemoryModelStore) -> None:
    """Test a persistent outage becomes ModelLoadError."""
    store = FlakyStore(model_store, failures=10)

    with pytest.raises(ModelLoadError, match="unavailable after 2 attempts"):
        ModelRegistry(store, load_attempts=2, load_backoff=0.0).get_model("scoring-v1")

    assert store.calls == 2


# ============================================================================
# Refresh and hot swap
# ============================================================================


@pytest.mark.unit
def test_refresh_swaps_new_version(
    model_store: InMemoryModelStore,
    make_model_payload: Callable[..., bytes],
    tmp_path: Path,
) -> None:
    """Test a new version is swapped in once and logged."""
    log_path = tmp_path / "events.jsonl"
    with AuditLogger(run_id="test", log_path=log_path) as logger:
        registry = ModelRegistry(model_store, logger=logger, load_backoff=0.0)
        registry.get_model("scoring-v1")
        assert registry.refresh("scoring-v1") is False

        model_store.put("scoring-v1", "2", make_model_payload(version="2", bias=-3.0))
        assert registry.refresh("scoring-v1") is True
        assert registry.refresh("scoring-v1") is False

    assert registry.get_model("scoring-v1").version == "2"
    assert registry.get_model("scoring-v1").bias == -3.0

    events = _read_events(log_path)
    assert [e["event"] for e in events] == ["model_loaded", "model_swapped"]
    assert events[1]["data"] == {"name": "scoring-v1", "previous_version": "1", "version": "2"}


@pytest.mark.unit
def test_failed_refresh_keeps_serving_version(
    registry: ModelRegistry,
    model_store: InMemoryModelStore,
    make_model_payload: Callable[..., bytes],
) -> None:
    """Test a bad new version never evicts the active one."""
    registry.get_model("scoring-v1")
    model_store.put("scoring-v1", "2", make_model_payload(), digest=BAD_DIGEST)

    with pytest.raises(ModelLoadError):
        registry.refresh("scoring-v1")

    assert registry.get_model("scoring-v1").version == "1"


@pytest.mark.unit
def test_refresh_all_records_errors(
    registry: ModelRegistry,
    model_store: InMemoryModelStore,
    make_model_payload: Callable[..., bytes],
) -> None:
    """Test refresh_all reports failures and clears them after recovery."""
    registry.get_model("scoring-v1")
    model_store.put("scoring-v1", "2", make_model_payload(), digest=BAD_DIGEST)

    assert registry.refresh_all() == {"scoring-v1": False}
    assert "digest mismatch" in registry.last_refresh_errors["scoring-v1"]

    model_store.put("scoring-v1", "3", make_model_payload(version="3"))

    assert registry.refresh_all() == {"scoring-v1": True}
    assert registry.last_refresh_errors == {}
    assert registry.get_model("scoring-v1").version == "3"


@pytest.mark.unit
def test_background_refresh(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test the refresh thread picks up a new version."""
    registry = ModelRegistry(model_store, refresh_interval=0.01, load_backoff=0.0)
    registry.get_model("scoring-v1")
    registry.start()
    try:
        assert registry.running
        model_store.put("scoring-v1", "2", make_model_payload(version="2"))

        deadline = time.monotonic() + 5.0
        while registry.get_model("scoring-v1").version != "2" and time.monotonic() < deadline:
            time.sleep(0.01)

        assert registry.get_model("scoring-v1").version == "2"
    finally:
        registry.stop()

    assert not registry.running


@pytest.mark.unit
def test_store_exception_becomes_model_load_error(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test arbitrary store exceptions surface as ModelLoadError on refresh."""
    store = BrokenDownloadStore(model_store)
    registry = ModelRegistry(store, load_backoff=0.0)
    registry.get_model("scoring-v1")
    model_store.put("scoring-v1", "2", make_model_payload(version="2"))
    store.broken = True

    with pytest.raises(ModelLoadError, match="ConnectionResetError"):
        registry.refresh("scoring-v1")

    assert registry.refresh_all() == {"scoring-v1": False}
    assert "ConnectionResetError" in registry.last_refresh_errors["scoring-v1"]
    assert registry.get_model("scoring-v1").version == "1"


@pytest.mark.unit
def test_store_exception_on_first_load(model_store: InMemoryModelStore) -> None:
    """Test a raw store exception on first use is reported as ModelLoadError."""
    store = BrokenDownloadStore(model_store)
    store.broken = True

    with pytest.raises(ModelLoadError):
        ModelRegistry(store, load_backoff=0.0).get_model("scoring-v1")


@pytest.mark.unit
def test_background_refresh_survives_store_errors(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test the refresh thread keeps running through failures and recovers."""
    store = BrokenDownloadStore(model_store)
    registry = ModelRegistry(store, refresh_interval=0.01, load_backoff=0.0)
    registry.get_model("scoring-v1")
    model_store.put("scoring-v1", "2", make_model_payload(version="2"))
    store.broken = True
    registry.start()
    try:
        deadline = time.monotonic() + 5.0
        while "scoring-v1" not in registry.last_refresh_errors and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.05)

        assert registry.running
        assert registry.get_model("scoring-v1").version == "1"

        store.broken = False
        deadline = time.monotonic() + 5.0
        while registry.get_model("scoring-v1").version != "2" and time.monotonic() < deadline:
            time.sleep(0.01)

        assert registry.get_model("scoring-v1").version == "2"
    finally:
        registry.stop()


@pytest.mark.unit
def test_slow_fetch_does_not_block_other_models(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test loading one model proceeds while another model's download hangs."""
    model_store.put("slow", "1", make_model_payload())
    store = GatedStore(model_store)
    registry = ModelRegistry(store, load_backoff=0.0)

    slow_loader = threading.Thread(target=registry.get_model, args=("slow",))
    slow_loader.start()
    try:
        assert store.entered.wait(5.0)

        loaded: list[str] = []
        other = threading.Thread(
            target=lambda: loaded.append(registry.get_model("scoring-v1").version)
        )
        other.start()
        other.join(2.0)

        assert not other.is_alive()
        assert loaded == ["1"]
        assert "slow" not in registry.active_models
    finally:
        store.release.set()
        slow_loader.join()

    assert registry.get_model("slow").version == "1"


@pytest.mark.unit
def test_readers_never_see_partial_swap(
    model_store: InMemoryModelStore, make_model_payload: Callable[..., bytes]
) -> None:
    """Test concurrent readers always observe a consistent model version."""
    model_store.put("scoring-v1", "1", make_model_payload(weights={"name": 1.0}))
    registry = ModelRegistry(model_store, load_backoff=0.0)
    registry.get_model("scoring-v1")

    stop = threading.Event()
    inconsistent: list[str] = []

    def reader() -> None:
        while not stop.is_set():
            model = registry.get_model("scoring-v1")
            if model.weights["name"] != float(model.version):
                inconsistent.append(model.version)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    try:
        for version in range(2, 30):
            model_store.put(
                "scoring-v1", str(version), make_model_payload(weights={"name": float(version)})
            )
            assert registry.refresh("scoring-v1")
    finally:
        stop.set()
        for thread in readers:
            thread.join()

    assert inconsistent == []
    assert registry.get_model("scoring-v1").version == "29"


# ============================================================================
# Process-wide lifecycle
# ============================================================================


@pytest.mark.unit
def test_process_registry_lifecycle(model_store: InMemoryModelStore) -> None:
    """Test init/get/teardown of the process-wide registry."""
    with pytest.raises(InvalidStateError, match="not initialized"):
        get_registry()

    registry = init_registry(model_store, load_backoff=0.0)
    assert get_registry() is registry

    with pytest.raises(InvalidStateError, match="already initialized"):
        init_registry(model_store)

    teardown_registry()
    with pytest.raises(InvalidStateError):
        get_registry()


@pytest.mark.unit
def test_init_registry_can_start_refresh(model_store: InMemoryModelStore) -> None:
    """Test start_refresh launches the refresh thread."""
    registry = init_registry(model_store, start_refresh=True)

    assert registry.running

    teardown_registry()
    assert not registry.running


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs", [{"refresh_interval": 0.0}, {"load_attempts": 0}], ids=["interval", "attempts"]
)
def test_registry_rejects_bad_settings(model_store: InMemoryModelStore, kwargs: dict) -> None:
    """Test invalid registry settings raise ValueError."""
    with pytest.raises(ValueError):
        ModelRegistry(model_store, **kwargs)
