"""Versioned model registry with lock-free reads.

The active models live in an immutable mapping. A writer builds a new
mapping and replaces the reference under ``_write_lock``; readers just
dereference ``_active`` and never observe a half-swapped model. Fetches
run outside ``_write_lock``, under a per-name lock, so a slow download
of one model never delays loading another.

A failed load or refresh never evicts the serving version.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from dataclasses import replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from recolink.audit.logger import AuditLogger
from recolink.errors import InvalidStateError, ModelLoadError, ModelNotFoundError, TransientIOError
from recolink.registry.models import ScoringModel, parse_model
from recolink.utils import calculate_bytes_sha256, format_sha256

if TYPE_CHECKING:
    from recolink.ports import ModelStore

__all__ = [
    "ModelRegistry",
    "init_registry",
    "get_registry",
    "teardown_registry",
]

STAGE_NAME = "model_registry"

DEFAULT_REFRESH_INTERVAL = 300.0
DEFAULT_LOAD_ATTEMPTS = 3
DEFAULT_LOAD_BACKOFF = 0.5
MAX_LOAD_BACKOFF = 10.0


class ModelRegistry:
    """Serve scoring models by name and hot-swap new versions.

    Parameters
    ----------
    store : ModelStore
        Where metadata and artifacts come from.
    logger : AuditLogger | None, optional
        Audit logger for load and refresh events.
    refresh_interval : float, optional
        Seconds between background refreshes.
    load_attempts : int, optional
        Attempts per load when the store raises ``TransientIOError``.
    load_backoff : float, optional
        Base of the exponential backoff between attempts (0 disables waits).

    Attributes
    ----------
    last_refresh_errors : dict[str, str]
        Message of the last failed background refresh per model name.
    """

    def __init__(
        self,
        store: ModelStore,
        *,
        logger: AuditLogger | None = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        load_attempts: int = DEFAULT_LOAD_ATTEMPTS,
        load_backoff: float = DEFAULT_LOAD_BACKOFF,
    ) -> None:
        if refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be positive, got {refresh_interval}")
        if load_attempts < 1:
            raise ValueError(f"load_attempts must be >= 1, got {load_attempts}")

        self.store = store
        self.logger = logger
        self.refresh_interval = refresh_interval
        self.load_attempts = load_attempts
        self.load_backoff = load_backoff
        self.last_refresh_errors: dict[str, str] = {}

        self._active: Mapping[str, ScoringModel] = MappingProxyType({})
        self._write_lock = threading.Lock()
        self._name_locks: dict[str, threading.Lock] = {}
        self._name_locks_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_model(self, name: str) -> ScoringModel:
        """Return the active version of *name*, loading it on first use.

        Raises
        ------
        ModelNotFoundError
            If the store knows no model called *name*.
        ModelLoadError
            If the model cannot be fetched, verified or parsed.
        """
        model = self._active.get(name)
        if model is not None:
            return model
        return self.load(name)

    @property
    def active_models(self) -> Mapping[str, ScoringModel]:
        """Read-only snapshot of every active model."""
        return self._active

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def load(self, name: str) -> ScoringModel:
        """Load *name* if not already active.

        Transient store failures are retried ``load_attempts`` times.

        Raises
        ------
        ModelNotFoundError
            If the store knows no model called *name*.
        ModelLoadError
            If retries are exhausted or the artifact is invalid.
        """
        with self._name_lock(name):
            current = self._active.get(name)
            if current is not None:
                return current
            model = self._fetch_with_retry(name)
            if model is None:
                raise ModelLoadError(name, "model store returned no artifact")
            with self._write_lock:
                self._swap(model)

        self._log("model_loaded", model.to_dict())
        return model

    def refresh(self, name: str) -> bool:
        """Fetch the latest version of *name* and swap it in if it changed.

        Returns
        -------
        bool
            True when a new version became active.

        Raises
        ------
        ModelLoadError
            On any failure; the serving version stays active.
        """
        with self._name_lock(name):
            try:
                model = self._fetch_with_retry(name, current=self._active.get(name))
            except ModelNotFoundError as e:
                raise ModelLoadError(name, "no longer listed by the model store") from e
            if model is None:
                return False
            with self._write_lock:
                previous = self._active.get(name)
                self._swap(model)

        self._log(
            "model_swapped",
            {
                "name": name,
                "previous_version": previous.version if previous else None,
                "version": model.version,
            },
        )
        return True

    def refresh_all(self) -> dict[str, bool]:
        """Refresh every active model; failures are recorded and logged."""
        results: dict[str, bool] = {}
        for name in sorted(self._active):
            try:
                results[name] = self.refresh(name)
                self.last_refresh_errors.pop(name, None)
            except ModelLoadError as e:
                results[name] = False
                self.last_refresh_errors[name] = str(e)
                if self.logger:
                    self.logger.error(
                        exception_class=type(e).__name__,
                        message=str(e),
                        stage=STAGE_NAME,
                    )
        return results

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic refresh thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop, name="model-registry-refresh", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the refresh thread and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        """Whether the refresh thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def _refresh_loop(self) -> None:
        while not self._stop_event.wait(self.refresh_interval):
            try:
                self.refresh_all()
            except Exception as e:
                # One failed cycle must not end the thread; the next one retries.
                if self.logger:
                    self.logger.error(
                        exception_class=type(e).__name__,
                        message=f"refresh cycle failed: {e}",
                        stage=STAGE_NAME,
                    )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_with_retry(
        self, name: str, current: ScoringModel | None = None
    ) -> ScoringModel | None:
        retrying = Retrying(
            stop=stop_after_attempt(self.load_attempts),
            wait=wait_exponential(multiplier=self.load_backoff, max=MAX_LOAD_BACKOFF),
            retry=retry_if_exception_type(TransientIOError),
            reraise=True,
        )
        start = time.perf_counter()
        try:
            return retrying(self._fetch, name, current)
        except TransientIOError as e:
            raise ModelLoadError(
                name,
                f"model store unavailable after {self.load_attempts} attempts "
                f"({time.perf_counter() - start:.2f}s): {e}",
            ) from e
        except (ModelNotFoundError, ModelLoadError):
            raise
        except Exception as e:
            # Store adapters raise whatever their transport raises
            raise ModelLoadError(name, f"{type(e).__name__}: {e}") from e

    def _name_lock(self, name: str) -> threading.Lock:
        """Lock serializing fetches of one model name."""
        with self._name_locks_guard:
            lock = self._name_locks.get(name)
            if lock is None:
                lock = self._name_locks[name] = threading.Lock()
            return lock

    def _fetch(self, name: str, current: ScoringModel | None) -> ScoringModel | None:
        """Download, verify and parse the latest version; None if unchanged."""
        metadata = self.store.fetch_latest_metadata(name)
        if metadata is None:
            raise ModelNotFoundError(name)

        expected = _normalize_digest(metadata.digest)
        if (
            current is not None
            and current.version == metadata.version
            and current.digest == expected
        ):
            return None

        payload = self.store.download(metadata)
        actual = calculate_bytes_sha256(payload)
        if actual != expected:
            raise ModelLoadError(name, f"digest mismatch: expected {expected}, got {actual}")

        try:
            model = parse_model(payload, metadata)
        except ValueError as e:
            raise ModelLoadError(name, str(e)) from e

        return replace(model, digest=expected)

    def _swap(self, model: ScoringModel) -> None:
        """Replace the active mapping; caller holds ``_write_lock``."""
        updated = dict(self._active)
        updated[model.name] = model
        self._active = MappingProxyType(updated)

    def _log(self, event_type: str, data: dict[str, Any]) -> None:
        if self.logger:
            self.logger.event(event_type, data=data, stage=STAGE_NAME)


def _normalize_digest(digest: str) -> str:
    return digest if digest.startswith("sha256:") else format_sha256(digest)


# ============================================================================
# Process-wide lifecycle
# ============================================================================

_registry: ModelRegistry | None = None
_registry_lock = threading.Lock()


def init_registry(
    store: ModelStore,
    *,
    start_refresh: bool = False,
    **kwargs: Any,
) -> ModelRegistry:
    """Create the process-wide registry.

    Parameters
    ----------
    store : ModelStore
        Model store backing the registry.
    start_refresh : bool, optional
        Start the periodic refresh thread immediately.
    **kwargs : Any
        Forwarded to ``ModelRegistry``.

    Raises
    ------
    InvalidStateError
        If a registry is already initialized.
    """
    global _registry
    with _registry_lock:
        if _registry is not None:
            raise InvalidStateError("Model registry is already initialized")
        registry = ModelRegistry(store, **kwargs)
        if start_refresh:
            registry.start()
        _registry = registry
        return registry


def get_registry() -> ModelRegistry:
    """Return the process-wide registry.

    Raises
    ------
    InvalidStateError
        If ``init_registry`` has not been called.
    """
    registry = _registry
    if registry is None:
        raise InvalidStateError("Model registry is not initialized")
    return registry


def teardown_registry() -> None:
    """Stop and discard the process-wide registry (no-op when absent)."""
    global _registry
    with _registry_lock:
        registry, _registry = _registry, None
    if registry is not None:
        registry.stop()
