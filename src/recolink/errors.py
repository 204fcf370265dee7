"""Error taxonomy for the reconciliation core.

Every error raised by recolink derives from ``RecolinkError``. The
orchestrator retries only ``TransientIOError``; every other error is either
the terminal error of a job or an immediate rejection at submission time.
"""

from __future__ import annotations

__all__ = [
    "RecolinkError",
    "ValidationError",
    "ResourceExhaustedError",
    "TransientIOError",
    "ModelNotFoundError",
    "ModelLoadError",
    "ConfigurationError",
    "ConcurrentModificationError",
    "InvalidStateError",
    "JobNotFoundError",
    "MatchNotFoundError",
    "ReconciliationError",
    "ProcessingTimeoutError",
    "JobCancelledError",
]


class RecolinkError(Exception):
    """Base class for all recolink errors."""


class ValidationError(RecolinkError):
    """Raised when a request or record is malformed. Never retried."""


class ResourceExhaustedError(RecolinkError):
    """Raised when a tenant exceeds its resource limits. Never retried."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id


class TransientIOError(RecolinkError):
    """Raised by collaborators when a store, index or model store is unavailable."""


class ModelNotFoundError(RecolinkError):
    """Raised when the model store knows no model with the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Model not found: {name!r}")
        self.name = name


class ModelLoadError(RecolinkError):
    """Raised when a model cannot be fetched, verified or parsed."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"Failed to load model {name!r}: {message}")
        self.name = name


class ConfigurationError(RecolinkError):
    """Raised when a job configuration is inconsistent (e.g. threshold order)."""


class ConcurrentModificationError(RecolinkError):
    """Raised when an optimistic-concurrency write finds a stale version."""

    def __init__(self, entity_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Stale write on {entity_id!r}: expected version {expected}, found {actual}"
        )
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class InvalidStateError(RecolinkError):
    """Raised when an operation is not legal in the entity's current state."""


class JobNotFoundError(RecolinkError):
    """Raised when a job id is unknown to the store."""


class MatchNotFoundError(RecolinkError):
    """Raised when a match id is unknown to the store."""


class ReconciliationError(RecolinkError):
    """Generic pipeline failure wrapping an underlying cause.

    Parameters
    ----------
    message : str
        Human-readable description.
    cause : BaseException | None, optional
        Underlying exception, also chained as ``__cause__`` by callers.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ProcessingTimeoutError(ReconciliationError):
    """Raised when a job exceeds its maximum processing time."""


class JobCancelledError(ReconciliationError):
    """Raised inside a job when cooperative cancellation is observed."""
