"""Data models for audit logging."""

from dataclasses import dataclass, field
from typing import Any

__all__ = ["LogEvent"]


@dataclass
class LogEvent:
    """Structured log event.

    Attributes
    ----------
    ts : str
        ISO8601 timestamp with microseconds (UTC).
    run_id : str
        Service run identifier.
    level : str
        Log level ("DEBUG", "INFO", "WARN", "ERROR").
    event : str
        Event type (e.g., "job_started", "stage_finished").
    data : dict[str, Any]
        Event-specific payload.
    stage : str | None
        Stage identifier (if applicable).
    job_id : str | None
        Job identifier (if event is job-specific).
    """

    ts: str
    run_id: str
    level: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)
    stage: str | None = None
    job_id: str | None = None
