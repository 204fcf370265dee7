"""Structured audit logger for JSONL event logging.

Provides append-only structured event logging to JSONL files with
a persistent file handle. Jobs run on worker threads, so every write is
serialised by a lock.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any

from recolink.audit.models import LogEvent
from recolink.utils import get_iso_timestamp

__all__ = ["AuditLogger", "LEVELS"]

LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


class AuditLogger:
    """JSONL audit logger with persistent file handle.

    Writes structured log events to a JSONL file (one JSON object per line).
    Events are append-only and flushed after each write for durability.

    Attributes
    ----------
    run_id : str
        Identifier of the process or service run emitting the events.
    log_path : Path
        Path to JSONL log file.
    current_stage : str | None
        Default stage for events that name none.
    """

    def __init__(self, run_id: str, log_path: Path) -> None:
        """Initialize audit logger and open file handle.

        Parameters
        ----------
        run_id : str
            Unique run identifier.
        log_path : Path
            Path to JSONL log file.
        """
        self.run_id = run_id
        self.log_path = log_path
        self.current_stage: str | None = None

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.log_path.open("a", encoding="utf-8")
        self._lock = threading.Lock()

    def __enter__(self) -> AuditLogger:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager and close file."""
        self.close()

    def close(self) -> None:
        """Flush and close the log file handle."""
        with self._lock:
            if not self._file.closed:
                self._file.flush()
                self._file.close()

    def set_stage(self, stage: str | None) -> None:
        """Set the default stage context."""
        self.current_stage = stage

    def event(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        level: str = "INFO",
        stage: str | None = None,
        job_id: str | None = None,
    ) -> None:
        """Write structured event to log.

        Parameters
        ----------
        event_type : str
            Event type identifier (e.g., "stage_started").
        data : dict[str, Any] | None, optional
            Event-specific data payload.
        level : str, optional
            Log level ("DEBUG", "INFO", "WARN", "ERROR").
        stage : str | None, optional
            Stage identifier, uses current_stage if not provided.
        job_id : str | None, optional
            Job the event belongs to.
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")

        log_event = LogEvent(
            ts=get_iso_timestamp(),
            run_id=self.run_id,
            level=level,
            event=event_type,
            data=data or {},
            stage=stage if stage is not None else self.current_stage,
            job_id=job_id,
        )

        self._write_event(log_event)

    def _write_event(self, event: LogEvent) -> None:
        """Write event to JSONL file and flush."""
        line = json.dumps(asdict(event), ensure_ascii=False, separators=(",", ":"), default=str)
        with self._lock:
            if self._file.closed:
                return
            self._file.write(line + "\n")
            self._file.flush()

    def job_started(self, job_id: str, parameters: dict[str, Any]) -> None:
        """Log job_started event."""
        self.event("job_started", data={"parameters": parameters}, job_id=job_id)

    def job_finished(
        self,
        job_id: str,
        status: str,
        duration_seconds: float,
        records_processed: int | None = None,
    ) -> None:
        """Log job_finished event.

        Parameters
        ----------
        job_id : str
            Job identifier.
        status : str
            Terminal job status.
        duration_seconds : float
            Total execution time in seconds.
        records_processed : int | None, optional
            Total records processed.
        """
        data: dict[str, Any] = {
            "status": status,
            "duration_seconds": duration_seconds,
        }
        if records_processed is not None:
            data["records_processed"] = records_processed

        self.event("job_finished", data=data, job_id=job_id)

    def stage_started(
        self,
        stage: str,
        expected_records: int | None = None,
        job_id: str | None = None,
    ) -> None:
        """Log stage_started event."""
        data: dict[str, Any] = {}
        if expected_records is not None:
            data["expected_records"] = expected_records

        self.event("stage_started", data=data, stage=stage, job_id=job_id)

    def stage_finished(
        self,
        stage: str,
        duration_seconds: float,
        counters: dict[str, int] | None = None,
        job_id: str | None = None,
    ) -> None:
        """Log stage_finished event.

        Parameters
        ----------
        stage : str
            Stage identifier.
        duration_seconds : float
            Stage execution time in seconds.
        counters : dict[str, int] | None, optional
            Stage-specific counters.
        job_id : str | None, optional
            Job the stage belongs to.
        """
        data: dict[str, Any] = {"duration_seconds": duration_seconds}
        if counters:
            data["counters"] = counters

        self.event("stage_finished", data=data, stage=stage, job_id=job_id)

    def artifact_written(
        self,
        name: str,
        stage: str | None = None,
        record_count: int | None = None,
        job_id: str | None = None,
    ) -> None:
        """Log artifact_written event for output persisted to a store."""
        data: dict[str, Any] = {"name": name}
        if record_count is not None:
            data["record_count"] = record_count

        self.event("artifact_written", data=data, stage=stage, job_id=job_id)

    def error(
        self,
        exception_class: str,
        message: str,
        stage: str | None = None,
        job_id: str | None = None,
        traceback: str | None = None,
    ) -> None:
        """Log error event.

        Parameters
        ----------
        exception_class : str
            Exception class name.
        message : str
            Error message.
        stage : str | None, optional
            Stage where error occurred.
        job_id : str | None, optional
            Job the error belongs to.
        traceback : str | None, optional
            Stack trace.
        """
        data: dict[str, Any] = {
            "exception_class": exception_class,
            "message": message,
        }
        if traceback is not None:
            data["traceback"] = traceback

        self.event("error", data=data, stage=stage, level="ERROR", job_id=job_id)
