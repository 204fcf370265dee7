"""Job execution: orchestration, phase pipeline, retries and lifecycle."""

from recolink.engine.config import (
    EngineConfig,
    ReconciliationResult,
    ResourceLimits,
    RetryPolicy,
)
from recolink.engine.job_state import ALLOWED_TRANSITIONS, can_transition, transition
from recolink.engine.orchestrator import JobHandle, JobOrchestrator
from recolink.engine.retry import call_with_retry
from recolink.engine.runner import PHASE_PROGRESS, JobRun, prepare_records

__all__ = [
    "ALLOWED_TRANSITIONS",
    "EngineConfig",
    "JobHandle",
    "JobOrchestrator",
    "JobRun",
    "PHASE_PROGRESS",
    "ReconciliationResult",
    "ResourceLimits",
    "RetryPolicy",
    "call_with_retry",
    "can_transition",
    "prepare_records",
    "transition",
]
