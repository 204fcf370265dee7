"""Core data models for recolink.

Request and configuration types live in ``recolink.models.request`` and
are imported from there explicitly.
"""

from recolink.models.jobs import (
    TERMINAL_STATUSES,
    FieldDifference,
    JobStatus,
    JobType,
    MatchFilter,
    MatchStatus,
    Page,
    ReconciliationJob,
    ReconciliationMatch,
)
from recolink.models.records import EntityRecord, Record, name_tokens, normalize_text

__all__ = [
    # Records
    "Record",
    "EntityRecord",
    "normalize_text",
    "name_tokens",
    # Jobs and matches
    "JobStatus",
    "JobType",
    "MatchStatus",
    "TERMINAL_STATUSES",
    "FieldDifference",
    "ReconciliationJob",
    "ReconciliationMatch",
    "MatchFilter",
    "Page",
]
