"""Cross-environment record reconciliation.

This package provides:
- Data models (recolink.models): records, jobs, matches and requests
- Rules (recolink.rules): matching, exception, validation and transformation rules
- Candidates (recolink.candidates): blocking and candidate generation
- Scoring (recolink.scoring): exact, fuzzy, rule and model signals
- Decision (recolink.decision): threshold classification
- Deduplication (recolink.dedup): duplicate clusters and golden records
- Registry (recolink.registry): versioned, hot-swapped scoring models
- Engine (recolink.engine): job orchestration
- Review (recolink.review): human review of matches
- Audit (recolink.audit): JSONL audit logging
- Adapters (recolink.adapters): in-memory and file-backed ports
- CLI (recolink.cli): command-line interface
- Public API (recolink.api): service facade and request loading
"""

__version__ = "0.1.0"
__license__ = "MIT"

from recolink.api import (
    ReconciliationService,
    ReviewUpdate,
    build_in_memory_service,
    load_request,
    request_from_dict,
)
from recolink.errors import RecolinkError
from recolink.models import EntityRecord, MatchFilter, MatchStatus, Record
from recolink.models.request import ReconciliationConfiguration, ReconciliationRequest

__all__ = [
    "__version__",
    "__license__",
    "EntityRecord",
    "MatchFilter",
    "MatchStatus",
    "Record",
    "ReconciliationConfiguration",
    "ReconciliationRequest",
    "ReconciliationService",
    "RecolinkError",
    "ReviewUpdate",
    "build_in_memory_service",
    "load_request",
    "request_from_dict",
]
