"""Audit logging subsystem for recolink.

Main Components
---------------
- AuditLogger: JSONL event logger shared by all jobs of a service run
"""

from recolink.audit.helpers import generate_id, generate_run_id, parse_iso_timestamp
from recolink.audit.logger import LEVELS, AuditLogger
from recolink.audit.models import LogEvent
from recolink.utils import get_iso_timestamp

__all__ = [
    "AuditLogger",
    "LEVELS",
    "LogEvent",
    "generate_id",
    "generate_run_id",
    "get_iso_timestamp",
    "parse_iso_timestamp",
]
