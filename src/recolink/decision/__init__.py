"""Threshold classification of match confidence.

This module turns an aggregated confidence into one of the pipeline
statuses:
- EXACT_MATCH / FUZZY_MATCH / PARTIAL_MATCH for increasingly weak links
- PENDING_REVIEW for the tenant-configured ambiguous band
- NO_MATCH below the review floor
"""

from recolink.decision.models import ReasonCode, Thresholds
from recolink.decision.policy import LINKING_STATUSES, classify, is_linked

__all__ = [
    "LINKING_STATUSES",
    "ReasonCode",
    "Thresholds",
    "classify",
    "is_linked",
]
