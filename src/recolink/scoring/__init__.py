"""Pairwise confidence scoring.

Main Components
---------------
- MatchScorer: weighted aggregation of field, model and rule signals
- resolve_model: model lookup with optional degradation to field-only scoring
"""

from recolink.scoring.comparators import exact_agreement, string_similarity
from recolink.scoring.models import FieldComparison, MatchScore
from recolink.scoring.scorer import MatchScorer, resolve_model, summarize

__all__ = [
    "MatchScorer",
    "MatchScore",
    "FieldComparison",
    "resolve_model",
    "summarize",
    "exact_agreement",
    "string_similarity",
]
