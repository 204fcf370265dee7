"""Candidate pair generation via blocking strategies."""

from recolink.candidates.blockers import (
    Blocker,
    BlockerStats,
    FieldExactBlocker,
    IdentifierPrefixBlocker,
    MinHashLSHNameBlocker,
    NameTokenBlocker,
)
from recolink.candidates.factory import (
    BLOCKER_REGISTRY,
    BlockerConfig,
    create_blocker,
    create_blockers,
)
from recolink.candidates.generator import CandidateGenerator, generate_candidates
from recolink.candidates.models import CandidateBlock, CandidatePair, CandidateSource

__all__ = [
    # Protocol
    "Blocker",
    "BlockerStats",
    # Blockers
    "FieldExactBlocker",
    "IdentifierPrefixBlocker",
    "NameTokenBlocker",
    "MinHashLSHNameBlocker",
    # Factory
    "BLOCKER_REGISTRY",
    "BlockerConfig",
    "create_blocker",
    "create_blockers",
    # Generator
    "CandidateGenerator",
    "generate_candidates",
    # Models
    "CandidateBlock",
    "CandidatePair",
    "CandidateSource",
]
