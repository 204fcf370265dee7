"""Data models for candidate pair representation.

This module defines the schema for candidate pairs produced by the
blocking/indexing stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from recolink.models.records import Record


@dataclass(frozen=True)
class CandidateSource:
    """Provenance information for a candidate pair.

    Attributes
    ----------
    blocker : str
        Name of the blocker that generated this pair.
    block_key : str
        The exact value used for blocking.
    match_key : str
        Field name used for matching.
    """

    blocker: str
    block_key: str
    match_key: str


@dataclass(frozen=True)
class CandidatePair:
    """A candidate pair with provenance.

    Attributes
    ----------
    pair_id : str
        Display identifier ("rid_a|rid_b"); not unique when ids contain "|".
    left : Record
        Source record (or lexicographically smaller record within one set).
    right : Record
        Target record (or lexicographically larger record within one set).
    source : CandidateSource
        First block that emitted this pair.
    """

    pair_id: str
    left: Record
    right: Record
    source: CandidateSource

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "pair_id": self.pair_id,
            "rid_a": self.left.rid,
            "rid_b": self.right.rid,
            "source": {
                "blocker": self.source.blocker,
                "block_key": self.source.block_key,
                "match_key": self.source.match_key,
            },
        }


@dataclass(frozen=True)
class CandidateBlock:
    """Unique pairs first emitted by one block, scored as an independent unit."""

    block_key: str
    pairs: tuple[CandidatePair, ...]

    def __len__(self) -> int:
        return len(self.pairs)
