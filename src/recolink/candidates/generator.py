"""Candidate pair generation orchestrator.

Coordinates multiple blocker plug-ins to produce a single, deduplicated,
lazy stream of candidate pairs. Two modes are supported:

* cross-dataset: every pair is (source record, target record);
* within-dataset: ``records_b`` is ``None`` and pairs are drawn from one
  set, ordered by record id.

A pair sharing several block keys is emitted exactly once, attributed to
the first block (in sorted key order) that produced it. Pairs sharing no
key are never produced.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from itertools import combinations, product
from typing import Any

from recolink.audit.logger import AuditLogger
from recolink.candidates.blockers import Blocker, BlockerStats
from recolink.candidates.models import CandidateBlock, CandidatePair, CandidateSource
from recolink.errors import ValidationError
from recolink.models.records import Record

DEFAULT_MAX_BLOCK_SIZE = 1000
STAGE_NAME = "candidate_generation"

_LEFT = 0
_RIGHT = 1


@dataclass
class _BlockIndex:
    """Inverted index entry: record ids per side for one block key."""

    blocker: Blocker
    key: str
    sides: tuple[list[str], list[str]] = field(default_factory=lambda: ([], []))


class CandidateGenerator:
    """Blocking-based candidate generator.

    Parameters
    ----------
    blockers : list[Blocker]
        Blocker plug-ins to apply (order-independent).
    logger : AuditLogger | None, optional
        Audit logger for observability events.
    max_block_size : int, optional
        Log a warning when a block exceeds this size.

    Attributes
    ----------
    stats : dict[str, BlockerStats]
        Per-blocker counters of the most recent run.
    """

    def __init__(
        self,
        blockers: list[Blocker],
        *,
        logger: AuditLogger | None = None,
        max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
    ) -> None:
        if not blockers:
            raise ValidationError("At least one blocker is required")
        # Sort blockers for deterministic output
        self.blockers = sorted(blockers, key=lambda b: b.name)
        self.logger = logger
        self.max_block_size = max_block_size
        self.stats: dict[str, BlockerStats] = {}
        self.pairs_total_unique = 0

    def generate(
        self,
        records_a: Iterable[Record],
        records_b: Iterable[Record] | None = None,
    ) -> Iterator[CandidatePair]:
        """Lazily yield unique candidate pairs.

        Parameters
        ----------
        records_a : Iterable[Record]
            Source records (or the single set for deduplication).
        records_b : Iterable[Record] | None, optional
            Target records; ``None`` selects within-dataset mode.

        Yields
        ------
        CandidatePair
            Each pair sharing at least one block key, exactly once.
        """
        for block in self.iter_blocks(records_a, records_b):
            yield from block.pairs

    def iter_blocks(
        self,
        records_a: Iterable[Record],
        records_b: Iterable[Record] | None = None,
    ) -> Iterator[CandidateBlock]:
        """Lazily yield blocks of unique pairs, in sorted block-key order.

        Blocks are disjoint in pairs and share no mutable state, so they can
        be scored concurrently.
        """
        start = time.perf_counter()
        if self.logger:
            self.logger.stage_started(STAGE_NAME)

        within = records_b is None
        left = _index_by_rid(records_a, "source")
        right = left if within else _index_by_rid(records_b or [], "target")

        index = self._build_index(left, None if within else right)

        seen: set[tuple[str, str]] = set()
        for entry in index:
            stats = self.stats[entry.blocker.name]
            block_pairs = self._block_pairs(entry, left, right, within, stats, seen)
            if block_pairs:
                yield CandidateBlock(
                    block_key=f"{entry.blocker.name}/{entry.key}", pairs=tuple(block_pairs)
                )

        self.pairs_total_unique = len(seen)

        if self.logger:
            counters: dict[str, int] = {}
            for bname, bstats in self.stats.items():
                for key, value in bstats.to_dict().items():
                    counters[f"{bname}_{key}"] = value
            counters["pairs_total_unique"] = self.pairs_total_unique
            self.logger.stage_finished(
                stage=STAGE_NAME,
                duration_seconds=time.perf_counter() - start,
                counters=counters,
            )

    def summary(self) -> dict[str, Any]:
        """``{"blockers": {name: stats}, "global": {...}}`` of the last run."""
        return {
            "blockers": {name: s.to_dict() for name, s in self.stats.items()},
            "global": {"pairs_total_unique": self.pairs_total_unique},
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_index(
        self,
        left: dict[str, Record],
        right: dict[str, Record] | None,
    ) -> list[_BlockIndex]:
        """Index records by blocker keys: (blocker, key) → rids per side."""
        self.stats = {b.name: BlockerStats() for b in self.blockers}
        entries: dict[tuple[str, str], _BlockIndex] = {}

        sides = [(_LEFT, left)] if right is None else [(_LEFT, left), (_RIGHT, right)]
        for blocker in self.blockers:
            stats = self.stats[blocker.name]
            for side, records in sides:
                for rid in sorted(records):
                    stats.records_seen += 1
                    keys = list(dict.fromkeys(blocker.block_keys(records[rid])))
                    if not keys:
                        continue
                    stats.records_keyed += 1
                    for key in keys:
                        entry = entries.get((blocker.name, key))
                        if entry is None:
                            entry = _BlockIndex(blocker=blocker, key=key)
                            entries[(blocker.name, key)] = entry
                        entry.sides[side].append(rid)

        for bname, _ in entries:
            self.stats[bname].unique_keys += 1

        return [entries[k] for k in sorted(entries)]

    def _block_pairs(
        self,
        entry: _BlockIndex,
        left: dict[str, Record],
        right: dict[str, Record],
        within: bool,
        stats: BlockerStats,
        seen: set[tuple[str, str]],
    ) -> list[CandidatePair]:
        """Emit the pairs of one block that no earlier block produced."""
        left_rids, right_rids = entry.sides
        if within:
            rid_pairs: Iterable[tuple[str, str]] = combinations(sorted(set(left_rids)), 2)
            block_size = len(set(left_rids))
            productive = block_size >= 2
        else:
            rid_pairs = product(sorted(set(left_rids)), sorted(set(right_rids)))
            block_size = len(set(left_rids)) + len(set(right_rids))
            productive = bool(left_rids) and bool(right_rids)

        if not productive:
            return []

        stats.blocks_gt1 += 1
        stats.max_block = max(stats.max_block, block_size)

        if block_size > self.max_block_size and self.logger:
            self.logger.event(
                "oversized_block",
                data={
                    "blocker": entry.blocker.name,
                    "block_key": entry.key[:100],
                    "block_size": block_size,
                    "max_block_size": self.max_block_size,
                },
                level="WARN",
                stage=STAGE_NAME,
            )

        source = CandidateSource(
            blocker=entry.blocker.name,
            block_key=entry.key,
            match_key=entry.blocker.match_key,
        )

        pairs: list[CandidatePair] = []
        for rid_a, rid_b in rid_pairs:
            stats.pairs_raw += 1
            if (rid_a, rid_b) in seen:
                continue
            seen.add((rid_a, rid_b))
            stats.pairs_unique += 1
            pairs.append(
                CandidatePair(
                    pair_id=f"{rid_a}|{rid_b}",
                    left=left[rid_a],
                    right=right[rid_b],
                    source=source,
                )
            )
        return pairs


def generate_candidates(
    blockers: list[Blocker],
    records_a: Iterable[Record],
    records_b: Iterable[Record] | None = None,
    *,
    logger: AuditLogger | None = None,
    max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
) -> Iterator[CandidatePair]:
    """Generate candidate pairs from *records_a* (and *records_b*) using *blockers*.

    Parameters
    ----------
    blockers : list[Blocker]
        Blocker plug-ins to apply.
    records_a : Iterable[Record]
        Source records, or the single set in within-dataset mode.
    records_b : Iterable[Record] | None, optional
        Target records.
    logger : AuditLogger | None, optional
        Audit logger for observability events.
    max_block_size : int, optional
        Log a warning when a block exceeds this size.

    Returns
    -------
    Iterator[CandidatePair]
        Lazy stream of unique pairs.
    """
    generator = CandidateGenerator(blockers, logger=logger, max_block_size=max_block_size)
    return generator.generate(records_a, records_b)


def _index_by_rid(records: Iterable[Record], side: str) -> dict[str, Record]:
    """Map rid → record, rejecting duplicate ids within one dataset."""
    by_rid: dict[str, Record] = {}
    for record in records:
        if record.rid in by_rid:
            raise ValidationError(f"Duplicate record id {record.rid!r} in {side} dataset")
        by_rid[record.rid] = record
    return by_rid
