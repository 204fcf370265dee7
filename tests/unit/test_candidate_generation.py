"""Tests for candidate pair generation orchestrator."""

from __future__ import annotations

import json
from itertools import product
from pathlib import Path

import pytest

from recolink.audit.logger import AuditLogger
from recolink.candidates import (
    CandidateGenerator,
    FieldExactBlocker,
    NameTokenBlocker,
    generate_candidates,
)
from recolink.errors import ValidationError
from recolink.models import Record


def _record(rid: str, name: str | None = None, tax_id: str | None = None) -> Record:
    """Build a minimal record with optional name and tax id."""
    fields = {}
    if name is not None:
        fields["name"] = name
    if tax_id is not None:
        fields["tax_id"] = tax_id
    return Record(rid, fields)


def _blockers() -> list:
    return [NameTokenBlocker("name"), FieldExactBlocker("tax_id")]


def _read_events(path: Path) -> list[dict]:
    """Read JSONL events from file."""
    with path.open("r") as fh:
        return [json.loads(line) for line in fh]


# ============================================================================
# Core pair generation
# ============================================================================


@pytest.mark.unit
def test_shared_key_produces_one_pair() -> None:
    """Two records sharing a key produce exactly one cross pair."""
    source = [_record("s1", tax_id="123"), _record("s2", tax_id="999")]
    target = [_record("t1", tax_id="123")]

    pairs = list(generate_candidates([FieldExactBlocker("tax_id")], source, target))

    assert [p.pair_id for p in pairs] == ["s1|t1"]
    assert pairs[0].left.rid == "s1"
    assert pairs[0].right.rid == "t1"
    assert pairs[0].source.blocker == "field_exact:tax_id"
    assert pairs[0].source.block_key == "fx:123"


@pytest.mark.unit
def test_pairs_match_brute_force_key_overlap() -> None:
    """Every pair sharing a key appears exactly once and no other pair appears."""
    source = [
        _record("s1", "Acme Corp", "1"),
        _record("s2", "Acme Holdings", "2"),
        _record("s3", "Zeta Labs", "3"),
        _record("s4", None, "4"),
    ]
    target = [
        _record("t1", "Acme Corporation", "1"),
        _record("t2", "Holdings Group", "9"),
        _record("t3", "Omega", "4"),
        _record("t4", "Unrelated", None),
    ]
    blockers = _blockers()

    def keys(record: Record) -> set[tuple[str, str]]:
        return {(b.name, k) for b in blockers for k in b.block_keys(record)}

    expected = {
        f"{a.rid}|{b.rid}" for a, b in product(source, target) if keys(a) & keys(b)
    }

    pair_ids = [p.pair_id for p in generate_candidates(blockers, source, target)]

    assert len(pair_ids) == len(set(pair_ids))
    assert set(pair_ids) == expected
    assert expected == {"s1|t1", "s2|t1", "s2|t2", "s4|t3"}


@pytest.mark.unit
def test_separator_in_ids_keeps_distinct_pairs() -> None:
    """Pairs whose display ids collide on "|" are still both generated."""
    source = [_record("x|y", name="Acme"), _record("x", name="Acme")]
    target = [_record("z", name="Acme"), _record("y|z", name="Acme")]

    pairs = list(generate_candidates([NameTokenBlocker("name")], source, target))

    assert sorted((p.left.rid, p.right.rid) for p in pairs) == [
        ("x", "y|z"),
        ("x", "z"),
        ("x|y", "y|z"),
        ("x|y", "z"),
    ]
    assert [p.pair_id for p in pairs].count("x|y|z") == 2


@pytest.mark.unit
def test_records_without_keys_produce_no_pairs() -> None:
    """All-different values yield zero pairs."""
    source = [_record(f"s{i}", tax_id=f"1{i}") for i in range(5)]
    target = [_record(f"t{i}", tax_id=f"2{i}") for i in range(5)]

    assert list(generate_candidates([FieldExactBlocker("tax_id")], source, target)) == []


@pytest.mark.unit
def test_within_dataset_block_combinatorics() -> None:
    """N records in one block yield N*(N-1)/2 ordered pairs in single-set mode."""
    n = 5
    records = [_record(f"r{i:02d}", tax_id="same") for i in reversed(range(n))]

    pairs = list(generate_candidates([FieldExactBlocker("tax_id")], records))

    assert len(pairs) == n * (n - 1) // 2
    assert all(p.left.rid < p.right.rid for p in pairs)


@pytest.mark.unit
def test_deterministic_output() -> None:
    """Shuffled input produces the same pairs in the same order."""
    source = [_record(c, "Acme Corp") for c in ("c", "a", "b")]
    target = [_record(f"t{c}", "Acme") for c in ("2", "1")]

    first = [p.pair_id for p in generate_candidates(_blockers(), source, target)]
    second = [
        p.pair_id
        for p in generate_candidates(_blockers(), list(reversed(source)), list(reversed(target)))
    ]

    assert first == second


@pytest.mark.unit
def test_duplicate_record_id_rejected() -> None:
    """Duplicate ids inside one dataset raise ValidationError."""
    source = [_record("s1", tax_id="1"), _record("s1", tax_id="2")]

    with pytest.raises(ValidationError, match="Duplicate record id 's1'"):
        list(generate_candidates([FieldExactBlocker("tax_id")], source, []))


@pytest.mark.unit
def test_generator_requires_blockers() -> None:
    """An empty blocker list is rejected."""
    with pytest.raises(ValidationError):
        CandidateGenerator([])


@pytest.mark.unit
def test_blocks_are_disjoint() -> None:
    """No pair appears in two blocks."""
    source = [_record("s1", "Acme Corp", "1"), _record("s2", "Acme Corp", "1")]
    target = [_record("t1", "Acme Corp", "1"), _record("t2", "Acme", "2")]

    blocks = list(CandidateGenerator(_blockers()).iter_blocks(source, target))

    seen: list[str] = [p.pair_id for block in blocks for p in block.pairs]
    assert len(seen) == len(set(seen))
    assert set(seen) == {"s1|t1", "s1|t2", "s2|t1", "s2|t2"}
    assert all(len(block) > 0 for block in blocks)


# ============================================================================
# Statistics
# ============================================================================


@pytest.mark.unit
def test_stats_attribute_pair_to_first_block() -> None:
    """A pair found by several blockers counts as unique only once."""
    source = [_record("a", "Acme Corp", "1")]
    target = [_record("b", "Acme Corp", "1")]
    generator = CandidateGenerator(_blockers())

    pairs = list(generator.generate(source, target))
    summary = generator.summary()

    assert [p.pair_id for p in pairs] == ["a|b"]
    assert pairs[0].source.blocker == "field_exact:tax_id"

    fx = summary["blockers"]["field_exact:tax_id"]
    assert fx["records_seen"] == 2
    assert fx["records_keyed"] == 2
    assert fx["unique_keys"] == 1
    assert fx["blocks_gt1"] == 1
    assert fx["pairs_raw"] == 1
    assert fx["pairs_unique"] == 1

    nt = summary["blockers"]["name_token:name"]
    assert nt["unique_keys"] == 2
    assert nt["pairs_raw"] == 2
    assert nt["pairs_unique"] == 0
    assert summary["global"]["pairs_total_unique"] == 1


# ============================================================================
# Audit logging
# ============================================================================


@pytest.mark.unit
def test_audit_events_emitted(tmp_path: Path) -> None:
    """Generator emits stage_started and stage_finished with counters."""
    log_path = tmp_path / "events.jsonl"
    with AuditLogger(run_id="test", log_path=log_path) as logger:
        list(
            generate_candidates(
                [FieldExactBlocker("tax_id")],
                [_record("a", tax_id="1")],
                [_record("b", tax_id="1")],
                logger=logger,
            )
        )

    events = _read_events(log_path)
    assert [e["event"] for e in events] == ["stage_started", "stage_finished"]
    counters = events[-1]["data"]["counters"]
    assert counters["pairs_total_unique"] == 1
    assert counters["field_exact:tax_id_pairs_unique"] == 1


@pytest.mark.unit
def test_oversized_block_warning(tmp_path: Path) -> None:
    """Blocks larger than max_block_size are reported but still scored."""
    log_path = tmp_path / "events.jsonl"
    with AuditLogger(run_id="test", log_path=log_path) as logger:
        pairs = list(
            generate_candidates(
                [FieldExactBlocker("tax_id")],
                [_record("a", tax_id="1")],
                [_record("b", tax_id="1")],
                logger=logger,
                max_block_size=1,
            )
        )

    assert len(pairs) == 1
    warning = next(e for e in _read_events(log_path) if e["event"] == "oversized_block")
    assert warning["level"] == "WARN"
    assert warning["data"]["block_size"] == 2
    assert warning["data"]["blocker"] == "field_exact:tax_id"
