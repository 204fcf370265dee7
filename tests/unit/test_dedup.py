"""Tests for entity deduplication and golden-record selection."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import pytest

from recolink.adapters import InMemoryModelStore, InMemorySearchIndex
from recolink.audit.logger import AuditLogger
from recolink.dedup import (
    DeduplicationConfig,
    DeduplicationEngine,
    UnionFind,
    build_cluster,
    compute_cluster_id,
    select_golden,
)
from recolink.errors import InvalidStateError, ValidationError
from recolink.models import EntityRecord, Record
from recolink.models.request import ReconciliationConfiguration
from recolink.registry import ModelRegistry
from recolink.rules import (
    ExceptionRule,
    MatchingRule,
    PairCondition,
    RecordCondition,
    ValidationRule,
)


def _scoring(**overrides: object) -> ReconciliationConfiguration:
    return replace(DeduplicationConfig().scoring, **overrides)


def _read_events(path: Path) -> list[dict]:
    """Read JSONL events from file."""
    with path.open("r") as fh:
        return [json.loads(line) for line in fh]


@pytest.fixture
def corpus(make_entity: Callable[..., EntityRecord]) -> list[EntityRecord]:
    """Existing entities: a golden Acme, a duplicate Acme and an unrelated one."""
    return [
        make_entity("e1", "Acme Corporation", golden=True, country="DE"),
        make_entity("e2", "ACME Corp", country="FR"),
        make_entity("e3", "Hooli", country="US"),
    ]


# ============================================================================
# find_duplicates
# ============================================================================


@pytest.mark.unit
def test_find_duplicates_orders_golden_first(
    corpus: list[EntityRecord], make_entity: Callable[..., EntityRecord]
) -> None:
    """Test duplicates are unique, scored and golden-first."""
    probe = make_entity("new", "Acme Corp", country="DE")

    found = DeduplicationEngine().find_duplicates(probe, corpus)

    assert [e.primary_identifier for e in found] == ["e1", "e2"]
    assert found[0].is_golden_record
    assert found[0].confidence == pytest.approx(0.72)
    assert found[1].confidence == 1.0


@pytest.mark.unit
def test_find_duplicates_uses_configured_index(
    corpus: list[EntityRecord], make_entity: Callable[..., EntityRecord]
) -> None:
    """Test the engine searches its index when no corpus is given."""
    engine = DeduplicationEngine(InMemorySearchIndex(corpus))

    found = engine.find_duplicates(make_entity("new", "Hooli Inc"))

    assert [e.primary_identifier for e in found] == ["e3"]


@pytest.mark.unit
def test_find_duplicates_identifier_hit(
    corpus: list[EntityRecord], make_entity: Callable[..., EntityRecord]
) -> None:
    """Test an entity with a known identifier is retrieved even with a new name."""
    found = DeduplicationEngine().find_duplicates(make_entity("e3", "Renamed Ltd"), corpus)

    assert "e3" in [e.primary_identifier for e in found]


@pytest.mark.unit
def test_find_duplicates_exception_rule_excludes(
    corpus: list[EntityRecord], make_entity: Callable[..., EntityRecord]
) -> None:
    """Test an exception rule removes a candidate."""
    rule = ExceptionRule(
        name="other-country", condition=PairCondition("fields_differ", ("country",))
    )
    engine = DeduplicationEngine(config=DeduplicationConfig(scoring=_scoring(rules=(rule,))))

    found = engine.find_duplicates(make_entity("new", "Acme Corp", country="DE"), corpus)

    assert [e.primary_identifier for e in found] == ["e1"]


@pytest.mark.unit
def test_find_duplicates_model_threshold_and_forced_inclusion(
    corpus: list[EntityRecord],
    make_entity: Callable[..., EntityRecord],
    make_model_payload: Callable[..., bytes],
) -> None:
    """Test low model scores drop candidates unless a matching rule fires."""
    store = InMemoryModelStore()
    store.put("scoring-v1", "1", make_model_payload(bias=-10.0))
    registry = ModelRegistry(store, load_backoff=0.0)
    probe = make_entity("new", "Acme Corp")

    strict = DeduplicationEngine(
        config=DeduplicationConfig(scoring=_scoring(enable_ml_matching=True)), registry=registry
    )
    assert strict.find_duplicates(probe, corpus) == []

    same_name = MatchingRule(name="same-name", condition=PairCondition("fields_equal", ("name",)))
    forced = DeduplicationEngine(
        config=DeduplicationConfig(scoring=_scoring(enable_ml_matching=True, rules=(same_name,))),
        registry=registry,
    )
    assert [e.primary_identifier for e in forced.find_duplicates(probe, corpus)] == ["e2"]


@pytest.mark.unit
def test_find_duplicates_without_index(make_entity: Callable[..., EntityRecord]) -> None:
    """Test lookup without index or corpus is an invalid state."""
    with pytest.raises(InvalidStateError):
        DeduplicationEngine().find_duplicates(make_entity("x", "Acme"))


@pytest.mark.unit
def test_find_duplicates_logs_counters(
    corpus: list[EntityRecord], make_entity: Callable[..., EntityRecord], tmp_path: Path
) -> None:
    """Test the lookup emits one duplicates_found event."""
    log_path = tmp_path / "events.jsonl"
    with AuditLogger(run_id="test", log_path=log_path) as logger:
        DeduplicationEngine(logger=logger).find_duplicates(make_entity("new", "Acme Corp"), corpus)

    (event,) = _read_events(log_path)
    assert event["event"] == "duplicates_found"
    assert event["data"]["retrieved"] == 2
    assert event["data"]["duplicates"] == 2


# ============================================================================
# deduplicate
# ============================================================================


@pytest.mark.unit
def test_deduplicate_clusters_dataset() -> None:
    """Test each record lands in exactly one cluster with one golden record."""
    records = [
        Record("a", {"id": "a", "name": "Acme Corp"}),
        Record("b", {"id": "b", "name": "ACME Corp."}),
        Record("c", {"id": "c", "name": "Globex"}),
        Record("d", {"id": "d", "name": "Acme Corporation"}),
    ]

    clusters = DeduplicationEngine().deduplicate(records)

    assert [c.identifiers for c in clusters] == [["a", "b"], ["c"], ["d"]]
    assert [c.golden.primary_identifier for c in clusters] == ["a", "c", "d"]
    for cluster in clusters:
        assert sum(m.is_golden_record for m in cluster.members) == 1
    identifiers = [i for c in clusters for i in c.identifiers]
    assert sorted(identifiers) == ["a", "b", "c", "d"]
    assert clusters[0].cluster_id == compute_cluster_id(["b", "a"])


@pytest.mark.unit
def test_deduplicate_rejects_duplicate_identifiers() -> None:
    """Test repeated identifiers are a validation error."""
    records = [Record("a", {"name": "Acme"}), Record("a", {"name": "Acme"})]

    with pytest.raises(ValidationError, match="Duplicate identifier"):
        DeduplicationEngine().deduplicate(records)


# ============================================================================
# Golden selection and merging
# ============================================================================


@pytest.mark.unit
def test_select_golden_ranking(make_entity: Callable[..., EntityRecord]) -> None:
    """Test golden flag, confidence, completeness, age, then identifier."""
    early = datetime(2024, 1, 1, tzinfo=UTC)
    late = datetime(2025, 1, 1, tzinfo=UTC)

    assert select_golden([make_entity("a", "A"), make_entity("b", "B", golden=True)]) == "b"
    assert select_golden([make_entity("a", "A"), make_entity("b", "B", confidence=0.9)]) == "b"
    assert select_golden([make_entity("a", "A"), make_entity("b", "B", city="Paris")]) == "b"
    older = EntityRecord("b", "B", created_at=early)
    newer = EntityRecord("a", "A", created_at=late)
    assert select_golden([newer, older]) == "b"
    assert select_golden([make_entity("b", "B"), make_entity("a", "A")]) == "a"

    with pytest.raises(ValueError):
        select_golden([])


@pytest.mark.unit
def test_build_cluster_demotes_extra_golden(make_entity: Callable[..., EntityRecord]) -> None:
    """Test a cluster keeps exactly one golden record."""
    cluster = build_cluster(
        [make_entity("b", "B", golden=True), make_entity("a", "A", golden=True, confidence=0.5)]
    )

    assert cluster.identifiers == ["a", "b"]
    assert [m.is_golden_record for m in cluster.members] == [True, False]


@pytest.fixture
def cluster(make_entity: Callable[..., EntityRecord]):
    return build_cluster(
        [
            make_entity("g", "Acme", golden=True, confidence=0.5, tax_id="1"),
            make_entity("m", "Acme Co", confidence=0.3, tax_id="1"),
        ]
    )


@pytest.mark.unit
def test_merge_transfers_golden_to_better_candidate(
    cluster, make_entity: Callable[..., EntityRecord]
) -> None:
    """Test a strictly more confident candidate becomes golden."""
    members = DeduplicationEngine().merge_cluster(
        cluster, make_entity("x", "Acme", confidence=0.9, tax_id="1")
    )

    assert [m.primary_identifier for m in members] == ["x", "g", "m"]
    assert [m.is_golden_record for m in members] == [True, False, False]


@pytest.mark.unit
def test_merge_keeps_golden_for_weaker_candidate(
    cluster, make_entity: Callable[..., EntityRecord]
) -> None:
    """Test the golden record survives a less confident candidate."""
    members = DeduplicationEngine().merge_cluster(
        cluster, make_entity("x", "Acme", confidence=0.4, tax_id="1")
    )

    assert [m.primary_identifier for m in members] == ["g", "m", "x"]
    assert [m.is_golden_record for m in members] == [True, False, False]


@pytest.mark.unit
def test_merge_blocked_by_validation_rule(
    cluster, make_entity: Callable[..., EntityRecord]
) -> None:
    """Test a candidate failing a validation rule never takes over."""
    rule = ValidationRule(name="has-tax", condition=RecordCondition("present", "tax_id"))
    engine = DeduplicationEngine(config=DeduplicationConfig(scoring=_scoring(rules=(rule,))))

    members = engine.merge_cluster(cluster, make_entity("x", "Acme", confidence=0.9))

    assert members[0].primary_identifier == "g"
    assert sum(m.is_golden_record for m in members) == 1


@pytest.mark.unit
def test_merge_updates_golden_in_place(
    cluster, make_entity: Callable[..., EntityRecord]
) -> None:
    """Test re-merging the golden record keeps it golden."""
    members = DeduplicationEngine().merge_cluster(
        cluster, make_entity("g", "Acme Renamed", confidence=0.1)
    )

    assert members[0].primary_identifier == "g"
    assert members[0].primary_name == "Acme Renamed"
    assert members[0].is_golden_record
    assert len(members) == 2


# ============================================================================
# UnionFind
# ============================================================================


@pytest.mark.unit
def test_union_find_components() -> None:
    """Test unions produce sorted, disjoint components."""
    uf = UnionFind(["d", "a", "c", "b", "e"])

    assert uf.union("a", "b")
    assert uf.union("c", "b")
    assert not uf.union("a", "c")

    assert uf.components() == [["a", "b", "c"], ["d"], ["e"]]
    assert uf.find("c") == uf.find("a")
    assert "z" not in uf
