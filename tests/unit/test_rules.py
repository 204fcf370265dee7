"""Tests for reconciliation rules and their evaluation order."""

from __future__ import annotations

import pytest

from recolink.errors import ConfigurationError
from recolink.models import Record
from recolink.rules import (
    ExceptionRule,
    MatchingRule,
    PairCondition,
    RecordCondition,
    RuleSet,
    RuleType,
    TransformationRule,
    ValidationRule,
    rule_from_dict,
    rules_from_dicts,
)

LEFT = Record("a", {"name": "Acme Corp", "tax_id": "123", "country": "DE"})
RIGHT = Record("b", {"name": "ACME corp", "tax_id": "123", "country": "FR"})


# ============================================================================
# Conditions
# ============================================================================


@pytest.mark.unit
@pytest.mark.parametrize(
    ("op", "fields", "expected"),
    [
        ("fields_equal", ("name", "tax_id"), True),
        ("fields_equal", ("name", "country"), False),
        ("fields_equal", ("name", "city"), False),
        ("fields_differ", ("country",), True),
        ("fields_differ", ("name", "city"), False),
        ("both_present", ("name", "country"), True),
        ("both_present", ("city",), False),
        ("any_missing", ("city",), True),
        ("any_missing", ("tax_id",), False),
    ],
)
def test_pair_condition(op: str, fields: tuple[str, ...], expected: bool) -> None:
    """Test pair operators on normalized values."""
    assert PairCondition(op, fields)(LEFT, RIGHT) is expected


@pytest.mark.unit
def test_record_condition() -> None:
    """Test record operators."""
    record = Record("r", {"tax_id": "DE-123", "country": "de"})

    assert RecordCondition("present", "tax_id")(record)
    assert not RecordCondition("present", "city")(record)
    assert RecordCondition("matches", "tax_id", pattern=r"^[A-Z]{2}-\d+$")(record)
    assert RecordCondition("in", "country", values=frozenset({"DE", "FR"}))(record)
    assert not RecordCondition("in", "country", values=frozenset({"US"}))(record)


@pytest.mark.unit
@pytest.mark.parametrize(
    "build",
    [
        lambda: PairCondition("sounds_like", ("name",)),
        lambda: PairCondition("fields_equal", ()),
        lambda: RecordCondition("matches", "name"),
        lambda: RecordCondition("matches", "name", pattern="("),
        lambda: RecordCondition("in", "name"),
    ],
    ids=["unknown_pair_op", "no_fields", "no_pattern", "bad_pattern", "no_values"],
)
def test_invalid_conditions(build) -> None:
    """Test malformed conditions are rejected at construction."""
    with pytest.raises(ConfigurationError):
        build()


# ============================================================================
# Factory
# ============================================================================


@pytest.mark.unit
def test_rule_from_dict_builds_each_type() -> None:
    """Test every rule type is built from its document form."""
    rules = rules_from_dicts(
        [
            {
                "type": "matching",
                "name": "same-tax",
                "priority": 5,
                "condition": {"op": "fields_equal", "fields": ["tax_id"]},
                "boost": 0.1,
            },
            {
                "type": "EXCEPTION",
                "name": "country",
                "condition": {"op": "fields_differ", "fields": ["country"]},
            },
            {
                "type": "VALIDATION",
                "name": "has-tax",
                "condition": {"op": "present", "field": "tax_id"},
            },
            {"type": "TRANSFORMATION", "name": "digits", "field": "tax_id", "transform": "digits_only"},
        ]
    )

    assert [r.rule_type for r in rules] == [
        RuleType.MATCHING,
        RuleType.EXCEPTION,
        RuleType.VALIDATION,
        RuleType.TRANSFORMATION,
    ]
    assert isinstance(rules[0], MatchingRule)
    assert rules[0].boost == 0.1
    assert rules[0].priority == 5
    assert rule_from_dict(rules[0].to_dict()) == rules[0]


@pytest.mark.unit
@pytest.mark.parametrize(
    "doc",
    [
        {"type": "SCORING", "name": "x"},
        {"type": "MATCHING", "name": "x"},
        {"type": "MATCHING", "condition": {"op": "fields_equal", "fields": ["a"]}},
        {
            "type": "MATCHING",
            "name": "x",
            "condition": {"op": "fields_equal", "fields": ["a"]},
            "boost": 2,
        },
        {"type": "TRANSFORMATION", "name": "x", "field": "a", "transform": "rot13"},
    ],
    ids=["unknown_type", "no_condition", "no_name", "boost_range", "unknown_transform"],
)
def test_rule_from_dict_rejects_bad_documents(doc: dict) -> None:
    """Test bad rule documents raise ConfigurationError."""
    with pytest.raises(ConfigurationError):
        rule_from_dict(doc)


# ============================================================================
# RuleSet
# ============================================================================


@pytest.mark.unit
def test_ruleset_orders_by_priority_and_skips_inactive() -> None:
    """Test evaluation order is descending priority, stable on ties."""
    equal = PairCondition("fields_equal", ("tax_id",))
    rules = [
        MatchingRule(name="low", priority=1, condition=equal, boost=0.1),
        MatchingRule(name="high", priority=9, condition=equal, boost=0.2),
        MatchingRule(name="tie", priority=1, condition=equal, boost=0.05),
        MatchingRule(name="off", priority=99, is_active=False, condition=equal, boost=0.5),
    ]

    ruleset = RuleSet(rules)
    hits = ruleset.evaluate_pair(LEFT, RIGHT)

    assert len(ruleset) == 3
    assert hits.matching == ("high", "low", "tie")
    assert hits.boost == pytest.approx(0.35)
    assert hits.exceptions == ()


@pytest.mark.unit
def test_transformations_apply_in_priority_order() -> None:
    """Test transforms run in priority order and skip absent fields."""
    ruleset = RuleSet(
        [
            TransformationRule(name="digits", priority=1, field="tax_id", transform="digits_only"),
            TransformationRule(name="upper", priority=5, field="tax_id", transform="upper"),
            TransformationRule(name="city", field="city", transform="lower"),
        ]
    )

    record = ruleset.transform(Record("r", {"tax_id": " de-12 3"}))

    assert record.get("tax_id") == "123"
    assert "city" not in record.fields


@pytest.mark.unit
def test_validations_and_passes_all() -> None:
    """Test failed validations are named and exceptions veto pairs."""
    ruleset = RuleSet(
        [
            ValidationRule(name="has-city", condition=RecordCondition("present", "city")),
            ExceptionRule(name="country", condition=PairCondition("fields_differ", ("country",))),
        ]
    )

    assert ruleset.failed_validations(LEFT) == ["has-city"]
    assert not ruleset.passes_all(LEFT, RIGHT.with_fields(city="Paris"))

    same_country = RIGHT.with_fields(city="Paris", country="DE")
    assert ruleset.passes_all(LEFT, same_country)
