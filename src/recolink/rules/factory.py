"""Registry-based factory for rules described as mappings.

Rule documents look like::

    {"type": "MATCHING", "name": "same-tax-id", "priority": 10,
     "condition": {"op": "fields_equal", "fields": ["tax_id"]}, "boost": 0.1}
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from recolink.errors import ConfigurationError
from recolink.rules.conditions import PairCondition, RecordCondition
from recolink.rules.models import (
    ExceptionRule,
    MatchingRule,
    ReconciliationRule,
    RuleType,
    TransformationRule,
    ValidationRule,
)

__all__ = ["RULE_REGISTRY", "rule_from_dict", "rules_from_dicts"]


def _common(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": str(data["name"]),
        "priority": int(data.get("priority", 0)),
        "is_active": bool(data.get("is_active", True)),
    }


def _matching(data: Mapping[str, Any]) -> ReconciliationRule:
    return MatchingRule(
        **_common(data),
        condition=PairCondition.from_dict(data["condition"]),
        boost=float(data.get("boost", 0.0)),
    )


def _exception(data: Mapping[str, Any]) -> ReconciliationRule:
    return ExceptionRule(**_common(data), condition=PairCondition.from_dict(data["condition"]))


def _validation(data: Mapping[str, Any]) -> ReconciliationRule:
    return ValidationRule(**_common(data), condition=RecordCondition.from_dict(data["condition"]))


def _transformation(data: Mapping[str, Any]) -> ReconciliationRule:
    return TransformationRule(
        **_common(data),
        field=str(data["field"]),
        transform=str(data.get("transform", "strip")),
    )


# rule type → builder
RULE_REGISTRY: dict[RuleType, Callable[[Mapping[str, Any]], ReconciliationRule]] = {
    RuleType.MATCHING: _matching,
    RuleType.EXCEPTION: _exception,
    RuleType.VALIDATION: _validation,
    RuleType.TRANSFORMATION: _transformation,
}


def rule_from_dict(data: Mapping[str, Any] | ReconciliationRule) -> ReconciliationRule:
    """Build a rule from its mapping form.

    Parameters
    ----------
    data : Mapping[str, Any] | ReconciliationRule
        Rule document; rule instances are returned unchanged.

    Returns
    -------
    ReconciliationRule
        Concrete rule.

    Raises
    ------
    ConfigurationError
        If the type is unknown or a required key is missing.
    """
    if isinstance(data, ReconciliationRule):
        return data

    raw_type = str(data.get("type", "")).upper()
    try:
        rule_type = RuleType(raw_type)
    except ValueError as e:
        valid = ", ".join(t.value for t in RuleType)
        raise ConfigurationError(f"Unknown rule type {raw_type!r}. Valid types: {valid}") from e

    try:
        return RULE_REGISTRY[rule_type](data)
    except KeyError as e:
        raise ConfigurationError(f"Rule of type {rule_type} is missing key {e}") from e


def rules_from_dicts(
    items: list[Mapping[str, Any] | ReconciliationRule],
) -> list[ReconciliationRule]:
    """Build every rule in *items*."""
    return [rule_from_dict(item) for item in items]
