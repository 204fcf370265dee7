"""Reconciliation rules: matching boosts, exceptions, validation and transforms."""

from recolink.rules.conditions import (
    PAIR_OPERATORS,
    RECORD_OPERATORS,
    PairCondition,
    RecordCondition,
)
from recolink.rules.factory import RULE_REGISTRY, rule_from_dict, rules_from_dicts
from recolink.rules.models import (
    TRANSFORMS,
    ExceptionRule,
    MatchingRule,
    ReconciliationRule,
    RuleType,
    TransformationRule,
    ValidationRule,
)
from recolink.rules.ruleset import RuleHits, RuleSet

__all__ = [
    # Conditions
    "PAIR_OPERATORS",
    "RECORD_OPERATORS",
    "PairCondition",
    "RecordCondition",
    # Rules
    "RuleType",
    "ReconciliationRule",
    "MatchingRule",
    "ExceptionRule",
    "ValidationRule",
    "TransformationRule",
    "TRANSFORMS",
    # Evaluation
    "RuleSet",
    "RuleHits",
    # Factory
    "RULE_REGISTRY",
    "rule_from_dict",
    "rules_from_dicts",
]
