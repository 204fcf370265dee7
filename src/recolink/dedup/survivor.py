"""Golden-record selection and cluster merging."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

from recolink.dedup.models import EntityCluster, compute_cluster_id
from recolink.models.records import EntityRecord
from recolink.rules import RuleSet

_LATEST = datetime.max.replace(tzinfo=UTC)


def ranking_key(entity: EntityRecord) -> tuple[bool, float, int, datetime, str]:
    """Lexicographic ranking used everywhere golden order matters.

    1. current golden records first
    2. higher confidence
    3. more populated attributes
    4. earlier creation time (unknown sorts last)
    5. tie-breaker: smallest identifier
    """
    populated = sum(1 for v in entity.attributes.values() if v not in (None, "", [], ()))
    return (
        not entity.is_golden_record,
        -entity.confidence,
        -populated,
        entity.created_at or _LATEST,
        entity.primary_identifier,
    )


def select_golden(members: list[EntityRecord]) -> str:
    """Identifier of the member that should be golden.

    Parameters
    ----------
    members : list[EntityRecord]
        Cluster members.

    Returns
    -------
    str
        Identifier of the best-ranked member.

    Raises
    ------
    ValueError
        If members list is empty.
    """
    if not members:
        raise ValueError("Cannot select golden record from empty members list")
    return min(members, key=ranking_key).primary_identifier


def build_cluster(members: list[EntityRecord]) -> EntityCluster:
    """Assign golden status to exactly one member and freeze the cluster.

    Existing golden flags are treated as a preference, not kept as-is: the
    best-ranked member becomes golden and every other member is demoted.
    """
    golden_id = select_golden(members)
    ordered = sorted(members, key=lambda m: (m.primary_identifier != golden_id, m.primary_identifier))
    assigned = tuple(
        m if m.is_golden_record == (m.primary_identifier == golden_id)
        else replace(m, is_golden_record=m.primary_identifier == golden_id)
        for m in ordered
    )
    return EntityCluster(
        cluster_id=compute_cluster_id([m.primary_identifier for m in assigned]),
        members=assigned,
    )


def merge_into(
    cluster: EntityCluster,
    candidate: EntityRecord,
    rules: RuleSet,
) -> list[EntityRecord]:
    """Add *candidate* to *cluster*, deciding golden status.

    The golden record is retained unless the candidate has strictly higher
    confidence and passes every active rule against it; then golden status
    moves to the candidate. A member with the candidate's identifier is
    replaced by the candidate.

    Parameters
    ----------
    cluster : EntityCluster
        Existing cluster (not modified).
    candidate : EntityRecord
        Incoming entity.
    rules : RuleSet
        Active rules; validation and exception rules gate the transfer.

    Returns
    -------
    list[EntityRecord]
        New member list, golden first, with exactly one golden record.
    """
    golden = cluster.golden
    others = [
        m
        for m in cluster.members
        if not m.is_golden_record and m.primary_identifier != candidate.primary_identifier
    ]

    if candidate.primary_identifier == golden.primary_identifier:
        # Updating the golden record itself keeps it golden.
        return [replace(candidate, is_golden_record=True), *others]

    transfer = candidate.confidence > golden.confidence and rules.passes_all(
        golden.as_record(), candidate.as_record()
    )
    if transfer:
        new_golden = replace(candidate, is_golden_record=True)
        demoted = replace(golden, is_golden_record=False)
        rest = sorted([demoted, *others], key=lambda m: m.primary_identifier)
        return [new_golden, *rest]

    member = replace(candidate, is_golden_record=False)
    rest = sorted([member, *others], key=lambda m: m.primary_identifier)
    return [golden, *rest]
