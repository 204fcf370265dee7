"""Tests for the public service API and request loading."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

import pytest

from recolink import (
    MatchFilter,
    MatchStatus,
    Record,
    ReviewUpdate,
    build_in_memory_service,
    load_request,
    request_from_dict,
)
from recolink.adapters import InMemoryEventBus
from recolink.api import load_schema
from recolink.candidates import BlockerConfig
from recolink.engine import EngineConfig
from recolink.errors import (
    ConfigurationError,
    JobNotFoundError,
    MatchNotFoundError,
    ValidationError,
)
from recolink.models import JobStatus, JobType
from recolink.review import REVIEW_TOPIC
from recolink.rules import MatchingRule

REQUEST_DOC: dict[str, Any] = {
    "request_id": "req-1",
    "tenant_id": "tenant-a",
    "environment": "prod",
    "source_dataset": "crm",
    "target_dataset": "erp",
    "job_type": "INCREMENTAL",
    "configuration": {
        "matching_fields": ["tax_id"],
        "fuzzy_fields": ["name"],
        "field_weights": {"tax_id": 2},
        "blocking_keys": [
            "name_token:name",
            {"type": "field_exact", "params": {"field": "tax_id"}},
        ],
        "thresholds": {"exact": 0.9},
        "rules": [
            {
                "type": "matching",
                "name": "same-city",
                "condition": {"op": "fields_equal", "fields": ["city"]},
                "boost": 0.05,
            }
        ],
    },
}


def _doc(**changes: Any) -> dict[str, Any]:
    doc = copy.deepcopy(REQUEST_DOC)
    doc.update(changes)
    return doc


# ============================================================================
# Request loading
# ============================================================================


@pytest.mark.unit
def test_request_from_dict() -> None:
    """Test a full request document builds a typed request."""
    request = request_from_dict(REQUEST_DOC)
    config = request.configuration

    assert request.job_type == JobType.INCREMENTAL
    assert config.matching_fields == ("tax_id",)
    assert config.weight("tax_id") == 2.0
    assert config.weight("name") == 1.0
    assert config.blocking_keys == (
        BlockerConfig(type="name_token", params={"field": "name"}),
        BlockerConfig(type="field_exact", params={"field": "tax_id"}),
    )
    assert config.thresholds.exact == 0.9
    assert config.thresholds.fuzzy == 0.8
    (rule,) = config.rules
    assert isinstance(rule, MatchingRule)
    assert rule.boost == 0.05


@pytest.mark.unit
def test_request_defaults() -> None:
    """Test omitted optional fields take their defaults."""
    doc = _doc()
    del doc["configuration"]
    del doc["job_type"]

    request = request_from_dict(doc)

    assert request.job_type == JobType.FULL
    assert request.configuration.fuzzy_fields == ("name",)
    assert request.to_dict()["configuration"]["model_name"] == "scoring-v1"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("changes", "location"),
    [
        ({"tenant_id": ""}, "tenant_id"),
        ({"job_type": "WEEKLY"}, "job_type"),
        ({"unexpected": True}, "<root>"),
        ({"configuration": {"thresholds": {"exact": 1.5}}}, "configuration/thresholds/exact"),
        (
            {"configuration": {"rules": [{"type": "magic", "name": "x"}]}},
            "configuration/rules/0/type",
        ),
    ],
    ids=["empty_tenant", "job_type", "extra_key", "threshold_range", "rule_type"],
)
def test_request_schema_violations(changes: dict[str, Any], location: str) -> None:
    """Test schema violations name their location."""
    with pytest.raises(ValidationError, match=f"Invalid request at {location}"):
        request_from_dict(_doc(**changes))


@pytest.mark.unit
def test_request_missing_required_field() -> None:
    """Test a missing required field is reported at the root."""
    doc = _doc()
    del doc["target_dataset"]

    with pytest.raises(ValidationError, match="target_dataset"):
        request_from_dict(doc)


@pytest.mark.unit
def test_request_rule_missing_key() -> None:
    """Test schema-valid rules lacking builder keys are configuration errors."""
    doc = _doc(configuration={"rules": [{"type": "transformation", "name": "t"}]})

    with pytest.raises(ConfigurationError, match="missing key"):
        request_from_dict(doc)


@pytest.mark.unit
def test_load_request(tmp_path: Path) -> None:
    """Test loading requests from disk."""
    good = tmp_path / "request.json"
    good.write_text(json.dumps(REQUEST_DOC), encoding="utf-8")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")

    assert load_request(good).request_id == "req-1"
    with pytest.raises(ValidationError, match="not valid JSON"):
        load_request(broken)
    with pytest.raises(ValidationError, match="JSON object"):
        load_request(listing)
    with pytest.raises(FileNotFoundError):
        load_request(tmp_path / "absent.json")


@pytest.mark.unit
def test_bundled_schemas_load() -> None:
    """Test both bundled schemas are available."""
    assert load_schema("request")["title"] == "ReconciliationRequest"
    assert "event" in load_schema("log_event")["required"]


# ============================================================================
# Service facade
# ============================================================================


@pytest.mark.unit
def test_service_runs_and_reviews(
    source_records: list[Record],
    target_records: list[Record],
    fast_engine_config: EngineConfig,
) -> None:
    """Test start, status, matches and review through the facade."""
    bus = InMemoryEventBus()
    request = request_from_dict(_doc(job_type="FULL"))

    with build_in_memory_service(
        {"crm": source_records, "erp": target_records}, config=fast_engine_config, event_bus=bus
    ) as service:
        job_id = service.start(request)
        result = service.handle(job_id).result(timeout=10)

        assert result.success
        assert service.get_status(job_id).status == JobStatus.COMPLETED

        page = service.get_matches(job_id, MatchFilter(status=MatchStatus.NO_MATCH))
        (weak,) = page.content
        assert weak.source_ref == "s3"

        reviewed = service.review(
            weak.match_id,
            ReviewUpdate(status=MatchStatus.REVIEWED, reviewer_id="alice", confidence=0.2),
        )

        assert reviewed.version == 1
        assert service.cancel(job_id) is False

    (event,) = bus.events(REVIEW_TOPIC)
    assert event.match_id == weak.match_id


@pytest.mark.unit
def test_service_scopes_lookups_to_tenant(
    source_records: list[Record],
    target_records: list[Record],
    fast_engine_config: EngineConfig,
) -> None:
    """Test a caller of another tenant sees neither the job nor its matches."""
    request = request_from_dict(_doc(job_type="FULL"))

    with build_in_memory_service(
        {"crm": source_records, "erp": target_records}, config=fast_engine_config
    ) as service:
        job_id = service.start(request)
        assert service.handle(job_id).result(timeout=10).success
        (match, *_rest) = service.get_matches(job_id).content
        update = ReviewUpdate(status=MatchStatus.REVIEWED, reviewer_id="mallory")

        with pytest.raises(JobNotFoundError):
            service.get_status(job_id, tenant_id="tenant-b")
        with pytest.raises(JobNotFoundError):
            service.get_matches(job_id, tenant_id="tenant-b")
        with pytest.raises(JobNotFoundError):
            service.cancel(job_id, tenant_id="tenant-b")
        with pytest.raises(MatchNotFoundError):
            service.review(match.match_id, update, tenant_id="tenant-b")

        assert service.get_status(job_id, tenant_id="tenant-a").status == JobStatus.COMPLETED
        reviewed = service.review(match.match_id, update, tenant_id="tenant-a")
        assert reviewed.version == 1
