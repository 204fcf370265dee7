"""Human review of matches produced by finished jobs."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from recolink.audit.logger import AuditLogger
from recolink.errors import ConcurrentModificationError, InvalidStateError, ValidationError
from recolink.models.jobs import MatchStatus, ReconciliationMatch, utcnow

if TYPE_CHECKING:
    from recolink.ports import EventBus, JobStore, MatchStore

__all__ = ["REVIEW_TOPIC", "MatchReviewEvent", "ReviewWorkflow"]

REVIEW_TOPIC = "reconciliation.match.reviewed"


@dataclass(frozen=True)
class MatchReviewEvent:
    """Announcement of one successful review.

    Attributes
    ----------
    match_id : str
        Reviewed match.
    job_id : str
        Job that produced the match.
    tenant_id : str
        Owning tenant.
    previous_status : MatchStatus
        Status before the review.
    new_status : MatchStatus
        Status set by the reviewer.
    reviewer_id : str
        Reviewer.
    human_confidence : float | None
        Reviewer-supplied confidence.
    version : int
        Match version after the review.
    reviewed_at : datetime
        Review time.
    """

    match_id: str
    job_id: str
    tenant_id: str
    previous_status: MatchStatus
    new_status: MatchStatus
    reviewer_id: str
    human_confidence: float | None
    version: int
    reviewed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "match_id": self.match_id,
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            "previous_status": str(self.previous_status),
            "new_status": str(self.new_status),
            "reviewer_id": self.reviewer_id,
            "human_confidence": self.human_confidence,
            "version": self.version,
            "reviewed_at": self.reviewed_at.isoformat(),
        }


class ReviewWorkflow:
    """Apply reviewer decisions to persisted matches.

    Parameters
    ----------
    job_store : JobStore
        Used to check that the owning job is terminal.
    match_store : MatchStore
        Compare-and-set target.
    event_bus : EventBus
        Receives one ``MatchReviewEvent`` per successful review.
    logger : AuditLogger | None, optional
        Audit logger.
    """

    def __init__(
        self,
        job_store: JobStore,
        match_store: MatchStore,
        event_bus: EventBus,
        logger: AuditLogger | None = None,
    ) -> None:
        self.job_store = job_store
        self.match_store = match_store
        self.event_bus = event_bus
        self.logger = logger

    def review(
        self,
        match_id: str,
        new_status: MatchStatus | str,
        reviewer_id: str,
        confidence: float | None = None,
        comments: str | None = None,
        expected_version: int | None = None,
        tenant_id: str | None = None,
    ) -> ReconciliationMatch:
        """Record a reviewer decision on *match_id*.

        Parameters
        ----------
        match_id : str
            Match to revise.
        new_status : MatchStatus | str
            Status chosen by the reviewer.
        reviewer_id : str
            Reviewer identity.
        confidence : float | None, optional
            Human confidence in [0, 1].
        comments : str | None, optional
            Free-text comments.
        expected_version : int | None, optional
            Version the reviewer saw; defaults to the stored version.
        tenant_id : str | None, optional
            Tenant of the reviewer; matches of other tenants are not found.

        Returns
        -------
        ReconciliationMatch
            Stored match with the bumped version.

        Raises
        ------
        ValidationError
            On an unknown status, an empty reviewer or a confidence outside [0, 1].
        InvalidStateError
            If the owning job is not terminal.
        ConcurrentModificationError
            If *expected_version* is stale or a concurrent review won the race.
        MatchNotFoundError
            If the match is unknown (to *tenant_id*).
        """
        status = _parse_status(new_status)
        if not reviewer_id:
            raise ValidationError("reviewer_id must not be empty")
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"confidence must be in [0, 1], got {confidence}")

        current = self.match_store.get_match(match_id, tenant_id=tenant_id)
        job = self.job_store.get_job(current.job_id)
        if not job.status.is_terminal:
            raise InvalidStateError(
                f"Match {match_id} belongs to job {job.job_id} in status {job.status}; "
                "matches can only be reviewed once the job is terminal"
            )

        version = current.version if expected_version is None else expected_version
        if version != current.version:
            raise ConcurrentModificationError(match_id, expected=version, actual=current.version)

        reviewed_at = utcnow()
        revised = replace(
            current,
            match_status=status,
            human_confidence=confidence,
            reviewed_by=reviewer_id,
            reviewed_at=reviewed_at,
            review_comments=comments,
        )
        stored = self.match_store.update_match(revised, expected_version=version)

        event = MatchReviewEvent(
            match_id=stored.match_id,
            job_id=stored.job_id,
            tenant_id=stored.tenant_id,
            previous_status=current.match_status,
            new_status=stored.match_status,
            reviewer_id=reviewer_id,
            human_confidence=confidence,
            version=stored.version,
            reviewed_at=reviewed_at,
        )
        self.event_bus.publish(REVIEW_TOPIC, event)

        if self.logger:
            self.logger.event("match_reviewed", data=event.to_dict(), job_id=stored.job_id)
        return stored


def _parse_status(value: MatchStatus | str) -> MatchStatus:
    try:
        return MatchStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown match status: {value!r}") from None
