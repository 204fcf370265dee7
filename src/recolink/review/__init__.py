"""Review workflow for completed matches."""

from recolink.review.workflow import REVIEW_TOPIC, MatchReviewEvent, ReviewWorkflow

__all__ = ["REVIEW_TOPIC", "MatchReviewEvent", "ReviewWorkflow"]
