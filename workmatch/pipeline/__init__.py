"""Store-backed orchestration of scoring, matching, listing, and notifications."""

from .runner import MatchingPipeline

__all__ = [
    "MatchingPipeline",
]
