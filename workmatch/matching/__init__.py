"""Compatibility scoring, worker discovery, and listing ranking.

This module provides:
- ScoreEngine / score: deterministic 0-100 score for a (worker, job) pair
- MatchFinder: scans a worker population for one posting
- ListingRanker: orders and paginates postings for a viewer
- Result types (ScoreBreakdown, MatchCandidate, RankedPosting, ListingPage)
"""

from .exceptions import (
    InvalidCoordinatesError,
    InvalidListingRequestError,
    InvalidMatchRequestError,
    MatchingError,
    PostingInvariantError,
)
from .finder import MatchFinder
from .geo import coordinates_from, degree_distance, haversine_miles
from .models import (
    ListingPage,
    MatchCandidate,
    MatchScanResult,
    RankedPosting,
    ScoreBreakdown,
    SortMode,
)
from .ranking import ListingRanker, resolve_viewer_context
from .scoring import ScoreEngine, score

__all__ = [
    "ScoreEngine",
    "score",
    "MatchFinder",
    "ListingRanker",
    "resolve_viewer_context",
    "haversine_miles",
    "degree_distance",
    "coordinates_from",
    "ScoreBreakdown",
    "MatchCandidate",
    "MatchScanResult",
    "RankedPosting",
    "ListingPage",
    "SortMode",
    "MatchingError",
    "InvalidCoordinatesError",
    "InvalidMatchRequestError",
    "InvalidListingRequestError",
    "PostingInvariantError",
]
