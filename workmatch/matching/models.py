"""Result types produced by the score engine, match finder, and ranker.

None of these are persisted; they are recomputed per request.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from workmatch.domain.models import JobContext

from .exceptions import InvalidListingRequestError


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-factor scores for a (worker, job) pair.

    Attributes:
        skill_score: Required-skill recall, 0-100
        distance_score: Proximity score, 0-100
        transport_score: Transportation compatibility, 0-100
        total: Weighted total rounded half up, 0-100
        distance_miles: Haversine distance when both locations are known
    """

    skill_score: float
    distance_score: float
    transport_score: float
    total: int
    distance_miles: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "skill_score": round(self.skill_score, 2),
            "distance_score": round(self.distance_score, 2),
            "transport_score": round(self.transport_score, 2),
            "total": self.total,
            "distance_miles": (
                round(self.distance_miles, 2) if self.distance_miles is not None else None
            ),
        }


@dataclass(frozen=True)
class MatchCandidate:
    """A worker whose score cleared the scan threshold."""

    worker_id: str
    score: int

    @property
    def sort_key(self) -> Tuple[int, str]:
        """Score descending, then worker id ascending."""
        return (-self.score, self.worker_id)


@dataclass
class MatchScanResult:
    """Outcome of one population scan.

    Attributes:
        job_id: Posting the scan ran for
        candidates: Workers at or above the threshold, fully ordered
        scanned_count: Candidates that were scored
        skipped_count: Candidates skipped because lookup or scoring failed
        excluded_count: Pool entries dropped as the poster or as duplicates
        cancelled: Whether the scan stopped early on the cancel signal
    """

    job_id: str
    candidates: List[MatchCandidate] = field(default_factory=list)
    scanned_count: int = 0
    skipped_count: int = 0
    excluded_count: int = 0
    cancelled: bool = False


class SortMode(str, Enum):
    """Listing sort modes."""

    MATCH = "match"
    DATE = "date"
    PAY = "pay"
    DISTANCE = "distance"

    @classmethod
    def parse(cls, value: Union["SortMode", str]) -> "SortMode":
        """Accept an enum member or its name/value in any case.

        Raises:
            InvalidListingRequestError: If the value names no sort mode
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for mode in cls:
                if mode.value == normalized:
                    return mode
        valid = ", ".join(mode.value for mode in cls)
        raise InvalidListingRequestError(f"Unknown sort mode {value!r}; expected one of: {valid}")


@dataclass(frozen=True)
class RankedPosting:
    """A posting paired with its display score.

    match_score is None when the viewer has no resolvable context.
    """

    posting: JobContext
    match_score: Optional[int] = None
    breakdown: Optional[ScoreBreakdown] = None


@dataclass
class ListingPage:
    """One page of a ranked listing.

    Attributes:
        items: Ranked postings on this page (empty past the last page)
        total_count: Number of rankable postings across all pages
        page: 1-based page number
        page_size: Requested page size
        sort_mode: Sort applied to the full sequence
        excluded_count: Postings dropped for invariant violations
    """

    items: List[RankedPosting]
    total_count: int
    page: int
    page_size: int
    sort_mode: SortMode
    excluded_count: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)
