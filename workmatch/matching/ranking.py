"""Ranking and pagination of postings for a listing request."""

import logging
import math
from datetime import datetime
from numbers import Real
from typing import Iterable, List, Optional, Union

from workmatch.domain.models import Coordinates, JobContext, PayType, WorkerContext, WorkerProfile
from workmatch.logging import get_logger

from .exceptions import InvalidListingRequestError, PostingInvariantError
from .geo import coordinates_from, degree_distance
from .models import ListingPage, RankedPosting, SortMode
from .scoring import ScoreEngine

logger = get_logger(__name__, component="listing")

DEFAULT_PAGE_SIZE = 20


def resolve_viewer_context(
    profile: Optional[WorkerProfile] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Optional[WorkerContext]:
    """Build the scoring context for whoever is viewing a listing.

    The viewer's stored profile wins; explicit coordinates (e.g. from the
    device) only fill in a missing profile location. Anonymous viewers with
    coordinates get a location-only context.

    Returns:
        WorkerContext, or None when neither a profile nor coordinates exist

    Raises:
        InvalidCoordinatesError: If the explicit coordinates are malformed
    """
    fallback_location = coordinates_from(latitude, longitude)

    if profile is not None:
        context = profile.to_context()
        if context.location is None and fallback_location is not None:
            context = context.model_copy(update={"location": fallback_location})
        return context

    if fallback_location is not None:
        return WorkerContext(location=fallback_location)

    return None


class ListingRanker:
    """Scores, orders, and paginates postings for one viewer.

    Every posting is scored whenever a viewer context exists, whatever the
    sort mode, so callers can always display the score. Postings that
    violate a domain invariant are dropped with a diagnostic instead of
    failing the listing.
    """

    def __init__(
        self,
        score_engine: Optional[ScoreEngine] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        logger_instance: Optional[logging.Logger] = None,
    ):
        self.score_engine = score_engine or ScoreEngine()
        self.default_page_size = default_page_size
        self.logger = logger_instance or logger

    def rank(
        self,
        postings: Iterable[JobContext],
        viewer: Optional[WorkerContext] = None,
        sort_mode: Union[SortMode, str] = SortMode.MATCH,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ListingPage:
        """Rank postings and return one page.

        Args:
            postings: Visible postings, in the store's order
            viewer: Viewer scoring context, or None for anonymous viewers
            sort_mode: match, date, pay, or distance
            page: 1-based page number
            page_size: Items per page (defaults to the configured page size)

        Returns:
            ListingPage; pages past the end have no items but keep total_count

        Raises:
            InvalidListingRequestError: For an unknown sort mode or a
                non-positive page or page size
        """
        mode = SortMode.parse(sort_mode)
        if page_size is None:
            page_size = self.default_page_size
        _require_positive_int("page", page)
        _require_positive_int("page_size", page_size)

        ranked: List[RankedPosting] = []
        excluded = 0

        for posting in postings:
            try:
                ranked.append(self._rank_one(posting, viewer))
            except PostingInvariantError as e:
                excluded += 1
                self.logger.warning(
                    str(e),
                    extra={
                        "event": "listing.posting.excluded",
                        "job_id": e.posting_id,
                        "reason": e.reason,
                    },
                )

        ordered = self._sort(ranked, viewer, mode)

        offset = (page - 1) * page_size
        items = ordered[offset:offset + page_size]

        self.logger.debug(
            f"Ranked {len(ordered)} postings by {mode.value}",
            extra={
                "event": "listing.ranked",
                "sort_mode": mode.value,
                "total_count": len(ordered),
                "excluded_count": excluded,
                "page": page,
                "page_size": page_size,
            },
        )

        return ListingPage(
            items=items,
            total_count=len(ordered),
            page=page,
            page_size=page_size,
            sort_mode=mode,
            excluded_count=excluded,
        )

    def _rank_one(self, posting: JobContext, viewer: Optional[WorkerContext]) -> RankedPosting:
        _check_posting(posting)

        if viewer is None:
            return RankedPosting(posting=posting)

        try:
            breakdown = self.score_engine.score(posting, viewer)
        except (AttributeError, TypeError, ValueError) as e:
            raise PostingInvariantError(_posting_id(posting), f"could not be scored: {e}") from e

        return RankedPosting(posting=posting, match_score=breakdown.total, breakdown=breakdown)

    @staticmethod
    def _sort(
        ranked: List[RankedPosting], viewer: Optional[WorkerContext], mode: SortMode
    ) -> List[RankedPosting]:
        # Python's sort is stable: equal keys keep the store's order
        if mode is SortMode.MATCH:
            return sorted(
                ranked,
                key=lambda item: (
                    item.match_score if item.match_score is not None else -1,
                    item.posting.created_at,
                ),
                reverse=True,
            )

        if mode is SortMode.DATE:
            return sorted(ranked, key=lambda item: item.posting.start_date, reverse=True)

        if mode is SortMode.PAY:
            # Raw amounts: $30/hour and $30 fixed compare equal
            return sorted(ranked, key=lambda item: item.posting.pay_amount, reverse=True)

        if viewer is None or viewer.location is None:
            return list(ranked)

        origin = viewer.location
        return sorted(ranked, key=lambda item: degree_distance(origin, item.posting.location))


def _require_positive_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidListingRequestError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise InvalidListingRequestError(f"{name} must be at least 1, got {value}")


def _posting_id(posting) -> str:
    return str(getattr(posting, "id", None) or "<unknown>")


def _check_posting(posting: JobContext) -> None:
    """Reject postings that bypassed validation (e.g. built with model_construct).

    Raises:
        PostingInvariantError: Describing the first violated invariant
    """
    posting_id = _posting_id(posting)

    if not isinstance(getattr(posting, "pay_type", None), PayType):
        raise PostingInvariantError(posting_id, f"invalid pay type {getattr(posting, 'pay_type', None)!r}")

    pay_amount = getattr(posting, "pay_amount", None)
    if (
        isinstance(pay_amount, bool)
        or not isinstance(pay_amount, Real)
        or not math.isfinite(pay_amount)
        or pay_amount < 0
    ):
        raise PostingInvariantError(posting_id, f"invalid pay amount {pay_amount!r}")

    location = getattr(posting, "location", None)
    if not isinstance(location, Coordinates) or not (
        math.isfinite(location.latitude) and math.isfinite(location.longitude)
    ):
        raise PostingInvariantError(posting_id, "missing or malformed location")

    for attr in ("start_date", "created_at"):
        value = getattr(posting, attr, None)
        if not isinstance(value, datetime) or value.tzinfo is None:
            raise PostingInvariantError(posting_id, f"missing or malformed {attr}")
