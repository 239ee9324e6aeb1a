"""Unit tests for listing ranking and pagination."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from workmatch.domain.models import Coordinates, JobContext, PayType, WorkerContext
from workmatch.matching.exceptions import InvalidCoordinatesError, InvalidListingRequestError
from workmatch.matching.models import SortMode
from workmatch.matching.ranking import ListingRanker, resolve_viewer_context

BASE_TIME = datetime(2025, 11, 1, tzinfo=timezone.utc)
VIEWER_POINT = Coordinates(latitude=40.0, longitude=-75.0)


def make_posting(index: int, **overrides) -> JobContext:
    fields = {
        "id": f"job-{index:02d}",
        "skill_ids": frozenset({"a"}),
        "location": VIEWER_POINT,
        "pay_amount": 20.0,
        "pay_type": PayType.HOURLY,
        "start_date": BASE_TIME + timedelta(days=index),
        "created_at": BASE_TIME + timedelta(hours=index),
        "employer_id": "employer-1",
    }
    fields.update(overrides)
    return JobContext(**fields)


@pytest.fixture
def ranker():
    return ListingRanker(logger_instance=MagicMock())


@pytest.fixture
def viewer():
    return WorkerContext(skill_ids=frozenset({"a"}), location=VIEWER_POINT)


def ids(page):
    return [item.posting.id for item in page.items]


class TestSortModes:
    """Ordering for each sort mode."""

    def test_match_sort_orders_by_score(self, ranker, viewer):
        postings = [
            make_posting(1, skill_ids=frozenset({"b"})),
            make_posting(2),
            make_posting(3, skill_ids=frozenset({"a", "b"})),
        ]

        page = ranker.rank(postings, viewer=viewer, sort_mode=SortMode.MATCH)

        assert ids(page) == ["job-02", "job-03", "job-01"]
        assert [item.match_score for item in page.items] == [100, 80, 60]

    def test_match_sort_ties_break_on_newest(self, ranker, viewer):
        postings = [make_posting(1), make_posting(3), make_posting(2)]

        page = ranker.rank(postings, viewer=viewer, sort_mode="match")

        assert ids(page) == ["job-03", "job-02", "job-01"]

    def test_date_sort_is_start_date_descending(self, ranker, viewer):
        postings = [make_posting(2), make_posting(5), make_posting(1)]

        page = ranker.rank(postings, viewer=viewer, sort_mode=SortMode.DATE)

        assert ids(page) == ["job-05", "job-02", "job-01"]

    def test_scores_are_computed_for_every_sort_mode(self, ranker, viewer):
        page = ranker.rank([make_posting(1)], viewer=viewer, sort_mode=SortMode.DATE)

        assert page.items[0].match_score == 100
        assert page.items[0].breakdown is not None

    def test_pay_sort_compares_raw_amounts(self, ranker, viewer):
        postings = [
            make_posting(1, pay_amount=30, pay_type=PayType.FIXED),
            make_posting(2, pay_amount=45, pay_type=PayType.HOURLY),
            make_posting(3, pay_amount=30, pay_type=PayType.HOURLY),
        ]

        page = ranker.rank(postings, viewer=viewer, sort_mode=SortMode.PAY)

        # Equal amounts keep the store's order whatever the pay type
        assert ids(page) == ["job-02", "job-01", "job-03"]

    def test_distance_sort_uses_degree_space(self, ranker, viewer):
        postings = [
            make_posting(1, location=Coordinates(latitude=41.0, longitude=-75.0)),
            make_posting(2, location=Coordinates(latitude=40.0, longitude=-75.5)),
            make_posting(3, location=Coordinates(latitude=43.0, longitude=-75.0)),
        ]

        page = ranker.rank(postings, viewer=viewer, sort_mode=SortMode.DISTANCE)

        assert ids(page) == ["job-02", "job-01", "job-03"]

    def test_distance_sort_without_viewer_location_keeps_store_order(self, ranker):
        postings = [make_posting(3), make_posting(1), make_posting(2)]
        viewer = WorkerContext(skill_ids=frozenset({"a"}))

        page = ranker.rank(postings, viewer=viewer, sort_mode=SortMode.DISTANCE)

        assert ids(page) == ["job-03", "job-01", "job-02"]

    def test_anonymous_viewer_gets_no_scores(self, ranker):
        postings = [make_posting(1), make_posting(3), make_posting(2)]

        page = ranker.rank(postings, viewer=None, sort_mode=SortMode.MATCH)

        assert all(item.match_score is None for item in page.items)
        assert ids(page) == ["job-03", "job-02", "job-01"]

    def test_sort_mode_parsing_is_case_insensitive(self, ranker):
        page = ranker.rank([make_posting(1)], sort_mode="  PAY ")

        assert page.sort_mode is SortMode.PAY

    def test_unknown_sort_mode_rejected(self, ranker):
        with pytest.raises(InvalidListingRequestError, match="Unknown sort mode"):
            ranker.rank([make_posting(1)], sort_mode="popularity")


class TestPagination:
    """Page slicing and validation."""

    @pytest.fixture
    def postings(self):
        return [make_posting(i) for i in range(45)]

    def test_partial_last_page(self, ranker, postings):
        page = ranker.rank(postings, sort_mode=SortMode.DATE, page=3, page_size=20)

        assert len(page.items) == 5
        assert page.total_count == 45
        assert page.total_pages == 3

    def test_page_past_the_end_is_empty(self, ranker, postings):
        page = ranker.rank(postings, sort_mode=SortMode.DATE, page=4, page_size=20)

        assert page.items == []
        assert page.total_count == 45

    def test_pages_do_not_overlap(self, ranker, postings):
        first = ranker.rank(postings, sort_mode=SortMode.DATE, page=1, page_size=20)
        second = ranker.rank(postings, sort_mode=SortMode.DATE, page=2, page_size=20)

        assert not set(ids(first)) & set(ids(second))
        assert ids(first)[0] == "job-44"

    def test_default_page_size_comes_from_ranker(self, postings):
        ranker = ListingRanker(default_page_size=10, logger_instance=MagicMock())

        page = ranker.rank(postings)

        assert page.page_size == 10
        assert len(page.items) == 10

    @pytest.mark.parametrize(
        "page,page_size", [(0, 20), (-1, 20), (1, 0), (1, -5), (True, 20), (1.5, 20)]
    )
    def test_invalid_pagination_rejected(self, ranker, postings, page, page_size):
        with pytest.raises(InvalidListingRequestError):
            ranker.rank(postings, page=page, page_size=page_size)

    def test_empty_listing(self, ranker):
        page = ranker.rank([])

        assert page.items == []
        assert page.total_count == 0
        assert page.total_pages == 0


class TestInvariantViolations:
    """Malformed postings are excluded, not fatal."""

    def test_invalid_pay_type_is_excluded(self, viewer):
        logger = MagicMock()
        ranker = ListingRanker(logger_instance=logger)
        broken = JobContext.model_construct(
            **{**dict(make_posting(9)), "pay_type": "WEEKLY"}
        )

        page = ranker.rank([make_posting(1), broken, make_posting(2)], viewer=viewer)

        assert ids(page) == ["job-02", "job-01"]
        assert page.excluded_count == 1
        assert page.total_count == 2
        extra = logger.warning.call_args.kwargs["extra"]
        assert extra["event"] == "listing.posting.excluded"
        assert extra["job_id"] == "job-09"

    def test_missing_location_is_excluded(self, ranker):
        broken = JobContext.model_construct(
            **{**dict(make_posting(9)), "location": None}
        )

        page = ranker.rank([broken], sort_mode=SortMode.DATE)

        assert page.items == []
        assert page.excluded_count == 1

    def test_negative_pay_is_excluded(self, ranker):
        broken = JobContext.model_construct(**{**dict(make_posting(9)), "pay_amount": -5})

        assert ranker.rank([broken]).excluded_count == 1


class TestResolveViewerContext:
    """Tests for resolve_viewer_context."""

    def test_nothing_known_returns_none(self):
        assert resolve_viewer_context() is None

    def test_coordinates_only(self):
        context = resolve_viewer_context(latitude=40.0, longitude=-75.0)

        assert context.location == VIEWER_POINT
        assert context.skill_ids == frozenset()

    def test_profile_location_wins(self, make_worker):
        profile = make_worker()

        context = resolve_viewer_context(profile, latitude=10.0, longitude=10.0)

        assert context.location == profile.location

    def test_coordinates_fill_missing_profile_location(self, make_worker):
        profile = make_worker(location=None)

        context = resolve_viewer_context(profile, latitude=40.0, longitude=-75.0)

        assert context.location == VIEWER_POINT
        assert context.skill_ids == profile.skill_ids

    def test_malformed_coordinates_rejected(self):
        with pytest.raises(InvalidCoordinatesError):
            resolve_viewer_context(latitude=40.0, longitude=None)
