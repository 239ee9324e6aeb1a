"""Store-backed orchestration of scoring, matching, listing, and fan-out.

The matching components work on in-memory contexts; this module wires
them to the repositories so callers can work with ids.
"""

import threading
from contextlib import AbstractContextManager
from typing import Callable, Optional, Union
from uuid import uuid4

from workmatch.config.models import AppConfig
from workmatch.domain.models import RecipientContact
from workmatch.logging import get_logger
from workmatch.logging.context import log_context
from workmatch.matching.finder import MatchFinder
from workmatch.matching.models import ListingPage, MatchScanResult, ScoreBreakdown, SortMode
from workmatch.matching.ranking import ListingRanker, resolve_viewer_context
from workmatch.matching.scoring import ScoreEngine
from workmatch.notifications.dispatcher import NotificationDispatcher
from workmatch.notifications.models import FanOutResult
from workmatch.persistence.database import get_session
from workmatch.persistence.exceptions import RecordNotFoundError
from workmatch.persistence.repositories import JobRepository, ListingFilters, WorkerRepository

logger = get_logger(__name__, component="pipeline")


class MatchingPipeline:
    """Entry points used by the CLI and by the API layer.

    Each operation opens its own session; the worker stream of a scan is
    read on the calling thread while notifications are written through
    the dispatcher's store.
    """

    def __init__(
        self,
        app_config: AppConfig,
        dispatcher: Optional[NotificationDispatcher] = None,
        score_engine: Optional[ScoreEngine] = None,
        session_factory: Callable[[], AbstractContextManager] = get_session,
    ):
        """
        Initialize the pipeline.

        Args:
            app_config: Application configuration
            dispatcher: Dispatcher for job-match fan-out (required by notify_job)
            score_engine: Scoring engine shared by finder and ranker
            session_factory: Context manager factory yielding database sessions
        """
        self.app_config = app_config
        self.dispatcher = dispatcher
        self.score_engine = score_engine or ScoreEngine()
        self.match_finder = MatchFinder.from_config(app_config.matching, self.score_engine)
        self.ranker = ListingRanker(
            score_engine=self.score_engine, default_page_size=app_config.listing.page_size
        )
        self._session_factory = session_factory

    def score_pair(self, job_id: str, worker_id: str) -> ScoreBreakdown:
        """Score one worker against one posting.

        Raises:
            RecordNotFoundError: If either record does not exist
        """
        with self._session_factory() as session:
            posting = JobRepository(session).get_posting(job_id)
            if posting is None:
                raise RecordNotFoundError(f"Job {job_id} not found")
            worker = WorkerRepository(session).get_worker_context(worker_id)
            if worker is None:
                raise RecordNotFoundError(f"User {worker_id} not found")

        return self.score_engine.score(posting.to_context(), worker)

    def find_matches_for_job(
        self,
        job_id: str,
        min_score: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> MatchScanResult:
        """Scan all WORKER and BOTH users (except the employer) for a posting.

        Args:
            job_id: Posting to match
            min_score: Inclusive threshold (defaults to the general-query threshold)
            cancel_event: Optional signal that stops the scan early

        Raises:
            RecordNotFoundError: If the posting does not exist
        """
        threshold = (
            self.app_config.matching.min_match_score_for_general_query
            if min_score is None
            else min_score
        )

        with self._session_factory() as session:
            posting = JobRepository(session).get_posting(job_id)
            if posting is None:
                raise RecordNotFoundError(f"Job {job_id} not found")

            pool = WorkerRepository(session).iter_matchable_workers(
                exclude_user_id=posting.employer_id,
                chunk_size=self.app_config.matching.scan_batch_size,
            )
            return self.match_finder.scan(posting.to_context(), pool, threshold, cancel_event)

    def list_jobs(
        self,
        filters: Optional[ListingFilters] = None,
        viewer_id: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        sort_mode: Union[SortMode, str] = SortMode.MATCH,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ListingPage:
        """Fetch, score, order, and paginate postings for a viewer.

        The viewer's stored profile is used when viewer_id is given;
        explicit coordinates fill in a missing profile location.

        Raises:
            InvalidListingRequestError: On bad sort mode or pagination
            InvalidCoordinatesError: On malformed coordinates
        """
        with self._session_factory() as session:
            profile = WorkerRepository(session).get_profile(viewer_id) if viewer_id else None
            postings = JobRepository(session).list_open_postings(filters)

        viewer = resolve_viewer_context(profile, latitude, longitude)
        return self.ranker.rank(
            [posting.to_context() for posting in postings],
            viewer=viewer,
            sort_mode=sort_mode,
            page=page,
            page_size=page_size,
        )

    def notify_job(
        self, job_id: str, cancel_event: Optional[threading.Event] = None
    ) -> FanOutResult:
        """Run the job-match fan-out for a stored posting.

        Raises:
            RecordNotFoundError: If the posting does not exist
            ValueError: If the pipeline was built without a dispatcher
        """
        if self.dispatcher is None:
            raise ValueError("notify_job requires a NotificationDispatcher")

        with log_context(job_id=job_id, run_id=uuid4().hex):
            with self._session_factory() as session:
                posting = JobRepository(session).get_posting(job_id)
                if posting is None:
                    raise RecordNotFoundError(f"Job {job_id} not found")

                logger.info(
                    f"Starting job-match fan-out for {posting.title}",
                    extra={"event": "pipeline.fanout.started"},
                )
                pool = WorkerRepository(session).iter_matchable_workers(
                    exclude_user_id=posting.employer_id,
                    chunk_size=self.app_config.matching.scan_batch_size,
                )
                return self.dispatcher.fan_out(
                    posting, pool, contact_resolver=self.resolve_contact, cancel_event=cancel_event
                )

    def resolve_contact(self, user_id: str) -> Optional[RecipientContact]:
        """Contact details of a user; safe to call from fan-out threads."""
        with self._session_factory() as session:
            profile = WorkerRepository(session).get_profile(user_id)
        return profile.to_contact() if profile else None
