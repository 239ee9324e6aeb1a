"""Discovery of workers who match a newly created posting.

The finder streams the candidate pool in fixed-size batches, scores the
batches on a thread pool, keeps only candidates at or above the threshold,
and sorts the reduced list once at the end. At most a bounded number of
batches are in flight, so the pool is never held in memory as a whole.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextvars import copy_context
from dataclasses import dataclass, field
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union
from uuid import uuid4

from workmatch.domain.models import JobContext, WorkerContext
from workmatch.logging import get_logger
from workmatch.logging.context import log_context

from .exceptions import InvalidMatchRequestError
from .models import MatchCandidate, MatchScanResult
from .scoring import ScoreEngine

logger = get_logger(__name__, component="matching")

# A pool entry is a worker id with either its scoring snapshot or the
# exception raised while the store tried to load it.
PoolItem = Tuple[str, Union[WorkerContext, Exception]]

DEFAULT_MIN_SCORE = 50


@dataclass
class _BatchOutcome:
    candidates: List[MatchCandidate] = field(default_factory=list)
    scanned: int = 0
    skipped: int = 0
    cancelled: bool = False


class _CandidateReducer:
    """Accumulates batch results, trimming to max_candidates as it goes."""

    def __init__(self, max_candidates: Optional[int]):
        self.max_candidates = max_candidates
        self.items: List[MatchCandidate] = []

    def add(self, candidates: List[MatchCandidate]) -> None:
        self.items.extend(candidates)
        # Trim lazily so the sort cost is amortised over several batches
        if self.max_candidates is not None and len(self.items) > 2 * self.max_candidates:
            self.items = self._ordered()[: self.max_candidates]

    def finish(self) -> List[MatchCandidate]:
        ordered = self._ordered()
        if self.max_candidates is not None:
            return ordered[: self.max_candidates]
        return ordered

    def _ordered(self) -> List[MatchCandidate]:
        return sorted(self.items, key=lambda candidate: candidate.sort_key)


class MatchFinder:
    """Scans a worker population for candidates matching one posting.

    Responsibilities:
    - Exclude the posting's own employer and duplicate worker ids
    - Skip (and log) candidates whose profile could not be loaded or scored
    - Score batches concurrently and merge the survivors
    - Return candidates ordered by score descending, worker id ascending
    - Stop early when the caller's cancel event is set
    """

    def __init__(
        self,
        score_engine: Optional[ScoreEngine] = None,
        batch_size: int = 500,
        max_workers: int = 4,
        max_candidates: Optional[int] = None,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize MatchFinder.

        Args:
            score_engine: Engine used to score candidates (default engine if None)
            batch_size: Candidates per scoring batch
            max_workers: Scoring threads; batches in flight are capped at twice this
            max_candidates: Keep at most this many top candidates (None = all)
            logger_instance: Optional logger instance (defaults to module logger)
        """
        if batch_size < 1:
            raise InvalidMatchRequestError("batch_size must be at least 1")
        if max_workers < 1:
            raise InvalidMatchRequestError("max_workers must be at least 1")
        if max_candidates is not None and max_candidates < 1:
            raise InvalidMatchRequestError("max_candidates must be at least 1 when set")

        self.score_engine = score_engine or ScoreEngine()
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.max_candidates = max_candidates
        self.logger = logger_instance or logger

    @classmethod
    def from_config(cls, matching_config, score_engine: Optional[ScoreEngine] = None) -> "MatchFinder":
        """Build a finder from a MatchingConfig."""
        return cls(
            score_engine=score_engine,
            batch_size=matching_config.scan_batch_size,
            max_workers=matching_config.scan_workers,
            max_candidates=matching_config.max_candidates,
        )

    def find_matches(
        self,
        job: JobContext,
        candidate_pool: Iterable[PoolItem],
        min_score: int = DEFAULT_MIN_SCORE,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[MatchCandidate]:
        """Return workers scoring at least min_score for the job.

        Args:
            job: Posting to match workers against
            candidate_pool: Iterable of (worker_id, WorkerContext | Exception)
            min_score: Inclusive score threshold (0-100)
            cancel_event: Optional signal that stops the scan early

        Returns:
            Ordered candidates; empty when nobody clears the threshold
        """
        return self.scan(job, candidate_pool, min_score, cancel_event).candidates

    def scan(
        self,
        job: JobContext,
        candidate_pool: Iterable[PoolItem],
        min_score: int = DEFAULT_MIN_SCORE,
        cancel_event: Optional[threading.Event] = None,
    ) -> MatchScanResult:
        """Run a scan and return the candidates along with scan statistics.

        Raises:
            InvalidMatchRequestError: If min_score is outside 0-100
        """
        if isinstance(min_score, bool) or not isinstance(min_score, int):
            raise InvalidMatchRequestError(f"min_score must be an integer, got {min_score!r}")
        if not 0 <= min_score <= 100:
            raise InvalidMatchRequestError(f"min_score must be between 0 and 100, got {min_score}")

        result = MatchScanResult(job_id=job.id)
        reducer = _CandidateReducer(self.max_candidates)

        with log_context(job_id=job.id, scan_id=uuid4().hex[:12]):
            self.logger.info(
                "Match scan started",
                extra={"event": "match.scan.started", "min_score": min_score},
            )

            batches = self._batches(candidate_pool, job.employer_id, result)
            in_flight: Set[Future] = set()
            max_in_flight = self.max_workers * 2

            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="match-scan"
            ) as executor:
                for batch in batches:
                    if _is_set(cancel_event):
                        result.cancelled = True
                        break

                    # Each task gets its own context copy so log fields follow it
                    ctx = copy_context()
                    in_flight.add(
                        executor.submit(ctx.run, self._score_batch, job, batch, min_score, cancel_event)
                    )

                    if len(in_flight) >= max_in_flight:
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        self._collect(done, reducer, result)

                if result.cancelled:
                    for future in in_flight:
                        future.cancel()

                done, _ = wait(in_flight)
                self._collect(done, reducer, result)

            result.candidates = reducer.finish()

            if result.cancelled:
                self.logger.warning(
                    f"Match scan cancelled after {result.scanned_count} candidates; "
                    f"returning {len(result.candidates)} partial matches",
                    extra={
                        "event": "match.scan.cancelled",
                        "scanned_count": result.scanned_count,
                        "match_count": len(result.candidates),
                    },
                )
            else:
                self.logger.info(
                    f"Match scan completed: {len(result.candidates)} matches "
                    f"from {result.scanned_count} candidates",
                    extra={
                        "event": "match.scan.completed",
                        "scanned_count": result.scanned_count,
                        "skipped_count": result.skipped_count,
                        "excluded_count": result.excluded_count,
                        "match_count": len(result.candidates),
                    },
                )

        return result

    def _batches(
        self,
        candidate_pool: Iterable[PoolItem],
        employer_id: str,
        result: MatchScanResult,
    ) -> Iterator[List[Tuple[str, WorkerContext]]]:
        """Yield batches of scorable candidates.

        Runs on the caller's thread: exclusion, de-duplication, and lookup
        failures are handled here so scoring threads only see valid entries.
        """
        seen: Set[str] = set()

        def admissible() -> Iterator[Tuple[str, WorkerContext]]:
            for worker_id, context in candidate_pool:
                if worker_id == employer_id or worker_id in seen:
                    result.excluded_count += 1
                    continue
                seen.add(worker_id)

                if isinstance(context, Exception):
                    result.skipped_count += 1
                    self.logger.warning(
                        f"Skipping worker {worker_id}: profile lookup failed: {context}",
                        extra={
                            "event": "match.candidate.skipped",
                            "worker_id": worker_id,
                            "reason": "lookup_failed",
                            "error_type": type(context).__name__,
                        },
                    )
                    continue

                yield worker_id, context

        stream = admissible()
        while True:
            batch = list(islice(stream, self.batch_size))
            if not batch:
                return
            yield batch

    def _score_batch(
        self,
        job: JobContext,
        batch: List[Tuple[str, WorkerContext]],
        min_score: int,
        cancel_event: Optional[threading.Event],
    ) -> _BatchOutcome:
        outcome = _BatchOutcome()

        for worker_id, context in batch:
            if _is_set(cancel_event):
                outcome.cancelled = True
                break

            try:
                total = self.score_engine.score(job, context).total
            except Exception as e:
                outcome.skipped += 1
                self.logger.warning(
                    f"Skipping worker {worker_id}: scoring failed: {e}",
                    extra={
                        "event": "match.candidate.skipped",
                        "worker_id": worker_id,
                        "reason": "scoring_failed",
                        "error_type": type(e).__name__,
                    },
                )
                continue

            outcome.scanned += 1
            if total >= min_score:
                outcome.candidates.append(MatchCandidate(worker_id=worker_id, score=total))

        return outcome

    def _collect(
        self, futures: Iterable[Future], reducer: _CandidateReducer, result: MatchScanResult
    ) -> None:
        for future in futures:
            if future.cancelled():
                continue
            outcome = future.result()
            reducer.add(outcome.candidates)
            result.scanned_count += outcome.scanned
            result.skipped_count += outcome.skipped
            if outcome.cancelled:
                result.cancelled = True


def _is_set(event: Optional[threading.Event]) -> bool:
    return event is not None and event.is_set()
