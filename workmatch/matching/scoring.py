"""Compatibility scoring between a worker and a job posting.

The score combines three factors, each on a 0-100 scale:
1. Skills: share of the job's required skills the worker has
2. Distance: haversine miles mapped through a piecewise-linear curve
3. Transportation: whether the worker can actually get to the job

Scores must stay bit-for-bit compatible with previously computed values,
so the weights, fallbacks, and breakpoints below are fixed constants.
"""

import math
from typing import AbstractSet, Optional, Tuple

from workmatch.domain.models import Coordinates, JobContext, WorkerContext

from .geo import haversine_miles
from .models import ScoreBreakdown

SKILL_WEIGHT = 0.40
DISTANCE_WEIGHT = 0.35
TRANSPORT_WEIGHT = 0.25

NEUTRAL_SCORE = 50.0
NO_WORKER_SKILLS_SCORE = 30.0
UNSERVED_TRANSPORT_SCORE = 30.0
FULL_SCORE = 100.0

# (upper bound in miles, score at previous bound, points lost per mile)
_DISTANCE_CURVE = (
    (5.0, 100.0, 5.0),
    (10.0, 80.0, 6.0),
    (25.0, 50.0, 2.0),
)
_DISTANCE_FULL_SCORE_MILES = 1.0
_DISTANCE_TAIL = (25.0, 20.0, 0.5)


def skill_score(job_skill_ids: AbstractSet[str], worker_skill_ids: AbstractSet[str]) -> float:
    """Recall of the job's required skills.

    A worker holding every required skill scores 100 regardless of any
    extra skills they list.
    """
    if not job_skill_ids:
        return NEUTRAL_SCORE
    if not worker_skill_ids:
        return NO_WORKER_SKILLS_SCORE

    matched = len(job_skill_ids & worker_skill_ids)
    return FULL_SCORE * matched / len(job_skill_ids)


def distance_score_for_miles(miles: float) -> float:
    """Map a distance in miles onto the 0-100 proximity curve."""
    if miles <= _DISTANCE_FULL_SCORE_MILES:
        return FULL_SCORE

    lower_bound = _DISTANCE_FULL_SCORE_MILES
    for upper_bound, start_score, slope in _DISTANCE_CURVE:
        if miles <= upper_bound:
            return start_score - (miles - lower_bound) * slope
        lower_bound = upper_bound

    tail_start, tail_score, tail_slope = _DISTANCE_TAIL
    return max(0.0, tail_score - (miles - tail_start) * tail_slope)


def distance_score(
    job_location: Optional[Coordinates], worker_location: Optional[Coordinates]
) -> Tuple[float, Optional[float]]:
    """Proximity score and the underlying distance.

    Returns:
        (score, miles); miles is None and the score neutral when either
        location is unknown
    """
    if job_location is None or worker_location is None:
        return NEUTRAL_SCORE, None

    miles = haversine_miles(worker_location, job_location)
    return distance_score_for_miles(miles), miles


def transport_score(provides_transportation: bool, needs_transportation: bool) -> float:
    if not needs_transportation:
        return FULL_SCORE
    if provides_transportation:
        return FULL_SCORE
    return UNSERVED_TRANSPORT_SCORE


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives.

    Python's round() uses banker's rounding, which would move totals such
    as 52.5 down to 52.
    """
    return int(math.floor(value + 0.5))


def weighted_total(skill: float, distance: float, transport: float) -> int:
    """Combine the three factor scores into the 0-100 total."""
    raw = SKILL_WEIGHT * skill + DISTANCE_WEIGHT * distance + TRANSPORT_WEIGHT * transport
    return min(100, max(0, round_half_up(raw)))


class ScoreEngine:
    """Scores workers against jobs.

    Stateless and side-effect free, so one instance can be shared by any
    number of threads.
    """

    def score(self, job: JobContext, worker: WorkerContext) -> ScoreBreakdown:
        """Score one worker against one job.

        Args:
            job: Posting snapshot
            worker: Worker snapshot

        Returns:
            ScoreBreakdown with all three factors and the weighted total
        """
        skills = skill_score(job.skill_ids, worker.skill_ids)
        distance, miles = distance_score(job.location, worker.location)
        transport = transport_score(job.provides_transportation, worker.needs_transportation)

        return ScoreBreakdown(
            skill_score=skills,
            distance_score=distance,
            transport_score=transport,
            total=weighted_total(skills, distance, transport),
            distance_miles=miles,
        )


_default_engine = ScoreEngine()


def score(job: JobContext, worker: WorkerContext) -> ScoreBreakdown:
    """Score a (job, worker) pair with the shared engine."""
    return _default_engine.score(job, worker)
