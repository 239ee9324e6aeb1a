"""Exceptions raised by the scoring, matching, and listing components.

Missing inputs (no location, no skills) are never errors: the score engine
falls back to neutral values for them. The exceptions here cover malformed
input that must be rejected and per-posting invariant violations.
"""


class MatchingError(Exception):
    """Base exception for matching and ranking errors."""

    pass


class InvalidCoordinatesError(MatchingError, ValueError):
    """Raised when a latitude/longitude pair is incomplete or out of range."""

    pass


class InvalidMatchRequestError(MatchingError, ValueError):
    """Raised when a match scan is requested with invalid parameters."""

    pass


class InvalidListingRequestError(MatchingError, ValueError):
    """Raised for an unknown sort mode or a non-positive page/page size."""

    pass


class PostingInvariantError(MatchingError):
    """Raised when a single posting violates a domain invariant.

    The listing ranker catches this per posting and excludes the posting
    from the output instead of failing the whole listing.
    """

    def __init__(self, posting_id: str, reason: str):
        self.posting_id = posting_id
        self.reason = reason
        super().__init__(f"Posting {posting_id!r} excluded: {reason}")
