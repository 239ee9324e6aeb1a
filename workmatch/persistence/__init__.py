"""Persistence layer for postings, worker profiles, and notifications.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes (work inside a caller-owned session)
    - JobRepository: posting lookups and listing queries
    - WorkerRepository: profiles and the matchable-worker stream
    - NotificationRepository: notification records and read state

    # Notification store (session per call, safe to share across threads)
    - NotificationStore / SqlNotificationStore

Example usage:
    >>> from workmatch.persistence import init_database, get_session, JobRepository
    >>>
    >>> init_database("sqlite:///./data/workmatch.db")
    >>>
    >>> with get_session() as session:
    ...     posting = JobRepository(session).get_posting("job-7")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    DuplicateNotificationError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    JobRepository,
    ListingFilters,
    NotificationRepository,
    WorkerRepository,
)
from .stores import NotificationStore, SqlNotificationStore

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "JobRepository",
    "WorkerRepository",
    "NotificationRepository",
    "ListingFilters",
    # Stores
    "NotificationStore",
    "SqlNotificationStore",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "DuplicateNotificationError",
]
