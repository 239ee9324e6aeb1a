"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can
catch every storage failure with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the database cannot be initialised or reached.

    Examples:
    - Invalid database URL
    - Database file not accessible
    - Session requested before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation needs a record that does not exist.

    Optional lookups return None instead.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated."""

    pass


class DuplicateNotificationError(DataIntegrityError):
    """Raised when a notification for the same (recipient, type, source_event) exists."""

    def __init__(self, recipient_id: str, notification_type: str, source_event: str):
        self.recipient_id = recipient_id
        self.notification_type = notification_type
        self.source_event = source_event
        super().__init__(
            f"Notification {notification_type} for recipient {recipient_id} "
            f"and event {source_event} already exists"
        )
