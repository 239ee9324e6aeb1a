"""Notification store interface and its SQL implementation.

The dispatcher talks to a NotificationStore; SqlNotificationStore opens
one session per call so it can be shared by fan-out worker threads.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from workmatch.domain.models import DeliveryStatus, Notification
from workmatch.logging import get_logger

from .database import get_session
from .exceptions import DuplicateNotificationError
from .repositories import NotificationRepository

logger = get_logger(__name__, component="notification_store")

SessionFactory = Callable[[], AbstractContextManager]


class NotificationStore(ABC):
    """Durable storage for notification records.

    append() must be atomic with respect to (recipient_id, type,
    source_event): concurrent appends of the same event yield one record.
    """

    @abstractmethod
    def append(self, notification: Notification) -> Tuple[Notification, bool]:
        """Persist a new record; returns (record, created)."""

    @abstractmethod
    def update_delivery(
        self,
        notification_id: str,
        status: DeliveryStatus,
        delivered_at: Optional[datetime] = None,
        provider_reference: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> Notification:
        """Record a delivery state change."""

    @abstractmethod
    def get(self, notification_id: str) -> Optional[Notification]:
        """Fetch a record by id."""

    @abstractmethod
    def find_by_provider_reference(self, provider_reference: str) -> Optional[Notification]:
        """Fetch the record a provider callback refers to."""

    @abstractmethod
    def list_for_recipient(
        self, recipient_id: str, page: int = 1, page_size: int = 20, unread_only: bool = False
    ) -> Tuple[List[Notification], int]:
        """A page of a recipient's records, newest first, with the total count."""

    @abstractmethod
    def unread_count(self, recipient_id: str) -> int:
        """Number of unread records for a recipient."""

    @abstractmethod
    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        """Mark one of the recipient's records read."""

    @abstractmethod
    def mark_all_read(self, recipient_id: str) -> int:
        """Mark all of the recipient's records read."""


class SqlNotificationStore(NotificationStore):
    """NotificationStore backed by NotificationRepository, one session per call."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or get_session

    def _repository_call(self, method: str, *args, **kwargs):
        with self._session_factory() as session:
            return getattr(NotificationRepository(session), method)(*args, **kwargs)

    def append(self, notification: Notification) -> Tuple[Notification, bool]:
        try:
            return self._repository_call("append", notification)
        except DuplicateNotificationError as e:
            # Lost an insert race; the winner's row is committed by now
            with self._session_factory() as session:
                existing = NotificationRepository(session).find_by_event(
                    e.recipient_id, e.notification_type, e.source_event
                )
            if existing is None:
                raise
            logger.debug(
                "Concurrent duplicate notification resolved to existing record",
                extra={"event": "notification.duplicate", "notification_id": existing.id},
            )
            return existing, False

    def update_delivery(
        self,
        notification_id: str,
        status: DeliveryStatus,
        delivered_at: Optional[datetime] = None,
        provider_reference: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> Notification:
        return self._repository_call(
            "update_delivery",
            notification_id,
            status,
            delivered_at=delivered_at,
            provider_reference=provider_reference,
            provider_status=provider_status,
        )

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._repository_call("get", notification_id)

    def find_by_provider_reference(self, provider_reference: str) -> Optional[Notification]:
        return self._repository_call("find_by_provider_reference", provider_reference)

    def list_for_recipient(
        self, recipient_id: str, page: int = 1, page_size: int = 20, unread_only: bool = False
    ) -> Tuple[List[Notification], int]:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        return self._repository_call(
            "list_for_recipient",
            recipient_id,
            page=page,
            page_size=page_size,
            unread_only=unread_only,
        )

    def unread_count(self, recipient_id: str) -> int:
        return self._repository_call("unread_count", recipient_id)

    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        return self._repository_call("mark_read", notification_id, recipient_id)

    def mark_all_read(self, recipient_id: str) -> int:
        return self._repository_call("mark_all_read", recipient_id)

    def list_failed(self, limit: int = 100, recipient_id: Optional[str] = None) -> List[Notification]:
        return self._repository_call("list_failed", limit=limit, recipient_id=recipient_id)

