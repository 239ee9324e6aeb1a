"""Data models and exceptions for the notification dispatcher.

This module defines the delivery result types handed back by channels,
the message passed to them, and the exceptions used throughout the
notification pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from workmatch.domain.models import JobPosting, Notification, RecipientContact


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails due to configuration or missing variables."""

    pass


class NotificationNotFoundError(NotificationError):
    """Raised when an operation refers to a notification that does not exist."""

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification {notification_id} not found")


class ChannelDeliveryError(NotificationError):
    """Transient transport failure; the dispatcher retries these with backoff."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SMTPDeliveryError(ChannelDeliveryError):
    """Raised when the SMTP server rejects or drops a message."""

    pass


class DeliveryOutcome(str, Enum):
    """What a channel reports after handling one message."""

    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    # Accepted, final state arrives later (in-app pickup, provider callback)
    DEFERRED = "DEFERRED"


@dataclass(frozen=True)
class DeliveryResult:
    """Result of a single channel send."""

    outcome: DeliveryOutcome
    provider_reference: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def delivered(cls, provider_reference: Optional[str] = None) -> "DeliveryResult":
        return cls(DeliveryOutcome.DELIVERED, provider_reference=provider_reference)

    @classmethod
    def deferred(cls, provider_reference: Optional[str] = None) -> "DeliveryResult":
        return cls(DeliveryOutcome.DEFERRED, provider_reference=provider_reference)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(DeliveryOutcome.FAILED, error=error)


@dataclass(frozen=True)
class ChannelMessage:
    """Everything a channel needs to deliver one notification.

    Attributes:
        notification: The persisted record being delivered
        contact: Caller-supplied contact details (None when unknown)
        context: Per-type channel context built by the payload builders
        job: Posting the notification is about, when the caller has it
    """

    notification: Notification
    contact: Optional[RecipientContact]
    context: Dict[str, Any]
    job: Optional[JobPosting] = None


@dataclass
class FanOutResult:
    """Outcome of notifying every matching worker about one posting.

    Attributes:
        job_id: Posting the fan-out was run for
        matched_count: Workers at or above the notification threshold
        notifications: Records created or found, in match order
        created_count: Records newly written by this run
        duplicate_count: Records that already existed for this posting
        failed_count: Recipients whose notification could not be written
    """

    job_id: str
    matched_count: int = 0
    notifications: List[Notification] = field(default_factory=list)
    created_count: int = 0
    duplicate_count: int = 0
    failed_count: int = 0

    @property
    def had_failures(self) -> bool:
        return self.failed_count > 0
