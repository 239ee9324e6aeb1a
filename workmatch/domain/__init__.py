"""Domain models for the WorkMatch engine."""

from .models import (
    Coordinates,
    DeliveryMethod,
    DeliveryStatus,
    JobContext,
    JobPosting,
    JobStatus,
    Notification,
    NotificationType,
    PayType,
    RecipientContact,
    UserType,
    WorkerContext,
    WorkerProfile,
)

__all__ = [
    "Coordinates",
    "DeliveryMethod",
    "DeliveryStatus",
    "JobContext",
    "JobPosting",
    "JobStatus",
    "Notification",
    "NotificationType",
    "PayType",
    "RecipientContact",
    "UserType",
    "WorkerContext",
    "WorkerProfile",
]
