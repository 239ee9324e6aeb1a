"""Shared fixtures for the WorkMatch test suite."""

import threading
from datetime import datetime, timezone

import pytest

from workmatch.domain.models import (
    Coordinates,
    DeliveryStatus,
    JobPosting,
    Notification,
    PayType,
    UserType,
    WorkerProfile,
)
from workmatch.logging.context import clear_log_context
from workmatch.persistence.database import close_database, init_database
from workmatch.persistence.exceptions import RecordNotFoundError
from workmatch.persistence.stores import NotificationStore

# Downtown Philadelphia and a point roughly 2.8 miles north of it
JOB_LOCATION = Coordinates(latitude=39.9526, longitude=-75.1652)
NEARBY_LOCATION = Coordinates(latitude=39.9930, longitude=-75.1652)


@pytest.fixture
def make_posting():
    """Factory for JobPosting with sensible defaults."""

    def _make(**overrides):
        fields = {
            "id": "job-1",
            "employer_id": "employer-1",
            "title": "Warehouse Helper",
            "description": "Unload trucks and stack pallets.",
            "skill_ids": frozenset({"lifting", "forklift"}),
            "skill_names": ["Forklift", "Lifting"],
            "location": JOB_LOCATION,
            "city": "Philadelphia",
            "zip_code": "19107",
            "pay_amount": 18.0,
            "pay_type": PayType.HOURLY,
            "start_date": datetime(2025, 11, 10, 8, 0, tzinfo=timezone.utc),
            "duration_hours": 6,
            "employer_name": "Acme Logistics",
            "employer_phone": "+15550001111",
            "created_at": datetime(2025, 11, 3, 9, 0, tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return JobPosting(**fields)

    return _make


@pytest.fixture
def make_worker():
    """Factory for WorkerProfile with sensible defaults."""

    def _make(**overrides):
        fields = {
            "id": "worker-1",
            "name": "Dana Rivera",
            "user_type": UserType.WORKER,
            "skill_ids": frozenset({"lifting", "forklift"}),
            "location": NEARBY_LOCATION,
            "needs_transportation": False,
            "phone": "+15552223333",
            "email": "dana@example.com",
        }
        fields.update(overrides)
        return WorkerProfile(**fields)

    return _make


@pytest.fixture
def sample_posting(make_posting):
    return make_posting()


@pytest.fixture
def sample_worker(make_worker):
    return make_worker()


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database; fan-out threads need a shared file."""
    db_url = f"sqlite:///{tmp_path / 'workmatch.db'}"
    init_database(db_url)
    yield db_url
    close_database()


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()


class MemoryNotificationStore(NotificationStore):
    """Thread-safe in-memory NotificationStore for dispatcher tests."""

    def __init__(self):
        self.records = {}
        self.update_calls = []
        self._lock = threading.Lock()

    def append(self, notification):
        with self._lock:
            if notification.source_event is not None:
                for existing in self.records.values():
                    if (
                        existing.recipient_id == notification.recipient_id
                        and existing.type == notification.type
                        and existing.source_event == notification.source_event
                    ):
                        return existing, False
            self.records[notification.id] = notification
            return notification, True

    def update_delivery(
        self,
        notification_id,
        status,
        delivered_at=None,
        provider_reference=None,
        provider_status=None,
    ):
        with self._lock:
            self.update_calls.append((notification_id, status))
            current = self.records.get(notification_id)
            if current is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")
            update = {"delivery_status": status}
            if delivered_at is not None:
                update["delivered_at"] = delivered_at
            if provider_reference is not None:
                update["provider_reference"] = provider_reference
            if provider_status is not None:
                update["provider_status"] = provider_status
            self.records[notification_id] = current.model_copy(update=update)
            return self.records[notification_id]

    def get(self, notification_id):
        return self.records.get(notification_id)

    def find_by_provider_reference(self, provider_reference):
        for record in self.records.values():
            if record.provider_reference == provider_reference:
                return record
        return None

    def list_for_recipient(self, recipient_id, page=1, page_size=20, unread_only=False):
        items = [
            r for r in self.records.values()
            if r.recipient_id == recipient_id and not (unread_only and r.is_read)
        ]
        items.sort(key=lambda r: r.created_at, reverse=True)
        offset = (page - 1) * page_size
        return items[offset:offset + page_size], len(items)

    def unread_count(self, recipient_id):
        return len(self.list_for_recipient(recipient_id, unread_only=True, page_size=10**6)[0])

    def mark_read(self, notification_id, recipient_id):
        record = self.records.get(notification_id)
        if record is None or record.recipient_id != recipient_id:
            return False
        self.records[notification_id] = record.model_copy(update={"is_read": True})
        return True

    def mark_all_read(self, recipient_id):
        count = 0
        for record in list(self.records.values()):
            if record.recipient_id == recipient_id and not record.is_read:
                self.mark_read(record.id, recipient_id)
                count += 1
        return count

    def by_status(self, status: DeliveryStatus):
        return [r for r in self.records.values() if r.delivery_status == status]


@pytest.fixture
def memory_store():
    return MemoryNotificationStore()


@pytest.fixture
def failed_notification():
    """A FAILED SMS record ready for retry."""

    def _make(store, **overrides):
        fields = {
            "id": "n-failed",
            "recipient_id": "worker-1",
            "type": "APPLICATION_ACCEPTED",
            "title": "Application Accepted!",
            "body": "accepted",
            "delivery_method": "SMS",
            "delivery_status": DeliveryStatus.FAILED,
            "source_event": "application:app-1:decided",
        }
        fields.update(overrides)
        notification = Notification(**fields)
        store.append(notification)
        return notification

    return _make
