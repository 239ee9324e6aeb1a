"""End-to-end notification flows over SQLite with mocked provider HTTP."""

from unittest.mock import MagicMock

import pytest

from workmatch.config.models import AppConfig, NotificationConfig
from workmatch.domain.models import DeliveryMethod, DeliveryStatus, UserType
from workmatch.notifications.channels import InAppChannel, SmsChannel, VoiceCallChannel
from workmatch.notifications.dispatcher import NotificationDispatcher
from workmatch.persistence import (
    JobRepository,
    SqlNotificationStore,
    WorkerRepository,
    get_session,
)
from workmatch.pipeline import MatchingPipeline

pytestmark = pytest.mark.integration


def make_response(status_code=200, json_data=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = json_data if json_data is not None else {}
    return response


@pytest.fixture
def http_session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def marketplace(database, make_posting, make_worker):
    """One employer, two good matches and one poor match for job-1."""
    with get_session() as session:
        workers = WorkerRepository(session)
        workers.add_profile(
            make_worker(id="employer-1", name="Acme Logistics", user_type=UserType.EMPLOYER)
        )
        workers.add_profile(make_worker(id="worker-1"))
        workers.add_profile(
            make_worker(id="worker-2", name="Sam Ortiz", user_type=UserType.BOTH, phone="+15554445555")
        )
        workers.add_profile(
            make_worker(id="worker-3", name="Lee Park", skill_ids=frozenset({"cleaning"}))
        )
        JobRepository(session).add_posting(make_posting())
    return database


def build_pipeline(notification_config, channels, sleeps=None):
    app_config = AppConfig(notifications=notification_config)
    dispatcher = NotificationDispatcher(
        SqlNotificationStore(),
        channels=channels,
        config=app_config.notifications,
        matching_config=app_config.matching,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )
    return MatchingPipeline(app_config, dispatcher=dispatcher), dispatcher


def test_in_app_fanout_is_idempotent(marketplace):
    pipeline, dispatcher = build_pipeline(
        NotificationConfig(), {DeliveryMethod.IN_APP: InAppChannel()}
    )

    first = pipeline.notify_job("job-1")
    second = pipeline.notify_job("job-1")

    assert [n.recipient_id for n in first.notifications] == ["worker-1", "worker-2"]
    assert first.created_count == 2
    assert second.created_count == 0
    assert second.duplicate_count == 2
    assert [n.id for n in second.notifications] == [n.id for n in first.notifications]

    store = dispatcher.store
    for worker_id in ("worker-1", "worker-2"):
        items, total = store.list_for_recipient(worker_id)
        assert total == 1
        assert items[0].delivery_status == DeliveryStatus.PENDING
        assert items[0].payload["matchScore"] == 97
    assert store.list_for_recipient("worker-3")[1] == 0
    assert store.list_for_recipient("employer-1")[1] == 0


def test_voice_fanout_settles_through_provider_callback(marketplace, http_session):
    call_ids = {"+15552223333": "call-1", "+15554445555": "call-2"}
    http_session.post.side_effect = lambda url, json, **kwargs: make_response(
        201, {"call_id": call_ids[json["to"]]}
    )
    config = NotificationConfig(
        enabled_channels=["IN_APP", "VOICE_CALL"], job_match_delivery_method="VOICE_CALL"
    )
    voice = VoiceCallChannel("https://voice.example.com", "voice-key", session=http_session)
    pipeline, dispatcher = build_pipeline(config, {DeliveryMethod.VOICE_CALL: voice})

    result = pipeline.notify_job("job-1")

    assert result.created_count == 2
    assert http_session.post.call_count == 2
    dialled = {call.kwargs["json"]["to"] for call in http_session.post.call_args_list}
    assert dialled == {"+15552223333", "+15554445555"}

    pending = [dispatcher.store.get(n.id) for n in result.notifications]
    assert all(n.delivery_status == DeliveryStatus.PENDING for n in pending)
    assert [n.provider_reference for n in pending] == ["call-1", "call-2"]

    answered = pending[0]
    settled = dispatcher.handle_provider_callback(
        {"call_id": "call-1", "status": "completed", "metadata": {"notificationId": answered.id}}
    )
    missed = dispatcher.handle_provider_callback({"call_id": "call-2", "status": "no-answer"})

    assert settled.delivery_status == DeliveryStatus.DELIVERED
    assert settled.delivered_at is not None
    assert settled.provider_status == "completed"
    assert missed.delivery_status == DeliveryStatus.FAILED
    assert missed.provider_reference == "call-2"


def test_failed_sms_is_retried_from_the_store(marketplace, http_session):
    http_session.post.return_value = make_response(503, reason="Service Unavailable")
    config = NotificationConfig(
        enabled_channels=["IN_APP", "SMS"], max_retries=2, retry_initial_delay=1.0
    )
    sms = SmsChannel("https://sms.example.com/messages", "sms-key", session=http_session)
    sleeps = []
    pipeline, dispatcher = build_pipeline(config, {DeliveryMethod.SMS: sms}, sleeps)
    contact = pipeline.resolve_contact("worker-1")

    failed = dispatcher.application_decided(
        "worker-1",
        "Warehouse Helper",
        "job-1",
        "app-1",
        accepted=True,
        delivery_method=DeliveryMethod.SMS,
        contact=contact,
    )

    assert failed.delivery_status == DeliveryStatus.FAILED
    assert http_session.post.call_count == 3
    assert sleeps == [1.0, 2.0]
    assert [n.id for n in dispatcher.store.list_failed()] == [failed.id]

    http_session.post.return_value = make_response(200, {"id": "msg-9"})
    retried = dispatcher.retry_failed(failed.id, contact=contact)

    assert retried.delivery_status == DeliveryStatus.DELIVERED
    assert retried.provider_reference == "msg-9"
    assert dispatcher.store.list_failed() == []


def test_read_state_after_fanout(marketplace):
    pipeline, dispatcher = build_pipeline(
        NotificationConfig(), {DeliveryMethod.IN_APP: InAppChannel()}
    )
    pipeline.notify_job("job-1")
    dispatcher.application_decided("worker-1", "Warehouse Helper", "job-1", "app-1", accepted=False)

    store = dispatcher.store
    items, total = store.list_for_recipient("worker-1")
    assert total == 2
    assert store.unread_count("worker-1") == 2

    assert store.mark_read(items[0].id, "worker-2") is False
    assert store.mark_read(items[0].id, "worker-1") is True
    assert store.unread_count("worker-1") == 1
    assert store.mark_all_read("worker-1") == 1
    assert store.unread_count("worker-1") == 0
    assert store.unread_count("worker-2") == 1
