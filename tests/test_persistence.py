"""Unit tests for persistence layer."""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from workmatch.domain.models import (
    Coordinates,
    DeliveryMethod,
    DeliveryStatus,
    JobStatus,
    Notification,
    NotificationType,
    UserType,
)
from workmatch.persistence import (
    DatabaseConnectionError,
    DataIntegrityError,
    JobRepository,
    ListingFilters,
    NotificationRepository,
    RecordNotFoundError,
    SqlNotificationStore,
    WorkerRepository,
    close_database,
    get_session,
    init_database,
)
from workmatch.persistence.schema import JobModel


def _notification(**overrides):
    fields = {
        "id": "n-1",
        "recipient_id": "worker-1",
        "type": NotificationType.JOB_MATCH,
        "title": "New Job Match!",
        "body": "A new job matches your skills!",
        "payload": {"jobId": "job-1", "matchScore": 84},
        "source_event": "job:job-1",
        "created_at": datetime(2025, 11, 3, 10, 0, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return Notification(**fields)


@pytest.fixture
def employer(database, make_worker):
    profile = make_worker(
        id="employer-1", name="Acme Logistics", user_type=UserType.EMPLOYER, phone="+15550001111"
    )
    with get_session() as session:
        WorkerRepository(session).add_profile(profile)
    return profile


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_creates_parent_directories(self, tmp_path):
        db_file = tmp_path / "subdir" / "nested" / "workmatch.db"

        init_database(f"sqlite:///{db_file}")
        try:
            assert db_file.exists()
            with get_session() as session:
                assert session.execute(text("SELECT 1")).scalar() == 1
        finally:
            close_database()

    def test_init_database_in_memory(self):
        init_database("sqlite:///:memory:")
        try:
            with get_session() as session:
                assert session is not None
        finally:
            close_database()

    def test_init_database_rejects_empty_url(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("")

        with pytest.raises(DatabaseConnectionError):
            init_database(None)

    def test_init_database_rejects_malformed_url(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("not a url")

    def test_schema_creation_is_idempotent(self, database):
        close_database()
        init_database(database)

        with get_session() as session:
            tables = {
                row[0]
                for row in session.execute(
                    text("SELECT name FROM sqlite_master WHERE type='table'")
                )
            }
        assert {"users", "jobs", "skills", "notifications"} <= tables

    def test_session_rolls_back_on_error(self, database, make_worker):
        with pytest.raises(RuntimeError):
            with get_session() as session:
                WorkerRepository(session).add_profile(make_worker(id="worker-rollback"))
                raise RuntimeError("boom")

        with get_session() as session:
            assert WorkerRepository(session).get_profile("worker-rollback") is None

    def test_get_session_requires_init(self):
        close_database()
        with pytest.raises(DatabaseConnectionError):
            with get_session():
                pass


class TestJobRepository:
    """Tests for JobRepository."""

    def test_add_and_get_posting(self, employer, sample_posting):
        with get_session() as session:
            JobRepository(session).add_posting(sample_posting)

        with get_session() as session:
            stored = JobRepository(session).get_posting("job-1")

        assert stored.title == "Warehouse Helper"
        assert stored.skill_ids == frozenset({"lifting", "forklift"})
        assert stored.skill_names == ["forklift", "lifting"]
        assert stored.location == sample_posting.location
        assert stored.start_date == sample_posting.start_date
        assert stored.employer_name == "Acme Logistics"
        assert stored.employer_phone == "+15550001111"

    def test_get_missing_posting_returns_none(self, database):
        with get_session() as session:
            assert JobRepository(session).get_posting("nope") is None

    def test_add_posting_for_unknown_employer_raises(self, database, make_posting):
        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                JobRepository(session).add_posting(make_posting(employer_id="ghost"))

    def test_add_duplicate_posting_raises(self, employer, sample_posting):
        with get_session() as session:
            JobRepository(session).add_posting(sample_posting)

        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                JobRepository(session).add_posting(sample_posting)

    def test_list_open_postings_newest_first(self, employer, make_posting):
        base = datetime(2025, 11, 1, tzinfo=timezone.utc)
        with get_session() as session:
            repo = JobRepository(session)
            repo.add_posting(make_posting(id="job-old", created_at=base))
            repo.add_posting(make_posting(id="job-new", created_at=base + timedelta(days=2)))
            repo.add_posting(make_posting(id="job-mid", created_at=base + timedelta(days=1)))
            repo.add_posting(
                make_posting(id="job-filled", status=JobStatus.FILLED, created_at=base)
            )

        with get_session() as session:
            postings = JobRepository(session).list_open_postings()

        assert [p.id for p in postings] == ["job-new", "job-mid", "job-old"]

    def test_list_open_postings_filters(self, employer, make_posting):
        with get_session() as session:
            repo = JobRepository(session)
            repo.add_posting(make_posting(id="job-phl"))
            repo.add_posting(
                make_posting(
                    id="job-camden",
                    city="Camden",
                    zip_code="08102",
                    skill_ids=frozenset({"cleaning"}),
                    provides_transportation=True,
                )
            )

        with get_session() as session:
            repo = JobRepository(session)
            by_city = repo.list_open_postings(ListingFilters(city="phila"))
            by_zip = repo.list_open_postings(ListingFilters(zip_code="08102"))
            by_transport = repo.list_open_postings(ListingFilters(provides_transportation=True))
            by_skill = repo.list_open_postings(
                ListingFilters(skill_ids=frozenset({"cleaning", "welding"}))
            )

        assert [p.id for p in by_city] == ["job-phl"]
        assert [p.id for p in by_zip] == ["job-camden"]
        assert [p.id for p in by_transport] == ["job-camden"]
        assert [p.id for p in by_skill] == ["job-camden"]

    def test_list_skips_unreadable_rows(self, employer, sample_posting):
        with get_session() as session:
            JobRepository(session).add_posting(sample_posting)
            session.get(JobModel, "job-1").pay_type = "WEEKLY"

        with get_session() as session:
            assert JobRepository(session).list_open_postings() == []

    def test_update_status(self, employer, sample_posting):
        with get_session() as session:
            repo = JobRepository(session)
            repo.add_posting(sample_posting)
            repo.update_status("job-1", JobStatus.FILLED)

        with get_session() as session:
            assert JobRepository(session).get_posting("job-1").status == JobStatus.FILLED

    def test_update_status_missing_job_raises(self, database):
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                JobRepository(session).update_status("nope", JobStatus.FILLED)


class TestWorkerRepository:
    """Tests for WorkerRepository."""

    def test_add_and_get_profile(self, database, sample_worker):
        with get_session() as session:
            WorkerRepository(session).add_profile(sample_worker)

        with get_session() as session:
            repo = WorkerRepository(session)
            profile = repo.get_profile("worker-1")
            context = repo.get_worker_context("worker-1")

        assert profile.name == "Dana Rivera"
        assert profile.email == "dana@example.com"
        assert profile.skill_ids == sample_worker.skill_ids
        assert context.location == sample_worker.location
        assert context.skill_ids == sample_worker.skill_ids

    def test_profile_without_location(self, database, make_worker):
        with get_session() as session:
            WorkerRepository(session).add_profile(make_worker(location=None))

        with get_session() as session:
            assert WorkerRepository(session).get_profile("worker-1").location is None

    def test_missing_worker_context_is_none(self, database):
        with get_session() as session:
            assert WorkerRepository(session).get_worker_context("nobody") is None

    def test_add_duplicate_profile_raises(self, database, sample_worker):
        with get_session() as session:
            WorkerRepository(session).add_profile(sample_worker)

        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                WorkerRepository(session).add_profile(sample_worker)

    def test_iter_matchable_workers(self, database, make_worker):
        with get_session() as session:
            repo = WorkerRepository(session)
            repo.add_profile(make_worker(id="w-c"))
            repo.add_profile(make_worker(id="w-a", user_type=UserType.BOTH))
            repo.add_profile(make_worker(id="w-b"))
            repo.add_profile(make_worker(id="e-1", user_type=UserType.EMPLOYER))

        with get_session() as session:
            streamed = list(
                WorkerRepository(session).iter_matchable_workers(exclude_user_id="w-b", chunk_size=1)
            )

        assert [worker_id for worker_id, _ in streamed] == ["w-a", "w-c"]
        assert all(context.skill_ids for _, context in streamed)

    def test_iter_yields_error_for_unreadable_row(self, database, make_worker):
        with get_session() as session:
            WorkerRepository(session).add_profile(make_worker(id="w-bad"))
            session.execute(text("UPDATE users SET latitude = 123.0 WHERE id = 'w-bad'"))

        with get_session() as session:
            streamed = list(WorkerRepository(session).iter_matchable_workers())

        assert len(streamed) == 1
        worker_id, outcome = streamed[0]
        assert worker_id == "w-bad"
        assert isinstance(outcome, ValueError)


class TestNotificationRepository:
    """Tests for NotificationRepository."""

    def test_append_is_idempotent_per_event(self, database):
        with get_session() as session:
            repo = NotificationRepository(session)
            first, created = repo.append(_notification())
            again, created_again = repo.append(_notification(id="n-2"))

        assert created is True
        assert created_again is False
        assert again.id == first.id == "n-1"

    def test_same_event_for_other_recipient_is_new(self, database):
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.append(_notification())
            _, created = repo.append(_notification(id="n-2", recipient_id="worker-2"))

        assert created is True

    def test_append_without_source_event_never_dedupes(self, database):
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.append(_notification(source_event=None))
            _, created = repo.append(_notification(id="n-2", source_event=None))

        assert created is True

    def test_payload_round_trips(self, database):
        with get_session() as session:
            NotificationRepository(session).append(_notification())

        with get_session() as session:
            stored = NotificationRepository(session).get("n-1")

        assert stored.payload == {"jobId": "job-1", "matchScore": 84}
        assert stored.delivery_status == DeliveryStatus.PENDING
        assert stored.is_read is False

    def test_update_delivery_keeps_existing_provider_fields(self, database):
        delivered = datetime(2025, 11, 3, 10, 5, tzinfo=timezone.utc)
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.append(_notification(delivery_method=DeliveryMethod.VOICE_CALL))
            repo.update_delivery(
                "n-1", DeliveryStatus.PENDING, provider_reference="CA123", provider_status="queued"
            )
            updated = repo.update_delivery("n-1", DeliveryStatus.DELIVERED, delivered_at=delivered)

        assert updated.delivery_status == DeliveryStatus.DELIVERED
        assert updated.delivered_at == delivered
        assert updated.provider_reference == "CA123"
        assert updated.provider_status == "queued"

    def test_update_delivery_missing_raises(self, database):
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                NotificationRepository(session).update_delivery("nope", DeliveryStatus.FAILED)

    def test_find_by_provider_reference(self, database):
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.append(_notification())
            repo.update_delivery("n-1", DeliveryStatus.PENDING, provider_reference="CA123")

        with get_session() as session:
            repo = NotificationRepository(session)
            assert repo.find_by_provider_reference("CA123").id == "n-1"
            assert repo.find_by_provider_reference("CA999") is None

    def test_read_state(self, database):
        base = datetime(2025, 11, 3, tzinfo=timezone.utc)
        with get_session() as session:
            repo = NotificationRepository(session)
            for i in range(3):
                repo.append(
                    _notification(
                        id=f"n-{i}", source_event=f"job:{i}", created_at=base + timedelta(hours=i)
                    )
                )
            repo.append(_notification(id="n-other", recipient_id="worker-2"))

        with get_session() as session:
            repo = NotificationRepository(session)
            assert repo.unread_count("worker-1") == 3
            assert repo.mark_read("n-0", "worker-2") is False
            assert repo.mark_read("n-0", "worker-1") is True
            assert repo.unread_count("worker-1") == 2
            assert repo.mark_all_read("worker-1") == 2
            assert repo.unread_count("worker-1") == 0
            assert repo.unread_count("worker-2") == 1

    def test_list_for_recipient_pages_newest_first(self, database):
        base = datetime(2025, 11, 3, tzinfo=timezone.utc)
        with get_session() as session:
            repo = NotificationRepository(session)
            for i in range(5):
                repo.append(
                    _notification(
                        id=f"n-{i}", source_event=f"job:{i}", created_at=base + timedelta(hours=i)
                    )
                )
            repo.mark_read("n-4", "worker-1")

        with get_session() as session:
            repo = NotificationRepository(session)
            first_page, total = repo.list_for_recipient("worker-1", page=1, page_size=2)
            last_page, _ = repo.list_for_recipient("worker-1", page=3, page_size=2)
            unread, unread_total = repo.list_for_recipient("worker-1", unread_only=True)

        assert total == 5
        assert [n.id for n in first_page] == ["n-4", "n-3"]
        assert [n.id for n in last_page] == ["n-0"]
        assert unread_total == 4
        assert "n-4" not in {n.id for n in unread}

    def test_list_failed(self, database):
        base = datetime(2025, 11, 3, tzinfo=timezone.utc)
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.append(
                _notification(
                    id="n-late",
                    source_event="a",
                    delivery_status=DeliveryStatus.FAILED,
                    created_at=base + timedelta(hours=1),
                )
            )
            repo.append(
                _notification(
                    id="n-early",
                    source_event="b",
                    delivery_status=DeliveryStatus.FAILED,
                    created_at=base,
                )
            )
            repo.append(_notification(id="n-ok", source_event="c"))
            repo.append(
                _notification(
                    id="n-elsewhere",
                    recipient_id="worker-2",
                    delivery_status=DeliveryStatus.FAILED,
                )
            )

        with get_session() as session:
            repo = NotificationRepository(session)
            assert [n.id for n in repo.list_failed(recipient_id="worker-1")] == [
                "n-early",
                "n-late",
            ]
            assert len(repo.list_failed(limit=1)) == 1


class TestSqlNotificationStore:
    """Tests for the session-per-call store."""

    def test_append_and_update(self, database):
        store = SqlNotificationStore()

        record, created = store.append(_notification())
        _, created_again = store.append(_notification(id="n-2"))
        store.update_delivery("n-1", DeliveryStatus.FAILED, provider_status="invalid number")

        assert created is True
        assert created_again is False
        stored = store.get(record.id)
        assert stored.delivery_status == DeliveryStatus.FAILED
        assert stored.provider_status == "invalid number"
        assert [n.id for n in store.list_failed()] == ["n-1"]

    def test_read_state(self, database):
        store = SqlNotificationStore()
        store.append(_notification())
        store.append(_notification(id="n-2", source_event="job:job-2"))

        assert store.unread_count("worker-1") == 2
        assert store.mark_read("n-1", "worker-1") is True
        assert store.mark_all_read("worker-1") == 1
        items, total = store.list_for_recipient("worker-1")
        assert total == 2
        assert all(n.is_read for n in items)

    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (-1, -1)])
    def test_list_rejects_bad_paging(self, database, page, page_size):
        with pytest.raises(ValueError):
            SqlNotificationStore().list_for_recipient("worker-1", page=page, page_size=page_size)

    def test_uses_given_session_factory(self, database):
        calls = []

        def tracking_session():
            calls.append(1)
            return get_session()

        store = SqlNotificationStore(session_factory=tracking_session)
        store.append(_notification())
        store.unread_count("worker-1")

        assert len(calls) == 2

    def test_concurrent_duplicate_appends_create_one_record(self, database):
        store = SqlNotificationStore()
        barrier = threading.Barrier(6, timeout=10)
        lock = threading.Lock()
        results, errors = [], []

        def append(index):
            barrier.wait()
            try:
                outcome = store.append(_notification(id=f"n-{index}"))
            except Exception as e:
                with lock:
                    errors.append(e)
                return
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=append, args=(i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sum(1 for _, created in results if created) == 1
        assert len({record.id for record, _ in results}) == 1
        _, total = store.list_for_recipient("worker-1")
        assert total == 1

    def test_lost_insert_race_returns_existing_record(self, database, monkeypatch):
        store = SqlNotificationStore()
        winner, _ = store.append(_notification())
        original_find = NotificationRepository.find_by_event
        lookups = []

        def find_missing_first(self, *args):
            lookups.append(args)
            if len(lookups) == 1:
                return None
            return original_find(self, *args)

        monkeypatch.setattr(NotificationRepository, "find_by_event", find_missing_first)

        record, created = store.append(_notification(id="n-2"))

        assert created is False
        assert record.id == winner.id
        assert len(lookups) == 2
        _, total = store.list_for_recipient("worker-1")
        assert total == 1


def test_coordinates_survive_round_trip(database, make_worker):
    location = Coordinates(latitude=-33.8688, longitude=151.2093)
    with get_session() as session:
        WorkerRepository(session).add_profile(make_worker(location=location))

    with get_session() as session:
        assert WorkerRepository(session).get_profile("worker-1").location == location
