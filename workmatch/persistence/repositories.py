"""Data access layer (repositories) for persistence operations.

This module provides repository classes for postings, worker profiles,
and notification records. Repositories work inside a session owned by the
caller and return domain models rather than ORM models.
"""

import logging
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from workmatch.domain.models import (
    DeliveryStatus,
    JobPosting,
    JobStatus,
    Notification,
    UserType,
    WorkerContext,
    WorkerProfile,
)
from workmatch.utils.timestamps import format_timestamp

from .exceptions import (
    DataIntegrityError,
    DuplicateNotificationError,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import JobModel, NotificationModel, SkillModel, UserModel

logger = logging.getLogger(__name__)

WorkerStreamItem = Tuple[str, Union[WorkerContext, Exception]]


class ListingFilters(BaseModel):
    """Filters applied when fetching postings for a listing."""

    status: Optional[JobStatus] = JobStatus.OPEN
    city: Optional[str] = Field(None, description="Case-insensitive substring match")
    zip_code: Optional[str] = None
    provides_transportation: Optional[bool] = None
    skill_ids: FrozenSet[str] = Field(
        default_factory=frozenset, description="Postings requiring any of these skills"
    )


def _resolve_skills(session: Session, skill_ids: Iterable[str]) -> List[SkillModel]:
    """Load skill rows, creating catalogue entries for unknown ids."""
    skills = []
    for skill_id in sorted(set(skill_ids)):
        skill = session.get(SkillModel, skill_id)
        if skill is None:
            skill = SkillModel(id=skill_id, name=skill_id)
            session.add(skill)
        skills.append(skill)
    return skills


class JobRepository:
    """Repository for job posting operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_posting(self, job_id: str) -> Optional[JobPosting]:
        """Retrieve a posting by id.

        Returns:
            JobPosting if found, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            job_model = self.session.get(JobModel, job_id)
            if job_model is None:
                return None
            return job_model.to_domain()

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve job: {e}") from e

    def list_open_postings(self, filters: Optional[ListingFilters] = None) -> List[JobPosting]:
        """Fetch postings matching the listing filters, newest first.

        Rows that fail domain validation are logged and left out.

        Raises:
            PersistenceError: If database error occurs
        """
        filters = filters or ListingFilters()
        try:
            stmt = select(JobModel)
            if filters.status is not None:
                stmt = stmt.where(JobModel.status == filters.status.value)
            if filters.city:
                stmt = stmt.where(func.lower(JobModel.city).contains(filters.city.lower()))
            if filters.zip_code:
                stmt = stmt.where(JobModel.zip_code == filters.zip_code)
            if filters.provides_transportation is not None:
                stmt = stmt.where(
                    JobModel.provides_transportation == filters.provides_transportation
                )
            if filters.skill_ids:
                stmt = stmt.where(JobModel.skills.any(SkillModel.id.in_(filters.skill_ids)))
            stmt = stmt.order_by(JobModel.created_at.desc(), JobModel.id)

            postings = []
            for job_model in self.session.scalars(stmt):
                try:
                    postings.append(job_model.to_domain())
                except ValueError as e:
                    logger.warning(
                        f"Skipping unreadable posting {job_model.id}: {e}",
                        extra={"event": "listing.posting.unreadable", "job_id": job_model.id},
                    )
            return postings

        except SQLAlchemyError as e:
            logger.error(f"Error listing postings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list postings: {e}") from e

    def add_posting(self, posting: JobPosting) -> JobPosting:
        """Insert a new posting.

        Raises:
            DataIntegrityError: If the id exists or the employer is unknown
            PersistenceError: If database error occurs
        """
        try:
            job_model = JobModel.from_domain(posting)
            job_model.skills = _resolve_skills(self.session, posting.skill_ids)
            self.session.add(job_model)
            self.session.flush()
            self.session.refresh(job_model)
            return job_model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error adding job {posting.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add job due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding job {posting.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add job: {e}") from e

    def update_status(self, job_id: str, status: JobStatus) -> None:
        """Set a posting's lifecycle status.

        Raises:
            RecordNotFoundError: If job_id doesn't exist
            PersistenceError: If database error occurs
        """
        try:
            result = self.session.execute(
                update(JobModel).where(JobModel.id == job_id).values(status=status.value)
            )
            self.session.flush()
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Job {job_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating status for job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update job status: {e}") from e


class WorkerRepository:
    """Repository for user profiles as seen by matching."""

    def __init__(self, session: Session):
        self.session = session

    def get_profile(self, user_id: str) -> Optional[WorkerProfile]:
        """Retrieve a user profile by id.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            user_model = self.session.get(UserModel, user_id)
            if user_model is None:
                return None
            return user_model.to_domain()

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def get_worker_context(self, user_id: str) -> Optional[WorkerContext]:
        profile = self.get_profile(user_id)
        return profile.to_context() if profile else None

    def add_profile(self, profile: WorkerProfile) -> WorkerProfile:
        """Insert a new user profile.

        Raises:
            DataIntegrityError: If the id exists
            PersistenceError: If database error occurs
        """
        try:
            user_model = UserModel.from_domain(profile)
            user_model.skills = _resolve_skills(self.session, profile.skill_ids)
            self.session.add(user_model)
            self.session.flush()
            return user_model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error adding user {profile.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add user due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding user {profile.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add user: {e}") from e

    def iter_matchable_workers(
        self, exclude_user_id: Optional[str] = None, chunk_size: int = 500
    ) -> Iterator[WorkerStreamItem]:
        """Stream (worker_id, WorkerContext) pairs for every WORKER or BOTH user.

        Rows are fetched chunk_size at a time. A row that cannot be turned
        into a context yields (worker_id, exception) so the scan can skip it.

        Raises:
            PersistenceError: If database error occurs
        """
        stmt = (
            select(UserModel)
            .where(UserModel.user_type.in_([UserType.WORKER.value, UserType.BOTH.value]))
            .order_by(UserModel.id)
            .execution_options(yield_per=chunk_size)
        )
        if exclude_user_id is not None:
            stmt = stmt.where(UserModel.id != exclude_user_id)

        try:
            for user_model in self.session.scalars(stmt):
                try:
                    yield user_model.id, user_model.to_domain().to_context()
                except ValueError as e:
                    yield user_model.id, e

        except SQLAlchemyError as e:
            logger.error(f"Error streaming workers: {e}", exc_info=True)
            raise PersistenceError(f"Failed to stream workers: {e}") from e


class NotificationRepository:
    """Repository for notification records and their delivery state."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, notification: Notification) -> Tuple[Notification, bool]:
        """Insert a notification unless its (recipient, type, source_event) exists.

        Returns:
            (record, created); created is False when an existing record
            for the same event was returned instead

        Raises:
            DuplicateNotificationError: If a concurrent insert won the race
            PersistenceError: If database error occurs
        """
        try:
            if notification.source_event is not None:
                existing = self.find_by_event(
                    notification.recipient_id, notification.type.value, notification.source_event
                )
                if existing is not None:
                    logger.debug(
                        f"Notification already recorded for {notification.recipient_id}, "
                        f"event {notification.source_event}"
                    )
                    return existing, False

            notification_model = NotificationModel.from_domain(notification)
            self.session.add(notification_model)
            self.session.flush()
            return notification_model.to_domain(), True

        except IntegrityError as e:
            if notification.source_event is not None:
                raise DuplicateNotificationError(
                    notification.recipient_id,
                    notification.type.value,
                    notification.source_event,
                ) from e
            logger.error(
                f"Integrity error appending notification {notification.id}: {e}", exc_info=True
            )
            raise DataIntegrityError(f"Failed to append notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error appending notification {notification.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to append notification: {e}") from e

    def find_by_event(
        self, recipient_id: str, notification_type: str, source_event: str
    ) -> Optional[Notification]:
        try:
            stmt = select(NotificationModel).where(
                NotificationModel.recipient_id == recipient_id,
                NotificationModel.type == notification_type,
                NotificationModel.source_event == source_event,
            )
            notification_model = self.session.scalars(stmt).one_or_none()
            return notification_model.to_domain() if notification_model else None

        except SQLAlchemyError as e:
            logger.error(f"Error looking up notification event {source_event}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to look up notification: {e}") from e

    def get(self, notification_id: str) -> Optional[Notification]:
        try:
            notification_model = self.session.get(NotificationModel, notification_id)
            return notification_model.to_domain() if notification_model else None

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def find_by_provider_reference(self, provider_reference: str) -> Optional[Notification]:
        try:
            stmt = (
                select(NotificationModel)
                .where(NotificationModel.provider_reference == provider_reference)
                .order_by(NotificationModel.created_at.desc())
                .limit(1)
            )
            notification_model = self.session.scalars(stmt).first()
            return notification_model.to_domain() if notification_model else None

        except SQLAlchemyError as e:
            logger.error(
                f"Error retrieving notification by reference {provider_reference}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def update_delivery(
        self,
        notification_id: str,
        status: DeliveryStatus,
        delivered_at=None,
        provider_reference: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> Notification:
        """Record a delivery state change.

        Provider fields are only overwritten when a value is given.

        Raises:
            RecordNotFoundError: If notification_id doesn't exist
            PersistenceError: If database error occurs
        """
        try:
            notification_model = self.session.get(NotificationModel, notification_id)
            if notification_model is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")

            notification_model.delivery_status = status.value
            if delivered_at is not None:
                notification_model.delivered_at = format_timestamp(delivered_at)
            if provider_reference is not None:
                notification_model.provider_reference = provider_reference
            if provider_status is not None:
                notification_model.provider_status = provider_status

            self.session.flush()
            return notification_model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                f"Error updating delivery for notification {notification_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to update notification delivery: {e}") from e

    def list_for_recipient(
        self,
        recipient_id: str,
        page: int = 1,
        page_size: int = 20,
        unread_only: bool = False,
    ) -> Tuple[List[Notification], int]:
        """A page of a recipient's notifications, newest first.

        Returns:
            (notifications on the page, total matching count)

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            conditions = [NotificationModel.recipient_id == recipient_id]
            if unread_only:
                conditions.append(NotificationModel.is_read.is_(False))

            total = self.session.scalar(
                select(func.count()).select_from(NotificationModel).where(*conditions)
            )
            stmt = (
                select(NotificationModel)
                .where(*conditions)
                .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [model.to_domain() for model in self.session.scalars(stmt)]
            return items, total or 0

        except SQLAlchemyError as e:
            logger.error(f"Error listing notifications for {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notifications: {e}") from e

    def unread_count(self, recipient_id: str) -> int:
        try:
            stmt = (
                select(func.count())
                .select_from(NotificationModel)
                .where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.is_read.is_(False),
                )
            )
            return self.session.scalar(stmt) or 0

        except SQLAlchemyError as e:
            logger.error(f"Error counting unread notifications for {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        """Mark one notification read; only the recipient's own records match.

        Returns:
            True if a record was updated
        """
        try:
            result = self.session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.id == notification_id,
                    NotificationModel.recipient_id == recipient_id,
                )
                .values(is_read=True)
            )
            self.session.flush()
            return result.rowcount > 0

        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} read: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notification read: {e}") from e

    def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient read.

        Returns:
            Count of updated records
        """
        try:
            result = self.session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.is_read.is_(False),
                )
                .values(is_read=True)
            )
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error marking notifications read for {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notifications read: {e}") from e

    def list_failed(self, limit: int = 100, recipient_id: Optional[str] = None) -> List[Notification]:
        """FAILED notifications, oldest first, for retry sweeps."""
        try:
            stmt = select(NotificationModel).where(
                NotificationModel.delivery_status == DeliveryStatus.FAILED.value
            )
            if recipient_id is not None:
                stmt = stmt.where(NotificationModel.recipient_id == recipient_id)
            stmt = stmt.order_by(NotificationModel.created_at.asc()).limit(limit)
            return [model.to_domain() for model in self.session.scalars(stmt)]

        except SQLAlchemyError as e:
            logger.error(f"Error listing failed notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list failed notifications: {e}") from e
