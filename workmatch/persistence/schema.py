"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for users, skills, postings, and
notifications, and the conversions between ORM rows and domain models.
Timestamps are stored as ISO 8601 strings in UTC.
"""

import logging
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from workmatch.domain.models import (
    Coordinates,
    DeliveryMethod,
    DeliveryStatus,
    JobPosting,
    JobStatus,
    Notification,
    NotificationType,
    PayType,
    UserType,
    WorkerProfile,
)
from workmatch.utils.timestamps import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

Base = declarative_base()

user_skills = Table(
    "user_skills",
    Base.metadata,
    Column("user_id", String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("skill_id", String(64), ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
)

job_skills = Table(
    "job_skills",
    Base.metadata,
    Column("job_id", String(64), ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True),
    Column("skill_id", String(64), ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
)


class SkillModel(Base):
    """ORM model for the skills catalogue."""

    __tablename__ = "skills"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False, unique=True)
    category = Column(String(100), nullable=True)


class UserModel(Base):
    """ORM model for users table (workers and employers)."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    user_type = Column(String(20), nullable=False, default=UserType.WORKER.value)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    city = Column(String(255), nullable=True)
    needs_transportation = Column(Boolean, nullable=False, default=False)
    created_at = Column(String(50), nullable=False)

    skills = relationship(SkillModel, secondary=user_skills, lazy="selectin")

    __table_args__ = (Index("idx_users_type", "user_type"),)

    def to_domain(self) -> WorkerProfile:
        """Convert ORM model to domain model.

        Raises:
            ValueError: If the stored row holds invalid values
        """
        return WorkerProfile(
            id=self.id,
            name=self.name or "",
            user_type=UserType(self.user_type),
            skill_ids=frozenset(skill.id for skill in self.skills),
            location=_coordinates(self.latitude, self.longitude),
            needs_transportation=bool(self.needs_transportation),
            phone=self.phone,
            email=self.email,
        )

    @classmethod
    def from_domain(cls, profile: WorkerProfile) -> "UserModel":
        """Create ORM model from domain model (skills are attached by the repository)."""
        return cls(
            id=profile.id,
            name=profile.name,
            user_type=profile.user_type.value,
            email=profile.email,
            phone=profile.phone,
            latitude=profile.location.latitude if profile.location else None,
            longitude=profile.location.longitude if profile.location else None,
            needs_transportation=profile.needs_transportation,
            created_at=format_timestamp(utc_now()),
        )


class JobModel(Base):
    """ORM model for jobs table."""

    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True, nullable=False)
    employer_id = Column(String(64), ForeignKey("users.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(255), nullable=True)
    zip_code = Column(String(20), nullable=True)

    pay_amount = Column(Float, nullable=False)
    pay_type = Column(String(20), nullable=False)
    start_date = Column(String(50), nullable=False)
    start_time = Column(String(20), nullable=True)
    duration_hours = Column(Float, nullable=True)
    duration_days = Column(Integer, nullable=True)
    workers_needed = Column(Integer, nullable=False, default=1)
    provides_transportation = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=JobStatus.OPEN.value)

    created_at = Column(String(50), nullable=False)

    employer = relationship(UserModel, lazy="joined")
    skills = relationship(SkillModel, secondary=job_skills, lazy="selectin")

    __table_args__ = (
        Index("idx_jobs_status_created", "status", "created_at"),
        Index("idx_jobs_employer", "employer_id"),
        Index("idx_jobs_city", "city"),
    )

    def to_domain(self) -> JobPosting:
        """Convert ORM model to domain model.

        Raises:
            ValueError: If the stored row holds invalid values
        """
        skills = sorted(self.skills, key=lambda skill: skill.name)
        return JobPosting(
            id=self.id,
            employer_id=self.employer_id,
            title=self.title,
            description=self.description or "",
            skill_ids=frozenset(skill.id for skill in skills),
            skill_names=[skill.name for skill in skills],
            location=Coordinates(latitude=self.latitude, longitude=self.longitude),
            address=self.address,
            city=self.city,
            zip_code=self.zip_code,
            pay_amount=self.pay_amount,
            pay_type=PayType(self.pay_type),
            start_date=parse_timestamp(self.start_date),
            start_time=self.start_time,
            duration_hours=self.duration_hours,
            duration_days=self.duration_days,
            workers_needed=self.workers_needed or 1,
            provides_transportation=bool(self.provides_transportation),
            status=JobStatus(self.status),
            employer_name=self.employer.name if self.employer else None,
            employer_phone=self.employer.phone if self.employer else None,
            created_at=parse_timestamp(self.created_at),
        )

    @classmethod
    def from_domain(cls, posting: JobPosting) -> "JobModel":
        """Create ORM model from domain model (skills are attached by the repository)."""
        return cls(
            id=posting.id,
            employer_id=posting.employer_id,
            title=posting.title,
            description=posting.description,
            latitude=posting.location.latitude,
            longitude=posting.location.longitude,
            address=posting.address,
            city=posting.city,
            zip_code=posting.zip_code,
            pay_amount=posting.pay_amount,
            pay_type=posting.pay_type.value,
            start_date=format_timestamp(posting.start_date),
            start_time=posting.start_time,
            duration_hours=posting.duration_hours,
            duration_days=posting.duration_days,
            workers_needed=posting.workers_needed,
            provides_transportation=posting.provides_transportation,
            status=posting.status.value,
            created_at=format_timestamp(posting.created_at),
        )


class NotificationModel(Base):
    """ORM model for notifications table.

    The unique constraint on (recipient_id, type, source_event) makes
    repeated dispatches of the same logical event collapse into one row.
    Rows without a source_event are never deduplicated (NULLs are distinct).
    """

    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, nullable=False)
    recipient_id = Column(String(64), nullable=False)
    type = Column(String(40), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    delivery_method = Column(String(20), nullable=False)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    source_event = Column(String(255), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(String(50), nullable=False)
    delivered_at = Column(String(50), nullable=True)

    provider_reference = Column(String(255), nullable=True)
    provider_status = Column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("recipient_id", "type", "source_event", name="uq_notifications_event"),
        Index("idx_notifications_recipient_created", "recipient_id", "created_at"),
        Index("idx_notifications_status", "delivery_status"),
        Index("idx_notifications_provider_ref", "provider_reference"),
    )

    def to_domain(self) -> Notification:
        """Convert ORM model to domain model."""
        return Notification(
            id=self.id,
            recipient_id=self.recipient_id,
            type=NotificationType(self.type),
            title=self.title,
            body=self.body,
            payload=dict(self.payload or {}),
            delivery_method=DeliveryMethod(self.delivery_method),
            delivery_status=DeliveryStatus(self.delivery_status),
            source_event=self.source_event,
            created_at=parse_timestamp(self.created_at),
            delivered_at=parse_timestamp(self.delivered_at),
            provider_reference=self.provider_reference,
            provider_status=self.provider_status,
            is_read=bool(self.is_read),
        )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationModel":
        """Create ORM model from domain model."""
        return cls(
            id=notification.id,
            recipient_id=notification.recipient_id,
            type=notification.type.value,
            title=notification.title,
            body=notification.body,
            payload=notification.payload,
            delivery_method=notification.delivery_method.value,
            delivery_status=notification.delivery_status.value,
            source_event=notification.source_event,
            is_read=notification.is_read,
            created_at=format_timestamp(notification.created_at),
            delivered_at=format_timestamp(notification.delivered_at),
            provider_reference=notification.provider_reference,
            provider_status=notification.provider_status,
        )


def _coordinates(latitude: Optional[float], longitude: Optional[float]) -> Optional[Coordinates]:
    if latitude is None or longitude is None:
        return None
    return Coordinates(latitude=latitude, longitude=longitude)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
