"""Core domain models for postings, workers, and notifications.

This module defines the data structures shared by the matching engine,
the listing ranker, the notification dispatcher, and the stores:
- Coordinates: validated latitude/longitude pair
- WorkerContext / JobContext: read-only scoring snapshots
- WorkerProfile / JobPosting: the stored records the snapshots come from
- RecipientContact: caller-supplied contact details for outbound channels
- Notification: a notification record and its delivery state
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from workmatch.utils.timestamps import ensure_utc, utc_now


class PayType(str, Enum):
    """How a posting's pay amount is expressed."""

    HOURLY = "HOURLY"
    DAILY = "DAILY"
    FIXED = "FIXED"


class JobStatus(str, Enum):
    """Lifecycle status of a posting."""

    OPEN = "OPEN"
    FILLED = "FILLED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class UserType(str, Enum):
    """Marketplace role of a user account."""

    WORKER = "WORKER"
    EMPLOYER = "EMPLOYER"
    BOTH = "BOTH"


class NotificationType(str, Enum):
    """Closed set of notification kinds."""

    JOB_MATCH = "JOB_MATCH"
    APPLICATION_RECEIVED = "APPLICATION_RECEIVED"
    APPLICATION_ACCEPTED = "APPLICATION_ACCEPTED"
    APPLICATION_REJECTED = "APPLICATION_REJECTED"
    NEW_MESSAGE = "NEW_MESSAGE"
    JOB_COMPLETED = "JOB_COMPLETED"
    REVIEW_RECEIVED = "REVIEW_RECEIVED"


class DeliveryMethod(str, Enum):
    """Delivery channel a notification is routed to."""

    IN_APP = "IN_APP"
    SMS = "SMS"
    VOICE_CALL = "VOICE_CALL"
    EMAIL = "EMAIL"


class DeliveryStatus(str, Enum):
    """Delivery state of a notification record.

    Records start PENDING and move once to DELIVERED or FAILED. A FAILED
    record may be moved again by an explicit retry.
    """

    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class Coordinates(BaseModel):
    """A point on the globe in decimal degrees."""

    latitude: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)

    model_config = {"frozen": True}


class WorkerContext(BaseModel):
    """Inputs needed to score a worker against a job.

    Built on demand from a WorkerProfile; never mutated by the engine.
    """

    skill_ids: FrozenSet[str] = Field(default_factory=frozenset)
    location: Optional[Coordinates] = None
    needs_transportation: bool = False

    model_config = {"frozen": True}


class JobContext(BaseModel):
    """Inputs needed to score and rank a posting."""

    id: str = Field(..., min_length=1)
    skill_ids: FrozenSet[str] = Field(default_factory=frozenset)
    location: Coordinates
    provides_transportation: bool = False
    pay_amount: float = Field(..., ge=0, allow_inf_nan=False)
    pay_type: PayType
    start_date: datetime
    employer_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    title: Optional[str] = None

    @field_validator("start_date", "created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    model_config = {"frozen": True}


class RecipientContact(BaseModel):
    """Contact details for outbound channels, supplied by the caller."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @field_validator("name", "phone", "email")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    model_config = {"frozen": True}


class WorkerProfile(BaseModel):
    """A stored user profile as seen by the matching engine."""

    id: str = Field(..., min_length=1)
    name: str = ""
    user_type: UserType = UserType.WORKER
    skill_ids: FrozenSet[str] = Field(default_factory=frozenset)
    location: Optional[Coordinates] = None
    needs_transportation: bool = False
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_matchable(self) -> bool:
        """Whether this user takes part in worker match scans."""
        return self.user_type in (UserType.WORKER, UserType.BOTH)

    def to_context(self) -> WorkerContext:
        return WorkerContext(
            skill_ids=self.skill_ids,
            location=self.location,
            needs_transportation=self.needs_transportation,
        )

    def to_contact(self) -> RecipientContact:
        return RecipientContact(name=self.name or None, phone=self.phone, email=self.email)


class JobPosting(BaseModel):
    """A stored job posting with the details notifications need.

    The scoring engine only ever sees the JobContext produced by
    to_context(); the remaining fields feed notification payloads and
    channel contexts.
    """

    id: str = Field(..., min_length=1)
    employer_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    skill_ids: FrozenSet[str] = Field(default_factory=frozenset)
    skill_names: List[str] = Field(default_factory=list)
    location: Coordinates
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    pay_amount: float = Field(..., ge=0, allow_inf_nan=False)
    pay_type: PayType
    start_date: datetime
    start_time: Optional[str] = None
    duration_hours: Optional[float] = Field(None, gt=0)
    duration_days: Optional[int] = Field(None, gt=0)
    workers_needed: int = Field(1, ge=1)
    provides_transportation: bool = False
    status: JobStatus = JobStatus.OPEN
    employer_name: Optional[str] = None
    employer_phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("title cannot be empty or whitespace-only")
        return stripped

    @field_validator("start_date", "created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    @property
    def duration_label(self) -> str:
        if self.duration_hours:
            return f"{self.duration_hours:g} hours"
        if self.duration_days:
            return f"{self.duration_days} days"
        return "Not specified"

    @property
    def pay_label(self) -> str:
        """Pay as shown to workers, e.g. "$25/hourly"."""
        return f"${self.pay_amount:g}/{self.pay_type.value.lower()}"

    def to_context(self) -> JobContext:
        return JobContext(
            id=self.id,
            skill_ids=self.skill_ids,
            location=self.location,
            provides_transportation=self.provides_transportation,
            pay_amount=self.pay_amount,
            pay_type=self.pay_type,
            start_date=self.start_date,
            employer_id=self.employer_id,
            created_at=self.created_at,
            title=self.title,
        )


class Notification(BaseModel):
    """A notification record.

    Content fields are fixed at creation; only the delivery fields and
    is_read change afterwards, and only through the notification store.
    """

    id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str
    body: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    delivery_method: DeliveryMethod = DeliveryMethod.IN_APP
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    source_event: Optional[str] = Field(
        None, description="Identity of the triggering event; unique per (recipient, type)"
    )
    created_at: datetime = Field(default_factory=utc_now)
    delivered_at: Optional[datetime] = None
    provider_reference: Optional[str] = None
    provider_status: Optional[str] = None
    is_read: bool = False

    @field_validator("created_at", "delivered_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    model_config = {"json_schema_extra": {"example": {
        "id": "4f1c2d9e8b7a6f5e4d3c2b1a09876543",
        "recipient_id": "worker-42",
        "type": "JOB_MATCH",
        "title": "New Job Match!",
        "body": 'A new job "Warehouse Helper" matches your skills! Pay: $18/hourly',
        "payload": {"jobId": "job-7", "matchScore": 84},
        "delivery_method": "IN_APP",
        "delivery_status": "PENDING",
        "source_event": "job:job-7",
        "created_at": "2025-11-03T10:30:00Z",
    }}}
