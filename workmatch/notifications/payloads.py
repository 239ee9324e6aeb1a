"""Channel context builders, one per notification type.

Call-based and email channels need more than the stored title and body:
they get a context dictionary built here. The builder table is keyed by
NotificationType and must cover every member; a missing entry fails at
import time.
"""

from typing import Any, Callable, Dict, Optional

from workmatch.domain.models import JobPosting, Notification, NotificationType

ContextBuilder = Callable[[Notification, Optional[JobPosting]], Dict[str, Any]]

JOB_MATCH_TITLE = "New Job Match!"


def format_amount(amount: float) -> str:
    """Render a pay amount without a trailing ".0" (25.0 -> "25", 25.5 -> "25.5")."""
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}".rstrip("0")


def build_match_payload(job: JobPosting, match_score: int) -> Dict[str, Any]:
    """Stored payload of a JOB_MATCH notification."""
    return {
        "jobId": job.id,
        "matchScore": match_score,
        "jobTitle": job.title,
        "payAmount": job.pay_amount,
        "payType": job.pay_type.value,
        "city": job.city,
        "providesTransportation": job.provides_transportation,
    }


def _base_context(notification: Notification) -> Dict[str, Any]:
    return {
        "notificationId": notification.id,
        "notificationType": notification.type.value,
        "notificationTitle": notification.title,
        "notificationMessage": notification.body,
        "data": dict(notification.payload),
    }


def _job_match_context(notification: Notification, job: Optional[JobPosting]) -> Dict[str, Any]:
    context = _base_context(notification)
    if job is not None:
        context["job"] = {
            "id": job.id,
            "title": job.title,
            "description": job.description,
            "pay": f"${format_amount(job.pay_amount)} {job.pay_type.value.lower()}",
            "duration": job.duration_label,
            "location": job.city,
            "address": job.address,
            "startDate": job.start_date.date().isoformat(),
            "startTime": job.start_time,
            "workersNeeded": job.workers_needed,
            "providesTransportation": job.provides_transportation,
            "employerName": job.employer_name,
            "skills": ", ".join(job.skill_names),
        }
    return context


def _application_accepted_context(
    notification: Notification, job: Optional[JobPosting]
) -> Dict[str, Any]:
    context = _base_context(notification)
    if job is not None:
        # Employer phone is only shared once the worker has been accepted
        context["job"] = {
            "id": job.id,
            "title": job.title,
            "startDate": job.start_date.date().isoformat(),
            "startTime": job.start_time,
            "address": job.address,
            "city": job.city,
            "employerName": job.employer_name,
            "employerPhone": job.employer_phone,
        }
    return context


def _job_reference_context(notification: Notification, job: Optional[JobPosting]) -> Dict[str, Any]:
    context = _base_context(notification)
    if job is not None:
        context["job"] = {"id": job.id, "title": job.title}
    return context


def _plain_context(notification: Notification, job: Optional[JobPosting]) -> Dict[str, Any]:
    return _base_context(notification)


CONTEXT_BUILDERS: Dict[NotificationType, ContextBuilder] = {
    NotificationType.JOB_MATCH: _job_match_context,
    NotificationType.APPLICATION_RECEIVED: _job_reference_context,
    NotificationType.APPLICATION_ACCEPTED: _application_accepted_context,
    NotificationType.APPLICATION_REJECTED: _job_reference_context,
    NotificationType.NEW_MESSAGE: _plain_context,
    NotificationType.JOB_COMPLETED: _job_reference_context,
    NotificationType.REVIEW_RECEIVED: _plain_context,
}

_missing_builders = set(NotificationType) - set(CONTEXT_BUILDERS)
if _missing_builders:
    raise RuntimeError(
        "No channel context builder for notification types: "
        + ", ".join(sorted(t.value for t in _missing_builders))
    )


def build_channel_context(
    notification: Notification, job: Optional[JobPosting] = None
) -> Dict[str, Any]:
    """Build the channel context for a notification.

    Args:
        notification: Persisted notification record
        job: Posting the notification is about, when the caller has it

    Returns:
        JSON-serialisable dictionary with notification fields and, where
        the type calls for it, a "job" section
    """
    return CONTEXT_BUILDERS[notification.type](notification, job)
