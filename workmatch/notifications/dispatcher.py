"""Notification dispatcher.

This module provides NotificationDispatcher, which writes notification
records through a NotificationStore and routes them to the configured
delivery channels with retry/backoff. It also runs the job-match fan-out:
match scan, then one notification per eligible worker on a bounded
thread pool.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextvars import copy_context
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import uuid4

from workmatch.config.models import MatchingConfig, NotificationConfig
from workmatch.domain.models import (
    DeliveryMethod,
    DeliveryStatus,
    JobPosting,
    Notification,
    NotificationType,
    RecipientContact,
)
from workmatch.logging import get_logger
from workmatch.logging.context import log_context
from workmatch.matching.finder import MatchFinder, PoolItem
from workmatch.matching.models import MatchCandidate
from workmatch.persistence.stores import NotificationStore
from workmatch.utils.timestamps import utc_now

from .channels import DeliveryChannel
from .models import (
    ChannelDeliveryError,
    ChannelMessage,
    DeliveryOutcome,
    DeliveryResult,
    FanOutResult,
    NotificationNotFoundError,
)
from .payloads import JOB_MATCH_TITLE, build_channel_context, build_match_payload
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")

ContactResolver = Callable[[str], Optional[RecipientContact]]

MAX_RETRY_DELAY_SECONDS = 60.0

PROVIDER_DELIVERED_STATUSES = frozenset({"completed"})
PROVIDER_FAILED_STATUSES = frozenset({"failed", "no-answer", "busy", "canceled"})


class NotificationDispatcher:
    """Creates notification records and hands them to delivery channels.

    Flow for a single notification:
    1. Persist the record (PENDING); a duplicate event returns the existing
       record without delivering again
    2. Skip delivery when the method is disabled or has no channel
    3. Build the channel context and send with retry/backoff
    4. Record the outcome (DELIVERED, FAILED, or PENDING for deferred)

    The dispatcher holds no per-request state and is safe to share across
    threads as long as the store is.
    """

    def __init__(
        self,
        store: NotificationStore,
        channels: Optional[Mapping[DeliveryMethod, DeliveryChannel]] = None,
        config: Optional[NotificationConfig] = None,
        matching_config: Optional[MatchingConfig] = None,
        match_finder: Optional[MatchFinder] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize the dispatcher.

        Args:
            store: Notification store every record goes through
            channels: Delivery channels keyed by method (none registered if None)
            config: Channel enablement, retry and concurrency settings
            matching_config: Thresholds and scan tuning for the job-match fan-out
            match_finder: Finder used by the fan-out (built from matching_config if None)
            template_renderer: Renderer for the job-match body (default templates if None)
            sleep: Backoff sleep function (injectable for tests)
            logger_instance: Logger instance (uses module logger if None)
        """
        self.store = store
        self.channels: Dict[DeliveryMethod, DeliveryChannel] = dict(channels or {})
        self.config = config or NotificationConfig()
        self.matching_config = matching_config or MatchingConfig()
        self.match_finder = match_finder or MatchFinder.from_config(self.matching_config)
        self.template_renderer = template_renderer or TemplateRenderer()
        self._sleep = sleep
        self.logger = logger_instance or logger

    def notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]] = None,
        delivery_method: DeliveryMethod = DeliveryMethod.IN_APP,
        source_event: Optional[str] = None,
        contact: Optional[RecipientContact] = None,
        job: Optional[JobPosting] = None,
    ) -> Notification:
        """Create a notification and attempt delivery.

        Args:
            recipient_id: User the notification is for
            notification_type: Kind of notification
            title: Short headline
            body: Message text
            payload: JSON-serialisable details stored with the record
            delivery_method: Channel to route through
            source_event: Identity of the triggering event; repeats are deduplicated
            contact: Contact details for outbound channels
            job: Posting the notification is about, for richer channel contexts

        Returns:
            The stored record with its delivery state

        Raises:
            PersistenceError: If the record cannot be written
        """
        notification, _ = self._notify(
            recipient_id,
            notification_type,
            title,
            body,
            payload=payload,
            delivery_method=delivery_method,
            source_event=source_event,
            contact=contact,
            job=job,
        )
        return notification

    def _notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]] = None,
        delivery_method: DeliveryMethod = DeliveryMethod.IN_APP,
        source_event: Optional[str] = None,
        contact: Optional[RecipientContact] = None,
        job: Optional[JobPosting] = None,
    ) -> Tuple[Notification, bool]:
        draft = Notification(
            id=uuid4().hex,
            recipient_id=recipient_id,
            type=notification_type,
            title=title,
            body=body,
            payload=payload or {},
            delivery_method=delivery_method,
            source_event=source_event,
        )

        notification, created = self.store.append(draft)

        with log_context(notification_id=notification.id, recipient_id=recipient_id):
            if not created:
                self.logger.info(
                    f"Notification for event {source_event} already exists, not delivering again",
                    extra={
                        "event": "notification.duplicate",
                        "notification_type": notification_type.value,
                        "source_event": source_event,
                    },
                )
                return notification, False

            self.logger.info(
                f"Notification created: {title}",
                extra={
                    "event": "notification.created",
                    "notification_type": notification_type.value,
                    "delivery_method": delivery_method.value,
                },
            )
            return self._deliver(notification, contact, job), True

    def _deliver(
        self,
        notification: Notification,
        contact: Optional[RecipientContact],
        job: Optional[JobPosting],
    ) -> Notification:
        method = notification.delivery_method
        channel = self.channels.get(method)
        if not self.config.is_enabled(method) or channel is None:
            self.logger.info(
                f"{method.value} delivery disabled; would have sent: {notification.title}",
                extra={
                    "event": "notification.channel_disabled",
                    "delivery_method": method.value,
                    "channel_registered": channel is not None,
                },
            )
            return notification

        message = ChannelMessage(
            notification=notification,
            contact=contact,
            context=build_channel_context(notification, job),
            job=job,
        )
        result = self._send_with_retry(channel, message)
        return self._record_result(notification, result)

    def _send_with_retry(self, channel: DeliveryChannel, message: ChannelMessage) -> DeliveryResult:
        max_attempts = self.config.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = self.config.retry_initial_delay * (
                    self.config.retry_backoff_multiplier ** (attempt - 2)
                )
                delay = min(delay, MAX_RETRY_DELAY_SECONDS)
                self.logger.warning(
                    f"Retrying {channel.kind.value} delivery "
                    f"(attempt {attempt}/{max_attempts}) after {delay:.1f}s delay",
                    extra={"event": "notification.send.attempt", "attempt": attempt},
                )
                self._sleep(delay)

            try:
                result = channel.send(message)
            except ChannelDeliveryError as e:
                retry_remaining = attempt < max_attempts
                self.logger.log(
                    logging.WARNING if retry_remaining else logging.ERROR,
                    f"{channel.kind.value} delivery failed (attempt {attempt}/{max_attempts}): {e}",
                    extra={
                        "event": "notification.send.failure",
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                        "retry_remaining": retry_remaining,
                    },
                )
                if not retry_remaining:
                    return DeliveryResult.failed(str(e))
                continue
            except Exception as e:
                self.logger.error(
                    f"Unexpected error from {channel.kind.value} channel: {e}",
                    exc_info=True,
                    extra={
                        "event": "notification.send.failure",
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                        "retry_remaining": False,
                    },
                )
                return DeliveryResult.failed(str(e))

            self.logger.info(
                f"{channel.kind.value} channel returned {result.outcome.value}",
                extra={
                    "event": "notification.send.result",
                    "outcome": result.outcome.value,
                    "attempt": attempt,
                    "provider_reference": result.provider_reference,
                    "error": result.error,
                },
            )
            return result

        return DeliveryResult.failed("no delivery attempts were made")

    def _record_result(self, notification: Notification, result: DeliveryResult) -> Notification:
        if result.outcome == DeliveryOutcome.DELIVERED:
            status, delivered_at = DeliveryStatus.DELIVERED, utc_now()
        elif result.outcome == DeliveryOutcome.FAILED:
            status, delivered_at = DeliveryStatus.FAILED, None
        else:
            status, delivered_at = DeliveryStatus.PENDING, None

        if (
            status == notification.delivery_status
            and result.provider_reference is None
        ):
            return notification

        try:
            return self.store.update_delivery(
                notification.id,
                status,
                delivered_at=delivered_at,
                provider_reference=result.provider_reference,
            )
        except Exception as e:
            self.logger.error(
                f"Failed to record delivery status {status.value}: {e}",
                exc_info=True,
                extra={"event": "notification.status.update_failed", "status": status.value},
            )
            return notification

    def fan_out(
        self,
        job: JobPosting,
        worker_pool: Iterable[PoolItem],
        contact_resolver: Optional[ContactResolver] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FanOutResult:
        """Notify every worker who matches a new posting.

        Args:
            job: The newly created posting
            worker_pool: Stream of (worker_id, WorkerContext | Exception)
            contact_resolver: Looks up contact details for outbound channels
            cancel_event: Optional signal that stops the match scan early

        Returns:
            FanOutResult with the records in match order and per-outcome counts
        """
        result = FanOutResult(job_id=job.id)

        with log_context(job_id=job.id):
            candidates = self.match_finder.find_matches(
                job.to_context(),
                worker_pool,
                min_score=self.matching_config.min_match_score_for_notification,
                cancel_event=cancel_event,
            )
            result.matched_count = len(candidates)

            if candidates:
                body = self.template_renderer.render_job_match_body(job)
                by_worker: Dict[str, Notification] = {}
                max_workers = min(self.config.max_concurrency, len(candidates))

                with ThreadPoolExecutor(
                    max_workers=max_workers, thread_name_prefix="notify"
                ) as executor:
                    futures = {
                        executor.submit(
                            copy_context().run,
                            self._notify_match,
                            job,
                            candidate,
                            body,
                            contact_resolver,
                        ): candidate
                        for candidate in candidates
                    }

                    for future in as_completed(futures):
                        candidate = futures[future]
                        try:
                            notification, created = future.result()
                        except Exception as e:
                            result.failed_count += 1
                            self.logger.error(
                                f"Failed to notify worker {candidate.worker_id}: {e}",
                                exc_info=True,
                                extra={
                                    "event": "notification.fanout.recipient_failed",
                                    "recipient_id": candidate.worker_id,
                                    "error_type": type(e).__name__,
                                },
                            )
                            continue

                        by_worker[candidate.worker_id] = notification
                        if created:
                            result.created_count += 1
                        else:
                            result.duplicate_count += 1

                result.notifications = [
                    by_worker[c.worker_id] for c in candidates if c.worker_id in by_worker
                ]

            self.logger.info(
                f"Job match fan-out complete: {result.created_count} created, "
                f"{result.duplicate_count} duplicates, {result.failed_count} failed "
                f"(matched: {result.matched_count})",
                extra={
                    "event": "notification.fanout.completed",
                    "matched": result.matched_count,
                    "created": result.created_count,
                    "duplicates": result.duplicate_count,
                    "failed": result.failed_count,
                },
            )

        return result

    def notify_matching_workers(
        self,
        job: JobPosting,
        worker_pool: Iterable[PoolItem],
        contact_resolver: Optional[ContactResolver] = None,
    ) -> List[Notification]:
        """Create one JOB_MATCH notification per worker at or above the threshold.

        Recipients are independent: a failure for one is logged and left
        out of the result without affecting the others.
        """
        return self.fan_out(job, worker_pool, contact_resolver).notifications

    def _notify_match(
        self,
        job: JobPosting,
        candidate: MatchCandidate,
        body: str,
        contact_resolver: Optional[ContactResolver],
    ) -> Tuple[Notification, bool]:
        method = self.config.job_match_delivery_method
        contact = None
        if contact_resolver is not None and method != DeliveryMethod.IN_APP:
            try:
                contact = contact_resolver(candidate.worker_id)
            except Exception as e:
                # Still record the notification; without a contact it ends FAILED and retryable
                self.logger.warning(
                    f"Contact lookup failed for {candidate.worker_id}: {e}",
                    exc_info=True,
                    extra={
                        "event": "notification.contact.lookup_failed",
                        "recipient_id": candidate.worker_id,
                        "error_type": type(e).__name__,
                    },
                )

        return self._notify(
            candidate.worker_id,
            NotificationType.JOB_MATCH,
            JOB_MATCH_TITLE,
            body,
            payload=build_match_payload(job, candidate.score),
            delivery_method=method,
            source_event=f"job:{job.id}",
            contact=contact,
            job=job,
        )

    def handle_provider_callback(self, payload: Mapping[str, Any]) -> Optional[Notification]:
        """Apply a voice provider status callback.

        The payload carries call_id, status and metadata.notificationId.
        Terminal statuses settle a PENDING record: "completed" marks it
        DELIVERED; "failed", "no-answer", "busy" and "canceled" mark it
        FAILED. Other statuses only update provider_status.

        Returns:
            The updated record, or None when ignored or unknown
        """
        if not self.config.is_enabled(DeliveryMethod.VOICE_CALL):
            self.logger.debug(
                "Ignoring provider callback: voice calls disabled",
                extra={"event": "notification.callback.ignored"},
            )
            return None

        call_id = payload.get("call_id")
        provider_status = str(payload.get("status") or "").strip().lower() or None
        metadata = payload.get("metadata") or {}
        notification_id = metadata.get("notificationId") if isinstance(metadata, Mapping) else None

        notification = None
        if notification_id:
            notification = self.store.get(notification_id)
        if notification is None and call_id:
            notification = self.store.find_by_provider_reference(str(call_id))

        if notification is None:
            self.logger.warning(
                f"Provider callback for unknown notification (call {call_id})",
                extra={"event": "notification.callback.unknown", "call_id": call_id},
            )
            return None

        status = notification.delivery_status
        delivered_at = None
        if status == DeliveryStatus.PENDING:
            if provider_status in PROVIDER_DELIVERED_STATUSES:
                status, delivered_at = DeliveryStatus.DELIVERED, utc_now()
            elif provider_status in PROVIDER_FAILED_STATUSES:
                status = DeliveryStatus.FAILED

        with log_context(notification_id=notification.id):
            self.logger.info(
                f"Provider reported call status {provider_status}",
                extra={
                    "event": "notification.callback.applied",
                    "call_id": call_id,
                    "provider_status": provider_status,
                    "delivery_status": status.value,
                },
            )
        return self.store.update_delivery(
            notification.id,
            status,
            delivered_at=delivered_at,
            provider_reference=str(call_id) if call_id else None,
            provider_status=provider_status,
        )

    def retry_failed(
        self,
        notification_id: str,
        contact: Optional[RecipientContact] = None,
        job: Optional[JobPosting] = None,
    ) -> Notification:
        """Re-attempt delivery of a FAILED notification.

        Records in any other state are returned unchanged.

        Raises:
            NotificationNotFoundError: If the notification does not exist
        """
        notification = self.store.get(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)

        with log_context(notification_id=notification.id, recipient_id=notification.recipient_id):
            if notification.delivery_status != DeliveryStatus.FAILED:
                self.logger.info(
                    f"Not retrying notification in state {notification.delivery_status.value}",
                    extra={"event": "notification.retry.skipped"},
                )
                return notification

            self.logger.info(
                "Retrying failed notification",
                extra={
                    "event": "notification.retry.started",
                    "delivery_method": notification.delivery_method.value,
                },
            )
            return self._deliver(notification, contact, job)

    # Lifecycle notifications

    def application_received(
        self,
        employer_id: str,
        worker_name: Optional[str],
        job_title: str,
        job_id: str,
        application_id: str,
    ) -> Notification:
        return self.notify(
            employer_id,
            NotificationType.APPLICATION_RECEIVED,
            "New Application",
            f'{worker_name or "A worker"} applied for "{job_title}"',
            payload={"jobId": job_id, "applicationId": application_id},
            source_event=f"application:{application_id}:received",
        )

    def application_decided(
        self,
        worker_id: str,
        job_title: str,
        job_id: str,
        application_id: str,
        accepted: bool,
        delivery_method: DeliveryMethod = DeliveryMethod.IN_APP,
        contact: Optional[RecipientContact] = None,
        job: Optional[JobPosting] = None,
    ) -> Notification:
        if accepted:
            notification_type = NotificationType.APPLICATION_ACCEPTED
            title = "Application Accepted!"
            body = f'Your application for "{job_title}" has been accepted!'
        else:
            notification_type = NotificationType.APPLICATION_REJECTED
            title = "Application Update"
            body = f'Your application for "{job_title}" was not accepted.'

        return self.notify(
            worker_id,
            notification_type,
            title,
            body,
            payload={"jobId": job_id, "applicationId": application_id},
            delivery_method=delivery_method,
            source_event=f"application:{application_id}:decided",
            contact=contact,
            job=job,
        )

    def job_completed(
        self, worker_id: str, job_title: str, job_id: str, application_id: str
    ) -> Notification:
        return self.notify(
            worker_id,
            NotificationType.JOB_COMPLETED,
            "Job Completed!",
            f'The job "{job_title}" has been marked as completed. '
            "Don't forget to leave a review!",
            payload={"jobId": job_id, "applicationId": application_id},
            source_event=f"application:{application_id}:completed",
        )

    def new_message(
        self, recipient_id: str, sender_name: Optional[str], conversation_id: str, message_id: str
    ) -> Notification:
        return self.notify(
            recipient_id,
            NotificationType.NEW_MESSAGE,
            "New Message",
            f"{sender_name or 'Someone'} sent you a message",
            payload={"conversationId": conversation_id, "messageId": message_id},
            source_event=f"message:{message_id}",
        )

    def review_received(
        self, subject_id: str, author_name: str, rating: int, review_id: str, job_id: str
    ) -> Notification:
        return self.notify(
            subject_id,
            NotificationType.REVIEW_RECEIVED,
            "New Review",
            f"{author_name} left you a {rating}-star review",
            payload={"reviewId": review_id, "jobId": job_id},
            source_event=f"review:{review_id}",
        )
