"""Delivery channels for notifications.

A channel turns one persisted notification into an outbound delivery
attempt. Channels never touch the notification store; they report a
DeliveryResult and the dispatcher records it. Transient transport
problems raise ChannelDeliveryError so the dispatcher can retry.
"""

from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, Optional

import requests

from workmatch.config.environment import EnvironmentConfig
from workmatch.domain.models import DeliveryMethod
from workmatch.logging import get_logger

from .models import ChannelDeliveryError, ChannelMessage, DeliveryResult
from .smtp_client import SMTPClient, build_sender_address, normalize_recipient
from .templates import TemplateRenderer

logger = get_logger(__name__, component="channel")

USER_AGENT = "WorkMatch/1.0"


class DeliveryChannel(ABC):
    """Base class for all delivery channels.

    Attributes:
        kind: DeliveryMethod this channel serves
    """

    kind: DeliveryMethod

    @abstractmethod
    def send(self, message: ChannelMessage) -> DeliveryResult:
        """Deliver one notification.

        Returns:
            DELIVERED, DEFERRED (final state arrives later) or FAILED
            (permanent, not retried)

        Raises:
            ChannelDeliveryError: On transient failures worth retrying
        """
        pass


class InAppChannel(DeliveryChannel):
    """In-app delivery: the stored record is the message.

    The real-time transport picks records up from the store, so the
    notification stays PENDING until the client acknowledges it.
    """

    kind = DeliveryMethod.IN_APP

    def send(self, message: ChannelMessage) -> DeliveryResult:
        return DeliveryResult.deferred()


class HttpChannel(DeliveryChannel):
    """Shared request handling for HTTP provider channels."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_url or not api_url.strip():
            raise ValueError(f"{type(self).__name__} requires an API URL")
        if not api_key:
            raise ValueError(f"{type(self).__name__} requires an API key")

        self.api_url = api_url.strip().rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        # Sent per request; the session may be shared with other provider channels
        self._headers = {"User-Agent": USER_AGENT, "Authorization": f"Bearer {api_key}"}

    def _post(self, url: str, body: Dict[str, Any]) -> requests.Response:
        """POST a JSON body, mapping transient failures to ChannelDeliveryError.

        Returns the response for 2xx and 4xx statuses; 4xx handling is up
        to the caller since it is not worth retrying.
        """
        try:
            logger.debug(
                f"HTTP POST request to {url}",
                extra={"event": "channel.request", "channel": self.kind.value, "url": url},
            )
            response = self._session.post(
                url, json=body, headers=self._headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise ChannelDeliveryError(f"Request to {url} timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ChannelDeliveryError(f"Request to {url} failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(
                f"HTTP {response.status_code} from {url}",
                extra={
                    "event": "channel.retryable_error",
                    "channel": self.kind.value,
                    "status_code": response.status_code,
                },
            )
            raise ChannelDeliveryError(
                f"HTTP {response.status_code}: {response.reason}", status_code=response.status_code
            )

        return response

    @staticmethod
    def _json_body(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class SmsChannel(HttpChannel):
    """SMS delivery through an HTTP messaging provider."""

    kind = DeliveryMethod.SMS

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(api_url, api_key, timeout=timeout, session=session)
        self.sender = sender

    def send(self, message: ChannelMessage) -> DeliveryResult:
        phone = message.contact.phone if message.contact else None
        if not phone:
            return DeliveryResult.failed("recipient has no phone number")

        notification = message.notification
        body: Dict[str, Any] = {"to": phone, "body": f"{notification.title}\n{notification.body}"}
        if self.sender:
            body["from"] = self.sender

        response = self._post(self.api_url, body)
        if response.status_code >= 400:
            return DeliveryResult.failed(f"SMS provider rejected message: HTTP {response.status_code}")

        data = self._json_body(response)
        reference = data.get("id") or data.get("sid") or data.get("message_id")
        return DeliveryResult.delivered(str(reference) if reference else None)


class VoiceCallChannel(HttpChannel):
    """Outbound voice calls placed by a conversational voice agent.

    The provider answers with a call id; the final call status arrives
    later through the dispatcher's provider callback.
    """

    kind = DeliveryMethod.VOICE_CALL

    def __init__(
        self,
        api_url: str,
        api_key: str,
        agent_id: str = "work-for-all-agent",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(api_url, api_key, timeout=timeout, session=session)
        self.agent_id = agent_id

    def send(self, message: ChannelMessage) -> DeliveryResult:
        phone = message.contact.phone if message.contact else None
        if not phone:
            return DeliveryResult.failed("recipient has no phone number")

        notification = message.notification
        body = {
            "to": phone,
            "agent_id": self.agent_id,
            "context": message.context,
            "metadata": {
                "userId": notification.recipient_id,
                "notificationId": notification.id,
            },
        }

        response = self._post(f"{self.api_url}/v1/calls", body)
        if response.status_code >= 400:
            return DeliveryResult.failed(f"Voice provider rejected call: HTTP {response.status_code}")

        call_id = self._json_body(response).get("call_id")
        if not call_id:
            return DeliveryResult.failed("Voice provider response did not include a call_id")

        logger.info(
            f"Voice call initiated for notification {notification.id}",
            extra={"event": "channel.call.initiated", "call_id": call_id},
        )
        return DeliveryResult.deferred(str(call_id))


class EmailChannel(DeliveryChannel):
    """Email delivery over SMTP with Jinja2-rendered bodies."""

    kind = DeliveryMethod.EMAIL

    def __init__(
        self,
        env_config: EnvironmentConfig,
        renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
        use_tls: bool = True,
    ):
        self.env_config = env_config
        self.renderer = renderer or TemplateRenderer()
        self.smtp_client = smtp_client or SMTPClient()
        self.use_tls = use_tls

    def send(self, message: ChannelMessage) -> DeliveryResult:
        contact = message.contact
        if contact is None or not contact.email:
            return DeliveryResult.failed("recipient has no email address")

        try:
            recipient = normalize_recipient(contact.email)
        except ValueError as e:
            return DeliveryResult.failed(str(e))

        rendered = self.renderer.render_email(
            message.notification, recipient_name=contact.name, job=message.job
        )

        email = EmailMessage()
        email["Subject"] = rendered["subject"]
        email["From"] = build_sender_address(self.env_config)
        email["To"] = recipient
        email.set_content(rendered["text_body"])
        email.add_alternative(rendered["html_body"], subtype="html")

        self.smtp_client.send(email, self.env_config, self.use_tls)
        return DeliveryResult.delivered()
