"""Notification records and their delivery.

This module provides the notification pipeline:
- NotificationDispatcher: persists records, routes them to channels, runs
  the job-match fan-out and applies provider callbacks
- Delivery channels: in-app, SMS, voice call, email
- TemplateRenderer: Jinja2 rendering of message bodies and emails
- SMTPClient: SMTP wrapper with TLS/SSL support
- Context builders: per-type channel contexts
"""

from .channels import (
    DeliveryChannel,
    EmailChannel,
    InAppChannel,
    SmsChannel,
    VoiceCallChannel,
)
from .dispatcher import NotificationDispatcher
from .factory import build_channels
from .models import (
    ChannelDeliveryError,
    ChannelMessage,
    DeliveryOutcome,
    DeliveryResult,
    FanOutResult,
    NotificationError,
    NotificationNotFoundError,
    NotificationTemplateError,
    SMTPDeliveryError,
)
from .payloads import build_channel_context, build_match_payload
from .smtp_client import SMTPClient, build_sender_address, normalize_recipient
from .templates import TemplateRenderer

__all__ = [
    # Main service
    "NotificationDispatcher",
    "build_channels",
    # Channels
    "DeliveryChannel",
    "InAppChannel",
    "SmsChannel",
    "VoiceCallChannel",
    "EmailChannel",
    # Models and results
    "ChannelMessage",
    "DeliveryOutcome",
    "DeliveryResult",
    "FanOutResult",
    # Exceptions
    "NotificationError",
    "NotificationTemplateError",
    "NotificationNotFoundError",
    "ChannelDeliveryError",
    "SMTPDeliveryError",
    # Components
    "TemplateRenderer",
    "SMTPClient",
    # Utilities
    "build_channel_context",
    "build_match_payload",
    "build_sender_address",
    "normalize_recipient",
]
