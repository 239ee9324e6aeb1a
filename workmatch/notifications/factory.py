"""Factory for building the delivery channels enabled in configuration."""

import logging
from typing import Dict, Optional

import requests

from workmatch.config.environment import EnvironmentConfig
from workmatch.config.exceptions import ConfigurationError
from workmatch.config.models import NotificationConfig
from workmatch.domain.models import DeliveryMethod

from .channels import DeliveryChannel, EmailChannel, InAppChannel, SmsChannel, VoiceCallChannel
from .templates import TemplateRenderer

logger = logging.getLogger(__name__)


def build_channels(
    notification_config: NotificationConfig,
    env_config: EnvironmentConfig,
    http_session: Optional[requests.Session] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> Dict[DeliveryMethod, DeliveryChannel]:
    """Instantiate one channel per enabled delivery method.

    Channels that are not enabled are not built, so their credentials are
    never needed.

    Raises:
        ConfigurationError: If an enabled channel is missing its settings

    Example:
        >>> channels = build_channels(NotificationConfig(), EnvironmentConfig())
        >>> list(channels)
        [<DeliveryMethod.IN_APP: 'IN_APP'>]
    """
    timeout = notification_config.http_timeout
    builders = {
        DeliveryMethod.IN_APP: lambda: InAppChannel(),
        DeliveryMethod.SMS: lambda: SmsChannel(
            env_config.sms_api_url,
            env_config.sms_api_key,
            sender=env_config.sms_sender,
            timeout=timeout,
            session=http_session,
        ),
        DeliveryMethod.VOICE_CALL: lambda: VoiceCallChannel(
            env_config.voice_api_url,
            env_config.voice_api_key,
            agent_id=env_config.voice_agent_id,
            timeout=timeout,
            session=http_session,
        ),
        DeliveryMethod.EMAIL: lambda: EmailChannel(env_config, renderer=renderer),
    }

    channels: Dict[DeliveryMethod, DeliveryChannel] = {}
    for method in notification_config.enabled_channels:
        try:
            channels[method] = builders[method]()
        except ValueError as e:
            raise ConfigurationError(
                f"Cannot build {method.value} channel: {e}",
                suggestions=[f"Set the {method.value} provider variables in .env"],
            ) from e

        logger.debug(
            "Created delivery channel",
            extra={"channel": method.value, "channel_class": type(channels[method]).__name__},
        )

    return channels
