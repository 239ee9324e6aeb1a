"""Environment variable loading and validation."""

import os
from typing import Iterable, List, Optional

from email_validator import EmailNotValidError, validate_email

from workmatch.domain.models import DeliveryMethod

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/workmatch.db"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder.

    Holds secrets and deployment-specific endpoints; everything tunable
    lives in the YAML AppConfig instead.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
        sms_api_url: Optional[str] = None,
        sms_api_key: Optional[str] = None,
        sms_sender: Optional[str] = None,
        voice_api_url: Optional[str] = None,
        voice_api_key: Optional[str] = None,
        voice_agent_id: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        smtp_sender_email: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.environment = environment or "local"
        self.sms_api_url = sms_api_url
        self.sms_api_key = sms_api_key
        self.sms_sender = sms_sender
        self.voice_api_url = voice_api_url
        self.voice_api_key = voice_api_key
        self.voice_agent_id = voice_agent_id or "work-for-all-agent"
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port or 587
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "WorkMatch"
        self.smtp_sender_email = smtp_sender_email


def load_environment_config(
    enabled_channels: Iterable[DeliveryMethod] = (DeliveryMethod.IN_APP,),
) -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Always optional:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/workmatch.db)
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Label attached to every log record (default: local)

    Required only when the matching channel is enabled:
    - SMS: SMS_API_URL, SMS_API_KEY (optional SMS_SENDER)
    - VOICE_CALL: VOICE_API_URL, VOICE_API_KEY (optional VOICE_AGENT_ID)
    - EMAIL: SMTP_HOST (optional SMTP_PORT, SMTP_USER, SMTP_PASS,
      SMTP_SENDER_NAME, SMTP_SENDER_EMAIL)

    Args:
        enabled_channels: Channels enabled in the YAML configuration

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    channels = set(enabled_channels)
    errors: List[str] = []

    log_level = os.getenv("LOG_LEVEL")
    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if DeliveryMethod.SMS in channels:
        errors.extend(_require("SMS channel", "SMS_API_URL", "SMS_API_KEY"))

    if DeliveryMethod.VOICE_CALL in channels:
        errors.extend(_require("voice call channel", "VOICE_API_URL", "VOICE_API_KEY"))

    smtp_port = None
    smtp_port_str = os.getenv("SMTP_PORT")
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if not 1 <= smtp_port <= 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    sender_email = os.getenv("SMTP_SENDER_EMAIL")

    if DeliveryMethod.EMAIL in channels:
        errors.extend(_require("email channel", "SMTP_HOST"))

        if bool(smtp_user) != bool(smtp_pass):
            errors.append("SMTP_USER and SMTP_PASS must be set together for authentication.")

        if sender_email:
            try:
                validate_email(sender_email, check_deliverability=False)
            except EmailNotValidError as e:
                errors.append(f"Invalid SMTP_SENDER_EMAIL '{sender_email}': {e}")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in the values for enabled channels",
                "Disable channels you have no provider credentials for",
            ],
        )

    return EnvironmentConfig(
        database_url=os.getenv("DATABASE_URL"),
        log_level=log_level.upper() if log_level else None,
        environment=os.getenv("ENVIRONMENT"),
        sms_api_url=os.getenv("SMS_API_URL"),
        sms_api_key=os.getenv("SMS_API_KEY"),
        sms_sender=os.getenv("SMS_SENDER"),
        voice_api_url=os.getenv("VOICE_API_URL"),
        voice_api_key=os.getenv("VOICE_API_KEY"),
        voice_agent_id=os.getenv("VOICE_AGENT_ID"),
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=os.getenv("SMTP_SENDER_NAME"),
        smtp_sender_email=sender_email,
    )


def _require(purpose: str, *names: str) -> List[str]:
    return [
        f"Missing required environment variable for {purpose}: {name}"
        for name in names
        if not os.getenv(name)
    ]
