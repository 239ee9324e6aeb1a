"""Template rendering for notification messages using Jinja2.

This module wraps Jinja2 template rendering with strict undefined
checking to catch template errors early. HTML templates are autoescaped;
plain-text templates are not.
"""

import logging
from typing import Dict, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from workmatch.domain.models import JobPosting, Notification

from .models import NotificationTemplateError
from .payloads import format_amount

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders notification bodies and emails from package templates.

    Templates live in workmatch/notifications/message_templates and are
    cached by the Jinja2 environment after first load.
    """

    def __init__(
        self,
        template_dir: str = "message_templates",
        job_match_template: str = "job_match_body.txt.j2",
        subject_template: str = "email_subject.j2",
        html_template: str = "email_body.html.j2",
        text_template: str = "email_body.txt.j2",
    ):
        self.job_match_template_name = job_match_template
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template

        self.env = Environment(
            loader=PackageLoader("workmatch.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default_for_string=False),
            undefined=StrictUndefined,
        )
        self.env.filters["amount"] = format_amount

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render_job_match_body(self, job: JobPosting) -> str:
        """Body text of a JOB_MATCH notification.

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        try:
            template = self.env.get_template(self.job_match_template_name)
            return template.render(job=job).strip()
        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

    def render_email(
        self,
        notification: Notification,
        recipient_name: Optional[str] = None,
        job: Optional[JobPosting] = None,
    ) -> Dict[str, str]:
        """Render the email subject and bodies for a notification.

        Returns:
            Dictionary containing:
            - subject: Rendered subject line (single line, no newlines)
            - html_body: Rendered HTML body
            - text_body: Rendered plain text body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        context = {
            "notification": notification,
            "recipient_name": recipient_name or "there",
            "job": job,
        }
        try:
            subject_template = self.env.get_template(self.subject_template_name)
            html_template = self.env.get_template(self.html_template_name)
            text_template = self.env.get_template(self.text_template_name)

            subject = subject_template.render(context).strip().replace("\n", " ")
            html_body = html_template.render(context)
            text_body = text_template.render(context)

            logger.debug(f"Rendered email templates for notification {notification.id}")

            return {
                "subject": subject,
                "html_body": html_body,
                "text_body": text_body,
            }

        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e
