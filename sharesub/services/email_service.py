"""Transactional email via Resend API."""

import asyncio
import logging
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader

from sharesub.config import Settings

logger = logging.getLogger(__name__)

# Load email templates
_template_dir = Path(__file__).parent.parent / "templates" / "email"
_jinja_env = Environment(loader=FileSystemLoader(str(_template_dir)), autoescape=True)


class EmailSender:
    def __init__(self, settings: Settings):
        self._api_key = settings.resend_api_key
        self._email_from = settings.email_from
        self._app_url = settings.app_url
        self._app_name = settings.app_name
        if self._api_key:
            resend.api_key = self._api_key

    def render(self, template: str, **context) -> str:
        return _jinja_env.get_template(template).render(
            app_url=self._app_url, app_name=self._app_name, **context
        )

    async def send(self, to_email: str, subject: str, template: str, **context) -> bool:
        """Render a template and send it via Resend.

        Returns True on success, False on failure.
        """
        if not self._api_key:
            logger.warning("Resend API key not configured, skipping email")
            return False

        try:
            html_body = self.render(template, **context)
            await asyncio.to_thread(
                resend.Emails.send,
                {
                    "from": self._email_from,
                    "to": [to_email],
                    "subject": subject,
                    "html": html_body,
                },
            )
            logger.info("Email %s sent to %s", template, to_email)
            return True
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False
