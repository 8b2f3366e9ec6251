"""
Email Layout Service for wrapping notifications in HTML.

WHAT: Renders the Jinja2 HTML layouts in casenotify/templates/email.

WHY: Rule templates are plain text written by administrators. Wrapping
them in one shared layout keeps every notification consistently branded
and lets us escape case data safely (autoescape) before it reaches an
inbox.

HOW: Jinja2 Environment with a FileSystemLoader and autoescaping. The
``nl2br`` filter turns the plain-text body's newlines into <br> tags
after escaping.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape
from markupsafe import Markup, escape

from casenotify.core.config import settings
from casenotify.core.exceptions import EmailTemplateError
from casenotify.models.base import utcnow


logger = logging.getLogger(__name__)


ADMIN_TEST_SUBJECT = "TM Case Booking - Admin Email Configuration Test"


def nl2br(text: Optional[str]) -> Markup:
    """Escape text and turn newlines into <br> tags."""
    if not text:
        return Markup("")
    lines = str(text).replace("\r\n", "\n").split("\n")
    return Markup("<br>\n").join(escape(line) for line in lines)


class EmailLayoutService:
    """
    Service for rendering the HTML email layouts.

    Example:
        layout = EmailLayoutService()
        html = layout.render_notification(
            subject="New case SG-2024-001",
            body="Hospital: General\\nDate: 2024-05-01",
            status="Case Booked",
            country="Singapore",
        )
    """

    def __init__(self, template_dir: Optional[Path] = None):
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates" / "email"
        self._template_dir = template_dir
        self._env = self._create_environment()

    def _create_environment(self) -> Environment:
        env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        env.filters["nl2br"] = nl2br
        return env

    def _get_base_context(self) -> Dict[str, Any]:
        return {
            "year": utcnow().year,
            "system_name": settings.DEFAULT_FROM_NAME,
        }

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render a layout with the given context.

        Raises:
            EmailTemplateError: If the layout is missing or fails to render
        """
        try:
            template = self._env.get_template(template_name)
            return template.render(**{**self._get_base_context(), **context})
        except TemplateNotFound:
            logger.error(f"Email layout not found: {template_name}")
            raise EmailTemplateError(
                message=f"Email layout not found: {template_name}",
                template=template_name,
            )
        except TemplateError as e:
            logger.error(f"Error rendering email layout {template_name}: {e}")
            raise EmailTemplateError(template=template_name, error=str(e))

    def render_notification(
        self,
        subject: str,
        body: str,
        status: str,
        country: str,
    ) -> str:
        """Wrap a rendered rule template in the status notification layout."""
        return self.render_template(
            "case_notification.html",
            {"subject": subject, "body": body, "status": status, "country": country},
        )

    def render_admin_test(
        self,
        country: str,
        from_email: str,
        from_name: str,
        provider: str,
        sent_at: Optional[datetime] = None,
    ) -> Tuple[str, str]:
        """
        Render the admin configuration test email.

        Returns:
            Tuple of (subject, html_content)
        """
        html = self.render_template(
            "admin_test.html",
            {
                "country": country,
                "from_email": from_email,
                "from_name": from_name,
                "provider": provider,
                "sent_at": (sent_at or utcnow()).strftime("%Y-%m-%d %H:%M UTC"),
            },
        )
        return ADMIN_TEST_SUBJECT, html
