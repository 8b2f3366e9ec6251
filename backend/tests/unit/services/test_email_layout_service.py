"""
Unit tests for EmailLayoutService.

WHY: Rule bodies are administrator text filled with case data. The
layout must escape that data and keep the body's line breaks.
"""

from datetime import datetime

import pytest

from casenotify.core.exceptions import EmailTemplateError
from casenotify.services.email_layout_service import ADMIN_TEST_SUBJECT, EmailLayoutService, nl2br


class TestNl2br:
    """Tests for the nl2br filter."""

    def test_escapes_then_breaks(self):
        """Verify markup in the text is escaped and newlines become <br>."""
        result = nl2br("Doctor: <b>Tan</b>\r\nDate: 2024-03-01")
        assert str(result) == "Doctor: &lt;b&gt;Tan&lt;/b&gt;<br>\nDate: 2024-03-01"

    def test_empty(self):
        """Verify empty text renders as nothing."""
        assert str(nl2br(None)) == ""


class TestEmailLayoutService:
    """Tests for the HTML layouts."""

    def test_notification_layout(self):
        """Verify status, country and escaped body reach the HTML."""
        html = EmailLayoutService().render_notification(
            subject="New case SG-2024-001",
            body="Hospital: A & B\nProcedure: Knee",
            status="Case Booked",
            country="Singapore",
        )

        assert "<title>New case SG-2024-001</title>" in html
        assert "Case Booked" in html
        assert "Singapore" in html
        assert "Hospital: A &amp; B<br>" in html

    def test_admin_test_layout(self):
        """Verify the test email names the sending mailbox."""
        subject, html = EmailLayoutService().render_admin_test(
            country="Singapore",
            from_email="notifications@hosp.sg",
            from_name="SG Case Notifications",
            provider="microsoft",
            sent_at=datetime(2024, 3, 1, 9, 30),
        )

        assert subject == ADMIN_TEST_SUBJECT
        assert "notifications@hosp.sg" in html
        assert "2024-03-01 09:30 UTC" in html

    def test_missing_layout(self, tmp_path):
        """Verify a missing layout raises EmailTemplateError."""
        with pytest.raises(EmailTemplateError):
            EmailLayoutService(template_dir=tmp_path).render_template("missing.html", {})
