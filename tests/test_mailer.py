"""Tests for notification rendering and the SMTP sink."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from corex.config import settings
from corex.tracker.mailer import SmtpNotifier, get_notifier, render, send_best_effort
from corex.tracker.models import NotificationKind
from tests.conftest import RecordingNotifier


class TestRender:
    def test_invitation_contains_code_and_ttl(self):
        subject, body = render(NotificationKind.group_invitation, {"group_name": "Runners", "code": "AB12CD34"}, "CoreX")
        assert subject == "Invitation to join Runners on CoreX"
        assert "AB12CD34" in body
        assert f"expire in {settings.code_ttl_days} days" in body

    def test_goal_shared(self):
        subject, body = render(
            NotificationKind.goal_shared, {"group_name": "Runners", "goal_title": "10k", "code": "ZZZZ9999"}
        )
        assert subject == "New Goal Shared in Runners"
        assert '"10k"' in body
        assert "ZZZZ9999" in body

    def test_achievement(self):
        subject, body = render(NotificationKind.goal_achievement, {"group_name": "Runners", "goal_title": "10k"})
        assert subject == "Goal Achievement in Runners!"
        assert "Congratulations" in body

    def test_progress_shows_percentage(self):
        payload = {"group_name": "Runners", "goal_title": "10k", "progress": 6, "target": 10, "unit": "km", "percentage": 60}
        subject, body = render(NotificationKind.goal_progress, payload)
        assert subject == "Goal Progress Update in Runners"
        assert "6 km (60% of target 10 km)" in body

    def test_values_are_escaped(self):
        _, body = render(NotificationKind.goal_achievement, {"group_name": "<b>x</b>", "goal_title": "a & b"})
        assert "<b>x</b>" not in body
        assert "&lt;b&gt;x&lt;/b&gt;" in body
        assert "a &amp; b" in body


class TestSmtpNotifier:
    @pytest.mark.asyncio
    async def test_disabled_only_logs(self, caplog):
        notifier = SmtpNotifier()
        notifier.enabled = False
        with patch("corex.tracker.mailer.smtplib.SMTP") as smtp, caplog.at_level(logging.INFO):
            await notifier.send(NotificationKind.goal_achievement, "a@x.io", {"group_name": "G", "goal_title": "T"})
        smtp.assert_not_called()
        assert "would send goal_achievement to a@x.io" in caplog.text

    @pytest.mark.asyncio
    async def test_enabled_delivers_over_smtp(self):
        notifier = SmtpNotifier()
        notifier.enabled = True
        notifier.username = "bot@x.io"
        notifier.password = "secret"
        notifier.use_tls = True

        server = MagicMock()
        with patch("corex.tracker.mailer.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            await notifier.send(NotificationKind.group_invitation, "a@x.io", {"group_name": "G", "code": "AB12CD34"})

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@x.io", "secret")
        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "a@x.io"
        assert msg["Subject"].startswith("Invitation to join G")

    def test_get_notifier_returns_smtp_notifier(self):
        assert isinstance(get_notifier(), SmtpNotifier)


class TestSendBestEffort:
    @pytest.mark.asyncio
    async def test_success(self):
        notifier = RecordingNotifier()
        assert await send_best_effort(notifier, NotificationKind.goal_progress, "a@x.io", {}) is True
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_swallowed(self, caplog):
        notifier = RecordingNotifier(fail_for={"a@x.io"})
        with caplog.at_level(logging.ERROR):
            ok = await send_best_effort(notifier, NotificationKind.goal_progress, "a@x.io", {})
        assert ok is False
        assert "Failed to send goal_progress email to a@x.io" in caplog.text
