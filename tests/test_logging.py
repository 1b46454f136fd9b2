"""Tests for log redaction."""

from convoflow.utils.logging import _redactor, _scrub


class TestScrub:
    def test_secrets(self):
        assert _scrub("api_key=abc123", mask_emails=False) == "api_key=***REDACTED***"

    def test_slack_webhook(self):
        scrubbed = _scrub("posting to https://hooks.slack.com/services/T0/B1/xyz", False)
        assert "T0/B1" not in scrubbed
        assert "hooks.slack.com/services/***REDACTED***" in scrubbed

    def test_emails_masked(self):
        assert _scrub("invite dana@example.com", mask_emails=True) == "invite d***@example.com"

    def test_emails_kept(self):
        assert _scrub("invite dana@example.com", mask_emails=False) == "invite dana@example.com"


class TestRedactor:
    def test_scrubs_strings_and_lists(self):
        redact = _redactor(mask_emails=True)
        event = redact(None, "info", {
            "event": "notification_sent",
            "recipient": "a@x.com",
            "attendees": ["bob@x.com", 3],
            "count": 2,
        })
        assert event["recipient"] == "a***@x.com"
        assert event["attendees"] == ["b***@x.com", 3]
        assert event["count"] == 2
        assert event["event"] == "notification_sent"
