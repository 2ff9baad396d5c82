"""
Unit Tests - Sanitisation
=========================
Log redaction and control-character stripping.
"""

import pytest

from logging_config import mask_phone, scrub_event
from security import sanitize_payload, sanitize_text


class TestScrubEvent:

    @pytest.mark.unit
    def test_redacts_credentials(self):
        event = scrub_event(None, "info", {
            "event": "Login",
            "password": "hunter2",
            "twilio_auth_token": "abc",
            "Authorization": "Bearer xyz",
            "email": "a@example.com",
        })

        assert event["password"] == "***REDACTED***"
        assert event["twilio_auth_token"] == "***REDACTED***"
        assert event["Authorization"] == "***REDACTED***"
        assert event["email"] == "a@example.com"

    @pytest.mark.unit
    def test_nested_dicts(self):
        event = scrub_event(None, "info", {"event": "x", "context": {"session_secret": "s", "id": 1}})
        assert event["context"] == {"session_secret": "***REDACTED***", "id": 1}

    @pytest.mark.unit
    def test_truncates_long_strings(self):
        event = scrub_event(None, "info", {"event": "x", "body": "a" * 5000})
        assert event["body"] == "a" * 100 + "...[truncated]"

    @pytest.mark.unit
    def test_masks_sms_recipients(self):
        event = scrub_event(None, "info", {"event": "SMS sent", "to": "+1 (555) 123-4567", "message_id": "SM1"})

        assert event["to"] == "***4567"
        assert event["message_id"] == "SM1"

    @pytest.mark.unit
    def test_short_numbers_fully_masked(self):
        assert mask_phone("911") == "***"


class TestSanitizeText:

    @pytest.mark.unit
    def test_strips_control_characters(self):
        assert sanitize_text("Pump\x00 P-101\x07 ready\x1b") == "Pump P-101 ready"

    @pytest.mark.unit
    def test_keeps_whitespace(self):
        assert sanitize_text("line 1\nline 2\tcol\r\n") == "line 1\nline 2\tcol\r\n"

    @pytest.mark.unit
    def test_payload_recurses(self):
        payload = {"name\x00": "Valve\x01", "tags": ["a\x02", 3], "nested": {"note": "ok\x7f"}}

        assert sanitize_payload(payload) == {"name": "Valve", "tags": ["a", 3], "nested": {"note": "ok"}}
