"""Tests for log redaction."""

from payment_gateway.logging_config import REDACTED, redact_sensitive_fields


def redact(**event):
    return redact_sensitive_fields(None, "info", dict(event))


class TestRedaction:
    def test_sensitive_keys_are_masked(self):
        event = redact(event="tokenizing", card_number="4242424242424242", card_cvv="123", api_key="k")

        assert event["card_number"] == REDACTED
        assert event["card_cvv"] == REDACTED
        assert event["api_key"] == REDACTED
        assert event["event"] == "tokenizing"

    def test_nested_keys_are_masked(self):
        event = redact(event="vendor_request", body={"security_code": "123", "amount": 10, "headers": {"Authorization": "Bearer x"}})

        assert event["body"]["security_code"] == REDACTED
        assert event["body"]["headers"]["Authorization"] == REDACTED
        assert event["body"]["amount"] == 10

    def test_card_numbers_in_strings_keep_last_four(self):
        event = redact(event="vendor_error", error="card 4242424242424242 rejected")

        assert event["error"] == "card ************4242 rejected"

    def test_short_numbers_untouched(self):
        event = redact(event="payment_finished", order="order 12345678", amount="15000")

        assert event["order"] == "order 12345678"
        assert event["amount"] == "15000"
