"""Unit tests for card, money, signature and id helpers."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from payment_gateway.domain.cards import (
    detect_card_brand,
    expand_year,
    expiration_valid,
    luhn_valid,
    mask_card_number,
    to_card_brand,
    validate_card_input,
)
from payment_gateway.domain.identifiers import generate_id
from payment_gateway.domain.money import from_minor_units, to_minor_units
from payment_gateway.domain.signatures import (
    compute_signature,
    parse_signature_header,
    verify_signature,
)
from payment_gateway.models import CardBrand, ErrorCode, ValidationFailed
from payment_gateway.models.requests import DirectTokenizationRequest


class TestLuhn:
    @pytest.mark.parametrize(
        "number",
        ["4242424242424242", "4111 1111 1111 1111", "5555-5555-5555-4444", "378282246310005"],
    )
    def test_valid_numbers(self, number):
        assert luhn_valid(number)

    @pytest.mark.parametrize("number", ["4242424242424241", "1234", "42424242424242424242", "4242abcd42424242"])
    def test_invalid_numbers(self, number):
        assert not luhn_valid(number)


class TestBrandDetection:
    @pytest.mark.parametrize(
        "number,brand",
        [
            ("4242424242424242", "visa"),
            ("5555555555554444", "mastercard"),
            ("2221000000000009", "mastercard"),
            ("378282246310005", "amex"),
            ("6011111111111117", "discover"),
            ("36227206271667", "diners"),
            ("3530111333300000", "jcb"),
            ("9999999999999999", "unknown"),
        ],
    )
    def test_detect_card_brand(self, number, brand):
        assert detect_card_brand(number) == brand

    def test_vendor_aliases_collapse_to_card_brand(self):
        assert to_card_brand("master") == CardBrand.MASTERCARD
        assert to_card_brand("American Express") == CardBrand.AMEX
        assert to_card_brand("Visa") == CardBrand.VISA
        assert to_card_brand("discover") == CardBrand.OTHER
        assert to_card_brand(None) == CardBrand.OTHER

    def test_mask_card_number_keeps_last_four(self):
        assert mask_card_number("4242 4242 4242 4242") == "****4242"


class TestExpiry:
    def test_expand_two_digit_year(self):
        assert expand_year(30) == 2030
        assert expand_year(2031) == 2031

    def test_current_month_is_still_valid(self):
        assert expiration_valid(3, 2026, today=date(2026, 3, 31))

    def test_past_month_is_expired(self):
        assert not expiration_valid(2, 26, today=date(2026, 3, 1))

    def test_invalid_month(self):
        assert not expiration_valid(13, 2030, today=date(2026, 3, 1))


class TestValidateCardInput:
    def _request(self, **overrides) -> DirectTokenizationRequest:
        data = {
            "user_id": "user_1",
            "provider": "stripe",
            "card_number": "4242424242424242",
            "card_exp_month": 12,
            "card_exp_year": 30,
            "card_cvv": "123",
            "card_holder_name": "Ada Lovelace",
        }
        data.update(overrides)
        return DirectTokenizationRequest(**data)

    def test_valid_card_passes(self):
        validate_card_input(self._request(), today=date(2026, 3, 1))

    def test_every_problem_is_reported(self):
        request = self._request(card_number="4242424242424241", card_cvv="12", card_holder_name="  ")

        with pytest.raises(ValidationFailed) as exc_info:
            validate_card_input(request, today=date(2026, 3, 1))

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert exc_info.value.http_status == 400
        assert len(exc_info.value.details["errors"]) == 3

    def test_expired_card_is_rejected(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_card_input(self._request(card_exp_month=1, card_exp_year=2026), today=date(2026, 3, 1))

        assert exc_info.value.details["errors"] == ["card is expired"]


class TestMinorUnits:
    def test_two_decimal_currency(self):
        assert to_minor_units(Decimal("12.99"), "usd") == 1299
        assert from_minor_units(1299, "USD") == Decimal("12.99")

    def test_zero_decimal_currency(self):
        assert to_minor_units(Decimal("10000"), "CLP") == 10000
        assert from_minor_units(10000, "CLP") == Decimal("10000")


class TestSignatures:
    def test_verify_accepts_matching_signature(self):
        signature = compute_signature("whsec", "id:123;ts:1700000000;")
        assert verify_signature("id:123;ts:1700000000;", signature, "whsec")

    def test_verify_rejects_tampered_message(self):
        signature = compute_signature("whsec", "id:123;")
        assert not verify_signature("id:124;", signature, "whsec")

    def test_verify_rejects_missing_secret(self):
        assert not verify_signature("message", "abc", "")

    def test_parse_signature_header(self):
        assert parse_signature_header("ts=1700000000, v1=abc") == {"ts": "1700000000", "v1": "abc"}


class TestIdentifiers:
    def test_generate_id_has_prefix_and_is_unique(self):
        first, second = generate_id("pay"), generate_id("pay")

        assert first.startswith("pay_")
        assert len(first.split("_")) == 3
        assert first != second

    def test_later_ids_sort_after_earlier_ones(self):
        with patch("payment_gateway.domain.identifiers.time.time", return_value=1772366400.0):
            earlier = generate_id("pay")
        with patch("payment_gateway.domain.identifiers.time.time", return_value=1772366401.0):
            later = generate_id("pay")

        assert earlier < later
