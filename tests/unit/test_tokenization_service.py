"""Tests for the tokenization orchestrator."""

from datetime import timedelta

import pytest

from payment_gateway.models import (
    CardBrand,
    ErrorCode,
    PaymentGatewayError,
    SessionStatus,
    ValidationFailed,
)
from payment_gateway.models.requests import CompleteTokenizationRequest, RedirectTokenizationRequest

from conftest import NOW


def redirect_request(user_id: str = "user_1", provider: str = "transbank", **fields) -> RedirectTokenizationRequest:
    return RedirectTokenizationRequest(
        user_id=user_id,
        provider=provider,
        return_url="https://app.example/cards/callback",
        **fields,
    )


def complete_request(session_id: str, user_id: str = "user_1", provider: str = "transbank", **callback):
    return CompleteTokenizationRequest(
        session_id=session_id,
        user_id=user_id,
        provider=provider,
        callback_data=callback or {"TBK_TOKEN": "tbk_1"},
    )


class TestDirectTokenization:
    @pytest.mark.asyncio
    async def test_direct_tokenization_stores_masked_card(self, orchestrator, direct_request, cards, fake_stripe):
        result = await orchestrator.tokenize_direct(direct_request)

        response = result.to_response()
        assert response["card_last4"] == "4242"
        assert response["card_brand"] == CardBrand.VISA.value
        assert response["is_default"] is True
        assert "card_number" not in response

        stored = await cards.get(result.card.card_id)
        assert stored.payment_token == result.card.payment_token
        assert stored.card_last_four == "4242"
        assert stored.created_at == NOW
        assert [name for name, _ in fake_stripe.calls] == ["tokenize_direct"]

    @pytest.mark.asyncio
    async def test_invalid_card_never_reaches_provider(self, orchestrator, direct_request, fake_stripe):
        bad = direct_request.model_copy(update={"card_number": "4242424242424241", "card_cvv": "12"})

        with pytest.raises(ValidationFailed) as exc_info:
            await orchestrator.tokenize_direct(bad)

        assert exc_info.value.http_status == 400
        assert len(exc_info.value.details["errors"]) == 2
        assert fake_stripe.calls == []

    @pytest.mark.asyncio
    async def test_expired_card_uses_clock(self, orchestrator, direct_request, clock):
        clock.now = NOW.replace(year=2031)

        with pytest.raises(ValidationFailed) as exc_info:
            await orchestrator.tokenize_direct(direct_request)

        assert exc_info.value.details["errors"] == ["card is expired"]

    @pytest.mark.asyncio
    async def test_two_digit_year_is_expanded(self, orchestrator, direct_request, fake_stripe):
        result = await orchestrator.tokenize_direct(direct_request.model_copy(update={"card_exp_year": 30}))

        assert result.card.expiration_year == 2030
        assert fake_stripe.calls[0][1].card_exp_year == 2030

    @pytest.mark.asyncio
    async def test_redirect_only_processor_rejects_direct(self, orchestrator, direct_request):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.tokenize_direct(direct_request.model_copy(update={"provider": "transbank"}))

        assert exc_info.value.code == ErrorCode.METHOD_NOT_SUPPORTED
        assert exc_info.value.http_status == 400

    @pytest.mark.asyncio
    async def test_unconfigured_processor(self, orchestrator, direct_request):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.tokenize_direct(direct_request.model_copy(update={"provider": "mercadopago"}))

        assert exc_info.value.code == ErrorCode.PROVIDER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_vendor_failure_stores_nothing(self, orchestrator, direct_request, cards, fake_stripe, monkeypatch):
        async def failing(request):
            raise PaymentGatewayError("card declined", code=ErrorCode.TOKENIZATION_FAILED, http_status=402)

        monkeypatch.setattr(fake_stripe, "tokenize_direct", failing)

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.tokenize_direct(direct_request)

        assert exc_info.value.http_status == 402
        assert not await cards.has_cards("user_1")


class TestDefaultCard:
    @pytest.mark.asyncio
    async def test_first_card_is_default_even_if_not_requested(self, orchestrator, direct_request):
        result = await orchestrator.tokenize_direct(direct_request)

        assert direct_request.set_as_default is False
        assert result.card.is_default is True

    @pytest.mark.asyncio
    async def test_later_card_is_not_default_unless_requested(self, orchestrator, direct_request, clock):
        first = await orchestrator.tokenize_direct(direct_request)
        clock.advance(minutes=1)
        second = await orchestrator.tokenize_direct(direct_request)

        assert first.card.is_default is True
        assert second.card.is_default is False

    @pytest.mark.asyncio
    async def test_new_default_unsets_previous(self, orchestrator, direct_request, cards, clock):
        first = await orchestrator.tokenize_direct(direct_request)
        clock.advance(minutes=1)
        second = await orchestrator.tokenize_direct(direct_request.model_copy(update={"set_as_default": True}))

        stored = await cards.list_for_user("user_1")
        defaults = [card.card_id for card in stored if card.is_default]
        assert defaults == [second.card.card_id]
        assert (await cards.get(first.card.card_id)).is_default is False

    @pytest.mark.asyncio
    async def test_defaults_are_per_user(self, orchestrator, direct_request, cards):
        await orchestrator.tokenize_direct(direct_request)
        other = await orchestrator.tokenize_direct(direct_request.model_copy(update={"user_id": "user_2"}))

        assert other.card.is_default is True
        assert [card.is_default for card in await cards.list_for_user("user_1")] == [True]

    @pytest.mark.asyncio
    async def test_list_cards_default_first(self, orchestrator, direct_request, clock):
        await orchestrator.tokenize_direct(direct_request)
        clock.advance(minutes=1)
        newer = await orchestrator.tokenize_direct(direct_request.model_copy(update={"alias": "travel"}))

        listed = await orchestrator.list_cards("user_1")

        assert [card["is_default"] for card in listed] == [True, False]
        assert listed[1]["card_id"] == newer.card.card_id
        assert listed[1]["alias"] == "travel"
        assert listed[0]["provider"] == "stripe"


class TestRedirectTokenization:
    @pytest.mark.asyncio
    async def test_create_session_persists_pending(self, orchestrator, sessions, fake_transbank):
        created = await orchestrator.create_session(redirect_request(set_as_default=True))

        assert created["session_id"] == "sess_1"
        assert created["redirect_url"] == "https://vendor.example/pay?token=sess_1"
        assert created["expires_at"] == (NOW + timedelta(minutes=30)).isoformat()

        session = await sessions.get("sess_1")
        assert session.status == SessionStatus.PENDING
        assert session.set_as_default is True
        assert session.created_at == NOW

    @pytest.mark.asyncio
    async def test_complete_session_stores_card(self, orchestrator, sessions, cards):
        created = await orchestrator.create_session(redirect_request())

        result = await orchestrator.complete_session(complete_request(created["session_id"]))

        session = await sessions.get(created["session_id"])
        assert session.status == SessionStatus.COMPLETED
        assert session.card_id == result.card.card_id
        assert session.token_id == result.card.payment_token
        assert session.completed_at == NOW
        assert (await cards.get(result.card.card_id)).card_last_four == "6623"

    @pytest.mark.asyncio
    async def test_session_completes_only_once(self, orchestrator, fake_transbank):
        created = await orchestrator.create_session(redirect_request())
        await orchestrator.complete_session(complete_request(created["session_id"]))

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert exc_info.value.code == ErrorCode.SESSION_ALREADY_PROCESSED
        assert exc_info.value.http_status == 409
        completions = [name for name, _ in fake_transbank.calls if name == "complete_tokenization"]
        assert len(completions) == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, orchestrator):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request("sess_missing"))

        assert exc_info.value.code == ErrorCode.NOT_FOUND
        assert exc_info.value.http_status == 404

    @pytest.mark.asyncio
    async def test_other_users_session_is_forbidden(self, orchestrator, sessions, fake_transbank):
        created = await orchestrator.create_session(redirect_request())

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"], user_id="user_2"))

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert exc_info.value.http_status == 403
        assert (await sessions.get(created["session_id"])).status == SessionStatus.PENDING

    @pytest.mark.asyncio
    async def test_provider_must_match_session(self, orchestrator):
        created = await orchestrator.create_session(redirect_request())

        with pytest.raises(ValidationFailed):
            await orchestrator.complete_session(complete_request(created["session_id"], provider="stripe"))

    @pytest.mark.asyncio
    async def test_vendor_expiry_marks_session_expired(self, orchestrator, sessions, fake_transbank):
        created = await orchestrator.create_session(redirect_request())
        fake_transbank.next_completion_error = PaymentGatewayError(
            "Inscription timed out", code=ErrorCode.SESSION_EXPIRED
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert exc_info.value.http_status == 410
        session = await sessions.get(created["session_id"])
        assert session.status == SessionStatus.EXPIRED
        assert session.error_message == "Inscription timed out"

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_session_failed(self, orchestrator, sessions, fake_transbank, cards):
        created = await orchestrator.create_session(redirect_request())
        fake_transbank.next_completion_error = RuntimeError("connection reset")

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert exc_info.value.code == ErrorCode.TOKENIZATION_COMPLETION_FAILED
        assert (await sessions.get(created["session_id"])).status == SessionStatus.FAILED
        assert not await cards.has_cards("user_1")

    @pytest.mark.asyncio
    async def test_card_store_failure_marks_session_failed(
        self, orchestrator, sessions, cards, fake_transbank, monkeypatch
    ):
        created = await orchestrator.create_session(redirect_request())

        async def store_down(card):
            raise RuntimeError("store down")

        monkeypatch.setattr(cards, "save_card", store_down)

        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert exc_info.value.code == ErrorCode.TOKENIZATION_COMPLETION_FAILED
        session = await sessions.get(created["session_id"])
        assert session.status == SessionStatus.FAILED
        assert session.error_message == "store down"

        # A retry must not finish the vendor inscription a second time
        with pytest.raises(PaymentGatewayError) as retry_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert retry_info.value.code == ErrorCode.SESSION_ALREADY_PROCESSED
        completions = [name for name, _ in fake_transbank.calls if name == "complete_tokenization"]
        assert len(completions) == 1

    @pytest.mark.asyncio
    async def test_failed_session_cannot_be_retried(self, orchestrator, fake_transbank):
        created = await orchestrator.create_session(redirect_request())
        fake_transbank.next_completion_error = PaymentGatewayError(
            "rejected", code=ErrorCode.TOKENIZATION_COMPLETION_FAILED
        )
        with pytest.raises(PaymentGatewayError):
            await orchestrator.complete_session(complete_request(created["session_id"]))

        fake_transbank.next_completion_error = None
        with pytest.raises(PaymentGatewayError) as exc_info:
            await orchestrator.complete_session(complete_request(created["session_id"]))

        assert exc_info.value.code == ErrorCode.SESSION_ALREADY_PROCESSED

    @pytest.mark.asyncio
    async def test_late_completion_still_honored(self, orchestrator, sessions, clock):
        created = await orchestrator.create_session(redirect_request())
        clock.advance(hours=2)

        result = await orchestrator.complete_session(complete_request(created["session_id"]))

        assert result.card.card_id is not None
        assert (await sessions.get(created["session_id"])).status == SessionStatus.COMPLETED
