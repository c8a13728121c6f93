"""Tests for the card, wallet and pay-at-property adapters."""

import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import KHALTI_API, FakeKhalti
from homestay_checkout.errors import PaymentProviderError
from homestay_checkout.payments.adapters import (
    DEFERRED_PAYMENT_STATUS,
    KhaltiAdapter,
    PayAtPropertyAdapter,
    StripeAdapter,
    callback_url,
)
from homestay_checkout.payments.khalti_client import KhaltiClient
from homestay_checkout.schemas.checkout import Booking, PaymentMethod
from homestay_checkout.services.pending_payment_service import get_pending_payment

STRIPE_SESSION = SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")


def _booking(total: str, **extra) -> Booking:
    return Booking(booking_id="BK-1", status="PENDING", total_price=Decimal(total), property_id=7, **extra)


class TestCallbackUrl:
    def test_wallet_shape(self):
        url = callback_url("BK-1", PaymentMethod.WALLET)
        assert url == "http://localhost:3000/payment-callback?bookingId=BK-1&paymentMethod=WALLET"

    def test_stripe_placeholder_stays_literal(self):
        url = callback_url("BK-1", PaymentMethod.CARD, session_id="{CHECKOUT_SESSION_ID}")
        assert url.endswith("session_id={CHECKOUT_SESSION_ID}")


class TestStripeAdapter:
    async def test_6850_npr_charges_5000_cents(self):
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
            return_value=STRIPE_SESSION,
        ) as mock_create:
            handle = await StripeAdapter().initiate(_booking("6850"))

        assert handle.url == STRIPE_SESSION.url
        assert handle.provider_reference == "cs_test_123"
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount_cents"] == 5000
        assert "currency" not in kwargs  # defaults to usd
        assert kwargs["metadata"]["bookingId"] == "BK-1"
        assert kwargs["metadata"]["totalPriceNPR"] == "6850"
        assert all(isinstance(v, str) for v in kwargs["metadata"].values())
        query = parse_qs(urlsplit(kwargs["success_url"]).query)
        assert query["paymentMethod"] == ["CARD"]

    async def test_below_minimum_makes_no_call(self):
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
        ) as mock_create:
            with pytest.raises(PaymentProviderError, match="at least 50 cents"):
                await StripeAdapter().initiate(_booking("0.30"))

        mock_create.assert_not_called()

    async def test_below_npr_floor_makes_no_call(self):
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
        ) as mock_create:
            with pytest.raises(PaymentProviderError, match="at least 1000 paisa"):
                await StripeAdapter(minimum_cents=0).initiate(_booking("9.99"))

        mock_create.assert_not_called()

    async def test_exactly_minimum_is_allowed(self):
        # 68.50 NPR -> 0.50 USD
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
            return_value=STRIPE_SESSION,
        ) as mock_create:
            await StripeAdapter().initiate(_booking("68.50"))
        assert mock_create.call_args.kwargs["amount_cents"] == 50

    async def test_stripe_error_becomes_provider_error(self):
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
            side_effect=stripe.APIConnectionError("network down"),
        ):
            with pytest.raises(PaymentProviderError) as exc_info:
                await StripeAdapter().initiate(_booking("6850"))
        assert exc_info.value.provider == "stripe"


class TestKhaltiAdapter:
    async def test_pending_record_created_before_initiation(self, db_session: AsyncSession, khalti: FakeKhalti):
        seen_before_call = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen_before_call.append(await get_pending_payment(db_session, "BK-1"))
            return await khalti.handler(request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = KhaltiClient(secret_key="k", base_url=KHALTI_API, http_client=http_client)
            handle = await KhaltiAdapter(db_session, client=client).initiate(_booking("1000"))

        assert seen_before_call[0] is not None
        assert seen_before_call[0].amount_minor_units == 100000
        assert handle.provider_reference == "pidx-BK-1"
        pending = await get_pending_payment(db_session, "BK-1")
        assert pending.provider_reference == "pidx-BK-1"

    async def test_sends_paisa_and_return_url(
        self, db_session: AsyncSession, khalti: FakeKhalti, khalti_client: KhaltiClient
    ):
        await KhaltiAdapter(db_session, client=khalti_client).initiate(
            _booking("1000", guest_name="Sita Sharma", guest_email="sita@example.com")
        )

        body = json.loads(khalti.calls("initiate")[0].content)
        assert body["amount"] == 100000
        assert body["return_url"].endswith("?bookingId=BK-1&paymentMethod=WALLET")
        assert body["customer_info"] == {"name": "Sita Sharma", "email": "sita@example.com"}

    async def test_below_minimum_makes_no_call(
        self, db_session: AsyncSession, khalti: FakeKhalti, khalti_client: KhaltiClient
    ):
        with pytest.raises(PaymentProviderError, match="at least 1000 paisa"):
            await KhaltiAdapter(db_session, client=khalti_client).initiate(_booking("9.99"))

        assert khalti.requests == []
        assert await get_pending_payment(db_session, "BK-1") is None

    async def test_failed_initiation_discards_record(
        self, db_session: AsyncSession, khalti: FakeKhalti, khalti_client: KhaltiClient
    ):
        khalti.fail_initiate_with = (503, {"detail": "Service unavailable"})

        with pytest.raises(PaymentProviderError, match="Service unavailable"):
            await KhaltiAdapter(db_session, client=khalti_client).initiate(_booking("1000"))

        assert await get_pending_payment(db_session, "BK-1") is None


class TestPayAtPropertyAdapter:
    async def test_marks_deferred_payment_without_calls(self):
        with patch(
            "homestay_checkout.payments.adapters.create_payment_session",
            new_callable=AsyncMock,
        ) as mock_create:
            booking = await PayAtPropertyAdapter().initiate(_booking("5000"))

        mock_create.assert_not_called()
        assert booking.status == DEFERRED_PAYMENT_STATUS
        assert booking.transaction_id == "PAY_AT_PROPERTY_BK-1"
        assert booking.total_price == Decimal("5000")

    async def test_keeps_backend_confirmed_status(self):
        booking = await PayAtPropertyAdapter().initiate(
            Booking(booking_id="BK-1", status="CONFIRMED", transaction_id="T-9")
        )
        assert booking.status == "CONFIRMED"
        assert booking.transaction_id == "T-9"
