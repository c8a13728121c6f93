"""Async Stripe API wrapper for hosted card checkout."""

import logging

import stripe
from stripe import StripeClient

from homestay_checkout.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support and a bounded timeout."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(timeout=settings.payment_provider_timeout_seconds),
        max_network_retries=0,
    )


async def create_payment_session(
    amount_cents: int,
    description: str,
    metadata: dict[str, str],
    success_url: str,
    cancel_url: str,
    currency: str = "usd",
) -> stripe.checkout.Session:
    """Create a one-off Stripe Checkout Session for a single booking."""
    client = get_stripe_client()
    logger.info(
        "Creating checkout session for booking %s (%s %s cents)",
        metadata.get("bookingId"),
        currency,
        amount_cents,
    )
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
    )


async def retrieve_payment_session(session_id: str) -> stripe.checkout.Session:
    """Retrieve a Checkout Session by ID, used to verify the card return."""
    client = get_stripe_client()
    return await client.v1.checkout.sessions.retrieve_async(session_id)
