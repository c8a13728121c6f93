"""Payment routing: dispatch one booking to exactly one payment adapter.

The payment flow is an explicit state machine::

    CREATED -> ROUTING -> REDIRECT_PENDING | FINALIZED | FAILED
    REDIRECT_PENDING -> FINALIZED | FAILED      (on provider return)
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from homestay_checkout.errors import InvalidTransitionError, PaymentMethodContractError, PaymentProviderError
from homestay_checkout.payments.adapters import (
    KhaltiAdapter,
    PayAtPropertyAdapter,
    PaymentAdapter,
    RedirectHandle,
    StripeAdapter,
)
from homestay_checkout.payments.khalti_client import KhaltiClient
from homestay_checkout.schemas.checkout import Booking, PaymentMethod, PaymentState

logger = logging.getLogger(__name__)

TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.CREATED: frozenset({PaymentState.ROUTING}),
    PaymentState.ROUTING: frozenset(
        {PaymentState.REDIRECT_PENDING, PaymentState.FINALIZED, PaymentState.FAILED}
    ),
    PaymentState.REDIRECT_PENDING: frozenset({PaymentState.FINALIZED, PaymentState.FAILED}),
    PaymentState.FINALIZED: frozenset(),
    PaymentState.FAILED: frozenset(),
}


@dataclass
class PaymentFlow:
    """Payment state of one booking."""

    booking_id: str
    method: PaymentMethod
    booking: Booking | None = None
    state: PaymentState = PaymentState.CREATED
    history: list[PaymentState] = field(default_factory=list)
    redirect: RedirectHandle | None = None
    error: PaymentProviderError | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    @classmethod
    def awaiting_return(cls, booking_id: str, method: PaymentMethod) -> "PaymentFlow":
        """Rebuild the flow of a booking whose browser is back from a provider."""
        return cls(booking_id=booking_id, method=method, state=PaymentState.REDIRECT_PENDING)

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.state]

    def transition(self, new_state: PaymentState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Booking {self.booking_id}: cannot move from {self.state.value} to {new_state.value}"
            )
        logger.info(
            "Booking %s payment %s -> %s",
            self.booking_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: PaymentProviderError) -> None:
        self.error = error
        self.transition(PaymentState.FAILED)


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True when a temporary booking's hold has lapsed."""
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return expires_at <= now


class PaymentRouter:
    """Selects the adapter for a payment method and runs it."""

    def __init__(self, adapters: Mapping[PaymentMethod, PaymentAdapter]) -> None:
        self.adapters = dict(adapters)

    def adapter_for(self, method: PaymentMethod) -> PaymentAdapter:
        try:
            return self.adapters[method]
        except KeyError:
            raise PaymentMethodContractError(f"No payment adapter for {method}") from None

    async def route(self, booking: Booking, method: PaymentMethod) -> PaymentFlow:
        """Run exactly one adapter for the booking.

        Provider failures end the flow in FAILED with ``flow.error`` set;
        they are not raised. A flow finalized without a redirect carries the
        booking as the adapter left it in ``flow.booking``.
        """
        adapter = self.adapter_for(method)
        flow = PaymentFlow(booking_id=booking.booking_id, method=method, booking=booking)
        flow.transition(PaymentState.ROUTING)

        if adapter.redirects and is_expired(booking.expires_at):
            logger.info("Booking %s expired at %s before payment", booking.booking_id, booking.expires_at)
            flow.fail(PaymentProviderError("Temporary booking has expired.", adapter.provider))
            return flow

        try:
            result = await adapter.initiate(booking)
        except PaymentProviderError as e:
            flow.fail(e)
            return flow

        if isinstance(result, RedirectHandle):
            flow.redirect = result
            flow.transition(PaymentState.REDIRECT_PENDING)
        else:
            flow.booking = result
            flow.transition(PaymentState.FINALIZED)
        return flow


def build_payment_router(db: AsyncSession, khalti_client: KhaltiClient | None = None) -> PaymentRouter:
    """The production mapping: every :class:`PaymentMethod` has one adapter."""
    return PaymentRouter(
        {
            PaymentMethod.CARD: StripeAdapter(),
            PaymentMethod.WALLET: KhaltiAdapter(db, client=khalti_client),
            PaymentMethod.PAY_AT_PROPERTY: PayAtPropertyAdapter(),
        }
    )
