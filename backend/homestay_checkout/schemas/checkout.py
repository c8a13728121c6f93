"""Pydantic v2 schemas for checkout sessions, booking payloads and API responses."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from homestay_checkout.money import Money


class PaymentMethod(str, enum.Enum):
    """Payment method selected for a checkout session."""

    CARD = "CARD"
    WALLET = "WALLET"
    PAY_AT_PROPERTY = "PAY_AT_PROPERTY"


class PaymentState(str, enum.Enum):
    """Lifecycle of one booking's payment."""

    CREATED = "CREATED"
    ROUTING = "ROUTING"
    REDIRECT_PENDING = "REDIRECT_PENDING"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Checkout session (request) schemas
# ---------------------------------------------------------------------------


class Occupancy(BaseModel):
    """Adults and children staying."""

    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)

    @property
    def total_guests(self) -> int:
        return self.adults + self.children


class GuestProfile(BaseModel):
    """Contact details for an anonymous guest.

    Fields are intentionally unconstrained here: the identity resolver
    reports problems as a field-keyed error map instead of a 422.
    """

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    calling_code: str = "+977"
    local_number: str = ""


class CheckoutSession(BaseModel):
    """The in-progress selection submitted from the checkout page."""

    session_id: str = Field(..., min_length=1, max_length=128)
    property_id: int = Field(..., gt=0)
    check_in: date
    check_out: date
    occupancy: Occupancy = Field(default_factory=Occupancy)
    total_price: Money
    payment_method: str = Field(..., min_length=1, max_length=50)
    guest: GuestProfile | None = None

    @model_validator(mode="after")
    def check_dates(self) -> "CheckoutSession":
        """Validate that check_out is strictly after check_in."""
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


class PaymentRetryRequest(BaseModel):
    """Retry payment for a booking that was created but not paid."""

    session_id: str = Field(..., min_length=1, max_length=128)
    payment_method: str = Field(..., min_length=1, max_length=50)


# ---------------------------------------------------------------------------
# Booking backend payloads
# ---------------------------------------------------------------------------


class BookingRequest(BaseModel):
    """Canonical payload sent to the booking backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    property_id: int
    check_in_date: date
    check_out_date: date
    total_guests: int
    payment_method: str
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None

    def to_payload(self) -> dict:
        """JSON body in the backend's camelCase shape, without empty guest fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Booking(BaseModel):
    """A booking as returned by the booking backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    booking_id: str = Field(..., min_length=1)
    status: str = "PENDING"
    property_id: int | None = None
    total_price: Decimal | None = None
    check_in_date: date | None = None
    check_out_date: date | None = None
    total_guests: int | None = None
    payment_method: str | None = None
    transaction_id: str | None = None
    expires_at: datetime | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None

    @field_validator("booking_id", "transaction_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        """The backend sends numeric ids for some booking kinds."""
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def total_money(self) -> Money:
        return Money(self.total_price or Decimal("0"), "NPR")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BookingSummary(BaseModel):
    """What the success view shows."""

    booking_id: str
    status: str
    total_price: Decimal | None = None
    currency: str = "NPR"
    check_in_date: date | None = None
    check_out_date: date | None = None
    total_guests: int | None = None
    payment_method: str | None = None
    transaction_id: str | None = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingSummary":
        return cls(
            booking_id=booking.booking_id,
            status=booking.status,
            total_price=booking.total_price,
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            total_guests=booking.total_guests,
            payment_method=booking.payment_method,
            transaction_id=booking.transaction_id,
        )


class CheckoutResponse(BaseModel):
    """Result of a checkout submission or payment retry."""

    outcome: Literal[
        "success",
        "validation_failed",
        "booking_failed",
        "payment_initiation_failed",
        "submission_in_progress",
    ]
    message: str | None = None
    state: PaymentState | None = None
    booking: BookingSummary | None = None
    booking_id: str | None = None
    next_path: str | None = None
    field_errors: dict[str, str] = Field(default_factory=dict)


class CallbackResponse(BaseModel):
    """Result of reconciling a payment provider return."""

    status: Literal["confirmed", "failed", "unconfirmed"]
    message: str
    booking_id: str
    next_path: str | None = None
