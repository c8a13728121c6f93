"""Build the canonical booking request from a checkout session."""

from homestay_checkout.errors import PaymentMethodContractError
from homestay_checkout.schemas.checkout import BookingRequest, CheckoutSession, PaymentMethod
from homestay_checkout.services.identity import AnonymousIdentity, Identity
from homestay_checkout.utils.phone import format_phone

# UI tokens (checkout page radio values and enum names) -> session payment method
PAYMENT_METHOD_TOKENS: dict[str, PaymentMethod] = {
    "card": PaymentMethod.CARD,
    "credit-debit": PaymentMethod.CARD,
    "wallet": PaymentMethod.WALLET,
    "khalti": PaymentMethod.WALLET,
    "pay_at_property": PaymentMethod.PAY_AT_PROPERTY,
    "pay-at-property": PaymentMethod.PAY_AT_PROPERTY,
}

# Session payment method -> token the booking backend expects
BACKEND_PAYMENT_METHODS: dict[PaymentMethod, str] = {
    PaymentMethod.CARD: "STRIPE",
    PaymentMethod.WALLET: "KHALTI",
    PaymentMethod.PAY_AT_PROPERTY: "PAY_AT_PROPERTY",
}


def parse_payment_method(token: str | PaymentMethod) -> PaymentMethod:
    """Map a UI payment token to :class:`PaymentMethod`.

    Raises:
        PaymentMethodContractError: if the token is unknown.
    """
    if isinstance(token, PaymentMethod):
        return token
    method = PAYMENT_METHOD_TOKENS.get((token or "").strip().lower())
    if method is None:
        raise PaymentMethodContractError(f"Invalid payment method: {token!r}")
    return method


def backend_payment_method(method: PaymentMethod) -> str:
    try:
        return BACKEND_PAYMENT_METHODS[method]
    except KeyError:
        raise PaymentMethodContractError(f"Payment method {method} is not supported") from None


def build_booking_request(session: CheckoutSession, identity: Identity) -> BookingRequest:
    """Derive the booking request. Pure; never touches the network."""
    method = parse_payment_method(session.payment_method)

    guest_fields: dict[str, str] = {}
    if isinstance(identity, AnonymousIdentity):
        profile = identity.profile
        guest_fields = {
            "guest_name": f"{profile.first_name.strip()} {profile.last_name.strip()}".strip(),
            "guest_email": profile.email.strip(),
            "guest_phone": format_phone(profile.calling_code, profile.local_number),
        }

    return BookingRequest(
        property_id=session.property_id,
        check_in_date=session.check_in,
        check_out_date=session.check_out,
        total_guests=session.occupancy.total_guests,
        payment_method=backend_payment_method(method),
        **guest_fields,
    )
