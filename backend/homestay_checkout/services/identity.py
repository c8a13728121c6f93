"""Guest identity resolution: authenticated user or validated anonymous guest."""

import logging
from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter, ValidationError

from homestay_checkout.auth.dependencies import AuthContext
from homestay_checkout.errors import CheckoutValidationError
from homestay_checkout.schemas.checkout import GuestProfile
from homestay_checkout.utils.phone import is_valid_calling_code, validate_phone

logger = logging.getLogger(__name__)

_EMAIL = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Checkout on behalf of a signed-in platform user."""

    user_ref: str
    access_token: str

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class AnonymousIdentity:
    """Checkout as a guest with manually supplied contact details."""

    profile: GuestProfile

    @property
    def is_authenticated(self) -> bool:
        return False


Identity = AuthenticatedIdentity | AnonymousIdentity


def validate_guest_profile(profile: GuestProfile | None) -> dict[str, str]:
    """Return a field-keyed map of problems; empty when the profile is usable."""
    if profile is None:
        return {"guest": "Guest details are required to book without signing in."}

    errors: dict[str, str] = {}
    if not profile.first_name.strip():
        errors["first_name"] = "First name is required."
    if not profile.last_name.strip():
        errors["last_name"] = "Last name is required."

    email = profile.email.strip()
    if not email:
        errors["email"] = "Email address is required."
    else:
        try:
            _EMAIL.validate_python(email)
        except ValidationError:
            errors["email"] = "Invalid email address."

    if not is_valid_calling_code(profile.calling_code):
        errors["calling_code"] = "Country/region is required."
    else:
        phone_error = validate_phone(profile.calling_code, profile.local_number)
        if phone_error:
            errors["local_number"] = phone_error

    return errors


def resolve_identity(guest: GuestProfile | None, auth: AuthContext | None) -> Identity:
    """Resolve who is booking.

    A verified auth context wins outright and the guest form is ignored.
    Otherwise the guest profile must validate.

    Raises:
        CheckoutValidationError: with the field-keyed error map.
    """
    if auth is not None:
        return AuthenticatedIdentity(user_ref=auth.user_ref, access_token=auth.access_token)

    errors = validate_guest_profile(guest)
    if errors:
        logger.info("Guest checkout blocked by validation errors on %s", sorted(errors))
        raise CheckoutValidationError(errors)
    return AnonymousIdentity(profile=guest)
