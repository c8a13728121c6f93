"""Checkout error taxonomy.

Validation errors stop a submission before any network call. Booking and
payment errors are raised by the clients and adapters that talk to the
outside world and are turned into typed outcomes by the orchestrator.
"""


class CheckoutError(Exception):
    """Base class for all checkout errors."""


class CheckoutValidationError(CheckoutError):
    """User-correctable input errors, keyed by field name."""

    def __init__(self, field_errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in field_errors.items()))
        self.field_errors = field_errors


class PaymentMethodContractError(CheckoutError):
    """A payment method token has no mapping. Programming error, not user error."""


class InvalidTransitionError(CheckoutError):
    """A payment flow was asked to move between states it cannot connect."""


class UpstreamBookingError(CheckoutError):
    """The booking backend rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PaymentProviderError(CheckoutError):
    """Card or wallet initiation failed. The booking already exists."""

    def __init__(self, message: str, provider: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class ReconciliationAmbiguous(CheckoutError):
    """A payment return could not be verified either way."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
