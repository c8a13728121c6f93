"""SQLAlchemy models for Homestay Checkout.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from homestay_checkout.models.pending_payment import PendingPayment

__all__ = [
    "PendingPayment",
]
