"""PendingPayment model: a wallet payment awaiting the provider's return."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from homestay_checkout.database import Base


def utcnow() -> datetime:
    """Naive UTC now, matching the naive timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PendingPayment(Base):
    """Links a created booking to an in-flight wallet transaction.

    One row per booking. The row is written before the browser leaves for the
    provider and deleted when the return is reconciled.
    """

    __tablename__ = "pending_payments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    amount_minor_units: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default="WALLET")
    # pidx from Khalti; set once initiation returns
    provider_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return (
            f"<PendingPayment(booking_id={self.booking_id}, amount={self.amount_minor_units}, "
            f"reference={self.provider_reference})>"
        )
