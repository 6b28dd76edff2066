"""Payment model - one row per gateway payment attempt."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.fsm.states import PaymentMethod, PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """
    Payment attempt for a common expense.

    reference holds the gateway token and is unique; it is how webhook and
    manual confirmations find the row. Status only ever moves out of
    PENDING through PaymentLedger's guarded updates.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Payer
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Billed item
    expense_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Expense amount at creation time
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.FLOW.value,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Gateway token (unique per attempt)
    reference: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    # Local commerce-order id sent to the gateway
    commerce_order: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )

    # Gateway's own order number, for audit/display
    gateway_order_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    # Set only on PENDING -> PAID
    payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    expense = relationship("Expense", back_populates="payments", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.status} ref={self.reference}>"
