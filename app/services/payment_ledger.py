"""
Payment Ledger - persisted Payment/Expense pair.

Status changes go through a single conditional UPDATE keyed on the expected
prior status, so concurrent reconciliations of the same payment cannot both
win. The Expense update rides in the same transaction as the Payment update;
the caller's session commits both together.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError
from app.fsm.machine import can_transition
from app.fsm.states import (
    ExpenseStatus,
    PaymentMethod,
    PaymentStatus,
    UserUnitStatus,
)
from app.models.expense import Expense
from app.models.payment import Payment
from app.models.user import User, UserUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a guarded transition.

    applied is False when the payment had already left PENDING (someone else
    won, or this is a repeat). That is a successful no-op, not an error.
    """

    payment: Payment
    applied: bool

    @property
    def is_noop(self) -> bool:
        return not self.applied


class PaymentLedger:
    """Reads and guarded writes against payments and expenses."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- reads -----------------------------------------------------------

    async def get_expense(self, expense_id: uuid.UUID) -> Optional[Expense]:
        result = await self.db.execute(
            select(Expense).where(Expense.id == expense_id)
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def payer_has_confirmed_unit(
        self,
        user_id: uuid.UUID,
        unit_id: uuid.UUID,
    ) -> bool:
        result = await self.db.execute(
            select(UserUnit.id).where(
                UserUnit.user_id == user_id,
                UserUnit.unit_id == unit_id,
                UserUnit.status == UserUnitStatus.CONFIRMED.value,
            )
        )
        return result.first() is not None

    async def has_paid_payment(self, expense_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Payment.id).where(
                Payment.expense_id == expense_id,
                Payment.status == PaymentStatus.PAID.value,
            )
        )
        return result.first() is not None

    async def find_payment_by_reference(self, token: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.reference == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_payment(self, payment_id: uuid.UUID) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    async def list_stale_pending(
        self,
        older_than: timedelta,
        limit: int,
    ) -> List[Payment]:
        """PENDING payments created before now - older_than, oldest first."""
        cutoff = datetime.now(timezone.utc) - older_than
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.status == PaymentStatus.PENDING.value,
                Payment.created_at < cutoff,
            )
            .order_by(Payment.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    # --- writes ----------------------------------------------------------

    async def create_pending_payment(
        self,
        user_id: uuid.UUID,
        expense_id: uuid.UUID,
        amount: Decimal,
        reference: str,
        commerce_order: str,
        gateway_order_id: Optional[str] = None,
    ) -> Payment:
        payment = Payment(
            user_id=user_id,
            expense_id=expense_id,
            amount=amount,
            method=PaymentMethod.FLOW.value,
            status=PaymentStatus.PENDING.value,
            reference=reference,
            commerce_order=commerce_order,
            gateway_order_id=gateway_order_id,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def transition_to_paid(self, payment_id: uuid.UUID) -> TransitionResult:
        """PENDING -> PAID, marking the expense paid in the same transaction."""
        now = datetime.now(timezone.utc)
        applied = await self._guarded_update(
            payment_id,
            PaymentStatus.PAID,
            payment_date=now,
        )
        if applied:
            expense_id = await self.db.scalar(
                select(Payment.expense_id).where(Payment.id == payment_id)
            )
            await self.mark_expense_paid(expense_id)
        payment = await self.get_payment(payment_id)
        if applied:
            logger.info(
                f"Payment {payment_id} PAID (expense {payment.expense_id})",
                extra={"payment_id": payment_id, "expense_id": payment.expense_id},
            )
        else:
            logger.info(f"Payment {payment_id} already {payment.status}, PAID not applied")
        return TransitionResult(payment=payment, applied=applied)

    async def transition_to_failed(self, payment_id: uuid.UUID) -> TransitionResult:
        """PENDING -> FAILED. The expense stays payable."""
        applied = await self._guarded_update(payment_id, PaymentStatus.FAILED)
        payment = await self.get_payment(payment_id)
        if applied:
            logger.info(f"Payment {payment_id} FAILED", extra={"payment_id": payment_id})
        else:
            logger.info(f"Payment {payment_id} already {payment.status}, FAILED not applied")
        return TransitionResult(payment=payment, applied=applied)

    async def mark_expense_paid(self, expense_id: uuid.UUID) -> None:
        """Only called as the second half of a successful transition_to_paid."""
        await self.db.execute(
            update(Expense)
            .where(Expense.id == expense_id)
            .values(
                status=ExpenseStatus.PAID.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

    async def _guarded_update(
        self,
        payment_id: uuid.UUID,
        target: PaymentStatus,
        **values,
    ) -> bool:
        """Compare-and-set from PENDING. True iff this call moved the row."""
        if not can_transition(PaymentStatus.PENDING, target):
            raise ValueError(f"Illegal target state {target.value}")

        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(
                status=target.value,
                updated_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
