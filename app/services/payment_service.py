"""
Payment Service - opens Flow payment orders for common expenses.
"""

import time
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AlreadySettledError, ForbiddenError, NotFoundError
from app.fsm.states import ExpenseStatus
from app.logging_config import mask_token
from app.services.flow_service import FlowClient, FlowOrderRequest, round_amount
from app.services.payment_ledger import PaymentLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatedPayment:
    checkout_url: str
    payment_id: uuid.UUID
    token: str


def build_commerce_order(expense_id: uuid.UUID, now_ms: Optional[int] = None) -> str:
    """Commerce-order id for one attempt: expense id plus epoch milliseconds."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{expense_id}-{now_ms}"


class PaymentService:
    """Creates payment orders on behalf of an authenticated resident."""

    SUBJECT_PREFIX = "Pago gasto común"

    def __init__(self, db: AsyncSession, flow: FlowClient):
        self.db = db
        self.flow = flow
        self.ledger = PaymentLedger(db)

    async def create_expense_payment(
        self,
        expense_id: uuid.UUID,
        payer_user_id: uuid.UUID,
    ) -> CreatedPayment:
        """
        Open a Flow order for an expense and record a PENDING payment.

        1. Expense must exist and still be PENDING
        2. Payer must be a CONFIRMED resident of the expense's unit
        3. Create the remote order (no local row if this fails)
        4. Record the PENDING payment keyed by the gateway token
        """
        expense = await self.ledger.get_expense(expense_id)
        if not expense:
            raise NotFoundError("Expense not found")

        if expense.status != ExpenseStatus.PENDING.value:
            raise AlreadySettledError("Expense is not pending payment")

        if not await self.ledger.payer_has_confirmed_unit(payer_user_id, expense.unit_id):
            raise ForbiddenError("You do not have access to this unit")

        if await self.ledger.has_paid_payment(expense_id):
            raise AlreadySettledError("This expense has already been paid")

        payer = await self.ledger.get_user(payer_user_id)
        if not payer:
            raise NotFoundError("User not found")

        commerce_order = build_commerce_order(expense_id)
        amount = round_amount(expense.amount)

        # GatewayError propagates; nothing has been written yet
        order = await self.flow.create_order(
            FlowOrderRequest(
                commerce_order=commerce_order,
                subject=f"{self.SUBJECT_PREFIX}: {expense.concept}",
                amount=amount,
                email=payer.email,
                optional_data={
                    "expenseId": str(expense_id),
                    "userId": str(payer_user_id),
                },
            )
        )

        payment = await self.ledger.create_pending_payment(
            user_id=payer_user_id,
            expense_id=expense_id,
            amount=expense.amount,
            reference=order.token,
            commerce_order=commerce_order,
            gateway_order_id=order.gateway_order_id,
        )

        logger.info(
            f"Payment {payment.id} created for expense {expense_id}: "
            f"Flow order {order.gateway_order_id}, token {mask_token(order.token)}"
        )

        return CreatedPayment(
            checkout_url=order.checkout_url,
            payment_id=payment.id,
            token=order.token,
        )
