"""
Reconciliation Service - applies Flow's authoritative order status to the
local ledger exactly once.

Entry points:
- process_webhook: public Flow callback. Only the token is read from it;
  the status always comes from a fresh payment/getStatus call. Never raises.
- confirm_manually: the payer, back from checkout, asks us to re-check.
- get_status: read-only merged view for polling.

Webhook and manual paths both end in PaymentLedger's guarded transitions,
so when they race exactly one applies the change and the other sees a no-op.
"""

import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ForbiddenError, GatewayError, NotFoundError
from app.fsm.machine import target_for_gateway_status
from app.fsm.states import PaymentStatus
from app.logging_config import mask_token
from app.models.payment import Payment
from app.services.flow_service import FlowClient, FlowOrderInfo, round_amount
from app.services.payment_ledger import PaymentLedger

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    MARKED_PAID = "marked_paid"
    MARKED_FAILED = "marked_failed"
    ALREADY_SETTLED = "already_settled"
    STILL_PENDING = "still_pending"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass(frozen=True)
class ReconcileOutcome:
    success: bool
    action: ReconcileAction
    payment: Optional[Payment] = None
    gateway_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.action in (ReconcileAction.MARKED_PAID, ReconcileAction.MARKED_FAILED)

    @property
    def status(self) -> Optional[str]:
        return self.payment.status if self.payment is not None else None


@dataclass(frozen=True)
class StatusView:
    flow: FlowOrderInfo
    payment: Optional[Payment]


class ReconciliationService:
    """Reconciles local payments against Flow."""

    def __init__(self, db: AsyncSession, flow: FlowClient):
        self.db = db
        self.flow = flow
        self.ledger = PaymentLedger(db)

    async def process_webhook(self, token: Optional[str]) -> ReconcileOutcome:
        """
        Handle Flow's confirmation callback.

        Always returns an outcome; failures are logged and reported with
        success=False so the HTTP layer can still answer 200.
        """
        if not token:
            logger.warning("Flow confirmation received without token")
            return ReconcileOutcome(success=True, action=ReconcileAction.IGNORED)

        try:
            payment = await self.ledger.find_payment_by_reference(token)
            if payment is None:
                logger.warning(f"Flow confirmation for unknown token {mask_token(token)}")
                return ReconcileOutcome(success=True, action=ReconcileAction.IGNORED)

            outcome = await self.reconcile_payment(payment)
            # A failed commit must also end as success=False
            await self.db.commit()
            return outcome
        except Exception as e:
            logger.error(
                f"Error processing Flow confirmation for token {mask_token(token)}: {e}",
                exc_info=True,
                extra={"token": mask_token(token), "action": ReconcileAction.ERROR.value},
            )
            await self.db.rollback()
            return ReconcileOutcome(
                success=False,
                action=ReconcileAction.ERROR,
                error=str(e),
            )

    async def confirm_manually(
        self,
        token: str,
        requesting_user_id: uuid.UUID,
    ) -> ReconcileOutcome:
        """Payer-initiated re-check. GatewayError propagates to the caller."""
        payment = await self.ledger.find_payment_by_reference(token)
        if payment is None:
            raise NotFoundError("Payment not found")

        if payment.user_id != requesting_user_id:
            logger.warning(
                f"User {requesting_user_id} tried to confirm payment {payment.id} "
                f"owned by {payment.user_id}"
            )
            raise ForbiddenError("You do not own this payment")

        return await self.reconcile_payment(payment)

    async def get_status(
        self,
        token: str,
        requesting_user_id: Optional[uuid.UUID] = None,
    ) -> StatusView:
        """Gateway status plus the local payment, if any. Never mutates."""
        info = await self.flow.get_order_status(token)
        payment = await self.ledger.find_payment_by_reference(token)

        if (
            payment is not None
            and requesting_user_id is not None
            and payment.user_id != requesting_user_id
        ):
            payment = None

        return StatusView(flow=info, payment=payment)

    async def reconcile_payment(self, payment: Payment) -> ReconcileOutcome:
        """Fetch Flow's status for a payment and apply it through the guard."""
        if PaymentStatus(payment.status).is_terminal:
            logger.info(f"Payment {payment.id} already {payment.status}, nothing to do")
            return ReconcileOutcome(
                success=True,
                action=ReconcileAction.ALREADY_SETTLED,
                payment=payment,
            )

        info = await self.flow.get_order_status(payment.reference)
        self._check_order_matches(payment, info)

        target = target_for_gateway_status(info.status)
        if target is None:
            logger.info(
                f"Payment {payment.id} still PENDING (Flow status {info.status})",
                extra={"payment_id": payment.id, "gateway_status": info.status},
            )
            return ReconcileOutcome(
                success=True,
                action=ReconcileAction.STILL_PENDING,
                payment=payment,
                gateway_status=info.status,
            )

        if target is PaymentStatus.PAID:
            result = await self.ledger.transition_to_paid(payment.id)
            applied_action = ReconcileAction.MARKED_PAID
        else:
            result = await self.ledger.transition_to_failed(payment.id)
            applied_action = ReconcileAction.MARKED_FAILED

        return ReconcileOutcome(
            success=True,
            action=applied_action if result.applied else ReconcileAction.ALREADY_SETTLED,
            payment=result.payment,
            gateway_status=info.status,
        )

    def _check_order_matches(self, payment: Payment, info: FlowOrderInfo) -> None:
        """Refuse to act on a gateway order that isn't the one we opened."""
        if info.commerce_order and info.commerce_order != payment.commerce_order:
            raise GatewayError(
                f"Flow order {info.gateway_order_id} belongs to commerce order "
                f"{info.commerce_order}, expected {payment.commerce_order}"
            )
        if info.amount is not None and round_amount(info.amount) != round_amount(
            Decimal(payment.amount)
        ):
            raise GatewayError(
                f"Flow order {info.gateway_order_id} amount {info.amount} "
                f"does not match payment amount {payment.amount}"
            )
