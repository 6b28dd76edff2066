"""
Payments API - Flow checkout for common expenses.
"""

import uuid
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from app.api.deps import (
    get_current_user_id,
    get_payment_service,
    get_reconciliation_service,
)
from app.config import settings
from app.errors import ValidationError
from app.fsm.states import PaymentStatus, status_text
from app.logging_config import mask_token
from app.schemas import (
    ConfirmPaymentIn,
    ConfirmPaymentOut,
    CreatePaymentOut,
    ExpenseSummaryOut,
    FlowStatusOut,
    LocalPaymentOut,
    PaymentStatusOut,
    WebhookAck,
)
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()
logger = logging.getLogger(__name__)

CONFIRM_MESSAGES = {
    PaymentStatus.PAID.value: "Payment confirmed",
    PaymentStatus.FAILED.value: "Payment was rejected",
    PaymentStatus.PENDING.value: "Payment is still pending",
}


async def _read_token(request: Request) -> Optional[str]:
    """Pull the token out of a form-encoded or JSON body. Nothing else is trusted."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            payload = await request.json()
            token = payload.get("token") if isinstance(payload, dict) else None
        else:
            form = await request.form()
            token = form.get("token")
    except (ValueError, MultiPartException, StarletteHTTPException) as e:
        # Inside an app Starlette reports bad multipart as HTTPException(400)
        logger.warning(f"Unreadable Flow callback body: {e}")
        return None
    return token if isinstance(token, str) and token else None


@router.post("/expense/{expense_id}", response_model=CreatePaymentOut)
async def create_expense_payment(
    expense_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    """Open a Flow order for an expense and return the checkout URL."""
    created = await service.create_expense_payment(expense_id, user_id)
    return CreatePaymentOut(
        checkoutUrl=created.checkout_url,
        paymentId=str(created.payment_id),
        token=created.token,
    )


@router.post("/flow/confirmation", response_model=WebhookAck)
async def flow_confirmation(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Flow confirmation webhook (public).

    Always answers 200: Flow retries on anything else, and we re-query the
    status ourselves anyway.
    """
    token = await _read_token(request)
    logger.info(f"Flow confirmation received for token {mask_token(token)}")

    outcome = await service.process_webhook(token)
    return WebhookAck(
        success=outcome.success,
        action=outcome.action.value,
        error=outcome.error,
    )


@router.post("/confirm", response_model=ConfirmPaymentOut)
async def confirm_payment(
    payload: ConfirmPaymentIn,
    response: Response,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Payer-triggered confirmation after returning from checkout."""
    outcome = await service.confirm_manually(payload.token, user_id)
    payment = outcome.payment

    if payment.status == PaymentStatus.PENDING.value:
        response.status_code = status.HTTP_202_ACCEPTED

    return ConfirmPaymentOut(
        success=payment.status != PaymentStatus.FAILED.value,
        paymentId=str(payment.id),
        status=payment.status,
        gatewayStatus=outcome.gateway_status,
        statusText=(
            status_text(outcome.gateway_status)
            if outcome.gateway_status is not None
            else None
        ),
        message=CONFIRM_MESSAGES[payment.status],
    )


@router.get("/status", response_model=PaymentStatusOut)
async def payment_status(
    token: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Read-only Flow status merged with the local payment."""
    if not token:
        raise ValidationError("Token is required")

    view = await service.get_status(token, requesting_user_id=user_id)

    local = None
    if view.payment is not None:
        expense = view.payment.expense
        local = LocalPaymentOut(
            id=str(view.payment.id),
            status=view.payment.status,
            paymentDate=view.payment.payment_date,
            expense=(
                ExpenseSummaryOut(
                    id=str(expense.id),
                    concept=expense.concept,
                    amount=expense.amount,
                    status=expense.status,
                )
                if expense is not None
                else None
            ),
        )

    return PaymentStatusOut(
        flow=FlowStatusOut(
            status=view.flow.status,
            statusText=status_text(view.flow.status),
            flowOrder=view.flow.gateway_order_id,
            commerceOrder=view.flow.commerce_order,
            amount=view.flow.amount,
        ),
        payment=local,
    )


@router.api_route("/flow/return", methods=["GET", "POST"])
async def flow_return(request: Request):
    """
    Flow sends the payer back with a POST carrying the token.
    Turn it into a GET on the web client's return page.
    """
    if request.method == "POST":
        token = await _read_token(request)
    else:
        token = request.query_params.get("token") or None

    if token:
        query = urlencode({"token": token})
    else:
        logger.warning("Flow return without token")
        query = urlencode({"error": "no_token"})

    return RedirectResponse(
        f"{settings.frontend_return_url}?{query}",
        status_code=status.HTTP_303_SEE_OTHER,
    )
