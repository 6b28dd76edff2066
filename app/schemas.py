"""Request/response bodies for the payments API. Field names follow the web client."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CreatePaymentOut(BaseModel):
    success: bool = True
    checkoutUrl: str
    paymentId: str
    token: str


class ConfirmPaymentIn(BaseModel):
    token: str = Field(..., min_length=1, description="Flow token returned at order creation")


class ConfirmPaymentOut(BaseModel):
    success: bool
    paymentId: str
    status: str
    gatewayStatus: Optional[int] = None
    statusText: Optional[str] = None
    message: str


class WebhookAck(BaseModel):
    success: bool
    action: Optional[str] = None
    error: Optional[str] = None


class FlowStatusOut(BaseModel):
    status: int
    statusText: str
    flowOrder: str
    commerceOrder: str
    amount: Optional[float] = None


class ExpenseSummaryOut(BaseModel):
    id: str
    concept: str
    amount: float
    status: str


class LocalPaymentOut(BaseModel):
    id: str
    status: str
    paymentDate: Optional[datetime] = None
    expense: Optional[ExpenseSummaryOut] = None


class PaymentStatusOut(BaseModel):
    success: bool = True
    flow: FlowStatusOut
    payment: Optional[LocalPaymentOut] = None


class ErrorOut(BaseModel):
    success: bool = False
    error: str
    message: str
