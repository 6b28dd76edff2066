"""Services package."""

from app.services.flow_signature import FlowSigner
from app.services.flow_service import FlowClient
from app.services.payment_ledger import PaymentLedger, TransitionResult
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService

__all__ = [
    "FlowSigner",
    "FlowClient",
    "PaymentLedger",
    "TransitionResult",
    "PaymentService",
    "ReconciliationService",
]
