import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.flow_service import FlowClient
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> uuid.UUID:
    """
    Authenticated caller, as forwarded by the upstream auth layer.
    Returns the user id, raises 401 otherwise.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authenticated user",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authenticated user",
        )


def get_flow_client(request: Request) -> FlowClient:
    """Process-wide Flow client built in the app lifespan."""
    flow = getattr(request.app.state, "flow_client", None)
    if flow is None:
        raise RuntimeError("Flow client not initialised")
    return flow


async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    flow: FlowClient = Depends(get_flow_client),
) -> PaymentService:
    return PaymentService(db, flow)


async def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    flow: FlowClient = Depends(get_flow_client),
) -> ReconciliationService:
    return ReconciliationService(db, flow)
