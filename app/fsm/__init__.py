"""FSM package for payment state management."""

from app.fsm.states import (
    ExpenseStatus,
    FlowOrderStatus,
    PaymentMethod,
    PaymentStatus,
    UserUnitStatus,
)

__all__ = [
    "ExpenseStatus",
    "FlowOrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "UserUnitStatus",
]
