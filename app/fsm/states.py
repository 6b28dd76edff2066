"""
State Definitions.
Payment, expense and unit-membership statuses plus the gateway's order codes.
"""

from enum import Enum, IntEnum


class PaymentStatus(str, Enum):
    """
    Local payment states.
    PENDING is the only non-terminal state.
    """

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentMethod(str, Enum):
    """Payment channels. Only the Flow gateway is wired in."""

    FLOW = "FLOW"


class ExpenseStatus(str, Enum):
    """Common-expense billing states."""

    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class UserUnitStatus(str, Enum):
    """Resident-to-unit association states."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class FlowOrderStatus(IntEnum):
    """
    Order status codes reported by payment/getStatus.
    Codes outside this set are kept as plain ints by the client.
    """

    PENDING = 1
    PAID = 2
    REJECTED = 3
    VOIDED = 4

    @property
    def status_text(self) -> str:
        """Human-readable (Spanish) label shown to residents."""
        names = {
            FlowOrderStatus.PENDING: "Pendiente",
            FlowOrderStatus.PAID: "Pagado",
            FlowOrderStatus.REJECTED: "Rechazado",
            FlowOrderStatus.VOIDED: "Anulado",
        }
        return names[self]


UNKNOWN_STATUS_TEXT = "Desconocido"


def status_text(code: int) -> str:
    """Label for any gateway code, including unknown ones."""
    try:
        return FlowOrderStatus(code).status_text
    except ValueError:
        return UNKNOWN_STATUS_TEXT
