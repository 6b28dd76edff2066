"""
Payment state machine - strict transitions driven by gateway order codes.

PENDING -> PAID and PENDING -> FAILED are the only legal moves. The mapping
from the gateway's numeric order status to a local target state lives here
and nowhere else.
"""

from typing import Dict, FrozenSet, Optional

from app.fsm.states import FlowOrderStatus, PaymentStatus


ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

_GATEWAY_TARGETS: Dict[int, PaymentStatus] = {
    FlowOrderStatus.PAID: PaymentStatus.PAID,
    FlowOrderStatus.REJECTED: PaymentStatus.FAILED,
    FlowOrderStatus.VOIDED: PaymentStatus.FAILED,
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Check whether current -> target is a legal move."""
    return target in ALLOWED_TRANSITIONS[current]


def target_for_gateway_status(code: int) -> Optional[PaymentStatus]:
    """
    Local state a gateway order code should drive a PENDING payment to.

    Returns None when the code means the order is still open (or is a code
    we don't recognise), in which case the payment stays PENDING.
    """
    return _GATEWAY_TARGETS.get(int(code))
