"""Models package for database models."""

from app.models.user import User, Unit, UserUnit
from app.models.expense import Expense
from app.models.payment import Payment

__all__ = [
    "User",
    "Unit",
    "UserUnit",
    "Expense",
    "Payment",
]
