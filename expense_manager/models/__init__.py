"""Pydantic domain models for the Expense Manager API."""

from .constants import (
    Category,
    FoodSubcategory,
    RESTRICTED_FOOD,
)  # re-export
from .expense import (
    Envelope,
    ExpenseBatchIn,
    ExpenseFilters,
    ExpenseIn,
    ExpenseItemIn,
    ExpenseOut,
    ExpensePage,
    ExpenseUpdateIn,
    RentPaymentIn,
    RentStatus,
    Restrictions,
)
from .user import LoginIn, RegisterIn, TokenOut, UserOut

__all__ = [
    "Category",
    "FoodSubcategory",
    "RESTRICTED_FOOD",
    "Envelope",
    "ExpenseBatchIn",
    "ExpenseFilters",
    "ExpenseIn",
    "ExpenseItemIn",
    "ExpenseOut",
    "ExpensePage",
    "ExpenseUpdateIn",
    "RentPaymentIn",
    "RentStatus",
    "Restrictions",
    "LoginIn",
    "RegisterIn",
    "TokenOut",
    "UserOut",
]
