from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError as PydanticValidationError

from expense_manager.core.config import Settings
from expense_manager.core.errors import ValidationError, format_validation_errors
from expense_manager.core.security import get_app_settings, get_current_owner
from expense_manager.db.dal import Database
from expense_manager.models.constants import (
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    Category,
)
from expense_manager.models.expense import (
    Envelope,
    ExpenseBatchIn,
    ExpenseFilters,
    ExpenseIn,
    ExpenseOut,
    ExpensePage,
    ExpenseUpdateIn,
    RentPaymentIn,
    RentStatus,
    Restrictions,
)
from expense_manager.services.expense_service import ExpenseService

router = APIRouter(prefix="/expenses", tags=["expenses"])

# Dependencies -----------------------------------------------------


def get_db(request: Request) -> Database:
    settings: Settings = get_app_settings(request)
    return Database(settings.db_path, busy_timeout=settings.db_busy_timeout_seconds)


def get_expense_service(
    request: Request, db: Database = Depends(get_db)
) -> ExpenseService:
    settings: Settings = get_app_settings(request)
    return ExpenseService(
        db,
        mask_foreign_expenses=settings.mask_foreign_expenses,
        max_batch_size=settings.max_batch_size,
    )


# Routes -----------------------------------------------------------
@router.get(
    "",
    response_model=Envelope[ExpensePage],
    summary="List expenses with filters, pagination and totals",
)
def list_expenses_endpoint(
    date_from: Optional[date] = Query(
        None, alias="from", description="Filter: start date inclusive"
    ),
    date_to: Optional[date] = Query(
        None, alias="to", description="Filter: end date inclusive"
    ),
    category: Optional[Category] = Query(None, description="Filter by category"),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    try:
        filters = ExpenseFilters(
            date_from=date_from,
            date_to=date_to,
            category=category,
            limit=limit,
            offset=offset,
        )
    except PydanticValidationError as exc:
        raise ValidationError(details=format_validation_errors(exc.errors()))
    return Envelope(data=service.list(owner, filters))


@router.post(
    "",
    response_model=Envelope[ExpenseOut],
    status_code=201,
    summary="Create an expense",
)
def create_expense(
    payload: ExpenseIn,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    expense = service.create(owner, payload)
    return Envelope(message="Expense created successfully", data=expense)


@router.post(
    "/multiple",
    response_model=Envelope[List[ExpenseOut]],
    status_code=201,
    summary="Create several expenses for one date (all or nothing)",
)
def create_multiple_expenses(
    payload: ExpenseBatchIn,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    created = service.create_batch(owner, payload.date, payload.expenses)
    return Envelope(
        message=f"Successfully created {len(created)} expenses", data=created
    )


@router.post(
    "/pay-rent",
    response_model=Envelope[ExpenseOut],
    status_code=201,
    summary="Record this month's rent",
)
def pay_rent(
    payload: RentPaymentIn,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    expense = service.pay_rent(owner, payload)
    return Envelope(message="Rent payment recorded successfully", data=expense)


@router.get(
    "/rent-status",
    response_model=Envelope[RentStatus],
    summary="Whether rent is paid for the current month",
)
def rent_status(
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    return Envelope(data=service.rent_status(owner))


@router.get(
    "/restrictions/{day}",
    response_model=Envelope[Restrictions],
    summary="Meal slots already used on a date and rent status for its month",
)
def get_restrictions(
    day: date,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    return Envelope(data=service.get_restrictions(owner, day))


@router.get(
    "/{expense_id}", response_model=Envelope[ExpenseOut], summary="Get an expense"
)
def get_expense(
    expense_id: str,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    return Envelope(data=service.get(owner, expense_id))


@router.put(
    "/{expense_id}",
    response_model=Envelope[ExpenseOut],
    summary="Edit an expense (partial)",
)
def update_expense(
    expense_id: str,
    payload: ExpenseUpdateIn,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    expense = service.update(owner, expense_id, payload)
    return Envelope(message="Expense updated successfully", data=expense)


@router.delete(
    "/{expense_id}",
    response_model=Envelope[Dict[str, str]],
    summary="Delete an expense",
)
def delete_expense(
    expense_id: str,
    owner: str = Depends(get_current_owner),
    service: ExpenseService = Depends(get_expense_service),
):
    service.delete(owner, expense_id)
    return Envelope(message="Expense deleted successfully")
