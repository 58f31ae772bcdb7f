from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.api.deps import require_permission
from stockroom.core.errors import NotFoundError
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.inventory import Expense
from stockroom.models.user import User
from stockroom.schemas.auth import GenericMessageResponse
from stockroom.schemas.inventory import ExpenseByCategoryOut, ExpenseCreate, ExpenseOut, ExpenseUpdate
from stockroom.services.audit import describe_changes, record_audit, request_context, track_changes
from stockroom.services.dashboard import expense_by_category

router = APIRouter(prefix="/expenses", tags=["Expenses"])


def _get_expense(db: Session, expense_id: int) -> Expense:
    expense = db.get(Expense, expense_id)
    if not expense:
        raise NotFoundError("Expense")
    return expense


@router.get("", response_model=list[ExpenseOut])
def list_expenses(
    category: str | None = None,
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    _: User = Depends(require_permission("expenses:read")),
    db: Session = Depends(get_db),
):
    query = select(Expense).order_by(Expense.incurred_at.desc(), Expense.id.desc())
    if category is not None and category.strip():
        query = query.where(func.lower(Expense.category) == category.strip().lower())
    if date_from is not None:
        query = query.where(Expense.incurred_at >= date_from)
    if date_to is not None:
        query = query.where(Expense.incurred_at <= date_to)
    return list(db.scalars(query).all())


@router.get("/by-category", response_model=list[ExpenseByCategoryOut])
def get_expenses_by_category(
    days: int = Query(default=30, ge=1, le=365),
    limit: int = Query(default=20, ge=1, le=200),
    _: User = Depends(require_permission("expenses:read")),
    db: Session = Depends(get_db),
):
    return expense_by_category(db, days=days, limit=limit)


@router.post("", response_model=ExpenseOut, status_code=status.HTTP_201_CREATED)
def create_expense(
    payload: ExpenseCreate,
    request: Request,
    current_user: User = Depends(require_permission("expenses:write")),
    db: Session = Depends(get_db),
):
    expense = Expense(
        created_by_user_id=current_user.id,
        title=payload.title.strip(),
        description=payload.description.strip() if payload.description else None,
        category=payload.category.strip(),
        amount=payload.amount,
        incurred_at=payload.incurred_at or datetime.utcnow(),
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)

    record_audit(
        db,
        AuditAction.CREATE,
        "Expense",
        entity_id=expense.id,
        user_id=current_user.id,
        details=f"Expense created: {expense.title} ({expense.category}, ${expense.amount})",
        metadata={"title": expense.title, "category": expense.category, "amount": expense.amount},
        **request_context(request),
    )
    return expense


@router.put("/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    request: Request,
    current_user: User = Depends(require_permission("expenses:write")),
    db: Session = Depends(get_db),
):
    expense = _get_expense(db, expense_id)
    updates = {field: value for field, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    for field in ("title", "category"):
        if field in updates:
            updates[field] = updates[field].strip()

    changes = track_changes(expense, updates)
    for field, value in updates.items():
        setattr(expense, field, value)
    db.commit()
    db.refresh(expense)

    details = f"Expense updated: {expense.title}"
    if changes:
        details += f". Changes: {describe_changes(changes)}"
    record_audit(
        db,
        AuditAction.UPDATE,
        "Expense",
        entity_id=expense.id,
        user_id=current_user.id,
        details=details,
        metadata={"changes": changes} if changes else None,
        **request_context(request),
    )
    return expense


@router.delete("/{expense_id}", response_model=GenericMessageResponse)
def delete_expense(
    expense_id: int,
    request: Request,
    current_user: User = Depends(require_permission("expenses:write")),
    db: Session = Depends(get_db),
):
    expense = _get_expense(db, expense_id)
    snapshot = {"title": expense.title, "category": expense.category, "amount": expense.amount}
    db.delete(expense)
    db.commit()

    record_audit(
        db,
        AuditAction.DELETE,
        "Expense",
        entity_id=expense_id,
        user_id=current_user.id,
        details=f"Expense deleted: {snapshot['title']} ({snapshot['category']}, ${snapshot['amount']})",
        metadata=snapshot,
        **request_context(request),
    )
    return GenericMessageResponse(message="Expense deleted successfully")
