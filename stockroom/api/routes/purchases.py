from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from stockroom.api.deps import require_permission
from stockroom.db.database import get_db
from stockroom.models.user import User
from stockroom.schemas.inventory import PurchaseCreate, PurchaseOut, PurchasePage
from stockroom.services.audit import request_context
from stockroom.services.stock_ledger import list_purchases, record_purchase

router = APIRouter(prefix="/purchases", tags=["Purchases"])


@router.post("", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
def create_purchase(
    payload: PurchaseCreate,
    request: Request,
    current_user: User = Depends(require_permission("inventory:write")),
    db: Session = Depends(get_db),
):
    purchase, _ = record_purchase(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        user_id=current_user.id,
        **request_context(request),
    )
    db.refresh(purchase)
    return purchase


@router.get("", response_model=PurchasePage)
def get_purchases(
    product_id: int | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: User = Depends(require_permission("inventory:read")),
    db: Session = Depends(get_db),
):
    rows, total = list_purchases(
        db,
        product_id=product_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return PurchasePage(
        items=[PurchaseOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
