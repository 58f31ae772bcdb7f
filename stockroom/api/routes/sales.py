from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from stockroom.api.deps import require_permission
from stockroom.db.database import get_db
from stockroom.models.user import User
from stockroom.schemas.inventory import SaleCreate, SaleOut, SalePage
from stockroom.services.audit import request_context
from stockroom.services.stock_ledger import list_sales, record_sale

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.post("", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def create_sale(
    payload: SaleCreate,
    request: Request,
    current_user: User = Depends(require_permission("inventory:write")),
    db: Session = Depends(get_db),
):
    sale, _ = record_sale(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        user_id=current_user.id,
        **request_context(request),
    )
    db.refresh(sale)
    return sale


@router.get("", response_model=SalePage)
def get_sales(
    product_id: int | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: User = Depends(require_permission("inventory:read")),
    db: Session = Depends(get_db),
):
    rows, total = list_sales(
        db,
        product_id=product_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return SalePage(items=[SaleOut.model_validate(row) for row in rows], total=total, limit=limit, offset=offset)
