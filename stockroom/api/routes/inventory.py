from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from stockroom.api.deps import require_permission
from stockroom.core.config import settings
from stockroom.db.database import get_db
from stockroom.models.inventory import StockMovementType
from stockroom.models.user import User
from stockroom.schemas.inventory import (
    ProductOut,
    StockAdjustmentOut,
    StockAdjustRequest,
    StockMovementOut,
    StockMovementPage,
)
from stockroom.services.audit import request_context
from stockroom.services.stock_ledger import adjust_stock, list_movements, low_stock_products

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/adjust", response_model=StockAdjustmentOut)
def adjust_product_stock(
    payload: StockAdjustRequest,
    request: Request,
    current_user: User = Depends(require_permission("inventory:write")),
    db: Session = Depends(get_db),
):
    change = adjust_stock(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        movement_type=payload.movement_type,
        user_id=current_user.id,
        reason=payload.reason,
        **request_context(request),
    )
    db.refresh(change.product)
    return StockAdjustmentOut(
        product=ProductOut.model_validate(change.product),
        movement=StockMovementOut.model_validate(change.movement),
    )


@router.get("/movements", response_model=StockMovementPage)
def get_stock_movements(
    product_id: int | None = None,
    user_id: int | None = None,
    movement_type: StockMovementType | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: User = Depends(require_permission("inventory:read")),
    db: Session = Depends(get_db),
):
    rows, total = list_movements(
        db,
        product_id=product_id,
        user_id=user_id,
        movement_type=movement_type,
        limit=limit,
        offset=offset,
    )
    return StockMovementPage(
        items=[StockMovementOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/low-stock", response_model=list[ProductOut])
def get_low_stock(
    threshold: int | None = Query(default=None, ge=0),
    _: User = Depends(require_permission("inventory:read")),
    db: Session = Depends(get_db),
):
    limit = threshold if threshold is not None else settings.low_stock_threshold
    return low_stock_products(db, limit)
