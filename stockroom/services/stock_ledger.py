"""Stock ledger: every change to ``Product.stock_quantity`` goes through here.

Each operation loads the product row ``FOR UPDATE``, computes the new level,
writes the product, one :class:`StockMovement` and any Sale/Purchase record
in a single transaction, and only then appends a best-effort audit row.

Movement quantities are signed deltas. ADJUSTMENT is the exception on input:
its requested quantity is the absolute target level, and the stored delta is
``new_stock - previous_stock``.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.core.errors import NotFoundError, ValidationError
from stockroom.models.audit import AuditAction
from stockroom.models.inventory import Product, Purchase, Sale, StockMovement, StockMovementType
from stockroom.services.audit import record_audit

MANUAL_MOVEMENT_TYPES = (StockMovementType.ADJUSTMENT, StockMovementType.RETURN)


@dataclass(frozen=True)
class StockChange:
    product: Product
    movement: StockMovement


CENT = Decimal("0.01")


def validate_money(value: Decimal, label: str) -> Decimal:
    """Return a positive amount in whole cents or raise ValidationError."""
    amount = Decimal(value)
    if amount <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{label} cannot have more than 2 decimal places")
    return amount.quantize(CENT)


def compute_new_stock(movement_type: StockMovementType, current_stock: int, quantity: int) -> tuple[int, int]:
    """Return ``(new_stock, signed_delta)`` or raise ValidationError."""
    if movement_type == StockMovementType.ADJUSTMENT:
        new_stock = quantity
    elif quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    elif movement_type == StockMovementType.SALE:
        if quantity > current_stock:
            raise ValidationError(f"Insufficient stock. Available: {current_stock}, Requested: {quantity}")
        new_stock = current_stock - quantity
    else:
        new_stock = current_stock + quantity

    if new_stock < 0:
        raise ValidationError("Stock quantity cannot be negative")
    return new_stock, new_stock - current_stock


@contextmanager
def ledger_transaction(db: Session) -> Iterator[None]:
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def lock_product(db: Session, product_id: int) -> Product:
    product = db.scalar(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not product:
        raise NotFoundError("Product")
    return product


def apply_stock_change(
    db: Session,
    product: Product,
    movement_type: StockMovementType,
    quantity: int,
    *,
    user_id: int | None,
    reason: str | None = None,
) -> StockMovement:
    """Mutate a locked product and stage its movement row. Does not commit."""
    previous_stock = int(product.stock_quantity)
    new_stock, delta = compute_new_stock(movement_type, previous_stock, quantity)

    product.stock_quantity = new_stock
    movement = StockMovement(
        product_id=product.id,
        user_id=user_id,
        movement_type=movement_type,
        quantity=delta,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
    )
    db.add(movement)
    db.flush()
    return movement


def record_sale(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    unit_price: Decimal,
    user_id: int | None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[Sale, StockMovement]:
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    unit_price = validate_money(unit_price, "Unit price")

    with ledger_transaction(db):
        product = lock_product(db, product_id)
        movement = apply_stock_change(db, product, StockMovementType.SALE, quantity, user_id=user_id)
        sale = Sale(
            product_id=product.id,
            user_id=user_id,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=unit_price * quantity,
        )
        db.add(sale)
        db.flush()
        movement.reason = f"Sale: {sale.id}"
        product_name = product.name

    record_audit(
        db,
        AuditAction.CREATE,
        "Sale",
        entity_id=sale.id,
        user_id=user_id,
        details=f"Sale created: {product_name} x{quantity} @ ${sale.unit_price} = ${sale.total_amount}",
        metadata={
            "productName": product_name,
            "quantity": quantity,
            "unitPrice": sale.unit_price,
            "totalAmount": sale.total_amount,
            "previousStock": movement.previous_stock,
            "newStock": movement.new_stock,
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return sale, movement


def record_purchase(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    unit_cost: Decimal,
    user_id: int | None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[Purchase, StockMovement]:
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    unit_cost = validate_money(unit_cost, "Unit cost")

    with ledger_transaction(db):
        product = lock_product(db, product_id)
        movement = apply_stock_change(db, product, StockMovementType.PURCHASE, quantity, user_id=user_id)
        purchase = Purchase(
            product_id=product.id,
            user_id=user_id,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=unit_cost * quantity,
        )
        db.add(purchase)
        db.flush()
        movement.reason = f"Purchase: {purchase.id}"
        product_name = product.name

    record_audit(
        db,
        AuditAction.CREATE,
        "Purchase",
        entity_id=purchase.id,
        user_id=user_id,
        details=f"Purchase created: {product_name} x{quantity} @ ${purchase.unit_cost} = ${purchase.total_cost}",
        metadata={
            "productName": product_name,
            "quantity": quantity,
            "unitCost": purchase.unit_cost,
            "totalCost": purchase.total_cost,
            "previousStock": movement.previous_stock,
            "newStock": movement.new_stock,
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return purchase, movement


def adjust_stock(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    movement_type: StockMovementType,
    user_id: int | None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> StockChange:
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        raise ValidationError("Invalid movement type for stock adjustment")

    with ledger_transaction(db):
        product = lock_product(db, product_id)
        movement = apply_stock_change(db, product, movement_type, quantity, user_id=user_id, reason=reason)

    suffix = f". Reason: {reason}" if reason else ""
    record_audit(
        db,
        AuditAction.STOCK_ADJUSTMENT,
        "Product",
        entity_id=product.id,
        user_id=user_id,
        details=(
            f"Stock adjusted for {product.name}: {movement.previous_stock} -> {movement.new_stock} "
            f"({movement_type.value}){suffix}"
        ),
        metadata={
            "productName": product.name,
            "previousStock": movement.previous_stock,
            "newStock": movement.new_stock,
            "quantityChange": movement.quantity,
            "movementType": movement_type.value,
            "reason": reason,
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return StockChange(product=product, movement=movement)


def list_movements(
    db: Session,
    *,
    product_id: int | None = None,
    user_id: int | None = None,
    movement_type: StockMovementType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    query = select(StockMovement)
    if product_id is not None:
        query = query.where(StockMovement.product_id == product_id)
    if user_id is not None:
        query = query.where(StockMovement.user_id == user_id)
    if movement_type is not None:
        query = query.where(StockMovement.movement_type == movement_type)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).offset(offset)
    ).all()
    return list(rows), total


def low_stock_products(db: Session, threshold: int = 10) -> list[Product]:
    return list(
        db.scalars(
            select(Product)
            .where(Product.stock_quantity <= threshold)
            .order_by(Product.stock_quantity.asc(), Product.name.asc())
        ).all()
    )


def _list_records(db: Session, model, timestamp, *, product_id, user_id, start_date, end_date, limit, offset):
    query = select(model)
    if product_id is not None:
        query = query.where(model.product_id == product_id)
    if user_id is not None:
        query = query.where(model.user_id == user_id)
    if start_date is not None:
        query = query.where(timestamp >= start_date)
    if end_date is not None:
        query = query.where(timestamp <= end_date)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(query.order_by(timestamp.desc(), model.id.desc()).limit(limit).offset(offset)).all()
    return list(rows), total


def list_sales(
    db: Session,
    *,
    product_id: int | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    return _list_records(
        db,
        Sale,
        Sale.sold_at,
        product_id=product_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


def list_purchases(
    db: Session,
    *,
    product_id: int | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Purchase], int]:
    return _list_records(
        db,
        Purchase,
        Purchase.purchased_at,
        product_id=product_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
