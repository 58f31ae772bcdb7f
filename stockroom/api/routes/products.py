import math
from decimal import Decimal

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from stockroom.api.deps import require_permission
from stockroom.core.config import settings
from stockroom.core.errors import ConflictError, NotFoundError
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.inventory import Category, Product, StockMovementType
from stockroom.models.user import User
from stockroom.schemas.auth import GenericMessageResponse
from stockroom.schemas.inventory import (
    ProductCreate,
    ProductOut,
    ProductPage,
    ProductSortField,
    ProductUpdate,
    SortOrder,
    StockStatus,
)
from stockroom.services.audit import describe_changes, record_audit, request_context, track_changes
from stockroom.services.images import delete_image, upload_image, validate_image
from stockroom.services.stock_ledger import apply_stock_change, ledger_transaction, lock_product

router = APIRouter(prefix="/products", tags=["Products"])

SORT_COLUMNS = {
    "name": Product.name,
    "price": Product.price,
    "stock": Product.stock_quantity,
    "createdAt": Product.created_at,
}


def _get_product(db: Session, product_id: int) -> Product:
    product = db.scalar(select(Product).options(selectinload(Product.category)).where(Product.id == product_id))
    if not product:
        raise NotFoundError("Product")
    return product


def _ensure_category(db: Session, category_id: int | None) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise NotFoundError("Category")


def _ensure_unique_sku(db: Session, sku: str | None, product_id: int | None = None) -> None:
    if not sku:
        return
    query = select(Product.id).where(func.lower(Product.sku) == sku.lower())
    if product_id is not None:
        query = query.where(Product.id != product_id)
    if db.scalar(query) is not None:
        raise ConflictError("Product with this SKU already exists")


@router.get("", response_model=ProductPage)
def list_products(
    search: str | None = None,
    category_id: int | None = None,
    stock_status: StockStatus | None = None,
    min_price: Decimal | None = Query(default=None, ge=0),
    max_price: Decimal | None = Query(default=None, ge=0),
    sort_by: ProductSortField = "createdAt",
    sort_order: SortOrder = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: User = Depends(require_permission("products:read")),
    db: Session = Depends(get_db),
):
    query = select(Product)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        query = query.where(
            or_(
                func.lower(Product.name).like(pattern),
                func.lower(Product.description).like(pattern),
                func.lower(Product.sku).like(pattern),
            )
        )
    if category_id is not None:
        query = query.where(Product.category_id == category_id)
    if stock_status == "inStock":
        query = query.where(Product.stock_quantity > settings.low_stock_threshold)
    elif stock_status == "lowStock":
        query = query.where(Product.stock_quantity > 0, Product.stock_quantity <= settings.low_stock_threshold)
    elif stock_status == "outOfStock":
        query = query.where(Product.stock_quantity == 0)
    if min_price is not None:
        query = query.where(Product.price >= min_price)
    if max_price is not None:
        query = query.where(Product.price <= max_price)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    column = SORT_COLUMNS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    items = db.scalars(
        query.options(selectinload(Product.category))
        .order_by(order, Product.id.asc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    return ProductPage(
        items=[ProductOut.model_validate(item) for item in items],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


@router.get("/{product_id}", response_model=ProductOut)
def get_product(
    product_id: int,
    _: User = Depends(require_permission("products:read")),
    db: Session = Depends(get_db),
):
    return _get_product(db, product_id)


@router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    request: Request,
    current_user: User = Depends(require_permission("products:write")),
    db: Session = Depends(get_db),
):
    _ensure_category(db, payload.category_id)
    _ensure_unique_sku(db, payload.sku)

    with ledger_transaction(db):
        product = Product(
            name=payload.name.strip(),
            description=payload.description,
            sku=payload.sku.strip() if payload.sku else None,
            price=payload.price,
            rating=payload.rating,
            stock_quantity=0,
            category_id=payload.category_id,
            image_url=payload.image_url,
        )
        db.add(product)
        db.flush()
        # opening stock is an ADJUSTMENT from 0
        if payload.stock_quantity > 0:
            apply_stock_change(
                db,
                product,
                StockMovementType.ADJUSTMENT,
                payload.stock_quantity,
                user_id=current_user.id,
                reason="Initial stock",
            )

    record_audit(
        db,
        AuditAction.CREATE,
        "Product",
        entity_id=product.id,
        user_id=current_user.id,
        details=f"Product created: {product.name} (Price: ${product.price}, Stock: {product.stock_quantity})",
        metadata={
            "productName": product.name,
            "price": product.price,
            "stockQuantity": product.stock_quantity,
            "categoryId": product.category_id,
        },
        **request_context(request),
    )
    return _get_product(db, product.id)


@router.put("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    payload: ProductUpdate,
    request: Request,
    current_user: User = Depends(require_permission("products:write")),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    for field in ("name", "price", "stock_quantity"):
        if updates.get(field) is None:
            updates.pop(field, None)
    if "category_id" in updates:
        _ensure_category(db, updates["category_id"])
    if updates.get("sku"):
        updates["sku"] = updates["sku"].strip()
        _ensure_unique_sku(db, updates["sku"], product_id)
    if updates.get("name"):
        updates["name"] = updates["name"].strip()

    with ledger_transaction(db):
        product = lock_product(db, product_id)
        target_stock = updates.pop("stock_quantity", None)
        changes = track_changes(product, updates)
        for field, value in updates.items():
            setattr(product, field, value)
        if target_stock is not None and target_stock != product.stock_quantity:
            movement = apply_stock_change(
                db,
                product,
                StockMovementType.ADJUSTMENT,
                target_stock,
                user_id=current_user.id,
                reason="Product update",
            )
            changes["stock_quantity"] = {"old": movement.previous_stock, "new": movement.new_stock}

    details = f"Product updated: {product.name}"
    if changes:
        details += f". Changes: {describe_changes(changes)}"
    record_audit(
        db,
        AuditAction.UPDATE,
        "Product",
        entity_id=product.id,
        user_id=current_user.id,
        details=details,
        metadata={"changes": changes} if changes else None,
        **request_context(request),
    )
    return _get_product(db, product.id)


@router.delete("/{product_id}", response_model=GenericMessageResponse)
def delete_product(
    product_id: int,
    request: Request,
    current_user: User = Depends(require_permission("products:delete")),
    db: Session = Depends(get_db),
):
    product = _get_product(db, product_id)
    snapshot = {
        "productName": product.name,
        "price": product.price,
        "stockQuantity": product.stock_quantity,
        "categoryId": product.category_id,
    }
    image_url = product.image_url

    db.delete(product)
    db.commit()
    if image_url:
        delete_image(image_url)

    record_audit(
        db,
        AuditAction.DELETE,
        "Product",
        entity_id=product_id,
        user_id=current_user.id,
        details=(
            f"Product deleted: {snapshot['productName']} "
            f"(Price: ${snapshot['price']}, Stock: {snapshot['stockQuantity']})"
        ),
        metadata=snapshot,
        **request_context(request),
    )
    return GenericMessageResponse(message="Product deleted successfully")


@router.post("/{product_id}/image", response_model=ProductOut)
def upload_product_image(
    product_id: int,
    request: Request,
    file: UploadFile = File(...),
    current_user: User = Depends(require_permission("products:write")),
    db: Session = Depends(get_db),
):
    product = _get_product(db, product_id)
    data = file.file.read()
    validate_image(data, file.filename, file.content_type)

    image_url = upload_image(data, file.filename, folder="products")
    previous_url = product.image_url
    product.image_url = image_url
    db.commit()
    if previous_url:
        delete_image(previous_url)

    record_audit(
        db,
        AuditAction.UPDATE,
        "Product",
        entity_id=product.id,
        user_id=current_user.id,
        details=f"Product image uploaded: {product.name}",
        metadata={"imageUrl": image_url, "previousImageUrl": previous_url},
        **request_context(request),
    )
    return _get_product(db, product.id)
