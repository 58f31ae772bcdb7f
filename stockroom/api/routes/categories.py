from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.api.deps import get_current_user, require_role
from stockroom.core.errors import ConflictError, NotFoundError
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.inventory import Category, Product
from stockroom.models.user import User, UserRole
from stockroom.schemas.auth import GenericMessageResponse
from stockroom.schemas.inventory import CategoryCreate, CategoryOut, CategoryUpdate
from stockroom.services.audit import describe_changes, record_audit, request_context, track_changes

router = APIRouter(prefix="/categories", tags=["Categories"])


def _product_count(db: Session, category_id: int) -> int:
    return db.scalar(select(func.count(Product.id)).where(Product.category_id == category_id)) or 0


def _category_out(db: Session, category: Category) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        description=category.description,
        product_count=_product_count(db, category.id),
        created_at=category.created_at,
        updated_at=category.updated_at,
    )


def _get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError("Category")
    return category


def _ensure_unique_name(db: Session, name: str, category_id: int | None = None) -> None:
    query = select(Category.id).where(func.lower(Category.name) == name.lower())
    if category_id is not None:
        query = query.where(Category.id != category_id)
    if db.scalar(query) is not None:
        raise ConflictError("Category with this name already exists")


@router.get("", response_model=list[CategoryOut])
def list_categories(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    counts = dict(
        db.execute(
            select(Product.category_id, func.count(Product.id))
            .where(Product.category_id.is_not(None))
            .group_by(Product.category_id)
        ).all()
    )
    categories = db.scalars(select(Category).order_by(Category.name.asc())).all()
    return [
        CategoryOut(
            id=category.id,
            name=category.name,
            description=category.description,
            product_count=counts.get(category.id, 0),
            created_at=category.created_at,
            updated_at=category.updated_at,
        )
        for category in categories
    ]


@router.get("/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, _: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _category_out(db, _get_category(db, category_id))


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    request: Request,
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    name = payload.name.strip()
    _ensure_unique_name(db, name)
    category = Category(name=name, description=payload.description)
    db.add(category)
    db.commit()
    db.refresh(category)

    record_audit(
        db,
        AuditAction.CREATE,
        "Category",
        entity_id=category.id,
        user_id=current_user.id,
        details=f"Category created: {category.name}",
        metadata={"categoryName": category.name, "description": category.description},
        **request_context(request),
    )
    return _category_out(db, category)


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    request: Request,
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    category = _get_category(db, category_id)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("name"):
        updates["name"] = updates["name"].strip()
        if updates["name"] != category.name:
            _ensure_unique_name(db, updates["name"], category_id)
    elif "name" in updates:
        updates.pop("name")

    changes = track_changes(category, updates)
    for field, value in updates.items():
        setattr(category, field, value)
    db.commit()
    db.refresh(category)

    details = f"Category updated: {category.name}"
    if changes:
        details += f". Changes: {describe_changes(changes)}"
    record_audit(
        db,
        AuditAction.UPDATE,
        "Category",
        entity_id=category.id,
        user_id=current_user.id,
        details=details,
        metadata={"changes": changes} if changes else None,
        **request_context(request),
    )
    return _category_out(db, category)


@router.delete("/{category_id}", response_model=GenericMessageResponse)
def delete_category(
    category_id: int,
    request: Request,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    category = _get_category(db, category_id)
    product_count = _product_count(db, category_id)
    if product_count > 0:
        raise ConflictError(f"Cannot delete category. {product_count} product(s) are using this category.")

    name = category.name
    db.delete(category)
    db.commit()

    record_audit(
        db,
        AuditAction.DELETE,
        "Category",
        entity_id=category_id,
        user_id=current_user.id,
        details=f"Category deleted: {name}",
        metadata={"categoryName": name},
        **request_context(request),
    )
    return GenericMessageResponse(message="Category deleted successfully")
