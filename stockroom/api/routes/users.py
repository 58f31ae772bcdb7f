import math
from typing import Literal

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockroom.api.deps import get_current_user, require_role
from stockroom.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from stockroom.core.security import hash_password
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.user import User, UserRole
from stockroom.schemas.auth import GenericMessageResponse
from stockroom.schemas.user import UserCreate, UserOut, UserPage, UserUpdate
from stockroom.services.audit import record_audit, request_context, track_changes
from stockroom.services.images import delete_image, upload_image, validate_image

router = APIRouter(prefix="/users", tags=["Users"])

require_admin = require_role(UserRole.ADMIN)

SORT_COLUMNS = {"name": User.name, "email": User.email, "createdAt": User.created_at}


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    return user


def _ensure_unique_email(db: Session, email: str, user_id: int | None = None) -> None:
    query = select(User.id).where(func.lower(User.email) == email.lower())
    if user_id is not None:
        query = query.where(User.id != user_id)
    if db.scalar(query) is not None:
        raise ConflictError("User with this email already exists")


@router.get("", response_model=UserPage)
def list_users(
    search: str | None = None,
    role: UserRole | None = None,
    is_active: bool | None = None,
    sort_by: Literal["name", "email", "createdAt"] = "createdAt",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = select(User)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))
    if role is not None:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active.is_(is_active))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    column = SORT_COLUMNS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    users = db.scalars(query.order_by(order, User.id.asc()).limit(limit).offset((page - 1) * limit)).all()
    return UserPage(
        items=[UserOut.model_validate(user) for user in users],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: int, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return _get_user(db, user_id)


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    request: Request,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    _ensure_unique_email(db, payload.email)
    user = User(
        name=payload.name.strip(),
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        is_active=payload.is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    record_audit(
        db,
        AuditAction.CREATE,
        "User",
        entity_id=user.id,
        user_id=admin_user.id,
        details=f"User created: {user.email} with role {user.role.value}",
        metadata={"userName": user.name, "email": user.email, "role": user.role.value, "isActive": user.is_active},
        **request_context(request),
    )
    return user


@router.put("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _get_user(db, user_id)
    updates = payload.model_dump(exclude_unset=True)
    password = updates.pop("password", None)
    updates = {field: value for field, value in updates.items() if value is not None}
    if updates.get("email") and updates["email"] != user.email:
        _ensure_unique_email(db, updates["email"], user_id)

    changes = track_changes(user, updates)
    for field, value in updates.items():
        setattr(user, field, value)
    if password:
        user.password_hash = hash_password(password)
        changes["password"] = {"old": "[REDACTED]", "new": "[REDACTED]"}
    db.commit()
    db.refresh(user)

    details = f"User updated: {user.email}"
    if changes:
        parts = [
            "password changed" if field == "password" else f'{field}: "{value["old"]}" -> "{value["new"]}"'
            for field, value in changes.items()
        ]
        details += f". Changes: {', '.join(parts)}"
    record_audit(
        db,
        AuditAction.UPDATE,
        "User",
        entity_id=user.id,
        user_id=admin_user.id,
        details=details,
        metadata={"changes": changes} if changes else None,
        **request_context(request),
    )
    return user


@router.delete("/{user_id}", response_model=GenericMessageResponse)
def delete_user(
    user_id: int,
    request: Request,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if user_id == admin_user.id:
        raise ValidationError("Cannot delete your own account")

    user = _get_user(db, user_id)
    snapshot = {"userName": user.name, "email": user.email, "role": user.role.value, "isActive": user.is_active}
    image_url = user.image_url
    db.delete(user)
    db.commit()
    if image_url:
        delete_image(image_url)

    record_audit(
        db,
        AuditAction.DELETE,
        "User",
        entity_id=user_id,
        user_id=admin_user.id,
        details=f"User deleted: {snapshot['email']} (Role: {snapshot['role']})",
        metadata=snapshot,
        **request_context(request),
    )
    return GenericMessageResponse(message="User deleted successfully")


@router.post("/{user_id}/image", response_model=UserOut)
def upload_user_image(
    user_id: int,
    request: Request,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = _get_user(db, user_id)
    if current_user.id != user.id and current_user.role != UserRole.ADMIN:
        raise AuthorizationError("Unauthorized to upload image for this user")

    data = file.file.read()
    validate_image(data, file.filename, file.content_type)
    image_url = upload_image(data, file.filename, folder="profiles")
    previous_url = user.image_url
    user.image_url = image_url
    db.commit()
    db.refresh(user)
    if previous_url:
        delete_image(previous_url)

    record_audit(
        db,
        AuditAction.UPDATE,
        "User",
        entity_id=user.id,
        user_id=current_user.id,
        details=f"User profile image uploaded: {user.email}",
        metadata={"imageUrl": image_url, "previousImageUrl": previous_url},
        **request_context(request),
    )
    return user
