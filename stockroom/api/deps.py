from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockroom.core.errors import AuthenticationError, AuthorizationError
from stockroom.core.permissions import has_permission
from stockroom.core.security import decode_token
from stockroom.db.database import get_db
from stockroom.models.user import User, UserRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _clean_token(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().strip("\"'").strip()
    # Normalize accidental duplicated prefixes like: "Bearer Bearer <jwt>"
    while cleaned.lower().startswith("bearer "):
        cleaned = cleaned[7:].strip()
    return cleaned or None


def _user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid or expired token") from exc

    user = db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is inactive")
    return user


def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    raw_token = _clean_token(token) or _clean_token(request.cookies.get("access_token"))
    if not raw_token:
        raise AuthenticationError("Authentication required")
    return _user_from_token(raw_token, db)


def get_optional_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User | None:
    raw_token = _clean_token(token) or _clean_token(request.cookies.get("access_token"))
    if not raw_token:
        return None
    try:
        return _user_from_token(raw_token, db)
    except AuthenticationError:
        return None


def require_permission(permission: str):
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user.role, permission):
            raise AuthorizationError(f"Permission required: {permission}")
        return current_user

    return checker


def require_role(*roles: UserRole):
    allowed = set(roles)

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise AuthorizationError("Insufficient permissions")
        return current_user

    return checker
