import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.api.deps import get_current_user, get_optional_user, require_role
from stockroom.core.config import settings
from stockroom.core.errors import AuthenticationError, ConflictError, TooManyRequestsError
from stockroom.core.security import create_access_token, hash_password, verify_password
from stockroom.db.database import get_db
from stockroom.models.audit import AuditAction
from stockroom.models.user import User, UserRole
from stockroom.schemas.auth import GenericMessageResponse, LoginRequest, RegisterRequest, TokenResponse
from stockroom.schemas.user import UserOut
from stockroom.services.audit import get_client_ip, record_audit, request_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


class SlidingWindowLimiter:
    def __init__(self) -> None:
        self._attempts: dict[str, list[datetime]] = defaultdict(list)

    def check(self, key: str) -> bool:
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(seconds=settings.login_rate_limit_window_seconds)
        recent = [dt for dt in self._attempts.get(key, []) if dt >= window_start]
        if not recent:
            self._attempts.pop(key, None)
            return False
        self._attempts[key] = recent
        return len(recent) >= settings.login_rate_limit_max_attempts

    def hit(self, key: str) -> None:
        self._attempts[key].append(datetime.now(timezone.utc))

    def clear(self, key: str) -> None:
        self._attempts.pop(key, None)

    def reset(self) -> None:
        self._attempts.clear()


login_rate_limiter = SlidingWindowLimiter()


def _token_response(user: User) -> TokenResponse:
    access_token = create_access_token(user.id, user.email, user.role.value)
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.jwt_expire_minutes * 60,
        user=UserOut.model_validate(user),
    )


def authenticate_user(db: Session, email: str, password: str, request: Request) -> User:
    ip = get_client_ip(request) or "unknown"
    rate_key = f"{ip}:{email.lower()}"
    if login_rate_limiter.check(rate_key):
        raise TooManyRequestsError("Too many login attempts, try again later")

    user = db.scalar(select(User).where(func.lower(User.email) == email.lower()))
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        login_rate_limiter.hit(rate_key)
        logger.info("Failed login attempt for %s from %s", email, ip)
        raise AuthenticationError("Invalid email or password")

    login_rate_limiter.clear(rate_key)
    return user


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = authenticate_user(db, payload.email, payload.password, request)
    response = _token_response(user)
    record_audit(
        db,
        AuditAction.LOGIN,
        "User",
        entity_id=user.id,
        user_id=user.id,
        details=f"User logged in: {user.email}",
        metadata={"email": user.email, "role": user.role.value},
        **request_context(request),
    )
    return response


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    admin_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    existing = db.scalar(select(User).where(func.lower(User.email) == payload.email))
    if existing:
        raise ConflictError("User with this email already exists")

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

    response = _token_response(user)
    record_audit(
        db,
        AuditAction.CREATE,
        "User",
        entity_id=user.id,
        user_id=admin_user.id,
        details=f"User registered: {user.email} with role {user.role.value}",
        metadata={"userName": user.name, "email": user.email, "role": user.role.value},
        **request_context(request),
    )
    return response


@router.post("/logout", response_model=GenericMessageResponse)
def logout(
    request: Request,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if current_user is not None:
        record_audit(
            db,
            AuditAction.LOGOUT,
            "User",
            entity_id=current_user.id,
            user_id=current_user.id,
            details=f"User logged out: {current_user.email}",
            **request_context(request),
        )
    return GenericMessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserOut)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user
