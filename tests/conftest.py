import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import stockroom.models  # noqa: F401
from stockroom.api.routes.auth import login_rate_limiter
from stockroom.core.security import create_access_token, hash_password
from stockroom.db.database import Base, get_db
from stockroom.main import app
from stockroom.models.inventory import Category, Product
from stockroom.models.user import User, UserRole

TEST_PASSWORD = "password123"


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    login_rate_limiter.reset()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_user(db, password_hash, role: UserRole, email: str, name: str | None = None, is_active: bool = True) -> User:
    user = User(
        name=name or f"{role.value.title()} User",
        email=email,
        password_hash=password_hash,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.email, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(db, password_hash):
    return make_user(db, password_hash, UserRole.ADMIN, "admin@example.com")


@pytest.fixture
def manager(db, password_hash):
    return make_user(db, password_hash, UserRole.MANAGER, "manager@example.com")


@pytest.fixture
def employee(db, password_hash):
    return make_user(db, password_hash, UserRole.EMPLOYEE, "employee@example.com")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def manager_headers(manager):
    return auth_headers(manager)


@pytest.fixture
def employee_headers(employee):
    return auth_headers(employee)


@pytest.fixture
def category(db):
    category = Category(name="Hardware", description="Tools and parts")
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@pytest.fixture
def make_product(db):
    def _make(name: str = "Widget", stock: int = 20, price: str = "9.99", **kwargs) -> Product:
        product = Product(name=name, price=Decimal(price), stock_quantity=stock, **kwargs)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make
