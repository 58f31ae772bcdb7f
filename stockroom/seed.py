"""Populate an empty database with demo users, categories and products.

Run with ``python -m stockroom.seed``. Does nothing when users already exist.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.core.logging_config import configure_logging
from stockroom.core.security import hash_password
from stockroom.db.database import SessionLocal
from stockroom.models.inventory import Category, Product, StockMovementType
from stockroom.models.user import User, UserRole
from stockroom.services.stock_ledger import apply_stock_change, ledger_transaction

logger = logging.getLogger(__name__)

SEED_USERS = [
    ("Admin User", "admin@inventory.com", "Admin@2024", UserRole.ADMIN),
    ("Sarah Johnson", "sarah.johnson@inventory.com", "Manager@2024", UserRole.MANAGER),
    ("Emily Rodriguez", "emily.rodriguez@inventory.com", "Employee@2024", UserRole.EMPLOYEE),
]

SEED_CATEGORIES = {
    "Electronics": "Computers, phones and accessories",
    "Office Supplies": "Paper, pens and desk equipment",
    "Furniture": "Chairs, desks and storage",
}

# (name, sku, category, price, opening stock)
SEED_PRODUCTS = [
    ("Wireless Mouse", "ELEC-00001", "Electronics", Decimal("24.99"), 120),
    ("USB-C Hub", "ELEC-00002", "Electronics", Decimal("49.00"), 8),
    ("27in Monitor", "ELEC-00003", "Electronics", Decimal("289.00"), 0),
    ("A4 Paper Ream", "OFFI-00001", "Office Supplies", Decimal("6.50"), 300),
    ("Gel Pens (12 pack)", "OFFI-00002", "Office Supplies", Decimal("9.75"), 45),
    ("Ergonomic Chair", "FURN-00001", "Furniture", Decimal("349.00"), 6),
    ("Standing Desk", "FURN-00002", "Furniture", Decimal("529.00"), 12),
]


def seed(db: Session) -> bool:
    if db.scalar(select(func.count(User.id))):
        logger.info("Database already contains users, skipping seed")
        return False

    with ledger_transaction(db):
        users = [
            User(name=name, email=email, password_hash=hash_password(password), role=role, is_active=True)
            for name, email, password, role in SEED_USERS
        ]
        db.add_all(users)
        categories = {name: Category(name=name, description=text) for name, text in SEED_CATEGORIES.items()}
        db.add_all(categories.values())
        db.flush()

        admin = users[0]
        for name, sku, category, price, stock in SEED_PRODUCTS:
            product = Product(name=name, sku=sku, price=price, stock_quantity=0, category_id=categories[category].id)
            db.add(product)
            db.flush()
            if stock > 0:
                apply_stock_change(
                    db,
                    product,
                    StockMovementType.ADJUSTMENT,
                    stock,
                    user_id=admin.id,
                    reason="Initial stock",
                )

    logger.info(
        "Seeded %d users, %d categories and %d products",
        len(SEED_USERS),
        len(SEED_CATEGORIES),
        len(SEED_PRODUCTS),
    )
    return True


def main() -> None:
    configure_logging()
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
