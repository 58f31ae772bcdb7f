from stockroom.models.audit import AuditAction, AuditLog
from stockroom.models.inventory import Category, Expense, Product, Purchase, Sale, StockMovement, StockMovementType
from stockroom.models.user import User, UserRole

__all__ = [
    "AuditAction",
    "AuditLog",
    "Category",
    "Expense",
    "Product",
    "Purchase",
    "Sale",
    "StockMovement",
    "StockMovementType",
    "User",
    "UserRole",
]
