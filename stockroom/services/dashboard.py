from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.core.config import settings
from stockroom.models.audit import AuditLog
from stockroom.models.inventory import Expense, Product, Purchase, Sale
from stockroom.models.user import User

ZERO = Decimal("0")


def change_percentage(current: Decimal | int, previous: Decimal | int) -> float:
    if previous > 0:
        return float((Decimal(current) - Decimal(previous)) / Decimal(previous) * 100)
    return 100.0 if current > 0 else 0.0


def _sum(db: Session, column, *conditions) -> Decimal:
    value = db.scalar(select(func.coalesce(func.sum(column), 0)).where(*conditions))
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def _count(db: Session, model, *conditions) -> int:
    return int(db.scalar(select(func.count()).select_from(model).where(*conditions)) or 0)


def dashboard_statistics(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)
    sixty_days_ago = now - timedelta(days=60)
    threshold = settings.low_stock_threshold

    inventory_value = _sum(db, Product.price * Product.stock_quantity)

    current_users = _count(db, User, User.created_at >= thirty_days_ago)
    previous_users = _count(db, User, User.created_at >= sixty_days_ago, User.created_at < thirty_days_ago)
    current_sales = _sum(db, Sale.total_amount, Sale.sold_at >= thirty_days_ago)
    previous_sales = _sum(db, Sale.total_amount, Sale.sold_at >= sixty_days_ago, Sale.sold_at < thirty_days_ago)
    current_expenses = _sum(db, Expense.amount, Expense.incurred_at >= thirty_days_ago)
    previous_expenses = _sum(
        db,
        Expense.amount,
        Expense.incurred_at >= sixty_days_ago,
        Expense.incurred_at < thirty_days_ago,
    )

    return {
        "total_products": _count(db, Product),
        "total_inventory_value": inventory_value,
        "total_users": _count(db, User),
        "low_stock_products": _count(db, Product, Product.stock_quantity > 0, Product.stock_quantity <= threshold),
        "total_sales_value": _sum(db, Sale.total_amount),
        "total_purchases_value": _sum(db, Purchase.total_cost),
        "recent_activity_count": _count(db, AuditLog, AuditLog.created_at >= seven_days_ago),
        "customer_growth": {
            "current": current_users,
            "previous": previous_users,
            "change_percentage": change_percentage(current_users, previous_users),
        },
        "sales_stats": {
            "total": current_sales,
            "change_percentage": change_percentage(current_sales, previous_sales),
        },
        "expenses_stats": {
            "total": current_expenses,
            "change_percentage": change_percentage(current_expenses, previous_expenses),
        },
    }


def daily_totals(rows: Iterable[tuple[datetime, Decimal]], with_change: bool = True) -> list[dict]:
    """Group ``(timestamp, amount)`` pairs by day, oldest first.

    ``change_percentage`` compares each day with the previous bucket and is
    ``None`` for the first bucket or when the previous total is zero.
    """
    totals: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for occurred_at, amount in rows:
        totals[occurred_at.date()] += Decimal(amount)

    summary = []
    previous: Decimal | None = None
    for day in sorted(totals):
        total = totals[day]
        item = {"date": day, "total": total}
        if with_change:
            item["change_percentage"] = (
                float((total - previous) / previous * 100) if previous is not None and previous > 0 else None
            )
        summary.append(item)
        previous = total
    return summary[-30:]


def sales_summary(db: Session, days: int = 30) -> list[dict]:
    since = datetime.utcnow() - timedelta(days=days)
    rows = db.execute(select(Sale.sold_at, Sale.total_amount).where(Sale.sold_at >= since)).all()
    return daily_totals(rows)


def purchase_summary(db: Session, days: int = 30) -> list[dict]:
    since = datetime.utcnow() - timedelta(days=days)
    rows = db.execute(select(Purchase.purchased_at, Purchase.total_cost).where(Purchase.purchased_at >= since)).all()
    return daily_totals(rows)


def expense_summary(db: Session, days: int = 30) -> list[dict]:
    since = datetime.utcnow() - timedelta(days=days)
    rows = db.execute(select(Expense.incurred_at, Expense.amount).where(Expense.incurred_at >= since)).all()
    return daily_totals(rows, with_change=False)


def expense_by_category(db: Session, days: int = 30, limit: int = 20) -> list[dict]:
    since = datetime.utcnow() - timedelta(days=days)
    rows = db.execute(
        select(Expense.category, Expense.incurred_at, Expense.amount).where(Expense.incurred_at >= since)
    ).all()

    grouped: dict[tuple[str, date], Decimal] = defaultdict(lambda: ZERO)
    for category, incurred_at, amount in rows:
        grouped[(category, incurred_at.date())] += Decimal(amount)

    result = [
        {"category": category, "date": day, "amount": amount.quantize(Decimal("0.01"))}
        for (category, day), amount in grouped.items()
    ]
    result.sort(key=lambda item: (item["date"], item["category"]), reverse=True)
    return result[:limit]


def dashboard_metrics(db: Session) -> dict:
    popular_products = db.scalars(
        select(Product).order_by(Product.stock_quantity.desc(), Product.id.asc()).limit(15)
    ).all()
    return {
        "popular_products": list(popular_products),
        "sales_summary": sales_summary(db)[-5:],
        "purchase_summary": purchase_summary(db)[-5:],
        "expense_summary": expense_summary(db)[-5:],
        "expense_by_category_summary": expense_by_category(db)[:5],
        "statistics": dashboard_statistics(db),
    }
