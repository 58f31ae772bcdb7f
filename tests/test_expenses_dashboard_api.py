from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from stockroom.models.audit import AuditAction, AuditLog
from stockroom.models.inventory import Expense
from stockroom.services.dashboard import change_percentage, daily_totals
from stockroom.services.stock_ledger import record_purchase, record_sale


def test_expense_crud(client, db, manager_headers, employee_headers):
    created = client.post(
        "/api/expenses",
        json={"title": "Rent", "category": "Facilities", "amount": "1200.00"},
        headers=manager_headers,
    )
    assert created.status_code == 201
    expense_id = created.json()["id"]

    assert client.post("/api/expenses", json={"title": "x", "category": "y", "amount": "1"}, headers=employee_headers).status_code == 403

    updated = client.put(f"/api/expenses/{expense_id}", json={"amount": "1250.00"}, headers=manager_headers)
    assert updated.status_code == 200
    assert updated.json()["amount"] == "1250.00"

    listing = client.get("/api/expenses", params={"category": "facilities"}, headers=employee_headers).json()
    assert [item["title"] for item in listing] == ["Rent"]

    deleted = client.delete(f"/api/expenses/{expense_id}", headers=manager_headers)
    assert deleted.status_code == 200
    assert db.scalar(select(Expense).where(Expense.id == expense_id)) is None

    actions = [log.action for log in db.scalars(select(AuditLog).order_by(AuditLog.id)).all()]
    assert actions == [AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE]


def test_expense_requires_positive_amount(client, manager_headers):
    response = client.post("/api/expenses", json={"title": "Oops", "category": "Misc", "amount": "-5"}, headers=manager_headers)
    assert response.status_code == 400


def test_expenses_by_category(client, db, manager, employee_headers):
    today = datetime.utcnow()
    db.add_all(
        [
            Expense(title="Pens", category="Office", amount=Decimal("10.00"), incurred_at=today, created_by_user_id=manager.id),
            Expense(title="Paper", category="Office", amount=Decimal("5.50"), incurred_at=today, created_by_user_id=manager.id),
            Expense(title="Van", category="Transport", amount=Decimal("40.00"), incurred_at=today - timedelta(days=1)),
            Expense(title="Ancient", category="Office", amount=Decimal("99.00"), incurred_at=today - timedelta(days=90)),
        ]
    )
    db.commit()

    rows = client.get("/api/expenses/by-category", headers=employee_headers).json()

    assert rows[0] == {"category": "Office", "date": today.date().isoformat(), "amount": "15.50"}
    assert rows[1]["category"] == "Transport"
    assert len(rows) == 2


def test_change_percentage():
    assert change_percentage(Decimal("150"), Decimal("100")) == 50.0
    assert change_percentage(5, 0) == 100.0
    assert change_percentage(0, 0) == 0.0


def test_daily_totals_groups_by_day():
    day = datetime(2026, 3, 1, 9, 0)
    rows = [
        (day, Decimal("10")),
        (day.replace(hour=17), Decimal("5")),
        (day + timedelta(days=1), Decimal("30")),
    ]

    summary = daily_totals(rows)

    assert [item["total"] for item in summary] == [Decimal("15"), Decimal("30")]
    assert summary[0]["change_percentage"] is None
    assert summary[1]["change_percentage"] == 100.0


def test_dashboard(client, db, admin, employee_headers, make_product):
    product = make_product(name="Stocked", stock=0, price="4.00")
    record_purchase(db, product_id=product.id, quantity=10, unit_cost=Decimal("2.00"), user_id=admin.id)
    record_sale(db, product_id=product.id, quantity=3, unit_price=Decimal("4.00"), user_id=admin.id)

    response = client.get("/api/dashboard", headers=employee_headers)

    assert response.status_code == 200
    body = response.json()
    stats = body["statistics"]
    assert stats["total_products"] == 1
    assert stats["total_inventory_value"] == "28.00"
    assert stats["total_sales_value"] == "12.00"
    assert stats["total_purchases_value"] == "20.00"
    assert stats["low_stock_products"] == 1
    assert stats["recent_activity_count"] == 2
    assert body["popular_products"][0]["name"] == "Stocked"
    assert body["sales_summary"][-1]["total"] == "12.00"

    assert client.get("/api/dashboard").status_code == 401
