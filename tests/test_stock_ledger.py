from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from stockroom.core.errors import NotFoundError, ValidationError
from stockroom.models.audit import AuditAction, AuditLog
from stockroom.models.inventory import Product, Purchase, Sale, StockMovement, StockMovementType
from stockroom.services.stock_ledger import (
    adjust_stock,
    compute_new_stock,
    list_movements,
    list_sales,
    lock_product,
    low_stock_products,
    record_purchase,
    record_sale,
    validate_money,
)


def _movements(db, product_id):
    return db.scalars(
        select(StockMovement).where(StockMovement.product_id == product_id).order_by(StockMovement.id)
    ).all()


class TestComputeNewStock:
    def test_sale_subtracts(self):
        assert compute_new_stock(StockMovementType.SALE, 20, 5) == (15, -5)

    def test_purchase_and_return_add(self):
        assert compute_new_stock(StockMovementType.PURCHASE, 0, 30) == (30, 30)
        assert compute_new_stock(StockMovementType.RETURN, 15, 3) == (18, 3)

    def test_adjustment_sets_absolute_level(self):
        assert compute_new_stock(StockMovementType.ADJUSTMENT, 15, 50) == (50, 35)
        assert compute_new_stock(StockMovementType.ADJUSTMENT, 15, 0) == (0, -15)

    def test_adjustment_below_zero_rejected(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            compute_new_stock(StockMovementType.ADJUSTMENT, 15, -1)

    @pytest.mark.parametrize("movement_type", [StockMovementType.SALE, StockMovementType.PURCHASE, StockMovementType.RETURN])
    def test_non_positive_delta_rejected(self, movement_type):
        with pytest.raises(ValidationError, match="greater than 0"):
            compute_new_stock(movement_type, 10, 0)

    def test_oversell_message(self):
        with pytest.raises(ValidationError) as exc_info:
            compute_new_stock(StockMovementType.SALE, 15, 20)
        assert exc_info.value.message == "Insufficient stock. Available: 15, Requested: 20"


def test_sale_decrements_stock_and_records_movement(db, admin, make_product):
    product = make_product(stock=20)

    sale, movement = record_sale(db, product_id=product.id, quantity=5, unit_price=Decimal("4.00"), user_id=admin.id)

    db.refresh(product)
    assert product.stock_quantity == 15
    assert movement.movement_type == StockMovementType.SALE
    assert movement.quantity == -5
    assert (movement.previous_stock, movement.new_stock) == (20, 15)
    assert movement.reason == f"Sale: {sale.id}"
    assert sale.total_amount == Decimal("20.00")


def test_oversell_leaves_no_trace(db, admin, make_product):
    product = make_product(stock=15)

    with pytest.raises(ValidationError, match="Insufficient stock"):
        record_sale(db, product_id=product.id, quantity=20, unit_price=Decimal("1.00"), user_id=admin.id)

    db.refresh(product)
    assert product.stock_quantity == 15
    assert _movements(db, product.id) == []
    assert db.scalars(select(Sale)).all() == []


def test_purchase_increments_stock_and_totals_cost(db, admin, make_product):
    product = make_product(stock=0)

    purchase, movement = record_purchase(
        db,
        product_id=product.id,
        quantity=30,
        unit_cost=Decimal("2.50"),
        user_id=admin.id,
    )

    db.refresh(product)
    assert product.stock_quantity == 30
    assert purchase.total_cost == Decimal("75.00")
    assert movement.quantity == 30
    assert movement.reason == f"Purchase: {purchase.id}"
    assert db.scalar(select(Purchase.id)) == purchase.id


def test_adjustment_to_target_level(db, admin, make_product):
    product = make_product(stock=15)

    change = adjust_stock(
        db,
        product_id=product.id,
        quantity=50,
        movement_type=StockMovementType.ADJUSTMENT,
        user_id=admin.id,
        reason="Cycle count",
    )

    assert change.product.stock_quantity == 50
    assert change.movement.quantity == 35
    assert change.movement.reason == "Cycle count"


def test_negative_adjustment_rejected(db, admin, make_product):
    product = make_product(stock=15)

    with pytest.raises(ValidationError):
        adjust_stock(
            db,
            product_id=product.id,
            quantity=-1,
            movement_type=StockMovementType.ADJUSTMENT,
            user_id=admin.id,
        )

    db.refresh(product)
    assert product.stock_quantity == 15


def test_return_adds_units(db, admin, make_product):
    product = make_product(stock=15)

    change = adjust_stock(
        db,
        product_id=product.id,
        quantity=3,
        movement_type=StockMovementType.RETURN,
        user_id=admin.id,
    )

    assert change.product.stock_quantity == 18
    assert change.movement.quantity == 3


def test_manual_adjustment_rejects_sale_type(db, admin, make_product):
    product = make_product(stock=15)

    with pytest.raises(ValidationError, match="Invalid movement type"):
        adjust_stock(db, product_id=product.id, quantity=3, movement_type=StockMovementType.SALE, user_id=admin.id)


def test_missing_product(db, admin):
    with pytest.raises(NotFoundError):
        record_sale(db, product_id=999, quantity=1, unit_price=Decimal("1.00"), user_id=admin.id)


def test_ledger_chain_matches_product_stock(db, admin, make_product):
    product = make_product(stock=0)

    record_purchase(db, product_id=product.id, quantity=40, unit_cost=Decimal("1.00"), user_id=admin.id)
    record_sale(db, product_id=product.id, quantity=12, unit_price=Decimal("2.00"), user_id=admin.id)
    adjust_stock(db, product_id=product.id, quantity=25, movement_type=StockMovementType.ADJUSTMENT, user_id=admin.id)
    adjust_stock(db, product_id=product.id, quantity=2, movement_type=StockMovementType.RETURN, user_id=admin.id)

    movements = _movements(db, product.id)
    assert [m.movement_type for m in movements] == [
        StockMovementType.PURCHASE,
        StockMovementType.SALE,
        StockMovementType.ADJUSTMENT,
        StockMovementType.RETURN,
    ]
    for movement in movements:
        assert movement.new_stock - movement.previous_stock == movement.quantity
        assert movement.new_stock >= 0
    for earlier, later in zip(movements, movements[1:]):
        assert later.previous_stock == earlier.new_stock

    db.refresh(product)
    assert product.stock_quantity == movements[-1].new_stock == 27


def test_ledger_operations_write_audit_rows(db, admin, make_product):
    product = make_product(stock=10)

    record_sale(db, product_id=product.id, quantity=1, unit_price=Decimal("1.00"), user_id=admin.id)
    adjust_stock(db, product_id=product.id, quantity=5, movement_type=StockMovementType.ADJUSTMENT, user_id=admin.id)

    logs = db.scalars(select(AuditLog).order_by(AuditLog.id)).all()
    assert [(log.action, log.entity_type) for log in logs] == [
        (AuditAction.CREATE, "Sale"),
        (AuditAction.STOCK_ADJUSTMENT, "Product"),
    ]
    assert logs[1].extra["previousStock"] == 9
    assert logs[1].extra["newStock"] == 5
    assert logs[1].extra["quantityChange"] == -4


def test_list_movements_filters_and_pages(db, admin, make_product):
    first = make_product(name="First", stock=10)
    second = make_product(name="Second", stock=10)
    for _ in range(3):
        record_sale(db, product_id=first.id, quantity=1, unit_price=Decimal("1.00"), user_id=admin.id)
    record_sale(db, product_id=second.id, quantity=1, unit_price=Decimal("1.00"), user_id=admin.id)

    rows, total = list_movements(db, product_id=first.id, limit=2)
    assert total == 3
    assert len(rows) == 2
    assert all(row.product_id == first.id for row in rows)

    sales, sales_total = list_sales(db, product_id=second.id)
    assert sales_total == 1
    assert sales[0].product_id == second.id


def test_low_stock_products_orders_ascending(db, make_product):
    make_product(name="Plenty", stock=100)
    make_product(name="Few", stock=4)
    make_product(name="None", stock=0)

    names = [product.name for product in low_stock_products(db, threshold=10)]
    assert names == ["None", "Few"]
    assert db.scalar(select(Product.stock_quantity).where(Product.name == "Plenty")) == 100


class TestValidateMoney:
    def test_accepts_whole_cents(self):
        assert validate_money(Decimal("3.2"), "Unit price") == Decimal("3.20")
        assert validate_money(Decimal("4.500"), "Unit price") == Decimal("4.50")

    @pytest.mark.parametrize("value", [Decimal("0"), Decimal("-1.00")])
    def test_rejects_non_positive(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_money(value, "Unit cost")
        assert exc_info.value.message == "Unit cost must be greater than 0"

    @pytest.mark.parametrize("value", [Decimal("0.005"), Decimal("0.004"), Decimal("1.999")])
    def test_rejects_sub_cent_amounts(self, value):
        with pytest.raises(ValidationError, match="more than 2 decimal places"):
            validate_money(value, "Unit price")


@pytest.mark.parametrize("unit_price", [Decimal("0"), Decimal("-2.00"), Decimal("0.005")])
def test_sale_rejects_bad_unit_price_and_leaves_no_trace(db, admin, make_product, unit_price):
    product = make_product(stock=200)

    with pytest.raises(ValidationError):
        record_sale(db, product_id=product.id, quantity=100, unit_price=unit_price, user_id=admin.id)

    db.refresh(product)
    assert product.stock_quantity == 200
    assert db.scalar(select(func.count(Sale.id))) == 0
    assert _movements(db, product.id) == []


@pytest.mark.parametrize(
    "quantity, unit_cost",
    [(0, Decimal("2.00")), (5, Decimal("0")), (5, Decimal("-1.00")), (5, Decimal("0.004"))],
)
def test_purchase_rejects_bad_input_and_leaves_no_trace(db, admin, make_product, quantity, unit_cost):
    product = make_product(stock=3)

    with pytest.raises(ValidationError):
        record_purchase(db, product_id=product.id, quantity=quantity, unit_cost=unit_cost, user_id=admin.id)

    db.refresh(product)
    assert product.stock_quantity == 3
    assert db.scalar(select(func.count(Purchase.id))) == 0
    assert _movements(db, product.id) == []


def test_sale_total_is_quantity_times_stored_unit_price(db, admin, make_product):
    product = make_product(stock=200)

    sale, _ = record_sale(db, product_id=product.id, quantity=100, unit_price=Decimal("0.01"), user_id=admin.id)

    db.refresh(sale)
    assert sale.unit_price == Decimal("0.01")
    assert sale.total_amount == sale.unit_price * sale.quantity == Decimal("1.00")


def test_lock_product_reloads_stock_already_in_session(db, make_product):
    product = make_product(stock=10)
    db.execute(text("UPDATE products SET stock_quantity = 4 WHERE id = :id"), {"id": product.id})

    locked = lock_product(db, product.id)

    assert locked is product
    assert locked.stock_quantity == 4
    db.rollback()
