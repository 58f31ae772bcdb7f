from dataclasses import replace

import pytest
from sqlalchemy import select

from stockroom.api.routes import products as product_routes
from stockroom.models.audit import AuditAction, AuditLog
from stockroom.models.inventory import Product, StockMovement, StockMovementType


@pytest.fixture
def fake_images(monkeypatch):
    calls = {"uploaded": [], "deleted": []}

    def fake_upload(data, filename, folder="products"):
        calls["uploaded"].append((filename, folder))
        return f"https://ik.imagekit.io/demo/{folder}/{filename}"

    monkeypatch.setattr(product_routes, "upload_image", fake_upload)
    monkeypatch.setattr(product_routes, "delete_image", lambda url: calls["deleted"].append(url))
    return calls


def test_create_product_records_opening_stock(client, db, manager, manager_headers, category):
    payload = {"name": "Hammer", "sku": "HAM-1", "price": "12.50", "stock_quantity": 40, "category_id": category.id}

    response = client.post("/api/products", json=payload, headers=manager_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["stock_quantity"] == 40
    assert body["category"]["name"] == "Hardware"

    movement = db.scalar(select(StockMovement).where(StockMovement.product_id == body["id"]))
    assert movement.movement_type == StockMovementType.ADJUSTMENT
    assert (movement.previous_stock, movement.new_stock, movement.quantity) == (0, 40, 40)
    assert movement.user_id == manager.id

    log = db.scalar(select(AuditLog).where(AuditLog.entity_type == "Product"))
    assert log.action == AuditAction.CREATE
    assert log.extra["stockQuantity"] == 40


def test_create_product_without_stock_has_no_movement(client, db, manager_headers):
    response = client.post("/api/products", json={"name": "Nails", "price": "0.10"}, headers=manager_headers)

    assert response.status_code == 201
    assert db.scalars(select(StockMovement)).all() == []


def test_create_product_validation(client, manager_headers, employee_headers):
    assert client.post("/api/products", json={"name": "Free", "price": "0"}, headers=manager_headers).status_code == 400
    assert (
        client.post("/api/products", json={"name": "x", "price": "1", "stock_quantity": -3}, headers=manager_headers)
        .status_code
        == 400
    )
    assert client.post("/api/products", json={"name": "Nope", "price": "1"}, headers=employee_headers).status_code == 403


def test_duplicate_sku_conflicts(client, manager_headers, make_product):
    make_product(name="Saw", sku="SAW-1")

    response = client.post("/api/products", json={"name": "Saw 2", "sku": "saw-1", "price": "3"}, headers=manager_headers)

    assert response.status_code == 409


def test_update_stock_goes_through_ledger(client, db, manager_headers, make_product):
    product = make_product(name="Drill", stock=10, price="80.00")

    response = client.put(
        f"/api/products/{product.id}",
        json={"stock_quantity": 4, "price": "75.00"},
        headers=manager_headers,
    )

    assert response.status_code == 200
    assert response.json()["stock_quantity"] == 4
    movement = db.scalar(select(StockMovement).where(StockMovement.product_id == product.id))
    assert movement.movement_type == StockMovementType.ADJUSTMENT
    assert movement.quantity == -6
    assert movement.reason == "Product update"

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditAction.UPDATE))
    assert log.extra["changes"]["stock_quantity"] == {"old": 10, "new": 4}
    assert log.extra["changes"]["price"] == {"old": "80.00", "new": "75.00"}


def test_update_without_stock_change_writes_no_movement(client, db, manager_headers, make_product):
    product = make_product(name="Level", stock=3)

    response = client.put(f"/api/products/{product.id}", json={"name": "Spirit Level"}, headers=manager_headers)

    assert response.status_code == 200
    assert response.json()["name"] == "Spirit Level"
    assert db.scalars(select(StockMovement)).all() == []


def test_list_products_filters_sorts_and_pages(client, employee_headers, make_product, category):
    make_product(name="Alpha", stock=0, price="5.00")
    make_product(name="Bravo", stock=5, price="15.00", category_id=category.id)
    make_product(name="Charlie", stock=50, price="25.00", sku="CHA-9")

    low = client.get("/api/products", params={"stock_status": "lowStock"}, headers=employee_headers).json()
    assert [item["name"] for item in low["items"]] == ["Bravo"]

    out = client.get("/api/products", params={"stock_status": "outOfStock"}, headers=employee_headers).json()
    assert [item["name"] for item in out["items"]] == ["Alpha"]

    priced = client.get(
        "/api/products",
        params={"min_price": "10", "max_price": "30", "sort_by": "price", "sort_order": "desc"},
        headers=employee_headers,
    ).json()
    assert [item["name"] for item in priced["items"]] == ["Charlie", "Bravo"]

    by_sku = client.get("/api/products", params={"search": "cha-"}, headers=employee_headers).json()
    assert [item["name"] for item in by_sku["items"]] == ["Charlie"]

    by_category = client.get("/api/products", params={"category_id": category.id}, headers=employee_headers).json()
    assert by_category["total"] == 1

    page = client.get(
        "/api/products",
        params={"sort_by": "name", "sort_order": "asc", "page": 2, "limit": 2},
        headers=employee_headers,
    ).json()
    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert [item["name"] for item in page["items"]] == ["Charlie"]


def test_list_products_rejects_unknown_sort(client, employee_headers):
    response = client.get("/api/products", params={"sort_by": "rating"}, headers=employee_headers)
    assert response.status_code == 400


def test_delete_product_requires_delete_permission(client, db, manager_headers, admin_headers, make_product, fake_images):
    product = make_product(name="Old", image_url="https://ik.imagekit.io/demo/products/old.png")

    assert client.delete(f"/api/products/{product.id}", headers=manager_headers).status_code == 403

    response = client.delete(f"/api/products/{product.id}", headers=admin_headers)
    assert response.status_code == 200
    assert db.scalar(select(Product).where(Product.id == product.id)) is None
    assert fake_images["deleted"] == ["https://ik.imagekit.io/demo/products/old.png"]

    log = db.scalar(select(AuditLog).where(AuditLog.action == AuditAction.DELETE))
    assert log.entity_id == str(product.id)
    assert log.extra["productName"] == "Old"


def test_upload_product_image(client, db, manager_headers, make_product, fake_images):
    product = make_product(name="Pliers", image_url="https://ik.imagekit.io/demo/products/previous.png")

    response = client.post(
        f"/api/products/{product.id}/image",
        files={"file": ("pliers.png", b"\x89PNG fake bytes", "image/png")},
        headers=manager_headers,
    )

    assert response.status_code == 200
    assert response.json()["image_url"] == "https://ik.imagekit.io/demo/products/pliers.png"
    assert fake_images["uploaded"] == [("pliers.png", "products")]
    assert fake_images["deleted"] == ["https://ik.imagekit.io/demo/products/previous.png"]


def test_upload_rejects_non_image(client, manager_headers, make_product, fake_images):
    product = make_product(name="Clamp")

    response = client.post(
        f"/api/products/{product.id}/image",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=manager_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "File must be an image"
    assert fake_images["uploaded"] == []


def test_product_price_limited_to_cents(client, manager_headers, make_product):
    created = client.post("/api/products", json={"name": "Tiny", "price": "0.005"}, headers=manager_headers)
    assert created.status_code == 400

    product = make_product(price="2.00")
    updated = client.put(f"/api/products/{product.id}", json={"price": "1.999"}, headers=manager_headers)
    assert updated.status_code == 400


def test_stock_status_follows_configured_threshold(client, employee_headers, make_product, monkeypatch):
    monkeypatch.setattr(product_routes, "settings", replace(product_routes.settings, low_stock_threshold=3))
    make_product(name="Few", stock=2)
    make_product(name="Some", stock=5)

    low = client.get("/api/products", params={"stock_status": "lowStock"}, headers=employee_headers).json()
    in_stock = client.get("/api/products", params={"stock_status": "inStock"}, headers=employee_headers).json()

    assert [item["name"] for item in low["items"]] == ["Few"]
    assert [item["name"] for item in in_stock["items"]] == ["Some"]
