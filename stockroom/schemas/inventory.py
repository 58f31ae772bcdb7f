from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from stockroom.models.inventory import StockMovementType

StockStatus = Literal["inStock", "lowStock", "outOfStock"]
ProductSortField = Literal["name", "price", "stock", "createdAt"]
SortOrder = Literal["asc", "desc"]


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None


class CategoryBrief(BaseModel):
    id: int
    name: str
    description: str | None

    model_config = {"from_attributes": True}


class CategoryOut(CategoryBrief):
    product_count: int = 0
    created_at: datetime
    updated_at: datetime


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: str | None = None
    sku: str | None = Field(default=None, min_length=1, max_length=64)
    price: Decimal = Field(gt=0, decimal_places=2)
    rating: float | None = Field(default=None, ge=0, le=5)
    stock_quantity: int = Field(default=0, ge=0)
    category_id: int | None = None
    image_url: str | None = Field(default=None, max_length=512, pattern=r"^https?://")


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    description: str | None = None
    sku: str | None = Field(default=None, min_length=1, max_length=64)
    price: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    rating: float | None = Field(default=None, ge=0, le=5)
    stock_quantity: int | None = Field(default=None, ge=0)
    category_id: int | None = None
    image_url: str | None = Field(default=None, max_length=512, pattern=r"^https?://")


class ProductOut(BaseModel):
    id: int
    name: str
    description: str | None
    sku: str | None
    price: Decimal
    rating: float | None
    stock_quantity: int
    image_url: str | None
    category_id: int | None
    category: CategoryBrief | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductPage(BaseModel):
    items: list[ProductOut]
    page: int
    limit: int
    total: int
    total_pages: int


class StockAdjustRequest(BaseModel):
    product_id: int
    quantity: int = Field(description="Target stock level for ADJUSTMENT, units returned for RETURN")
    movement_type: StockMovementType
    reason: str | None = Field(default=None, max_length=255)


class StockMovementOut(BaseModel):
    id: int
    product_id: int
    user_id: int | None
    movement_type: StockMovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockAdjustmentOut(BaseModel):
    product: ProductOut
    movement: StockMovementOut


class StockMovementPage(BaseModel):
    items: list[StockMovementOut]
    total: int
    limit: int
    offset: int


class SaleCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0, decimal_places=2)


class SaleOut(BaseModel):
    id: int
    product_id: int
    user_id: int | None
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    sold_at: datetime

    model_config = {"from_attributes": True}


class SalePage(BaseModel):
    items: list[SaleOut]
    total: int
    limit: int
    offset: int


class PurchaseCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(gt=0, decimal_places=2)


class PurchaseOut(BaseModel):
    id: int
    product_id: int
    user_id: int | None
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    purchased_at: datetime

    model_config = {"from_attributes": True}


class PurchasePage(BaseModel):
    items: list[PurchaseOut]
    total: int
    limit: int
    offset: int


class ExpenseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=160)
    description: str | None = None
    category: str = Field(min_length=1, max_length=120)
    amount: Decimal = Field(gt=0, decimal_places=2)
    incurred_at: datetime | None = None


class ExpenseUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=160)
    description: str | None = None
    category: str | None = Field(default=None, min_length=1, max_length=120)
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    incurred_at: datetime | None = None


class ExpenseOut(BaseModel):
    id: int
    created_by_user_id: int | None
    title: str
    description: str | None
    category: str
    amount: Decimal
    incurred_at: datetime

    model_config = {"from_attributes": True}


class ExpenseByCategoryOut(BaseModel):
    category: str
    date: date
    amount: Decimal
