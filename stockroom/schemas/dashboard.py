from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from stockroom.schemas.inventory import ExpenseByCategoryOut, ProductOut


class GrowthOut(BaseModel):
    current: int
    previous: int
    change_percentage: float


class TotalChangeOut(BaseModel):
    total: Decimal
    change_percentage: float


class DashboardStatisticsOut(BaseModel):
    total_products: int
    total_inventory_value: Decimal
    total_users: int
    low_stock_products: int
    total_sales_value: Decimal
    total_purchases_value: Decimal
    recent_activity_count: int
    customer_growth: GrowthOut
    sales_stats: TotalChangeOut
    expenses_stats: TotalChangeOut


class DailyTotalOut(BaseModel):
    date: date
    total: Decimal
    change_percentage: float | None = None


class DashboardMetricsOut(BaseModel):
    popular_products: list[ProductOut]
    sales_summary: list[DailyTotalOut]
    purchase_summary: list[DailyTotalOut]
    expense_summary: list[DailyTotalOut]
    expense_by_category_summary: list[ExpenseByCategoryOut]
    statistics: DashboardStatisticsOut
