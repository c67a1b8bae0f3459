"""
Response schemas for the analytics dashboard API.

Money is serialized as Decimal (two-decimal scale).
"""

import datetime as dt
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict


class _FromService(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PeriodComparisonResponse(_FromService):
    current: Union[int, Decimal]
    previous: Union[int, Decimal]
    change_percent: Decimal


class OverviewResponse(_FromService):
    total_customers: int
    total_orders: int
    total_revenue: Decimal
    total_products: int
    average_order_value: Decimal
    new_customers: PeriodComparisonResponse
    orders: PeriodComparisonResponse
    revenue: PeriodComparisonResponse


class DailyOrdersResponse(_FromService):
    date: dt.date
    order_count: int
    revenue: Decimal


class CustomerRankResponse(_FromService):
    id: str
    shopify_customer_id: int
    name: str
    email: Optional[str]
    total_spent: Decimal
    orders_count: int


class MonthlyRevenueResponse(_FromService):
    month: str
    order_count: int
    revenue: Decimal


class ProductRankResponse(_FromService):
    title: str
    quantity_sold: int
    revenue: Decimal


class StatusShareResponse(_FromService):
    status: str
    count: int
    percentage: Decimal


class EventStatResponse(_FromService):
    topic: str
    count: int
    last_received_at: Optional[dt.datetime]


class DashboardResponse(_FromService):
    overview: OverviewResponse
    orders_by_date: List[DailyOrdersResponse]
    top_customers: List[CustomerRankResponse]
    revenue_trend: List[MonthlyRevenueResponse]
    top_products: List[ProductRankResponse]
    order_status: List[StatusShareResponse]
    event_stats: List[EventStatResponse]
