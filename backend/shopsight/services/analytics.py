"""
Analytics aggregator over the ingested store.

Pure read-side computations, all scoped by tenant:
- overview: totals plus month-to-date vs previous-month change
- orders by date, revenue trend (calendar month), order status breakdown
- top customers (total_spent DESC, id ASC) and top products by revenue
- webhook event statistics
- dashboard: all of the above bundled

Money is Decimal throughout and rounded half-up to two decimals.

Date windows:
- an order's date is processed_at, falling back to the Shopify created_at
  and then the local insert time
- a customer's "new" date is the Shopify created_at, falling back to the
  local insert time
- month windows are half-open: [first of month, first of next month)
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from shopsight.models.customer import Customer
from shopsight.models.order import Order, OrderItem
from shopsight.models.product import Product
from shopsight.models.tenant import as_utc
from shopsight.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
_HUNDRED = Decimal("100")

DASHBOARD_DAYS = 30
DASHBOARD_TOP_CUSTOMERS = 5
DASHBOARD_TREND_MONTHS = 12
DASHBOARD_TOP_PRODUCTS = 10


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Decimal:
    """DB aggregate (Decimal, float, int or None) -> two-decimal Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return _quantize(value)


def percentage_change(previous: Any, current: Any) -> Decimal:
    """
    Percentage change from `previous` to `current`.

    0 if both are zero, 100 if only previous is zero, else
    (current - previous) / previous * 100, rounded half-up to 2 decimals.
    """
    prev = Decimal(str(previous))
    curr = Decimal(str(current))
    if prev == 0:
        if curr == 0:
            return Decimal("0.00")
        return Decimal("100.00") if curr > 0 else Decimal("-100.00")
    return _quantize((curr - prev) / prev * _HUNDRED)


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """First day of the month `months` away from value's month."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@dataclass
class PeriodComparison:
    current: Any
    previous: Any
    change_percent: Decimal


@dataclass
class Overview:
    total_customers: int
    total_orders: int
    total_revenue: Decimal
    total_products: int
    average_order_value: Decimal
    new_customers: PeriodComparison
    orders: PeriodComparison
    revenue: PeriodComparison


@dataclass
class DailyOrders:
    date: date
    order_count: int
    revenue: Decimal


@dataclass
class CustomerRank:
    id: str
    shopify_customer_id: int
    name: str
    email: Optional[str]
    total_spent: Decimal
    orders_count: int


@dataclass
class MonthlyRevenue:
    month: str  # YYYY-MM
    order_count: int
    revenue: Decimal


@dataclass
class ProductRank:
    title: str
    quantity_sold: int
    revenue: Decimal


@dataclass
class StatusShare:
    status: str
    count: int
    percentage: Decimal


@dataclass
class EventStat:
    topic: str
    count: int
    last_received_at: Optional[datetime]


@dataclass
class Dashboard:
    overview: Overview
    orders_by_date: List[DailyOrders] = field(default_factory=list)
    top_customers: List[CustomerRank] = field(default_factory=list)
    revenue_trend: List[MonthlyRevenue] = field(default_factory=list)
    top_products: List[ProductRank] = field(default_factory=list)
    order_status: List[StatusShare] = field(default_factory=list)
    event_stats: List[EventStat] = field(default_factory=list)


class AnalyticsAggregator:
    """
    Read-only analytics for one tenant.

    SECURITY: every query is filtered by the tenant_id passed in from the
    verified tenant context.
    """

    def __init__(self, db_session: Session, tenant_id: str, now: Optional[datetime] = None):
        """
        Args:
            db_session: Database session
            tenant_id: Tenant ID from JWT
            now: Reference time for month/day windows (default: current UTC)

        Raises:
            ValueError: If tenant_id is empty or None
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.db = db_session
        self.tenant_id = tenant_id
        self.now = as_utc(now) if now else datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    @staticmethod
    def _order_date():
        return func.coalesce(Order.processed_at, Order.shopify_created_at, Order.created_at)

    @staticmethod
    def _customer_date():
        return func.coalesce(Customer.shopify_created_at, Customer.created_at)

    def _orders(self):
        return self.db.query(Order).filter(Order.tenant_id == self.tenant_id)

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    def overview(self) -> Overview:
        total_customers = self._count(Customer)
        total_products = self._count(Product)
        total_orders, total_revenue = self._order_totals()

        average = _quantize(total_revenue / total_orders) if total_orders else Decimal("0.00")

        this_month = month_start(self.now.date())
        current_start = _start_of_day(this_month)
        current_end = _start_of_day(add_months(this_month, 1))
        previous_start = _start_of_day(add_months(this_month, -1))

        new_current = self._new_customers(current_start, current_end)
        new_previous = self._new_customers(previous_start, current_start)
        orders_current, revenue_current = self._order_totals(current_start, current_end)
        orders_previous, revenue_previous = self._order_totals(previous_start, current_start)

        return Overview(
            total_customers=total_customers,
            total_orders=total_orders,
            total_revenue=total_revenue,
            total_products=total_products,
            average_order_value=average,
            new_customers=PeriodComparison(
                current=new_current,
                previous=new_previous,
                change_percent=percentage_change(new_previous, new_current),
            ),
            orders=PeriodComparison(
                current=orders_current,
                previous=orders_previous,
                change_percent=percentage_change(orders_previous, orders_current),
            ),
            revenue=PeriodComparison(
                current=revenue_current,
                previous=revenue_previous,
                change_percent=percentage_change(revenue_previous, revenue_current),
            ),
        )

    def _count(self, model) -> int:
        return (
            self.db.query(func.count(model.id))
            .filter(model.tenant_id == self.tenant_id)
            .scalar()
        ) or 0

    def _order_totals(self, start: Optional[datetime] = None, end: Optional[datetime] = None):
        query = self.db.query(func.count(Order.id), func.sum(Order.total_price)).filter(
            Order.tenant_id == self.tenant_id,
        )
        if start is not None:
            query = query.filter(self._order_date() >= start)
        if end is not None:
            query = query.filter(self._order_date() < end)
        count, revenue = query.one()
        return int(count or 0), to_money(revenue)

    def _new_customers(self, start: datetime, end: datetime) -> int:
        return (
            self.db.query(func.count(Customer.id))
            .filter(
                Customer.tenant_id == self.tenant_id,
                self._customer_date() >= start,
                self._customer_date() < end,
            )
            .scalar()
        ) or 0

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def orders_by_date(self, start_date: date, end_date: date) -> List[DailyOrders]:
        """Order count and revenue per calendar day in [start_date, end_date], ascending."""
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        order_date = self._order_date()
        rows = (
            self.db.query(order_date, Order.total_price)
            .filter(
                Order.tenant_id == self.tenant_id,
                order_date >= _start_of_day(start_date),
                order_date < _start_of_day(end_date + timedelta(days=1)),
            )
            .all()
        )

        buckets: Dict[date, List] = {}
        for moment, total_price in rows:
            day = _as_datetime(moment).date()
            bucket = buckets.setdefault(day, [0, Decimal("0")])
            bucket[0] += 1
            bucket[1] += to_money(total_price)

        return [
            DailyOrders(date=day, order_count=count, revenue=to_money(revenue))
            for day, (count, revenue) in sorted(buckets.items())
        ]

    def revenue_trend(self, months: int = DASHBOARD_TREND_MONTHS) -> List[MonthlyRevenue]:
        """Revenue per calendar month for the last `months` months (current included), ascending."""
        if months < 1:
            raise ValueError("months must be at least 1")

        this_month = month_start(self.now.date())
        first_month = add_months(this_month, -(months - 1))

        buckets: "OrderedDict[str, List]" = OrderedDict()
        for offset in range(months):
            buckets[add_months(first_month, offset).strftime("%Y-%m")] = [0, Decimal("0")]

        order_date = self._order_date()
        rows = (
            self.db.query(order_date, Order.total_price)
            .filter(
                Order.tenant_id == self.tenant_id,
                order_date >= _start_of_day(first_month),
                order_date < _start_of_day(add_months(this_month, 1)),
            )
            .all()
        )
        for moment, total_price in rows:
            key = _as_datetime(moment).strftime("%Y-%m")
            if key in buckets:
                buckets[key][0] += 1
                buckets[key][1] += to_money(total_price)

        return [
            MonthlyRevenue(month=month, order_count=count, revenue=to_money(revenue))
            for month, (count, revenue) in buckets.items()
        ]

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def top_customers(self, limit: int = DASHBOARD_TOP_CUSTOMERS) -> List[CustomerRank]:
        """Customers by total_spent DESC, ties broken by id ASC."""
        customers = (
            self.db.query(Customer)
            .filter(Customer.tenant_id == self.tenant_id)
            .order_by(Customer.total_spent.desc(), Customer.id.asc())
            .limit(max(limit, 0))
            .all()
        )
        return [
            CustomerRank(
                id=c.id,
                shopify_customer_id=c.shopify_customer_id,
                name=c.full_name,
                email=c.email,
                total_spent=to_money(c.total_spent),
                orders_count=c.orders_count or 0,
            )
            for c in customers
        ]

    def top_products(self, limit: int = DASHBOARD_TOP_PRODUCTS) -> List[ProductRank]:
        """
        Products by revenue = sum(price * quantity) per line-item title.

        Ranking covers every item before truncation; ties broken by title ASC.
        """
        title = func.coalesce(OrderItem.title, "")
        revenue = func.sum(OrderItem.price * OrderItem.quantity)
        rows = (
            self.db.query(title, func.sum(OrderItem.quantity), revenue)
            .filter(OrderItem.tenant_id == self.tenant_id)
            .group_by(title)
            .order_by(revenue.desc(), title.asc())
            .limit(max(limit, 0))
            .all()
        )
        return [
            ProductRank(title=row_title, quantity_sold=int(quantity or 0), revenue=to_money(row_revenue))
            for row_title, quantity, row_revenue in rows
        ]

    def order_status_breakdown(self) -> List[StatusShare]:
        """
        Count and share of orders per financial status.

        Sorted by count DESC then status; empty when the tenant has no orders.
        """
        rows = (
            self.db.query(Order.financial_status, func.count(Order.id))
            .filter(Order.tenant_id == self.tenant_id)
            .group_by(Order.financial_status)
            .all()
        )
        total = sum(count for _, count in rows)
        shares = []
        for status, count in rows:
            percentage = _quantize(Decimal(count) / Decimal(total) * _HUNDRED) if total else Decimal("0.00")
            shares.append(StatusShare(
                status=status.value if hasattr(status, "value") else str(status),
                count=count,
                percentage=percentage,
            ))
        shares.sort(key=lambda s: (-s.count, s.status))
        return shares

    def event_stats(self) -> List[EventStat]:
        """Recorded webhook events per topic."""
        rows = (
            self.db.query(WebhookEvent.topic, func.count(WebhookEvent.id), func.max(WebhookEvent.processed_at))
            .filter(WebhookEvent.tenant_id == self.tenant_id)
            .group_by(WebhookEvent.topic)
            .order_by(WebhookEvent.topic)
            .all()
        )
        return [
            EventStat(topic=topic, count=count, last_received_at=_as_datetime(last) if last else None)
            for topic, count, last in rows
        ]

    # ------------------------------------------------------------------
    # Bundle
    # ------------------------------------------------------------------

    def dashboard(self) -> Dashboard:
        today = self.now.date()
        result = Dashboard(
            overview=self.overview(),
            orders_by_date=self.orders_by_date(today - timedelta(days=DASHBOARD_DAYS), today),
            top_customers=self.top_customers(DASHBOARD_TOP_CUSTOMERS),
            revenue_trend=self.revenue_trend(DASHBOARD_TREND_MONTHS),
            top_products=self.top_products(DASHBOARD_TOP_PRODUCTS),
            order_status=self.order_status_breakdown(),
            event_stats=self.event_stats(),
        )
        logger.debug("Dashboard computed", extra={"tenant_id": self.tenant_id})
        return result


def _as_datetime(value: Any) -> datetime:
    """
    Normalize a DB timestamp to an aware UTC datetime.

    coalesce() over DateTime columns comes back as a string on SQLite.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return as_utc(value)
