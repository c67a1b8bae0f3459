"""
Analytics dashboard routes.

SECURITY: All routes require valid tenant context from JWT; every query is
scoped to that tenant.
"""

import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopsight.api.schemas.dashboard import (
    CustomerRankResponse,
    DailyOrdersResponse,
    DashboardResponse,
    EventStatResponse,
    MonthlyRevenueResponse,
    OverviewResponse,
    ProductRankResponse,
    StatusShareResponse,
)
from shopsight.database.session import get_db_session
from shopsight.platform.tenant_context import TenantContext, get_tenant_context
from shopsight.services.analytics import AnalyticsAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def get_analytics(
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    db_session: Session = Depends(get_db_session),
) -> AnalyticsAggregator:
    """Analytics aggregator scoped to the current tenant."""
    return AnalyticsAggregator(db_session, tenant_ctx.tenant_id)


@router.get("", response_model=DashboardResponse)
def dashboard(analytics: AnalyticsAggregator = Depends(get_analytics)):
    """Overview, 30-day orders, top 5 customers, 12-month trend, top 10 products, statuses, events."""
    return DashboardResponse.model_validate(analytics.dashboard())


@router.get("/stats", response_model=OverviewResponse)
def overview(analytics: AnalyticsAggregator = Depends(get_analytics)):
    return OverviewResponse.model_validate(analytics.overview())


@router.get("/orders-by-date", response_model=List[DailyOrdersResponse])
def orders_by_date(
    start_date: date = Query(..., description="First day (inclusive)"),
    end_date: date = Query(..., description="Last day (inclusive)"),
    analytics: AnalyticsAggregator = Depends(get_analytics),
):
    try:
        rows = analytics.orders_by_date(start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [DailyOrdersResponse.model_validate(r) for r in rows]


@router.get("/top-customers", response_model=List[CustomerRankResponse])
def top_customers(
    limit: int = Query(5, ge=1, le=100),
    analytics: AnalyticsAggregator = Depends(get_analytics),
):
    return [CustomerRankResponse.model_validate(r) for r in analytics.top_customers(limit)]


@router.get("/revenue-trends", response_model=List[MonthlyRevenueResponse])
def revenue_trends(
    months: int = Query(12, ge=1, le=60),
    analytics: AnalyticsAggregator = Depends(get_analytics),
):
    return [MonthlyRevenueResponse.model_validate(r) for r in analytics.revenue_trend(months)]


@router.get("/top-products", response_model=List[ProductRankResponse])
def top_products(
    limit: int = Query(10, ge=1, le=100),
    analytics: AnalyticsAggregator = Depends(get_analytics),
):
    return [ProductRankResponse.model_validate(r) for r in analytics.top_products(limit)]


@router.get("/order-status", response_model=List[StatusShareResponse])
def order_status(analytics: AnalyticsAggregator = Depends(get_analytics)):
    return [StatusShareResponse.model_validate(r) for r in analytics.order_status_breakdown()]


@router.get("/events", response_model=List[EventStatResponse])
def event_stats(analytics: AnalyticsAggregator = Depends(get_analytics)):
    return [EventStatResponse.model_validate(r) for r in analytics.event_stats()]
