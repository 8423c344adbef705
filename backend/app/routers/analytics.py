"""
Analytics router: dashboard reads over the usage ledger.

Session-authenticated. Every response covers only the caller's own keys and
is recomputed from raw usage_events on each request.

Endpoints:
  GET /api/analytics?range=24h|7d|30d|90d  bucketed traffic, top keys, error types
  GET /api/usage?range=24h|7d|30d          totals, top endpoints, recent calls
  GET /api/dashboard/stats                 landing-page headline numbers
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.core.database import get_db_session
from app.models.user import User
from app.schemas.analytics import AnalyticsOut, DashboardStatsOut, UsageSummaryOut
from app.services.analytics import (
    ANALYTICS_DEFAULT_RANGE,
    USAGE_DEFAULT_RANGE,
    get_analytics,
    get_dashboard_stats,
    get_usage_summary,
)

router = APIRouter(tags=["Analytics"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]


@router.get(
    "/analytics",
    response_model=AnalyticsOut,
    summary="Request volume, errors and latency over time",
    description=(
        "Hourly buckets for 24h, daily otherwise. "
        "Unknown ranges fall back to 30d."
    ),
)
async def analytics(
    session: DbSession,
    user: CurrentUser,
    time_range: str = Query(
        default=ANALYTICS_DEFAULT_RANGE,
        alias="range",
        examples=["24h", "7d", "30d", "90d"],
    ),
) -> AnalyticsOut:
    return await get_analytics(session, user.id, time_range)


@router.get(
    "/usage",
    response_model=UsageSummaryOut,
    summary="Usage totals and recent activity",
)
async def usage(
    session: DbSession,
    user: CurrentUser,
    time_range: str = Query(
        default=USAGE_DEFAULT_RANGE,
        alias="range",
        examples=["24h", "7d", "30d"],
    ),
) -> UsageSummaryOut:
    return await get_usage_summary(session, user.id, time_range)


@router.get(
    "/dashboard/stats",
    response_model=DashboardStatsOut,
    summary="Dashboard headline numbers",
)
async def dashboard_stats(session: DbSession, user: CurrentUser) -> DashboardStatsOut:
    return await get_dashboard_stats(session, user.id)
