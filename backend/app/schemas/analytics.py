"""
Pydantic v2 response schemas for the dashboard analytics endpoints.

Every schema serializes camelCase to match the dashboard's chart components.
"""

from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── /api/analytics ──────────────────────────────────────────
class ChartBucketOut(_CamelModel):
    """One hour (24h range) or one day of traffic."""

    date: str
    requests: int
    errors: int
    avg_response_time: int


class AnalyticsStatsOut(_CamelModel):
    total_requests: int
    total_errors: int
    error_rate: float
    avg_response_time: int
    success_rate: float


class TopKeyOut(_CamelModel):
    name: str
    usage: int
    percentage: int


class ErrorBreakdownOut(_CamelModel):
    type: str
    count: int


class AnalyticsOut(_CamelModel):
    chart_data: list[ChartBucketOut]
    stats: AnalyticsStatsOut
    top_keys: list[TopKeyOut]
    error_breakdown: list[ErrorBreakdownOut]
    time_range: str
    last_updated: datetime.datetime


# ── /api/usage ──────────────────────────────────────────────
class TopEndpointOut(_CamelModel):
    endpoint: str
    requests: int
    percentage: int


class UsageActivityOut(_CamelModel):
    id: uuid.UUID
    timestamp: datetime.datetime
    endpoint: str
    status: str
    response_time: int
    tokens: int


class UsageChartDayOut(_CamelModel):
    date: str
    successful: int
    failed: int
    total: int


class UsageSummaryOut(_CamelModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_tokens: int
    average_response_time: int
    requests_today: int
    requests_this_week: int
    requests_this_month: int
    top_endpoints: list[TopEndpointOut]
    recent_activity: list[UsageActivityOut]
    chart_data: list[UsageChartDayOut]


# ── /api/dashboard/stats ────────────────────────────────────
class DashboardActivityOut(_CamelModel):
    id: uuid.UUID
    action: str
    key_name: str
    timestamp: datetime.datetime
    status: str


class DashboardStatsOut(_CamelModel):
    total_api_calls: int
    active_api_keys: int
    success_rate: float
    api_calls_change: float
    keys_created_this_week: int
    recent_activity: list[DashboardActivityOut]
