"""
Dashboard aggregation over the usage ledger.

Every reader is scoped to the keys owned by one user and recomputed from raw
usage_events rows on each call. There is no cache or rollup table.

Counts and top-N breakdowns are GROUP BY queries. Time bucketing happens in
Python over (timestamp, status, latency) tuples so the same code runs on
Postgres and SQLite.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.api_key import ApiKey
from app.models.usage import STATUS_ERROR, STATUS_SUCCESS, UsageEvent
from app.schemas.analytics import (
    AnalyticsOut,
    AnalyticsStatsOut,
    ChartBucketOut,
    DashboardActivityOut,
    DashboardStatsOut,
    ErrorBreakdownOut,
    TopEndpointOut,
    TopKeyOut,
    UsageActivityOut,
    UsageChartDayOut,
    UsageSummaryOut,
)

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, datetime.timedelta] = {
    "24h": datetime.timedelta(hours=24),
    "7d": datetime.timedelta(days=7),
    "30d": datetime.timedelta(days=30),
    "90d": datetime.timedelta(days=90),
}
ANALYTICS_DEFAULT_RANGE = "30d"
USAGE_RANGES = ("24h", "7d", "30d")
USAGE_DEFAULT_RANGE = "7d"

TOP_N = 5
RECENT_N = 10

_DAY = datetime.timedelta(days=1)
_HOUR = datetime.timedelta(hours=1)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(ts: datetime.datetime) -> datetime.datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def _hour_key(ts: datetime.datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:00:00.000Z")


def _day_key(ts: datetime.datetime) -> str:
    return ts.strftime("%Y-%m-%d")


async def _user_keys(session: AsyncSession, user_id: str) -> Sequence[ApiKey]:
    result = await session.execute(select(ApiKey).where(ApiKey.user_id == user_id))
    return result.scalars().all()


# ── /api/analytics ──────────────────────────────────────────
async def get_analytics(
    session: AsyncSession,
    user_id: str,
    time_range: str = ANALYTICS_DEFAULT_RANGE,
    now: datetime.datetime | None = None,
) -> AnalyticsOut:
    """
    Request/error/latency buckets plus top keys and error types.

    24h uses hourly buckets, every other range daily. Unknown ranges fall
    back to 30d. Empty buckets are included so charts have a continuous axis.
    """
    if time_range not in TIME_RANGES:
        time_range = ANALYTICS_DEFAULT_RANGE
    now = now or _utcnow()
    start = now - TIME_RANGES[time_range]

    keys = await _user_keys(session, user_id)
    if not keys:
        return AnalyticsOut(
            chart_data=[],
            stats=AnalyticsStatsOut(
                total_requests=0,
                total_errors=0,
                error_rate=0,
                avg_response_time=0,
                success_rate=100,
            ),
            top_keys=[],
            error_breakdown=[],
            time_range=time_range,
            last_updated=now,
        )

    key_ids = [k.id for k in keys]
    in_range = (
        UsageEvent.api_key_id.in_(key_ids),
        UsageEvent.timestamp >= start,
        UsageEvent.timestamp <= now,
    )

    rows = (
        await session.execute(
            select(
                UsageEvent.timestamp,
                UsageEvent.status,
                UsageEvent.response_time_ms,
            )
            .where(*in_range)
            .order_by(UsageEvent.timestamp.asc())
        )
    ).all()

    # ── Buckets ─────────────────────────────────────────────
    hourly = time_range == "24h"
    bucket_key = _hour_key if hourly else _day_key
    step = _HOUR if hourly else _DAY

    buckets: dict[str, dict[str, int]] = {}
    cursor = start
    while cursor <= now:
        buckets[bucket_key(cursor)] = {"requests": 0, "errors": 0, "latency": 0}
        cursor += step
    buckets.setdefault(bucket_key(now), {"requests": 0, "errors": 0, "latency": 0})

    total_errors = 0
    total_latency = 0
    for row in rows:
        bucket = buckets.get(bucket_key(_as_utc(row.timestamp)))
        if bucket is None:
            continue
        bucket["requests"] += 1
        bucket["latency"] += row.response_time_ms
        total_latency += row.response_time_ms
        if row.status == STATUS_ERROR:
            bucket["errors"] += 1
            total_errors += 1

    chart = [
        ChartBucketOut(
            date=key,
            requests=b["requests"],
            errors=b["errors"],
            avg_response_time=round(b["latency"] / b["requests"]) if b["requests"] else 0,
        )
        for key, b in buckets.items()
    ]

    total = len(rows)
    error_rate = total_errors / total * 100 if total else 0.0

    # ── Top keys ────────────────────────────────────────────
    names = {k.id: k.name for k in keys}
    per_key = (
        await session.execute(
            select(UsageEvent.api_key_id, func.count().label("usage"))
            .where(*in_range)
            .group_by(UsageEvent.api_key_id)
        )
    ).all()
    usage_by_name: dict[str, int] = {}
    for row in per_key:
        name = names.get(row.api_key_id, "Unknown")
        usage_by_name[name] = usage_by_name.get(name, 0) + row.usage
    top_keys = [
        TopKeyOut(name=name, usage=usage, percentage=_percent(usage, total))
        for name, usage in sorted(usage_by_name.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N]
    ]

    # ── Error types ─────────────────────────────────────────
    error_count = func.count().label("count")
    per_error = (
        await session.execute(
            select(UsageEvent.error_type, error_count)
            .where(
                *in_range,
                UsageEvent.status == STATUS_ERROR,
                UsageEvent.error_type.is_not(None),
            )
            .group_by(UsageEvent.error_type)
            .order_by(error_count.desc())
            .limit(TOP_N)
        )
    ).all()

    return AnalyticsOut(
        chart_data=chart,
        stats=AnalyticsStatsOut(
            total_requests=total,
            total_errors=total_errors,
            error_rate=round(error_rate, 2),
            avg_response_time=round(total_latency / total) if total else 0,
            success_rate=round(100 - error_rate, 2),
        ),
        top_keys=top_keys,
        error_breakdown=[
            ErrorBreakdownOut(type=row.error_type, count=row.count) for row in per_error
        ],
        time_range=time_range,
        last_updated=now,
    )


# ── /api/usage ──────────────────────────────────────────────
async def get_usage_summary(
    session: AsyncSession,
    user_id: str,
    time_range: str = USAGE_DEFAULT_RANGE,
    now: datetime.datetime | None = None,
) -> UsageSummaryOut:
    """Totals, top endpoints, recent calls and a daily success/failure chart."""
    if time_range not in USAGE_RANGES:
        time_range = USAGE_DEFAULT_RANGE
    now = now or _utcnow()
    start = now - TIME_RANGES[time_range]

    keys = await _user_keys(session, user_id)
    if not keys:
        return UsageSummaryOut(
            total_requests=0,
            successful_requests=0,
            failed_requests=0,
            total_tokens=0,
            average_response_time=0,
            requests_today=0,
            requests_this_week=0,
            requests_this_month=0,
            top_endpoints=[],
            recent_activity=[],
            chart_data=[],
        )

    events = (
        await session.execute(
            select(UsageEvent)
            .where(
                UsageEvent.api_key_id.in_([k.id for k in keys]),
                UsageEvent.timestamp >= start,
            )
            .order_by(UsageEvent.timestamp.desc())
        )
    ).scalars().all()

    total = len(events)
    successful = sum(1 for e in events if e.status == STATUS_SUCCESS)

    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - datetime.timedelta(days=7)
    month_start = today - datetime.timedelta(days=30)
    stamps = [_as_utc(e.timestamp) for e in events]

    endpoint_counts: dict[str, int] = {}
    for e in events:
        endpoint_counts[e.endpoint] = endpoint_counts.get(e.endpoint, 0) + 1
    top_endpoints = [
        TopEndpointOut(endpoint=ep, requests=n, percentage=_percent(n, total))
        for ep, n in sorted(endpoint_counts.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N]
    ]

    days: dict[str, dict[str, int]] = {}
    day = start.date()
    while day <= now.date():
        days[day.isoformat()] = {"successful": 0, "failed": 0, "total": 0}
        day += _DAY
    for e, ts in zip(events, stamps):
        entry = days.setdefault(_day_key(ts), {"successful": 0, "failed": 0, "total": 0})
        entry["total"] += 1
        entry["successful" if e.status == STATUS_SUCCESS else "failed"] += 1

    return UsageSummaryOut(
        total_requests=total,
        successful_requests=successful,
        failed_requests=total - successful,
        total_tokens=sum(e.tokens for e in events),
        average_response_time=round(sum(e.response_time_ms for e in events) / total) if total else 0,
        requests_today=sum(1 for ts in stamps if ts >= today),
        requests_this_week=sum(1 for ts in stamps if ts >= week_start),
        requests_this_month=sum(1 for ts in stamps if ts >= month_start),
        top_endpoints=top_endpoints,
        recent_activity=[
            UsageActivityOut(
                id=e.id,
                timestamp=ts,
                endpoint=e.endpoint,
                status=e.status,
                response_time=e.response_time_ms,
                tokens=e.tokens,
            )
            for e, ts in zip(events[:RECENT_N], stamps[:RECENT_N])
        ],
        chart_data=[UsageChartDayOut(date=d, **v) for d, v in sorted(days.items())],
    )


# ── /api/dashboard/stats ────────────────────────────────────
async def get_dashboard_stats(
    session: AsyncSession,
    user_id: str,
    now: datetime.datetime | None = None,
) -> DashboardStatsOut:
    """Headline numbers for the dashboard landing page."""
    now = now or _utcnow()
    month_ago = now - datetime.timedelta(days=30)
    two_months_ago = now - datetime.timedelta(days=60)
    week_ago = now - datetime.timedelta(days=7)

    keys = await _user_keys(session, user_id)
    key_ids: list[uuid.UUID] = [k.id for k in keys]
    names = {k.id: k.name for k in keys}

    async def _count(*conditions) -> int:  # type: ignore[no-untyped-def]
        if not key_ids:
            return 0
        stmt = select(func.count()).select_from(UsageEvent).where(
            UsageEvent.api_key_id.in_(key_ids), *conditions,
        )
        return (await session.execute(stmt)).scalar_one()

    total_calls = await _count()
    successful_calls = await _count(UsageEvent.status == STATUS_SUCCESS)
    this_month = await _count(UsageEvent.timestamp >= month_ago)
    last_month = await _count(
        UsageEvent.timestamp >= two_months_ago,
        UsageEvent.timestamp < month_ago,
    )

    if last_month:
        change = (this_month - last_month) / last_month * 100
    else:
        change = 100.0 if this_month else 0.0

    recent: Sequence[UsageEvent] = []
    if key_ids:
        recent = (
            await session.execute(
                select(UsageEvent)
                .where(UsageEvent.api_key_id.in_(key_ids))
                .order_by(UsageEvent.timestamp.desc())
                .limit(RECENT_N)
            )
        ).scalars().all()

    return DashboardStatsOut(
        total_api_calls=total_calls,
        active_api_keys=sum(1 for k in keys if k.is_active),
        success_rate=successful_calls / total_calls * 100 if total_calls else 0.0,
        api_calls_change=change,
        keys_created_this_week=sum(1 for k in keys if _as_utc(k.created_at) >= week_ago),
        recent_activity=[
            DashboardActivityOut(
                id=e.id,
                action=f"API call to {e.endpoint or 'unknown endpoint'}",
                key_name=names.get(e.api_key_id, "Unknown Key"),
                timestamp=_as_utc(e.timestamp),
                status=e.status,
            )
            for e in recent
        ],
    )
