"""
Dashboard Metrics Service

Aggregates the requests visible to the viewer:
  - counts per status, active queue size, needs-action count
  - completed month-to-date
  - amounts overall / per status / per category
  - creation trends: daily (7 days), monthly (Jan–Dec), yearly (3 years)
  - average AI completeness score
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from auditpack.models.auth import Profile
from auditpack.models.request import (
    ACTIVE_STATUSES,
    ARCHIVE_STATUSES,
    REQUEST_STATUSES,
    STATUS_CHANGES_REQUESTED,
)
from auditpack.services.access_control import visible_requests_query

_MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


def get_trends(created: list[datetime], now: datetime) -> dict:
    today = now.date()
    daily = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        daily.append({
            "label": day.strftime("%a"),
            "date": day.isoformat(),
            "count": sum(1 for c in created if c.date() == day),
        })

    monthly = [
        {"label": _MONTH_LABELS[m - 1],
         "count": sum(1 for c in created if c.year == now.year and c.month == m)}
        for m in range(1, 13)
    ]

    yearly = [
        {"label": str(year), "count": sum(1 for c in created if c.year == year)}
        for year in range(now.year - 2, now.year + 1)
    ]
    return {"daily": daily, "monthly": monthly, "yearly": yearly}


def get_dashboard_stats(actor: Profile, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    requests = visible_requests_query(actor).all()

    by_status = {status: 0 for status in sorted(REQUEST_STATUSES)}
    amount_by_status: dict[str, Decimal] = defaultdict(Decimal)
    amount_by_category: dict[str, Decimal] = defaultdict(Decimal)
    total_amount = Decimal("0")
    scores = []
    created = []
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    completed_mtd = 0

    for req in requests:
        amount = Decimal(str(req.total_amount or 0))
        by_status[req.status] = by_status.get(req.status, 0) + 1
        amount_by_status[req.status] += amount
        amount_by_category[req.category] += amount
        total_amount += amount
        if req.ai_completeness_score is not None:
            scores.append(req.ai_completeness_score)
        created_at = _as_utc(req.created_at)
        if created_at is None:
            continue
        created.append(created_at)
        if req.status in ARCHIVE_STATUSES and created_at >= month_start:
            completed_mtd += 1

    return {
        "total": len(requests),
        "by_status": by_status,
        "active": sum(by_status.get(s, 0) for s in ACTIVE_STATUSES),
        "needs_action": by_status.get(STATUS_CHANGES_REQUESTED, 0),
        "completed_this_month": completed_mtd,
        "total_amount": _money(total_amount),
        "amount_by_status": {k: _money(v) for k, v in amount_by_status.items()},
        "amount_by_category": {k: _money(v) for k, v in amount_by_category.items()},
        "average_ai_score": round(sum(scores) / len(scores), 1) if scores else None,
        "trends": get_trends(created, now),
    }
