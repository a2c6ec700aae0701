# Overview: Append-only activity feed of business events shown on the dashboard.

from __future__ import annotations

from ..models import Activity, new_id
from ..time_utils import normalize_timestamp
from . import gateway
from .concurrency import run_command

ACTIVITY_TYPES = {"sale", "purchase", "inventory", "customer", "supplier", "payroll", "expense", "system"}


def append_activity(
    activity_type: str,
    description: str,
    *,
    user: str | None = None,
    ref_id: str | None = None,
    ref_type: str | None = None,
    timestamp=None,
) -> Activity:
    """Record one activity entry; joins the caller's command when there is one."""
    activity = Activity(
        id=new_id(),
        type=activity_type if activity_type in ACTIVITY_TYPES else "system",
        description=description,
        timestamp=normalize_timestamp(timestamp),
        user=user,
        ref_id=ref_id,
        ref_type=ref_type,
    )
    run_command(lambda: gateway.put(gateway.ACTIVITY_LOGS, activity.to_dict()), "append_activity")
    return activity


def recent_activities(limit: int = 100) -> list[dict]:
    records = gateway.get_all(gateway.ACTIVITY_LOGS)
    # Newest first; stable on equal timestamps by reverse insertion order
    records.reverse()
    records.sort(key=lambda r: r.get("timestamp") or "", reverse=True)
    return records[: max(0, int(limit))]
