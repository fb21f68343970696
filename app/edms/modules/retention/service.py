"""
Retention Scheduler.

Disposal date = cutoff date (from the cutoff trigger) + retention period.
Permanent records have no disposal date. Missing classification yields None,
never an error; many requests are never classified.
"""
from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from app.edms.modules.retention.catalog import SsicRecord, record_from_mapping, record_from_request

logger = logging.getLogger(__name__)

FISCAL_YEAR_START_MONTH = 10  # October 1
EVENT_TRIGGERS = frozenset({"EVENT", "EVENT_BASED", "CASE_CLOSURE", "SEPARATION"})
PERMANENT_LABEL = "Permanent"
UNKNOWN_LABEL = "Unknown"
UNCLASSIFIED_LABEL = "Unclassified"


def as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _resolve_record(record: Any) -> SsicRecord | None:
    if record is None:
        return None
    if isinstance(record, SsicRecord):
        return record
    if isinstance(record, Mapping):
        return record_from_mapping(record)
    return record_from_request(record)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    y, m = divmod(d.month - 1 + months, 12)
    year = d.year + y
    month = m + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def calculate_cutoff_date(trigger: str | None, reference_date: Any, event_date: Any = None) -> date | None:
    ref = as_date(reference_date)
    if ref is None:
        return None
    t = str(trigger or "").strip().upper()
    if t == "FISCAL_YEAR":
        year = ref.year + 1 if ref.month >= FISCAL_YEAR_START_MONTH else ref.year
        return date(year, 9, 30)
    if t in EVENT_TRIGGERS:
        return as_date(event_date) or ref
    if t == "IMMEDIATE":
        return ref
    # CALENDAR_YEAR, UNSPECIFIED and anything unrecognized
    return date(ref.year, 12, 31)


def add_retention(start: date, value: int | None, unit: str | None) -> date | None:
    if value is None:
        return None
    u = str(unit or "").strip().upper()
    if u == "YEARS":
        return add_months(start, 12 * value)
    if u == "MONTHS":
        return add_months(start, value)
    if u == "DAYS":
        return start + timedelta(days=value)
    return None


def calculate_disposal_date(record: Any, reference_date: Any, event_date: Any = None) -> date | None:
    """
    Disposal-eligibility date for a classified record, or None when the record
    is permanent, unclassified, event-driven without a period, or undated.
    """
    rec = _resolve_record(record)
    if rec is None or rec.is_permanent:
        return None
    if rec.retention_value is None or rec.retention_unit in ("EVENT_BASED", "UNSPECIFIED"):
        return None
    cutoff = calculate_cutoff_date(rec.cutoff_trigger, reference_date, event_date)
    if cutoff is None:
        return None
    return add_retention(cutoff, rec.retention_value, rec.retention_unit)


def reference_date_for(request: Any) -> date | None:
    """`filed_at` once filed, otherwise the creation date (preview)."""
    return as_date(getattr(request, "filed_at", None)) or as_date(getattr(request, "created_at", None))


def disposal_date_for(request: Any) -> date | None:
    return calculate_disposal_date(request, reference_date_for(request))


def disposal_year_label(request: Any) -> str:
    if getattr(request, "is_permanent", False):
        return PERMANENT_LABEL
    d = disposal_date_for(request)
    return str(d.year) if d else UNKNOWN_LABEL


def bucket_label(request: Any) -> str:
    return (
        str(getattr(request, "ssic_bucket_title", None) or "").strip()
        or str(getattr(request, "ssic_bucket", None) or "").strip()
        or UNCLASSIFIED_LABEL
    )


def _year_sort_key(label: str) -> tuple[int, int]:
    if label.isdigit():
        return (0, int(label))
    return (1, 0) if label == PERMANENT_LABEL else (2, 0)


def group_filed_by_disposal_year(requests: Iterable[Any]) -> dict[str, dict[str, list[Any]]]:
    """
    Filed requests grouped by disposal year, then by classification bucket.

    Years ascend; "Permanent" and then "Unknown" follow. Unfiled requests are
    skipped.
    """
    grouped: dict[str, dict[str, list[Any]]] = {}
    for r in requests:
        if getattr(r, "filed_at", None) is None:
            continue
        year = disposal_year_label(r)
        grouped.setdefault(year, {}).setdefault(bucket_label(r), []).append(r)
    return {k: grouped[k] for k in sorted(grouped, key=_year_sort_key)}


def format_retention(record: Any) -> str:
    rec = _resolve_record(record)
    if rec is None:
        return "Retention not specified"
    if rec.is_permanent:
        return "Permanent - Transfer to NARA"
    if rec.retention_unit == "EVENT_BASED":
        return "Destroy when obsolete/superseded"
    if rec.retention_value is None:
        return "Retention not specified"
    unit = {"YEARS": "year", "MONTHS": "month"}.get(rec.retention_unit, "day")
    return f"{rec.retention_value} {unit}{'' if rec.retention_value == 1 else 's'}"


def format_cutoff(trigger: str | None) -> str:
    return {
        "CALENDAR_YEAR": "End of Calendar Year",
        "FISCAL_YEAR": "End of Fiscal Year",
        "CASE_CLOSURE": "Case Closure",
        "SEPARATION": "Separation",
        "EVENT": "Event Date",
        "EVENT_BASED": "Event-Based",
        "IMMEDIATE": "Record Date",
    }.get(str(trigger or "").strip().upper(), "Unspecified")


def disposal_summary(record: Any) -> str:
    rec = _resolve_record(record)
    if rec is not None and rec.is_permanent:
        return "PERMANENT: Transfer to National Archives"
    trigger = rec.cutoff_trigger if rec is not None else None
    return f"TEMPORARY: {format_retention(rec)} after {format_cutoff(trigger)}"


def disposal_status(record: Any, reference_date: Any, today: date | None = None) -> dict[str, Any]:
    """Whether a record is eligible for disposal as of `today`, and how long until it is."""
    rec = _resolve_record(record)
    today = today or date.today()
    disposal = calculate_disposal_date(rec, reference_date)
    permanent = bool(rec and rec.is_permanent)
    days_remaining = (disposal - today).days if disposal else None
    return {
        "permanent": permanent,
        "disposal_date": disposal.isoformat() if disposal else None,
        "eligible": bool(disposal and disposal <= today),
        "days_remaining": max(days_remaining, 0) if days_remaining is not None else None,
        "summary": disposal_summary(rec),
    }


def disposal_preview(request: Any, today: date | None = None) -> dict[str, Any]:
    rec = record_from_request(request)
    ref = reference_date_for(request)
    status = disposal_status(rec, ref, today)
    status.update(
        {
            "request_id": getattr(request, "id", None),
            "ssic": rec.ssic if rec else None,
            "reference_date": ref.isoformat() if ref else None,
            "filed": getattr(request, "filed_at", None) is not None,
            "year": disposal_year_label(request),
            "bucket": bucket_label(request),
            "retention": format_retention(rec),
            "cutoff": format_cutoff(rec.cutoff_trigger if rec else None),
        }
    )
    if rec is None:
        logger.debug("Disposal preview for unclassified request id=%s", getattr(request, "id", None))
    return status
