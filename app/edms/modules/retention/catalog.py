"""
SSIC classification records.

The catalog itself (nomenclature, buckets, disposition text) is supplied by
the classification collaborator; this module only normalizes a record and
derives retention fields from free-text disposition instructions.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

CUTOFF_TRIGGERS = (
    "CALENDAR_YEAR",
    "FISCAL_YEAR",
    "EVENT",
    "EVENT_BASED",
    "CASE_CLOSURE",
    "SEPARATION",
    "IMMEDIATE",
    "UNSPECIFIED",
)
RETENTION_UNITS = ("YEARS", "MONTHS", "DAYS", "EVENT_BASED", "UNSPECIFIED")
DISPOSAL_ACTIONS = ("DESTROY", "TRANSFER_NARA", "UNSPECIFIED")

_PERIOD_PATTERNS = (
    (re.compile(r"(\d+)\s*YEARS?\s*(AFTER|OLD)"), "YEARS"),
    (re.compile(r"(\d+)\s*MONTHS?\s*(AFTER|OLD)"), "MONTHS"),
    (re.compile(r"(\d+)\s*DAYS?\s*(AFTER|OLD)"), "DAYS"),
)


@dataclass(frozen=True)
class SsicRecord:
    ssic: str
    nomenclature: str = ""
    bucket: str = ""
    bucket_title: str = ""
    dau: str = ""
    is_permanent: bool = False
    cutoff_trigger: str = "UNSPECIFIED"
    cutoff_description: str = ""
    retention_value: int | None = None
    retention_unit: str = "UNSPECIFIED"
    disposal_action: str = "UNSPECIFIED"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _upper(value: Any, allowed: tuple[str, ...], default: str = "UNSPECIFIED") -> str:
    v = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
    return v if v in allowed else default


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return n if n >= 0 else None


def parse_disposition(text: str | None) -> dict[str, Any]:
    """
    Derive retention fields from disposition instructions, e.g.
    "Cutoff at end of CY. Destroy 3 years after cutoff."
    """
    t = str(text or "").upper()

    disposal_action = "UNSPECIFIED"
    if "DESTROY" in t or "DELETE" in t:
        disposal_action = "DESTROY"
    elif "TRANSFER" in t and "NATIONAL ARCHIVES" in t:
        disposal_action = "TRANSFER_NARA"

    cutoff_trigger, cutoff_description = "UNSPECIFIED", ""
    if "CALENDAR YEAR" in t or "CY." in t or "AT CY" in t:
        cutoff_trigger, cutoff_description = "CALENDAR_YEAR", "End of calendar year (December 31)"
    elif "FISCAL YEAR" in t or "FY." in t or "AT FY" in t:
        cutoff_trigger, cutoff_description = "FISCAL_YEAR", "End of fiscal year (September 30)"
    elif "CASE CLOSURE" in t or "CASE CLOSED" in t:
        cutoff_trigger, cutoff_description = "CASE_CLOSURE", "Upon case closure"
    elif "SEPARATION" in t or "SEPARATED" in t:
        cutoff_trigger, cutoff_description = "SEPARATION", "Upon separation from service"
    elif "SUPERSEDED" in t or "OBSOLETE" in t or "CANCELED" in t:
        cutoff_trigger, cutoff_description = "EVENT_BASED", "When superseded, obsolete, or canceled"
    elif "IMMEDIATELY" in t or "WHEN 6 MONTHS OLD" in t or "WHEN 90 DAYS" in t:
        cutoff_trigger, cutoff_description = "IMMEDIATE", "From date of record creation"

    retention_value: int | None = None
    retention_unit = "UNSPECIFIED"
    for rx, unit in _PERIOD_PATTERNS:
        m = rx.search(t)
        if m and int(m.group(1)):
            retention_value, retention_unit = int(m.group(1)), unit
            break
    if retention_value is None and any(k in t for k in ("WHEN SUPERSEDED", "WHEN OBSOLETE", "WHEN CANCELED")):
        retention_unit = "EVENT_BASED"

    return {
        "is_permanent": "PERMANENT" in t,
        "cutoff_trigger": cutoff_trigger,
        "cutoff_description": cutoff_description,
        "retention_value": retention_value,
        "retention_unit": retention_unit,
        "disposal_action": disposal_action,
    }


def record_from_mapping(data: Mapping[str, Any]) -> SsicRecord:
    """
    Build a record from a catalog row or request payload.

    When `disposition_text` is given, parsed values fill any retention field
    the mapping leaves out.
    """
    parsed = parse_disposition(data.get("disposition_text")) if data.get("disposition_text") else {}

    def _pick(key: str) -> Any:
        v = data.get(key)
        return parsed.get(key) if v is None or v == "" else v

    return SsicRecord(
        ssic=str(data.get("ssic") or "").strip(),
        nomenclature=str(data.get("nomenclature") or "").strip(),
        bucket=str(data.get("bucket") or "").strip(),
        bucket_title=str(data.get("bucket_title") or "").strip(),
        dau=str(data.get("dau") or "").strip(),
        is_permanent=bool(_pick("is_permanent")),
        cutoff_trigger=_upper(_pick("cutoff_trigger"), CUTOFF_TRIGGERS),
        cutoff_description=str(_pick("cutoff_description") or "").strip(),
        retention_value=_to_int(_pick("retention_value")),
        retention_unit=_upper(_pick("retention_unit"), RETENTION_UNITS),
        disposal_action=_upper(_pick("disposal_action"), DISPOSAL_ACTIONS),
    )


def record_from_request(request: Any) -> SsicRecord | None:
    """Classification stored on a request, or None when it was never classified."""
    ssic = str(getattr(request, "ssic", None) or "").strip()
    if not ssic:
        return None
    return SsicRecord(
        ssic=ssic,
        nomenclature=getattr(request, "ssic_nomenclature", None) or "",
        bucket=getattr(request, "ssic_bucket", None) or "",
        bucket_title=getattr(request, "ssic_bucket_title", None) or "",
        dau=getattr(request, "dau", None) or "",
        is_permanent=bool(getattr(request, "is_permanent", False)),
        cutoff_trigger=_upper(getattr(request, "cutoff_trigger", None), CUTOFF_TRIGGERS),
        cutoff_description=getattr(request, "cutoff_description", None) or "",
        retention_value=_to_int(getattr(request, "retention_value", None)),
        retention_unit=_upper(getattr(request, "retention_unit", None), RETENTION_UNITS),
        disposal_action=_upper(getattr(request, "disposal_action", None), DISPOSAL_ACTIONS),
    )


def apply_record(request: Any, record: SsicRecord) -> None:
    """Copy a resolved classification onto the request's retention fields."""
    request.ssic = record.ssic
    request.ssic_nomenclature = record.nomenclature or None
    request.ssic_bucket = record.bucket or None
    request.ssic_bucket_title = record.bucket_title or None
    request.dau = record.dau or None
    request.is_permanent = record.is_permanent
    request.cutoff_trigger = record.cutoff_trigger
    request.cutoff_description = record.cutoff_description or None
    request.retention_value = record.retention_value
    request.retention_unit = record.retention_unit
    request.disposal_action = record.disposal_action
