from __future__ import annotations

from flask import Blueprint, abort, request

from app.edms.db import db_session
from app.edms.modules.retention.catalog import parse_disposition
from app.edms.modules.retention.service import as_date, disposal_date_for, disposal_preview, group_filed_by_disposal_year
from app.edms.modules.routing.service import get_request, list_requests
from app.edms.rbac import require_permission

bp = Blueprint("retention", __name__)


def _filed_row(r) -> dict:
    disposal = disposal_date_for(r)
    return {
        "id": r.id,
        "subject": r.subject,
        "ssic": r.ssic,
        "filed_at": r.filed_at.isoformat() if r.filed_at else None,
        "disposal_date": disposal.isoformat() if disposal else None,
        "disposal_action": r.disposal_action,
    }


@bp.get("/requests/<int:request_id>")
@require_permission("retention.view")
def retention_preview(request_id: int):
    s = db_session()
    r = get_request(s, request_id)
    if not r:
        abort(404)
    return disposal_preview(r, today=as_date(request.args.get("today")))


@bp.get("/filed")
@require_permission("retention.view")
def retention_filed():
    """Filed requests by disposal year, then classification bucket."""
    s = db_session()
    rows = list_requests(
        s,
        unit_uic=(request.args.get("unit_uic") or "").strip() or None,
        installation_id=(request.args.get("installation_id") or "").strip() or None,
        filed=True,
    )
    grouped = group_filed_by_disposal_year(rows)
    out = {
        year: {bucket: [_filed_row(r) for r in items] for bucket, items in buckets.items()}
        for year, buckets in grouped.items()
    }
    return {"groups": out, "years": list(out)}


@bp.post("/disposition")
@require_permission("retention.view")
def retention_parse_disposition():
    data = request.get_json(silent=True)
    text = (data.get("text") or "").strip() if isinstance(data, dict) else ""
    if not text:
        return {"error": "Disposition text is required."}, 400
    return parse_disposition(text)
