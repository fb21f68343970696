from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.edms.db import db_session
from app.edms.models import User
from app.edms.modules.routing.authorization import actor_from_user, can_review, is_owner
from app.edms.modules.routing.service import (
    ConflictError,
    RequestNotFound,
    create_request,
    delete_request,
    get_request,
    list_requests,
    request_to_dict,
    transition_request,
    validate_request_payload,
)
from app.edms.modules.routing.transitions import InvalidTransition, TransitionDenied
from app.edms.rbac import require_permission, user_has_permission

bp = Blueprint("requests", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_bool(value: str | None) -> bool | None:
    v = (value or "").strip().lower()
    if v in ("1", "true", "yes"):
        return True
    if v in ("0", "false", "no"):
        return False
    return None


def _parse_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@bp.errorhandler(TransitionDenied)
def _denied(e: TransitionDenied):
    db_session().rollback()
    return {"error": str(e)}, 403


@bp.errorhandler(InvalidTransition)
def _invalid(e: InvalidTransition):
    db_session().rollback()
    return {"error": str(e)}, 422


@bp.errorhandler(ConflictError)
def _conflict(e: ConflictError):
    db_session().rollback()
    return {"error": str(e), "request_id": e.request_id, "expected_version": e.expected_version}, 409


@bp.errorhandler(RequestNotFound)
def _not_found(e: RequestNotFound):
    db_session().rollback()
    return {"error": str(e)}, 404


@bp.get("")
@require_permission("requests.view")
def requests_list():
    s = db_session()
    u = _current_user()
    owner = (request.args.get("owner") or "").strip()
    rows = list_requests(
        s,
        owner_id=u.id if owner == "me" else (owner or None),
        unit_uic=(request.args.get("unit_uic") or "").strip() or None,
        installation_id=(request.args.get("installation_id") or "").strip() or None,
        stage=(request.args.get("stage") or "").strip() or None,
        filed=_parse_bool(request.args.get("filed")),
    )
    actor = actor_from_user(u)
    if not u.is_app_admin and not user_has_permission(u, "requests.review"):
        # plain users see their own requests only
        rows = [r for r in rows if is_owner(r, u.id)]
    return {"requests": [request_to_dict(r, actor, include_activity=False) for r in rows]}


@bp.post("")
@require_permission("requests.create")
def requests_create():
    s = db_session()
    u = _current_user()
    payload = _payload()
    errors = validate_request_payload(payload)
    if errors:
        return {"errors": errors}, 400
    r = create_request(s, payload, u)
    s.commit()
    return request_to_dict(r, actor_from_user(u)), 201


@bp.get("/<int:request_id>")
@require_permission("requests.view")
def requests_detail(request_id: int):
    s = db_session()
    u = _current_user()
    r = get_request(s, request_id)
    if not r:
        abort(404)
    actor = actor_from_user(u)
    if not (is_owner(r, u.id) or user_has_permission(u, "requests.review") or can_review(r, actor)):
        g.missing_permission = "requests.review"
        abort(403)
    return request_to_dict(r, actor)


@bp.post("/<int:request_id>/transition")
@require_permission("requests.view")
def requests_transition(request_id: int):
    s = db_session()
    u = _current_user()
    payload = _payload()
    action = (payload.get("action") or "").strip()
    if not action:
        return {"error": "Action is required."}, 400
    params = payload.get("params") if isinstance(payload.get("params"), dict) else {}
    expected_version = _parse_int(payload.get("expected_version"))

    r = transition_request(s, request_id, action, u, params, expected_version=expected_version)
    s.commit()
    current_app.logger.info("Transition %s committed for request id=%s", action, request_id)
    return request_to_dict(r, actor_from_user(u))


@bp.delete("/<int:request_id>")
@require_permission("requests.create")
def requests_delete(request_id: int):
    s = db_session()
    u = _current_user()
    delete_request(s, request_id, u)
    s.commit()
    return {"ok": True, "id": request_id}
