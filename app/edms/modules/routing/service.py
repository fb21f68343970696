from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.edms.audit import record_event
from app.edms.modules.routing import ledger
from app.edms.modules.routing.authorization import Actor, actor_from_user, can_delete_request, permissions_for
from app.edms.modules.routing.models import Request
from app.edms.modules.routing.stage import Stage, format_stage_label
from app.edms.modules.routing.transitions import (
    TransitionDenied,
    TransitionError,
    apply_transition,
    available_actions,
    new_request,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.edms.models import User

logger = logging.getLogger(__name__)


class ConflictError(RuntimeError):
    """Another writer changed the request first; re-fetch and retry."""

    def __init__(self, request_id: int, expected_version: int | None = None, actual_version: int | None = None):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Request {request_id} was modified by another user."
        if expected_version is not None and actual_version is not None:
            msg += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(msg)


class RequestNotFound(LookupError):
    pass


def validate_request_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("subject") or "").strip():
        errors.append("Subject is required.")
    return errors


def create_request(s: "Session", payload: dict, user: "User") -> Request:
    actor = actor_from_user(user)
    r = new_request(
        actor=actor,
        subject=payload.get("subject") or "",
        unit_uic=payload.get("unit_uic"),
        installation_id=payload.get("installation_id"),
        notes=payload.get("notes"),
    )
    s.add(r)
    s.flush()

    record_event(
        s,
        actor=user,
        action="request.create",
        entity_type="Request",
        entity_id=str(r.id),
        metadata={"subject": r.subject, "unit_uic": r.unit_uic},
    )
    logger.info("Request created id=%s unit=%s by user=%s", r.id, r.unit_uic, user.id)
    return r


def get_request(s: "Session", request_id: int, *, for_update: bool = False) -> Request | None:
    stmt = select(Request).where(Request.id == request_id)
    if for_update:
        # row lock on Postgres (ignored by SQLite, where version_id_col still catches races);
        # refresh the identity map so the locked row, not a stale copy, is what gets changed
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return s.execute(stmt).scalar_one_or_none()


def list_requests(
    s: "Session",
    *,
    owner_id: str | int | None = None,
    unit_uic: str | None = None,
    installation_id: str | None = None,
    stage: str | None = None,
    filed: bool | None = None,
) -> list[Request]:
    stmt = select(Request)
    if owner_id not in (None, ""):
        stmt = stmt.where(Request.uploaded_by_id == str(owner_id))
    if unit_uic:
        stmt = stmt.where(Request.unit_uic == unit_uic)
    if installation_id:
        stmt = stmt.where(Request.installation_id == installation_id)
    if stage:
        stmt = stmt.where(Request.current_stage == str(getattr(stage, "value", stage)).upper())
    if filed is True:
        stmt = stmt.where(Request.filed_at.is_not(None))
    elif filed is False:
        stmt = stmt.where(Request.filed_at.is_(None))
    stmt = stmt.order_by(Request.created_at.desc(), Request.id.desc())
    return list(s.execute(stmt).scalars().all())


def _flush_or_conflict(s: "Session", request_id: int, expected_version: int | None) -> None:
    try:
        s.flush()
    except (StaleDataError, IntegrityError) as e:
        logger.warning("Write conflict on request id=%s: %s", request_id, e)
        raise ConflictError(request_id, expected_version) from e


def transition_request(
    s: "Session",
    request_id: int,
    action: str,
    user: "User",
    params: dict[str, Any] | None = None,
    expected_version: int | None = None,
) -> Request:
    """
    Load the request under lock, apply one transition, and flush it as a unit.

    Raises RequestNotFound, ConflictError (stale `expected_version` or a
    concurrent flush), InvalidTransition or TransitionDenied. Nothing is
    written on any of these; the caller commits on success.
    """
    params = params or {}
    r = get_request(s, request_id, for_update=True)
    if r is None:
        raise RequestNotFound(f"Request {request_id} not found.")
    if expected_version is not None and r.version != int(expected_version):
        logger.warning(
            "Stale transition refused id=%s action=%s expected_version=%s actual=%s",
            r.id,
            action,
            expected_version,
            r.version,
        )
        raise ConflictError(r.id, int(expected_version), r.version)

    actor = actor_from_user(user)
    from_stage = r.current_stage
    try:
        apply_transition(r, action, actor, params)
    except TransitionError as e:
        logger.warning("Transition refused id=%s action=%s user=%s: %s", r.id, action, user.id, e)
        raise

    record_event(
        s,
        actor=user,
        action=f"request.{action}",
        entity_type="Request",
        entity_id=str(r.id),
        reason=(params.get("comment") or "").strip() or None,
        metadata={"from_stage": from_stage, "to_stage": r.current_stage, "route_section": r.route_section},
    )
    _flush_or_conflict(s, request_id, expected_version)
    logger.info("Request id=%s %s: %s -> %s (version %s)", r.id, action, from_stage, r.current_stage, r.version)
    return r


def delete_request(s: "Session", request_id: int, user: "User") -> None:
    r = get_request(s, request_id, for_update=True)
    if r is None:
        raise RequestNotFound(f"Request {request_id} not found.")
    if not can_delete_request(r, user.id):
        logger.warning("Delete refused id=%s user=%s", r.id, user.id)
        raise TransitionDenied("This request can no longer be deleted.")
    record_event(
        s,
        actor=user,
        action="request.delete",
        entity_type="Request",
        entity_id=str(r.id),
        metadata={"subject": r.subject, "stage": r.current_stage},
    )
    s.delete(r)
    s.flush()
    logger.info("Request deleted id=%s by user=%s", request_id, user.id)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def entry_to_dict(e: Any) -> dict[str, Any]:
    return {
        "position": e.position,
        "actor": e.actor,
        "actor_role": e.actor_role,
        "timestamp": _iso(e.timestamp),
        "action": e.action,
        "comment": e.comment,
        "from_section": e.from_section,
        "to_section": e.to_section,
        "event_kind": e.event_kind,
        "event_scope": e.event_scope,
    }


def derived_state(r: Request) -> dict[str, bool]:
    return {
        "is_returned": ledger.is_returned(r),
        "is_unit_approved": ledger.is_unit_approved(r),
        "is_unit_endorsed": ledger.is_unit_endorsed(r),
        "is_installation_approved": ledger.is_installation_approved(r),
        "is_installation_endorsed": ledger.is_installation_endorsed(r),
        "is_hqmc_approved": ledger.is_hqmc_approved(r),
        "has_battalion_action_post_approval": ledger.has_battalion_action_post_approval(r),
    }


def request_to_dict(r: Request, actor: Actor | None = None, *, include_activity: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": r.id,
        "version": r.version,
        "subject": r.subject,
        "notes": r.notes,
        "uploaded_by_id": r.uploaded_by_id,
        "unit_uic": r.unit_uic,
        "installation_id": r.installation_id,
        "current_stage": r.current_stage,
        "stage_label": format_stage_label(r),
        "route_section": r.route_section,
        "previous_section": r.previous_section,
        "external_pending_unit_name": r.external_pending_unit_name,
        "external_pending_unit_uic": r.external_pending_unit_uic,
        "external_pending_stage": r.external_pending_stage,
        "final_status": r.final_status,
        "ssic": r.ssic,
        "ssic_bucket_title": r.ssic_bucket_title,
        "is_permanent": r.is_permanent,
        "filed_at": _iso(r.filed_at),
        "archived": r.current_stage == Stage.ARCHIVED.value,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
        "state": derived_state(r),
    }
    if actor is not None:
        out["permissions"] = permissions_for(r, actor)
        out["available_actions"] = available_actions(r, actor)
    if include_activity:
        out["activity"] = [entry_to_dict(e) for e in ledger.entries(r)]
    return out
