"""
Transition operations over a single request.

Each action has a stage/parameter check, an authorization check and an
effect. `apply_transition` runs the checks first and only then mutates, so a
refused action leaves the request untouched. Every effect appends to the
ledger and updates the lifecycle fields together; persisting the result
atomically is the caller's job (see service.py).
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from app.edms.modules.retention.catalog import apply_record, record_from_mapping

from . import ledger
from .authorization import (
    Actor,
    ArchiveLevel,
    can_actor_archive,
    can_requester_edit,
    can_review,
    is_owner,
    reviewer_stage_for_role,
)
from .ledger import EventKind, EventScope
from .models import Request
from .stage import INITIAL_STAGE, UNIT_CHAIN, Stage, next_stage, previous_stage, section_of, stage_of


class TransitionError(ValueError):
    pass


class InvalidTransition(TransitionError):
    """Action not legal for the request's current stage, or a required parameter is missing."""


class TransitionDenied(TransitionError):
    """The actor is not authorized to perform the action on this request."""


class _Missing(str):
    """A check failure caused only by an absent or malformed parameter."""


DECISIONS = ("Approved", "Endorsed", "Rejected")
HQMC_DECISIONS = ("Approved", "Returned")

_DECISION_KIND = {
    "Approved": EventKind.APPROVED,
    "Endorsed": EventKind.ENDORSED,
    "Rejected": EventKind.REJECTED,
}
_LEVEL_SCOPE = {
    ArchiveLevel.ORIGINATOR.value: EventScope.UNIT,
    ArchiveLevel.UNIT.value: EventScope.UNIT,
    ArchiveLevel.INSTALLATION.value: EventScope.INSTALLATION,
    ArchiveLevel.HQMC.value: EventScope.HQMC,
    ArchiveLevel.EXTERNAL.value: EventScope.EXTERNAL,
}


def _param(params: Mapping[str, Any], key: str) -> str:
    v = params.get(key)
    return str(getattr(v, "value", v) or "").strip()


def _flag(params: Mapping[str, Any], key: str) -> bool:
    v = params.get(key)
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


def _decision(params: Mapping[str, Any], allowed: tuple[str, ...]) -> str | None:
    d = _param(params, "decision").title()
    return d if d in allowed else None


def _level(params: Mapping[str, Any]) -> str:
    return _param(params, "level").lower()


def _scope_for_stage(stage: Stage | None) -> EventScope:
    if stage == Stage.INSTALLATION_REVIEW:
        return EventScope.INSTALLATION
    if stage == Stage.HQMC_REVIEW:
        return EventScope.HQMC
    if stage == Stage.EXTERNAL_REVIEW:
        return EventScope.EXTERNAL
    return EventScope.UNIT


def _unit_decided(r: Request) -> bool:
    return ledger.is_unit_approved(r) or ledger.is_unit_endorsed(r)


def _is_commander(actor: Actor) -> bool:
    return actor.is_app_admin or "COMMANDER" in str(actor.role or "").upper()


def _previous_installation_section(r: Request) -> str:
    return (r.previous_section or "").strip() or ledger.last_installation_section(r)


def _stage_label(stage: Stage) -> str:
    return stage.value.replace("_REVIEW", "").title()


class _Context:
    """Per-call state shared by an action's effect helpers."""

    def __init__(self, request: Request, actor: Actor, params: Mapping[str, Any], now: datetime):
        self.request = request
        self.actor = actor
        self.params = params
        self.now = now

    def record(
        self,
        text: str,
        kind: EventKind,
        scope: EventScope,
        *,
        from_section: str | None = None,
        to_section: str | None = None,
        with_comment: bool = True,
    ) -> None:
        ledger.append_entry(
            self.request,
            actor=self.actor.name,
            actor_role=self.actor.role,
            action=text,
            kind=kind,
            scope=scope,
            comment=_param(self.params, "comment") if with_comment else None,
            from_section=from_section,
            to_section=to_section,
            now=self.now,
        )

    def move(self, stage: Stage, section: str | None = None) -> None:
        self.request.current_stage = stage.value
        self.request.route_section = section or None

    def clear_external(self) -> None:
        self.request.external_pending_unit_name = None
        self.request.external_pending_unit_uic = None
        self.request.external_pending_stage = None


# --- checks: return a list of reasons the action is not legal right now ---


def _check_forward(r: Request, p: Mapping[str, Any]) -> list[str]:
    stage = stage_of(r)
    if stage not in UNIT_CHAIN:
        return [f"Cannot forward from {r.current_stage}."]
    if stage == Stage.COMMANDER_REVIEW and not section_of(r):
        return ["Request is already with the commander."]
    return []


def _check_return(r: Request, p: Mapping[str, Any]) -> list[str]:
    if stage_of(r) not in UNIT_CHAIN:
        return [f"Cannot return from {r.current_stage}."]
    return []


def _check_commander_decision(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    stage = stage_of(r)
    if stage not in (Stage.BATTALION_REVIEW, Stage.COMMANDER_REVIEW):
        errors.append(f"Commander decision is not available in {r.current_stage}.")
    elif stage == Stage.COMMANDER_REVIEW and section_of(r):
        errors.append("Request is with a command section, not the commander.")
    if _decision(p, DECISIONS) is None:
        errors.append(_Missing("Decision must be one of: Approved, Endorsed, Rejected."))
    return errors


def _check_return_to_originator(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) != Stage.BATTALION_REVIEW:
        errors.append("Only the battalion can send a request back to its originator.")
    if not _unit_decided(r):
        errors.append("Request has no commander approval or endorsement.")
    return errors


def _check_route_to_installation(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    stage = stage_of(r)
    if stage == Stage.BATTALION_REVIEW:
        if not _unit_decided(r):
            errors.append("Request has no commander approval or endorsement.")
    elif stage != Stage.INSTALLATION_REVIEW:
        errors.append(f"Cannot route to installation from {r.current_stage}.")
    if not (_param(p, "installation_id") or (r.installation_id or "").strip()):
        errors.append(_Missing("Installation is required."))
    if stage == Stage.INSTALLATION_REVIEW and not section_of(r) and not _param(p, "section"):
        errors.append("Request is already with the installation commander.")
    return errors


def _check_installation_commander_decision(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) != Stage.INSTALLATION_REVIEW or section_of(r):
        errors.append("Request is not with the installation commander.")
    decision = _decision(p, DECISIONS)
    if decision is None:
        errors.append(_Missing("Decision must be one of: Approved, Endorsed, Rejected."))
    elif decision == "Approved" and not _param(p, "section"):
        errors.append(_Missing("Select a command section to send to."))
    return errors


def _check_submit_to_hqmc(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) != Stage.INSTALLATION_REVIEW:
        errors.append(f"Cannot submit to HQMC from {r.current_stage}.")
    if not ledger.is_installation_endorsed(r):
        errors.append("Installation commander endorsement is required.")
    if not _param(p, "division"):
        errors.append(_Missing("HQMC division is required."))
    return errors


def _check_hqmc_decision(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) != Stage.HQMC_REVIEW:
        errors.append(f"HQMC decision is not available in {r.current_stage}.")
    if _decision(p, HQMC_DECISIONS) is None:
        errors.append(_Missing("Decision must be one of: Approved, Returned."))
    return errors


def _check_send_to_external(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) not in (Stage.BATTALION_REVIEW, Stage.COMMANDER_REVIEW, Stage.INSTALLATION_REVIEW):
        errors.append(f"Cannot send to an external unit from {r.current_stage}.")
    if not _param(p, "unit_uic"):
        errors.append(_Missing("External unit UIC is required."))
    elif _param(p, "unit_uic") == (r.unit_uic or "").strip():
        errors.append("External unit must differ from the owning unit.")
    return errors


def _check_assign_external_section(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if stage_of(r) != Stage.EXTERNAL_REVIEW:
        errors.append("Request is not with an external unit.")
    if not _param(p, "section"):
        errors.append(_Missing("Section is required."))
    return errors


def _check_return_to_unit(r: Request, p: Mapping[str, Any]) -> list[str]:
    if stage_of(r) not in (Stage.INSTALLATION_REVIEW, Stage.EXTERNAL_REVIEW):
        return ["Only installation or external reviewers can return a request to its unit."]
    return []


def _check_archive(r: Request, p: Mapping[str, Any]) -> list[str]:
    if _level(p) not in _LEVEL_SCOPE:
        return [_Missing("Archive level must be one of: originator, unit, installation, hqmc, external.")]
    return []


def _check_file(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = _check_archive(r, p)
    if not (r.ssic or "").strip():
        errors.append("Request must be classified (SSIC) before filing.")
    if r.filed_at is not None:
        errors.append("Request is already filed.")
    return errors


def _check_classify(r: Request, p: Mapping[str, Any]) -> list[str]:
    errors = []
    if r.filed_at is not None:
        errors.append("Classification cannot change after filing.")
    data = p.get("record") if isinstance(p.get("record"), Mapping) else p
    if not str(data.get("ssic") or "").strip():
        errors.append(_Missing("SSIC is required."))
    return errors


def _check_edit(r: Request, p: Mapping[str, Any]) -> list[str]:
    if "subject" in p and not _param(p, "subject"):
        return ["Subject cannot be empty."]
    return []


def _check_resubmit(r: Request, p: Mapping[str, Any]) -> list[str]:
    if stage_of(r) != Stage.ORIGINATOR_REVIEW:
        return ["Only a request returned to its originator can be resubmitted."]
    if _unit_decided(r):
        return ["Request is approved and awaiting archive."]
    return []


# --- authorization: who may perform each action ---


def _may_review(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return can_review(r, a)


def _may_decide_as_commander(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    if a.is_app_admin:
        return True
    uic = (a.unit_uic or "").strip()
    return reviewer_stage_for_role(a.role) == Stage.COMMANDER_REVIEW and bool(uic) and uic == (r.unit_uic or "").strip()


def _may_decide_as_installation_commander(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return can_review(r, a) and _is_commander(a)


def _may_archive(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return can_actor_archive(r, a, _level(p))


def _may_classify(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return is_owner(r, a.user_id) or can_review(r, a)


def _may_edit(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return can_requester_edit(r, a.user_id)


def _may_resubmit(r: Request, a: Actor, p: Mapping[str, Any]) -> bool:
    return is_owner(r, a.user_id)


# --- effects ---


def _do_forward(c: _Context) -> None:
    r, stage, from_sec = c.request, stage_of(c.request), section_of(c.request)
    section = _param(c.params, "section")
    if stage == Stage.COMMANDER_REVIEW:
        # command section hands the request to the commander
        r.previous_section = from_sec
        c.move(Stage.COMMANDER_REVIEW)
        c.record("Approved and routed to COMMANDER", EventKind.ROUTED, EventScope.UNIT, from_section=from_sec)
        return
    target = next_stage(stage)
    if target == Stage.COMMANDER_REVIEW:
        r.previous_section = from_sec or None
        text = f"Approved and routed to {section}" if section else "Approved to COMMANDER"
    else:
        text = f"Approved and routed to {section or _stage_label(target)}"
    c.move(target, section)
    c.record(text, EventKind.ROUTED, EventScope.UNIT, from_section=from_sec, to_section=section)


def _do_return(c: _Context) -> None:
    stage, from_sec = stage_of(c.request), section_of(c.request)
    if stage == Stage.PLATOON_REVIEW:
        c.move(Stage.ORIGINATOR_REVIEW)
        c.record("Returned to originator for revision", EventKind.RETURNED, EventScope.UNIT, from_section=from_sec)
    else:
        c.move(previous_stage(stage))
        c.record("Returned to previous stage", EventKind.RETURNED, EventScope.UNIT, from_section=from_sec)


def _do_commander_decision(c: _Context) -> None:
    r = c.request
    decision = _decision(c.params, DECISIONS)
    dest = _param(c.params, "section") or (r.previous_section or "").strip()
    if decision == "Rejected":
        text = "Rejected by Commander - returned for corrections"
    else:
        text = f"{decision} by Commander"
    r.final_status = None if decision == "Rejected" else decision
    c.move(Stage.BATTALION_REVIEW, dest)
    c.record(text, _DECISION_KIND[decision], EventScope.UNIT, to_section=dest)


def _do_return_to_originator(c: _Context) -> None:
    from_sec = section_of(c.request)
    c.move(Stage.ORIGINATOR_REVIEW)
    c.record("Sent to originator", EventKind.ROUTED, EventScope.UNIT, from_section=from_sec)


def _do_route_to_installation(c: _Context) -> None:
    r = c.request
    from_sec = section_of(r)
    section = _param(c.params, "section")
    installation_id = _param(c.params, "installation_id")
    if installation_id:
        r.installation_id = installation_id
    if stage_of(r) == Stage.INSTALLATION_REVIEW:
        r.previous_section = from_sec or None
    c.move(Stage.INSTALLATION_REVIEW, section)
    text = f"Sent to installation section: {section}" if section else "Sent to Installation Commander"
    c.record(text, EventKind.ROUTED, EventScope.INSTALLATION, from_section=from_sec, to_section=section)


def _do_installation_commander_decision(c: _Context) -> None:
    r = c.request
    decision = _decision(c.params, DECISIONS)
    if decision == "Rejected":
        c.record(
            "Rejected by Installation Commander - returned for corrections", EventKind.REJECTED, EventScope.INSTALLATION
        )
    else:
        c.record(f"{decision} by Installation Commander", _DECISION_KIND[decision], EventScope.INSTALLATION)
    r.final_status = None if decision == "Rejected" else decision

    if decision == "Approved":
        target = _param(c.params, "section")
    else:
        target = _param(c.params, "section") or _previous_installation_section(r)
    if not target:
        c.move(Stage.INSTALLATION_REVIEW)
        c.record("Returned to installation commander", EventKind.RETURNED, EventScope.INSTALLATION, with_comment=False)
        return
    c.move(Stage.INSTALLATION_REVIEW, target)
    if decision == "Rejected":
        c.record(
            f"Returned to installation section: {target}",
            EventKind.RETURNED,
            EventScope.INSTALLATION,
            to_section=target,
            with_comment=False,
        )
    else:
        c.record(
            f"Sent to installation section: {target}",
            EventKind.ROUTED,
            EventScope.INSTALLATION,
            to_section=target,
            with_comment=False,
        )


def _do_submit_to_hqmc(c: _Context) -> None:
    r = c.request
    from_sec = section_of(r)
    div, branch = _param(c.params, "division"), _param(c.params, "branch")
    r.previous_section = from_sec or None
    c.move(Stage.HQMC_REVIEW, branch or div)
    text = f"Sent to HQMC: {div} - {branch}" if branch else f"Sent to HQMC: {div}"
    c.record(text, EventKind.ROUTED, EventScope.HQMC, from_section=from_sec, to_section=branch or div)


def _do_hqmc_decision(c: _Context) -> None:
    r = c.request
    decision = _decision(c.params, HQMC_DECISIONS)
    if decision == "Approved":
        r.final_status = "Approved"
        c.record("Approved by HQMC", EventKind.APPROVED, EventScope.HQMC, from_section=section_of(r))
        return
    from_sec = section_of(r)
    c.move(Stage.INSTALLATION_REVIEW)
    c.record("Returned by HQMC to installation", EventKind.RETURNED, EventScope.HQMC, from_section=from_sec)


def _do_send_to_external(c: _Context) -> None:
    r = c.request
    from_sec = section_of(r)
    uic, name = _param(c.params, "unit_uic"), _param(c.params, "unit_name")
    r.previous_section = from_sec or None
    c.move(Stage.EXTERNAL_REVIEW)
    r.external_pending_unit_uic = uic
    r.external_pending_unit_name = name or uic
    r.external_pending_stage = None
    c.record(f"Sent to external unit: {name or uic}", EventKind.ROUTED, EventScope.EXTERNAL, from_section=from_sec)


def _do_assign_external_section(c: _Context) -> None:
    r = c.request
    section = _param(c.params, "section")
    previous = (r.external_pending_stage or "").strip()
    r.external_pending_stage = section
    c.record(
        f"External unit assigned request to section {section}",
        EventKind.ROUTED,
        EventScope.EXTERNAL,
        from_section=previous,
        to_section=section,
    )


def _do_return_to_unit(c: _Context) -> None:
    r = c.request
    scope = _scope_for_stage(stage_of(r))
    from_sec = section_of(r) or (r.external_pending_stage or "")
    c.move(Stage.BATTALION_REVIEW)
    r.installation_id = None
    c.clear_external()
    c.record("Returned to unit for corrections", EventKind.RETURNED, scope, from_section=from_sec)


def _archive(c: _Context) -> None:
    level = _level(c.params)
    c.move(Stage.ARCHIVED)
    c.clear_external()
    c.record(f"Archived ({level} level)", EventKind.ARCHIVED, _LEVEL_SCOPE[level])


def _do_archive(c: _Context) -> None:
    _archive(c)


def _do_file(c: _Context) -> None:
    r = c.request
    r.filed_at = c.now
    c.record(f"Filed to records (SSIC {r.ssic})", EventKind.FILED, _LEVEL_SCOPE[_level(c.params)])
    if _flag(c.params, "archive"):
        _archive(c)


def _do_classify(c: _Context) -> None:
    data = c.params.get("record") if isinstance(c.params.get("record"), Mapping) else c.params
    record = record_from_mapping(data)
    apply_record(c.request, record)
    text = f"Classified as SSIC {record.ssic}" + (f" ({record.bucket_title})" if record.bucket_title else "")
    c.record(text, EventKind.CLASSIFIED, _scope_for_stage(stage_of(c.request)))


def _do_edit(c: _Context) -> None:
    r = c.request
    if "subject" in c.params:
        r.subject = _param(c.params, "subject")
    if "notes" in c.params:
        r.notes = _param(c.params, "notes") or None
    c.record("Updated request", EventKind.UPDATED, _scope_for_stage(stage_of(r)))


def _do_resubmit(c: _Context) -> None:
    c.move(INITIAL_STAGE)
    c.record("Resubmitted request", EventKind.ROUTED, EventScope.UNIT)


_Check = Callable[[Request, Mapping[str, Any]], list[str]]
_Guard = Callable[[Request, Actor, Mapping[str, Any]], bool]
_Effect = Callable[[_Context], None]

# still reachable once a request is filed; file and classify refuse on their own
_RECORDS_ACTIONS = frozenset({"archive", "file", "classify"})

ACTIONS: dict[str, tuple[_Check, _Guard, _Effect]] = {
    "forward": (_check_forward, _may_review, _do_forward),
    "return": (_check_return, _may_review, _do_return),
    "commander_decision": (_check_commander_decision, _may_decide_as_commander, _do_commander_decision),
    "return_to_originator": (_check_return_to_originator, _may_review, _do_return_to_originator),
    "route_to_installation": (_check_route_to_installation, _may_review, _do_route_to_installation),
    "installation_commander_decision": (
        _check_installation_commander_decision,
        _may_decide_as_installation_commander,
        _do_installation_commander_decision,
    ),
    "submit_to_hqmc": (_check_submit_to_hqmc, _may_review, _do_submit_to_hqmc),
    "hqmc_decision": (_check_hqmc_decision, _may_review, _do_hqmc_decision),
    "send_to_external": (_check_send_to_external, _may_review, _do_send_to_external),
    "assign_external_section": (_check_assign_external_section, _may_review, _do_assign_external_section),
    "return_to_unit": (_check_return_to_unit, _may_review, _do_return_to_unit),
    "archive": (_check_archive, _may_archive, _do_archive),
    "file": (_check_file, _may_archive, _do_file),
    "classify": (_check_classify, _may_classify, _do_classify),
    "edit": (_check_edit, _may_edit, _do_edit),
    "resubmit": (_check_resubmit, _may_resubmit, _do_resubmit),
}


def check_transition(request: Request, action: str, params: Mapping[str, Any] | None = None) -> tuple[bool, list[str]]:
    """
    Whether `action` is legal for the request as it stands, ignoring who asks.
    Returns (ok, errors).
    """
    params = params or {}
    if action not in ACTIONS:
        return False, [f"Unknown action: {action}."]
    stage = stage_of(request)
    if stage is None:
        return False, [f"Unknown stage: {request.current_stage}."]
    if stage == Stage.ARCHIVED and action != "classify":
        return False, ["Request is archived."]
    if getattr(request, "filed_at", None) is not None and action not in _RECORDS_ACTIONS:
        return False, ["Request is filed and out of routing."]
    errors = ACTIONS[action][0](request, params)
    return (not errors), errors


def is_authorized(request: Request, action: str, actor: Actor | None, params: Mapping[str, Any] | None = None) -> bool:
    if actor is None or action not in ACTIONS:
        return False
    return ACTIONS[action][1](request, actor, params or {})


def available_actions(request: Request, actor: Actor | None) -> list[str]:
    """Actions the actor is authorized for whose stage check passes without parameters."""
    out = []
    for name, (check, guard, _effect) in ACTIONS.items():
        if name in ("archive", "file"):
            continue
        if actor is None or not guard(request, actor, {}):
            continue
        ok, errors = check_transition(request, name, {})
        if ok or all(isinstance(e, _Missing) for e in errors):
            out.append(name)
    return out


def apply_transition(
    request: Request,
    action: str,
    actor: Actor,
    params: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> Request:
    """
    Validate, authorize, then apply `action` in place.

    Raises InvalidTransition or TransitionDenied before any mutation.
    """
    params = params or {}
    ok, errors = check_transition(request, action, params)
    if not ok:
        raise InvalidTransition("; ".join(errors))
    if not is_authorized(request, action, actor, params):
        raise TransitionDenied(f"Not authorized to {action.replace('_', ' ')} this request.")

    now = now or datetime.utcnow()
    ACTIONS[action][2](_Context(request, actor, params, now))
    request.updated_at = now
    return request


def new_request(
    *,
    actor: Actor,
    subject: str,
    unit_uic: str | None = None,
    installation_id: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Request:
    """A fresh request in the initial stage whose ledger opens with its creation."""
    subject = (subject or "").strip()
    if not subject:
        raise InvalidTransition("Subject is required.")
    now = now or datetime.utcnow()
    r = Request(
        subject=subject,
        notes=(notes or "").strip() or None,
        uploaded_by_id=str(actor.user_id),
        unit_uic=(unit_uic or actor.unit_uic or "").strip() or None,
        installation_id=(installation_id or "").strip() or None,
        current_stage=INITIAL_STAGE.value,
        is_permanent=False,
        created_at=now,
        updated_at=now,
        activity=[],
    )
    ledger.append_entry(
        r,
        actor=actor.name,
        actor_role=actor.role,
        action="Submitted request",
        kind=EventKind.CREATED,
        scope=EventScope.UNIT,
        comment=notes,
        now=now,
    )
    return r
