"""
Authorization Engine.

Single entry point per capability (edit, delete, archive, review), shared by
every caller. All functions are pure and total: missing or unrecognized
fields read as "no", never as an exception.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from . import ledger
from .stage import REQUESTER_EDITABLE_STAGES, UNIT_CHAIN, Stage, stage_of


class ArchiveLevel(str, Enum):
    ORIGINATOR = "originator"
    UNIT = "unit"
    INSTALLATION = "installation"
    HQMC = "hqmc"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Actor:
    """The acting user as seen by the routing core."""

    user_id: str
    name: str
    role: str | None = None
    unit_uic: str | None = None
    installation_id: str | None = None
    hqmc_division: str | None = None
    is_app_admin: bool = False


@dataclass(frozen=True)
class ArchiveContext:
    actor_level: str
    actor_unit_uic: str | None = None
    actor_installation_id: str | None = None


def actor_from_user(user: Any) -> Actor:
    rank = (getattr(user, "rank", None) or "").strip()
    display = (getattr(user, "display_name", None) or "").strip()
    name = f"{rank} {display}".strip() if display else ""
    return Actor(
        user_id=str(getattr(user, "id", "") or ""),
        name=name or (getattr(user, "email", None) or "Unknown User"),
        role=getattr(user, "org_role", None),
        unit_uic=getattr(user, "unit_uic", None),
        installation_id=getattr(user, "installation_id", None),
        hqmc_division=getattr(user, "hqmc_division", None),
        is_app_admin=bool(getattr(user, "is_app_admin", False)),
    )


def archive_context_for(actor: Actor, level: str | ArchiveLevel) -> ArchiveContext:
    return ArchiveContext(
        actor_level=str(getattr(level, "value", level) or ""),
        actor_unit_uic=actor.unit_uic,
        actor_installation_id=actor.installation_id,
    )


def _same(a: Any, b: Any) -> bool:
    """Scope match; two blanks never match."""
    a = str(a or "").strip()
    b = str(b or "").strip()
    return bool(a) and a == b


def is_owner(request: Any, actor_id: Any) -> bool:
    return _same(getattr(request, "uploaded_by_id", None), actor_id)


def _context_value(context: Any, key: str) -> Any:
    if isinstance(context, Mapping):
        return context.get(key)
    return getattr(context, key, None)


def can_requester_edit(request: Any, actor_id: Any) -> bool:
    if not is_owner(request, actor_id):
        return False
    stage = stage_of(request)
    if stage in REQUESTER_EDITABLE_STAGES:
        return True
    # approved/endorsed and handed back: locked pending archive
    if stage == Stage.ORIGINATOR_REVIEW and (ledger.is_unit_approved(request) or ledger.is_unit_endorsed(request)):
        return False
    return ledger.is_returned(request)


def originator_archive_only(request: Any, actor_id: Any) -> bool:
    if not is_owner(request, actor_id):
        return False
    return stage_of(request) == Stage.ORIGINATOR_REVIEW and (
        ledger.is_unit_approved(request) or ledger.is_unit_endorsed(request)
    )


def can_delete_request(request: Any, actor_id: Any) -> bool:
    if not is_owner(request, actor_id):
        return False
    if ledger.has_any_commander_decision(request):
        return False
    return stage_of(request) not in (Stage.ARCHIVED, None)


def can_archive_at_level(request: Any, context: Any) -> bool:
    stage = stage_of(request)
    if stage is None or stage == Stage.ARCHIVED:
        return False
    level = _context_value(context, "actor_level")
    level = str(getattr(level, "value", level) or "").strip().lower()
    unit_decided = ledger.is_unit_approved(request) or ledger.is_unit_endorsed(request)

    if level == ArchiveLevel.ORIGINATOR:
        return stage == Stage.ORIGINATOR_REVIEW and unit_decided
    if level == ArchiveLevel.UNIT:
        return (
            stage == Stage.BATTALION_REVIEW
            and unit_decided
            and _same(_context_value(context, "actor_unit_uic"), getattr(request, "unit_uic", None))
        )
    if level == ArchiveLevel.INSTALLATION:
        return (ledger.is_installation_approved(request) or ledger.is_installation_endorsed(request)) and _same(
            _context_value(context, "actor_installation_id"), getattr(request, "installation_id", None)
        )
    if level == ArchiveLevel.HQMC:
        # no stage or division check at this level
        return ledger.is_hqmc_approved(request)
    # external units archive under their own command, not here
    return False


def reviewer_stage_for_role(role: str | None) -> Stage | None:
    """Unit-chain stage a reviewer role works; None for roles outside the unit chain."""
    r = str(role or "").upper()
    if not r or "INSTALLATION" in r or "HQMC" in r:
        return None
    if "COMMANDER" in r:
        return Stage.COMMANDER_REVIEW
    if "BATTALION" in r:
        return Stage.BATTALION_REVIEW
    if "COMPANY" in r:
        return Stage.COMPANY_REVIEW
    if "PLATOON" in r:
        return Stage.PLATOON_REVIEW
    return None


def can_review(request: Any, actor: Actor | None) -> bool:
    """Whether `actor` currently holds the request and may route or decide on it."""
    if actor is None:
        return False
    stage = stage_of(request)
    if stage is None or stage == Stage.ARCHIVED:
        return False
    if actor.is_app_admin:
        return True
    if stage in UNIT_CHAIN:
        return reviewer_stage_for_role(actor.role) == stage and _same(actor.unit_uic, getattr(request, "unit_uic", None))
    if stage == Stage.INSTALLATION_REVIEW:
        return _same(actor.installation_id, getattr(request, "installation_id", None))
    if stage == Stage.HQMC_REVIEW:
        return bool((actor.hqmc_division or "").strip())
    if stage == Stage.EXTERNAL_REVIEW:
        return _same(actor.unit_uic, getattr(request, "external_pending_unit_uic", None))
    if stage == Stage.ORIGINATOR_REVIEW:
        return is_owner(request, actor.user_id)
    return False


def actor_levels(request: Any, actor: Actor | None) -> set[str]:
    """Archive levels `actor` may claim for this request."""
    if actor is None:
        return set()
    levels: set[str] = set()
    if is_owner(request, actor.user_id):
        levels.add(ArchiveLevel.ORIGINATOR.value)
    if actor.is_app_admin or reviewer_stage_for_role(actor.role) in (Stage.BATTALION_REVIEW, Stage.COMMANDER_REVIEW):
        levels.add(ArchiveLevel.UNIT.value)
    if (actor.installation_id or "").strip():
        levels.add(ArchiveLevel.INSTALLATION.value)
    if (actor.hqmc_division or "").strip():
        levels.add(ArchiveLevel.HQMC.value)
    if _same(actor.unit_uic, getattr(request, "external_pending_unit_uic", None)):
        levels.add(ArchiveLevel.EXTERNAL.value)
    return levels


def can_actor_archive(request: Any, actor: Actor | None, level: str | ArchiveLevel) -> bool:
    lvl = str(getattr(level, "value", level) or "").strip().lower()
    if actor is None or lvl not in actor_levels(request, actor):
        return False
    return can_archive_at_level(request, archive_context_for(actor, lvl))


def permissions_for(request: Any, actor: Actor | None) -> dict[str, Any]:
    """Capability summary for UI/service callers deciding which actions to expose."""
    uid = actor.user_id if actor else None
    levels = sorted(lvl for lvl in actor_levels(request, actor) if can_actor_archive(request, actor, lvl))
    return {
        "can_edit": can_requester_edit(request, uid),
        "can_delete": can_delete_request(request, uid),
        "originator_archive_only": originator_archive_only(request, uid),
        "can_review": can_review(request, actor),
        "archive_levels": levels,
    }
