"""
Activity ledger helpers and derived-state inference.

Nothing on a request records "approved" directly: every predicate here is a
read-only scan of the ledger in insertion order. Entries carry structured
`event_kind` / `event_scope` tags; entries written before the tags existed
carry only display text and are matched by pattern instead.

Scope on an entry names the organizational level the event concerns: the
deciding level for decisions, the destination level for routing moves.
"""
from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from .models import ActivityEntry


class EventKind(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    ROUTED = "ROUTED"
    RETURNED = "RETURNED"
    APPROVED = "APPROVED"
    ENDORSED = "ENDORSED"
    REJECTED = "REJECTED"
    CLASSIFIED = "CLASSIFIED"
    FILED = "FILED"
    ARCHIVED = "ARCHIVED"


class EventScope(str, Enum):
    UNIT = "UNIT"
    INSTALLATION = "INSTALLATION"
    HQMC = "HQMC"
    EXTERNAL = "EXTERNAL"


DECISION_KINDS = frozenset({EventKind.APPROVED, EventKind.ENDORSED, EventKind.REJECTED})
DISPOSITION_KINDS = frozenset({EventKind.ROUTED, EventKind.ARCHIVED, EventKind.FILED})

# Text patterns for untagged entries.
RETURNED_PATTERN = re.compile(r"returned", re.IGNORECASE)
UNIT_APPROVED_PATTERN = re.compile(r"(approved by commander|commander.*approved)", re.IGNORECASE)
UNIT_ENDORSED_PATTERN = re.compile(r"(endorsed by commander|commander.*endorsed)", re.IGNORECASE)
INSTALLATION_COMMANDER_PATTERN = re.compile(r"installation commander", re.IGNORECASE)
INSTALLATION_APPROVED_PATTERN = re.compile(
    r"(approved by installation commander|installation commander.*approved)", re.IGNORECASE
)
INSTALLATION_ENDORSED_PATTERN = re.compile(
    r"(endorsed by installation commander|installation commander.*endorsed)", re.IGNORECASE
)
HQMC_APPROVED_PATTERN = re.compile(r"(approved by hqmc|hqmc.*approved)", re.IGNORECASE)
BATTALION_DISPOSITION_PATTERN = re.compile(r"(archived|sent|routed|assigned)", re.IGNORECASE)
INSTALLATION_SECTION_PATTERN = re.compile(
    r"(?:sent|restored|returned) to installation section:\s*(.+)", re.IGNORECASE
)


def entries(request: Any) -> tuple[Any, ...]:
    """Read-only snapshot of the ledger in insertion order."""
    raw = getattr(request, "activity", None) or ()
    try:
        return tuple(raw)
    except TypeError:
        return ()


def append_entry(
    request: Any,
    *,
    actor: str,
    action: str,
    kind: EventKind,
    scope: EventScope,
    actor_role: str | None = None,
    comment: str | None = None,
    from_section: str | None = None,
    to_section: str | None = None,
    now: datetime | None = None,
) -> ActivityEntry:
    """Append one fact to the end of the ledger. Existing entries are never touched."""
    entry = ActivityEntry(
        position=len(entries(request)),
        actor=actor,
        actor_role=actor_role,
        timestamp=now or datetime.utcnow(),
        action=action,
        comment=(comment or "").strip() or None,
        from_section=from_section or None,
        to_section=to_section or None,
        event_kind=kind.value,
        event_scope=scope.value,
    )
    request.activity.append(entry)
    return entry


def _text(entry: Any) -> str:
    return str(getattr(entry, "action", "") or "")


def _tag(entry: Any, name: str) -> str:
    value = getattr(entry, name, None)
    return str(getattr(value, "value", value) or "")


def _is_tagged(entry: Any) -> bool:
    return bool(_tag(entry, "event_kind"))


def _matches(entry: Any, kinds: frozenset | set, scopes: frozenset | set | None, pattern: re.Pattern | None) -> bool:
    if _is_tagged(entry):
        if _tag(entry, "event_kind") not in {k.value for k in kinds}:
            return False
        return scopes is None or _tag(entry, "event_scope") in {s.value for s in scopes}
    return bool(pattern and pattern.search(_text(entry)))


def _involves_installation_commander(entry: Any) -> bool:
    if _is_tagged(entry):
        if _tag(entry, "event_scope") != EventScope.INSTALLATION.value:
            return False
        kind = _tag(entry, "event_kind")
        if kind in {k.value for k in DECISION_KINDS}:
            return True
        # routed to the installation with no section = handed to the commander
        return kind == EventKind.ROUTED.value and not getattr(entry, "to_section", None)
    return bool(INSTALLATION_COMMANDER_PATTERN.search(_text(entry)))


def last_activity(request: Any) -> Any | None:
    es = entries(request)
    return es[-1] if es else None


def is_returned(request: Any) -> bool:
    """True when the most recent entry sent the request back for correction."""
    last = last_activity(request)
    if last is None:
        return False
    return _matches(last, {EventKind.RETURNED, EventKind.REJECTED}, None, RETURNED_PATTERN)


def has_activity(request: Any, pattern: str | re.Pattern) -> bool:
    """True when any entry's display text matches `pattern` (case-insensitive for plain strings)."""
    if isinstance(pattern, re.Pattern):
        rx = pattern
    else:
        try:
            rx = re.compile(str(pattern), re.IGNORECASE)
        except re.error:
            rx = re.compile(re.escape(str(pattern)), re.IGNORECASE)
    return any(rx.search(_text(e)) for e in entries(request))


def has_event(request: Any, kind: EventKind, scope: EventScope | None = None) -> bool:
    """True when any tagged entry carries `kind` (and `scope`, when given)."""
    scopes = {scope} if scope is not None else None
    return any(_is_tagged(e) and _matches(e, {kind}, scopes, None) for e in entries(request))


def _installation_commander_involved(request: Any) -> bool:
    return any(_involves_installation_commander(e) for e in entries(request))


def is_unit_approved(request: Any) -> bool:
    es = entries(request)
    if not any(_matches(e, {EventKind.APPROVED}, {EventScope.UNIT}, UNIT_APPROVED_PATTERN) for e in es):
        return False
    return not _installation_commander_involved(request)


def is_unit_endorsed(request: Any) -> bool:
    es = entries(request)
    if not any(_matches(e, {EventKind.ENDORSED}, {EventScope.UNIT}, UNIT_ENDORSED_PATTERN) for e in es):
        return False
    return not _installation_commander_involved(request)


def is_installation_approved(request: Any) -> bool:
    return any(
        _matches(e, {EventKind.APPROVED}, {EventScope.INSTALLATION}, INSTALLATION_APPROVED_PATTERN)
        for e in entries(request)
    )


def is_installation_endorsed(request: Any) -> bool:
    return any(
        _matches(e, {EventKind.ENDORSED}, {EventScope.INSTALLATION}, INSTALLATION_ENDORSED_PATTERN)
        for e in entries(request)
    )


def is_hqmc_approved(request: Any) -> bool:
    return any(_matches(e, {EventKind.APPROVED}, {EventScope.HQMC}, HQMC_APPROVED_PATTERN) for e in entries(request))


def has_any_commander_decision(request: Any) -> bool:
    """
    True once any unit or installation commander has approved or endorsed.

    Also true for a unit decision that the installation-commander exclusion
    hides from `is_unit_approved`; a recorded decision is never forgotten.
    """
    if (
        is_unit_approved(request)
        or is_unit_endorsed(request)
        or is_installation_approved(request)
        or is_installation_endorsed(request)
    ):
        return True
    return any(
        _matches(e, {EventKind.APPROVED}, {EventScope.UNIT}, UNIT_APPROVED_PATTERN)
        or _matches(e, {EventKind.ENDORSED}, {EventScope.UNIT}, UNIT_ENDORSED_PATTERN)
        for e in entries(request)
    )


def has_battalion_action_post_approval(request: Any) -> bool:
    """
    True when, after the first unit-commander approval, the battalion has
    already disposed of the request (archived, sent on, routed or assigned).
    """
    es = entries(request)
    start = None
    for idx, e in enumerate(es):
        if _matches(e, {EventKind.APPROVED}, {EventScope.UNIT}, UNIT_APPROVED_PATTERN):
            start = idx
            break
    if start is None:
        return False
    return any(_matches(e, DISPOSITION_KINDS, None, BATTALION_DISPOSITION_PATTERN) for e in es[start + 1 :])


def last_installation_section(request: Any) -> str:
    """
    Most recent installation section the request was sent, restored or
    returned to, read back from the ledger. Empty when there is none.
    """
    for e in reversed(entries(request)):
        if _is_tagged(e):
            if (
                _tag(e, "event_scope") == EventScope.INSTALLATION.value
                and _tag(e, "event_kind") in (EventKind.ROUTED.value, EventKind.RETURNED.value)
                and getattr(e, "to_section", None)
            ):
                return str(e.to_section).strip()
            continue
        m = INSTALLATION_SECTION_PATTERN.search(_text(e))
        if m:
            return m.group(1).strip()
    return ""
