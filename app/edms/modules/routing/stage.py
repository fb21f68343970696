"""
Lifecycle stages and the fixed unit chain.

Routing moves themselves live in `transitions.py`; this module only knows
which stages exist, how the unit chain is ordered, and how a stage is shown.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class Stage(str, Enum):
    PLATOON_REVIEW = "PLATOON_REVIEW"
    COMPANY_REVIEW = "COMPANY_REVIEW"
    BATTALION_REVIEW = "BATTALION_REVIEW"
    COMMANDER_REVIEW = "COMMANDER_REVIEW"
    INSTALLATION_REVIEW = "INSTALLATION_REVIEW"
    HQMC_REVIEW = "HQMC_REVIEW"
    EXTERNAL_REVIEW = "EXTERNAL_REVIEW"
    ORIGINATOR_REVIEW = "ORIGINATOR_REVIEW"
    ARCHIVED = "ARCHIVED"


INITIAL_STAGE = Stage.PLATOON_REVIEW
TERMINAL_STAGE = Stage.ARCHIVED

UNIT_CHAIN: tuple[Stage, ...] = (
    Stage.PLATOON_REVIEW,
    Stage.COMPANY_REVIEW,
    Stage.BATTALION_REVIEW,
    Stage.COMMANDER_REVIEW,
)

# Stages in which the originator may still change the request.
REQUESTER_EDITABLE_STAGES = frozenset({Stage.PLATOON_REVIEW, Stage.COMPANY_REVIEW, Stage.BATTALION_REVIEW})


def _raw_stage(request: Any) -> str:
    raw = getattr(request, "current_stage", None) or INITIAL_STAGE
    return str(getattr(raw, "value", raw))


def stage_of(request: Any) -> Stage | None:
    """Current stage of a request; a missing stage reads as the initial stage, an unknown one as None."""
    try:
        return Stage(_raw_stage(request))
    except ValueError:
        return None


def section_of(request: Any) -> str:
    return str(getattr(request, "route_section", None) or "").strip()


def next_stage(stage: Stage | None) -> Stage | None:
    """Next stage up the unit chain, or None at the commander / outside the chain."""
    if stage not in UNIT_CHAIN:
        return None
    idx = UNIT_CHAIN.index(stage)
    if idx >= len(UNIT_CHAIN) - 1:
        return None
    return UNIT_CHAIN[idx + 1]


def previous_stage(stage: Stage | None) -> Stage | None:
    """Previous stage down the unit chain, or None at platoon / outside the chain."""
    if stage not in UNIT_CHAIN:
        return None
    idx = UNIT_CHAIN.index(stage)
    if idx == 0:
        return None
    return UNIT_CHAIN[idx - 1]


def is_unit_stage(stage: Stage | None) -> bool:
    return stage in UNIT_CHAIN


def format_stage_label(request: Any) -> str:
    """Short human label for where a request currently sits."""
    raw = _raw_stage(request)
    sec = section_of(request)
    if raw == Stage.PLATOON_REVIEW:
        return "Platoon"
    if raw == Stage.COMPANY_REVIEW:
        return "Company"
    if raw == Stage.BATTALION_REVIEW:
        return sec or "Battalion"
    if raw == Stage.COMMANDER_REVIEW:
        return sec or "Commander"
    if raw == Stage.INSTALLATION_REVIEW:
        return f"Installation - {sec}" if sec else "Installation Commander"
    if raw == Stage.HQMC_REVIEW:
        return f"HQMC - {sec}" if sec else "HQMC"
    if raw == Stage.EXTERNAL_REVIEW:
        return getattr(request, "external_pending_unit_name", None) or "External"
    if raw == Stage.ORIGINATOR_REVIEW:
        return "Originator"
    if raw == Stage.ARCHIVED:
        return "Archived"
    return raw
