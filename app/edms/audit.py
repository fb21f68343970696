import json
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.edms.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    http_request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid = http_request_id
    if rid is None and has_request_context():
        rid = getattr(g, "request_id", None)
    ev = AuditEvent(
        http_request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev
