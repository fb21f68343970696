from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from app.edms.models import Base


class LedgerViolation(RuntimeError):
    pass


class Request(Base):
    __tablename__ = "requests"
    __table_args__ = (
        Index("idx_requests_owner", "uploaded_by_id"),
        Index("idx_requests_unit_uic", "unit_uic"),
        Index("idx_requests_installation_id", "installation_id"),
        Index("idx_requests_stage", "current_stage"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    subject: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ownership / organizational scope
    uploaded_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_uic: Mapped[str | None] = mapped_column(String(32), nullable=True)
    installation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Lifecycle
    current_stage: Mapped[str] = mapped_column(String(32), nullable=False, default="PLATOON_REVIEW")
    route_section: Mapped[str | None] = mapped_column(String(128), nullable=True)  # empty = stage's top actor holds it
    previous_section: Mapped[str | None] = mapped_column(String(128), nullable=True)  # section that forwarded to the commander
    external_pending_unit_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_pending_unit_uic: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_pending_stage: Mapped[str | None] = mapped_column(String(128), nullable=True)
    final_status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # Approved / Endorsed; cleared on rejection

    # Records classification (SSIC)
    ssic: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ssic_nomenclature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ssic_bucket: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ssic_bucket_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cutoff_trigger: Mapped[str | None] = mapped_column(String(32), nullable=True)
    cutoff_description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    retention_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retention_unit: Mapped[str | None] = mapped_column(String(16), nullable=True)
    disposal_action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dau: Mapped[str | None] = mapped_column(String(64), nullable=True)  # disposition authority

    # Set once when the request enters the retention-tracked archive
    filed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Optimistic lock: every flushed UPDATE bumps this and checks the old value.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    activity: Mapped[list["ActivityEntry"]] = relationship(
        "ActivityEntry",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="ActivityEntry.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class ActivityEntry(Base):
    """
    One immutable fact in a request's ledger.

    `action` is the display text; `event_kind` / `event_scope` are the
    machine-readable tags. Entries written before the tags existed carry
    only text and are classified by pattern (see ledger.py).
    """

    __tablename__ = "request_activity"
    __table_args__ = (
        UniqueConstraint("request_id", "position", name="uq_request_activity_position"),
        Index("idx_request_activity_request", "request_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("requests.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # insertion index within the request

    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    action: Mapped[str] = mapped_column(String(512), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_section: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_section: Mapped[str | None] = mapped_column(String(128), nullable=True)

    event_kind: Mapped[str | None] = mapped_column(String(16), nullable=True)  # e.g. "APPROVED"
    event_scope: Mapped[str | None] = mapped_column(String(16), nullable=True)  # e.g. "UNIT"

    request: Mapped[Request] = relationship("Request", back_populates="activity", lazy="selectin")


@event.listens_for(ActivityEntry, "before_update")
def _reject_ledger_update(mapper, connection, target: ActivityEntry) -> None:  # type: ignore[no-untyped-def]
    s = object_session(target)
    if s is not None and not s.is_modified(target, include_collections=False):
        return
    raise LedgerViolation(f"Activity entry {target.id} is append-only and cannot be modified.")
