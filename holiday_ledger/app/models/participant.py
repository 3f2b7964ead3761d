"""
models/participant.py — Participant table definition.

No business logic. No imports from services or routes.

A participant belongs to one holiday plan. The plan itself lives in the
planning service; plan_id is a plain indexed integer, not a foreign key.
Removing a participant goes through roster_service so their unpaid share is
re-split before the row disappears.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from holiday_ledger.app.extensions import db


class Participant(db.Model):
    __tablename__ = "participants"

    __table_args__ = (
        # Also enforced by the marshmallow schema; the schema is the primary gate.
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_participants_name_nonempty",
        ),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    plan_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Display order inside the plan's participant list.
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    contributions: Mapped[list["Contribution"]] = relationship(  # noqa: F821
        "Contribution",
        back_populates="participant",
        order_by="Contribution.id",
        # Never null out children; roster_service deletes them first.
        passive_deletes="all",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Participant id={self.id} plan_id={self.plan_id} name={self.name!r}>"
