from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from app.models.decision import Decision


class Alert(Base, TimestampMixin):
    """Local mirror of a CrowdSec alert.

    The primary key is the id assigned by the LAPI. Alerts are historical
    records: a sync pass updates them while the LAPI still reports them and
    never deletes them. Only retention cleanup or an explicit delete removes
    a row.
    """

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    uuid: Mapped[str | None] = mapped_column(String(64), nullable=True)

    scenario: Mapped[str] = mapped_column(String(255), nullable=False)
    scenario_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scenario_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leakspeed: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    simulated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remediation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    events_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    machine_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    source: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    labels: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    events: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps reported by CrowdSec
    crowdsec_created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    stop_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    decisions: Mapped[list[Decision]] = relationship(
        "Decision",
        back_populates="alert",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Decision.id",
    )

    __table_args__ = (
        Index("ix_alerts_scenario", "scenario"),
        Index("ix_alerts_simulated", "simulated"),
        Index("ix_alerts_start_at", "start_at"),
        Index("ix_alerts_crowdsec_created_at", "crowdsec_created_at"),
    )
