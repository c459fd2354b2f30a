from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from app.models.alert import Alert


class Decision(Base, TimestampMixin):
    """Local mirror of a CrowdSec decision (ban, captcha, ...).

    Decisions are live state: after every sync pass the set of decisions
    stored under an alert equals the set the LAPI reported for it.
    """

    __tablename__ = "decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    alert_id: Mapped[int] = mapped_column(
        ForeignKey("alerts.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )

    origin: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    scope: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    duration: Mapped[str] = mapped_column(String(64), nullable=False)  # raw LAPI duration, e.g. "3h59m58s"
    scenario: Mapped[str] = mapped_column(String(255), nullable=False)
    simulated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    expiration: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    crowdsec_created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    alert: Mapped[Alert] = relationship("Alert", back_populates="decisions")

    __table_args__ = (
        Index("ix_decisions_alert_id", "alert_id"),
        Index("ix_decisions_type", "type"),
        Index("ix_decisions_scope", "scope"),
        Index("ix_decisions_value", "value"),
        Index("ix_decisions_simulated", "simulated"),
        Index("ix_decisions_expiration", "expiration"),
    )
