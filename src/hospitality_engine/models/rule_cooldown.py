"""RuleCooldown model - per identity and rule firing history"""
from datetime import date, datetime
from typing import Optional
from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.hospitality_engine.models.base import Base
from src.hospitality_engine.timeutil import utcnow


class RuleCooldown(Base):
    __tablename__ = "rule_cooldowns"
    __table_args__ = (
        UniqueConstraint("account_id", "rule_id", name="uq_rule_cooldowns_account_rule"),
        UniqueConstraint("session_id", "rule_id", name="uq_rule_cooldowns_session_rule"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    rule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("hospitality_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    times_triggered_session: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_triggered_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cooldown_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_daily_reset: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )
