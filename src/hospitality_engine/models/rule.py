"""Rule catalog models - hierarchical categories and hospitality rules"""
import enum
from datetime import datetime
from typing import Optional, List
from sqlalchemy import String, Integer, Boolean, Text, DateTime, ForeignKey, Enum, JSON, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.hospitality_engine.models.base import Base
from src.hospitality_engine.timeutil import utcnow


class TargetAudience(str, enum.Enum):
    ALL = "all"
    VISITOR = "visitor"
    SUBSCRIBER = "subscriber"
    STAGES = "stages"


class ActionType(str, enum.Enum):
    POPUP = "popup"
    NOTIFICATION = "notification"
    PERSONA_MESSAGE = "persona_message"
    REDIRECT = "redirect"


class RuleCategory(Base):
    __tablename__ = "rule_categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("rule_categories.id"), nullable=True, index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    parent = relationship("RuleCategory", remote_side=[id], backref="children")


class Rule(Base):
    __tablename__ = "hospitality_rules"
    __table_args__ = (
        Index("ix_hospitality_rules_active_priority", "is_active", "priority"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("rule_categories.id"), nullable=True, index=True)
    rule_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)

    target_audience: Mapped[TargetAudience] = mapped_column(
        Enum(TargetAudience),
        nullable=False,
        default=TargetAudience.ALL
    )
    target_funnel_stages: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    trigger_conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    action_type: Mapped[ActionType] = mapped_column(Enum(ActionType), nullable=False)
    action_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    message_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    max_per_session: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_per_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )

    category = relationship("RuleCategory", backref="rules")
