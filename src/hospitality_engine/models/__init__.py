"""Database models"""
from src.hospitality_engine.models.base import Base
from src.hospitality_engine.models.engagement_state import EngagementState, FunnelStage
from src.hospitality_engine.models.engagement_event import EngagementEvent
from src.hospitality_engine.models.rule import Rule, RuleCategory, TargetAudience, ActionType
from src.hospitality_engine.models.action import Action, ActionOutcome
from src.hospitality_engine.models.rule_cooldown import RuleCooldown
from src.hospitality_engine.models.audit_log import AuditLog

__all__ = [
    "Base", "EngagementState", "FunnelStage", "EngagementEvent", "Rule", "RuleCategory",
    "TargetAudience", "ActionType", "Action", "ActionOutcome", "RuleCooldown", "AuditLog",
]
