"""Rule evaluator - first-match selection of a rule for an event"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.hospitality_engine.models.action import Action
from src.hospitality_engine.models.engagement_event import EngagementEvent
from src.hospitality_engine.models.engagement_state import EngagementState, FunnelStage
from src.hospitality_engine.models.rule import TargetAudience
from src.hospitality_engine.models.rule_cooldown import RuleCooldown
from src.hospitality_engine.services.action_ledger import create_action, get_action_for_event
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.services.predicates import evaluate_conditions
from src.hospitality_engine.services.rule_cache import RuleSnapshot
from src.hospitality_engine.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

VISITOR_STAGES = {FunnelStage.VISITOR, FunnelStage.INTERESTED}
SUBSCRIBER_STAGES = {FunnelStage.ENGAGED, FunnelStage.SUBSCRIBER, FunnelStage.ADVOCATE}


def matches_target_audience(rule: RuleSnapshot, state: EngagementState) -> bool:
    audience = rule.target_audience
    stage = FunnelStage(state.funnel_stage or FunnelStage.VISITOR)

    if audience == TargetAudience.ALL.value:
        return True
    if audience == TargetAudience.VISITOR.value:
        return stage in VISITOR_STAGES
    if audience == TargetAudience.SUBSCRIBER.value:
        return stage in SUBSCRIBER_STAGES
    if audience == TargetAudience.STAGES.value:
        return stage.value in {s.lower() for s in rule.target_funnel_stages}
    return False


def is_within_schedule(rule: RuleSnapshot, now: datetime) -> bool:
    start, end = as_utc(rule.start_date), as_utc(rule.end_date)
    if start and now < start:
        return False
    if end and now >= end:
        return False
    return True


def get_cooldown(db: Session, identity: Identity, rule_id: int) -> Optional[RuleCooldown]:
    return db.execute(
        select(RuleCooldown).where(identity.filter_for(RuleCooldown), RuleCooldown.rule_id == rule_id)
    ).scalar_one_or_none()


def is_on_cooldown(db: Session, identity: Identity, rule: RuleSnapshot, now: datetime) -> bool:
    cooldown = get_cooldown(db, identity, rule.id)
    if not cooldown:
        return False

    until = as_utc(cooldown.cooldown_until)
    if until and until > now:
        return True

    if rule.max_per_session is not None and cooldown.times_triggered_session >= rule.max_per_session:
        return True

    if (
        rule.max_per_day is not None
        and cooldown.last_daily_reset == now.date()
        and cooldown.times_triggered_today >= rule.max_per_day
    ):
        return True

    return False


def update_cooldown(db: Session, identity: Identity, rule: RuleSnapshot, now: datetime) -> RuleCooldown:
    cooldown = get_cooldown(db, identity, rule.id)
    if cooldown is None:
        cooldown = RuleCooldown(
            **identity.as_columns(),
            rule_id=rule.id,
            times_triggered_session=0,
            times_triggered_today=0,
            last_daily_reset=now.date(),
        )
        try:
            with db.begin_nested():
                db.add(cooldown)
        except IntegrityError:
            cooldown = get_cooldown(db, identity, rule.id)
            if cooldown is None:
                raise

    today = now.date()
    if cooldown.last_daily_reset != today:
        cooldown.times_triggered_today = 0
        cooldown.last_daily_reset = today

    cooldown.times_triggered_session += 1
    cooldown.times_triggered_today += 1
    cooldown.last_triggered_at = now
    cooldown.cooldown_until = now + timedelta(seconds=rule.cooldown_seconds or 0)
    db.flush()
    return cooldown


def reset_session_trigger_counts(db: Session, identity: Identity) -> int:
    result = db.execute(
        update(RuleCooldown)
        .where(identity.filter_for(RuleCooldown), RuleCooldown.times_triggered_session > 0)
        .values(times_triggered_session=0)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def reset_daily_trigger_counts(db: Session, today) -> int:
    result = db.execute(
        update(RuleCooldown)
        .where(RuleCooldown.last_daily_reset < today)
        .values(times_triggered_today=0, last_daily_reset=today)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def rule_matches(
    db: Session,
    identity: Identity,
    rule: RuleSnapshot,
    event: EngagementEvent,
    state: EngagementState,
    now: datetime
) -> bool:
    if not matches_target_audience(rule, state):
        return False
    if not is_within_schedule(rule, now):
        return False
    if not evaluate_conditions(rule.trigger_conditions, event, state):
        return False
    if is_on_cooldown(db, identity, rule, now):
        logger.debug(f"Rule on cooldown: rule_id={rule.id}, identity={identity}")
        return False
    return True


def select_rule(
    db: Session,
    identity: Identity,
    rules: List[RuleSnapshot],
    event: EngagementEvent,
    state: EngagementState,
    now: Optional[datetime] = None
) -> Optional[RuleSnapshot]:
    """Return the first rule, in priority order, that passes every check."""
    now = now or utcnow()
    for rule in sorted(rules, key=lambda r: r.sort_key):
        try:
            if rule_matches(db, identity, rule, event, state, now):
                return rule
        except SQLAlchemyError:
            raise
        except Exception:
            logger.exception(f"Error evaluating rule: rule_id={rule.id}, slug={rule.slug}")
    return None


def evaluate_rules_for_event(
    db: Session,
    catalog,
    identity: Identity,
    event: EngagementEvent,
    state: EngagementState,
    now: Optional[datetime] = None
) -> Optional[Action]:
    """Trigger at most one action for the event; None when nothing matches."""
    now = now or utcnow()

    existing = get_action_for_event(db, event.id)
    if existing:
        return existing

    rules = catalog.get_active_rules()
    if not rules:
        return None

    rule = select_rule(db, identity, rules, event, state, now)
    if rule is None:
        return None

    action = create_action(db, identity, rule, event, state, now)
    update_cooldown(db, identity, rule, now)

    logger.info(
        f"Hospitality rule triggered: rule_id={rule.id}, rule={rule.name}, "
        f"action_id={action.id}, identity={identity}"
    )
    return action
