"""Action ledger - triggered actions and their outcome lifecycle"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.action import Action, ActionOutcome
from src.hospitality_engine.models.engagement_event import EngagementEvent
from src.hospitality_engine.models.engagement_state import EngagementState
from src.hospitality_engine.models.rule import Rule, ActionType
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.services.rule_cache import RuleSnapshot
from src.hospitality_engine.timeutil import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ActionOutcome.PENDING: {ActionOutcome.SHOWN, ActionOutcome.EXPIRED},
    ActionOutcome.SHOWN: {ActionOutcome.DISMISSED, ActionOutcome.CLICKED},
    ActionOutcome.CLICKED: {ActionOutcome.CONVERTED},
}


class ActionError(Exception):
    """Base exception for action ledger operations"""
    pass


class ActionNotFoundError(ActionError):
    pass


class ActionStateError(ActionError):
    pass


@dataclass
class PendingAction:
    id: int
    action_type: str
    action_config: Dict[str, Any]
    rule_id: Optional[int]
    persona_id: Optional[str]
    page_url: Optional[str]
    created_at: datetime


def can_transition(current: ActionOutcome, target: ActionOutcome) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def get_action(db: Session, action_id: int) -> Optional[Action]:
    return db.get(Action, action_id)


def get_action_for_event(db: Session, event_id: int) -> Optional[Action]:
    return db.execute(
        select(Action).where(Action.trigger_event_id == event_id)
    ).scalar_one_or_none()


def create_action(
    db: Session,
    identity: Identity,
    rule: RuleSnapshot,
    event: EngagementEvent,
    state: Optional[EngagementState] = None,
    now: Optional[datetime] = None
) -> Action:
    action_config = dict(rule.action_config or {})
    persona_id = action_config.get("persona_id")
    if not persona_id and state is not None:
        persona_id = state.last_persona_id

    action = Action(
        **identity.as_columns(),
        rule_id=rule.id,
        action_type=ActionType(rule.action_type),
        action_subtype=action_config.get("subtype"),
        persona_id=str(persona_id) if persona_id else None,
        action_config=action_config,
        trigger_event_id=event.id,
        page_url=event.page_url,
        outcome=ActionOutcome.PENDING,
        created_at=now or utcnow(),
    )
    db.add(action)
    db.flush()
    return action


def get_pending_actions(db: Session, identity: Identity, limit: int = 5) -> List[Action]:
    stmt = (
        select(Action)
        .where(identity.filter_for(Action), Action.outcome == ActionOutcome.PENDING)
        .order_by(Action.created_at.desc(), Action.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def get_next_pending_action(db: Session, identity: Identity) -> Optional[PendingAction]:
    """Most recent pending action, with the rule's current config layered over the snapshot."""
    pending = get_pending_actions(db, identity, limit=1)
    if not pending:
        return None

    action = pending[0]
    config = dict(action.action_config or {})
    if action.rule_id:
        rule = db.get(Rule, action.rule_id)
        if rule:
            config.update(rule.action_config or {})

    return PendingAction(
        id=action.id,
        action_type=action.action_type.value,
        action_config=config,
        rule_id=action.rule_id,
        persona_id=action.persona_id,
        page_url=action.page_url,
        created_at=action.created_at,
    )


def set_outcome(
    db: Session,
    action_id: int,
    outcome: ActionOutcome,
    identity: Optional[Identity] = None,
    now: Optional[datetime] = None
) -> Action:
    """Move an action forward in its lifecycle; repeating the current outcome is a no-op."""
    action = get_action(db, action_id)
    if not action:
        raise ActionNotFoundError(f"Action {action_id} not found")
    if identity is not None:
        if (action.account_id, action.session_id) != (identity.account_id, identity.session_id):
            raise ActionNotFoundError(f"Action {action_id} not found for {identity}")

    outcome = ActionOutcome(outcome)
    if action.outcome == outcome:
        return action

    if not can_transition(action.outcome, outcome):
        logger.warning(f"Rejected action outcome transition: action_id={action_id}, {action.outcome.value} -> {outcome.value}")
        raise ActionStateError(f"Cannot change action outcome from '{action.outcome.value}' to '{outcome.value}'")

    action.outcome = outcome
    action.outcome_at = now or utcnow()
    db.flush()
    logger.debug(f"Action outcome updated: action_id={action_id}, outcome={outcome.value}")
    return action


def expire_old_pending_actions(
    db: Session,
    max_age_minutes: Optional[int] = None,
    now: Optional[datetime] = None
) -> int:
    """Mark pending actions older than the max age as expired; returns the count."""
    settings = get_settings()
    if max_age_minutes is None:
        max_age_minutes = settings.PENDING_ACTION_MAX_AGE_MINUTES
    now = now or utcnow()
    cutoff = now - timedelta(minutes=max_age_minutes)

    result = db.execute(
        update(Action)
        .where(Action.outcome == ActionOutcome.PENDING, Action.created_at < cutoff)
        .values(outcome=ActionOutcome.EXPIRED, outcome_at=now)
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount or 0
    if expired:
        logger.info(f"Expired {expired} pending hospitality actions older than {max_age_minutes} minutes")
    return expired


def count_actions_by_outcome(db: Session) -> Dict[str, int]:
    rows = db.execute(
        select(Action.outcome, func.count()).group_by(Action.outcome)
    ).all()
    counts = {outcome.value: 0 for outcome in ActionOutcome}
    for outcome, count in rows:
        counts[ActionOutcome(outcome).value] = count
    return counts
