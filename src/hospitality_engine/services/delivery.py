"""Delivery-facing operations: pending action gate and outcome mutators"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.action import Action, ActionOutcome
from src.hospitality_engine.services.action_ledger import PendingAction, get_action, get_next_pending_action, set_outcome
from src.hospitality_engine.services.engagement_state import (
    get_state,
    is_in_global_cooldown,
    record_popup_shown,
    record_popup_dismissed,
)
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.timeutil import utcnow

logger = logging.getLogger(__name__)


def check_for_pending_action(
    db: Session,
    identity: Identity,
    now: Optional[datetime] = None
) -> Optional[PendingAction]:
    """Next pending action, unless the identity is cooling down or at its daily popup limit."""
    settings = get_settings()
    now = now or utcnow()

    state = get_state(db, identity)
    if state is not None:
        if is_in_global_cooldown(state, now):
            logger.debug(f"Global cooldown active for {identity}, no action delivered")
            return None
        if (state.popups_shown_today or 0) >= settings.MAX_POPUPS_PER_DAY:
            logger.debug(f"Daily popup limit reached for {identity}")
            return None

    return get_next_pending_action(db, identity)


def _already(db: Session, action_id: int, outcome: ActionOutcome) -> bool:
    action = get_action(db, action_id)
    return action is not None and action.outcome == outcome


def record_shown(db: Session, identity: Identity, action_id: int, now: Optional[datetime] = None) -> Action:
    now = now or utcnow()
    repeated = _already(db, action_id, ActionOutcome.SHOWN)
    action = set_outcome(db, action_id, ActionOutcome.SHOWN, identity=identity, now=now)
    if not repeated:
        record_popup_shown(db, identity, action.action_subtype or action.action_type.value, now)
    return action


def record_dismissed(db: Session, identity: Identity, action_id: int, now: Optional[datetime] = None) -> Action:
    now = now or utcnow()
    repeated = _already(db, action_id, ActionOutcome.DISMISSED)
    action = set_outcome(db, action_id, ActionOutcome.DISMISSED, identity=identity, now=now)
    if not repeated:
        record_popup_dismissed(db, identity, now)
    return action


def record_clicked(db: Session, identity: Identity, action_id: int, now: Optional[datetime] = None) -> Action:
    return set_outcome(db, action_id, ActionOutcome.CLICKED, identity=identity, now=now)


def record_converted(db: Session, identity: Identity, action_id: int, now: Optional[datetime] = None) -> Action:
    action = set_outcome(db, action_id, ActionOutcome.CONVERTED, identity=identity, now=now)
    logger.info(f"Hospitality action converted: action_id={action_id}, rule_id={action.rule_id}, identity={identity}")
    return action
