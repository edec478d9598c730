"""Event intake - record, fold into state, evaluate rules

Processing is best-effort and at-most-once per event: a failure while
evaluating rules yields no action, and callers never retry an event.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.hospitality_engine.models.action import Action
from src.hospitality_engine.models.engagement_event import EngagementEvent, EngagementEventType
from src.hospitality_engine.models.engagement_state import EngagementState
from src.hospitality_engine.services.engagement_state import apply_event
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.services.rule_evaluator import evaluate_rules_for_event, reset_session_trigger_counts
from src.hospitality_engine.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EventResult:
    event: EngagementEvent
    state: EngagementState
    action: Optional[Action]


def record_event(
    db: Session,
    identity: Identity,
    event_type: str,
    page_url: Optional[str] = None,
    metric_value: Optional[float] = None,
    persona_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None
) -> EngagementEvent:
    event = EngagementEvent(
        **identity.as_columns(),
        event_type=event_type,
        page_url=page_url,
        metric_value=metric_value,
        persona_id=str(persona_id) if persona_id is not None else None,
        created_at=occurred_at or utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def process_event(
    db: Session,
    catalog,
    identity: Identity,
    event_type: str,
    page_url: Optional[str] = None,
    metric_value: Optional[float] = None,
    persona_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> EventResult:
    """Append the event, update engagement state and trigger at most one action.

    The caller owns the transaction and commits on success.
    """
    now = now or utcnow()
    event = record_event(db, identity, event_type, page_url, metric_value, persona_id, occurred_at or now)
    state = apply_event(db, identity, event, now)

    if event_type == EngagementEventType.SESSION_START.value:
        reset_session_trigger_counts(db, identity)

    action = evaluate_rules_for_event(db, catalog, identity, event, state, now)

    logger.debug(
        f"Processed engagement event: event_id={event.id}, type={event_type}, identity={identity}, "
        f"score={state.engagement_score}, stage={state.funnel_stage.value}, action={'yes' if action else 'no'}"
    )
    return EventResult(event=event, state=state, action=action)
