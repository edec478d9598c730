"""Event intake and action delivery endpoints"""
import logging
from typing import Callable

from fastapi import APIRouter, HTTPException

from src.hospitality_engine.api.deps import DbSession, Catalog, QueryIdentity, identity_from
from src.hospitality_engine.schemas.event import (
    EventCreate, EventResponse, StateResponse, ActionResponse,
    CheckResponse, PendingActionResponse, ActionOutcomeRequest,
    MergeRequest, MergeResponse,
)
from src.hospitality_engine.services.action_ledger import ActionNotFoundError, ActionStateError
from src.hospitality_engine.services.delivery import (
    check_for_pending_action, record_shown, record_dismissed, record_clicked, record_converted,
)
from src.hospitality_engine.services.engagement_state import get_state, migrate_session_to_account
from src.hospitality_engine.services.event_processing import process_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hospitality", tags=["Hospitality"])


def action_to_response(action) -> ActionResponse:
    return ActionResponse(
        id=action.id,
        rule_id=action.rule_id,
        action_type=action.action_type.value,
        action_subtype=action.action_subtype,
        persona_id=action.persona_id,
        action_config=action.action_config or {},
        outcome=action.outcome,
        outcome_at=action.outcome_at,
        created_at=action.created_at,
    )


@router.post("/events", response_model=EventResponse, status_code=201)
def ingest_event(db: DbSession, catalog: Catalog, data: EventCreate):
    identity = identity_from(data)
    result = process_event(
        db, catalog, identity,
        event_type=data.event_type,
        page_url=data.page_url,
        metric_value=data.metric_value,
        persona_id=data.persona_id,
        occurred_at=data.timestamp,
    )
    db.commit()

    return EventResponse(
        event_id=result.event.id,
        state=StateResponse.model_validate(result.state),
        action=action_to_response(result.action) if result.action else None,
    )


@router.get("/check", response_model=CheckResponse)
def check_pending_action(db: DbSession, identity: QueryIdentity):
    pending = check_for_pending_action(db, identity)
    if not pending:
        return CheckResponse(has_action=False)
    return CheckResponse(
        has_action=True,
        action=PendingActionResponse(
            id=pending.id,
            action_type=pending.action_type,
            action_config=pending.action_config,
            rule_id=pending.rule_id,
            persona_id=pending.persona_id,
            page_url=pending.page_url,
            created_at=pending.created_at,
        ),
    )


def _apply_outcome(db, data: ActionOutcomeRequest, mutator: Callable) -> ActionResponse:
    identity = identity_from(data)
    try:
        action = mutator(db, identity, data.action_id)
        db.commit()
        return action_to_response(action)
    except ActionNotFoundError:
        raise HTTPException(status_code=404, detail="Action not found")
    except ActionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/shown", response_model=ActionResponse)
def mark_shown(db: DbSession, data: ActionOutcomeRequest):
    return _apply_outcome(db, data, record_shown)


@router.post("/dismiss", response_model=ActionResponse)
def mark_dismissed(db: DbSession, data: ActionOutcomeRequest):
    return _apply_outcome(db, data, record_dismissed)


@router.post("/clicked", response_model=ActionResponse)
def mark_clicked(db: DbSession, data: ActionOutcomeRequest):
    return _apply_outcome(db, data, record_clicked)


@router.post("/converted", response_model=ActionResponse)
def mark_converted(db: DbSession, data: ActionOutcomeRequest):
    return _apply_outcome(db, data, record_converted)


@router.get("/state", response_model=StateResponse)
def get_engagement_state(db: DbSession, identity: QueryIdentity):
    state = get_state(db, identity)
    if not state:
        raise HTTPException(status_code=404, detail="Engagement state not found")
    return StateResponse.model_validate(state)


@router.post("/identity/merge", response_model=MergeResponse)
def merge_identity(db: DbSession, data: MergeRequest):
    state = migrate_session_to_account(db, data.session_id, data.account_id)
    db.commit()
    if not state:
        return MergeResponse(merged=False)
    return MergeResponse(merged=True, state=StateResponse.model_validate(state))
