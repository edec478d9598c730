"""Engagement state store - per-identity counters, score and funnel stage

Every mutation is a read-modify-write against the database. Concurrent events
for the same identity are last-writer-wins: no version column guards the row,
and the next event recomputes the score from the stored counters.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.action import Action, ActionOutcome
from src.hospitality_engine.models.engagement_event import EngagementEvent
from src.hospitality_engine.models.engagement_state import EngagementState, FunnelStage, funnel_rank
from src.hospitality_engine.models.rule_cooldown import RuleCooldown
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.services.scoring import calculate_engagement_score, determine_funnel_stage
from src.hospitality_engine.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

# upper bound of the Integer time column
MAX_TRACKED_SECONDS = 2**31 - 1


def get_state(db: Session, identity: Identity) -> Optional[EngagementState]:
    return db.execute(
        select(EngagementState).where(identity.filter_for(EngagementState))
    ).scalar_one_or_none()


def get_or_create_state(db: Session, identity: Identity, now: Optional[datetime] = None) -> EngagementState:
    state = get_state(db, identity)
    if state:
        return state

    now = now or utcnow()
    state = EngagementState(
        **identity.as_columns(),
        page_views=0,
        total_time_on_site_seconds=0,
        session_count=1,
        current_session_start=now,
        engagement_score=0,
        funnel_stage=FunnelStage.VISITOR,
        popups_shown_today=0,
        popups_dismissed_today=0,
        last_activity_at=now,
    )
    try:
        with db.begin_nested():
            db.add(state)
    except IntegrityError:
        # another request created the row first
        logger.debug(f"Engagement state for {identity} created concurrently, reloading")
        state = get_state(db, identity)
        if state is None:
            raise
    else:
        logger.debug(f"Created engagement state for {identity}")
    return state


def apply_counters(state: EngagementState, event_type: str, metric_value: Optional[float], now: datetime) -> None:
    if event_type == "page_view":
        state.page_views = (state.page_views or 0) + 1
    elif event_type == "time_on_page":
        if metric_value and metric_value > 0:
            total = (state.total_time_on_site_seconds or 0) + int(min(metric_value, MAX_TRACKED_SECONDS))
            state.total_time_on_site_seconds = min(total, MAX_TRACKED_SECONDS)
    elif event_type == "session_start":
        state.session_count = (state.session_count or 0) + 1
        state.current_session_start = now


def apply_event(
    db: Session,
    identity: Identity,
    event: EngagementEvent,
    now: Optional[datetime] = None
) -> EngagementState:
    """Fold one event into the identity's state and persist it."""
    now = now or utcnow()
    state = get_or_create_state(db, identity, now)

    apply_counters(state, event.event_type, event.metric_value, now)

    state.engagement_score = calculate_engagement_score(
        state.page_views,
        state.total_time_on_site_seconds,
        state.session_count,
        event.event_type,
        event.metric_value,
    )
    state.funnel_stage = determine_funnel_stage(state.engagement_score, state.funnel_stage)

    state.last_activity_at = now
    if event.page_url:
        state.last_page_url = event.page_url
    if event.persona_id:
        state.last_persona_id = event.persona_id

    db.flush()
    return state


def higher_stage(a: FunnelStage, b: FunnelStage) -> FunnelStage:
    return a if funnel_rank(a) >= funnel_rank(b) else b


def merge_states(session_state: EngagementState, account_state: EngagementState, now: datetime) -> EngagementState:
    account_state.page_views = max(account_state.page_views or 0, session_state.page_views or 0)
    account_state.total_time_on_site_seconds = max(
        account_state.total_time_on_site_seconds or 0,
        session_state.total_time_on_site_seconds or 0,
    )
    account_state.session_count = (account_state.session_count or 0) + (session_state.session_count or 0)
    account_state.engagement_score = max(account_state.engagement_score or 0, session_state.engagement_score or 0)
    account_state.funnel_stage = higher_stage(account_state.funnel_stage, session_state.funnel_stage)
    account_state.popups_shown_today = max(account_state.popups_shown_today or 0, session_state.popups_shown_today or 0)
    account_state.popups_dismissed_today = max(
        account_state.popups_dismissed_today or 0,
        session_state.popups_dismissed_today or 0,
    )

    session_cooldown = as_utc(session_state.global_cooldown_until)
    account_cooldown = as_utc(account_state.global_cooldown_until)
    if session_cooldown and (account_cooldown is None or session_cooldown > account_cooldown):
        account_state.global_cooldown_until = session_cooldown

    if not account_state.last_page_url:
        account_state.last_page_url = session_state.last_page_url
    if not account_state.last_persona_id:
        account_state.last_persona_id = session_state.last_persona_id
    account_state.last_activity_at = now
    return account_state


def _move_cooldowns(db: Session, session_id: str, account_id: int) -> None:
    session_rows = db.execute(
        select(RuleCooldown).where(RuleCooldown.session_id == session_id)
    ).scalars().all()

    for row in session_rows:
        existing = db.execute(
            select(RuleCooldown).where(
                RuleCooldown.account_id == account_id,
                RuleCooldown.rule_id == row.rule_id
            )
        ).scalar_one_or_none()

        if existing is None:
            row.account_id = account_id
            row.session_id = None
            continue

        if row.cooldown_until and (
            existing.cooldown_until is None or as_utc(row.cooldown_until) > as_utc(existing.cooldown_until)
        ):
            existing.cooldown_until = row.cooldown_until
        existing.times_triggered_session = max(existing.times_triggered_session, row.times_triggered_session)
        existing.times_triggered_today = max(existing.times_triggered_today, row.times_triggered_today)
        db.delete(row)


def migrate_session_to_account(
    db: Session,
    session_id: str,
    account_id: int,
    now: Optional[datetime] = None
) -> Optional[EngagementState]:
    """Merge an anonymous session's state into the account after login."""
    now = now or utcnow()
    session_state = get_state(db, Identity(session_id=session_id))
    account_identity = Identity(account_id=account_id)

    if not session_state:
        return get_state(db, account_identity)

    account_state = get_state(db, account_identity)
    if account_state:
        merge_states(session_state, account_state, now)
        db.delete(session_state)
        db.flush()
        result = account_state
    else:
        session_state.account_id = account_id
        session_state.session_id = None
        session_state.last_activity_at = now
        result = session_state
        db.flush()

    db.execute(
        update(Action)
        .where(Action.session_id == session_id, Action.outcome == ActionOutcome.PENDING)
        .values(account_id=account_id, session_id=None)
    )
    _move_cooldowns(db, session_id, account_id)
    db.flush()

    logger.info(f"Migrated engagement session to account: session_id={session_id}, account_id={account_id}")
    return result


def upgrade_to_subscriber(db: Session, identity: Identity) -> EngagementState:
    state = get_or_create_state(db, identity)
    if state.funnel_stage != FunnelStage.ADVOCATE:
        state.funnel_stage = FunnelStage.SUBSCRIBER
    db.flush()
    logger.info(f"Upgraded {identity} to funnel stage {state.funnel_stage.value}")
    return state


def set_funnel_stage(db: Session, identity: Identity, stage: FunnelStage) -> Optional[EngagementState]:
    """Admin override; the only path that can lower a subscriber or advocate."""
    state = get_state(db, identity)
    if not state:
        return None
    previous = state.funnel_stage
    state.funnel_stage = FunnelStage(stage)
    db.flush()
    logger.info(f"Funnel stage override for {identity}: {previous.value} -> {state.funnel_stage.value}")
    return state


def reset_state(db: Session, identity: Identity, now: Optional[datetime] = None) -> Optional[EngagementState]:
    state = get_state(db, identity)
    if not state:
        return None
    now = now or utcnow()
    state.page_views = 0
    state.total_time_on_site_seconds = 0
    state.session_count = 1
    state.current_session_start = now
    state.engagement_score = 0
    state.funnel_stage = FunnelStage.VISITOR
    state.popups_shown_today = 0
    state.popups_dismissed_today = 0
    state.last_popup_shown_at = None
    state.last_popup_type = None
    state.global_cooldown_until = None
    db.flush()
    logger.info(f"Engagement state reset for {identity}")
    return state


def is_in_global_cooldown(state: EngagementState, now: Optional[datetime] = None) -> bool:
    until = as_utc(state.global_cooldown_until)
    return until is not None and until > (now or utcnow())


def set_global_cooldown(
    db: Session,
    identity: Identity,
    seconds: Optional[int] = None,
    now: Optional[datetime] = None
) -> EngagementState:
    settings = get_settings()
    seconds = seconds if seconds is not None else settings.GLOBAL_COOLDOWN_SECONDS
    state = get_or_create_state(db, identity, now)
    state.global_cooldown_until = (now or utcnow()) + timedelta(seconds=seconds)
    db.flush()
    logger.debug(f"Set global hospitality cooldown for {identity}: {seconds}s")
    return state


def record_popup_shown(
    db: Session,
    identity: Identity,
    popup_type: Optional[str],
    now: Optional[datetime] = None
) -> EngagementState:
    state = get_or_create_state(db, identity, now)
    state.popups_shown_today = (state.popups_shown_today or 0) + 1
    state.last_popup_shown_at = now or utcnow()
    state.last_popup_type = popup_type
    db.flush()
    return state


def record_popup_dismissed(db: Session, identity: Identity, now: Optional[datetime] = None) -> EngagementState:
    settings = get_settings()
    state = get_or_create_state(db, identity, now)
    state.popups_dismissed_today = (state.popups_dismissed_today or 0) + 1
    db.flush()

    if state.popups_dismissed_today >= settings.DISMISSALS_BEFORE_GLOBAL_COOLDOWN:
        set_global_cooldown(db, identity, now=now)
        logger.info(f"{identity} dismissed {state.popups_dismissed_today} popups today, global cooldown applied")
    return state


def reset_daily_popup_counters(db: Session) -> int:
    result = db.execute(
        update(EngagementState)
        .where((EngagementState.popups_shown_today > 0) | (EngagementState.popups_dismissed_today > 0))
        .values(popups_shown_today=0, popups_dismissed_today=0)
    )
    return result.rowcount or 0
