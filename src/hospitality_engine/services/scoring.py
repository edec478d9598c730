"""Scoring service - engagement score and funnel stage calculation"""
import math
from typing import Optional

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.engagement_state import FunnelStage

MAX_SCORE = 100

# Chat interactions carry the highest one-shot weight.
SCORE_WEIGHTS = {
    "PAGE_VIEW": 5,
    "PAGE_VIEW_MAX": 25,
    "TIME_ON_SITE": 1,
    "TIME_ON_SITE_STEP_SECONDS": 30,
    "TIME_ON_SITE_MAX": 25,
    "SESSION_COUNT": 10,
    "SESSION_COUNT_MAX": 30,
}

EVENT_BONUSES = {
    "chat_start": 20,
    "chat_message": 5,
    "prayer_request": 15,
    "study_interaction": 10,
}

SCROLL_DEPTH_BONUS = 5
SCROLL_DEPTH_BONUS_MIN_PERCENT = 75


def get_event_bonus(event_type: Optional[str], metric_value: Optional[float] = None) -> int:
    if not event_type:
        return 0
    if event_type == "scroll_depth":
        if metric_value is not None and metric_value >= SCROLL_DEPTH_BONUS_MIN_PERCENT:
            return SCROLL_DEPTH_BONUS
        return 0
    return EVENT_BONUSES.get(event_type, 0)


def calculate_engagement_score(
    page_views: int,
    total_time_on_site_seconds: int,
    session_count: int,
    event_type: Optional[str] = None,
    metric_value: Optional[float] = None,
) -> int:
    """Score the counters plus the one-shot bonus of the latest event, capped to 0-100."""
    page_views = max(page_views or 0, 0)
    time_on_site = max(total_time_on_site_seconds or 0, 0)
    sessions = max(session_count or 0, 0)

    score = min(page_views * SCORE_WEIGHTS["PAGE_VIEW"], SCORE_WEIGHTS["PAGE_VIEW_MAX"])

    time_steps = math.floor(time_on_site / SCORE_WEIGHTS["TIME_ON_SITE_STEP_SECONDS"])
    score += min(time_steps * SCORE_WEIGHTS["TIME_ON_SITE"], SCORE_WEIGHTS["TIME_ON_SITE_MAX"])

    score += min(sessions * SCORE_WEIGHTS["SESSION_COUNT"], SCORE_WEIGHTS["SESSION_COUNT_MAX"])

    score += get_event_bonus(event_type, metric_value)

    return max(0, min(score, MAX_SCORE))


def determine_funnel_stage(score: int, current_stage: Optional[FunnelStage] = None) -> FunnelStage:
    settings = get_settings()
    current = FunnelStage(current_stage) if current_stage else FunnelStage.VISITOR

    # subscriber and advocate never move down on score alone
    if current in (FunnelStage.SUBSCRIBER, FunnelStage.ADVOCATE):
        if score >= settings.FUNNEL_ADVOCATE_THRESHOLD:
            return FunnelStage.ADVOCATE
        return current

    if score >= settings.FUNNEL_ENGAGED_THRESHOLD:
        return FunnelStage.ENGAGED
    elif score >= settings.FUNNEL_INTERESTED_THRESHOLD:
        return FunnelStage.INTERESTED
    return FunnelStage.VISITOR
