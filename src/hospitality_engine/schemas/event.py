"""Pydantic schemas for event intake, engagement state and action delivery"""
from datetime import datetime
from typing import Annotated, Any, Dict, Optional, Union
from pydantic import BaseModel, Field, model_validator

from src.hospitality_engine.models.action import ActionOutcome
from src.hospitality_engine.models.engagement_state import FunnelStage

MAX_METRIC_VALUE = 1_000_000


class IdentityFields(BaseModel):
    account_id: Optional[int] = None
    session_id: Optional[str] = Field(None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def require_identity(self):
        if self.account_id is None and not self.session_id:
            raise ValueError("account_id or session_id is required")
        return self


class EventCreate(IdentityFields):
    event_type: str = Field(..., min_length=1, max_length=100)
    page_url: Optional[str] = Field(None, max_length=500)
    metric_value: Optional[float] = Field(None, ge=0, le=MAX_METRIC_VALUE, allow_inf_nan=False)
    persona_id: Optional[Union[Annotated[int, Field(ge=0, le=2**31 - 1)], Annotated[str, Field(max_length=100)]]] = None
    timestamp: Optional[datetime] = None


class StateResponse(BaseModel):
    account_id: Optional[int] = None
    session_id: Optional[str] = None
    page_views: int
    total_time_on_site_seconds: int
    session_count: int
    engagement_score: int
    funnel_stage: FunnelStage
    popups_shown_today: int
    popups_dismissed_today: int
    last_activity_at: Optional[datetime] = None
    last_page_url: Optional[str] = None
    last_persona_id: Optional[str] = None
    last_popup_shown_at: Optional[datetime] = None
    last_popup_type: Optional[str] = None
    global_cooldown_until: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActionResponse(BaseModel):
    id: int
    rule_id: Optional[int] = None
    action_type: str
    action_subtype: Optional[str] = None
    persona_id: Optional[str] = None
    action_config: Dict[str, Any]
    outcome: ActionOutcome
    outcome_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EventResponse(BaseModel):
    event_id: int
    state: StateResponse
    action: Optional[ActionResponse] = None


class PendingActionResponse(BaseModel):
    id: int
    action_type: str
    action_config: Dict[str, Any]
    rule_id: Optional[int] = None
    persona_id: Optional[str] = None
    page_url: Optional[str] = None
    created_at: datetime


class CheckResponse(BaseModel):
    has_action: bool
    action: Optional[PendingActionResponse] = None


class ActionOutcomeRequest(IdentityFields):
    action_id: int


class MergeRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    account_id: int


class MergeResponse(BaseModel):
    merged: bool
    state: Optional[StateResponse] = None
