"""Pydantic schemas for rule and category administration"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from src.hospitality_engine.models.engagement_state import FunnelStage
from src.hospitality_engine.schemas.event import IdentityFields


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=150, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = None
    category_id: Optional[int] = None
    rule_number: Optional[str] = Field(None, max_length=20)
    target_audience: str = "all"
    target_funnel_stages: Optional[List[str]] = None
    trigger_conditions: Dict[str, Any] = Field(default_factory=dict)
    action_type: str
    action_config: Dict[str, Any] = Field(default_factory=dict)
    message_template: Optional[str] = None
    priority: int = 100
    cooldown_seconds: int = 300
    max_per_session: Optional[int] = 1
    max_per_day: Optional[int] = 3
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, min_length=1, max_length=150, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = None
    category_id: Optional[int] = None
    rule_number: Optional[str] = Field(None, max_length=20)
    target_audience: Optional[str] = None
    target_funnel_stages: Optional[List[str]] = None
    trigger_conditions: Optional[Dict[str, Any]] = None
    action_type: Optional[str] = None
    action_config: Optional[Dict[str, Any]] = None
    message_template: Optional[str] = None
    priority: Optional[int] = None
    cooldown_seconds: Optional[int] = None
    max_per_session: Optional[int] = None
    max_per_day: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    rule_number: Optional[str] = None
    target_audience: str
    target_funnel_stages: Optional[List[str]] = None
    trigger_conditions: Dict[str, Any]
    action_type: str
    action_config: Dict[str, Any]
    message_template: Optional[str] = None
    priority: int
    cooldown_seconds: int
    max_per_session: Optional[int] = None
    max_per_day: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RuleListResponse(BaseModel):
    rules: List[RuleResponse]
    total: int


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = None
    parent_id: Optional[int] = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CategoryRulesResponse(BaseModel):
    category_id: int
    rules: List[RuleResponse]
    generated: int
    total: int


class StageOverrideRequest(IdentityFields):
    funnel_stage: FunnelStage


class StateResetRequest(IdentityFields):
    pass
