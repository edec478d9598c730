"""Rule, category and engagement-state administration endpoints"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from src.hospitality_engine.api.deps import DbSession, AdminActor, Catalog, LockProvider, identity_from
from src.hospitality_engine.models.rule import Rule
from src.hospitality_engine.schemas.event import StateResponse
from src.hospitality_engine.schemas.rule import (
    RuleCreate, RuleUpdate, RuleResponse, RuleListResponse,
    CategoryCreate, CategoryResponse, CategoryRulesResponse,
    StageOverrideRequest, StateResetRequest,
)
from src.hospitality_engine.services.audit import log_action
from src.hospitality_engine.services.engagement_state import set_funnel_stage, reset_state
from src.hospitality_engine.services.named_lock import LockAcquisitionError
from src.hospitality_engine.services.rule_catalog import (
    get_rule_by_id, list_rules, list_categories, create_category,
    RuleNotFoundError, CategoryNotFoundError, RuleConflictError, RuleValidationError, RuleError,
)
from src.hospitality_engine.services.rule_generator import ensure_category_rules

router = APIRouter(prefix="/api/admin/hospitality", tags=["Hospitality Admin"])


def rule_to_response(rule: Rule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        name=rule.name,
        slug=rule.slug,
        description=rule.description,
        category_id=rule.category_id,
        rule_number=rule.rule_number,
        target_audience=rule.target_audience.value,
        target_funnel_stages=rule.target_funnel_stages,
        trigger_conditions=rule.trigger_conditions or {},
        action_type=rule.action_type.value,
        action_config=rule.action_config or {},
        message_template=rule.message_template,
        priority=rule.priority,
        cooldown_seconds=rule.cooldown_seconds,
        max_per_session=rule.max_per_session,
        max_per_day=rule.max_per_day,
        start_date=rule.start_date,
        end_date=rule.end_date,
        is_active=rule.is_active,
        created_by=rule.created_by,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


def _raise_for_rule_error(e: RuleError):
    if isinstance(e, (RuleNotFoundError, CategoryNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, RuleConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, RuleValidationError):
        raise HTTPException(status_code=400, detail={"message": "Invalid rule", "errors": e.errors})
    raise HTTPException(status_code=400, detail=str(e))


@router.get("/rules", response_model=RuleListResponse)
def list_hospitality_rules(
    db: DbSession,
    actor: AdminActor,
    active_only: bool = Query(False),
    category_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0)
):
    rules = list_rules(db, active_only=active_only, category_id=category_id, limit=limit, offset=offset)
    return RuleListResponse(rules=[rule_to_response(r) for r in rules], total=len(rules))


@router.post("/rules", response_model=RuleResponse, status_code=201)
def create_hospitality_rule(db: DbSession, actor: AdminActor, catalog: Catalog, data: RuleCreate):
    try:
        rule = catalog.create_rule(db, data.model_dump(), actor=actor)
    except RuleError as e:
        db.rollback()
        _raise_for_rule_error(e)
    return rule_to_response(rule)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
def get_hospitality_rule(db: DbSession, actor: AdminActor, rule_id: int):
    rule = get_rule_by_id(db, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule_to_response(rule)


@router.put("/rules/{rule_id}", response_model=RuleResponse)
def update_hospitality_rule(db: DbSession, actor: AdminActor, catalog: Catalog, rule_id: int, data: RuleUpdate):
    updates = data.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        rule = catalog.update_rule(db, rule_id, updates, actor=actor)
    except RuleError as e:
        db.rollback()
        _raise_for_rule_error(e)
    return rule_to_response(rule)


@router.delete("/rules/{rule_id}", response_model=RuleResponse)
def deactivate_hospitality_rule(db: DbSession, actor: AdminActor, catalog: Catalog, rule_id: int):
    try:
        rule = catalog.deactivate_rule(db, rule_id, actor=actor)
    except RuleError as e:
        _raise_for_rule_error(e)
    return rule_to_response(rule)


@router.post("/rules/{rule_id}/toggle", response_model=RuleResponse)
def toggle_hospitality_rule(db: DbSession, actor: AdminActor, catalog: Catalog, rule_id: int):
    try:
        rule = catalog.toggle_rule(db, rule_id, actor=actor)
    except RuleError as e:
        _raise_for_rule_error(e)
    return rule_to_response(rule)


@router.get("/categories", response_model=list[CategoryResponse])
def list_rule_categories(
    db: DbSession,
    actor: AdminActor,
    parent_id: Optional[int] = Query(None),
    roots_only: bool = Query(False)
):
    return [CategoryResponse.model_validate(c) for c in list_categories(db, parent_id=parent_id, roots_only=roots_only)]


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_rule_category(db: DbSession, actor: AdminActor, data: CategoryCreate):
    try:
        category = create_category(db, data.name, data.slug, data.description, data.parent_id)
        log_action(db, actor, "category_created", "rule_category", category.id, {"slug": category.slug})
        db.commit()
    except RuleError as e:
        db.rollback()
        _raise_for_rule_error(e)
    return CategoryResponse.model_validate(category)


@router.get("/categories/{category_id}/rules", response_model=CategoryRulesResponse)
def get_category_rules(
    db: DbSession,
    actor: AdminActor,
    catalog: Catalog,
    lock_provider: LockProvider,
    category_id: int
):
    try:
        result = ensure_category_rules(db, category_id, catalog, lock_provider)
    except CategoryNotFoundError:
        raise HTTPException(status_code=404, detail="Category not found")
    except LockAcquisitionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return CategoryRulesResponse(
        category_id=category_id,
        rules=[rule_to_response(r) for r in result.rules],
        generated=result.generated,
        total=result.total,
    )


@router.post("/states/stage", response_model=StateResponse)
def override_funnel_stage(db: DbSession, actor: AdminActor, data: StageOverrideRequest):
    identity = identity_from(data)
    state = set_funnel_stage(db, identity, data.funnel_stage)
    if not state:
        raise HTTPException(status_code=404, detail="Engagement state not found")
    log_action(db, actor, "funnel_stage_overridden", "engagement_state", state.id, {
        "identity": str(identity),
        "funnel_stage": data.funnel_stage.value,
    })
    db.commit()
    return StateResponse.model_validate(state)


@router.post("/states/reset", response_model=StateResponse)
def reset_engagement_state(db: DbSession, actor: AdminActor, data: StateResetRequest):
    identity = identity_from(data)
    state = reset_state(db, identity)
    if not state:
        raise HTTPException(status_code=404, detail="Engagement state not found")
    log_action(db, actor, "engagement_state_reset", "engagement_state", state.id, {"identity": str(identity)})
    db.commit()
    return StateResponse.model_validate(state)
