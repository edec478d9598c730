"""Rule catalog - persistent rules, categories and the active-rule cache"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.engagement_state import FunnelStage
from src.hospitality_engine.models.rule import Rule, RuleCategory, TargetAudience, ActionType
from src.hospitality_engine.services.audit import log_action
from src.hospitality_engine.services.predicates import validate_trigger_conditions, validate_action_config
from src.hospitality_engine.services.rule_cache import RuleCache, RuleSnapshot
from src.hospitality_engine.timeutil import as_utc

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name", "slug", "description", "category_id", "rule_number",
    "target_audience", "target_funnel_stages", "trigger_conditions",
    "action_type", "action_config", "message_template",
    "priority", "cooldown_seconds", "max_per_session", "max_per_day",
    "start_date", "end_date", "is_active",
}


class RuleError(Exception):
    """Base exception for rule catalog operations"""
    pass


class RuleNotFoundError(RuleError):
    pass


class CategoryNotFoundError(RuleError):
    pass


class RuleConflictError(RuleError):
    pass


class RuleValidationError(RuleError):
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def validate_rule_fields(data: Dict[str, Any], existing: Optional[Rule] = None) -> List[str]:
    """Validate a full or partial rule payload, merged over an existing rule."""
    errors = []

    def current(key, default=None):
        if key in data:
            return data[key]
        if existing is not None:
            value = getattr(existing, key)
            return value.value if hasattr(value, "value") else value
        return default

    action_type = current("action_type")
    if action_type is None:
        errors.append("action_type is required")
    else:
        try:
            ActionType(action_type)
        except ValueError:
            errors.append(f"Unknown action_type: {action_type}")

    audience = current("target_audience", TargetAudience.ALL.value)
    try:
        audience = TargetAudience(audience)
    except ValueError:
        errors.append(f"Unknown target_audience: {audience}")
        audience = None

    stages = current("target_funnel_stages")
    if audience == TargetAudience.STAGES:
        if not stages:
            errors.append("target_funnel_stages is required when target_audience is 'stages'")
    if stages:
        for stage in stages:
            try:
                FunnelStage(stage)
            except ValueError:
                errors.append(f"Unknown funnel stage: {stage}")

    errors.extend(validate_trigger_conditions(current("trigger_conditions", {})))
    if action_type is not None:
        errors.extend(validate_action_config(action_type, current("action_config", {})))

    for key in ("cooldown_seconds", "max_per_session", "max_per_day"):
        value = current(key)
        if value is not None and value < 0:
            errors.append(f"{key} must not be negative")

    start_date, end_date = current("start_date"), current("end_date")
    if start_date and end_date and as_utc(end_date) <= as_utc(start_date):
        errors.append("end_date must be after start_date")

    return errors


def _coerce_enums(data: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(data)
    if values.get("target_audience") is not None:
        values["target_audience"] = TargetAudience(values["target_audience"])
    if values.get("action_type") is not None:
        values["action_type"] = ActionType(values["action_type"])
    if values.get("target_funnel_stages") is not None:
        values["target_funnel_stages"] = [FunnelStage(s).value for s in values["target_funnel_stages"]]
    return values


def find_active_rules(db: Session) -> List[Rule]:
    stmt = (
        select(Rule)
        .where(Rule.is_active == True)
        .order_by(Rule.priority.asc(), Rule.created_at.asc(), Rule.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def get_rule_by_id(db: Session, rule_id: int) -> Optional[Rule]:
    return db.get(Rule, rule_id)


def get_rule_by_slug(db: Session, slug: str) -> Optional[Rule]:
    return db.execute(select(Rule).where(Rule.slug == slug)).scalar_one_or_none()


def list_rules(
    db: Session,
    active_only: bool = False,
    category_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0
) -> List[Rule]:
    query = select(Rule).order_by(Rule.priority.asc(), Rule.created_at.asc(), Rule.id.asc())
    if active_only:
        query = query.where(Rule.is_active == True)
    if category_id is not None:
        query = query.where(Rule.category_id.in_(descendant_category_ids(db, category_id)))
    query = query.limit(limit).offset(offset)
    return list(db.execute(query).scalars().all())


def get_category(db: Session, category_id: int) -> Optional[RuleCategory]:
    return db.execute(
        select(RuleCategory).where(RuleCategory.id == category_id, RuleCategory.is_deleted == False)
    ).scalar_one_or_none()


def list_categories(db: Session, parent_id: Optional[int] = None, roots_only: bool = False) -> List[RuleCategory]:
    query = select(RuleCategory).where(RuleCategory.is_deleted == False).order_by(RuleCategory.name)
    if roots_only:
        query = query.where(RuleCategory.parent_id.is_(None))
    elif parent_id is not None:
        query = query.where(RuleCategory.parent_id == parent_id)
    return list(db.execute(query).scalars().all())


def create_category(
    db: Session,
    name: str,
    slug: str,
    description: Optional[str] = None,
    parent_id: Optional[int] = None
) -> RuleCategory:
    if parent_id is not None and get_category(db, parent_id) is None:
        raise CategoryNotFoundError(f"Parent category {parent_id} not found")
    category = RuleCategory(name=name, slug=slug, description=description, parent_id=parent_id)
    try:
        with db.begin_nested():
            db.add(category)
    except IntegrityError:
        raise RuleConflictError(f"Category slug '{slug}' already exists")
    return category


def descendant_category_ids(db: Session, category_id: int) -> List[int]:
    """The category itself plus every non-deleted descendant."""
    tree = (
        select(RuleCategory.id)
        .where(RuleCategory.id == category_id)
        .cte(name="descendants", recursive=True)
    )
    children = select(RuleCategory.id).where(
        RuleCategory.parent_id == tree.c.id,
        RuleCategory.is_deleted == False
    )
    tree = tree.union_all(children)
    return list(db.execute(select(tree.c.id)).scalars().all())


def count_rules_in_category(db: Session, category_id: int) -> int:
    ids = descendant_category_ids(db, category_id)
    return db.execute(
        select(func.count()).select_from(Rule).where(Rule.category_id.in_(ids))
    ).scalar() or 0


class RuleCatalog:
    """Owns rule persistence and the cache mirroring the active rules.

    Mutations commit before invalidating the cache so the next cache fill
    reads the new rows.
    """

    def __init__(self, session_factory: Callable[[], Session], ttl_seconds: Optional[float] = None):
        self._session_factory = session_factory
        if ttl_seconds is None:
            ttl_seconds = get_settings().RULES_CACHE_TTL_SECONDS
        self.cache = RuleCache(self._load_active_rules, ttl_seconds=ttl_seconds)

    def _load_active_rules(self) -> List[RuleSnapshot]:
        with self._session_factory() as db:
            return [RuleSnapshot.from_model(rule) for rule in find_active_rules(db)]

    def get_active_rules(self) -> List[RuleSnapshot]:
        return self.cache.get_active_rules()

    def invalidate(self) -> None:
        self.cache.invalidate()

    def create_rule(self, db: Session, data: Dict[str, Any], actor: str = "system") -> Rule:
        errors = validate_rule_fields(data)
        for key in ("name", "slug"):
            if not data.get(key):
                errors.append(f"{key} is required")
        unknown = set(data) - UPDATABLE_FIELDS
        if unknown:
            errors.append(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        if errors:
            raise RuleValidationError(errors)

        if data.get("category_id") is not None and get_category(db, data["category_id"]) is None:
            raise CategoryNotFoundError(f"Category {data['category_id']} not found")
        if get_rule_by_slug(db, data["slug"]):
            raise RuleConflictError(f"Rule slug '{data['slug']}' already exists")

        rule = Rule(**_coerce_enums(data), created_by=actor)
        try:
            with db.begin_nested():
                db.add(rule)
        except IntegrityError:
            raise RuleConflictError(f"Rule slug '{data['slug']}' already exists")

        log_action(db, actor, "rule_created", "rule", rule.id, {"name": rule.name, "slug": rule.slug})
        db.commit()
        self.invalidate()
        logger.info(f"Created hospitality rule: rule_id={rule.id}, name={rule.name}")
        return rule

    def update_rule(self, db: Session, rule_id: int, updates: Dict[str, Any], actor: str = "system") -> Rule:
        rule = get_rule_by_id(db, rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")

        unknown = set(updates) - UPDATABLE_FIELDS
        errors = validate_rule_fields(updates, existing=rule)
        if unknown:
            errors.append(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        if "slug" in updates and updates["slug"] != rule.slug:
            errors.append("slug cannot be changed")
        if errors:
            raise RuleValidationError(errors)

        if updates.get("category_id") is not None and get_category(db, updates["category_id"]) is None:
            raise CategoryNotFoundError(f"Category {updates['category_id']} not found")

        for key, value in _coerce_enums(updates).items():
            setattr(rule, key, value)
        db.flush()

        log_action(db, actor, "rule_updated", "rule", rule.id, {"fields": sorted(updates)})
        db.commit()
        self.invalidate()
        logger.info(f"Updated hospitality rule: rule_id={rule_id}, fields={sorted(updates)}")
        return rule

    def set_active(self, db: Session, rule_id: int, is_active: bool, actor: str = "system") -> Rule:
        rule = get_rule_by_id(db, rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        rule.is_active = is_active
        db.flush()

        log_action(db, actor, "rule_activated" if is_active else "rule_deactivated", "rule", rule.id)
        db.commit()
        self.invalidate()
        logger.info(f"{'Activated' if is_active else 'Deactivated'} hospitality rule: rule_id={rule_id}")
        return rule

    def deactivate_rule(self, db: Session, rule_id: int, actor: str = "system") -> Rule:
        return self.set_active(db, rule_id, False, actor)

    def toggle_rule(self, db: Session, rule_id: int, actor: str = "system") -> Rule:
        rule = get_rule_by_id(db, rule_id)
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return self.set_active(db, rule_id, not rule.is_active, actor)
