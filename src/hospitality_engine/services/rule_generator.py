"""Rule auto-generator - tops up a category to its minimum rule count"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.rule import Rule, RuleCategory, TargetAudience, ActionType
from src.hospitality_engine.services.audit import log_action
from src.hospitality_engine.services.named_lock import hold_lock, category_lock_name
from src.hospitality_engine.services.rule_catalog import (
    CategoryNotFoundError,
    get_category,
    descendant_category_ids,
)

logger = logging.getLogger(__name__)

PERSONAS = ["jubilee", "solomon", "lydia", "barnabas", "deborah", "gideon", "ruth", "elijah"]

GENERATED_COOLDOWN_SECONDS = 1800
GENERATED_MAX_PER_SESSION = 1
GENERATED_MAX_PER_DAY = 2

MESSAGE_TEMPLATES = {
    "warm_inviting": "Hello and welcome! I noticed you're exploring our {category} resources. I'm here to help you find exactly what you need. What brings you here today?",
    "encouraging": "I can see you're really diving deep into {category}! Your dedication to growth is inspiring. Would you like me to suggest some advanced resources?",
    "familiar_warm": "Welcome back! It's wonderful to see you again. Since you last visited, we've added some new {category} content you might enjoy.",
    "celebratory": "Congratulations! You've made amazing progress in your {category} journey! Your commitment is truly commendable.",
    "gentle_caring": "I noticed you paused for a moment. Sometimes we all need time to reflect. If you have any questions about {category}, I'm here whenever you're ready.",
    "friendly_inclusive": "You seem to really connect with {category} content! There's a wonderful community of like-minded people who share this passion.",
    "helpful_insightful": "Based on your journey through {category}, I think you'd really appreciate some personalized recommendations.",
    "guiding": "I notice you might benefit from a more structured path through {category}. Would you like me to suggest a learning journey?",
    "appreciative": "Thank you for spending time with our {category} content! Your feedback helps us improve. Would you share your thoughts?",
    "helpful": "Here's a quick tip for navigating {category} more effectively.",
}


@dataclass(frozen=True)
class RuleTemplate:
    suffix: str
    name: str
    description: str
    sentiment: str
    target_audience: TargetAudience
    trigger_conditions: Dict[str, Any]
    action_type: ActionType
    priority: int


RULE_TEMPLATES = [
    RuleTemplate(
        suffix="first-visit",
        name="{category} - First Visit Welcome",
        description="Warmly welcomes first-time visitors exploring {category} content",
        sentiment="warm_inviting",
        target_audience=TargetAudience.VISITOR,
        trigger_conditions={"event_type": "time_on_page", "metric_value_gte": 10},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=100,
    ),
    RuleTemplate(
        suffix="deep-engagement",
        name="{category} - Deep Engagement",
        description="Recognizes users spending quality time with {category} content",
        sentiment="encouraging",
        target_audience=TargetAudience.ALL,
        trigger_conditions={"event_type": "page_view", "time_on_site_gte": 300, "page_count_gte": 5},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=150,
    ),
    RuleTemplate(
        suffix="return-visitor",
        name="{category} - Return Visitor",
        description="Welcomes back returning visitors with personalized recommendations",
        sentiment="familiar_warm",
        target_audience=TargetAudience.SUBSCRIBER,
        trigger_conditions={"event_type": "session_start", "session_count_gte": 2},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=80,
    ),
    RuleTemplate(
        suffix="milestone",
        name="{category} - Milestone Reached",
        description="Celebrates user milestones in {category} journey",
        sentiment="celebratory",
        target_audience=TargetAudience.SUBSCRIBER,
        trigger_conditions={"event_type": "milestone", "metric_value_gte": 50},
        action_type=ActionType.POPUP,
        priority=50,
    ),
    RuleTemplate(
        suffix="gentle-reengagement",
        name="{category} - Gentle Re-engagement",
        description="Gently re-engages users who pause during exploration",
        sentiment="gentle_caring",
        target_audience=TargetAudience.ALL,
        trigger_conditions={"event_type": "inactivity", "metric_value_gte": 120},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=200,
    ),
    RuleTemplate(
        suffix="community-invite",
        name="{category} - Community Connection",
        description="Invites engaged users to join the community",
        sentiment="friendly_inclusive",
        target_audience=TargetAudience.SUBSCRIBER,
        trigger_conditions={"event_type": "engagement_threshold", "engagement_score_gte": 70},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=120,
    ),
    RuleTemplate(
        suffix="smart-recommendation",
        name="{category} - Smart Recommendation",
        description="Content recommendations based on browsing patterns",
        sentiment="helpful_insightful",
        target_audience=TargetAudience.ALL,
        trigger_conditions={"event_type": "content_completion", "metric_value_gte": 3},
        action_type=ActionType.NOTIFICATION,
        priority=130,
    ),
    RuleTemplate(
        suffix="learning-path",
        name="{category} - Learning Path",
        description="Suggests structured learning journey through {category}",
        sentiment="guiding",
        target_audience=TargetAudience.SUBSCRIBER,
        trigger_conditions={"event_type": "browse_pattern"},
        action_type=ActionType.PERSONA_MESSAGE,
        priority=140,
    ),
    RuleTemplate(
        suffix="feedback-request",
        name="{category} - Feedback Request",
        description="Requests feedback from engaged users about {category} content",
        sentiment="appreciative",
        target_audience=TargetAudience.SUBSCRIBER,
        trigger_conditions={"event_type": "session_end", "metric_value_gte": 600},
        action_type=ActionType.POPUP,
        priority=180,
    ),
    RuleTemplate(
        suffix="quick-tip",
        name="{category} - Quick Tip",
        description="Provides contextual tips for navigating {category}",
        sentiment="helpful",
        target_audience=TargetAudience.ALL,
        trigger_conditions={"event_type": "help_signal"},
        action_type=ActionType.NOTIFICATION,
        priority=90,
    ),
]


@dataclass
class GenerationResult:
    category_id: int
    rules: List[Rule] = field(default_factory=list)
    generated: int = 0

    @property
    def total(self) -> int:
        return len(self.rules)


def generate_message_template(sentiment: str, category_name: str) -> str:
    template = MESSAGE_TEMPLATES.get(sentiment, MESSAGE_TEMPLATES["helpful"])
    return template.format(category=category_name)


def pick_persona(template_index: int, category_name: str) -> str:
    offset = ord(category_name[0]) if category_name else 0
    return PERSONAS[(template_index + offset) % len(PERSONAS)]


def generated_slug(category: RuleCategory, template: RuleTemplate) -> str:
    return f"{category.slug}-{template.suffix}"


def next_rule_number(db: Session) -> int:
    numbers = db.execute(select(Rule.rule_number).where(Rule.rule_number.is_not(None))).scalars().all()
    highest = 0
    for number in numbers:
        if re.fullmatch(r"\d+", number):
            highest = max(highest, int(number))
    return highest + 1


def build_rule(category: RuleCategory, template: RuleTemplate, index: int, rule_number: int) -> Rule:
    persona = pick_persona(index, category.name)
    name = template.name.format(category=category.name)
    message = generate_message_template(template.sentiment, category.name)
    return Rule(
        name=name,
        slug=generated_slug(category, template),
        description=template.description.format(category=category.name),
        category_id=category.id,
        rule_number=f"{rule_number:04d}",
        target_audience=template.target_audience,
        trigger_conditions=dict(template.trigger_conditions),
        action_type=template.action_type,
        action_config={
            "persona_id": persona,
            "title": name,
            "message": message,
            "sentiment": template.sentiment,
            "urgency": "low",
        },
        message_template=message,
        priority=template.priority,
        cooldown_seconds=GENERATED_COOLDOWN_SECONDS,
        max_per_session=GENERATED_MAX_PER_SESSION,
        max_per_day=GENERATED_MAX_PER_DAY,
        is_active=True,
        created_by="auto-generator",
    )


def rules_for_category(db: Session, category_id: int) -> List[Rule]:
    ids = descendant_category_ids(db, category_id)
    stmt = (
        select(Rule)
        .where(Rule.category_id.in_(ids))
        .order_by(Rule.priority.asc(), Rule.created_at.asc(), Rule.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _generate_missing(db: Session, category: RuleCategory, existing: List[Rule], minimum: int) -> int:
    needed = minimum - len(existing)
    if needed <= 0:
        return 0

    existing_slugs = {rule.slug for rule in existing}
    rule_number = next_rule_number(db)
    generated = 0

    for index, template in enumerate(RULE_TEMPLATES):
        if generated >= needed:
            break
        slug = generated_slug(category, template)
        if slug in existing_slugs:
            continue

        rule = build_rule(category, template, index, rule_number)
        try:
            with db.begin_nested():
                db.add(rule)
        except IntegrityError:
            # inserted concurrently by another worker
            logger.debug(f"Generated rule slug already exists, skipping: {slug}")
            continue

        generated += 1
        rule_number += 1
        existing_slugs.add(slug)

    if generated < needed:
        logger.warning(
            f"Category {category.id} still below minimum after generation: "
            f"{len(existing) + generated}/{minimum} (templates exhausted)"
        )
    return generated


def ensure_category_rules(
    db: Session,
    category_id: int,
    catalog,
    lock_provider,
    minimum: Optional[int] = None,
    lock_timeout: Optional[float] = 30.0
) -> GenerationResult:
    """Return the category's rules, generating from templates until it has `minimum`.

    The count-and-insert sequence runs under a per-category named lock and is
    committed before the lock is released.
    """
    if minimum is None:
        minimum = get_settings().MIN_RULES_PER_CATEGORY

    with hold_lock(lock_provider, category_lock_name(category_id), timeout=lock_timeout):
        try:
            category = get_category(db, category_id)
            if category is None:
                raise CategoryNotFoundError(f"Category {category_id} not found")

            existing = rules_for_category(db, category_id)
            generated = _generate_missing(db, category, existing, minimum)
            if generated:
                log_action(
                    db, "auto-generator", "rules_generated", "rule_category", category_id,
                    {"generated": generated, "minimum": minimum}
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

    if generated:
        catalog.invalidate()
        logger.info(f"Auto-generated rules for category: category_id={category_id}, name={category.name}, generated={generated}")

    return GenerationResult(
        category_id=category_id,
        rules=rules_for_category(db, category_id),
        generated=generated,
    )
