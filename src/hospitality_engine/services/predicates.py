"""Trigger-condition predicates

Rules store their trigger conditions as a JSON object such as
``{"event_type": "page_view", "page_count_gte": 3}``. Each key maps to one
PredicateKind; parsing turns the object into a list of Predicate values and
evaluation dispatches on the kind through PREDICATE_EVALUATORS. Parsing is
strict, so the same function validates admin input before persistence.
"""
import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from src.hospitality_engine.models.engagement_event import EngagementEvent
from src.hospitality_engine.models.engagement_state import EngagementState


class InvalidConditionError(ValueError):
    """Raised when trigger conditions contain unknown keys or badly typed values"""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class PredicateKind(str, enum.Enum):
    EVENT_TYPE_EQUALS = "event_type"
    PAGE_COUNT_GTE = "page_count_gte"
    TIME_ON_SITE_GTE = "time_on_site_gte"
    ENGAGEMENT_SCORE_GTE = "engagement_score_gte"
    ENGAGEMENT_SCORE_LT = "engagement_score_lt"
    SESSION_COUNT_GTE = "session_count_gte"
    PAGE_URL_CONTAINS = "page_url_contains"
    PAGE_URL_EQUALS = "page_url_equals"
    PERSONA_EQUALS = "persona_id"
    METRIC_VALUE_GTE = "metric_value_gte"
    POPUPS_SHOWN_TODAY_LT = "popups_shown_today_lt"


NUMERIC_KINDS = frozenset({
    PredicateKind.PAGE_COUNT_GTE,
    PredicateKind.TIME_ON_SITE_GTE,
    PredicateKind.ENGAGEMENT_SCORE_GTE,
    PredicateKind.ENGAGEMENT_SCORE_LT,
    PredicateKind.SESSION_COUNT_GTE,
    PredicateKind.METRIC_VALUE_GTE,
    PredicateKind.POPUPS_SHOWN_TODAY_LT,
})

STRING_KINDS = frozenset({
    PredicateKind.EVENT_TYPE_EQUALS,
    PredicateKind.PAGE_URL_CONTAINS,
    PredicateKind.PAGE_URL_EQUALS,
})

# persona references may be numeric ids or slugs
IDENTIFIER_KINDS = frozenset({PredicateKind.PERSONA_EQUALS})


@dataclass(frozen=True)
class Predicate:
    kind: PredicateKind
    value: Union[int, float, str]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_value(kind: PredicateKind, value: Any) -> Optional[str]:
    if kind in NUMERIC_KINDS:
        if not _is_number(value):
            return f"{kind.value} must be a number"
    elif kind in STRING_KINDS:
        if not isinstance(value, str) or not value:
            return f"{kind.value} must be a non-empty string"
    elif kind in IDENTIFIER_KINDS:
        if not (isinstance(value, str) and value) and not (isinstance(value, int) and not isinstance(value, bool)):
            return f"{kind.value} must be a string or integer identifier"
    return None


def parse_conditions(conditions: Optional[Dict[str, Any]]) -> List[Predicate]:
    if not conditions:
        return []
    if not isinstance(conditions, dict):
        raise InvalidConditionError(["trigger_conditions must be an object"])

    errors = []
    predicates = []
    for key, value in conditions.items():
        try:
            kind = PredicateKind(key)
        except ValueError:
            errors.append(f"Unknown trigger condition: {key}")
            continue
        error = _check_value(kind, value)
        if error:
            errors.append(error)
            continue
        predicates.append(Predicate(kind=kind, value=value))

    if errors:
        raise InvalidConditionError(errors)
    return predicates


def validate_trigger_conditions(conditions: Optional[Dict[str, Any]]) -> List[str]:
    """Return validation errors for trigger conditions, empty when valid."""
    try:
        parse_conditions(conditions)
    except InvalidConditionError as e:
        return e.errors
    return []


def validate_action_config(action_type: str, action_config: Optional[Dict[str, Any]]) -> List[str]:
    errors = []
    if action_config is None:
        action_config = {}
    if not isinstance(action_config, dict):
        return ["action_config must be an object"]

    if action_type == "popup":
        if not action_config.get("title"):
            errors.append("Popup action requires a title")
        if not action_config.get("message"):
            errors.append("Popup action requires a message")

    if action_type == "redirect":
        if not action_config.get("url"):
            errors.append("Redirect action requires a URL")

    return errors


def _event_type_equals(value, event: EngagementEvent, state: EngagementState) -> bool:
    return event.event_type == value


def _page_count_gte(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.page_views or 0) >= value


def _time_on_site_gte(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.total_time_on_site_seconds or 0) >= value


def _engagement_score_gte(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.engagement_score or 0) >= value


def _engagement_score_lt(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.engagement_score or 0) < value


def _session_count_gte(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.session_count or 1) >= value


def _page_url_contains(value, event: EngagementEvent, state: EngagementState) -> bool:
    return value.lower() in (event.page_url or "").lower()


def _page_url_equals(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (event.page_url or "").lower() == value.lower()


def _persona_equals(value, event: EngagementEvent, state: EngagementState) -> bool:
    return event.persona_id is not None and str(event.persona_id) == str(value)


def _metric_value_gte(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (event.metric_value or 0) >= value


def _popups_shown_today_lt(value, event: EngagementEvent, state: EngagementState) -> bool:
    return (state.popups_shown_today or 0) < value


PREDICATE_EVALUATORS: Dict[PredicateKind, Callable[[Any, EngagementEvent, EngagementState], bool]] = {
    PredicateKind.EVENT_TYPE_EQUALS: _event_type_equals,
    PredicateKind.PAGE_COUNT_GTE: _page_count_gte,
    PredicateKind.TIME_ON_SITE_GTE: _time_on_site_gte,
    PredicateKind.ENGAGEMENT_SCORE_GTE: _engagement_score_gte,
    PredicateKind.ENGAGEMENT_SCORE_LT: _engagement_score_lt,
    PredicateKind.SESSION_COUNT_GTE: _session_count_gte,
    PredicateKind.PAGE_URL_CONTAINS: _page_url_contains,
    PredicateKind.PAGE_URL_EQUALS: _page_url_equals,
    PredicateKind.PERSONA_EQUALS: _persona_equals,
    PredicateKind.METRIC_VALUE_GTE: _metric_value_gte,
    PredicateKind.POPUPS_SHOWN_TODAY_LT: _popups_shown_today_lt,
}


def evaluate_predicate(predicate: Predicate, event: EngagementEvent, state: EngagementState) -> bool:
    return PREDICATE_EVALUATORS[predicate.kind](predicate.value, event, state)


def evaluate_conditions(
    conditions: Optional[Dict[str, Any]],
    event: EngagementEvent,
    state: EngagementState
) -> bool:
    """True when every declared predicate holds; no conditions always match."""
    for predicate in parse_conditions(conditions):
        if not evaluate_predicate(predicate, event, state):
            return False
    return True
