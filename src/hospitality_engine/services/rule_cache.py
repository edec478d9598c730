"""Bounded-staleness cache of the active rule catalog"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.hospitality_engine.models.rule import Rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleSnapshot:
    """Detached, read-only copy of a Rule row held by the cache."""
    id: int
    slug: str
    name: str
    category_id: Optional[int]
    target_audience: str
    target_funnel_stages: Tuple[str, ...]
    trigger_conditions: Dict[str, Any] = field(hash=False)
    action_type: str
    action_config: Dict[str, Any] = field(hash=False)
    message_template: Optional[str]
    priority: int
    cooldown_seconds: int
    max_per_session: Optional[int]
    max_per_day: Optional[int]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    created_at: datetime

    @classmethod
    def from_model(cls, rule: Rule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            slug=rule.slug,
            name=rule.name,
            category_id=rule.category_id,
            target_audience=rule.target_audience.value,
            target_funnel_stages=tuple(rule.target_funnel_stages or ()),
            trigger_conditions=dict(rule.trigger_conditions or {}),
            action_type=rule.action_type.value,
            action_config=dict(rule.action_config or {}),
            message_template=rule.message_template,
            priority=rule.priority,
            cooldown_seconds=rule.cooldown_seconds or 0,
            max_per_session=rule.max_per_session,
            max_per_day=rule.max_per_day,
            start_date=rule.start_date,
            end_date=rule.end_date,
            created_at=rule.created_at,
        )

    @property
    def sort_key(self):
        return (self.priority, self.created_at, self.id)


class RuleCache:
    """In-memory mirror of the active rules, refreshed at most once per TTL.

    A failed refresh keeps serving the last good snapshot and is retried on
    the next read.
    """

    def __init__(
        self,
        loader: Callable[[], List[RuleSnapshot]],
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._rules: List[RuleSnapshot] = []
        self._loaded_at: Optional[float] = None
        self._has_snapshot = False
        self._lock = threading.Lock()

    @property
    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl_seconds

    def get_active_rules(self) -> List[RuleSnapshot]:
        with self._lock:
            if not self.is_stale:
                return list(self._rules)
            self._refresh()
            return list(self._rules)

    def _refresh(self) -> None:
        try:
            rules = self._loader()
        except Exception as e:
            if self._has_snapshot:
                logger.warning(f"Rule cache refresh failed, serving last snapshot of {len(self._rules)} rules: {e}")
            else:
                logger.warning(f"Rule cache refresh failed with no snapshot available: {e}")
            return

        self._rules = sorted(rules, key=lambda r: r.sort_key)
        self._loaded_at = self._clock()
        self._has_snapshot = True
        logger.debug(f"Refreshed hospitality rules cache: {len(self._rules)} rules")

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None
        logger.debug("Invalidated hospitality rules cache")
