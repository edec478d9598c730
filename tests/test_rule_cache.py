"""Tests for the rule cache and the catalog operations that invalidate it."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.hospitality_engine.services.rule_cache import RuleCache, RuleSnapshot
from src.hospitality_engine.services.rule_catalog import (
    RuleConflictError,
    RuleNotFoundError,
    RuleValidationError,
    count_rules_in_category,
    create_category,
    descendant_category_ids,
)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def snapshot(rule_id, priority=100, created_offset=0):
    return RuleSnapshot(
        id=rule_id,
        slug=f"rule-{rule_id}",
        name=f"Rule {rule_id}",
        category_id=None,
        target_audience="all",
        target_funnel_stages=(),
        trigger_conditions={},
        action_type="notification",
        action_config={},
        message_template=None,
        priority=priority,
        cooldown_seconds=0,
        max_per_session=None,
        max_per_day=None,
        start_date=None,
        end_date=None,
        created_at=BASE_TIME + timedelta(seconds=created_offset),
    )


class FakeClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestRuleCache:
    def test_orders_by_priority_then_created_at(self):
        rules = [snapshot(1, 200), snapshot(2, 50, 10), snapshot(3, 50, 5)]
        cache = RuleCache(lambda: rules)
        assert [r.id for r in cache.get_active_rules()] == [3, 2, 1]

    def test_refreshes_once_per_ttl(self):
        clock = FakeClock()
        loader = MagicMock(return_value=[snapshot(1)])
        cache = RuleCache(loader, ttl_seconds=60, clock=clock)

        cache.get_active_rules()
        clock.value += 59
        cache.get_active_rules()
        assert loader.call_count == 1

        clock.value += 1
        cache.get_active_rules()
        assert loader.call_count == 2

    def test_invalidate_forces_next_read_to_load(self):
        clock = FakeClock()
        loader = MagicMock(return_value=[snapshot(1)])
        cache = RuleCache(loader, ttl_seconds=60, clock=clock)

        cache.get_active_rules()
        cache.invalidate()
        assert cache.is_stale
        cache.get_active_rules()
        assert loader.call_count == 2

    def test_failed_refresh_serves_last_snapshot(self, caplog):
        clock = FakeClock()
        loader = MagicMock(side_effect=[[snapshot(1), snapshot(2)], RuntimeError("database down"), [snapshot(3)]])
        cache = RuleCache(loader, ttl_seconds=60, clock=clock)

        assert len(cache.get_active_rules()) == 2
        cache.invalidate()
        assert [r.id for r in cache.get_active_rules()] == [1, 2]
        assert "Rule cache refresh failed" in caplog.text

        # retried on the next read after a failure
        assert [r.id for r in cache.get_active_rules()] == [3]

    def test_failed_first_load_returns_empty(self):
        cache = RuleCache(MagicMock(side_effect=RuntimeError("boom")))
        assert cache.get_active_rules() == []

    def test_returned_list_is_a_copy(self):
        cache = RuleCache(lambda: [snapshot(1)])
        cache.get_active_rules().clear()
        assert len(cache.get_active_rules()) == 1


class TestRuleCatalog:
    def test_create_invalidates_cache(self, catalog, make_rule):
        assert catalog.get_active_rules() == []
        rule = make_rule(priority=10)
        active = catalog.get_active_rules()
        assert [r.id for r in active] == [rule.id]
        assert active[0].priority == 10

    def test_deactivate_removes_from_active_rules(self, db, catalog, make_rule):
        rule = make_rule()
        catalog.get_active_rules()
        catalog.deactivate_rule(db, rule.id, actor="tests")
        assert catalog.get_active_rules() == []
        assert rule.is_active is False

    def test_toggle_reactivates(self, db, catalog, make_rule):
        rule = make_rule()
        catalog.toggle_rule(db, rule.id)
        catalog.toggle_rule(db, rule.id)
        assert [r.id for r in catalog.get_active_rules()] == [rule.id]

    def test_update_changes_priority_order(self, db, catalog, make_rule):
        first = make_rule(priority=10)
        second = make_rule(priority=20)
        catalog.update_rule(db, second.id, {"priority": 5})
        assert [r.id for r in catalog.get_active_rules()] == [second.id, first.id]

    def test_duplicate_slug_conflicts(self, make_rule):
        make_rule(slug="welcome")
        with pytest.raises(RuleConflictError):
            make_rule(slug="welcome")

    def test_unknown_condition_rejected_before_persistence(self, catalog, make_rule):
        with pytest.raises(RuleValidationError) as exc:
            make_rule(trigger_conditions={"is_first_visit": True, "page_count_gte": "3"})
        assert len(exc.value.errors) == 2
        assert catalog.get_active_rules() == []

    def test_stages_audience_requires_stage_list(self, make_rule):
        with pytest.raises(RuleValidationError):
            make_rule(target_audience="stages")
        rule = make_rule(target_audience="stages", target_funnel_stages=["engaged", "subscriber"])
        assert rule.target_funnel_stages == ["engaged", "subscriber"]

    def test_end_date_must_follow_start_date(self, make_rule):
        start = datetime(2026, 5, 1, tzinfo=timezone.utc)
        with pytest.raises(RuleValidationError):
            make_rule(start_date=start, end_date=start - timedelta(days=1))

    def test_update_validates_merged_rule(self, db, catalog, make_rule):
        rule = make_rule(action_type="popup", action_config={"title": "Hi", "message": "Welcome"})
        with pytest.raises(RuleValidationError):
            catalog.update_rule(db, rule.id, {"action_config": {"title": "Hi"}})

    def test_update_missing_rule(self, db, catalog):
        with pytest.raises(RuleNotFoundError):
            catalog.update_rule(db, 999, {"priority": 1})


class TestCategories:
    def test_descendants_skip_deleted_categories(self, db, make_category):
        root = make_category("Bible", "bible")
        child = make_category("Gospels", "gospels", parent_id=root.id)
        grandchild = make_category("John", "john", parent_id=child.id)
        deleted = make_category("Apocrypha", "apocrypha", parent_id=root.id, is_deleted=True)

        ids = set(descendant_category_ids(db, root.id))
        assert ids == {root.id, child.id, grandchild.id}
        assert deleted.id not in ids

    def test_count_includes_descendants(self, db, make_category, make_rule):
        root = make_category("Bible", "bible")
        child = make_category("Gospels", "gospels", parent_id=root.id)
        make_rule(category_id=root.id)
        make_rule(category_id=child.id)
        assert count_rules_in_category(db, root.id) == 2
        assert count_rules_in_category(db, child.id) == 1

    def test_duplicate_category_slug(self, db):
        create_category(db, "Prayer", "prayer")
        with pytest.raises(RuleConflictError):
            create_category(db, "Prayer again", "prayer")
