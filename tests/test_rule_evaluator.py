"""Tests for rule selection, cooldowns and rate limits in the evaluator."""

from datetime import timedelta

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from src.hospitality_engine.models import Action, EngagementEvent, FunnelStage
from src.hospitality_engine.services.engagement_state import get_or_create_state
from src.hospitality_engine.services.event_processing import process_event
from src.hospitality_engine.services import rule_evaluator
from src.hospitality_engine.services.rule_cache import RuleSnapshot
from src.hospitality_engine.services.rule_evaluator import (
    get_cooldown,
    is_within_schedule,
    matches_target_audience,
    reset_daily_trigger_counts,
    select_rule,
    evaluate_rules_for_event,
)


def fire(db, catalog, identity, now, event_type="page_view", **kwargs):
    result = process_event(db, catalog, identity, event_type, now=now, **kwargs)
    db.commit()
    return result


def count_actions(db):
    return db.execute(select(func.count()).select_from(Action)).scalar()


class TestTargetAudience:
    def snapshot(self, rule):
        return RuleSnapshot.from_model(rule)

    def test_visitor_audience(self, db, visitor, now, make_rule):
        rule = self.snapshot(make_rule(target_audience="visitor"))
        state = get_or_create_state(db, visitor, now)
        for stage, expected in [
            (FunnelStage.VISITOR, True),
            (FunnelStage.INTERESTED, True),
            (FunnelStage.ENGAGED, False),
            (FunnelStage.SUBSCRIBER, False),
        ]:
            state.funnel_stage = stage
            assert matches_target_audience(rule, state) is expected

    def test_subscriber_audience_includes_engaged(self, db, visitor, now, make_rule):
        rule = self.snapshot(make_rule(target_audience="subscriber"))
        state = get_or_create_state(db, visitor, now)
        for stage, expected in [
            (FunnelStage.INTERESTED, False),
            (FunnelStage.ENGAGED, True),
            (FunnelStage.SUBSCRIBER, True),
            (FunnelStage.ADVOCATE, True),
        ]:
            state.funnel_stage = stage
            assert matches_target_audience(rule, state) is expected

    def test_explicit_stage_list(self, db, visitor, now, make_rule):
        rule = self.snapshot(make_rule(target_audience="stages", target_funnel_stages=["interested"]))
        state = get_or_create_state(db, visitor, now)
        state.funnel_stage = FunnelStage.INTERESTED
        assert matches_target_audience(rule, state)
        state.funnel_stage = FunnelStage.ENGAGED
        assert not matches_target_audience(rule, state)

    def test_schedule_window(self, now, make_rule):
        rule = self.snapshot(make_rule(start_date=now, end_date=now + timedelta(days=1)))
        assert not is_within_schedule(rule, now - timedelta(seconds=1))
        assert is_within_schedule(rule, now)
        assert not is_within_schedule(rule, now + timedelta(days=1))


class TestSelection:
    def test_lower_priority_value_wins(self, db, catalog, visitor, now, make_rule):
        make_rule(slug="late", priority=50)
        winner = make_rule(slug="early", priority=10)
        make_rule(slug="middle", priority=30)

        result = fire(db, catalog, visitor, now)
        assert result.action.rule_id == winner.id

    def test_priority_wins_regardless_of_iteration_order(self, db, visitor, now, make_rule):
        low = RuleSnapshot.from_model(make_rule(priority=10))
        high = RuleSnapshot.from_model(make_rule(priority=90))
        state = get_or_create_state(db, visitor, now)
        event = EngagementEvent(session_id=visitor.session_id, event_type="page_view", created_at=now)
        db.add(event)
        db.flush()

        assert select_rule(db, visitor, [high, low], event, state, now).id == low.id
        assert select_rule(db, visitor, [low, high], event, state, now).id == low.id

    def test_equal_priority_uses_creation_order(self, db, catalog, visitor, now, make_rule):
        first = make_rule(priority=10)
        make_rule(priority=10)
        assert fire(db, catalog, visitor, now).action.rule_id == first.id

    def test_first_match_not_best_match(self, db, catalog, visitor, now, make_rule):
        make_rule(priority=10, trigger_conditions={"event_type": "chat_start"})
        fallback = make_rule(priority=20, trigger_conditions={"event_type": "page_view"})
        make_rule(priority=30, trigger_conditions={"event_type": "page_view", "page_count_gte": 1})
        assert fire(db, catalog, visitor, now).action.rule_id == fallback.id

    def test_no_match_returns_none(self, db, catalog, visitor, now, make_rule):
        make_rule(trigger_conditions={"event_type": "chat_start"})
        result = fire(db, catalog, visitor, now)
        assert result.action is None
        assert count_actions(db) == 0

    def test_no_rules(self, db, catalog, visitor, now):
        assert fire(db, catalog, visitor, now).action is None

    def test_bad_rule_skipped(self, db, catalog, visitor, now, make_rule, caplog):
        bad = make_rule(priority=1)
        good = make_rule(priority=2)
        # corrupt the stored conditions behind the catalog's validation
        bad.trigger_conditions = {"page_count_gte": "lots"}
        db.commit()
        catalog.invalidate()

        result = fire(db, catalog, visitor, now)
        assert result.action.rule_id == good.id
        assert f"Error evaluating rule: rule_id={bad.id}" in caplog.text

    def test_storage_error_propagates(self, db, catalog, visitor, now, make_rule, monkeypatch):
        make_rule(priority=1)
        make_rule(priority=2)

        def broken_lookup(*args, **kwargs):
            raise OperationalError("SELECT rule_cooldowns", {}, Exception("database is locked"))

        monkeypatch.setattr(rule_evaluator, "get_cooldown", broken_lookup)
        with pytest.raises(OperationalError):
            process_event(db, catalog, visitor, "page_view", now=now)
        db.rollback()
        assert count_actions(db) == 0

    def test_rule_outside_schedule_skipped(self, db, catalog, visitor, now, make_rule):
        make_rule(priority=1, start_date=now + timedelta(days=1))
        fallback = make_rule(priority=2)
        assert fire(db, catalog, visitor, now).action.rule_id == fallback.id

    def test_popup_guard(self, db, catalog, visitor, now, make_rule):
        make_rule(
            action_type="popup",
            action_config={"title": "Join us", "message": "Subscribe for daily devotionals"},
            trigger_conditions={"event_type": "page_view", "popups_shown_today_lt": 5},
        )
        state = get_or_create_state(db, visitor, now)
        state.popups_shown_today = 5
        db.commit()

        assert fire(db, catalog, visitor, now).action is None


class TestCooldowns:
    def test_cooldown_window(self, db, catalog, visitor, now, make_rule):
        rule = make_rule(cooldown_seconds=1800, max_per_session=10, max_per_day=10)

        assert fire(db, catalog, visitor, now).action.rule_id == rule.id
        assert fire(db, catalog, visitor, now + timedelta(seconds=900)).action is None
        assert fire(db, catalog, visitor, now + timedelta(seconds=1900)).action.rule_id == rule.id

    def test_cooldown_falls_through_to_next_rule(self, db, catalog, visitor, now, make_rule):
        first = make_rule(priority=1, cooldown_seconds=1800)
        second = make_rule(priority=2, cooldown_seconds=1800)
        assert fire(db, catalog, visitor, now).action.rule_id == first.id
        assert fire(db, catalog, visitor, now + timedelta(seconds=1)).action.rule_id == second.id

    def test_cooldowns_are_per_identity(self, db, catalog, visitor, member, now, make_rule):
        make_rule(cooldown_seconds=1800)
        assert fire(db, catalog, visitor, now).action is not None
        assert fire(db, catalog, member, now).action is not None

    def test_max_per_session_resets_on_session_start(self, db, catalog, visitor, now, make_rule):
        rule = make_rule(cooldown_seconds=0, max_per_session=1, max_per_day=10,
                         trigger_conditions={})
        assert fire(db, catalog, visitor, now).action.rule_id == rule.id
        assert fire(db, catalog, visitor, now + timedelta(minutes=1)).action is None

        # session_start clears the per-session counter before evaluation
        result = fire(db, catalog, visitor, now + timedelta(minutes=2), event_type="session_start")
        assert result.action.rule_id == rule.id

    def test_max_per_day(self, db, catalog, visitor, now, make_rule):
        rule = make_rule(cooldown_seconds=0, max_per_session=None, max_per_day=2)
        fire(db, catalog, visitor, now)
        fire(db, catalog, visitor, now + timedelta(minutes=1))
        assert fire(db, catalog, visitor, now + timedelta(minutes=2)).action is None

        cooldown = get_cooldown(db, visitor, rule.id)
        assert cooldown.times_triggered_today == 2

        next_day = now + timedelta(days=1)
        assert fire(db, catalog, visitor, next_day).action.rule_id == rule.id
        db.refresh(cooldown)
        assert cooldown.times_triggered_today == 1
        assert cooldown.last_daily_reset == next_day.date()

    def test_daily_trigger_reset(self, db, catalog, visitor, now, make_rule):
        rule = make_rule(cooldown_seconds=0, max_per_day=5)
        fire(db, catalog, visitor, now)

        assert reset_daily_trigger_counts(db, (now + timedelta(days=1)).date()) == 1
        db.commit()
        cooldown = get_cooldown(db, visitor, rule.id)
        db.refresh(cooldown)
        assert cooldown.times_triggered_today == 0

    def test_one_action_per_event(self, db, catalog, visitor, now, make_rule):
        make_rule(cooldown_seconds=0)
        result = fire(db, catalog, visitor, now)

        again = evaluate_rules_for_event(db, catalog, visitor, result.event, result.state, now)
        assert again.id == result.action.id
        assert count_actions(db) == 1
