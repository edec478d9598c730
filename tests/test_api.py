"""API tests for event intake, delivery, administration and scheduler endpoints."""

import pytest

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def welcome_popup(make_rule):
    return make_rule(
        slug="welcome-popup",
        action_type="popup",
        action_config={"title": "Welcome", "message": "We're glad you stopped by", "persona_id": "ruth"},
        cooldown_seconds=0,
    )


def post_event(client, **payload):
    payload.setdefault("session_id", "sess-api")
    payload.setdefault("event_type", "page_view")
    return client.post("/api/hospitality/events", json=payload)


def rule_payload(**overrides):
    payload = {
        "name": "Chat greeting",
        "slug": "chat-greeting",
        "trigger_conditions": {"event_type": "chat_start"},
        "action_type": "persona_message",
        "action_config": {"persona_id": "barnabas", "title": "Hi there"},
        "priority": 40,
    }
    payload.update(overrides)
    return payload


class TestEvents:
    def test_ingest_event_updates_state(self, client):
        response = post_event(client, page_url="/studies/romans")
        assert response.status_code == 201
        data = response.json()
        assert data["event_id"] > 0
        assert data["state"]["page_views"] == 1
        assert data["state"]["engagement_score"] == 15
        assert data["state"]["funnel_stage"] == "visitor"
        assert data["action"] is None

    def test_ingest_event_triggers_action(self, client, welcome_popup):
        data = post_event(client).json()
        assert data["action"]["rule_id"] == welcome_popup.id
        assert data["action"]["outcome"] == "pending"
        assert data["action"]["persona_id"] == "ruth"

    def test_identity_required(self, client):
        response = client.post("/api/hospitality/events", json={"event_type": "page_view"})
        assert response.status_code == 422

    def test_account_identity(self, client):
        response = post_event(client, session_id=None, account_id=7, event_type="chat_start")
        assert response.status_code == 201
        assert response.json()["state"]["account_id"] == 7

    def test_state_lookup(self, client):
        post_event(client)
        response = client.get("/api/hospitality/state", params={"session_id": "sess-api"})
        assert response.status_code == 200
        assert response.json()["session_id"] == "sess-api"

    def test_state_unknown_identity(self, client):
        response = client.get("/api/hospitality/state", params={"session_id": "nobody"})
        assert response.status_code == 404

    def test_state_requires_identity(self, client):
        assert client.get("/api/hospitality/state").status_code == 422

    @pytest.mark.parametrize("payload", [
        {"event_type": "time_on_page", "metric_value": 1e19},
        {"event_type": "time_on_page", "metric_value": -5},
        {"event_type": "chat_start", "persona_id": "x" * 101},
        {"event_type": "chat_start", "persona_id": 10 ** 20},
    ])
    def test_out_of_range_input_rejected(self, client, payload):
        assert post_event(client, **payload).status_code == 422
        assert client.get("/api/hospitality/state", params={"session_id": "sess-api"}).status_code == 404


class TestDelivery:
    def test_check_and_shown(self, client, welcome_popup):
        action_id = post_event(client).json()["action"]["id"]

        check = client.get("/api/hospitality/check", params={"session_id": "sess-api"}).json()
        assert check["has_action"] is True
        assert check["action"]["id"] == action_id
        assert check["action"]["action_config"]["title"] == "Welcome"

        response = client.post("/api/hospitality/shown", json={"session_id": "sess-api", "action_id": action_id})
        assert response.status_code == 200
        assert response.json()["outcome"] == "shown"

        check = client.get("/api/hospitality/check", params={"session_id": "sess-api"}).json()
        assert check == {"has_action": False, "action": None}

        state = client.get("/api/hospitality/state", params={"session_id": "sess-api"}).json()
        assert state["popups_shown_today"] == 1

    def test_full_funnel(self, client, welcome_popup):
        action_id = post_event(client).json()["action"]["id"]
        body = {"session_id": "sess-api", "action_id": action_id}
        for path, outcome in [("shown", "shown"), ("clicked", "clicked"), ("converted", "converted")]:
            response = client.post(f"/api/hospitality/{path}", json=body)
            assert response.status_code == 200
            assert response.json()["outcome"] == outcome

    def test_dismiss_after_shown(self, client, welcome_popup):
        action_id = post_event(client).json()["action"]["id"]
        body = {"session_id": "sess-api", "action_id": action_id}
        client.post("/api/hospitality/shown", json=body)
        response = client.post("/api/hospitality/dismiss", json=body)
        assert response.json()["outcome"] == "dismissed"

        state = client.get("/api/hospitality/state", params={"session_id": "sess-api"}).json()
        assert state["popups_dismissed_today"] == 1

    def test_illegal_transition_conflicts(self, client, welcome_popup):
        action_id = post_event(client).json()["action"]["id"]
        response = client.post("/api/hospitality/clicked", json={"session_id": "sess-api", "action_id": action_id})
        assert response.status_code == 409

    def test_unknown_action(self, client):
        response = client.post("/api/hospitality/shown", json={"session_id": "sess-api", "action_id": 999})
        assert response.status_code == 404

    def test_action_of_other_identity(self, client, welcome_popup):
        action_id = post_event(client).json()["action"]["id"]
        response = client.post("/api/hospitality/shown", json={"session_id": "intruder", "action_id": action_id})
        assert response.status_code == 404


class TestIdentityMerge:
    def test_merge_session_into_account(self, client):
        post_event(client)
        post_event(client, event_type="chat_start")

        response = client.post("/api/hospitality/identity/merge", json={"session_id": "sess-api", "account_id": 11})
        assert response.status_code == 200
        data = response.json()
        assert data["merged"] is True
        assert data["state"]["account_id"] == 11
        assert data["state"]["page_views"] == 1

        assert client.get("/api/hospitality/state", params={"session_id": "sess-api"}).status_code == 404
        assert client.get("/api/hospitality/state", params={"account_id": 11}).status_code == 200

    def test_merge_unknown_session(self, client):
        response = client.post("/api/hospitality/identity/merge", json={"session_id": "ghost", "account_id": 11})
        assert response.json() == {"merged": False, "state": None}


class TestAdminAuth:
    @pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}])
    def test_rejected_without_valid_token(self, client, headers):
        response = client.get("/api/admin/hospitality/rules", headers=headers)
        assert response.status_code == 403

    def test_sweep_requires_admin(self, client):
        assert client.post("/scheduler/sweep").status_code == 403


class TestAdminRules:
    def test_create_and_get(self, client):
        response = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS)
        assert response.status_code == 201
        rule = response.json()
        assert rule["slug"] == "chat-greeting"
        assert rule["created_by"] == "admin"

        fetched = client.get(f"/api/admin/hospitality/rules/{rule['id']}", headers=ADMIN_HEADERS)
        assert fetched.json()["name"] == "Chat greeting"

    def test_created_rule_is_live(self, client):
        client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS)
        data = post_event(client, event_type="chat_start").json()
        assert data["action"]["persona_id"] == "barnabas"

    def test_invalid_conditions(self, client):
        payload = rule_payload(trigger_conditions={"is_first_visit": True})
        response = client.post("/api/admin/hospitality/rules", json=payload, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == ["Unknown trigger condition: is_first_visit"]

    def test_popup_requires_title_and_message(self, client):
        payload = rule_payload(action_type="popup", action_config={})
        response = client.post("/api/admin/hospitality/rules", json=payload, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert len(response.json()["detail"]["errors"]) == 2

    def test_duplicate_slug(self, client):
        client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS)
        response = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS)
        assert response.status_code == 409

    def test_bad_slug_format(self, client):
        response = client.post("/api/admin/hospitality/rules", json=rule_payload(slug="Not A Slug"), headers=ADMIN_HEADERS)
        assert response.status_code == 422

    def test_update(self, client):
        rule_id = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()["id"]
        response = client.put(f"/api/admin/hospitality/rules/{rule_id}", json={"priority": 5}, headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["priority"] == 5

    def test_update_requires_fields(self, client):
        rule_id = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()["id"]
        response = client.put(f"/api/admin/hospitality/rules/{rule_id}", json={}, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_update_missing_rule(self, client):
        response = client.put("/api/admin/hospitality/rules/999", json={"priority": 5}, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_slug_cannot_be_changed(self, client):
        rule_id = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()["id"]
        response = client.put(f"/api/admin/hospitality/rules/{rule_id}", json={"slug": "renamed"}, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == ["slug cannot be changed"]

        same = client.put(
            f"/api/admin/hospitality/rules/{rule_id}",
            json={"slug": "chat-greeting", "priority": 7},
            headers=ADMIN_HEADERS,
        )
        assert same.status_code == 200

    def test_null_rate_limits_mean_unlimited(self, client):
        payload = rule_payload(cooldown_seconds=0, max_per_session=None, max_per_day=None)
        created = client.post("/api/admin/hospitality/rules", json=payload, headers=ADMIN_HEADERS).json()
        assert created["max_per_session"] is None
        assert created["max_per_day"] is None

        stored = client.get(f"/api/admin/hospitality/rules/{created['id']}", headers=ADMIN_HEADERS).json()
        assert stored["max_per_session"] is None
        assert stored["max_per_day"] is None

        fired = [post_event(client, event_type="chat_start").json()["action"] is not None for _ in range(3)]
        assert fired == [True, True, True]

    def test_omitted_rate_limits_use_defaults(self, client):
        created = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()
        assert created["max_per_session"] == 1
        assert created["max_per_day"] == 3

    def test_delete_deactivates(self, client):
        rule_id = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()["id"]
        response = client.delete(f"/api/admin/hospitality/rules/{rule_id}", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert post_event(client, event_type="chat_start").json()["action"] is None

        listed = client.get("/api/admin/hospitality/rules", params={"active_only": True}, headers=ADMIN_HEADERS)
        assert listed.json()["total"] == 0

    def test_toggle(self, client):
        rule_id = client.post("/api/admin/hospitality/rules", json=rule_payload(), headers=ADMIN_HEADERS).json()["id"]
        first = client.post(f"/api/admin/hospitality/rules/{rule_id}/toggle", headers=ADMIN_HEADERS).json()
        second = client.post(f"/api/admin/hospitality/rules/{rule_id}/toggle", headers=ADMIN_HEADERS).json()
        assert first["is_active"] is False
        assert second["is_active"] is True


class TestCategories:
    def test_create_and_generate_rules(self, client):
        response = client.post(
            "/api/admin/hospitality/categories",
            json={"name": "Prayer", "slug": "prayer"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 201
        category_id = response.json()["id"]

        data = client.get(f"/api/admin/hospitality/categories/{category_id}/rules", headers=ADMIN_HEADERS).json()
        assert data["generated"] == 10
        assert data["total"] == 10

        again = client.get(f"/api/admin/hospitality/categories/{category_id}/rules", headers=ADMIN_HEADERS).json()
        assert again["generated"] == 0
        assert {r["id"] for r in again["rules"]} == {r["id"] for r in data["rules"]}

    def test_duplicate_category_slug(self, client):
        body = {"name": "Prayer", "slug": "prayer"}
        client.post("/api/admin/hospitality/categories", json=body, headers=ADMIN_HEADERS)
        response = client.post("/api/admin/hospitality/categories", json=body, headers=ADMIN_HEADERS)
        assert response.status_code == 409

    def test_unknown_category(self, client):
        response = client.get("/api/admin/hospitality/categories/999/rules", headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_list_categories(self, client):
        client.post("/api/admin/hospitality/categories", json={"name": "Prayer", "slug": "prayer"}, headers=ADMIN_HEADERS)
        response = client.get("/api/admin/hospitality/categories", headers=ADMIN_HEADERS)
        assert [c["slug"] for c in response.json()] == ["prayer"]


class TestStateAdministration:
    def test_stage_override(self, client):
        post_event(client)
        response = client.post(
            "/api/admin/hospitality/states/stage",
            json={"session_id": "sess-api", "funnel_stage": "subscriber"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["funnel_stage"] == "subscriber"

    def test_stage_override_unknown_identity(self, client):
        response = client.post(
            "/api/admin/hospitality/states/stage",
            json={"session_id": "ghost", "funnel_stage": "engaged"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 404

    def test_reset(self, client):
        post_event(client, event_type="chat_start")
        response = client.post("/api/admin/hospitality/states/reset", json={"session_id": "sess-api"}, headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["engagement_score"] == 0


class TestSchedulerAndHealth:
    def test_manual_sweep(self, client):
        response = client.post("/scheduler/sweep", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["expired"] == 0

    def test_manual_daily_reset(self, client):
        response = client.post("/scheduler/daily-reset", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["states_reset"] == 0

    def test_status(self, client, welcome_popup):
        post_event(client)
        data = client.get("/scheduler/status").json()
        assert data["actions"]["pending"] == 1
        assert data["tracked_identities"] == 1
        assert data["active_rules"] == 1

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["database"] == "connected"
        assert data["environment"] == "test"
