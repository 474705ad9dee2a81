"""
devkeep/test_subscription_entitlements.py

Plan limits, effective plan computation and the signed subscription webhook.

Tests:
1. basic users are capped at 3 projects and 1 community
2. an active pro plan lifts the project cap
3. past_due or canceled subscriptions fall back to basic limits
4. webhook rejects unsigned or mis-signed bodies without touching the user
5. authenticated / cancelled events move the user between plans
6. signed events with a malformed payload are ignored

Run:
    pytest devkeep/test_subscription_entitlements.py -v
"""

import hashlib
import hmac
import json

import pytest

from devkeep import config
from devkeep.db import db_session
from devkeep.entitlements import Subscription, get_effective_plan, is_within_limit


def sign(body: bytes) -> str:
    return hmac.new(config.WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()


def event_body(name, user_id, plan_slug="pro"):
    return json.dumps({
        "event": name,
        "payload": {
            "subscription": {
                "entity": {
                    "id": "sub_123",
                    "current_end": 1893456000,
                    "notes": {"userId": user_id, "planSlug": plan_slug},
                }
            }
        },
    }).encode("utf-8")


def user_plan(user_id):
    with db_session() as conn:
        row = conn.execute(
            "SELECT plan, subscription_status, subscription_id FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
    return dict(row)


def create_projects(client, user, count):
    return [
        client.post("/api/projects", json={"name": f"P{i}"}, headers=user["headers"])
        for i in range(count)
    ]


class TestEffectivePlan:
    @pytest.mark.parametrize(
        "plan,status,expected",
        [
            ("basic", None, "basic"),
            ("pro", "active", "pro"),
            ("premium", "trialing", "premium"),
            ("pro", "past_due", "basic"),
            ("premium", "canceled", "basic"),
            ("pro", None, "basic"),
        ],
    )
    def test_effective_plan(self, plan, status, expected):
        assert get_effective_plan(Subscription(user_id=1, plan_name=plan, status=status)) == expected

    def test_unlimited_sentinel(self):
        assert is_within_limit(-1, 10_000) is True
        assert is_within_limit(3, 2) is True
        assert is_within_limit(3, 3) is False


class TestPlanLimits:
    def test_basic_project_cap(self, client, make_user):
        user = make_user("basic")
        responses = create_projects(client, user, 4)

        assert [r.status_code for r in responses[:3]] == [201, 201, 201]
        assert responses[3].status_code == 403
        assert responses[3].json()["code"] == "plan_limit_reached"

    def test_basic_community_cap(self, client, make_user):
        user = make_user("basic")
        first = client.post("/api/communities", json={"name": "One"}, headers=user["headers"])
        second = client.post("/api/communities", json={"name": "Two"}, headers=user["headers"])

        assert first.status_code == 201
        assert second.status_code == 403
        assert second.json()["code"] == "plan_limit_reached"

    def test_active_pro_has_no_project_cap(self, client, make_user):
        user = make_user("pro", plan="pro", status="active")
        responses = create_projects(client, user, 5)
        assert all(r.status_code == 201 for r in responses)

    def test_past_due_falls_back_to_basic(self, client, make_user):
        user = make_user("late", plan="pro", status="past_due")
        responses = create_projects(client, user, 4)
        assert responses[3].status_code == 403

    def test_usage_summary(self, client, make_user):
        user = make_user("counted")
        create_projects(client, user, 2)

        response = client.get("/api/subscription", headers=user["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["effective_plan"] == "basic"
        assert body["usage"] == {"projects": 2, "communities": 0}
        assert body["limits"]["projects"] == 3

    def test_plans_are_public(self, client):
        response = client.get("/api/subscription/plans")
        assert response.status_code == 200
        assert {p["name"] for p in response.json()["plans"]} >= {"Basic", "Pro", "Premium"}


class TestWebhook:
    def test_missing_signature_rejected(self, client, make_user):
        user = make_user("buyer")
        body = event_body("subscription.authenticated", user["id"])

        response = client.post("/api/subscription/webhook", content=body)
        assert response.status_code == 400
        assert user_plan(user["id"])["plan"] == "basic"

    def test_bad_signature_rejected(self, client, make_user):
        user = make_user("buyer")
        body = event_body("subscription.authenticated", user["id"])

        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": "deadbeef"}
        )
        assert response.status_code == 400
        assert user_plan(user["id"]) == {"plan": "basic", "subscription_status": None, "subscription_id": None}

    def test_authenticated_then_cancelled(self, client, make_user):
        user = make_user("buyer")

        body = event_body("subscription.authenticated", user["id"], plan_slug="pro")
        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": sign(body)}
        )
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "user_id": user["id"]}
        assert user_plan(user["id"]) == {"plan": "pro", "subscription_status": "active", "subscription_id": "sub_123"}

        me = client.get("/api/auth/me", headers=user["headers"]).json()
        assert me["effective_plan"] == "pro"

        body = event_body("subscription.cancelled", user["id"])
        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": sign(body)}
        )
        assert response.status_code == 200
        state = user_plan(user["id"])
        assert state["plan"] == "basic"
        assert state["subscription_status"] == "canceled"

    def test_unknown_event_is_ignored(self, client, make_user):
        user = make_user("buyer")
        body = event_body("subscription.paused", user["id"])

        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": sign(body)}
        )
        assert response.status_code == 200
        assert response.json()["user_id"] is None
        assert user_plan(user["id"])["plan"] == "basic"

    def test_signed_garbage_is_rejected(self, client):
        body = b"not json"
        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": sign(body)}
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("payload", ["x", {"subscription": []}, {"subscription": {"entity": 7}},
                                         {"subscription": {"entity": {"notes": "userId"}}}])
    def test_malformed_payload_is_ignored(self, client, payload):
        body = json.dumps({"event": "subscription.charged", "payload": payload}).encode("utf-8")
        response = client.post(
            "/api/subscription/webhook", content=body, headers={"X-Webhook-Signature": sign(body)}
        )
        assert response.status_code == 200
        assert response.json()["user_id"] is None
