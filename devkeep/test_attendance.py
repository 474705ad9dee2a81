"""
devkeep/test_attendance.py

Community clock-in / clock-out and hour analytics.

Tests:
1. posting attendance toggles between clock-in and clock-out
2. the community owner hears about other members clocking in and out
3. pending invitees and outsiders cannot clock in
4. members only read their own hours; admins read everyone's
5. period windows (daily, Sunday-based weekly, calendar month)

Run:
    pytest devkeep/test_attendance.py -v
"""

from datetime import date, datetime

import pytest

from devkeep.attendance import attendance_analytics, period_range, toggle_attendance
from devkeep.auth_context import AuthContext
from devkeep.db import db_session
from devkeep.errors import PermissionDenied
from devkeep.models import AttendancePeriod


def ctx_for(user):
    return AuthContext(user_id=user["id"], email=user["email"], name=user["name"])


def create_community(client, owner, name="Night Shift"):
    response = client.post("/api/communities", json={"name": name}, headers=owner["headers"])
    assert response.status_code == 201, response.text
    return response.json()["id"]


def join(client, owner, community_id, user, role="member", accept=True):
    client.post(
        f"/api/communities/{community_id}/members",
        json={"email": user["email"], "role": role},
        headers=owner["headers"],
    )
    if accept:
        client.post(f"/api/communities/{community_id}/accept", headers=user["headers"])


def clock(client, user, community_id):
    return client.post(f"/api/communities/{community_id}/attendance", headers=user["headers"])


def work_session(community_id, user, start, end):
    """Clock a user in at `start` and out at `end` directly through the module."""
    with db_session() as conn:
        toggle_attendance(conn, ctx_for(user), community_id, now=start)
        return toggle_attendance(conn, ctx_for(user), community_id, now=end)


class TestToggle:
    def test_clock_in_then_out(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        join(client, owner, community_id, bob)

        first = clock(client, bob, community_id)
        assert first.status_code == 200
        assert first.json()["action"] == "clock_in"
        assert first.json()["attendance"]["status"] == "active"

        status = client.get(f"/api/communities/{community_id}/attendance/status", headers=bob["headers"]).json()
        assert status["is_active"] is True
        assert status["session"]["id"] == first.json()["attendance"]["id"]

        second = clock(client, bob, community_id).json()
        assert second["action"] == "clock_out"
        assert second["attendance"]["id"] == first.json()["attendance"]["id"]
        assert second["attendance"]["status"] == "completed"
        assert second["attendance"]["clock_out"] is not None
        assert second["message"].startswith("Clocked out successfully. Total hours:")

        status = client.get(f"/api/communities/{community_id}/attendance/status", headers=bob["headers"]).json()
        assert status == {"is_active": False, "session": None}

    def test_owner_notified_of_member_sessions(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner, name="Guild")
        join(client, owner, community_id, bob)

        clock(client, bob, community_id)
        clock(client, bob, community_id)
        # The owner's own sessions stay quiet
        clock(client, owner, community_id)

        notifications = client.get("/api/notifications", headers=owner["headers"]).json()["notifications"]
        assert sorted(n["title"] for n in notifications) == ["Member Clocked In", "Member Clocked Out"]
        assert {n["type"] for n in notifications} == {"community_event"}
        assert {n["link"] for n in notifications} == {f"/communities/{community_id}"}
        assert any(n["message"] == "bob clocked in to Guild" for n in notifications)

    def test_pending_and_outsiders_rejected(self, client, make_user):
        owner = make_user("owner")
        carol = make_user("carol")
        stranger = make_user("stranger")
        community_id = create_community(client, owner)
        join(client, owner, community_id, carol, accept=False)

        assert clock(client, carol, community_id).status_code == 403
        assert clock(client, stranger, community_id).status_code == 403
        assert clock(client, stranger, community_id + 999).status_code == 404
        with db_session() as conn:
            assert conn.execute("SELECT COUNT(*) FROM attendance").fetchone()[0] == 0

    def test_hours_rounded_to_two_decimals(self, client, make_user):
        owner = make_user("owner")
        community_id = create_community(client, owner)

        result = work_session(community_id, owner, datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 10, 20))
        assert result["attendance"]["total_hours"] == 1.33
        assert result["attendance"]["date"] == "2026-03-02"


class TestHistory:
    def test_members_see_only_their_own_records(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        carol = make_user("carol")
        community_id = create_community(client, owner)
        join(client, owner, community_id, bob)
        join(client, owner, community_id, carol)
        clock(client, bob, community_id)
        clock(client, carol, community_id)

        url = f"/api/communities/{community_id}/attendance"
        bob_view = client.get(url, headers=bob["headers"]).json()["attendance"]
        assert [r["user_id"] for r in bob_view] == [bob["id"]]
        assert client.get(url, params={"user_id": carol["id"]}, headers=bob["headers"]).status_code == 403

        owner_view = client.get(url, headers=owner["headers"]).json()["attendance"]
        assert {r["user_id"] for r in owner_view} == {bob["id"], carol["id"]}
        filtered = client.get(url, params={"user_id": carol["id"]}, headers=owner["headers"]).json()["attendance"]
        assert [r["user_name"] for r in filtered] == ["carol"]

    def test_date_range_filter(self, client, make_user):
        owner = make_user("owner")
        community_id = create_community(client, owner)
        work_session(community_id, owner, datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17))
        work_session(community_id, owner, datetime(2026, 3, 9, 9), datetime(2026, 3, 9, 12))

        response = client.get(
            f"/api/communities/{community_id}/attendance",
            params={"start_date": "2026-03-05", "end_date": "2026-03-31"},
            headers=owner["headers"],
        )
        assert [r["date"] for r in response.json()["attendance"]] == ["2026-03-09"]


class TestAnalytics:
    def test_weekly_totals_per_member(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        join(client, owner, community_id, bob)

        # Sunday 2026-03-01 opens the week
        work_session(community_id, bob, datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17))
        work_session(community_id, bob, datetime(2026, 3, 3, 9), datetime(2026, 3, 3, 13))
        work_session(community_id, bob, datetime(2026, 3, 3, 14), datetime(2026, 3, 3, 16))
        # Previous week
        work_session(community_id, bob, datetime(2026, 2, 27, 9), datetime(2026, 2, 27, 17))
        # Still open, so not counted
        with db_session() as conn:
            toggle_attendance(conn, ctx_for(owner), community_id, now=datetime(2026, 3, 4, 9))

            report = attendance_analytics(
                conn, ctx_for(owner), community_id, AttendancePeriod.weekly, today=date(2026, 3, 4)
            )

        assert (report["start_date"], report["end_date"]) == ("2026-03-01", "2026-03-07")
        assert report["summary"] == {"total_members": 1, "total_hours": 14.0}
        (entry,) = report["analytics"]
        assert entry["user"]["id"] == bob["id"]
        assert entry["total_hours"] == 14.0
        assert entry["days_present"] == 2
        assert entry["average_hours_per_day"] == 7.0
        assert [r["hours"] for r in entry["records"]] == [8.0, 4.0, 2.0]

    def test_member_cannot_read_others(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        join(client, owner, community_id, bob)

        with db_session() as conn:
            with pytest.raises(PermissionDenied):
                attendance_analytics(conn, ctx_for(bob), community_id, user_id=owner["id"])

        url = f"/api/communities/{community_id}/attendance/analytics"
        denied = client.get(url, params={"user_id": owner["id"]}, headers=bob["headers"])
        assert denied.status_code == 403
        assert denied.json() == {"error": "Admin access required", "code": "permission_denied"}
        assert client.get(url, params={"user_id": bob["id"]}, headers=bob["headers"]).status_code == 200

    def test_member_defaults_to_self_and_admin_sees_all(self, client, make_user):
        owner = make_user("owner")
        admin = make_user("admin")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        join(client, owner, community_id, admin, role="admin")
        join(client, owner, community_id, bob)
        start, end = datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 11)
        work_session(community_id, owner, start, end)
        work_session(community_id, bob, start, end)

        with db_session() as conn:
            mine = attendance_analytics(conn, ctx_for(bob), community_id, AttendancePeriod.daily,
                                        today=date(2026, 3, 2))
            everyone = attendance_analytics(conn, ctx_for(admin), community_id, AttendancePeriod.monthly,
                                            today=date(2026, 3, 20))

        assert [e["user"]["id"] for e in mine["analytics"]] == [bob["id"]]
        assert everyone["summary"] == {"total_members": 2, "total_hours": 4.0}

    def test_unknown_period_rejected(self, client, make_user):
        owner = make_user("owner")
        community_id = create_community(client, owner)
        response = client.get(
            f"/api/communities/{community_id}/attendance/analytics",
            params={"period": "yearly"},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_failed"


@pytest.mark.parametrize("period,today,expected", [
    (AttendancePeriod.daily, date(2026, 3, 4), (date(2026, 3, 4), date(2026, 3, 4))),
    (AttendancePeriod.weekly, date(2026, 3, 4), (date(2026, 3, 1), date(2026, 3, 7))),
    (AttendancePeriod.weekly, date(2026, 3, 1), (date(2026, 3, 1), date(2026, 3, 7))),
    (AttendancePeriod.weekly, date(2026, 3, 7), (date(2026, 3, 1), date(2026, 3, 7))),
    (AttendancePeriod.monthly, date(2026, 2, 14), (date(2026, 2, 1), date(2026, 2, 28))),
    (AttendancePeriod.monthly, date(2026, 12, 31), (date(2026, 12, 1), date(2026, 12, 31))),
])
def test_period_range(period, today, expected):
    assert period_range(period, today) == expected
