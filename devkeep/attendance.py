"""
devkeep/attendance.py

Community clock-in / clock-out and per-member hour reports.

Posting attendance toggles the caller's session: an open session is closed
and its hours recorded, otherwise a new one is opened. A member has at most
one open session per community (partial unique index on attendance).
Dates are UTC calendar days; only completed sessions count in analytics.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from devkeep.access import AccessLevel, require_community_access
from devkeep.auth_context import AuthContext
from devkeep.config import ATTENDANCE_PAGE_SIZE, IS_DEV
from devkeep.errors import PermissionDenied, ValidationFailed
from devkeep.models import AttendancePeriod, AttendanceStatus, NotificationType
from devkeep.notifications import create_notifications


def _session_hours(clock_in: str, clock_out: datetime) -> float:
    return round((clock_out - datetime.fromisoformat(clock_in)).total_seconds() / 3600, 2)


def _open_session(conn: sqlite3.Connection, user_id: int, community_id: int) -> Optional[dict]:
    row = conn.execute(
        "SELECT * FROM attendance WHERE user_id = ? AND community_id = ? AND status = ?",
        (user_id, community_id, AttendanceStatus.active.value),
    ).fetchone()
    return dict(row) if row else None


def toggle_attendance(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Clock the caller out of their open session, or in if none is open.

    The community owner is notified when someone else clocks in or out.

    Raises:
        NotFound / PermissionDenied: from the access layer (MEMBER required)
        ValidationFailed: a concurrent request changed the session first
    """
    access = require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    now = now or datetime.utcnow()
    stamp = now.isoformat()

    session = _open_session(conn, ctx.user_id, community_id)
    if session is not None:
        hours = _session_hours(session["clock_in"], now)
        cur = conn.execute(
            """
            UPDATE attendance
            SET clock_out = ?, total_hours = ?, status = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (stamp, hours, AttendanceStatus.completed.value, stamp, session["id"], AttendanceStatus.active.value),
        )
        if cur.rowcount == 0:
            raise ValidationFailed("Attendance session already closed")
        action = "clock_out"
        message = f"Clocked out successfully. Total hours: {hours}"
        attendance_id = session["id"]
    else:
        try:
            cur = conn.execute(
                """
                INSERT INTO attendance (user_id, community_id, clock_in, date, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (ctx.user_id, community_id, stamp, now.date().isoformat(),
                 AttendanceStatus.active.value, stamp, stamp),
            )
        except sqlite3.IntegrityError:
            raise ValidationFailed("Already clocked in")
        action = "clock_in"
        message = "Clocked in successfully"
        attendance_id = cur.lastrowid

    community = access.community
    if community["owner_id"] != ctx.user_id:
        who = ctx.name or ctx.email
        if action == "clock_in":
            title, verb = "Member Clocked In", "clocked in to"
        else:
            title, verb = "Member Clocked Out", "clocked out from"
        create_notifications(
            conn,
            [community["owner_id"]],
            NotificationType.community_event.value,
            title=title,
            message=f"{who} {verb} {community['name']}",
            sender_id=ctx.user_id,
            link=f"/communities/{community_id}",
            community_id=community_id,
        )
    conn.commit()

    if IS_DEV:
        print(f"[ATTENDANCE] {action}: community_id={community_id}, user_id={ctx.user_id}")
    row = conn.execute("SELECT * FROM attendance WHERE id = ?", (attendance_id,)).fetchone()
    return {"action": action, "attendance": dict(row), "message": message}


def attendance_status(conn: sqlite3.Connection, ctx: AuthContext, community_id: int) -> Dict[str, Any]:
    require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    session = _open_session(conn, ctx.user_id, community_id)
    return {"is_active": session is not None, "session": session}


def _resolve_target(access, ctx: AuthContext, user_id: Optional[int]) -> Optional[int]:
    """Members only see themselves; admins see anyone, or everyone when user_id is None."""
    if user_id is not None and user_id != ctx.user_id and not access.is_admin:
        raise PermissionDenied("Admin access required")
    if user_id is None and not access.is_admin:
        return ctx.user_id
    return user_id


def list_attendance(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    user_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[dict]:
    """Newest sessions first, optionally narrowed to one member and a date range."""
    access = require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    target = _resolve_target(access, ctx, user_id)

    clauses = ["a.community_id = ?"]
    params: List[Any] = [community_id]
    if target is not None:
        clauses.append("a.user_id = ?")
        params.append(target)
    if start_date is not None:
        clauses.append("a.date >= ?")
        params.append(start_date.isoformat())
    if end_date is not None:
        clauses.append("a.date <= ?")
        params.append(end_date.isoformat())

    rows = conn.execute(
        f"""
        SELECT a.*, u.name AS user_name, u.email AS user_email, u.image AS user_image
        FROM attendance a JOIN users u ON u.id = a.user_id
        WHERE {" AND ".join(clauses)}
        ORDER BY a.clock_in DESC, a.id DESC
        LIMIT ?
        """,
        (*params, ATTENDANCE_PAGE_SIZE),
    ).fetchall()
    return [dict(r) for r in rows]


def period_range(period: AttendancePeriod, today: date) -> Tuple[date, date]:
    """Inclusive first and last day of the period containing `today`. Weeks run Sunday to Saturday."""
    if period == AttendancePeriod.daily:
        return today, today
    if period == AttendancePeriod.monthly:
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def attendance_analytics(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    period: AttendancePeriod = AttendancePeriod.weekly,
    user_id: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Completed hours per member over a daily, weekly or monthly window.

    Raises:
        NotFound / PermissionDenied: from the access layer (MEMBER required)
        PermissionDenied: a non-admin asked for another member's hours
    """
    access = require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    target = _resolve_target(access, ctx, user_id)
    start, end = period_range(period, today or datetime.utcnow().date())

    sql = """
        SELECT a.user_id, a.date, a.clock_in, a.clock_out, a.total_hours,
               u.name, u.email, u.image
        FROM attendance a JOIN users u ON u.id = a.user_id
        WHERE a.community_id = ? AND a.status = ? AND a.date BETWEEN ? AND ?
    """
    params: List[Any] = [community_id, AttendanceStatus.completed.value, start.isoformat(), end.isoformat()]
    if target is not None:
        sql += " AND a.user_id = ?"
        params.append(target)
    rows = conn.execute(sql + " ORDER BY a.clock_in, a.id", params).fetchall()

    per_user: Dict[int, Dict[str, Any]] = {}
    for r in rows:
        entry = per_user.setdefault(r["user_id"], {
            "user": {"id": r["user_id"], "name": r["name"], "email": r["email"], "image": r["image"]},
            "total_hours": 0.0,
            "days": set(),
            "records": [],
        })
        entry["total_hours"] += r["total_hours"]
        entry["days"].add(r["date"])
        entry["records"].append({
            "date": r["date"],
            "clock_in": r["clock_in"],
            "clock_out": r["clock_out"],
            "hours": r["total_hours"],
        })

    analytics = []
    for entry in per_user.values():
        days_present = len(entry.pop("days"))
        entry["total_hours"] = round(entry["total_hours"], 2)
        entry["days_present"] = days_present
        entry["average_hours_per_day"] = round(entry["total_hours"] / days_present, 2)
        analytics.append(entry)

    return {
        "period": period.value,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "analytics": analytics,
        "summary": {
            "total_members": len(analytics),
            "total_hours": round(sum(e["total_hours"] for e in analytics), 2),
        },
    }
