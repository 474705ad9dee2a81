"""
devkeep/routes_notifications.py

Notification inbox, unread counters and meeting start/end.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, Path

from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.config import NOTIFICATION_PAGE_SIZE
from devkeep.db import get_conn
from devkeep.errors import NotFound
from devkeep.notifications import end_meeting, notify_meeting_started, unread_summary
from devkeep.schemas import MeetingRequest

router = APIRouter(prefix="/api", tags=["notifications"])


@router.get("/notifications")
def list_notifications(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    rows = conn.execute(
        """
        SELECT n.*, u.name AS sender_name, u.image AS sender_image
        FROM notifications n LEFT JOIN users u ON u.id = n.sender_id
        WHERE n.recipient_id = ?
        ORDER BY n.created_at DESC, n.id DESC
        LIMIT ?
        """,
        (ctx.user_id, NOTIFICATION_PAGE_SIZE),
    ).fetchall()
    notifications = []
    for r in rows:
        item = dict(r)
        item["read"] = bool(item["read"])
        notifications.append(item)
    unread = conn.execute(
        "SELECT COUNT(*) FROM notifications WHERE recipient_id = ? AND read = 0", (ctx.user_id,)
    ).fetchone()[0]
    return {"notifications": notifications, "unread_count": unread}


@router.delete("/notifications")
def clear_notifications(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    cur = conn.execute("DELETE FROM notifications WHERE recipient_id = ?", (ctx.user_id,))
    conn.commit()
    return {"message": "Notifications cleared", "deleted": cur.rowcount}


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    cur = conn.execute(
        "UPDATE notifications SET read = 1 WHERE id = ? AND recipient_id = ?",
        (notification_id, ctx.user_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise NotFound("Notification not found")
    return {"message": "Notification marked as read"}


@router.get("/notifications/unread")
def unread(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return unread_summary(conn, ctx)


@router.post("/notifications/meeting")
def start_meeting(
    req: MeetingRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return notify_meeting_started(conn, ctx, project_id=req.project_id, community_id=req.community_id)


@router.post("/meeting/end")
def stop_meeting(
    req: MeetingRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    end_meeting(conn, ctx, project_id=req.project_id, community_id=req.community_id)
    return {"message": "Meeting ended"}
