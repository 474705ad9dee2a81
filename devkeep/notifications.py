"""
devkeep/notifications.py

Notification fan-out and unread aggregation.

Recipients are resolved from the same membership tables the access layer
uses: owner plus accepted (or legacy) members, minus whoever triggered the event.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from devkeep.access import (
    AccessLevel,
    accessible_project_ids,
    member_community_ids,
    require_community_access,
    require_project_access,
)
from devkeep.auth_context import AuthContext
from devkeep.config import IS_DEV
from devkeep.db import now_iso
from devkeep.models import NotificationType, TaskStatus


# ============================================================================
# Recipients
# ============================================================================

def project_recipients(conn: sqlite3.Connection, project_id: int, exclude_user_id: Optional[int] = None) -> List[int]:
    rows = conn.execute(
        """
        SELECT p.user_id AS id FROM projects p WHERE p.id = :pid
        UNION
        SELECT u.id FROM project_collaborators pc
        JOIN users u ON u.email = pc.email
        WHERE pc.project_id = :pid AND (pc.accepted IS NULL OR pc.accepted != 0)
        """,
        {"pid": project_id},
    ).fetchall()
    return sorted(r["id"] for r in rows if r["id"] != exclude_user_id)


def community_recipients(conn: sqlite3.Connection, community_id: int, exclude_user_id: Optional[int] = None) -> List[int]:
    rows = conn.execute(
        """
        SELECT c.owner_id AS id FROM communities c WHERE c.id = :cid
        UNION
        SELECT cm.user_id FROM community_members cm
        WHERE cm.community_id = :cid AND (cm.accepted IS NULL OR cm.accepted != 0)
        """,
        {"cid": community_id},
    ).fetchall()
    return sorted(r["id"] for r in rows if r["id"] != exclude_user_id)


def create_notifications(
    conn: sqlite3.Connection,
    recipient_ids: Iterable[int],
    type: str,
    title: str,
    message: str,
    sender_id: Optional[int] = None,
    link: Optional[str] = None,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
) -> int:
    """Insert one notification per recipient. Caller commits."""
    now = now_iso()
    rows = [
        (rid, sender_id, type, title, message, link, project_id, community_id, now)
        for rid in recipient_ids
    ]
    conn.executemany(
        """
        INSERT INTO notifications
            (recipient_id, sender_id, type, title, message, link, project_id, community_id, read, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
        """,
        rows,
    )
    if IS_DEV and rows:
        print(f"[NOTIFY] type={type}, recipients={len(rows)}")
    return len(rows)


# ============================================================================
# Meetings
# ============================================================================

def notify_meeting_started(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
) -> Dict[str, object]:
    """
    Mark a meeting active on a project or community and notify its members.

    Raises:
        ValueError: neither or both targets given
        NotFound / PermissionDenied: from the access layer (MEMBER required)
    """
    if (project_id is None) == (community_id is None):
        raise ValueError("Exactly one of project_id or community_id is required")

    meeting_id = uuid.uuid4().hex
    if project_id is not None:
        access = require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
        conn.execute(
            "UPDATE projects SET is_meeting_active = 1, active_meeting_id = ?, updated_at = ? WHERE id = ?",
            (meeting_id, now_iso(), project_id),
        )
        recipients = project_recipients(conn, project_id, exclude_user_id=ctx.user_id)
        name = access.project["name"]
        link = f"/projects/{project_id}"
    else:
        access = require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
        conn.execute(
            "UPDATE communities SET is_meeting_active = 1, active_meeting_id = ?, updated_at = ? WHERE id = ?",
            (meeting_id, now_iso(), community_id),
        )
        recipients = community_recipients(conn, community_id, exclude_user_id=ctx.user_id)
        name = access.community["name"]
        link = f"/communities/{community_id}"

    sent = create_notifications(
        conn,
        recipients,
        NotificationType.meeting_started.value,
        title="Meeting started",
        message=f"{ctx.name or ctx.email} started a meeting in {name}",
        sender_id=ctx.user_id,
        link=link,
        project_id=project_id,
        community_id=community_id,
    )
    conn.commit()
    print(f"[NOTIFY] Meeting started: project_id={project_id}, community_id={community_id}, notified={sent}")
    return {"meeting_id": meeting_id, "notified": sent}


def end_meeting(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
) -> None:
    if (project_id is None) == (community_id is None):
        raise ValueError("Exactly one of project_id or community_id is required")

    if project_id is not None:
        require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
        conn.execute(
            "UPDATE projects SET is_meeting_active = 0, active_meeting_id = NULL, updated_at = ? WHERE id = ?",
            (now_iso(), project_id),
        )
    else:
        require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
        conn.execute(
            "UPDATE communities SET is_meeting_active = 0, active_meeting_id = NULL, updated_at = ? WHERE id = ?",
            (now_iso(), community_id),
        )
    conn.commit()
    if IS_DEV:
        print(f"[NOTIFY] Meeting ended: project_id={project_id}, community_id={community_id}")


# ============================================================================
# Tasks
# ============================================================================

def notify_task_assigned(conn: sqlite3.Connection, ctx: AuthContext, task: dict, project_name: str) -> None:
    """Notify the assignee unless they assigned it to themselves. Caller commits."""
    assignee_id = task.get("assignee_id")
    if not assignee_id or assignee_id == ctx.user_id:
        return
    create_notifications(
        conn,
        [assignee_id],
        NotificationType.task_assigned.value,
        title="New task assigned",
        message=f"{ctx.name or ctx.email} assigned you \"{task['title']}\" in {project_name}",
        sender_id=ctx.user_id,
        link=f"/projects/{task['project_id']}",
        project_id=task["project_id"],
    )


def notify_task_status_changed(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    task: dict,
    project: dict,
    old_status: str,
) -> None:
    """Tell the project owner when someone else moves a task. Caller commits."""
    if task["status"] == old_status or project["user_id"] == ctx.user_id:
        return
    create_notifications(
        conn,
        [project["user_id"]],
        NotificationType.task_update.value,
        title="Task status updated",
        message=f"{ctx.name or ctx.email} moved \"{task['title']}\" to {task['status']}",
        sender_id=ctx.user_id,
        link=f"/projects/{project['id']}",
        project_id=project["id"],
    )


# ============================================================================
# Birthdays
# ============================================================================

def is_birthday(birth_date: Optional[str], today: date) -> bool:
    if not birth_date:
        return False
    try:
        born = datetime.fromisoformat(birth_date).date()
    except ValueError:
        return False
    return (born.month, born.day) == (today.month, today.day)


def notify_birthday(conn: sqlite3.Connection, ctx: AuthContext, today: Optional[date] = None) -> int:
    """
    Announce the caller's birthday to co-members of their communities, once a year.

    Returns the number of notifications written.
    """
    today = today or datetime.utcnow().date()
    user = conn.execute(
        "SELECT birth_date, last_birthday_notification_year FROM users WHERE id = ?",
        (ctx.user_id,),
    ).fetchone()
    if user is None or not is_birthday(user["birth_date"], today):
        return 0
    if user["last_birthday_notification_year"] == today.year:
        return 0

    recipients = set()
    for community_id in member_community_ids(conn, ctx):
        recipients.update(community_recipients(conn, community_id, exclude_user_id=ctx.user_id))

    sent = create_notifications(
        conn,
        sorted(recipients),
        NotificationType.birthday.value,
        title="Birthday",
        message=f"Today is {ctx.name or ctx.email}'s birthday!",
        sender_id=ctx.user_id,
    )
    conn.execute(
        "UPDATE users SET last_birthday_notification_year = ? WHERE id = ?",
        (today.year, ctx.user_id),
    )
    conn.commit()
    print(f"[NOTIFY] Birthday announced: user_id={ctx.user_id}, notified={sent}")
    return sent


# ============================================================================
# Unread summary
# ============================================================================

def unread_summary(conn: sqlite3.Connection, ctx: AuthContext) -> Dict[str, object]:
    """
    Per accessible project: unread messages + open tasks assigned to the caller.
    Per member community: unread messages.
    """
    projects: Dict[str, Dict[str, object]] = {}
    for project_id in accessible_project_ids(conn, ctx):
        row = conn.execute(
            """
            SELECT p.name,
                (SELECT COUNT(*) FROM messages m
                 WHERE m.project_id = p.id
                   AND NOT EXISTS (SELECT 1 FROM message_reads r
                                   WHERE r.message_id = m.id AND r.user_id = :uid)) AS messages,
                (SELECT COUNT(*) FROM tasks t
                 WHERE t.project_id = p.id AND t.assignee_id = :uid AND t.status != :done) AS tasks
            FROM projects p WHERE p.id = :pid
            """,
            {"pid": project_id, "uid": ctx.user_id, "done": TaskStatus.done.value},
        ).fetchone()
        projects[str(project_id)] = {"name": row["name"], "messages": row["messages"], "tasks": row["tasks"]}

    communities: Dict[str, Dict[str, object]] = {}
    for community_id in member_community_ids(conn, ctx):
        row = conn.execute(
            """
            SELECT c.name,
                (SELECT COUNT(*) FROM messages m
                 WHERE m.community_id = c.id
                   AND NOT EXISTS (SELECT 1 FROM message_reads r
                                   WHERE r.message_id = m.id AND r.user_id = :uid)) AS messages
            FROM communities c WHERE c.id = :cid
            """,
            {"cid": community_id, "uid": ctx.user_id},
        ).fetchone()
        communities[str(community_id)] = {"name": row["name"], "messages": row["messages"]}

    return {
        "total_projects_unread": sum(p["messages"] + p["tasks"] for p in projects.values()),
        "total_communities_unread": sum(c["messages"] for c in communities.values()),
        "projects": projects,
        "communities": communities,
    }
