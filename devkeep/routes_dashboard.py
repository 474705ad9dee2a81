"""
devkeep/routes_dashboard.py

Dashboard counters, recent activity and the caller's assigned tasks.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from devkeep.access import ACCESSIBLE_PROJECTS_SQL
from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.db import get_conn
from devkeep.invitations import pending_community_invitations, pending_project_invitations
from devkeep.models import ProjectStatus
from devkeep.routes_projects import list_my_tasks

router = APIRouter(prefix="/api", tags=["dashboard"])

RECENT_LIMIT = 8

# Personal rows plus rows attached to any project the caller can use
_REACHABLE = f"(user_id = :user_id OR project_id IN (SELECT id FROM ({ACCESSIBLE_PROJECTS_SQL})))"


@router.get("/dashboard/stats")
def dashboard_stats(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    params = {"user_id": ctx.user_id, "email": ctx.email.lower(), "active": ProjectStatus.active.value}

    counts = conn.execute(
        f"""
        SELECT
            (SELECT COUNT(*) FROM ({ACCESSIBLE_PROJECTS_SQL}) WHERE status = :active) AS projects,
            (SELECT COUNT(*) FROM credentials WHERE {_REACHABLE}
                AND (is_hidden = 0 OR user_id = :user_id)) AS credentials,
            (SELECT COUNT(*) FROM commands WHERE {_REACHABLE}) AS commands,
            (SELECT COUNT(*) FROM notes WHERE {_REACHABLE}) AS notes
        """,
        params,
    ).fetchone()

    recent = conn.execute(
        f"""
        SELECT id, name, 'Project' AS type, updated_at AS date FROM ({ACCESSIBLE_PROJECTS_SQL})
        UNION ALL
        SELECT id, title, 'Command', updated_at FROM commands WHERE {_REACHABLE}
        UNION ALL
        SELECT id, title, 'Note', updated_at FROM notes WHERE {_REACHABLE}
        ORDER BY date DESC
        LIMIT {RECENT_LIMIT}
        """,
        params,
    ).fetchall()

    pending = len(pending_project_invitations(conn, ctx)) + len(pending_community_invitations(conn, ctx))
    return {
        "counts": dict(counts),
        "pending_invitations": pending,
        "recent_items": [dict(r) for r in recent],
    }


@router.get("/tasks/me")
def my_tasks(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return {"tasks": list_my_tasks(conn, ctx)}
