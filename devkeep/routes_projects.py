"""
devkeep/routes_projects.py

Project CRUD, sharing, tasks and project chat.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- Every project-scoped call goes through devkeep.access with an explicit level
- Creation is gated by the caller's plan (require_plan_capacity("projects"))
- Membership changes go through devkeep.invitations (row-level statements)
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query

from devkeep.access import (
    ACCESSIBLE_PROJECTS_SQL,
    AccessLevel,
    require_community_access,
    require_project_access,
)
from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.config import IS_DEV
from devkeep.db import get_conn, now_iso
from devkeep.dependencies import require_plan_capacity
from devkeep.errors import NotFound, PermissionDenied, ValidationFailed
from devkeep.invitations import (
    accept_project_invitation,
    decline_project_invitation,
    list_project_collaborators,
    pending_project_invitations,
    project_team,
    share_project,
    unshare_project,
)
from devkeep.messages import list_messages, mark_read, post_message
from devkeep.models import Environment, ProjectStatus, TaskStatus
from devkeep.notifications import notify_task_assigned, notify_task_status_changed, project_recipients
from devkeep.schemas import (
    MessageCreateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    ShareRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
)

router = APIRouter(prefix="/api/projects", tags=["projects"])


# ---------------------------------------------------------
# Serialization
# ---------------------------------------------------------
def serialize_project(row: Dict[str, Any]) -> Dict[str, Any]:
    project = dict(row)
    project["tech_stack"] = json.loads(project.pop("tech_stack_json", None) or "[]")
    project["is_meeting_active"] = bool(project.get("is_meeting_active"))
    for extra in ("invited_role", "invited_at"):
        if extra in project and project[extra] is None:
            project.pop(extra)
    return project


def _load_task(conn: sqlite3.Connection, project_id: int, task_id: int) -> Dict[str, Any]:
    row = conn.execute(
        """
        SELECT t.*, u.name AS assignee_name, u.email AS assignee_email
        FROM tasks t LEFT JOIN users u ON u.id = t.assignee_id
        WHERE t.id = ? AND t.project_id = ?
        """,
        (task_id, project_id),
    ).fetchone()
    if row is None:
        raise NotFound("Task not found")
    return dict(row)


def _check_assignee(conn: sqlite3.Connection, project_id: int, assignee_id: Optional[int]) -> None:
    if assignee_id is not None and assignee_id not in project_recipients(conn, project_id):
        raise ValidationFailed("Assignee must be the owner or an accepted collaborator")


def _check_community_link(conn: sqlite3.Connection, ctx: AuthContext, community_id: Optional[int]) -> None:
    if community_id is not None:
        require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)


# ---------------------------------------------------------
# Projects
# ---------------------------------------------------------
@router.get("")
def list_projects(
    status: Optional[ProjectStatus] = Query(None),
    environment: Optional[Environment] = Query(None),
    community_id: Optional[int] = Query(None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """
    Projects split by relationship:
    - owned_projects: caller is owner
    - shared_projects: accepted (or legacy) collaborator, or admin of the project's community
    - pending_invitations: collaborator entry still pending
    - projects: owned + shared
    """
    sql = f"SELECT * FROM ({ACCESSIBLE_PROJECTS_SQL}) WHERE 1 = 1"
    params: Dict[str, Any] = {"user_id": ctx.user_id, "email": ctx.email.lower()}
    if status is not None:
        sql += " AND status = :status"
        params["status"] = status.value
    if environment is not None:
        sql += " AND environment = :environment"
        params["environment"] = environment.value
    if community_id is not None:
        sql += " AND community_id = :community_id"
        params["community_id"] = community_id
    sql += " ORDER BY updated_at DESC, id DESC"

    projects = [serialize_project(dict(r)) for r in conn.execute(sql, params).fetchall()]
    owned = [p for p in projects if p["user_id"] == ctx.user_id]
    shared = [p for p in projects if p["user_id"] != ctx.user_id]
    pending = [serialize_project(p) for p in pending_project_invitations(conn, ctx)]

    if IS_DEV:
        print(f"[PROJECTS] List: user_id={ctx.user_id}, owned={len(owned)}, "
              f"shared={len(shared)}, pending={len(pending)}")
    return {
        "owned_projects": owned,
        "shared_projects": shared,
        "pending_invitations": pending,
        "projects": projects,
    }


@router.post("", status_code=201, dependencies=[Depends(require_plan_capacity("projects"))])
def create_project(
    req: ProjectCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _check_community_link(conn, ctx, req.community_id)
    now = now_iso()
    cur = conn.execute(
        """
        INSERT INTO projects (
            user_id, community_id, name, description, tech_stack_json,
            repository_url, live_url, environment, status, logo, banner,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            ctx.user_id,
            req.community_id,
            req.name,
            req.description,
            json.dumps(req.tech_stack),
            req.repository_url,
            req.live_url,
            req.environment.value,
            req.status.value,
            req.logo,
            req.banner,
            now,
            now,
        ),
    )
    conn.commit()
    project_id = cur.lastrowid
    print(f"[PROJECTS] Created project_id={project_id}, user_id={ctx.user_id}")
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return serialize_project(dict(row))


@router.get("/{project_id}")
def get_project(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    access = require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
    project = serialize_project(access.project)
    project["collaborators"] = list_project_collaborators(conn, project_id)
    project["access"] = {"relationship": access.relationship, "role": access.role, "level": access.level.name}
    return project


@router.put("/{project_id}")
def update_project(
    req: ProjectUpdateRequest,
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
    changes = req.model_dump(exclude_unset=True, mode="json")
    if "community_id" in changes:
        _check_community_link(conn, ctx, changes["community_id"])
    if "tech_stack" in changes:
        changes["tech_stack_json"] = json.dumps(changes.pop("tech_stack") or [])

    if changes:
        assignments = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE projects SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), now_iso(), project_id),
        )
        conn.commit()
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return serialize_project(dict(row))


@router.delete("/{project_id}")
def delete_project(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.OWNER)
    conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    conn.commit()
    print(f"[PROJECTS] Deleted project_id={project_id}, user_id={ctx.user_id}")
    return {"message": "Project deleted"}


# ---------------------------------------------------------
# Sharing and invitations
# ---------------------------------------------------------
@router.post("/{project_id}/share")
def share(
    req: ShareRequest,
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    shared_with = share_project(conn, ctx, project_id, req.email, req.role.value)
    return {"message": "Project shared successfully", "shared_with": shared_with}


@router.delete("/{project_id}/share")
def unshare(
    project_id: int = Path(...),
    email: str = Query(""),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    shared_with = unshare_project(conn, ctx, project_id, email)
    return {"message": "Collaborator removed", "shared_with": shared_with}


@router.post("/{project_id}/accept")
def accept(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    shared_with = accept_project_invitation(conn, ctx, project_id)
    return {"message": "Invitation accepted", "shared_with": shared_with}


@router.delete("/{project_id}/accept")
def decline(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    shared_with = decline_project_invitation(conn, ctx, project_id)
    return {"message": "Invitation declined", "shared_with": shared_with}


@router.get("/{project_id}/team")
def team(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return {"team": project_team(conn, ctx, project_id)}


# ---------------------------------------------------------
# Tasks
# ---------------------------------------------------------
@router.get("/{project_id}/tasks")
def list_tasks(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.READ)
    rows = conn.execute(
        """
        SELECT t.*, u.name AS assignee_name, u.email AS assignee_email
        FROM tasks t LEFT JOIN users u ON u.id = t.assignee_id
        WHERE t.project_id = ?
        ORDER BY t.created_at DESC, t.id DESC
        """,
        (project_id,),
    ).fetchall()
    return {"tasks": [dict(r) for r in rows]}


@router.post("/{project_id}/tasks", status_code=201)
def create_task(
    req: TaskCreateRequest,
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    access = require_project_access(conn, project_id, ctx, AccessLevel.MANAGE)
    _check_assignee(conn, project_id, req.assignee_id)

    now = now_iso()
    completed_at = now if req.status == TaskStatus.done else None
    cur = conn.execute(
        """
        INSERT INTO tasks (
            project_id, title, description, status, priority, deadline,
            assignee_id, creator_id, completed_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            project_id,
            req.title,
            req.description,
            req.status.value,
            req.priority.value,
            req.deadline.isoformat() if req.deadline else None,
            req.assignee_id,
            ctx.user_id,
            completed_at,
            now,
            now,
        ),
    )
    task = _load_task(conn, project_id, cur.lastrowid)
    notify_task_assigned(conn, ctx, task, access.project["name"])
    conn.commit()

    if IS_DEV:
        print(f"[TASKS] Created task_id={task['id']}, project_id={project_id}, user_id={ctx.user_id}")
    return task


@router.put("/{project_id}/tasks/{task_id}")
def update_task(
    req: TaskUpdateRequest,
    project_id: int = Path(...),
    task_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    access = require_project_access(conn, project_id, ctx, AccessLevel.MANAGE)
    before = _load_task(conn, project_id, task_id)
    changes = req.model_dump(exclude_unset=True, mode="json")

    if "assignee_id" in changes:
        _check_assignee(conn, project_id, changes["assignee_id"])
    if "status" in changes and changes["status"] != before["status"]:
        changes["completed_at"] = now_iso() if changes["status"] == TaskStatus.done.value else None

    if changes:
        assignments = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), now_iso(), task_id),
        )

    task = _load_task(conn, project_id, task_id)
    if task["assignee_id"] != before["assignee_id"]:
        notify_task_assigned(conn, ctx, task, access.project["name"])
    notify_task_status_changed(conn, ctx, task, access.project, before["status"])
    conn.commit()
    return task


@router.delete("/{project_id}/tasks/{task_id}")
def delete_task(
    project_id: int = Path(...),
    task_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """Managers may delete any task; the creator may delete their own while still a member."""
    access = require_project_access(conn, project_id, ctx, AccessLevel.READ)
    task = _load_task(conn, project_id, task_id)
    is_creator = task["creator_id"] == ctx.user_id and access.allows(AccessLevel.MEMBER)
    if not access.allows(AccessLevel.MANAGE) and not is_creator:
        print(f"[ACCESS] Denied: task delete task_id={task_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Only owners, admins, project leads or the task creator can delete tasks")

    conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    conn.commit()
    return {"message": "Task deleted"}


# ---------------------------------------------------------
# Messages
# ---------------------------------------------------------
@router.get("/{project_id}/messages")
def get_messages(
    project_id: int = Path(...),
    limit: Optional[int] = Query(None, ge=1, le=500),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.READ)
    return {"messages": list_messages(conn, ctx.user_id, project_id=project_id, limit=limit)}


@router.post("/{project_id}/messages", status_code=201)
def send_message(
    req: MessageCreateRequest,
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
    return post_message(conn, ctx.user_id, req.content, project_id=project_id)


@router.post("/{project_id}/messages/read")
def read_messages(
    project_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_project_access(conn, project_id, ctx, AccessLevel.READ)
    return {"marked": mark_read(conn, ctx.user_id, project_id=project_id)}


def list_my_tasks(conn: sqlite3.Connection, ctx: AuthContext) -> List[Dict[str, Any]]:
    """Open and closed tasks assigned to the caller across accessible projects."""
    rows = conn.execute(
        f"""
        SELECT t.*, p.name AS project_name
        FROM tasks t
        JOIN ({ACCESSIBLE_PROJECTS_SQL}) p ON p.id = t.project_id
        WHERE t.assignee_id = :user_id
        ORDER BY t.deadline IS NULL, t.deadline, t.id
        """,
        {"user_id": ctx.user_id, "email": ctx.email.lower()},
    ).fetchall()
    return [dict(r) for r in rows]
