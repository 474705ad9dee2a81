"""
devkeep/routes_communities.py

Community CRUD, membership, community chat and attendance.

Pending invitees see the community only in pending_invitations; detail,
messages and meetings require an accepted (or legacy) membership.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query

from devkeep.access import MEMBER_COMMUNITIES_SQL, AccessLevel, require_community_access
from devkeep.attendance import attendance_analytics, attendance_status, list_attendance, toggle_attendance
from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.config import IS_DEV
from devkeep.db import get_conn, now_iso
from devkeep.dependencies import require_plan_capacity
from devkeep.invitations import (
    accept_community_invitation,
    add_community_owner,
    change_member_role,
    decline_community_invitation,
    invite_community_member,
    list_community_members,
    pending_community_invitations,
    remove_community_member,
)
from devkeep.messages import list_messages, mark_read, post_message
from devkeep.models import AttendancePeriod
from devkeep.schemas import (
    CommunityCreateRequest,
    CommunityUpdateRequest,
    MemberInviteRequest,
    MemberRoleRequest,
    MessageCreateRequest,
)

router = APIRouter(prefix="/api/communities", tags=["communities"])


def serialize_community(row: Dict[str, Any]) -> Dict[str, Any]:
    community = dict(row)
    community["is_meeting_active"] = bool(community.get("is_meeting_active"))
    return community


def _load_community(conn: sqlite3.Connection, community_id: int) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM communities WHERE id = ?", (community_id,)).fetchone()
    return serialize_community(dict(row))


@router.get("")
def list_communities(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    rows = conn.execute(
        f"""
        SELECT c.*,
            (SELECT COUNT(*) FROM community_members cm
             WHERE cm.community_id = c.id AND (cm.accepted IS NULL OR cm.accepted != 0)) AS member_count
        FROM ({MEMBER_COMMUNITIES_SQL}) c
        ORDER BY c.updated_at DESC, c.id DESC
        """,
        {"user_id": ctx.user_id},
    ).fetchall()
    communities = [serialize_community(dict(r)) for r in rows]
    pending = [serialize_community(c) for c in pending_community_invitations(conn, ctx)]
    return {"communities": communities, "pending_invitations": pending}


@router.post("", status_code=201, dependencies=[Depends(require_plan_capacity("communities"))])
def create_community(
    req: CommunityCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    now = now_iso()
    cur = conn.execute(
        """
        INSERT INTO communities (owner_id, name, description, icon, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (ctx.user_id, req.name, req.description, req.icon, now, now),
    )
    community_id = cur.lastrowid
    add_community_owner(conn, community_id, ctx.user_id)
    conn.commit()
    print(f"[COMMUNITIES] Created community_id={community_id}, owner_id={ctx.user_id}")
    return _load_community(conn, community_id)


@router.get("/{community_id}")
def get_community(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    access = require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    community = serialize_community(access.community)
    community["members"] = list_community_members(conn, community_id)
    community["projects"] = [
        dict(r) for r in conn.execute(
            "SELECT id, name, status, environment, user_id FROM projects WHERE community_id = ? ORDER BY id",
            (community_id,),
        ).fetchall()
    ]
    community["access"] = {"relationship": access.relationship, "role": access.role, "level": access.level.name}
    return community


@router.put("/{community_id}")
def update_community(
    req: CommunityUpdateRequest,
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_community_access(conn, community_id, ctx, AccessLevel.MANAGE)
    changes = req.model_dump(exclude_unset=True)
    if changes:
        assignments = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE communities SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), now_iso(), community_id),
        )
        conn.commit()
    return _load_community(conn, community_id)


@router.delete("/{community_id}")
def delete_community(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_community_access(conn, community_id, ctx, AccessLevel.OWNER)
    conn.execute("DELETE FROM communities WHERE id = ?", (community_id,))
    conn.commit()
    print(f"[COMMUNITIES] Deleted community_id={community_id}, user_id={ctx.user_id}")
    return {"message": "Community deleted"}


# ---------------------------------------------------------
# Membership
# ---------------------------------------------------------
@router.post("/{community_id}/members")
def add_member(
    req: MemberInviteRequest,
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    members = invite_community_member(conn, ctx, community_id, req.email, req.role.value)
    return {"message": "Invitation sent", "members": members}


@router.delete("/{community_id}/members")
def remove_member(
    community_id: int = Path(...),
    member_id: int = Query(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    members = remove_community_member(conn, ctx, community_id, member_id)
    return {"message": "Member removed", "members": members}


@router.patch("/{community_id}/members")
def update_member_role(
    req: MemberRoleRequest,
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    members = change_member_role(conn, ctx, community_id, req.member_id, req.role.value)
    return {"message": "Role updated", "members": members}


@router.post("/{community_id}/accept")
def accept(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    members = accept_community_invitation(conn, ctx, community_id)
    return {"message": "Invitation accepted", "members": members}


@router.delete("/{community_id}/accept")
def decline(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    members = decline_community_invitation(conn, ctx, community_id)
    return {"message": "Invitation declined", "members": members}


# ---------------------------------------------------------
# Messages
# ---------------------------------------------------------
@router.get("/{community_id}/messages")
def get_messages(
    community_id: int = Path(...),
    limit: Optional[int] = Query(None, ge=1, le=500),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    return {"messages": list_messages(conn, ctx.user_id, community_id=community_id, limit=limit)}


@router.post("/{community_id}/messages", status_code=201)
def send_message(
    req: MessageCreateRequest,
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    message = post_message(conn, ctx.user_id, req.content, community_id=community_id)
    if IS_DEV:
        print(f"[COMMUNITIES] Message posted: community_id={community_id}, user_id={ctx.user_id}")
    return message


@router.post("/{community_id}/messages/read")
def read_messages(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
    return {"marked": mark_read(conn, ctx.user_id, community_id=community_id)}


# ---------------------------------------------------------
# Attendance
# ---------------------------------------------------------
@router.post("/{community_id}/attendance")
def clock_in_or_out(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return toggle_attendance(conn, ctx, community_id)


@router.get("/{community_id}/attendance")
def get_attendance(
    community_id: int = Path(...),
    user_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    records = list_attendance(conn, ctx, community_id, user_id=user_id, start_date=start_date, end_date=end_date)
    return {"attendance": records}


@router.get("/{community_id}/attendance/status")
def get_attendance_status(
    community_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return attendance_status(conn, ctx, community_id)


@router.get("/{community_id}/attendance/analytics")
def get_attendance_analytics(
    community_id: int = Path(...),
    period: AttendancePeriod = Query(AttendancePeriod.weekly),
    user_id: Optional[int] = Query(None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return attendance_analytics(conn, ctx, community_id, period=period, user_id=user_id)
