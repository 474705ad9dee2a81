"""
devkeep/invitations.py

Invitation lifecycle for project collaborators and community members.

Entry states: pending (accepted=0) -> accepted (accepted=1), or removed (row
deleted). Every transition is one conditional statement against a single
membership row, so concurrent accept/decline/unshare on different entries
never overwrite each other. When a conditional statement matches no row the
failure is classified afterwards:

    resource missing          -> NotFound
    entry no longer pending   -> InvitationAlreadyResolved
    no entry for this caller  -> InvitationNotFound
"""

from __future__ import annotations

import sqlite3
from typing import List, Optional

from devkeep.access import (
    AccessLevel,
    is_accepted,
    require_project_access,
    resolve_community_access,
    resolve_project_access,
)
from devkeep.auth_context import AuthContext
from devkeep.config import IS_DEV
from devkeep.db import now_iso
from devkeep.errors import (
    AlreadyInvited,
    InvitationAlreadyResolved,
    InvitationNotFound,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from devkeep.models import CommunityRole, ProjectRole


def _find_user_by_email(conn: sqlite3.Connection, email: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT id, name, email, image FROM users WHERE email = ?",
        (email.strip().lower(),),
    ).fetchone()


# ============================================================================
# Projects
# ============================================================================

def list_project_collaborators(conn: sqlite3.Connection, project_id: int) -> List[dict]:
    rows = conn.execute(
        """
        SELECT pc.email, pc.role, pc.added_at, pc.accepted,
               u.id AS user_id, u.name, u.image
        FROM project_collaborators pc
        LEFT JOIN users u ON u.email = pc.email
        WHERE pc.project_id = ?
        ORDER BY pc.added_at, pc.id
        """,
        (project_id,),
    ).fetchall()
    return [
        {
            "email": r["email"],
            "role": r["role"],
            "added_at": r["added_at"],
            "accepted": is_accepted(r["accepted"]),
            "user_id": r["user_id"],
            "name": r["name"],
            "image": r["image"],
        }
        for r in rows
    ]


def share_project(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    project_id: int,
    email: str,
    role: str = ProjectRole.collaborator.value,
) -> List[dict]:
    """
    Invite a registered user to a project as a pending collaborator.

    Raises:
        NotFound: project or target user missing
        PermissionDenied: caller is not the owner
        ValidationFailed: sharing with yourself
        AlreadyInvited: target already has an entry (pending or accepted)
    """
    access = resolve_project_access(conn, project_id, ctx)
    if not access.is_owner:
        print(f"[INVITE] Share denied: project_id={project_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Only project owners can share projects")

    if role not in {r.value for r in ProjectRole}:
        raise ValidationFailed(f"Invalid role: {role}")

    target = _find_user_by_email(conn, email)
    if target is None:
        raise NotFound("User with this email not found")
    if target["id"] == ctx.user_id:
        raise ValidationFailed("You are already the owner of this project")

    try:
        conn.execute(
            """
            INSERT INTO project_collaborators (project_id, email, role, added_at, accepted)
            VALUES (?, ?, ?, ?, 0)
            """,
            (project_id, target["email"], role, now_iso()),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        conn.rollback()
        raise AlreadyInvited("Project already shared with this user")

    print(f"[INVITE] Project shared: project_id={project_id}, email={target['email']}, role={role}")
    return list_project_collaborators(conn, project_id)


def _classify_project_miss(conn: sqlite3.Connection, project_id: int, email: str) -> Exception:
    if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
        return NotFound("Project not found")
    entry = conn.execute(
        "SELECT accepted FROM project_collaborators WHERE project_id = ? AND email = ?",
        (project_id, email),
    ).fetchone()
    if entry is not None and is_accepted(entry["accepted"]):
        return InvitationAlreadyResolved("Invitation has already been accepted")
    return InvitationNotFound("No pending invitation found for this project")


def accept_project_invitation(conn: sqlite3.Connection, ctx: AuthContext, project_id: int) -> List[dict]:
    email = ctx.email.lower()
    cur = conn.execute(
        """
        UPDATE project_collaborators SET accepted = 1
        WHERE project_id = ? AND email = ? AND accepted = 0
        """,
        (project_id, email),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise _classify_project_miss(conn, project_id, email)

    print(f"[INVITE] Project invitation accepted: project_id={project_id}, user_id={ctx.user_id}")
    return list_project_collaborators(conn, project_id)


def decline_project_invitation(conn: sqlite3.Connection, ctx: AuthContext, project_id: int) -> List[dict]:
    email = ctx.email.lower()
    cur = conn.execute(
        "DELETE FROM project_collaborators WHERE project_id = ? AND email = ? AND accepted = 0",
        (project_id, email),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise _classify_project_miss(conn, project_id, email)

    print(f"[INVITE] Project invitation declined: project_id={project_id}, user_id={ctx.user_id}")
    return list_project_collaborators(conn, project_id)


def unshare_project(conn: sqlite3.Connection, ctx: AuthContext, project_id: int, email: str) -> List[dict]:
    """
    Remove a collaborator entry in any state.

    Allowed for the owner, or for the collaborator removing themselves.
    Removing an email with no entry is a no-op that returns the current list.
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationFailed("Email is required")

    access = resolve_project_access(conn, project_id, ctx)
    if not access.is_owner and email != ctx.email.lower():
        print(f"[INVITE] Unshare denied: project_id={project_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Permission denied")

    cur = conn.execute(
        "DELETE FROM project_collaborators WHERE project_id = ? AND email = ?",
        (project_id, email),
    )
    conn.commit()
    if cur.rowcount:
        print(f"[INVITE] Collaborator removed: project_id={project_id}, email={email}")
    return list_project_collaborators(conn, project_id)


def project_team(conn: sqlite3.Connection, ctx: AuthContext, project_id: int) -> List[dict]:
    """Owner plus accepted collaborators that have accounts; caller needs READ."""
    access = require_project_access(conn, project_id, ctx, AccessLevel.READ)
    owner = conn.execute(
        "SELECT id, name, email, image FROM users WHERE id = ?",
        (access.project["user_id"],),
    ).fetchone()

    team = []
    if owner is not None:
        team.append({"user_id": owner["id"], "name": owner["name"], "email": owner["email"],
                     "image": owner["image"], "role": "Owner"})
    for entry in list_project_collaborators(conn, project_id):
        if entry["accepted"] and entry["user_id"] is not None:
            team.append({"user_id": entry["user_id"], "name": entry["name"], "email": entry["email"],
                         "image": entry["image"], "role": entry["role"]})
    return team


# ============================================================================
# Communities
# ============================================================================

def list_community_members(conn: sqlite3.Connection, community_id: int) -> List[dict]:
    rows = conn.execute(
        """
        SELECT cm.user_id, cm.role, cm.joined_at, cm.accepted,
               u.name, u.email, u.image, u.last_seen
        FROM community_members cm
        JOIN users u ON u.id = cm.user_id
        WHERE cm.community_id = ?
        ORDER BY cm.joined_at, cm.id
        """,
        (community_id,),
    ).fetchall()
    return [
        {
            "user_id": r["user_id"],
            "role": r["role"],
            "joined_at": r["joined_at"],
            "accepted": is_accepted(r["accepted"]),
            "name": r["name"],
            "email": r["email"],
            "image": r["image"],
            "last_seen": r["last_seen"],
        }
        for r in rows
    ]


def add_community_owner(conn: sqlite3.Connection, community_id: int, owner_id: int) -> None:
    """Record the creator as an accepted admin member. Caller commits."""
    conn.execute(
        """
        INSERT INTO community_members (community_id, user_id, role, joined_at, accepted)
        VALUES (?, ?, ?, ?, 1)
        """,
        (community_id, owner_id, CommunityRole.admin.value, now_iso()),
    )


def invite_community_member(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    email: str,
    role: str = CommunityRole.member.value,
) -> List[dict]:
    """
    Raises:
        NotFound: community or target user missing
        PermissionDenied: caller is not a community admin
        AlreadyInvited: target is the owner or already has an entry
    """
    access = resolve_community_access(conn, community_id, ctx)
    if not access.is_admin:
        print(f"[INVITE] Member invite denied: community_id={community_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Only admins can add members")

    if role not in {r.value for r in CommunityRole}:
        raise ValidationFailed("Invalid role")

    target = _find_user_by_email(conn, email)
    if target is None:
        raise NotFound("User not found")
    if target["id"] == access.community["owner_id"]:
        raise AlreadyInvited("User is already a member")

    try:
        conn.execute(
            """
            INSERT INTO community_members (community_id, user_id, role, joined_at, accepted)
            VALUES (?, ?, ?, ?, 0)
            """,
            (community_id, target["id"], role, now_iso()),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        conn.rollback()
        raise AlreadyInvited("User is already a member")

    print(f"[INVITE] Community invite: community_id={community_id}, user_id={target['id']}, role={role}")
    return list_community_members(conn, community_id)


def _classify_community_miss(conn: sqlite3.Connection, community_id: int, user_id: int) -> Exception:
    if conn.execute("SELECT 1 FROM communities WHERE id = ?", (community_id,)).fetchone() is None:
        return NotFound("Community not found")
    entry = conn.execute(
        "SELECT accepted FROM community_members WHERE community_id = ? AND user_id = ?",
        (community_id, user_id),
    ).fetchone()
    if entry is not None and is_accepted(entry["accepted"]):
        return InvitationAlreadyResolved("Invitation has already been accepted")
    return InvitationNotFound("No pending invitation found")


def accept_community_invitation(conn: sqlite3.Connection, ctx: AuthContext, community_id: int) -> List[dict]:
    cur = conn.execute(
        """
        UPDATE community_members SET accepted = 1, joined_at = ?
        WHERE community_id = ? AND user_id = ? AND accepted = 0
        """,
        (now_iso(), community_id, ctx.user_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise _classify_community_miss(conn, community_id, ctx.user_id)

    print(f"[INVITE] Community invitation accepted: community_id={community_id}, user_id={ctx.user_id}")
    return list_community_members(conn, community_id)


def decline_community_invitation(conn: sqlite3.Connection, ctx: AuthContext, community_id: int) -> List[dict]:
    cur = conn.execute(
        "DELETE FROM community_members WHERE community_id = ? AND user_id = ? AND accepted = 0",
        (community_id, ctx.user_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise _classify_community_miss(conn, community_id, ctx.user_id)

    print(f"[INVITE] Community invitation declined: community_id={community_id}, user_id={ctx.user_id}")
    return list_community_members(conn, community_id)


def remove_community_member(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    member_id: int,
) -> List[dict]:
    """
    Admins remove anyone but the owner; members (pending included) may leave.

    Raises:
        ValidationFailed: target is the owner
        PermissionDenied: non-admin removing someone else
        NotFound: community or member entry missing
    """
    access = resolve_community_access(conn, community_id, ctx)
    if not access.is_admin and member_id != ctx.user_id:
        print(f"[INVITE] Member removal denied: community_id={community_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Permission denied")
    if member_id == access.community["owner_id"]:
        raise ValidationFailed("Cannot remove the community owner")

    cur = conn.execute(
        "DELETE FROM community_members WHERE community_id = ? AND user_id = ?",
        (community_id, member_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise NotFound("Member not found in community")

    print(f"[INVITE] Member removed: community_id={community_id}, member_id={member_id}")
    return list_community_members(conn, community_id)


def change_member_role(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    community_id: int,
    member_id: int,
    role: str,
) -> List[dict]:
    if role not in {r.value for r in CommunityRole}:
        raise ValidationFailed("Invalid role")

    access = resolve_community_access(conn, community_id, ctx)
    if not access.is_admin:
        print(f"[INVITE] Role change denied: community_id={community_id}, user_id={ctx.user_id}")
        raise PermissionDenied("Only admins can change member roles")
    if member_id == access.community["owner_id"]:
        raise ValidationFailed("Cannot change the owner's role")

    cur = conn.execute(
        "UPDATE community_members SET role = ? WHERE community_id = ? AND user_id = ?",
        (role, community_id, member_id),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise NotFound("Member not found in community")

    if IS_DEV:
        print(f"[INVITE] Role changed: community_id={community_id}, member_id={member_id}, role={role}")
    return list_community_members(conn, community_id)


def pending_community_invitations(conn: sqlite3.Connection, ctx: AuthContext) -> List[dict]:
    rows = conn.execute(
        """
        SELECT c.*, cm.role AS invited_role, cm.joined_at AS invited_at
        FROM communities c
        JOIN community_members cm ON cm.community_id = c.id
        WHERE cm.user_id = ? AND cm.accepted = 0
        ORDER BY cm.joined_at DESC
        """,
        (ctx.user_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def pending_project_invitations(conn: sqlite3.Connection, ctx: AuthContext) -> List[dict]:
    rows = conn.execute(
        """
        SELECT p.*, pc.role AS invited_role, pc.added_at AS invited_at
        FROM projects p
        JOIN project_collaborators pc ON pc.project_id = p.id
        WHERE pc.email = ? AND pc.accepted = 0
        ORDER BY pc.added_at DESC
        """,
        (ctx.email.lower(),),
    ).fetchall()
    return [dict(r) for r in rows]
