"""
devkeep/access.py

Access control for shared resources (projects and communities).

Every check re-reads the resource and membership rows; nothing is cached.
The caller's identity is always passed in as an AuthContext.

Project levels (lowest to highest):
    READ    owner, community admin, any collaborator entry (pending included)
    MEMBER  owner, community admin, accepted collaborator
    MANAGE  owner, community admin, accepted Admin / Project Lead
    OWNER   owner only

Membership entries whose `accepted` column is NULL predate the invitation
flow and count as accepted everywhere (only an explicit 0 is pending).
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from devkeep.auth_context import AuthContext
from devkeep.config import IS_DEV
from devkeep.errors import NotFound, PermissionDenied
from devkeep.models import MANAGING_PROJECT_ROLES, CommunityRole


# ============================================================================
# Levels and relationships
# ============================================================================

class AccessLevel(IntEnum):
    NONE = 0
    READ = 1
    MEMBER = 2
    MANAGE = 3
    OWNER = 4


class Relationship:
    """Relationship constants."""
    OWNER = "owner"
    COMMUNITY_ADMIN = "community_admin"
    ADMIN = "admin"
    COLLABORATOR = "collaborator"
    MEMBER = "member"
    PENDING = "pending"
    NONE = "none"


def is_accepted(accepted) -> bool:
    """Pending only when explicitly false; NULL (legacy) counts as accepted."""
    return accepted is None or bool(accepted)


def project_level(relationship: str, role: Optional[str] = None) -> AccessLevel:
    """
    Map a caller's relationship to a project onto an access level.

    Pure function - no database access.
    """
    if relationship == Relationship.OWNER:
        return AccessLevel.OWNER
    if relationship == Relationship.COMMUNITY_ADMIN:
        return AccessLevel.MANAGE
    if relationship == Relationship.COLLABORATOR:
        return AccessLevel.MANAGE if role in MANAGING_PROJECT_ROLES else AccessLevel.MEMBER
    if relationship == Relationship.PENDING:
        return AccessLevel.READ
    return AccessLevel.NONE


def community_level(relationship: str) -> AccessLevel:
    """Pending community invitees get no access to the community itself."""
    return {
        Relationship.OWNER: AccessLevel.OWNER,
        Relationship.ADMIN: AccessLevel.MANAGE,
        Relationship.MEMBER: AccessLevel.MEMBER,
    }.get(relationship, AccessLevel.NONE)


# ============================================================================
# Access decisions
# ============================================================================

@dataclass(frozen=True)
class ProjectAccess:
    project: dict
    relationship: str
    role: Optional[str] = None

    @property
    def level(self) -> AccessLevel:
        return project_level(self.relationship, self.role)

    @property
    def is_owner(self) -> bool:
        return self.relationship == Relationship.OWNER

    def allows(self, level: AccessLevel) -> bool:
        return self.level >= level


@dataclass(frozen=True)
class CommunityAccess:
    community: dict
    relationship: str
    role: Optional[str] = None
    pending: bool = field(default=False)

    @property
    def level(self) -> AccessLevel:
        return community_level(self.relationship)

    @property
    def is_owner(self) -> bool:
        return self.relationship == Relationship.OWNER

    @property
    def is_member(self) -> bool:
        return self.level >= AccessLevel.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.level >= AccessLevel.MANAGE

    def allows(self, level: AccessLevel) -> bool:
        return self.level >= level


# ============================================================================
# Resolution
# ============================================================================

def is_community_admin(conn: sqlite3.Connection, community_id: Optional[int], user_id: int) -> bool:
    """Owner, or a non-pending member with role admin."""
    if community_id is None:
        return False
    row = conn.execute(
        """
        SELECT c.owner_id, m.role, m.accepted, m.id AS member_row
        FROM communities c
        LEFT JOIN community_members m ON m.community_id = c.id AND m.user_id = ?
        WHERE c.id = ?
        """,
        (user_id, community_id),
    ).fetchone()
    if row is None:
        return False
    if row["owner_id"] == user_id:
        return True
    return (
        row["member_row"] is not None
        and row["role"] == CommunityRole.admin.value
        and is_accepted(row["accepted"])
    )


def resolve_project_access(conn: sqlite3.Connection, project_id: int, ctx: AuthContext) -> ProjectAccess:
    """
    Determine how the caller relates to a project.

    Raises:
        NotFound: project does not exist
    """
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if row is None:
        raise NotFound("Project not found")
    project = dict(row)

    if project["user_id"] == ctx.user_id:
        return ProjectAccess(project, Relationship.OWNER)

    entry = conn.execute(
        "SELECT role, accepted FROM project_collaborators WHERE project_id = ? AND email = ?",
        (project_id, ctx.email.lower()),
    ).fetchone()

    candidates: List[ProjectAccess] = []
    if entry is not None:
        relationship = Relationship.COLLABORATOR if is_accepted(entry["accepted"]) else Relationship.PENDING
        candidates.append(ProjectAccess(project, relationship, entry["role"]))
    if is_community_admin(conn, project.get("community_id"), ctx.user_id):
        candidates.append(ProjectAccess(project, Relationship.COMMUNITY_ADMIN))

    if not candidates:
        return ProjectAccess(project, Relationship.NONE)
    return max(candidates, key=lambda a: a.level)


def resolve_community_access(conn: sqlite3.Connection, community_id: int, ctx: AuthContext) -> CommunityAccess:
    """
    Determine how the caller relates to a community.

    Raises:
        NotFound: community does not exist
    """
    row = conn.execute("SELECT * FROM communities WHERE id = ?", (community_id,)).fetchone()
    if row is None:
        raise NotFound("Community not found")
    community = dict(row)

    if community["owner_id"] == ctx.user_id:
        return CommunityAccess(community, Relationship.OWNER, CommunityRole.admin.value)

    entry = conn.execute(
        "SELECT role, accepted FROM community_members WHERE community_id = ? AND user_id = ?",
        (community_id, ctx.user_id),
    ).fetchone()
    if entry is None:
        return CommunityAccess(community, Relationship.NONE)
    if not is_accepted(entry["accepted"]):
        return CommunityAccess(community, Relationship.PENDING, entry["role"], pending=True)
    if entry["role"] == CommunityRole.admin.value:
        return CommunityAccess(community, Relationship.ADMIN, entry["role"])
    return CommunityAccess(community, Relationship.MEMBER, entry["role"])


# ============================================================================
# Enforcement
# ============================================================================

_DENIAL_MESSAGES = {
    AccessLevel.READ: "You do not have access to this {kind}",
    AccessLevel.MEMBER: "You must be an accepted member of this {kind}",
    AccessLevel.MANAGE: "Only owners, admins and project leads can do this",
    AccessLevel.OWNER: "Only the {kind} owner can do this",
}


def _deny(kind: str, resource_id: int, ctx: AuthContext, relationship: str, level: AccessLevel) -> None:
    print(f"[ACCESS] Denied: {kind}_id={resource_id}, user_id={ctx.user_id}, "
          f"relationship={relationship}, required={level.name}")
    raise PermissionDenied(_DENIAL_MESSAGES[level].format(kind=kind))


def require_project_access(
    conn: sqlite3.Connection,
    project_id: int,
    ctx: AuthContext,
    level: AccessLevel = AccessLevel.READ,
) -> ProjectAccess:
    """
    Raises:
        NotFound: project missing
        PermissionDenied: relationship below `level`
    """
    access = resolve_project_access(conn, project_id, ctx)
    if not access.allows(level):
        _deny("project", project_id, ctx, access.relationship, level)
    if IS_DEV:
        print(f"[ACCESS] Granted: project_id={project_id}, user_id={ctx.user_id}, "
              f"relationship={access.relationship}, level={level.name}")
    return access


def require_community_access(
    conn: sqlite3.Connection,
    community_id: int,
    ctx: AuthContext,
    level: AccessLevel = AccessLevel.MEMBER,
) -> CommunityAccess:
    """
    Raises:
        NotFound: community missing
        PermissionDenied: caller is pending, outside the community, or below `level`
    """
    access = resolve_community_access(conn, community_id, ctx)
    if not access.allows(level):
        _deny("community", community_id, ctx, access.relationship, level)
    if IS_DEV:
        print(f"[ACCESS] Granted: community_id={community_id}, user_id={ctx.user_id}, "
              f"relationship={access.relationship}, level={level.name}")
    return access


# ============================================================================
# Listing filters
# ============================================================================

# Projects the caller can use: owned, accepted/legacy collaborator, or
# attached to a community the caller administers.
ACCESSIBLE_PROJECTS_SQL = """
    SELECT p.* FROM projects p
    WHERE p.user_id = :user_id
       OR EXISTS (
            SELECT 1 FROM project_collaborators pc
            WHERE pc.project_id = p.id AND pc.email = :email
              AND (pc.accepted IS NULL OR pc.accepted != 0)
       )
       OR EXISTS (
            SELECT 1 FROM communities c
            WHERE c.id = p.community_id AND c.owner_id = :user_id
       )
       OR EXISTS (
            SELECT 1 FROM community_members cm
            WHERE cm.community_id = p.community_id AND cm.user_id = :user_id
              AND cm.role = 'admin'
              AND (cm.accepted IS NULL OR cm.accepted != 0)
       )
"""

# Communities the caller belongs to (owner or accepted/legacy member)
MEMBER_COMMUNITIES_SQL = """
    SELECT c.* FROM communities c
    WHERE c.owner_id = :user_id
       OR EXISTS (
            SELECT 1 FROM community_members cm
            WHERE cm.community_id = c.id AND cm.user_id = :user_id
              AND (cm.accepted IS NULL OR cm.accepted != 0)
       )
"""


def accessible_project_ids(conn: sqlite3.Connection, ctx: AuthContext) -> List[int]:
    rows = conn.execute(
        f"SELECT id FROM ({ACCESSIBLE_PROJECTS_SQL})",
        {"user_id": ctx.user_id, "email": ctx.email.lower()},
    ).fetchall()
    return [r["id"] for r in rows]


def member_community_ids(conn: sqlite3.Connection, ctx: AuthContext) -> List[int]:
    rows = conn.execute(
        f"SELECT id FROM ({MEMBER_COMMUNITIES_SQL})",
        {"user_id": ctx.user_id},
    ).fetchall()
    return [r["id"] for r in rows]
