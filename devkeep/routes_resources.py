"""
devkeep/routes_resources.py

Credentials, commands and notes.

These rows carry no ACL of their own. A row is reachable by its author, or
through the project (MEMBER) or community (MEMBER) it is attached to.
Deleting someone else's row needs OWNER on the project (or MANAGE on the community).

Credential passwords are Fernet-encrypted at rest, masked in lists and
decrypted only on the single-item GET.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query

from devkeep.access import (
    ACCESSIBLE_PROJECTS_SQL,
    MEMBER_COMMUNITIES_SQL,
    AccessLevel,
    require_community_access,
    require_project_access,
)
from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.config import IS_DEV
from devkeep.db import get_conn, now_iso
from devkeep.errors import NotFound, PermissionDenied
from devkeep.models import CommandCategory
from devkeep.schemas import (
    CommandCreateRequest,
    CommandUpdateRequest,
    CredentialCreateRequest,
    CredentialUpdateRequest,
    NoteCreateRequest,
    NoteUpdateRequest,
)
from devkeep.security import decrypt_secret, encrypt_secret

PASSWORD_MASK = "••••••••"

credentials_router = APIRouter(prefix="/api/credentials", tags=["credentials"])
commands_router = APIRouter(prefix="/api/commands", tags=["commands"])
notes_router = APIRouter(prefix="/api/notes", tags=["notes"])


# ---------------------------------------------------------
# Shared scoping helpers
# ---------------------------------------------------------
def _check_links(conn: sqlite3.Connection, ctx: AuthContext, project_id: Optional[int], community_id: Optional[int] = None) -> None:
    if project_id is not None:
        require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
    if community_id is not None:
        require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)


def _list_rows(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    table: str,
    project_id: Optional[int] = None,
    extra_where: str = "",
    with_communities: bool = False,
) -> List[Dict[str, Any]]:
    """Rows for one project, or everything the caller authored or can reach."""
    params: Dict[str, Any] = {"user_id": ctx.user_id, "email": ctx.email.lower()}
    if project_id is not None:
        require_project_access(conn, project_id, ctx, AccessLevel.MEMBER)
        where = "r.project_id = :project_id"
        params["project_id"] = project_id
    else:
        scopes = [
            "r.user_id = :user_id",
            f"r.project_id IN (SELECT id FROM ({ACCESSIBLE_PROJECTS_SQL}))",
        ]
        if with_communities:
            scopes.append(f"r.community_id IN (SELECT id FROM ({MEMBER_COMMUNITIES_SQL}))")
        where = "(" + " OR ".join(scopes) + ")"

    rows = conn.execute(
        f"""
        SELECT r.*, p.name AS project_name
        FROM {table} r LEFT JOIN projects p ON p.id = r.project_id
        WHERE {where} {extra_where}
        ORDER BY r.created_at DESC, r.id DESC
        """,
        params,
    ).fetchall()
    return [dict(r) for r in rows]


def _load_row(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    table: str,
    item_id: int,
    for_delete: bool = False,
) -> Dict[str, Any]:
    """
    Fetch one row the caller may see (or delete).

    Raises:
        NotFound: row missing, or a hidden credential of another user
        PermissionDenied: not the author and not reachable through its project/community
    """
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (item_id,)).fetchone()
    if row is None:
        raise NotFound(f"{table[:-1].capitalize()} not found")
    item = dict(row)
    if item["user_id"] == ctx.user_id:
        return item
    if table == "credentials" and item["is_hidden"]:
        # Hidden credentials do not exist for anyone but their author
        raise NotFound("Credential not found")

    if item.get("project_id") is not None:
        level = AccessLevel.OWNER if for_delete else AccessLevel.MEMBER
        require_project_access(conn, item["project_id"], ctx, level)
        return item
    if item.get("community_id") is not None:
        level = AccessLevel.MANAGE if for_delete else AccessLevel.MEMBER
        require_community_access(conn, item["community_id"], ctx, level)
        return item

    print(f"[ACCESS] Denied: {table} id={item_id}, user_id={ctx.user_id}")
    raise PermissionDenied("Permission denied")


def _apply_update(conn: sqlite3.Connection, table: str, item_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    if changes:
        assignments = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), now_iso(), item_id),
        )
        conn.commit()
    return dict(conn.execute(f"SELECT * FROM {table} WHERE id = ?", (item_id,)).fetchone())


def _delete(conn: sqlite3.Connection, table: str, item_id: int) -> None:
    conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,))
    conn.commit()


# ---------------------------------------------------------
# Credentials
# ---------------------------------------------------------
def _credential_out(item: Dict[str, Any], password: str = PASSWORD_MASK) -> Dict[str, Any]:
    out = dict(item)
    out["password"] = password
    out["is_hidden"] = bool(out.get("is_hidden"))
    return out


@credentials_router.get("")
def list_credentials(
    project_id: Optional[int] = Query(None),
    include_hidden: bool = Query(False),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """Hidden credentials are only ever listed for their author, and only on request."""
    if include_hidden:
        extra = "AND (r.is_hidden = 0 OR r.user_id = :user_id)"
    else:
        extra = "AND r.is_hidden = 0"
    rows = _list_rows(conn, ctx, "credentials", project_id, extra_where=extra)
    return {"credentials": [_credential_out(r) for r in rows]}


@credentials_router.post("", status_code=201)
def create_credential(
    req: CredentialCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _check_links(conn, ctx, req.project_id)
    now = now_iso()
    cur = conn.execute(
        """
        INSERT INTO credentials (
            user_id, project_id, platform, username, email, password, notes, is_hidden,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            ctx.user_id,
            req.project_id,
            req.platform,
            req.username,
            req.email or None,
            encrypt_secret(req.password),
            req.notes,
            int(req.is_hidden),
            now,
            now,
        ),
    )
    conn.commit()
    if IS_DEV:
        print(f"[CREDENTIALS] Created credential_id={cur.lastrowid}, user_id={ctx.user_id}")
    item = dict(conn.execute("SELECT * FROM credentials WHERE id = ?", (cur.lastrowid,)).fetchone())
    return _credential_out(item)


@credentials_router.get("/{credential_id}")
def get_credential(
    credential_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    item = _load_row(conn, ctx, "credentials", credential_id)
    return _credential_out(item, password=decrypt_secret(item["password"]))


@credentials_router.put("/{credential_id}")
def update_credential(
    req: CredentialUpdateRequest,
    credential_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "credentials", credential_id)
    changes = req.model_dump(exclude_unset=True)
    if "project_id" in changes:
        _check_links(conn, ctx, changes["project_id"])
    if changes.get("password"):
        changes["password"] = encrypt_secret(changes["password"])
    if "is_hidden" in changes:
        changes["is_hidden"] = int(bool(changes["is_hidden"]))
    return _credential_out(_apply_update(conn, "credentials", credential_id, changes))


@credentials_router.delete("/{credential_id}")
def delete_credential(
    credential_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "credentials", credential_id, for_delete=True)
    _delete(conn, "credentials", credential_id)
    return {"message": "Credential deleted"}


# ---------------------------------------------------------
# Commands
# ---------------------------------------------------------
def _command_out(item: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(item)
    out["tags"] = json.loads(out.pop("tags_json", None) or "[]")
    return out


@commands_router.get("")
def list_commands(
    project_id: Optional[int] = Query(None),
    category: Optional[CommandCategory] = Query(None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    rows = _list_rows(conn, ctx, "commands", project_id)
    if category is not None:
        rows = [r for r in rows if r["category"] == category.value]
    return {"commands": [_command_out(r) for r in rows]}


@commands_router.post("", status_code=201)
def create_command(
    req: CommandCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _check_links(conn, ctx, req.project_id)
    now = now_iso()
    cur = conn.execute(
        """
        INSERT INTO commands (
            user_id, project_id, title, command, description, category, tags_json,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            ctx.user_id,
            req.project_id,
            req.title,
            req.command,
            req.description,
            req.category.value,
            json.dumps(req.tags),
            now,
            now,
        ),
    )
    conn.commit()
    item = dict(conn.execute("SELECT * FROM commands WHERE id = ?", (cur.lastrowid,)).fetchone())
    return _command_out(item)


@commands_router.get("/{command_id}")
def get_command(
    command_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return _command_out(_load_row(conn, ctx, "commands", command_id))


@commands_router.put("/{command_id}")
def update_command(
    req: CommandUpdateRequest,
    command_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "commands", command_id)
    changes = req.model_dump(exclude_unset=True, mode="json")
    if "project_id" in changes:
        _check_links(conn, ctx, changes["project_id"])
    if "tags" in changes:
        changes["tags_json"] = json.dumps(changes.pop("tags") or [])
    return _command_out(_apply_update(conn, "commands", command_id, changes))


@commands_router.delete("/{command_id}")
def delete_command(
    command_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "commands", command_id, for_delete=True)
    _delete(conn, "commands", command_id)
    return {"message": "Command deleted"}


# ---------------------------------------------------------
# Notes
# ---------------------------------------------------------
def _note_out(item: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(item)
    out["attachments"] = json.loads(out.pop("attachments_json", None) or "[]")
    out["is_global"] = bool(out.get("is_global"))
    return out


@notes_router.get("")
def list_notes(
    project_id: Optional[int] = Query(None),
    community_id: Optional[int] = Query(None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    if community_id is not None:
        require_community_access(conn, community_id, ctx, AccessLevel.MEMBER)
        rows = [
            dict(r) for r in conn.execute(
                "SELECT * FROM notes WHERE community_id = ? ORDER BY created_at DESC, id DESC",
                (community_id,),
            ).fetchall()
        ]
    else:
        rows = _list_rows(conn, ctx, "notes", project_id, with_communities=True)
    return {"notes": [_note_out(r) for r in rows]}


@notes_router.post("", status_code=201)
def create_note(
    req: NoteCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _check_links(conn, ctx, req.project_id, req.community_id)
    now = now_iso()
    cur = conn.execute(
        """
        INSERT INTO notes (
            user_id, project_id, community_id, title, content, attachments_json, is_global,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            ctx.user_id,
            req.project_id,
            req.community_id,
            req.title,
            req.content,
            json.dumps(req.attachments),
            int(req.is_global),
            now,
            now,
        ),
    )
    conn.commit()
    item = dict(conn.execute("SELECT * FROM notes WHERE id = ?", (cur.lastrowid,)).fetchone())
    return _note_out(item)


@notes_router.get("/{note_id}")
def get_note(
    note_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return _note_out(_load_row(conn, ctx, "notes", note_id))


@notes_router.put("/{note_id}")
def update_note(
    req: NoteUpdateRequest,
    note_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "notes", note_id)
    changes = req.model_dump(exclude_unset=True)
    _check_links(conn, ctx, changes.get("project_id"), changes.get("community_id"))
    if "attachments" in changes:
        changes["attachments_json"] = json.dumps(changes.pop("attachments") or [])
    if "is_global" in changes:
        changes["is_global"] = int(bool(changes["is_global"]))
    return _note_out(_apply_update(conn, "notes", note_id, changes))


@notes_router.delete("/{note_id}")
def delete_note(
    note_id: int = Path(...),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    _load_row(conn, ctx, "notes", note_id, for_delete=True)
    _delete(conn, "notes", note_id)
    return {"message": "Note deleted"}
