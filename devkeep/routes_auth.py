"""
devkeep/routes_auth.py

Signup, login and the caller's own profile.

Passwords and hidden-space PINs are bcrypt hashes; neither ever leaves the API.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict

from fastapi import APIRouter, Depends

from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.config import IS_DEV
from devkeep.db import get_conn, now_iso
from devkeep.entitlements import get_plan
from devkeep.errors import NotFound, PermissionDenied, Unauthenticated, ValidationFailed
from devkeep.notifications import notify_birthday
from devkeep.schemas import HiddenPasswordRequest, LoginRequest, ProfileUpdateRequest, SignupRequest
from devkeep.security import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/api", tags=["auth"])

_PUBLIC_USER_FIELDS = (
    "id", "name", "email", "image", "birth_date", "plan",
    "subscription_status", "subscription_end_date", "last_seen", "created_at",
)


def public_user(row) -> Dict[str, Any]:
    user = {k: row[k] for k in _PUBLIC_USER_FIELDS}
    user["has_hidden_password"] = bool(row["hidden_space_hash"])
    return user


def _load_user(conn: sqlite3.Connection, user_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise NotFound("User not found")
    return row


@router.post("/auth/signup", status_code=201)
def signup(req: SignupRequest, conn: sqlite3.Connection = Depends(get_conn)):
    now = now_iso()
    try:
        cur = conn.execute(
            """
            INSERT INTO users (name, email, password_hash, plan, created_at, updated_at)
            VALUES (?, ?, ?, 'basic', ?, ?)
            """,
            (req.name, req.email, hash_password(req.password), now, now),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        conn.rollback()
        print(f"[AUTH] Signup rejected, email exists: {req.email!r}")
        raise ValidationFailed("User already exists")

    user_id = cur.lastrowid
    print(f"[AUTH] User created: user_id={user_id}")
    return {"message": "User created successfully", "user": public_user(_load_user(conn, user_id))}


@router.post("/auth/login")
def login(req: LoginRequest, conn: sqlite3.Connection = Depends(get_conn)):
    row = conn.execute("SELECT * FROM users WHERE email = ?", (req.email,)).fetchone()
    if row is None or not verify_password(req.password, row["password_hash"]):
        print("[AUTH] Login failed: invalid credentials")
        raise Unauthenticated("Invalid credentials")

    token = create_access_token({"sub": str(row["id"]), "email": row["email"]})
    conn.execute("UPDATE users SET last_seen = ? WHERE id = ?", (now_iso(), row["id"]))
    conn.commit()
    if IS_DEV:
        print(f"[AUTH] Login: user_id={row['id']}")
    return {"access_token": token, "token_type": "bearer", "user": public_user(row)}


@router.get("/auth/me")
def me(ctx: AuthContext = Depends(require_auth_context), conn: sqlite3.Connection = Depends(get_conn)):
    user = public_user(_load_user(conn, ctx.user_id))
    user["effective_plan"] = ctx.effective_plan
    user["plan_details"] = get_plan(ctx.effective_plan)
    return user


@router.post("/auth/hidden-password")
def hidden_password(
    req: HiddenPasswordRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """Set or verify the PIN guarding hidden credentials."""
    if req.action == "set":
        conn.execute(
            "UPDATE users SET hidden_space_hash = ?, updated_at = ? WHERE id = ?",
            (hash_password(req.password), now_iso(), ctx.user_id),
        )
        conn.commit()
        print(f"[AUTH] Hidden-space PIN set: user_id={ctx.user_id}")
        return {"message": "Hidden space password set"}

    row = _load_user(conn, ctx.user_id)
    if not row["hidden_space_hash"]:
        raise ValidationFailed("Hidden space password not set")
    if not verify_password(req.password, row["hidden_space_hash"]):
        raise PermissionDenied("Incorrect password")
    return {"verified": True}


@router.put("/user/profile")
def update_profile(
    req: ProfileUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    changes = req.model_dump(exclude_unset=True)
    if "birth_date" in changes and changes["birth_date"] is not None:
        changes["birth_date"] = changes["birth_date"].isoformat()
    if changes:
        assignments = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), now_iso(), ctx.user_id),
        )
        conn.commit()
    return public_user(_load_user(conn, ctx.user_id))


@router.post("/user/pulse")
def pulse(ctx: AuthContext = Depends(require_auth_context), conn: sqlite3.Connection = Depends(get_conn)):
    """Heartbeat: refresh last_seen and announce a birthday once per year."""
    now = now_iso()
    conn.execute("UPDATE users SET last_seen = ? WHERE id = ?", (now, ctx.user_id))
    conn.commit()
    notified = notify_birthday(conn, ctx)
    return {"last_seen": now, "birthday_notifications": notified}
