"""
devkeep/auth_context.py

Authentication context for FastAPI dependency injection.

Contains:
- AuthContext: immutable caller identity with subscription state
- require_auth_context: FastAPI dependency resolving the bearer token
- build_auth_context: the same resolution against an open connection

Every access and invitation function takes an AuthContext explicitly.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from devkeep.config import IS_DEV
from devkeep.db import get_conn
from devkeep.entitlements import get_effective_plan, get_subscription
from devkeep.errors import Unauthenticated
from devkeep.security import verify_token

# auto_error=False so a missing header is reported as our own 401 envelope
security = HTTPBearer(auto_error=False)


class AuthContext(BaseModel):
    """
    Caller identity derived from a verified JWT and the users table.
    This is the ONLY source of truth for user_id and email in protected endpoints.
    Never trust user ids or emails from request bodies for authorization.
    """
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    name: str = ""
    plan: str = "basic"
    subscription_status: Optional[str] = None
    effective_plan: str = "basic"


def build_auth_context(conn: sqlite3.Connection, token: str) -> AuthContext:
    payload = verify_token(token)
    user_id = payload.get("sub")
    if not user_id:
        print("[AUTH] Missing user_id in token payload")
        raise Unauthenticated("Invalid token payload")

    row = conn.execute(
        "SELECT id, email, name FROM users WHERE id = ?",
        (user_id,),
    ).fetchone()
    if row is None:
        print(f"[AUTH] User not found: user_id={user_id}")
        raise Unauthenticated("User not found")

    subscription = get_subscription(conn, row["id"])
    ctx = AuthContext(
        user_id=row["id"],
        email=row["email"],
        name=row["name"] or "",
        plan=subscription.plan_name,
        subscription_status=subscription.status,
        effective_plan=get_effective_plan(subscription),
    )

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, plan={ctx.plan}, "
              f"sub_status={ctx.subscription_status}, effective_plan={ctx.effective_plan}")
    return ctx


def require_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    conn: sqlite3.Connection = Depends(get_conn),
) -> AuthContext:
    """
    Auth dependency for protected routes.

    Raises:
        Unauthenticated: missing/invalid/expired token or unknown user
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    return build_auth_context(conn, credentials.credentials)
