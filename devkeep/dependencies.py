"""
devkeep/dependencies.py

Reusable FastAPI dependencies for plan enforcement.
"""

from __future__ import annotations

import sqlite3
from typing import Callable

from fastapi import Depends

from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.db import get_conn
from devkeep.entitlements import check_limit


def require_plan_capacity(feature: str) -> Callable:
    """
    FastAPI dependency factory that blocks creation once the caller's plan limit is hit.

    Usage in routes:
        @router.post("", dependencies=[Depends(require_plan_capacity("projects"))])
        def create_project(...):
            ...

    Args:
        feature: "projects" or "communities"

    Raises:
        PlanLimitReached (403): owned count already at the effective plan's limit
    """
    def _check_capacity(
        ctx: AuthContext = Depends(require_auth_context),
        conn: sqlite3.Connection = Depends(get_conn),
    ) -> AuthContext:
        check_limit(conn, ctx.user_id, feature)
        return ctx

    return _check_capacity
