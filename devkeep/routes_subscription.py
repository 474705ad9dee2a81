"""
devkeep/routes_subscription.py

Plan catalogue, the caller's usage against limits, and the signed webhook
the payment provider calls on subscription changes.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from devkeep.auth_context import AuthContext, require_auth_context
from devkeep.db import get_conn
from devkeep.entitlements import PLANS, apply_webhook_event, usage_summary, verify_webhook_signature
from devkeep.errors import ValidationFailed

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("")
def get_my_subscription(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
):
    return usage_summary(conn, ctx.user_id)


@router.get("/plans")
def list_plans():
    return {"plans": list(PLANS.values())}


@router.post("/webhook")
async def subscription_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """
    HMAC-SHA256 over the raw body, hex encoded, in X-Webhook-Signature.
    A missing or wrong signature is rejected before anything is parsed.
    """
    body = await request.body()
    if not x_webhook_signature:
        raise ValidationFailed("Missing signature")
    if not verify_webhook_signature(body, x_webhook_signature):
        print("[SUBSCRIPTION] Webhook rejected: invalid signature")
        raise ValidationFailed("Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationFailed("Malformed webhook body")
    if not isinstance(event, dict):
        raise ValidationFailed("Malformed webhook body")

    user_id = apply_webhook_event(conn, event)
    return {"status": "ok", "user_id": user_id}
