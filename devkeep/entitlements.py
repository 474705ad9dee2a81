"""
devkeep/entitlements.py

Subscription-aware plan limits for DevKeep.

This module centralizes the logic for:
- Plan catalogue (limits, trial length, display features)
- Fetching a user's subscription state from the users table
- Computing the effective plan from subscription status
- Enforcing creation limits for projects and communities
- Applying signed subscription webhook events

Key principles:
- past_due/canceled subscriptions fall back to basic limits immediately
- A limit of -1 means unlimited
- No payment SDK here; events arrive already verified by signature
"""

from __future__ import annotations

import hashlib
import hmac
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from devkeep.config import IS_DEV, WEBHOOK_SECRET
from devkeep.errors import NotFound, PlanLimitReached, ValidationFailed
from devkeep.models import PlanName


# ============================================================================
# Plan Catalogue
# ============================================================================

PLANS: Dict[str, Dict[str, Any]] = {
    PlanName.basic.value: {
        "name": "Basic",
        "slug": "basic",
        "price": 0,
        "limits": {"projects": 3, "communities": 1},
        "trial_days": 0,
        "features": ["Up to 3 Projects", "1 Community", "Standard Support"],
    },
    PlanName.pro.value: {
        "name": "Pro",
        "slug": "pro",
        "price": 9,
        "limits": {"projects": -1, "communities": 5},
        "trial_days": 7,
        "features": ["Unlimited Projects", "5 Communities", "Priority Support", "7-Day Free Trial"],
    },
    PlanName.premium.value: {
        "name": "Premium",
        "slug": "premium",
        "price": 29,
        "limits": {"projects": -1, "communities": -1},
        "trial_days": 14,
        "features": ["Unlimited Projects", "Unlimited Communities", "14-Day Free Trial"],
    },
}

UNLIMITED = -1

# feature -> (table, owner column)
_FEATURE_TABLES = {
    "projects": ("projects", "user_id"),
    "communities": ("communities", "owner_id"),
}


def get_plan(plan_name: Optional[str]) -> Dict[str, Any]:
    """Unknown or missing plan names resolve to basic."""
    return PLANS.get(plan_name or "", PLANS[PlanName.basic.value])


# ============================================================================
# Subscription Data Model
# ============================================================================

@dataclass
class Subscription:
    """Subscription state as stored on the user row."""
    user_id: int
    plan_name: str
    status: Optional[str] = None  # "active", "trialing", "past_due", "canceled"
    subscription_id: Optional[str] = None
    end_date: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "trialing")

    @property
    def plan(self) -> Dict[str, Any]:
        return get_plan(self.plan_name)


def get_subscription(conn: sqlite3.Connection, user_id: int) -> Subscription:
    """
    Fetch the subscription for a user.

    Raises:
        NotFound: user does not exist
    """
    row = conn.execute(
        """
        SELECT id, plan, subscription_status, subscription_id, subscription_end_date
        FROM users WHERE id = ?
        """,
        (user_id,),
    ).fetchone()
    if row is None:
        raise NotFound("User not found")

    return Subscription(
        user_id=row["id"],
        plan_name=row["plan"] if row["plan"] in PLANS else PlanName.basic.value,
        status=row["subscription_status"],
        subscription_id=row["subscription_id"],
        end_date=row["subscription_end_date"],
    )


def get_effective_plan(subscription: Subscription) -> str:
    """
    Compute effective plan based on subscription status.

    Rules:
    - active or trialing: the subscribed plan
    - basic with no status: basic
    - anything else (past_due, canceled, paid plan without status): basic
    """
    if subscription.is_active:
        return subscription.plan_name
    return PlanName.basic.value


# ============================================================================
# Limits
# ============================================================================

def count_owned(conn: sqlite3.Connection, user_id: int, feature: str) -> int:
    table, owner_col = _FEATURE_TABLES[feature]
    row = conn.execute(
        f"SELECT COUNT(*) AS n FROM {table} WHERE {owner_col} = ?",
        (user_id,),
    ).fetchone()
    return int(row["n"])


def is_within_limit(limit: int, used: int) -> bool:
    return limit == UNLIMITED or used < limit


def check_limit(conn: sqlite3.Connection, user_id: int, feature: str) -> None:
    """
    Raise PlanLimitReached if creating one more `feature` item would exceed the plan.

    Args:
        feature: "projects" or "communities"
    """
    if feature not in _FEATURE_TABLES:
        raise ValueError(f"Unknown limited feature: {feature}")

    subscription = get_subscription(conn, user_id)
    effective_plan = get_effective_plan(subscription)
    limit = get_plan(effective_plan)["limits"][feature]
    if limit == UNLIMITED:
        return

    used = count_owned(conn, user_id, feature)
    if not is_within_limit(limit, used):
        print(f"[SUBSCRIPTION] Limit reached: user_id={user_id}, feature={feature}, "
              f"plan={effective_plan}, used={used}, limit={limit}")
        raise PlanLimitReached(
            f"Your {get_plan(effective_plan)['name']} plan allows {limit} {feature}. "
            "Upgrade to create more."
        )


def usage_summary(conn: sqlite3.Connection, user_id: int) -> Dict[str, Any]:
    subscription = get_subscription(conn, user_id)
    effective_plan = get_effective_plan(subscription)
    limits = get_plan(effective_plan)["limits"]
    return {
        "plan": subscription.plan,
        "status": subscription.status,
        "end_date": subscription.end_date,
        "effective_plan": effective_plan,
        "limits": limits,
        "usage": {feature: count_owned(conn, user_id, feature) for feature in _FEATURE_TABLES},
    }


# ============================================================================
# Subscription Management Helpers
# ============================================================================

def update_subscription_plan(
    conn: sqlite3.Connection,
    user_id: int,
    plan_name: str,
    status: str = "active",
) -> None:
    """Set plan and status directly (admin/testing)."""
    if plan_name not in PLANS:
        raise ValidationFailed(f"Unknown plan: {plan_name}")
    cur = conn.execute(
        "UPDATE users SET plan = ?, subscription_status = ?, updated_at = ? WHERE id = ?",
        (plan_name, status, datetime.utcnow().isoformat(), user_id),
    )
    if cur.rowcount == 0:
        raise NotFound("User not found")
    conn.commit()


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded."""
    if not signature:
        return False
    expected = hmac.new(WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _epoch_to_iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    try:
        return datetime.utcfromtimestamp(int(value)).isoformat()
    except (TypeError, ValueError):
        return None


def _dig(obj: Any, *keys: str) -> Dict[str, Any]:
    """Walk nested dicts; anything that is not a dict along the way reads as empty."""
    for key in keys:
        obj = obj.get(key) if isinstance(obj, dict) else None
    return obj if isinstance(obj, dict) else {}


def apply_webhook_event(conn: sqlite3.Connection, event: Dict[str, Any]) -> Optional[int]:
    """
    Apply a verified subscription event.

    Expected shape:
        {"event": "subscription.charged",
         "payload": {"subscription": {"entity": {"id", "current_end", "notes": {"userId", "planSlug"}}}}}

    Returns the updated user id, or None when the event is ignored.
    """
    name = event.get("event")
    entity = _dig(event, "payload", "subscription", "entity")
    notes = _dig(entity, "notes")
    user_id = notes.get("userId")
    if not user_id:
        if IS_DEV:
            print(f"[SUBSCRIPTION] Ignoring event={name} without userId")
        return None

    now = datetime.utcnow().isoformat()

    if name == "subscription.authenticated":
        plan_slug = notes.get("planSlug")
        if plan_slug not in PLANS:
            raise ValidationFailed(f"Unknown plan: {plan_slug}")
        cur = conn.execute(
            """
            UPDATE users
            SET plan = ?, subscription_status = 'active', subscription_id = ?,
                subscription_end_date = ?, updated_at = ?
            WHERE id = ?
            """,
            (plan_slug, entity.get("id"), _epoch_to_iso(entity.get("current_end")), now, user_id),
        )
    elif name == "subscription.charged":
        cur = conn.execute(
            """
            UPDATE users
            SET subscription_status = 'active', subscription_end_date = ?, updated_at = ?
            WHERE id = ?
            """,
            (_epoch_to_iso(entity.get("current_end")), now, user_id),
        )
    elif name == "subscription.cancelled":
        cur = conn.execute(
            """
            UPDATE users
            SET subscription_status = 'canceled', plan = 'basic',
                subscription_end_date = ?, updated_at = ?
            WHERE id = ?
            """,
            (now, now, user_id),
        )
    else:
        if IS_DEV:
            print(f"[SUBSCRIPTION] Ignoring unhandled event={name}")
        return None

    conn.commit()
    if cur.rowcount == 0:
        print(f"[SUBSCRIPTION] Event {name} for unknown user_id={user_id}")
        return None

    print(f"[SUBSCRIPTION] Applied {name} to user_id={user_id}")
    return int(user_id)
