"""
devkeep/messages.py

Project and community chat storage.

Bodies are Fernet-encrypted at rest. Rows written before encryption was
introduced are returned as stored. The sender's own message counts as read.
"""

from __future__ import annotations

import sqlite3
from typing import List, Optional, Tuple

from devkeep.config import MESSAGE_PAGE_SIZE
from devkeep.db import now_iso
from devkeep.security import decrypt_or_plain, encrypt_secret


def _scope(project_id: Optional[int], community_id: Optional[int]) -> Tuple[str, int]:
    if (project_id is None) == (community_id is None):
        raise ValueError("Exactly one of project_id or community_id is required")
    if project_id is not None:
        return "project_id", project_id
    return "community_id", community_id


def list_messages(
    conn: sqlite3.Connection,
    user_id: int,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    """Newest `limit` messages in chronological order, decrypted."""
    column, scope_id = _scope(project_id, community_id)
    rows = conn.execute(
        f"""
        SELECT * FROM (
            SELECT m.id, m.sender_id, m.content, m.created_at,
                   u.name AS sender_name, u.image AS sender_image,
                   EXISTS (SELECT 1 FROM message_reads r
                           WHERE r.message_id = m.id AND r.user_id = ?) AS is_read,
                   (SELECT COUNT(*) FROM message_reads r WHERE r.message_id = m.id) AS read_count
            FROM messages m
            JOIN users u ON u.id = m.sender_id
            WHERE m.{column} = ?
            ORDER BY m.created_at DESC, m.id DESC
            LIMIT ?
        ) ORDER BY created_at, id
        """,
        (user_id, scope_id, limit or MESSAGE_PAGE_SIZE),
    ).fetchall()
    return [
        {
            "id": r["id"],
            "sender": {"id": r["sender_id"], "name": r["sender_name"], "image": r["sender_image"]},
            "content": decrypt_or_plain(r["content"]),
            "created_at": r["created_at"],
            "is_read": bool(r["is_read"]),
            "read_count": r["read_count"],
        }
        for r in rows
    ]


def post_message(
    conn: sqlite3.Connection,
    sender_id: int,
    content: str,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
) -> dict:
    _scope(project_id, community_id)
    now = now_iso()
    cur = conn.execute(
        "INSERT INTO messages (project_id, community_id, sender_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
        (project_id, community_id, sender_id, encrypt_secret(content), now),
    )
    message_id = cur.lastrowid
    conn.execute(
        "INSERT INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
        (message_id, sender_id, now),
    )
    conn.commit()
    sender = conn.execute("SELECT name, image FROM users WHERE id = ?", (sender_id,)).fetchone()
    return {
        "id": message_id,
        "sender": {"id": sender_id, "name": sender["name"], "image": sender["image"]},
        "content": content,
        "created_at": now,
        "is_read": True,
        "read_count": 1,
    }


def mark_read(
    conn: sqlite3.Connection,
    user_id: int,
    project_id: Optional[int] = None,
    community_id: Optional[int] = None,
) -> int:
    """Record read receipts for every unread message in scope. Returns how many were marked."""
    column, scope_id = _scope(project_id, community_id)
    cur = conn.execute(
        f"""
        INSERT OR IGNORE INTO message_reads (message_id, user_id, read_at)
        SELECT m.id, ?, ? FROM messages m WHERE m.{column} = ?
        """,
        (user_id, now_iso(), scope_id),
    )
    conn.commit()
    return cur.rowcount
