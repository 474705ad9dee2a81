# devkeep/db.py
# SQLite persistence: connections, schema bootstrap and idempotent migrations

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path as FsPath
from typing import Generator

from devkeep import config


def db_path() -> str:
    """Resolve DATABASE_PATH; relative paths live next to the package."""
    return str(FsPath(__file__).resolve().parent / config.DATABASE_PATH)


def get_db() -> sqlite3.Connection:
    """
    Create and return a SQLite connection with Row factory.
    Foreign keys are enabled per connection so membership rows cascade.
    """
    conn = sqlite3.connect(db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def db_session() -> Generator[sqlite3.Connection, None, None]:
    """Context manager for one request's connection."""
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


def get_conn() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency yielding a per-request connection."""
    with db_session() as conn:
        yield conn


def now_iso() -> str:
    return datetime.utcnow().isoformat()


# ---------------------------------------------------------
# Migration helpers
# ---------------------------------------------------------

def get_table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    """Return set of column names for a table using PRAGMA table_info."""
    cur = conn.execute(f"PRAGMA table_info({table_name})")
    return {row["name"] for row in cur.fetchall()}


def ensure_column(conn: sqlite3.Connection, table_name: str, column_name: str, ddl_fragment: str) -> bool:
    """Add column to table if missing. Returns True if migration applied.

    Args:
        conn: SQLite connection
        table_name: Name of table to alter
        column_name: Name of column to add
        ddl_fragment: Column definition (e.g., 'INTEGER', 'TEXT DEFAULT NULL')
    """
    columns = get_table_columns(conn, table_name)
    if column_name in columns:
        return False

    try:
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl_fragment}")
        conn.commit()
        print(f"[MIGRATION] Added column {table_name}.{column_name} ({ddl_fragment})")
        return True
    except sqlite3.OperationalError as e:
        if "duplicate column" not in str(e).lower():
            raise
        return False


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT,
        hidden_space_hash TEXT,
        image TEXT,
        provider TEXT DEFAULT 'credentials',
        birth_date TEXT,
        last_birthday_notification_year INTEGER,
        plan TEXT DEFAULT 'basic',
        subscription_status TEXT,
        subscription_id TEXT,
        subscription_end_date TEXT,
        last_seen TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS communities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT DEFAULT '',
        icon TEXT,
        is_meeting_active INTEGER DEFAULT 0,
        active_meeting_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # accepted: 1 accepted, 0 pending, NULL legacy (treated as accepted)
    """
    CREATE TABLE IF NOT EXISTS community_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        community_id INTEGER NOT NULL REFERENCES communities (id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        role TEXT NOT NULL DEFAULT 'member',
        joined_at TEXT NOT NULL,
        UNIQUE (community_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        community_id INTEGER REFERENCES communities (id) ON DELETE SET NULL,
        name TEXT NOT NULL,
        description TEXT,
        tech_stack_json TEXT DEFAULT '[]',
        repository_url TEXT,
        live_url TEXT,
        environment TEXT DEFAULT 'Local',
        status TEXT DEFAULT 'Active',
        is_meeting_active INTEGER DEFAULT 0,
        active_meeting_id TEXT,
        logo TEXT,
        banner TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_collaborators (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects (id) ON DELETE CASCADE,
        email TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'Collaborator',
        added_at TEXT NOT NULL,
        UNIQUE (project_id, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credentials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        project_id INTEGER REFERENCES projects (id) ON DELETE CASCADE,
        platform TEXT NOT NULL,
        username TEXT,
        email TEXT,
        password TEXT NOT NULL,
        notes TEXT,
        is_hidden INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commands (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        project_id INTEGER REFERENCES projects (id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        command TEXT NOT NULL,
        description TEXT,
        category TEXT DEFAULT 'Other',
        tags_json TEXT DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        project_id INTEGER REFERENCES projects (id) ON DELETE CASCADE,
        community_id INTEGER REFERENCES communities (id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        attachments_json TEXT DEFAULT '[]',
        is_global INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects (id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT DEFAULT 'To Do',
        priority TEXT DEFAULT 'Medium',
        deadline TEXT,
        assignee_id INTEGER REFERENCES users (id) ON DELETE SET NULL,
        creator_id INTEGER NOT NULL REFERENCES users (id),
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER REFERENCES projects (id) ON DELETE CASCADE,
        community_id INTEGER REFERENCES communities (id) ON DELETE CASCADE,
        sender_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reads (
        message_id INTEGER NOT NULL REFERENCES messages (id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        read_at TEXT NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        recipient_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        sender_id INTEGER REFERENCES users (id) ON DELETE SET NULL,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        link TEXT,
        project_id INTEGER REFERENCES projects (id) ON DELETE CASCADE,
        community_id INTEGER REFERENCES communities (id) ON DELETE CASCADE,
        read INTEGER DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    # One row per clock-in; status active until the matching clock-out
    """
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        community_id INTEGER NOT NULL REFERENCES communities (id) ON DELETE CASCADE,
        clock_in TEXT NOT NULL,
        clock_out TEXT,
        total_hours REAL NOT NULL DEFAULT 0,
        date TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_projects_user_status ON projects(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_projects_community ON projects(community_id)",
    "CREATE INDEX IF NOT EXISTS idx_collaborators_email ON project_collaborators(email)",
    "CREATE INDEX IF NOT EXISTS idx_community_members_user ON community_members(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_communities_owner ON communities(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_credentials_user_project ON credentials(user_id, project_id)",
    "CREATE INDEX IF NOT EXISTS idx_commands_user_project ON commands(user_id, project_id)",
    "CREATE INDEX IF NOT EXISTS idx_notes_user_project ON notes(user_id, project_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_status ON tasks(project_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assignee_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_project ON messages(project_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_community ON messages(community_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id, read)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_user_date ON attendance(user_id, community_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_community_date ON attendance(community_id, date)",
    # At most one open session per member and community
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_attendance_one_active "
    "ON attendance(user_id, community_id) WHERE status = 'active'",
]


def init_db() -> None:
    """Create tables, indexes and run column migrations. Safe to call repeatedly."""
    with db_session() as conn:
        for ddl in SCHEMA:
            conn.execute(ddl)

        # Membership tables created before the invitation flow have no
        # accepted column; adding it nullable leaves those rows as legacy (NULL)
        ensure_column(conn, "project_collaborators", "accepted", "INTEGER")
        ensure_column(conn, "community_members", "accepted", "INTEGER")

        for ddl in INDEXES:
            conn.execute(ddl)

        conn.commit()

    if config.IS_DEV:
        print(f"[DB] Schema ready at {db_path()}")
