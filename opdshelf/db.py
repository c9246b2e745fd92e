from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional


def connect(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: Path) -> None:
    conn = connect(path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                created_at TEXT NOT NULL,
                last_seen TEXT NOT NULL
            )
            """
        )
    conn.close()


def create_session(path: Path, session_id: str, username: str, created_at: str) -> None:
    conn = connect(path)
    with conn:
        conn.execute(
            "INSERT INTO sessions(session_id, username, created_at, last_seen) VALUES (?, ?, ?, ?)",
            (session_id, username, created_at, created_at),
        )
    conn.close()


def touch_session(path: Path, session_id: str, now: str) -> None:
    conn = connect(path)
    with conn:
        conn.execute("UPDATE sessions SET last_seen = ? WHERE session_id = ?", (now, session_id))
    conn.close()


def delete_session(path: Path, session_id: str) -> None:
    conn = connect(path)
    with conn:
        conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
    conn.close()


def get_session(path: Path, session_id: str) -> Optional[dict]:
    conn = connect(path)
    row = conn.execute("SELECT * FROM sessions WHERE session_id = ?", (session_id,)).fetchone()
    conn.close()
    return dict(row) if row else None


def delete_sessions_before(path: Path, cutoff: str) -> int:
    conn = connect(path)
    with conn:
        cursor = conn.execute("DELETE FROM sessions WHERE last_seen < ?", (cutoff,))
    conn.close()
    return cursor.rowcount
