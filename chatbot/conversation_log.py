"""
Conversation log storage for identified chat users.

Each chat log belongs to one owner and holds an append-only, ordered list
of messages. Owner records keep references to their logs. Every function
here is one short transaction; nothing spans a log write and its owner
reference update.
"""
import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from chatbot import config

DB_PATH = os.environ.get("CHAT_LOG_DB_PATH", config.CHAT_LOG_DB_PATH)


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_chat_log_db():
    """Initialize the chat log database"""
    with get_conn() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS user_chat_logs (
            user_id TEXT NOT NULL,
            chat_log_id TEXT NOT NULL,
            PRIMARY KEY (user_id, chat_log_id)
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS chat_logs (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS chat_messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            chat_log_id TEXT NOT NULL,
            message_id TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
            content TEXT NOT NULL
        )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_chat_logs_owner ON chat_logs(owner_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_chat_messages_log ON chat_messages(chat_log_id, seq)")
        conn.commit()


def _insert_messages(conn: sqlite3.Connection, chat_log_id: str, messages: Iterable[Dict[str, Any]]):
    conn.executemany(
        "INSERT INTO chat_messages (chat_log_id, message_id, role, content) VALUES (?, ?, ?, ?)",
        [
            (chat_log_id, m.get("id") or uuid.uuid4().hex, m["role"], m["content"])
            for m in messages
        ],
    )


# --- Owner records ---

def create_user(user_id: str):
    """Create an owner record if it does not exist yet."""
    with get_conn() as conn:
        conn.execute("INSERT OR IGNORE INTO users (id) VALUES (?)", (user_id,))
        conn.commit()


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    """Return the owner record with its chat log references, or None."""
    with get_conn() as conn:
        row = conn.execute("SELECT id, created_at FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        refs = conn.execute(
            "SELECT chat_log_id FROM user_chat_logs WHERE user_id = ? ORDER BY rowid",
            (user_id,),
        ).fetchall()
        return {"id": row["id"], "createdAt": row["created_at"], "chatLogs": [r[0] for r in refs]}


def add_chat_log_reference(user_id: str, chat_log_id: str) -> bool:
    """Record a chat log on its owner. Returns False if the owner is missing."""
    with get_conn() as conn:
        if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
            return False
        conn.execute(
            "INSERT OR IGNORE INTO user_chat_logs (user_id, chat_log_id) VALUES (?, ?)",
            (user_id, chat_log_id),
        )
        conn.commit()
        return True


# --- Chat logs ---

def create_chat_log(owner_id: str, messages: List[Dict[str, Any]]) -> str:
    """Create a chat log holding ``messages`` in order. Returns its id."""
    chat_log_id = uuid.uuid4().hex
    with get_conn() as conn:
        conn.execute(
            "INSERT INTO chat_logs (id, owner_id, created_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
            (chat_log_id, owner_id),
        )
        _insert_messages(conn, chat_log_id, messages)
        conn.commit()
    return chat_log_id


def append_messages(chat_log_id: str, messages: List[Dict[str, Any]]) -> bool:
    """Append messages to the end of a log. Returns False if the log is missing."""
    with get_conn() as conn:
        if conn.execute("SELECT 1 FROM chat_logs WHERE id = ?", (chat_log_id,)).fetchone() is None:
            return False
        _insert_messages(conn, chat_log_id, messages)
        conn.commit()
        return True


def _load_messages(conn: sqlite3.Connection, chat_log_id: str) -> List[Dict[str, str]]:
    rows = conn.execute(
        "SELECT message_id, role, content FROM chat_messages WHERE chat_log_id = ? ORDER BY seq",
        (chat_log_id,),
    ).fetchall()
    return [{"id": r["message_id"], "role": r["role"], "content": r["content"]} for r in rows]


def find_chat_log_by_id(chat_log_id: str) -> Optional[Dict[str, Any]]:
    """Return the chat log with its messages, or None."""
    with get_conn() as conn:
        row = conn.execute(
            "SELECT id, owner_id, created_at FROM chat_logs WHERE id = ?", (chat_log_id,)
        ).fetchone()
        if row is None:
            return None
        return {
            "id": row["id"],
            "ownerId": row["owner_id"],
            "createdAt": row["created_at"],
            "messages": _load_messages(conn, row["id"]),
        }


def find_chat_logs_by_owner(owner_id: str) -> List[Dict[str, Any]]:
    """Return all chat logs of an owner, oldest first."""
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT id, owner_id, created_at FROM chat_logs WHERE owner_id = ? ORDER BY rowid",
            (owner_id,),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "ownerId": row["owner_id"],
                "createdAt": row["created_at"],
                "messages": _load_messages(conn, row["id"]),
            }
            for row in rows
        ]


def delete_chat_log_by_id(chat_log_id: str) -> bool:
    """Delete a log, its messages and its owner reference. Returns False if missing."""
    with get_conn() as conn:
        cur = conn.execute("DELETE FROM chat_logs WHERE id = ?", (chat_log_id,))
        if cur.rowcount == 0:
            return False
        conn.execute("DELETE FROM chat_messages WHERE chat_log_id = ?", (chat_log_id,))
        conn.execute("DELETE FROM user_chat_logs WHERE chat_log_id = ?", (chat_log_id,))
        conn.commit()
        return True
