from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from . import settings as _settings_mod

logger = logging.getLogger("beachhead.events")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str | None:
    """Return the journal file path, or None when the journal is disabled.

    A path that is an existing directory (e.g. a docker volume mount point)
    gets a ``beachhead.db`` file inside it.
    """
    raw = _settings_mod.settings.events_db
    if not raw:
        return None
    p = os.path.abspath(raw)
    if os.path.isdir(p):
        p = os.path.join(p, "beachhead.db")
    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


def connect() -> sqlite3.Connection | None:
    path = _resolve_db_path()
    if path is None:
        return None
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the events table if the journal is enabled."""
    conn = connect()
    if conn is None:
        return
    with conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              container TEXT,
              domain TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )
    conn.close()


def log_event(level: str, message: str, container: str | None = None, domain: str | None = None) -> None:
    level = level.upper()
    parts = [message]
    if container:
        parts.append(f"container={container}")
    if domain:
        parts.append(f"domain={domain}")
    logger.log(_LEVELS.get(level, logging.INFO), " ".join(parts))

    conn = connect()
    if conn is None:
        return
    try:
        with conn:
            conn.execute(
                "INSERT INTO events (ts, level, container, domain, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level, container, domain, message),
            )
    except sqlite3.Error as e:
        # The journal is best effort; the log line above already went out.
        logger.warning("Could not write event journal: %s", e)
    finally:
        conn.close()


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    conn = connect()
    if conn is None:
        return []
    try:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()
