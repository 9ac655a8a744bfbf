from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import settings

logger = logging.getLogger("fwsync.events")

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount of a file that did not
    exist yet ends up as one), the journal file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "fwsync.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the journal table if it does not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service TEXT,
              change TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, service: str | None = None, change: str | None = None) -> None:
    """Emit a log line and append it to the journal.

    A journal write failure is logged and never interrupts reconciliation.
    """
    level = level.upper()
    ctx = " ".join(f"{k}={v}" for k, v in (("service", service), ("change", change)) if v)
    logger.log(_LEVELS.get(level, logging.INFO), "%s%s", f"[{ctx}] " if ctx else "", message)
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, service, change, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level, service, change, message),
            )
    except sqlite3.Error as e:
        logger.warning("Could not journal event: %s", e)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
