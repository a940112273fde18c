"""Activity log repository — append-only record of pipeline events."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from ethquake.repos.db import get_connection, init_db

logger = logging.getLogger("ethquake.repos")


class ActivityRepo:
    """Data access layer for the ``activity_log`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        init_db(db_path)

    # ── Write ────────────────────────────────────────────────────────────

    def log(
        self,
        strategy: str,
        activity_type: str,
        payload: Optional[dict] = None,
        symbol: Optional[str] = None,
    ) -> None:
        """Append one activity record.

        A failed write is logged as a warning; activity logging never
        fails a pipeline run.
        """
        try:
            conn = get_connection(self._db_path)
            conn.execute(
                """
                INSERT INTO activity_log (strategy, symbol, type, payload_json, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    strategy,
                    symbol,
                    activity_type,
                    json.dumps(payload or {}, default=str),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Failed to log %s activity for %s: %s", activity_type, strategy, exc)

    # ── Read ─────────────────────────────────────────────────────────────

    def recent(self, strategy: str, limit: int = 20) -> list[dict]:
        """Return the newest *limit* records for *strategy*, newest first."""
        conn = get_connection(self._db_path)
        rows = conn.execute(
            """
            SELECT strategy, symbol, type, payload_json, timestamp
            FROM activity_log
            WHERE strategy = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (strategy, limit),
        ).fetchall()
        return [
            {
                "strategy": r["strategy"],
                "symbol": r["symbol"],
                "type": r["type"],
                "payload": json.loads(r["payload_json"]),
                "timestamp": r["timestamp"],
            }
            for r in rows
        ]
