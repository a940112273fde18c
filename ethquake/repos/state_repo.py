"""Strategy state repository — SQLite persistence of position bookkeeping."""

import json
from datetime import datetime, timezone

from ethquake.repos.db import get_connection, init_db
from ethquake.strategy.models import PositionState


class StateRepo:
    """Data access layer for per-strategy, per-symbol position state.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        init_db(db_path)

    def load(self, strategy: str, symbol: str) -> PositionState:
        """Return the stored state, or a flat state when none exists."""
        conn = get_connection(self._db_path)
        row = conn.execute(
            "SELECT state_json FROM strategy_state WHERE strategy = ? AND symbol = ?",
            (strategy, symbol),
        ).fetchone()
        if row is None:
            return PositionState()
        return PositionState.from_dict(json.loads(row["state_json"]))

    def save(self, strategy: str, symbol: str, state: PositionState) -> None:
        """Upsert the state for *strategy* / *symbol*."""
        conn = get_connection(self._db_path)
        conn.execute(
            """
            INSERT INTO strategy_state (strategy, symbol, state_json, last_updated)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (strategy, symbol) DO UPDATE SET
                state_json = excluded.state_json,
                last_updated = excluded.last_updated
            """,
            (
                strategy,
                symbol,
                json.dumps(state.to_dict()),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        conn.commit()
