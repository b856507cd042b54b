"""Call/SMS log collaborator interface and a SQLite-backed implementation."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from phone_sensing.common.constants import STREAM_CALLS, STREAM_SMS
from phone_sensing.common.errors import ProviderError

Row = Mapping[str, Any]

# columns as exposed by the Android CallLog.Calls and Telephony.Sms providers;
# message bodies are never selected, only their length
STREAM_QUERIES = {
    STREAM_CALLS: (
        "calls",
        "date, number, duration, type, cached_lookup_uri",
    ),
    STREAM_SMS: (
        "sms",
        "date, address, type, length(body) AS body_length, person",
    ),
}


class LogProvider(Protocol):
    def query(
        self,
        stream: str,
        since_event_time: int,
        ascending: bool = True,
        limit: int | None = None,
    ) -> Sequence[Row]: ...

    def count_unread(self, stream: str) -> int: ...


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Read-only SQLite connection with rows returned as sqlite3.Row."""
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class SqliteLogProvider:
    """Reads exported ``calls`` and ``sms`` tables.

    Either stream may live in its own database file; a missing path makes that
    stream unavailable.
    """

    def __init__(self, *, calls_db: Path | None = None, sms_db: Path | None = None) -> None:
        self.paths = {STREAM_CALLS: calls_db, STREAM_SMS: sms_db}
        self._connections: dict[str, sqlite3.Connection] = {}

    def _connection(self, stream: str) -> sqlite3.Connection:
        if stream not in STREAM_QUERIES:
            raise ProviderError(f"Unknown log stream: {stream}")
        conn = self._connections.get(stream)
        if conn is not None:
            return conn
        path = self.paths.get(stream)
        if path is None or not path.exists():
            raise ProviderError(f"No {stream} log database available at {path}")
        try:
            conn = get_connection(path)
        except sqlite3.Error as exc:
            raise ProviderError(f"Cannot open {stream} log {path}: {exc}") from exc
        self._connections[stream] = conn
        return conn

    def query(
        self,
        stream: str,
        since_event_time: int,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        conn = self._connection(stream)
        table, columns = STREAM_QUERIES[stream]
        order = "ASC" if ascending else "DESC"
        sql = f"SELECT {columns} FROM {table} WHERE date > ? ORDER BY date {order}"
        params: tuple[Any, ...] = (since_event_time,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (since_event_time, limit)
        try:
            cursor = conn.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as exc:
            raise ProviderError(f"Query on {stream} log failed: {exc}") from exc

    def count_unread(self, stream: str) -> int:
        if stream != STREAM_SMS:
            raise ProviderError(f"Unread counts are only kept for {STREAM_SMS}")
        conn = self._connection(stream)
        try:
            return int(conn.execute("SELECT COUNT(*) FROM sms WHERE read = 0").fetchone()[0])
        except sqlite3.Error as exc:
            raise ProviderError(f"Unread count on {stream} log failed: {exc}") from exc

    def close(self) -> None:
        for conn in self._connections.values():
            conn.close()
        self._connections.clear()
