"""SQLite persistence for user configs and usage snapshots.

Three tables keyed by user: ``config``, ``last`` (rolling snapshot) and
``daily`` (same-day baseline). Snapshot rows hold every reading counter.
"""

import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from logger import logger
from .errors import AlreadyExistsError, StoreError
from .models import Snapshot, UsageReading, UserConfig

LAST_TABLE = "last"
DAILY_TABLE = "daily"

_CONFIG_COLUMNS = [f.name for f in fields(UserConfig)]
_READING_COLUMNS = [f.name for f in fields(UsageReading)]
_SNAPSHOT_COLUMNS = ["user", "bot"] + _READING_COLUMNS


def _snapshot_table_sql(table: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS "{table}" (
            user TEXT PRIMARY KEY,
            bot TEXT NOT NULL,
            package_name TEXT NOT NULL,
            time TEXT NOT NULL,
            total_used REAL NOT NULL DEFAULT 0,
            free_used REAL NOT NULL DEFAULT 0,
            paid_used REAL NOT NULL DEFAULT 0,
            limited_used REAL NOT NULL DEFAULT 0,
            unlimited_used REAL NOT NULL DEFAULT 0,
            total_allotted REAL NOT NULL DEFAULT 0,
            free_allotted REAL NOT NULL DEFAULT 0,
            paid_allotted REAL NOT NULL DEFAULT 0,
            limited_allotted REAL NOT NULL DEFAULT 0,
            unlimited_allotted REAL NOT NULL DEFAULT 0,
            voice_used INTEGER NOT NULL DEFAULT 0,
            voice_limited_used INTEGER NOT NULL DEFAULT 0,
            voice_unlimited_used INTEGER NOT NULL DEFAULT 0,
            voice_allotted INTEGER NOT NULL DEFAULT 0,
            voice_limited_allotted INTEGER NOT NULL DEFAULT 0,
            voice_unlimited_allotted INTEGER NOT NULL DEFAULT 0
        );
    """


class SnapshotStore:
    """Keyed record store for Config, LastSnapshot and DailySnapshot."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the connection, creating the schema on first use."""
        if self._connection is not None:
            return self._connection

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        self._init_schema(conn)

        logger.info(f"Snapshot store initialized: {self.db_path}")
        self._connection = conn
        return conn

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS config (
                user TEXT PRIMARY KEY,
                bot TEXT NOT NULL,
                cookie TEXT NOT NULL,
                token_online TEXT NOT NULL DEFAULT '',
                app_id TEXT NOT NULL DEFAULT '',
                enable_task INTEGER NOT NULL DEFAULT 1,
                interval INTEGER NOT NULL,
                timeout INTEGER,
                free_threshold REAL,
                nonfree_threshold REAL
            );
        """ + _snapshot_table_sql(LAST_TABLE) + _snapshot_table_sql(DAILY_TABLE))
        conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back and translate sqlite errors otherwise."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE" in str(e):
                raise AlreadyExistsError(str(e)) from e
            raise StoreError(str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # --- Config ---

    def find_config(self, user: str) -> Optional[UserConfig]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM config WHERE user = ?", (user,)).fetchone()
        return _row_to_config(row) if row else None

    def all_configs(self) -> list[UserConfig]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM config ORDER BY user").fetchall()
        return [_row_to_config(row) for row in rows]

    def insert_config(self, user_config: UserConfig) -> None:
        """Insert a new config row.

        Raises:
            AlreadyExistsError: If the user already has a row
        """
        values = asdict(user_config)
        placeholders = ", ".join("?" for _ in _CONFIG_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO config ({', '.join(_CONFIG_COLUMNS)}) VALUES ({placeholders})",
                [values[c] for c in _CONFIG_COLUMNS],
            )

    def update_config(self, user_config: UserConfig) -> None:
        values = asdict(user_config)
        columns = [c for c in _CONFIG_COLUMNS if c != "user"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE config SET {assignments} WHERE user = ?",
                [values[c] for c in columns] + [user_config.user],
            )
        if cursor.rowcount == 0:
            raise StoreError(f"No config record for {user_config.user}")

    def delete_config(self, user: str) -> bool:
        """Delete a user's config and both of their snapshots.

        Returns:
            True if a config row existed
        """
        with self._transaction() as conn:
            conn.execute(f'DELETE FROM "{LAST_TABLE}" WHERE user = ?', (user,))
            conn.execute(f'DELETE FROM "{DAILY_TABLE}" WHERE user = ?', (user,))
            cursor = conn.execute("DELETE FROM config WHERE user = ?", (user,))
        return cursor.rowcount > 0

    # --- Snapshots ---

    def find_last(self, user: str) -> Optional[Snapshot]:
        return self._find_snapshot(LAST_TABLE, user)

    def insert_last(self, snapshot: Snapshot) -> None:
        self._insert_snapshot(LAST_TABLE, snapshot)

    def update_last(self, snapshot: Snapshot) -> None:
        self._update_snapshot(LAST_TABLE, snapshot)

    def delete_last(self, user: str) -> bool:
        return self._delete_snapshot(LAST_TABLE, user)

    def find_daily(self, user: str) -> Optional[Snapshot]:
        return self._find_snapshot(DAILY_TABLE, user)

    def insert_daily(self, snapshot: Snapshot) -> None:
        self._insert_snapshot(DAILY_TABLE, snapshot)

    def update_daily(self, snapshot: Snapshot) -> None:
        self._update_snapshot(DAILY_TABLE, snapshot)

    def delete_daily(self, user: str) -> bool:
        return self._delete_snapshot(DAILY_TABLE, user)

    def _find_snapshot(self, table: str, user: str) -> Optional[Snapshot]:
        with self._transaction() as conn:
            row = conn.execute(f'SELECT * FROM "{table}" WHERE user = ?', (user,)).fetchone()
        return _row_to_snapshot(row) if row else None

    def _insert_snapshot(self, table: str, snapshot: Snapshot) -> None:
        values = _snapshot_values(snapshot)
        placeholders = ", ".join("?" for _ in _SNAPSHOT_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f'INSERT INTO "{table}" ({", ".join(_SNAPSHOT_COLUMNS)}) VALUES ({placeholders})',
                [values[c] for c in _SNAPSHOT_COLUMNS],
            )

    def _update_snapshot(self, table: str, snapshot: Snapshot) -> None:
        values = _snapshot_values(snapshot)
        columns = [c for c in _SNAPSHOT_COLUMNS if c != "user"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._transaction() as conn:
            cursor = conn.execute(
                f'UPDATE "{table}" SET {assignments} WHERE user = ?',
                [values[c] for c in columns] + [snapshot.user],
            )
        if cursor.rowcount == 0:
            raise StoreError(f"No {table} snapshot for {snapshot.user}")

    def _delete_snapshot(self, table: str, user: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(f'DELETE FROM "{table}" WHERE user = ?', (user,))
        return cursor.rowcount > 0


def _row_to_config(row: sqlite3.Row) -> UserConfig:
    values = {c: row[c] for c in _CONFIG_COLUMNS}
    values["enable_task"] = bool(values["enable_task"])
    return UserConfig(**values)


def _snapshot_values(snapshot: Snapshot) -> dict:
    values = asdict(snapshot.reading)
    values["time"] = snapshot.reading.time.isoformat()
    values["user"] = snapshot.user
    values["bot"] = snapshot.bot
    return values


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    values = {c: row[c] for c in _READING_COLUMNS}
    values["time"] = datetime.fromisoformat(values["time"])
    return Snapshot(user=row["user"], bot=row["bot"], reading=UsageReading(**values))
