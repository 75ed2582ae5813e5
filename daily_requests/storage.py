"""SQLite storage for games, milestones, accounts and progress."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol, Union

from .errors import NotFoundError, StorageError
from .models import (
    Account,
    AccountLevelProgress,
    AccountPurchaseEventProgress,
    Game,
    Level,
    PurchaseEvent,
    UpdateAccountRequest,
    UpdateGameRequest,
    UpdateLevelRequest,
    UpdatePurchaseEventProgressRequest,
    UpdatePurchaseEventRequest,
    changed_fields,
)
from .validators import ValidationError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    game_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    start_date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    request_template TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (game_id) REFERENCES games(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS levels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    game_id INTEGER NOT NULL,
    event_token TEXT NOT NULL,
    level_name TEXT NOT NULL,
    days_offset INTEGER NOT NULL DEFAULT 0,
    time_spent INTEGER NOT NULL DEFAULT 0,
    is_bonus INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (game_id) REFERENCES games(id) ON DELETE CASCADE,
    UNIQUE(game_id, event_token)
);

CREATE TABLE IF NOT EXISTS purchase_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    game_id INTEGER NOT NULL,
    event_token TEXT NOT NULL,
    is_restricted INTEGER NOT NULL DEFAULT 0,
    max_days_offset INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (game_id) REFERENCES games(id) ON DELETE CASCADE,
    UNIQUE(game_id, event_token)
);

CREATE TABLE IF NOT EXISTS account_level_progress (
    account_id INTEGER NOT NULL,
    level_id INTEGER NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TIMESTAMP,
    PRIMARY KEY (account_id, level_id),
    FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE,
    FOREIGN KEY (level_id) REFERENCES levels(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS account_purchase_event_progress (
    account_id INTEGER NOT NULL,
    purchase_event_id INTEGER NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    days_offset INTEGER NOT NULL DEFAULT 0,
    time_spent INTEGER NOT NULL DEFAULT 0,
    completed_at TIMESTAMP,
    PRIMARY KEY (account_id, purchase_event_id),
    FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE,
    FOREIGN KEY (purchase_event_id) REFERENCES purchase_events(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_levels_game_id ON levels(game_id);
CREATE INDEX IF NOT EXISTS idx_accounts_game_id ON accounts(game_id);
CREATE INDEX IF NOT EXISTS idx_purchase_events_game_id ON purchase_events(game_id);
CREATE INDEX IF NOT EXISTS idx_account_level_progress_account ON account_level_progress(account_id);
CREATE INDEX IF NOT EXISTS idx_account_level_progress_level ON account_level_progress(level_id);
CREATE INDEX IF NOT EXISTS idx_account_purchase_progress_account ON account_purchase_event_progress(account_id);
CREATE INDEX IF NOT EXISTS idx_account_purchase_progress_event ON account_purchase_event_progress(purchase_event_id);
"""

# Columns added after the first release; older databases are migrated in place.
MIGRATED_COLUMNS = [
    ("levels", "is_bonus", "INTEGER NOT NULL DEFAULT 0"),
    ("purchase_events", "is_restricted", "INTEGER NOT NULL DEFAULT 0"),
    ("purchase_events", "max_days_offset", "INTEGER"),
]

# Field-to-column tables for partial updates.
GAME_COLUMNS = {"name": "name"}
ACCOUNT_COLUMNS = {
    "name": "name",
    "start_date": "start_date",
    "start_time": "start_time",
    "request_template": "request_template",
}
LEVEL_COLUMNS = {
    "game_id": "game_id",
    "event_token": "event_token",
    "level_name": "level_name",
    "days_offset": "days_offset",
    "time_spent": "time_spent",
    "is_bonus": "is_bonus",
}
PURCHASE_EVENT_COLUMNS = {
    "event_token": "event_token",
    "is_restricted": "is_restricted",
    "max_days_offset": "max_days_offset",
}
PURCHASE_PROGRESS_COLUMNS = {
    "is_completed": "is_completed",
    "days_offset": "days_offset",
    "time_spent": "time_spent",
}

COMPLETED_AT_ASSIGNMENT = (
    "completed_at = CASE WHEN ? THEN COALESCE(completed_at, ?) ELSE NULL END"
)


class Storage(Protocol):
    """Read interface consumed by the scheduler."""

    def session(self) -> Any: ...

    def get_account(self, account_id: int) -> Optional[Account]: ...

    def get_levels_by_game(self, game_id: int) -> list[Level]: ...

    def get_account_level_progress(self, account_id: int) -> list[AccountLevelProgress]: ...

    def get_purchase_events_by_game(self, game_id: int) -> list[PurchaseEvent]: ...

    def get_account_purchase_event_progress(
        self, account_id: int
    ) -> list[AccountPurchaseEventProgress]: ...


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def _row_to_game(row: sqlite3.Row) -> Game:
    return Game(id=row["id"], name=row["name"], created_at=row["created_at"])


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        game_id=row["game_id"],
        name=row["name"],
        start_date=row["start_date"],
        start_time=row["start_time"],
        request_template=row["request_template"],
        created_at=row["created_at"],
    )


def _row_to_level(row: sqlite3.Row) -> Level:
    return Level(
        id=row["id"],
        game_id=row["game_id"],
        event_token=row["event_token"],
        level_name=row["level_name"],
        days_offset=row["days_offset"],
        time_spent=row["time_spent"],
        is_bonus=bool(row["is_bonus"]),
    )


def _row_to_purchase_event(row: sqlite3.Row) -> PurchaseEvent:
    return PurchaseEvent(
        id=row["id"],
        game_id=row["game_id"],
        event_token=row["event_token"],
        is_restricted=bool(row["is_restricted"]),
        max_days_offset=row["max_days_offset"],
        created_at=row["created_at"],
    )


def _row_to_level_progress(row: sqlite3.Row) -> AccountLevelProgress:
    return AccountLevelProgress(
        account_id=row["account_id"],
        level_id=row["level_id"],
        is_completed=bool(row["is_completed"]),
        completed_at=row["completed_at"],
    )


def _row_to_purchase_progress(row: sqlite3.Row) -> AccountPurchaseEventProgress:
    return AccountPurchaseEventProgress(
        account_id=row["account_id"],
        purchase_event_id=row["purchase_event_id"],
        days_offset=row["days_offset"],
        time_spent=row["time_spent"],
        is_completed=bool(row["is_completed"]),
        completed_at=row["completed_at"],
    )


class SQLiteStore:
    """SQLite-backed store sharing one connection behind a lock.

    Every public method takes the lock; `session()` holds it across several
    calls so a multi-read sequence is not interleaved with other callers.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def session(self) -> Iterator["SQLiteStore"]:
        """Hold the store lock for the duration of the block."""
        with self._lock:
            yield self

    @contextmanager
    def _guard(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a unit of work under the lock, committing on success."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise StorageError(f"Failed to {operation}: {e}") from e

    # =========================================================================
    # SCHEMA
    # =========================================================================

    def init_schema(self) -> None:
        """Create tables and indexes, migrating older databases."""
        with self._guard("create tables") as conn:
            # Older databases may lack columns the indexes rely on.
            for table, column, definition in MIGRATED_COLUMNS:
                self._ensure_column(conn, table, column, definition)
            conn.executescript(SCHEMA_SQL)

    @staticmethod
    def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        if cols and column not in {c[1] for c in cols}:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def _update(
        self,
        table: str,
        columns: dict[str, str],
        request: Any,
        key_fields: tuple[str, ...],
        operation: str,
        extra: Optional[list[tuple[str, tuple]]] = None,
    ) -> bool:
        """Apply a partial update built from a fixed field-to-column table."""
        values = changed_fields(request, key_fields)
        assignments = [f"{columns[name]} = ?" for name in values]
        params = [_to_db(v) for v in values.values()]

        for clause, clause_params in extra or []:
            assignments.append(clause)
            params.extend(clause_params)

        if not assignments:
            return False

        where = " AND ".join(f"{key} = ?" for key in key_fields)
        params.extend(getattr(request, key) for key in key_fields)
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {where}"

        with self._guard(operation) as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount > 0

    def _delete(self, table: str, record_id: int, operation: str) -> bool:
        with self._guard(operation) as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def _require(self, conn: sqlite3.Connection, table: str, record_id: int, label: str) -> None:
        row = conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"{label} with ID {record_id} not found")

    # =========================================================================
    # GAMES
    # =========================================================================

    def create_game(self, name: str) -> int:
        with self._guard("create game") as conn:
            cursor = conn.execute("INSERT INTO games (name) VALUES (?)", (name,))
            return cursor.lastrowid

    def get_games(self) -> list[Game]:
        with self._guard("query games") as conn:
            rows = conn.execute("SELECT id, name, created_at FROM games ORDER BY name").fetchall()
        return [_row_to_game(r) for r in rows]

    def get_game(self, game_id: int) -> Optional[Game]:
        with self._guard("get game") as conn:
            row = conn.execute(
                "SELECT id, name, created_at FROM games WHERE id = ?", (game_id,)
            ).fetchone()
        return _row_to_game(row) if row else None

    def get_game_by_name(self, name: str) -> Optional[Game]:
        with self._guard("get game") as conn:
            row = conn.execute(
                "SELECT id, name, created_at FROM games WHERE name = ?", (name,)
            ).fetchone()
        return _row_to_game(row) if row else None

    def update_game(self, request: UpdateGameRequest) -> bool:
        return self._update("games", GAME_COLUMNS, request, ("id",), "update game")

    def delete_game(self, game_id: int) -> bool:
        return self._delete("games", game_id, "delete game")

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def create_account(
        self,
        game_id: int,
        name: str,
        start_date: str,
        start_time: str,
        request_template: str,
    ) -> int:
        with self._guard("create account") as conn:
            self._require(conn, "games", game_id, "Game")
            cursor = conn.execute(
                """
                INSERT INTO accounts (game_id, name, start_date, start_time, request_template)
                VALUES (?, ?, ?, ?, ?)
                """,
                (game_id, name, start_date, start_time, request_template),
            )
            return cursor.lastrowid

    def get_accounts_by_game(self, game_id: int) -> list[Account]:
        with self._guard("query accounts") as conn:
            rows = conn.execute(
                """
                SELECT id, game_id, name, start_date, start_time, request_template, created_at
                FROM accounts WHERE game_id = ? ORDER BY name
                """,
                (game_id,),
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    def get_account(self, account_id: int) -> Optional[Account]:
        with self._guard("get account") as conn:
            row = conn.execute(
                """
                SELECT id, game_id, name, start_date, start_time, request_template, created_at
                FROM accounts WHERE id = ?
                """,
                (account_id,),
            ).fetchone()
        return _row_to_account(row) if row else None

    def update_account(self, request: UpdateAccountRequest) -> bool:
        return self._update("accounts", ACCOUNT_COLUMNS, request, ("id",), "update account")

    def delete_account(self, account_id: int) -> bool:
        return self._delete("accounts", account_id, "delete account")

    # =========================================================================
    # LEVELS
    # =========================================================================

    def create_level(
        self,
        game_id: int,
        event_token: str,
        level_name: str,
        days_offset: int,
        time_spent: int,
        is_bonus: bool = False,
    ) -> int:
        with self._guard("create level") as conn:
            self._require(conn, "games", game_id, "Game")
            cursor = conn.execute(
                """
                INSERT INTO levels (game_id, event_token, level_name, days_offset, time_spent, is_bonus)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (game_id, event_token, level_name, days_offset, time_spent, int(is_bonus)),
            )
            return cursor.lastrowid

    def get_levels_by_game(self, game_id: int) -> list[Level]:
        with self._guard("query levels") as conn:
            rows = conn.execute(
                """
                SELECT id, game_id, event_token, level_name, days_offset, time_spent, is_bonus
                FROM levels WHERE game_id = ? ORDER BY days_offset, id
                """,
                (game_id,),
            ).fetchall()
        return [_row_to_level(r) for r in rows]

    def get_level(self, level_id: int) -> Optional[Level]:
        with self._guard("get level") as conn:
            row = conn.execute(
                """
                SELECT id, game_id, event_token, level_name, days_offset, time_spent, is_bonus
                FROM levels WHERE id = ?
                """,
                (level_id,),
            ).fetchone()
        return _row_to_level(row) if row else None

    def get_level_by_token(self, game_id: int, event_token: str) -> Optional[Level]:
        with self._guard("get level") as conn:
            row = conn.execute(
                """
                SELECT id, game_id, event_token, level_name, days_offset, time_spent, is_bonus
                FROM levels WHERE game_id = ? AND event_token = ?
                """,
                (game_id, event_token),
            ).fetchone()
        return _row_to_level(row) if row else None

    def update_level(self, request: UpdateLevelRequest) -> bool:
        return self._update("levels", LEVEL_COLUMNS, request, ("id",), "update level")

    def delete_level(self, level_id: int) -> bool:
        return self._delete("levels", level_id, "delete level")

    # =========================================================================
    # PURCHASE EVENTS
    # =========================================================================

    def create_purchase_event(
        self,
        game_id: int,
        event_token: str,
        is_restricted: bool = False,
        max_days_offset: Optional[int] = None,
    ) -> int:
        with self._guard("create purchase event") as conn:
            self._require(conn, "games", game_id, "Game")
            cursor = conn.execute(
                """
                INSERT INTO purchase_events (game_id, event_token, is_restricted, max_days_offset)
                VALUES (?, ?, ?, ?)
                """,
                (game_id, event_token, int(is_restricted), max_days_offset),
            )
            return cursor.lastrowid

    def get_purchase_events_by_game(self, game_id: int) -> list[PurchaseEvent]:
        with self._guard("query purchase events") as conn:
            rows = conn.execute(
                """
                SELECT id, game_id, event_token, is_restricted, max_days_offset, created_at
                FROM purchase_events WHERE game_id = ? ORDER BY id
                """,
                (game_id,),
            ).fetchall()
        return [_row_to_purchase_event(r) for r in rows]

    def get_purchase_event(self, purchase_event_id: int) -> Optional[PurchaseEvent]:
        with self._guard("get purchase event") as conn:
            row = conn.execute(
                """
                SELECT id, game_id, event_token, is_restricted, max_days_offset, created_at
                FROM purchase_events WHERE id = ?
                """,
                (purchase_event_id,),
            ).fetchone()
        return _row_to_purchase_event(row) if row else None

    def get_purchase_event_by_token(self, game_id: int, event_token: str) -> Optional[PurchaseEvent]:
        with self._guard("get purchase event") as conn:
            row = conn.execute(
                """
                SELECT id, game_id, event_token, is_restricted, max_days_offset, created_at
                FROM purchase_events WHERE game_id = ? AND event_token = ?
                """,
                (game_id, event_token),
            ).fetchone()
        return _row_to_purchase_event(row) if row else None

    def update_purchase_event(self, request: UpdatePurchaseEventRequest) -> bool:
        return self._update(
            "purchase_events", PURCHASE_EVENT_COLUMNS, request, ("id",), "update purchase event"
        )

    def delete_purchase_event(self, purchase_event_id: int) -> bool:
        return self._delete("purchase_events", purchase_event_id, "delete purchase event")

    # =========================================================================
    # LEVEL PROGRESS
    # =========================================================================

    def ensure_level_progress(self, account_id: int, level_id: int) -> None:
        """Create a not-completed progress row unless one exists."""
        with self._guard("create level progress") as conn:
            conn.execute(
                """
                INSERT INTO account_level_progress (account_id, level_id, is_completed)
                VALUES (?, ?, 0)
                ON CONFLICT(account_id, level_id) DO NOTHING
                """,
                (account_id, level_id),
            )

    def update_level_progress(self, account_id: int, level_id: int, is_completed: bool) -> bool:
        """Set a level's completion flag; `completed_at` is stamped once."""
        with self._guard("update level progress") as conn:
            cursor = conn.execute(
                f"""
                UPDATE account_level_progress
                SET is_completed = ?, {COMPLETED_AT_ASSIGNMENT}
                WHERE account_id = ? AND level_id = ?
                """,
                (int(is_completed), int(is_completed), utc_now_iso(), account_id, level_id),
            )
            return cursor.rowcount > 0

    def get_account_level_progress(self, account_id: int) -> list[AccountLevelProgress]:
        with self._guard("query level progress") as conn:
            rows = conn.execute(
                """
                SELECT account_id, level_id, is_completed, completed_at
                FROM account_level_progress WHERE account_id = ?
                """,
                (account_id,),
            ).fetchall()
        return [_row_to_level_progress(r) for r in rows]

    # =========================================================================
    # PURCHASE EVENT PROGRESS
    # =========================================================================

    def _check_restriction(self, conn: sqlite3.Connection, purchase_event_id: int, days_offset: int) -> None:
        row = conn.execute(
            "SELECT event_token, is_restricted, max_days_offset FROM purchase_events WHERE id = ?",
            (purchase_event_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Purchase event with ID {purchase_event_id} not found")
        max_days = row["max_days_offset"]
        if row["is_restricted"] and max_days is not None and days_offset >= max_days:
            raise ValidationError([
                f"purchase event '{row['event_token']}': days_offset ({days_offset}) "
                f"must be less than {max_days}"
            ])

    def upsert_purchase_event_progress(
        self,
        account_id: int,
        purchase_event_id: int,
        days_offset: int,
        time_spent: int,
    ) -> None:
        """Schedule a purchase event for an account, rescheduling if present."""
        with self._guard("create/update purchase event progress") as conn:
            self._check_restriction(conn, purchase_event_id, days_offset)
            conn.execute(
                """
                INSERT INTO account_purchase_event_progress
                    (account_id, purchase_event_id, is_completed, days_offset, time_spent)
                VALUES (?, ?, 0, ?, ?)
                ON CONFLICT(account_id, purchase_event_id)
                DO UPDATE SET days_offset = excluded.days_offset, time_spent = excluded.time_spent
                """,
                (account_id, purchase_event_id, days_offset, time_spent),
            )

    def update_purchase_event_progress(self, request: UpdatePurchaseEventProgressRequest) -> bool:
        extra = []
        if request.is_completed is not None:
            extra.append((COMPLETED_AT_ASSIGNMENT, (int(request.is_completed), utc_now_iso())))

        # the limit must not change between the check and the write
        with self._lock:
            if request.days_offset is not None:
                with self._guard("update purchase event progress") as conn:
                    self._check_restriction(conn, request.purchase_event_id, request.days_offset)

            return self._update(
                "account_purchase_event_progress",
                PURCHASE_PROGRESS_COLUMNS,
                request,
                ("account_id", "purchase_event_id"),
                "update purchase event progress",
                extra=extra,
            )

    def get_account_purchase_event_progress(
        self, account_id: int
    ) -> list[AccountPurchaseEventProgress]:
        with self._guard("query purchase event progress") as conn:
            rows = conn.execute(
                """
                SELECT account_id, purchase_event_id, is_completed, days_offset, time_spent, completed_at
                FROM account_purchase_event_progress WHERE account_id = ?
                ORDER BY rowid
                """,
                (account_id,),
            ).fetchall()
        return [_row_to_purchase_progress(r) for r in rows]
