"""SQLite-backed persistence for demo users."""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .models import User

logger = logging.getLogger("apm_demo.database")

SAMPLE_USERS: Sequence[Tuple[str, str]] = (
    ("Alice Johnson", "alice@example.com"),
    ("Bob Smith", "bob@example.com"),
    ("Charlie Brown", "charlie@example.com"),
    ("Diana Prince", "diana@example.com"),
    ("Eve Wilson", "eve@example.com"),
)

_MIN_ROW_ID = -(2**63)
_MAX_ROW_ID = 2**63 - 1


class StorageError(RuntimeError):
    """Raised when the backing store fails to execute a statement."""


class ConstraintError(StorageError):
    """Raised when a write violates a store constraint such as a duplicate email."""


class InitializationError(StorageError):
    """Raised when the store cannot be prepared for use."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "app.db").resolve(strict=False)


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """Owns the single SQLite connection used to store demo users."""

    def __init__(self, path: Path, *, seed_sample_data: bool = True) -> None:
        self._path = Path(path)
        self._seed_sample_data = seed_sample_data
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._path

    def initialize(self) -> None:
        """Open the store, create the schema if needed and seed sample users.

        Safe to call repeatedly: the open connection is reused, the schema
        statement never drops data and seeding only runs on an empty table.
        """

        try:
            _ensure_directory(self._path)
        except OSError as exc:
            raise InitializationError(
                f"Unable to create database directory {self._path.parent}: {exc}"
            ) from exc

        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self._path,
                    check_same_thread=False,
                    isolation_level=None,
                )
            except sqlite3.Error as exc:
                raise InitializationError(f"Unable to open database {self._path}: {exc}") from exc
            conn.row_factory = sqlite3.Row
            self._conn = conn
            logger.info("Database connected at %s", self._path)

        try:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
                )
                """
            )
        except sqlite3.Error as exc:
            self.close()
            raise InitializationError(f"Unable to create users table: {exc}") from exc

        if self._seed_sample_data:
            try:
                self._seed_sample_users()
            except StorageError as exc:
                self.close()
                raise InitializationError(f"Unable to seed sample users: {exc}") from exc
            logger.info("Database initialised with sample data")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def count_users(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS count FROM users")
        return int(row["count"]) if row is not None else 0

    def list_users(self) -> List[User]:
        """Return every user, most recently created first."""

        rows = self._fetchall("SELECT * FROM users ORDER BY created_at DESC, id DESC")
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        # SQLite integers are signed 64-bit; nothing outside that range can exist.
        if not _MIN_ROW_ID <= user_id <= _MAX_ROW_ID:
            return None
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return self._row_to_user(row)

    def create_user(self, name: str, email: str) -> User:
        """Insert a user and return the stored record, including store defaults."""

        conn = self._require_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO users (name, email) VALUES (?, ?)",
                (name, email),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise ConstraintError("A user with that email already exists") from exc
            raise ConstraintError(f"User violates a database constraint: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to create user: {exc}") from exc

        user = self.get_user(int(cursor.lastrowid))
        if user is None:
            raise StorageError("Failed to load user after creation")
        return user

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _seed_sample_users(self) -> None:
        if self.count_users() > 0:
            logger.info("Sample data already exists")
            return

        conn = self._require_connection()
        try:
            conn.executemany(
                "INSERT OR IGNORE INTO users (name, email) VALUES (?, ?)",
                SAMPLE_USERS,
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to insert sample users: {exc}") from exc

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Database is not open. Call initialize() first.")
        return self._conn

    def _fetchone(self, query: str, params: Sequence[object] = ()) -> Optional[sqlite3.Row]:
        conn = self._require_connection()
        try:
            return conn.execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Database query failed: {exc}") from exc

    def _fetchall(self, query: str, params: Sequence[object] = ()) -> List[sqlite3.Row]:
        conn = self._require_connection()
        try:
            return conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Database query failed: {exc}") from exc

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = [
    "ConstraintError",
    "Database",
    "InitializationError",
    "SAMPLE_USERS",
    "StorageError",
    "resolve_database_path",
]
