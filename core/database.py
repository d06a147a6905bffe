"""
Reading Goals - Database Module
SQLite with WAL mode, schema management, and connection handling
"""

import sqlite3
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, List, Tuple, Union, Mapping, Any
from contextlib import contextmanager

from core.logger import log_success, log_error, log_config, log_section

# Schema version for migrations
SCHEMA_VERSION = 1

# Timestamps are stored as fixed-width UTC strings so that string comparison
# in SQL matches chronological order.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# SQL schema definition
SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Time-boxed reading goals with denormalized progress counters
CREATE TABLE IF NOT EXISTS reading_goals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    target_count INTEGER NOT NULL CHECK (target_count > 0 AND target_count <= 9999),
    progress_count INTEGER NOT NULL DEFAULT 0 CHECK (progress_count >= 0),
    bonus_count INTEGER NOT NULL DEFAULT 0 CHECK (bonus_count >= 0),
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed', 'expired')),

    -- Absolute deadline plus the zone it was anchored to at creation
    deadline_utc TIMESTAMP NOT NULL,
    deadline_timezone TEXT NOT NULL,

    completed_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,

    CONSTRAINT chk_progress_consistency CHECK (progress_count <= target_count + bonus_count),
    CONSTRAINT chk_bonus_calculation CHECK (bonus_count = MAX(0, progress_count - target_count)),
    CONSTRAINT chk_completed_status CHECK (
        (status = 'completed' AND completed_at IS NOT NULL) OR
        (status != 'completed' AND completed_at IS NULL)
    )
);

-- One row per (goal, finished reading entry) that counted toward the goal
CREATE TABLE IF NOT EXISTS reading_goal_progress (
    goal_id INTEGER NOT NULL REFERENCES reading_goals(id) ON DELETE CASCADE,
    reading_entry_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    applied_at TIMESTAMP NOT NULL,
    applied_from_status TEXT,
    PRIMARY KEY (goal_id, reading_entry_id)
);

-- Indexes for efficient queries
CREATE INDEX IF NOT EXISTS idx_reading_goals_owner_status ON reading_goals(owner_id, status);
CREATE INDEX IF NOT EXISTS idx_reading_goals_owner_deadline ON reading_goals(owner_id, deadline_utc);
CREATE INDEX IF NOT EXISTS idx_reading_goals_active_deadline ON reading_goals(status, deadline_utc) WHERE status = 'active';
CREATE INDEX IF NOT EXISTS idx_reading_goal_progress_entry ON reading_goal_progress(reading_entry_id);
CREATE INDEX IF NOT EXISTS idx_reading_goal_progress_goal ON reading_goal_progress(goal_id);
"""


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage. Naive values are taken as UTC."""
    if value is None:
        return None
    return ensure_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        # Rows written by hand (sqlite3 shell, fixtures) may use plain ISO-8601
        return ensure_utc(datetime.fromisoformat(value))


class Database:
    """SQLite database manager with WAL mode and thread-safe connections."""

    def __init__(
        self,
        db_path: Path,
        busy_timeout_ms: int = 5000,
    ):
        """
        Initialize the database.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout_ms: Timeout for busy/locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> bool:
        """
        Initialize the database: create file, set WAL mode, apply schema.

        Returns:
            True if successful, False otherwise
        """
        try:
            # Ensure data directory exists
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            log_section("Initializing database", "📁")
            log_config("Path", str(self.db_path), indent=1)

            with self.get_connection() as conn:
                # Enable WAL mode so readers never block on the writer
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")

                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
                )
                if cursor.fetchone() is None:
                    # Fresh database, apply full schema
                    conn.executescript(SCHEMA_SQL)
                    conn.execute(
                        "INSERT INTO schema_version (version) VALUES (?)",
                        (SCHEMA_VERSION,)
                    )
                    log_config("Schema", f"Created (v{SCHEMA_VERSION})", indent=1)
                else:
                    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
                    current_version = cursor.fetchone()[0] or 0
                    if current_version > SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Database schema v{current_version} is newer than "
                            f"supported v{SCHEMA_VERSION}"
                        )
                    log_config("Schema", f"Version {current_version}", indent=1)

                cursor = conn.execute("PRAGMA journal_mode")
                mode = cursor.fetchone()[0]
                log_config("Mode", f"{mode.upper()} (Write-Ahead Logging)", indent=1)

            log_success("Database ready")
            self._initialized = True
            return True

        except Exception as e:
            log_error(f"Database initialization failed: {e}")
            return False

    def _connect(self, autocommit: bool = False) -> sqlite3.Connection:
        """Open a configured connection."""
        kwargs = {"isolation_level": None} if autocommit else {}
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000,
            check_same_thread=False,
            **kwargs
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection with proper configuration.

        Yields:
            Configured SQLite connection
        """
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> sqlite3.Connection:
        """
        Open an explicit write transaction.

        BEGIN IMMEDIATE takes the write lock before the first read, so every
        row read inside the block stays stable until COMMIT. Waiting for the
        lock is bounded by busy_timeout.

        Yields:
            Connection with an open transaction
        """
        conn = self._connect(autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def execute(
        self,
        sql: str,
        params: Union[Tuple, Mapping[str, Any]] = (),
        fetch: bool = False
    ) -> Optional[List[sqlite3.Row]]:
        """
        Execute a SQL statement.

        Args:
            sql: SQL statement
            params: Parameters for the statement
            fetch: Whether to fetch and return results

        Returns:
            List of rows if fetch=True, None otherwise
        """
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            if fetch:
                return cursor.fetchall()
            return None

    def get_stats(self) -> dict:
        """Get database statistics."""
        stats = {}

        with self.get_connection() as conn:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM reading_goals GROUP BY status"
            )
            for status, count in cursor.fetchall():
                stats[f"{status}_goals"] = count

            cursor = conn.execute("SELECT COUNT(*) FROM reading_goals")
            stats["total_goals"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM reading_goal_progress")
            stats["progress_links"] = cursor.fetchone()[0]

        return stats


# Global database instance
_db: Optional[Database] = None


def get_database() -> Database:
    """Get the global database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


def init_database(db_path: Path, busy_timeout_ms: int = 5000) -> Optional[Database]:
    """Initialize the global database instance. Returns None on failure."""
    global _db
    db = Database(db_path, busy_timeout_ms)
    if not db.initialize():
        return None
    _db = db
    return _db
