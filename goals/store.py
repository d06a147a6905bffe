"""
Reading Goals - Goal Store
Durable storage for goals and their progress links

All multi-goal mutations happen on the connection yielded by
GoalStore.transaction(), which holds the SQLite write lock for its whole
duration. Rows read inside it cannot change underneath the caller.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, List, Tuple, Dict, Any, Iterable, Iterator

from core.database import Database, get_database, format_timestamp, utc_now
from core.logger import log_debug, log_error
from goals.errors import TransientStoreError, ConstraintViolation, StoreError
from goals.models import Goal, GoalStatus, ProgressLink

# OperationalError messages that mean "try again later"
TRANSIENT_ERRORS = ("locked", "busy", "unable to open", "disk i/o")

# Stored status with overdue active goals reported as expired
EFFECTIVE_STATUS_SQL = """
    CASE
        WHEN status = 'active' AND deadline_utc <= :as_of THEN 'expired'
        ELSE status
    END
"""

# One statement applies a counter delta to every listed goal. Every
# right-hand side sees the pre-update row, so the status and completed_at
# transitions are decided from the new progress value computed in place.
APPLY_COUNTER_DELTAS_SQL = """
UPDATE reading_goals
SET progress_count = MAX(0, progress_count + :delta),
    bonus_count = MAX(0, MAX(0, progress_count + :delta) - target_count),
    status = CASE
        WHEN :delta > 0 AND status = 'active'
             AND MAX(0, progress_count + :delta) >= target_count
             AND deadline_utc > :as_of THEN 'completed'
        WHEN :delta < 0 AND status = 'completed'
             AND MAX(0, progress_count + :delta) < target_count
             AND deadline_utc > :as_of THEN 'active'
        ELSE status
    END,
    completed_at = CASE
        WHEN :delta > 0 AND status = 'active'
             AND MAX(0, progress_count + :delta) >= target_count
             AND deadline_utc > :as_of THEN :as_of
        WHEN :delta < 0 AND status = 'completed'
             AND MAX(0, progress_count + :delta) < target_count
             AND deadline_utc > :as_of THEN NULL
        ELSE completed_at
    END,
    updated_at = :updated_at
WHERE id IN ({ids})
"""


# Ids bound per statement; SQLite before 3.32 allows 999 variables
ID_CHUNK_SIZE = 500


def _id_params(goal_ids: Iterable[int]) -> Tuple[str, Dict[str, Any]]:
    """Named placeholders for an IN (...) list."""
    params = {f"id{index}": goal_id for index, goal_id in enumerate(goal_ids)}
    return ", ".join(f":{name}" for name in params), params


def _chunked(goal_ids: Iterable[int]) -> Iterator[List[int]]:
    """Split an id list into slices of at most ID_CHUNK_SIZE."""
    ids = list(goal_ids)
    for start in range(0, len(ids), ID_CHUNK_SIZE):
        yield ids[start:start + ID_CHUNK_SIZE]


class GoalStore:
    """
    SQLite-backed storage for goals and progress links.

    Methods taking a `conn` must run inside transaction(); the rest open
    their own short-lived connection.
    """

    def __init__(self, db: Optional[Database] = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db if self._db is not None else get_database()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    @contextmanager
    def _translate_errors(self, **context):
        """Map sqlite failures onto the goal error taxonomy."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            log_debug(f"Integrity error ({context}): {e}")
            raise ConstraintViolation(**context) from e
        except sqlite3.OperationalError as e:
            error_msg = str(e).lower()
            if not any(err in error_msg for err in TRANSIENT_ERRORS):
                log_error(f"Store error ({context}): {e}")
                raise StoreError(**context) from e
            log_debug(f"Transient store error ({context}): {e}")
            raise TransientStoreError(**context) from e
        except sqlite3.Error as e:
            log_error(f"Store error ({context}): {e}")
            raise StoreError(**context) from e

    @contextmanager
    def transaction(self, **context) -> sqlite3.Connection:
        """
        Run a block as one atomic write transaction.

        Args:
            **context: owner_id/goal_id/reading_entry_id attached to errors

        Yields:
            Connection holding the write lock until the block exits
        """
        with self._translate_errors(**context):
            with self.db.transaction() as conn:
                yield conn

    @contextmanager
    def _connection(self, **context) -> sqlite3.Connection:
        with self._translate_errors(**context):
            with self.db.get_connection() as conn:
                yield conn

    # =========================================================================
    # PROGRESS ENGINE OPERATIONS (transaction-scoped)
    # =========================================================================

    def find_active_goals_for_owner(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        as_of: datetime
    ) -> List[Goal]:
        """
        Goals of an owner still counting completions at `as_of`.

        That is every non-expired goal whose deadline lies after `as_of`:
        active ones, and completed ones that keep collecting bonus books.
        """
        rows = conn.execute(
            """
            SELECT * FROM reading_goals
            WHERE owner_id = ? AND status IN (?, ?) AND deadline_utc > ?
            ORDER BY created_at ASC, id ASC
            """,
            (
                owner_id,
                GoalStatus.ACTIVE.value,
                GoalStatus.COMPLETED.value,
                format_timestamp(as_of)
            )
        ).fetchall()
        return [Goal.from_row(row) for row in rows]

    def insert_progress_link(
        self,
        conn: sqlite3.Connection,
        goal_id: int,
        reading_entry_id: str,
        book_id: str,
        applied_from_status: Optional[str] = None,
        applied_at: Optional[datetime] = None
    ) -> bool:
        """
        Record that a reading entry counted toward a goal.

        A link that already exists is left untouched.

        Returns:
            True if a new link was written, False if it already existed

        Raises:
            ConstraintViolation: If a racing write tripped a constraint
        """
        try:
            cursor = conn.execute(
                """
                INSERT INTO reading_goal_progress
                (goal_id, reading_entry_id, book_id, applied_at, applied_from_status)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (goal_id, reading_entry_id) DO NOTHING
                """,
                (
                    goal_id,
                    reading_entry_id,
                    book_id,
                    format_timestamp(applied_at or utc_now()),
                    applied_from_status
                )
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(
                goal_id=goal_id, reading_entry_id=reading_entry_id
            ) from e
        return cursor.rowcount == 1

    def delete_progress_links_by_entry(
        self,
        conn: sqlite3.Connection,
        reading_entry_id: str,
        owner_id: str
    ) -> List[int]:
        """
        Remove every link for a reading entry within one owner's goals.

        Returns:
            Ids of the goals that lost a link
        """
        rows = conn.execute(
            """
            SELECT p.goal_id FROM reading_goal_progress p
            JOIN reading_goals g ON g.id = p.goal_id
            WHERE p.reading_entry_id = ? AND g.owner_id = ?
            ORDER BY p.goal_id
            """,
            (reading_entry_id, owner_id)
        ).fetchall()
        goal_ids = [row["goal_id"] for row in rows]

        if goal_ids:
            conn.execute(
                """
                DELETE FROM reading_goal_progress
                WHERE reading_entry_id = ?
                  AND goal_id IN (SELECT id FROM reading_goals WHERE owner_id = ?)
                """,
                (reading_entry_id, owner_id)
            )

        return goal_ids

    def apply_counter_deltas(
        self,
        conn: sqlite3.Connection,
        goal_ids: List[int],
        delta: int,
        as_of: datetime,
        updated_at: Optional[datetime] = None
    ) -> None:
        """
        Apply a progress delta to several goals in one statement.

        progress becomes max(0, progress + delta) and bonus is recomputed.
        With a positive delta an active goal reaching its target completes
        (completed_at = as_of). With a negative delta a completed goal that
        drops below target reopens, but only while its deadline is after
        `as_of`; past the deadline the completed record is frozen. Very long
        id lists are split across statements in the same transaction.
        """
        if not goal_ids or delta == 0:
            return

        shared = {
            "delta": delta,
            "as_of": format_timestamp(as_of),
            "updated_at": format_timestamp(updated_at or utc_now()),
        }
        for chunk in _chunked(goal_ids):
            placeholders, params = _id_params(chunk)
            params.update(shared)
            conn.execute(APPLY_COUNTER_DELTAS_SQL.format(ids=placeholders), params)

    def get_goals_by_ids(self, conn: sqlite3.Connection, goal_ids: List[int]) -> List[Goal]:
        goals = []
        for chunk in _chunked(goal_ids):
            placeholders, params = _id_params(chunk)
            rows = conn.execute(
                f"SELECT * FROM reading_goals WHERE id IN ({placeholders})",
                params
            ).fetchall()
            goals.extend(Goal.from_row(row) for row in rows)
        return sorted(goals, key=lambda goal: goal.id)

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_goal(
        self,
        owner_id: str,
        name: str,
        target_count: int,
        deadline_utc: datetime,
        deadline_timezone: str,
        created_at: Optional[datetime] = None
    ) -> Goal:
        """Insert a new active goal with zero progress."""
        created = format_timestamp(created_at or utc_now())

        with self._connection(owner_id=owner_id) as conn:
            cursor = conn.execute(
                """
                INSERT INTO reading_goals
                (owner_id, name, target_count, progress_count, bonus_count, status,
                 deadline_utc, deadline_timezone, completed_at, created_at, updated_at)
                VALUES (?, ?, ?, 0, 0, ?, ?, ?, NULL, ?, ?)
                """,
                (
                    owner_id,
                    name,
                    target_count,
                    GoalStatus.ACTIVE.value,
                    format_timestamp(deadline_utc),
                    deadline_timezone,
                    created,
                    created
                )
            )
            row = conn.execute(
                "SELECT * FROM reading_goals WHERE id = ?",
                (cursor.lastrowid,)
            ).fetchone()

        return Goal.from_row(row)

    def get_goal(self, goal_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Goal]:
        """Get a goal by id, optionally inside an open transaction."""
        sql = "SELECT * FROM reading_goals WHERE id = ?"
        if conn is not None:
            row = conn.execute(sql, (goal_id,)).fetchone()
        else:
            with self._connection(goal_id=goal_id) as own_conn:
                row = own_conn.execute(sql, (goal_id,)).fetchone()
        return Goal.from_row(row) if row else None

    def list_goals_for_owner(
        self,
        owner_id: str,
        as_of: datetime,
        status: Optional[GoalStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Goal], int]:
        """
        List an owner's goals, active first, then completed, then expired.

        Ordering and the status filter use the effective status as of
        `as_of`; returned goals carry their stored status.

        Returns:
            (goals on this page, total matching goals)
        """
        params = {
            "owner_id": owner_id,
            "as_of": format_timestamp(as_of),
            "status": status.value if status is not None else None,
            "limit": limit,
            "offset": offset,
        }
        filtered = f"""
            SELECT * FROM (
                SELECT *, {EFFECTIVE_STATUS_SQL} AS effective_status
                FROM reading_goals
                WHERE owner_id = :owner_id
            )
            WHERE :status IS NULL OR effective_status = :status
        """

        with self._connection(owner_id=owner_id) as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM ({filtered})",
                params
            ).fetchone()[0]

            rows = conn.execute(
                f"""
                {filtered}
                ORDER BY
                    CASE effective_status
                        WHEN 'active' THEN 1
                        WHEN 'completed' THEN 2
                        WHEN 'expired' THEN 3
                    END,
                    deadline_utc ASC,
                    id ASC
                LIMIT :limit OFFSET :offset
                """,
                params
            ).fetchall()

        return [Goal.from_row(row) for row in rows], total

    def update_goal(
        self,
        conn: sqlite3.Connection,
        goal_id: int,
        target_count: int,
        deadline_utc: datetime,
        as_of: datetime
    ) -> bool:
        """
        Rewrite the target and deadline of an active goal.

        Bonus is recomputed; a target at or below current progress completes
        the goal with completed_at = as_of.

        Returns:
            True if an active goal was updated
        """
        cursor = conn.execute(
            """
            UPDATE reading_goals
            SET target_count = :target,
                bonus_count = MAX(0, progress_count - :target),
                deadline_utc = :deadline,
                status = CASE WHEN progress_count >= :target THEN 'completed' ELSE status END,
                completed_at = CASE WHEN progress_count >= :target THEN :as_of ELSE completed_at END,
                updated_at = :as_of
            WHERE id = :id AND status = 'active'
            """,
            {
                "id": goal_id,
                "target": target_count,
                "deadline": format_timestamp(deadline_utc),
                "as_of": format_timestamp(as_of),
            }
        )
        return cursor.rowcount == 1

    def delete_goal(self, goal_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Delete a goal in any status; its progress links cascade."""
        sql = "DELETE FROM reading_goals WHERE id = ?"
        if conn is not None:
            return conn.execute(sql, (goal_id,)).rowcount > 0
        with self._connection(goal_id=goal_id) as own_conn:
            return own_conn.execute(sql, (goal_id,)).rowcount > 0

    def get_links_for_goal(self, goal_id: int) -> List[ProgressLink]:
        """Progress links of a goal, oldest first."""
        with self._connection(goal_id=goal_id) as conn:
            rows = conn.execute(
                """
                SELECT * FROM reading_goal_progress
                WHERE goal_id = ?
                ORDER BY applied_at ASC, reading_entry_id ASC
                """,
                (goal_id,)
            ).fetchall()
        return [ProgressLink.from_row(row) for row in rows]

    # =========================================================================
    # EXPIRATION
    # =========================================================================

    def expire_overdue_goals(self, as_of: datetime) -> List[int]:
        """
        Mark active goals whose deadline is before `as_of` as expired.

        Returns:
            Ids of the goals that were expired
        """
        params = (GoalStatus.ACTIVE.value, format_timestamp(as_of))

        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM reading_goals WHERE status = ? AND deadline_utc < ? ORDER BY id",
                params
            ).fetchall()
            if not rows:
                return []

            conn.execute(
                """
                UPDATE reading_goals
                SET status = 'expired', updated_at = ?
                WHERE status = ? AND deadline_utc < ?
                """,
                (format_timestamp(utc_now()),) + params
            )

        return [row["id"] for row in rows]
