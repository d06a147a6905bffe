"""
Reading Goals - Progress Engine
Applies book completion/uncompletion events to every affected goal

State machine:
    active    -> completed   progress reaches target before the deadline
    completed -> completed   further completions before the deadline add bonus
    active    -> expired     deadline passes (queries/sweeper)
    completed -> active      reversal drops below target, deadline still ahead
    completed -> completed   reversal drops below target after the deadline
    expired                  terminal

Idempotency comes from the (goal, reading entry) progress link: a counter
only moves in the same transaction that creates or deletes its link.
"""

import threading
from datetime import datetime
from typing import Optional, List, Callable

from concurrency.db_retry import execute_with_retry, RetryConfig
from core.database import utc_now, ensure_utc
from core.logger import log_info, log_debug
from goals.errors import ConstraintViolation
from goals.models import Goal
from goals.store import GoalStore


def _status_changes(before: List[Goal], after: List[Goal]) -> List[Goal]:
    """Goals from `after` whose status differs from `before`."""
    previous = {goal.id: goal.status for goal in before}
    return [goal for goal in after if previous.get(goal.id) != goal.status]


class GoalProgressEngine:
    """
    Consumes completion events from the reading-status tracker.

    Each call is one transaction against the store, retried as a whole on
    transient failures. Nothing is cached between calls.
    """

    def __init__(
        self,
        store: Optional[GoalStore] = None,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store or GoalStore()
        self._retry_config = retry_config
        self._clock = clock

    def apply_completion(
        self,
        owner_id: str,
        reading_entry_id: str,
        book_id: str,
        completed_at: datetime,
        from_status: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[Goal]:
        """
        Count a finished book toward all of the owner's open goals.

        Every active or completed goal with a deadline after `completed_at`
        gets one progress link for this reading entry; completed goals count
        it as bonus. Goals that already had the link (duplicate delivery) are
        left untouched.

        Args:
            owner_id: Reader who finished the book
            reading_entry_id: The reading entry that became finished
            book_id: Book behind the reading entry
            completed_at: When the book was finished
            from_status: Reading status the entry left, kept for audit
            cancel_event: Checked before each attempt

        Returns:
            Goals whose status changed
        """
        completed_at = ensure_utc(completed_at)
        return execute_with_retry(
            lambda: self._apply_completion(
                owner_id, reading_entry_id, book_id, completed_at, from_status
            ),
            retry_config=self._retry_config,
            cancel_event=cancel_event
        )

    def _apply_completion(
        self,
        owner_id: str,
        reading_entry_id: str,
        book_id: str,
        completed_at: datetime,
        from_status: Optional[str]
    ) -> List[Goal]:
        store = self._store

        with store.transaction(owner_id=owner_id, reading_entry_id=reading_entry_id) as conn:
            open_goals = store.find_active_goals_for_owner(conn, owner_id, completed_at)

            linked_ids = []
            for goal in open_goals:
                try:
                    inserted = store.insert_progress_link(
                        conn,
                        goal.id,
                        reading_entry_id,
                        book_id,
                        applied_from_status=from_status,
                        applied_at=completed_at
                    )
                except ConstraintViolation:
                    # A racing insert of the same link; counts as already applied
                    inserted = False

                if inserted:
                    linked_ids.append(goal.id)
                else:
                    log_debug(
                        f"Entry {reading_entry_id} already counted toward goal {goal.id}"
                    )

            if not linked_ids:
                return []

            store.apply_counter_deltas(
                conn, linked_ids, delta=1, as_of=completed_at, updated_at=self._clock()
            )
            before = [goal for goal in open_goals if goal.id in linked_ids]
            changed = _status_changes(before, store.get_goals_by_ids(conn, linked_ids))

        log_info(
            f"Completion of entry {reading_entry_id} applied to {len(linked_ids)} goal(s) "
            f"for owner {owner_id}",
            prefix="📚"
        )
        for goal in changed:
            log_info(f"Goal {goal.id} completed ({goal.progress_count}/{goal.target_count})", prefix="🎯")

        return changed

    def reverse_completion(
        self,
        owner_id: str,
        reading_entry_id: str,
        as_of: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[Goal]:
        """
        Take back a finished book from every goal it counted toward.

        Completed goals that drop below target reopen if their deadline is
        still ahead of `as_of`; past the deadline they stay completed.
        Reversing an entry that was never applied changes nothing.

        Args:
            owner_id: Reader who unfinished the book
            reading_entry_id: The reading entry that is no longer finished
            as_of: Reference time for the deadline check (defaults to now)
            cancel_event: Checked before each attempt

        Returns:
            Goals whose status changed
        """
        return execute_with_retry(
            lambda: self._reverse_completion(owner_id, reading_entry_id, as_of),
            retry_config=self._retry_config,
            cancel_event=cancel_event
        )

    def _reverse_completion(
        self,
        owner_id: str,
        reading_entry_id: str,
        as_of: Optional[datetime]
    ) -> List[Goal]:
        store = self._store
        now = self._clock()
        as_of = ensure_utc(as_of) if as_of else now

        with store.transaction(owner_id=owner_id, reading_entry_id=reading_entry_id) as conn:
            goal_ids = store.delete_progress_links_by_entry(conn, reading_entry_id, owner_id)
            if not goal_ids:
                log_debug(f"Entry {reading_entry_id} was not counted toward any goal")
                return []

            before = store.get_goals_by_ids(conn, goal_ids)
            store.apply_counter_deltas(conn, goal_ids, delta=-1, as_of=as_of, updated_at=now)
            changed = _status_changes(before, store.get_goals_by_ids(conn, goal_ids))

        log_info(
            f"Completion of entry {reading_entry_id} reversed on {len(goal_ids)} goal(s) "
            f"for owner {owner_id}",
            prefix="↩️"
        )
        for goal in changed:
            log_info(f"Goal {goal.id} reopened ({goal.progress_count}/{goal.target_count})", prefix="🔄")

        return changed

    # =========================================================================
    # READING-STATUS TRACKER HOOKS
    # =========================================================================

    def on_book_completed(
        self,
        owner_id: str,
        reading_entry_id: str,
        book_id: str,
        completed_at_utc: datetime,
        from_status: Optional[str] = None
    ) -> List[Goal]:
        """Called by the tracker on every transition into finished."""
        return self.apply_completion(
            owner_id, reading_entry_id, book_id, completed_at_utc, from_status=from_status
        )

    def on_book_uncompleted(self, owner_id: str, reading_entry_id: str) -> List[Goal]:
        """Called by the tracker on every transition out of finished."""
        return self.reverse_completion(owner_id, reading_entry_id)


# Global engine instance
_progress_engine: Optional[GoalProgressEngine] = None


def get_progress_engine() -> GoalProgressEngine:
    """Get the global progress engine instance."""
    global _progress_engine
    if _progress_engine is None:
        _progress_engine = GoalProgressEngine()
    return _progress_engine


def init_progress_engine(store: Optional[GoalStore] = None) -> GoalProgressEngine:
    """Initialize the global progress engine."""
    global _progress_engine
    _progress_engine = GoalProgressEngine(store=store)
    return _progress_engine
