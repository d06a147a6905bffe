"""
Reading Goals - Goal Manager
Create, read, edit and delete operations exposed to the transport layer
"""

from datetime import datetime
from typing import Optional, Union, Callable, List, TypeVar

import config
from concurrency.db_retry import execute_with_retry, RetryConfig
from core.database import utc_now, ensure_utc
from core.logger import log_info
from goals.deadline import calculate_deadline, extend_deadline, resolve_timezone
from goals.errors import ValidationError, NotFoundError, EditNotAllowedError
from goals.models import Goal, GoalStatus, GoalDetail, GoalPage
from goals.queries import GoalQueryService
from goals.store import GoalStore

T = TypeVar("T")


def _is_whole_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_target(target_count, errors: List[str]) -> None:
    if not _is_whole_number(target_count) or target_count < config.GOAL_TARGET_MIN:
        errors.append("Target count must be a positive integer")
    elif target_count > config.GOAL_TARGET_MAX:
        errors.append(f"Target count cannot exceed {config.GOAL_TARGET_MAX}")


class GoalManager:
    """
    Manages goal lifecycle on behalf of an authenticated owner.

    The owner_id always comes from the identity layer; a goal owned by
    someone else is reported as not found.
    """

    def __init__(
        self,
        store: Optional[GoalStore] = None,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store or GoalStore()
        self._queries = GoalQueryService(self._store, clock=clock)
        self._retry_config = retry_config
        self._clock = clock

    def _retry(self, func: Callable[[], T]) -> T:
        """Run one store operation under this manager's retry settings."""
        return execute_with_retry(func, retry_config=self._retry_config)

    def create_goal(
        self,
        owner_id: str,
        name: str,
        target_count: int,
        duration_days: int,
        timezone: str,
        now: Optional[datetime] = None
    ) -> Goal:
        """
        Create a new active goal.

        Args:
            owner_id: Authenticated owner
            name: Display name (trimmed, 1-255 characters)
            target_count: Books to finish, 1-9999
            duration_days: Days to complete, at least 1
            timezone: IANA timezone anchoring the deadline
            now: Creation time (defaults to now)

        Returns:
            The created goal

        Raises:
            ValidationError: On bad input or a deadline already in the past
        """
        now = ensure_utc(now) if now else self._clock()
        errors = []

        if not isinstance(name, str) or not name.strip():
            errors.append("Goal name is required")
        elif len(name.strip()) > config.GOAL_NAME_MAX_LENGTH:
            errors.append(f"Goal name cannot exceed {config.GOAL_NAME_MAX_LENGTH} characters")

        _validate_target(target_count, errors)

        if not _is_whole_number(duration_days) or duration_days < config.GOAL_DURATION_MIN_DAYS:
            errors.append("Days to complete must be at least 1 day")

        try:
            resolve_timezone(timezone)
        except ValidationError as e:
            errors.extend(e.errors)

        if errors:
            raise ValidationError(errors, owner_id=owner_id)

        deadline_utc = calculate_deadline(now, duration_days, timezone)
        if deadline_utc <= now:
            raise ValidationError(
                ["Deadline must be in the future. Please choose a longer timeframe."],
                owner_id=owner_id
            )

        goal = self._retry(lambda: self._store.create_goal(
            owner_id=owner_id,
            name=name.strip(),
            target_count=target_count,
            deadline_utc=deadline_utc,
            deadline_timezone=timezone,
            created_at=now
        ))

        log_info(
            f"Created goal {goal.id} for owner {owner_id}: {goal.name} "
            f"({target_count} books by {deadline_utc.isoformat()})",
            prefix="🎯"
        )
        return goal

    def get_goal(self, owner_id: str, goal_id: int) -> Goal:
        """Get a goal with its effective status."""
        return self._retry(lambda: self._queries.get_goal(owner_id, goal_id))

    def get_goal_detail(self, owner_id: str, goal_id: int) -> GoalDetail:
        """Get a goal plus the books that counted toward it."""
        return self._retry(lambda: self._queries.get_goal_detail(owner_id, goal_id))

    def list_goals(
        self,
        owner_id: str,
        status: Union[str, GoalStatus, None] = None,
        page: int = 1,
        page_size: int = config.GOAL_LIST_DEFAULT_PAGE_SIZE
    ) -> GoalPage:
        """List an owner's goals, optionally filtered by status."""
        return self._retry(
            lambda: self._queries.list_goals(owner_id, status=status, page=page, page_size=page_size)
        )

    def update_goal(
        self,
        owner_id: str,
        goal_id: int,
        target_count: Optional[int] = None,
        extend_deadline_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Goal:
        """
        Edit an active goal's target and/or push out its deadline.

        Lowering the target to or below current progress completes the goal
        right away, exactly as a completion event would.

        Raises:
            ValidationError: On bad input or nothing to update
            NotFoundError: If the goal does not exist or is not the owner's
            EditNotAllowedError: If the goal is completed or expired
        """
        context = {"owner_id": owner_id, "goal_id": goal_id}
        errors = []

        if target_count is None and extend_deadline_days is None:
            errors.append("No valid fields to update")
        if target_count is not None:
            _validate_target(target_count, errors)
        if extend_deadline_days is not None and (
            not _is_whole_number(extend_deadline_days) or extend_deadline_days < 1
        ):
            errors.append("Days to add must be at least 1")

        if errors:
            raise ValidationError(errors, **context)

        now = ensure_utc(now) if now else self._clock()
        return self._retry(
            lambda: self._update_goal(owner_id, goal_id, target_count, extend_deadline_days, now)
        )

    def _update_goal(
        self,
        owner_id: str,
        goal_id: int,
        target_count: Optional[int],
        extend_deadline_days: Optional[int],
        now: datetime
    ) -> Goal:
        store = self._store

        with store.transaction(owner_id=owner_id, goal_id=goal_id) as conn:
            goal = store.get_goal(goal_id, conn=conn)
            if goal is None or goal.owner_id != owner_id:
                raise NotFoundError(owner_id=owner_id, goal_id=goal_id)

            status = goal.effective_status(now)
            if status != GoalStatus.ACTIVE:
                raise EditNotAllowedError(status.value, owner_id=owner_id, goal_id=goal_id)

            deadline_utc = goal.deadline_utc
            if extend_deadline_days is not None:
                deadline_utc = extend_deadline(deadline_utc, extend_deadline_days)

            store.update_goal(
                conn,
                goal_id,
                target_count=target_count if target_count is not None else goal.target_count,
                deadline_utc=deadline_utc,
                as_of=now
            )
            updated = store.get_goal(goal_id, conn=conn)

        log_info(
            f"Updated goal {goal_id} for owner {owner_id} "
            f"(target={updated.target_count}, status={updated.status.value})",
            prefix="✏️"
        )
        return updated

    def delete_goal(self, owner_id: str, goal_id: int) -> None:
        """
        Delete a goal in any status, along with its progress links.

        Raises:
            NotFoundError: If the goal does not exist or is not the owner's
        """
        self._retry(lambda: self._delete_goal(owner_id, goal_id))
        log_info(f"Deleted goal {goal_id} for owner {owner_id}", prefix="🗑️")

    def _delete_goal(self, owner_id: str, goal_id: int) -> None:
        store = self._store

        with store.transaction(owner_id=owner_id, goal_id=goal_id) as conn:
            goal = store.get_goal(goal_id, conn=conn)
            if goal is None or goal.owner_id != owner_id:
                raise NotFoundError(owner_id=owner_id, goal_id=goal_id)
            store.delete_goal(goal_id, conn=conn)


# Global manager instance
_goal_manager: Optional[GoalManager] = None


def get_goal_manager() -> GoalManager:
    """Get the global goal manager instance."""
    global _goal_manager
    if _goal_manager is None:
        _goal_manager = GoalManager()
    return _goal_manager


def init_goal_manager(store: Optional[GoalStore] = None) -> GoalManager:
    """Initialize the global goal manager."""
    global _goal_manager
    _goal_manager = GoalManager(store=store)
    return _goal_manager
