"""
Reading Goals - Query Service
Read path reporting each goal's effective status without touching storage
"""

from datetime import datetime
from typing import Optional, Union, Callable

import config
from core.database import utc_now, ensure_utc
from goals.errors import NotFoundError, ValidationError
from goals.models import Goal, GoalStatus, GoalDetail, GoalPage
from goals.store import GoalStore


def parse_status_filter(status: Union[str, GoalStatus, None]) -> Optional[GoalStatus]:
    """Accept a status filter as enum or string; empty means no filter."""
    if status is None or status == "":
        return None
    if isinstance(status, GoalStatus):
        return status
    try:
        return GoalStatus(str(status).lower())
    except ValueError:
        valid = ", ".join(s.value for s in GoalStatus)
        raise ValidationError([f"Status must be one of: {valid}"]) from None


class GoalQueryService:
    """
    Read-only access to goals, scoped to their owner.

    A goal stored as active whose deadline has passed is reported as
    expired, so readers never depend on when the sweeper last ran.
    """

    def __init__(
        self,
        store: Optional[GoalStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store or GoalStore()
        self._clock = clock

    def _load_owned(self, owner_id: str, goal_id: int) -> Goal:
        goal = self._store.get_goal(goal_id)
        # Someone else's goal looks exactly like a missing one
        if goal is None or goal.owner_id != owner_id:
            raise NotFoundError(owner_id=owner_id, goal_id=goal_id)
        return goal

    def get_goal(self, owner_id: str, goal_id: int, as_of: Optional[datetime] = None) -> Goal:
        """Get one goal with its effective status."""
        as_of = ensure_utc(as_of) if as_of else self._clock()
        return self._load_owned(owner_id, goal_id).as_of(as_of)

    def get_goal_detail(
        self,
        owner_id: str,
        goal_id: int,
        as_of: Optional[datetime] = None
    ) -> GoalDetail:
        """Get one goal plus the books that counted toward it."""
        goal = self.get_goal(owner_id, goal_id, as_of)
        return GoalDetail(goal=goal, links=self._store.get_links_for_goal(goal_id))

    def list_goals(
        self,
        owner_id: str,
        status: Union[str, GoalStatus, None] = None,
        page: int = 1,
        page_size: int = config.GOAL_LIST_DEFAULT_PAGE_SIZE,
        as_of: Optional[datetime] = None
    ) -> GoalPage:
        """
        List an owner's goals.

        Sorted active, completed, expired (by effective status), then by
        deadline. The status filter also matches the effective status.

        Args:
            owner_id: Owner whose goals to list
            status: Optional effective-status filter
            page: 1-based page number
            page_size: Goals per page (at most GOAL_LIST_MAX_PAGE_SIZE)
            as_of: Reference time (defaults to now)
        """
        errors = []
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            errors.append("Page must be a positive integer")
        if (
            not isinstance(page_size, int) or isinstance(page_size, bool)
            or not 1 <= page_size <= config.GOAL_LIST_MAX_PAGE_SIZE
        ):
            errors.append(f"Page size must be between 1 and {config.GOAL_LIST_MAX_PAGE_SIZE}")
        if errors:
            raise ValidationError(errors, owner_id=owner_id)

        status_filter = parse_status_filter(status)
        as_of = ensure_utc(as_of) if as_of else self._clock()

        goals, total = self._store.list_goals_for_owner(
            owner_id,
            as_of,
            status=status_filter,
            limit=page_size,
            offset=(page - 1) * page_size
        )

        return GoalPage(
            goals=[goal.as_of(as_of) for goal in goals],
            page=page,
            page_size=page_size,
            total=total
        )
