"""
Reading Goals - Domain Types
Goals, progress links, and read-side views
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from core.database import format_timestamp, parse_timestamp


class GoalStatus(str, Enum):
    """Lifecycle states for goals."""
    ACTIVE = "active"        # Counting completions
    COMPLETED = "completed"  # Target reached before the deadline
    EXPIRED = "expired"      # Deadline passed first (terminal)


def calculate_bonus(progress_count: int, target_count: int) -> int:
    """Books completed beyond the target."""
    return max(0, progress_count - target_count)


@dataclass
class Goal:
    """
    A time-boxed reading goal.

    Attributes:
        id: Database primary key
        owner_id: Reader who owns the goal
        name: Display name
        target_count: Books to finish
        progress_count: Finished books counted so far
        bonus_count: max(0, progress_count - target_count)
        status: active, completed, expired
        deadline_utc: Absolute deadline (aware UTC)
        deadline_timezone: IANA zone the deadline was anchored to
        completed_at: When the target was reached (set iff completed)
        created_at: When the goal was created
        updated_at: Last counter/status change
    """
    id: int
    owner_id: str
    name: str
    target_count: int
    progress_count: int
    bonus_count: int
    status: GoalStatus
    deadline_utc: datetime
    deadline_timezone: str
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "Goal":
        """Convert a database row to a Goal."""
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            target_count=row["target_count"],
            progress_count=row["progress_count"],
            bonus_count=row["bonus_count"],
            status=GoalStatus(row["status"]),
            deadline_utc=parse_timestamp(row["deadline_utc"]),
            deadline_timezone=row["deadline_timezone"],
            completed_at=parse_timestamp(row["completed_at"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def is_past_deadline(self, as_of: datetime) -> bool:
        """True once the deadline no longer lies in the future."""
        return self.deadline_utc <= as_of

    def effective_status(self, as_of: datetime) -> GoalStatus:
        """Status as of a point in time, independent of sweeper lag."""
        if self.status == GoalStatus.ACTIVE and self.is_past_deadline(as_of):
            return GoalStatus.EXPIRED
        return self.status

    def as_of(self, as_of: datetime) -> "Goal":
        """Copy of this goal with the effective status applied."""
        status = self.effective_status(as_of)
        if status == self.status:
            return self
        return replace(self, status=status)

    @property
    def progress_percentage(self) -> int:
        """Completion percentage, capped at 100."""
        return min(100, math.floor(self.progress_count * 100 / self.target_count))

    @property
    def has_bonus(self) -> bool:
        return self.bonus_count > 0

    @property
    def books_remaining(self) -> int:
        return max(0, self.target_count - self.progress_count)

    def days_remaining(self, as_of: datetime) -> int:
        """Whole days until the deadline, rounded up; 0 once it has passed."""
        seconds = (self.deadline_utc - as_of).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def to_dict(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Serialize for the transport layer, including derived fields."""
        payload = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "target_count": self.target_count,
            "progress_count": self.progress_count,
            "bonus_count": self.bonus_count,
            "status": self.status.value,
            "deadline_utc": format_timestamp(self.deadline_utc),
            "deadline_timezone": self.deadline_timezone,
            "completed_at": format_timestamp(self.completed_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "progress_percentage": self.progress_percentage,
            "has_bonus": self.has_bonus,
            "books_remaining": self.books_remaining,
        }
        if as_of is not None:
            payload["days_remaining"] = self.days_remaining(as_of)
        return payload


@dataclass
class ProgressLink:
    """
    Record that one finished reading entry counted toward one goal.

    Attributes:
        goal_id: Goal the completion was applied to
        reading_entry_id: Reading entry that was finished
        book_id: Book behind the reading entry
        applied_at: Completion time that was counted
        applied_from_status: Reading status the entry left (e.g. "reading")
    """
    goal_id: int
    reading_entry_id: str
    book_id: str
    applied_at: datetime
    applied_from_status: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "ProgressLink":
        return cls(
            goal_id=row["goal_id"],
            reading_entry_id=row["reading_entry_id"],
            book_id=row["book_id"],
            applied_at=parse_timestamp(row["applied_at"]),
            applied_from_status=row["applied_from_status"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "reading_entry_id": self.reading_entry_id,
            "book_id": self.book_id,
            "applied_at": format_timestamp(self.applied_at),
            "applied_from_status": self.applied_from_status,
        }


@dataclass
class GoalDetail:
    """A goal with the books that counted toward it."""
    goal: Goal
    links: List[ProgressLink] = field(default_factory=list)

    @property
    def book_ids(self) -> List[str]:
        return [link.book_id for link in self.links]


@dataclass
class GoalPage:
    """One page of an owner's goals."""
    goals: List[Goal]
    page: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return (self.page - 1) * self.page_size + len(self.goals) < self.total
