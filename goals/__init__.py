"""
Reading Goals - Goal System
Time-boxed reading goals whose progress follows finished books

The goal system gives readers the ability to:
- Set a target number of books to finish before a deadline
- Have every finished book count toward all of their open goals at once
- Take a book back (unfinish it) and have every goal follow
- See goals expire once their deadline passes

Service classes live in their own modules (goals.engine, goals.manager,
goals.queries, goals.sweeper, goals.store); this package exports the
shared domain types.
"""

from goals.models import (
    Goal,
    GoalStatus,
    ProgressLink,
    GoalDetail,
    GoalPage,
    calculate_bonus,
)

from goals.errors import (
    GoalError,
    ValidationError,
    NotFoundError,
    EditNotAllowedError,
    TransientStoreError,
    StoreError,
    ConstraintViolation,
    OperationCancelled,
)

from goals.deadline import (
    calculate_deadline,
    extend_deadline,
    resolve_timezone,
)


__all__ = [
    # Models
    'Goal',
    'GoalStatus',
    'ProgressLink',
    'GoalDetail',
    'GoalPage',
    'calculate_bonus',

    # Errors
    'GoalError',
    'ValidationError',
    'NotFoundError',
    'EditNotAllowedError',
    'TransientStoreError',
    'StoreError',
    'ConstraintViolation',
    'OperationCancelled',

    # Deadlines
    'calculate_deadline',
    'extend_deadline',
    'resolve_timezone',
]
