"""
Reading Goals - Error Types
Structured errors carrying owner/goal/reading-entry context
"""

from typing import Optional, List, Dict, Any


class GoalError(Exception):
    """
    Base class for all goal errors.

    Every error carries the identifiers needed to reproduce the failing call.
    Messages are written for callers; storage error text is never included
    (the underlying exception stays available on __cause__ for logs).
    """
    error_type = "goal_error"

    def __init__(
        self,
        message: str,
        owner_id: Optional[str] = None,
        goal_id: Optional[int] = None,
        reading_entry_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.owner_id = owner_id
        self.goal_id = goal_id
        self.reading_entry_id = reading_entry_id

    @property
    def context(self) -> Dict[str, Any]:
        """Identifiers attached to this error, omitting unset ones."""
        values = {
            "owner_id": self.owner_id,
            "goal_id": self.goal_id,
            "reading_entry_id": self.reading_entry_id,
        }
        return {key: value for key, value in values.items() if value is not None}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a response payload for the transport layer."""
        return {
            "error": self.error_type,
            "message": self.message,
            **self.context,
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ValidationError(GoalError):
    """Bad input, rejected before any store access."""
    error_type = "validation"

    def __init__(self, errors: List[str], **context):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}", **context)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class NotFoundError(GoalError):
    """Unknown goal, or a goal not owned by the caller."""
    error_type = "not_found"

    def __init__(self, message: str = "Goal not found", **context):
        super().__init__(message, **context)


class EditNotAllowedError(GoalError):
    """Mutation attempted on a goal that is no longer active."""
    error_type = "edit_not_allowed"

    def __init__(self, status: str, **context):
        self.status = status
        super().__init__(
            f"Cannot edit {status} goals. Only active goals can be modified.",
            **context
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["status"] = self.status
        return payload


class TransientStoreError(GoalError):
    """Lock timeout or connection failure. Safe to retry."""
    error_type = "transient"

    def __init__(self, message: str = "Goal store temporarily unavailable", **context):
        super().__init__(message, **context)


class StoreError(GoalError):
    """Storage failure that retrying will not fix (schema, corruption)."""
    error_type = "store"

    def __init__(self, message: str = "Goal store error", **context):
        super().__init__(message, **context)


class ConstraintViolation(GoalError):
    """A uniqueness/check constraint rejected a write."""
    error_type = "constraint"

    def __init__(self, message: str = "Constraint violation", **context):
        super().__init__(message, **context)


class OperationCancelled(GoalError):
    """Cancellation was requested before an attempt started."""
    error_type = "cancelled"

    def __init__(self, message: str = "Operation cancelled", **context):
        super().__init__(message, **context)
