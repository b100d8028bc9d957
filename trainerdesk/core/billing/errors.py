"""
Error taxonomy for plan accounting.

Schedule conflicts are advisory in the pure detector (it returns an optional
student id); ScheduleConflictError only exists for callers that choose to
hard-block a conflicting write.
"""

from typing import Optional


class AccountingError(Exception):
    """Base class for all accounting errors."""
    pass


class InvalidPlanConfiguration(AccountingError):
    """
    A plan referenced by a payment lacks the field its kind requires.

    Raised before any mutation happens, so the account is left untouched.
    """

    def __init__(self, plan_id: str, reason: str) -> None:
        self.plan_id = plan_id
        self.reason = reason
        super().__init__(f"Plan {plan_id} is misconfigured: {reason}")


class AccountNotFoundError(AccountingError):
    """Raised when a student account doesn't exist."""
    pass


class PlanNotFoundError(AccountingError):
    """Raised when a plan id is not in the catalog."""
    pass


class ClassEventNotFoundError(AccountingError):
    """Raised when removing a class event that isn't in the history."""
    pass


class ScheduleConflictError(AccountingError):
    """Raised when a strict schedule write would overlap another student."""

    def __init__(self, conflicting_student_id: str) -> None:
        self.conflicting_student_id = conflicting_student_id
        super().__init__(
            f"Schedule overlaps with student {conflicting_student_id}"
        )


class PersistenceFailure(AccountingError):
    """Raised when the persistence collaborator can't complete a read or write."""
    pass


class ConcurrentModificationError(PersistenceFailure):
    """Raised when an atomic read-modify-write keeps losing to another writer."""

    def __init__(self, student_id: str, attempts: Optional[int] = None) -> None:
        self.student_id = student_id
        self.attempts = attempts
        super().__init__(
            f"Account {student_id} was modified concurrently"
            + (f" ({attempts} attempts)" if attempts else "")
        )


class NotificationFailure(AccountingError):
    """Raised when the notifier can't deliver a message."""
    pass
