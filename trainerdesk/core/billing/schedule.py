"""
Weekly schedule conflict detection.

Pure functions: nothing here reads or writes storage, so it is safe to run
speculatively before a schedule is saved. Whether a conflict blocks the
write or only warns is the caller's decision.
"""

from typing import Iterable, Optional, Sequence

from .models import StudentAccount, TimeSlot


Roster = Iterable[tuple[str, Sequence[Optional[TimeSlot]]]]


def _usable(slot: Optional[TimeSlot]) -> bool:
    return slot is not None and slot.start_minutes < slot.end_minutes


def find_conflict(
    candidate_slots: Sequence[Optional[TimeSlot]],
    exclude_student_id: Optional[str],
    roster: Roster,
) -> Optional[str]:
    """
    Return the id of the first roster student whose slots overlap the candidate.

    The student being edited is passed as exclude_student_id so their
    current schedule isn't reported as a conflict with itself. When several
    students overlap, which one is returned follows roster order and
    callers shouldn't rely on it.
    """
    candidates = [slot for slot in candidate_slots if _usable(slot)]
    if not candidates:
        return None

    for student_id, slots in roster:
        if exclude_student_id is not None and student_id == exclude_student_id:
            continue
        for existing in slots:
            if not _usable(existing):
                continue
            if any(candidate.overlaps(existing) for candidate in candidates):
                return student_id

    return None


def roster_of(accounts: Iterable[StudentAccount]) -> list[tuple[str, list[TimeSlot]]]:
    """Project accounts onto the (student_id, slots) pairs the detector scans."""
    return [(account.id, account.schedule) for account in accounts]
