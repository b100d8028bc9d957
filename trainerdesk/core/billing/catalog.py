"""
Read-only plan lookup.

The catalog is built from whatever the persistence layer returns and is
never written through. Plan edits happen elsewhere and only affect the
next renewal, since accounts hold balances, not copies of plan terms.
"""

from typing import Iterable, Iterator, Optional

from .errors import PlanNotFoundError
from .models import Plan


class PlanCatalog:
    """Plans indexed by id."""

    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._plans: dict[str, Plan] = {plan.id: plan for plan in plans}

    def get(self, plan_id: str) -> Plan:
        try:
            return self._plans[plan_id]
        except KeyError:
            raise PlanNotFoundError(f"Plan {plan_id} not found")

    def find(self, plan_id: Optional[str]) -> Optional[Plan]:
        """Like get(), but a missing or unset id gives None."""
        if not plan_id:
            return None
        return self._plans.get(plan_id)

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)
