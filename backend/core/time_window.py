"""
TIME-WINDOW MUTATION POLICY

One predicate shared by transactions, projects and project phases:

- admin:  may always mutate
- agent:  may mutate records they are the assigned agent of (no time limit)
- client: may mutate records they own, for one hour after creation

The window is checked against the injected clock at the moment of every
request; nothing about it is stored.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging

from core.clock import Clock
from core.errors import ForbiddenError
from core.roles import Principal, Role

logger = logging.getLogger(__name__)

CLIENT_MUTATION_WINDOW = timedelta(milliseconds=3_600_000)


@dataclass(frozen=True)
class MutableRecord:
    """The facts the policy needs about any record."""
    owner_id: Optional[int]
    created_at: Optional[datetime]
    assignee_id: Optional[int] = None


class TimeWindowPolicy:

    def __init__(self, clock: Clock, window: timedelta = CLIENT_MUTATION_WINDOW):
        self.clock = clock
        self.window = window

    def elapsed(self, created_at: datetime) -> timedelta:
        return self.clock.now() - created_at

    def within_window(self, created_at: Optional[datetime]) -> bool:
        if created_at is None:
            return False
        return self.elapsed(created_at) <= self.window

    def remaining(self, created_at: Optional[datetime]) -> timedelta:
        """Time left in the client window, never negative."""
        if created_at is None:
            return timedelta(0)
        return max(timedelta(0), self.window - self.elapsed(created_at))

    def can_mutate(self, record: MutableRecord, principal: Principal) -> bool:
        role = principal.role
        if role is Role.ADMIN:
            return True
        if role is Role.AGENT:
            return record.assignee_id is not None and record.assignee_id == principal.user_id
        if role is Role.CLIENT:
            return record.owner_id == principal.user_id and self.within_window(record.created_at)
        raise ValueError(f"Unhandled role: {role!r}")

    def ensure_can_mutate(self, record: MutableRecord, principal: Principal, entity: str) -> None:
        if self.can_mutate(record, principal):
            return

        logger.info(
            f"[TIME_WINDOW] Denied {principal.role.value}:{principal.user_id} on {entity} "
            f"(owner={record.owner_id}, assignee={record.assignee_id})"
        )
        if principal.role is Role.CLIENT and record.owner_id == principal.user_id:
            raise ForbiddenError(
                f"Clients may only modify a {entity} within one hour of its creation",
                {"window_seconds": int(self.window.total_seconds())}
            )
        raise ForbiddenError(f"Not allowed to modify this {entity}")
