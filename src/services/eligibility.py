"""Time-windowed eligibility rules for owner actions on a complaint.

The two core predicates are pure functions of the complaint's status,
timestamps and escalation flag plus the caller's relation to it:

* :func:`can_reopen` -- the owning student may reopen a ``Resolved``
  complaint for ``reopen_window`` after ``resolvedAt`` (inclusive).
* :func:`can_escalate` -- the owning student may escalate a complaint that
  is not ``Resolved`` and not yet escalated once ``escalate_after`` has
  elapsed since ``createdAt`` (inclusive).

Windows are elapsed durations compared at second granularity; there is no
calendar-day or timezone rounding.  :class:`EligibilityRules` binds the
configured windows and a clock, and returns :class:`Decision` objects
that carry a user-facing explanation when an action is refused.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Final

import structlog

from src.models.enums import ComplaintStatus, Role
from src.services.errors import EligibilityError

if TYPE_CHECKING:
    from config.settings import Settings
    from src.models.complaint import Complaint
    from src.models.context import RoleContext

logger = structlog.get_logger(__name__)

DEFAULT_REOPEN_WINDOW: Final[timedelta] = timedelta(days=7)
DEFAULT_ESCALATE_AFTER: Final[timedelta] = timedelta(days=3)


def _elapsed_seconds(now: datetime, since: datetime) -> int:
    # Whole seconds, so the boundary second itself is still inside the window.
    return int((now - since).total_seconds())


def can_reopen(
    status: ComplaintStatus,
    resolved_at: datetime | None,
    *,
    is_owner_student: bool,
    now: datetime,
    window: timedelta = DEFAULT_REOPEN_WINDOW,
) -> bool:
    if not is_owner_student or status is not ComplaintStatus.RESOLVED or resolved_at is None:
        return False
    return _elapsed_seconds(now, resolved_at) <= int(window.total_seconds())


def can_escalate(
    status: ComplaintStatus,
    created_at: datetime | None,
    is_escalated: bool,
    *,
    is_owner_student: bool,
    now: datetime,
    after: timedelta = DEFAULT_ESCALATE_AFTER,
) -> bool:
    if not is_owner_student or status is ComplaintStatus.RESOLVED or is_escalated:
        return False
    if created_at is None:
        return False
    return _elapsed_seconds(now, created_at) >= int(after.total_seconds())


# ---------------------------------------------------------------------------
# Bound rules with explanations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    rule: str
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed

    def require(self) -> None:
        """Raise :class:`EligibilityError` when the decision is a refusal."""
        if not self.allowed:
            raise EligibilityError(self.rule, self.reason)


@dataclass(frozen=True, slots=True)
class EligibilityWindows:
    reopen: timedelta = DEFAULT_REOPEN_WINDOW
    escalate_after: timedelta = DEFAULT_ESCALATE_AFTER

    @classmethod
    def from_settings(cls, settings: Settings) -> EligibilityWindows:
        return cls(
            reopen=timedelta(days=settings.reopen_window_days),
            escalate_after=timedelta(days=settings.escalation_after_days),
        )


class EligibilityRules:
    """Owner-action rules bound to configured windows and a clock."""

    __slots__ = ("_clock", "_windows")

    def __init__(
        self,
        windows: EligibilityWindows | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._windows = windows or EligibilityWindows()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def windows(self) -> EligibilityWindows:
        return self._windows

    def now(self) -> datetime:
        return self._clock()

    def reopen(self, complaint: Complaint, ctx: RoleContext, now: datetime | None = None) -> Decision:
        now = now or self._clock()
        if not ctx.owns(complaint):
            return Decision(False, "reopen", "Only the student who filed this complaint can re-open it.")
        if complaint.status is not ComplaintStatus.RESOLVED:
            return Decision(False, "reopen", "Only resolved complaints can be re-opened.")
        allowed = can_reopen(
            complaint.status,
            complaint.resolved_at,
            is_owner_student=True,
            now=now,
            window=self._windows.reopen,
        )
        if not allowed:
            days = self._windows.reopen.days
            return Decision(False, "reopen", f"Complaints can only be re-opened within {days} days of resolution.")
        return Decision(True, "reopen")

    def escalate(self, complaint: Complaint, ctx: RoleContext, now: datetime | None = None) -> Decision:
        now = now or self._clock()
        if not ctx.owns(complaint):
            return Decision(False, "escalate", "Only the student who filed this complaint can escalate it.")
        if complaint.status is ComplaintStatus.RESOLVED:
            return Decision(False, "escalate", "Resolved complaints cannot be escalated.")
        if complaint.is_escalated:
            return Decision(False, "escalate", "This complaint has already been escalated.")
        allowed = can_escalate(
            complaint.status,
            complaint.created_at,
            complaint.is_escalated,
            is_owner_student=True,
            now=now,
            after=self._windows.escalate_after,
        )
        if not allowed:
            days = self._windows.escalate_after.days
            return Decision(
                False,
                "escalate",
                f"A complaint can be escalated once it has been open for {days} days.",
            )
        return Decision(True, "escalate")

    @staticmethod
    def rate(complaint: Complaint, ctx: RoleContext) -> Decision:
        if not ctx.owns(complaint):
            return Decision(False, "rate", "Only the student who filed this complaint can rate it.")
        if complaint.status is not ComplaintStatus.RESOLVED:
            return Decision(False, "rate", "A complaint can be rated once it is resolved.")
        if complaint.rating is not None:
            return Decision(False, "rate", "This complaint has already been rated.")
        return Decision(True, "rate")

    @staticmethod
    def delete(complaint: Complaint, ctx: RoleContext) -> Decision:
        if ctx.owns(complaint) or ctx.role is Role.ADMIN:
            return Decision(True, "delete")
        return Decision(False, "delete", "Only the owner or an administrator can delete a complaint.")
