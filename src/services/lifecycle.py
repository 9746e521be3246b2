"""Complaint status machine.

Pure transition logic -- no I/O.  Every mutation that can change a
complaint's status asks this module for a :class:`Transition` and writes
exactly what it returns.

States::

    Pending --> In Progress / Responded --> Resolved --> Re-opened
       ^                                                    |
       +------------- reply-driven transitions -------------+

* A staff reply moves any active complaint to ``Responded``.
* An owner reply moves any active complaint to ``User Responded``.
* Staff may set any status explicitly; entering ``Resolved`` stamps
  ``resolvedAt`` and asks for a "resolved" notification.
* The owner may reopen (``Re-opened``) within the reopen window.

``Resolved`` is the only state that is not *active*: replies on a
resolved complaint are appended to the thread but leave the status
alone, so the owner has to reopen it to put it back into handling.
Nothing is truly terminal; the machine can cycle indefinitely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from src.models.enums import ComplaintStatus

ACTIVE_STATUSES: Final[frozenset[ComplaintStatus]] = frozenset(
    s for s in ComplaintStatus if s is not ComplaintStatus.RESOLVED
)

# Four-step progress tracker shown to students.
PROGRESS_STEPS: Final[tuple[ComplaintStatus, ...]] = (
    ComplaintStatus.PENDING,
    ComplaintStatus.IN_PROGRESS,
    ComplaintStatus.RESPONDED,
    ComplaintStatus.RESOLVED,
)


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of applying one trigger to a status."""

    previous: ComplaintStatus
    status: ComplaintStatus
    stamp_resolved_at: bool = False
    notify_resolved: bool = False

    @property
    def changed(self) -> bool:
        return self.previous is not self.status


@dataclass(frozen=True, slots=True)
class ProgressStage:
    index: int
    label: str
    awaiting_staff: bool
    percent: float


def is_active(status: ComplaintStatus) -> bool:
    return status in ACTIVE_STATUSES


def on_reply(current: ComplaintStatus, *, by_staff: bool) -> Transition:
    """Status after a reply; computed from who replied, never from a stale read."""
    if not is_active(current):
        return Transition(previous=current, status=current)
    target = ComplaintStatus.RESPONDED if by_staff else ComplaintStatus.USER_RESPONDED
    return Transition(previous=current, status=target)


def on_staff_edit(
    current: ComplaintStatus,
    new: ComplaintStatus,
    *,
    has_resolved_at: bool = True,
) -> Transition:
    """Explicit status change by staff; any enum value is allowed.

    ``has_resolved_at=False`` lets a document that is already ``Resolved``
    but was never stamped get its ``resolvedAt`` on the next edit.
    """
    entering_resolved = new is ComplaintStatus.RESOLVED and current is not ComplaintStatus.RESOLVED
    return Transition(
        previous=current,
        status=new,
        stamp_resolved_at=entering_resolved or (new is ComplaintStatus.RESOLVED and not has_resolved_at),
        notify_resolved=entering_resolved,
    )


def on_reopen(current: ComplaintStatus) -> Transition:
    """Owner reopen.  Eligibility is checked separately; ``resolvedAt`` is kept."""
    return Transition(previous=current, status=ComplaintStatus.REOPENED)


def progress_stage(status: ComplaintStatus) -> ProgressStage:
    """Map a status onto the four-step student progress tracker.

    ``User Responded`` shows as ``Responded`` and flags that the next move
    is on staff; ``Re-opened`` restarts at ``In Progress``.
    """
    if status is ComplaintStatus.USER_RESPONDED:
        base = ComplaintStatus.RESPONDED
    elif status is ComplaintStatus.REOPENED:
        base = ComplaintStatus.IN_PROGRESS
    else:
        base = status
    index = PROGRESS_STEPS.index(base)
    return ProgressStage(
        index=index,
        label=base.value,
        awaiting_staff=status is ComplaintStatus.USER_RESPONDED,
        percent=round((index + 0.5) / len(PROGRESS_STEPS) * 100, 1),
    )
