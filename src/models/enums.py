from __future__ import annotations

from enum import StrEnum
from typing import Final


class ComplaintStatus(StrEnum):
    __slots__ = ()

    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    RESPONDED = "Responded"
    USER_RESPONDED = "User Responded"
    RESOLVED = "Resolved"
    REOPENED = "Re-opened"


class Priority(StrEnum):
    __slots__ = ()

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# priorityLevel is stored alongside priority so the store can sort on it.
PRIORITY_LEVELS: Final[dict[Priority, int]] = {
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class Category(StrEnum):
    __slots__ = ()

    HOSTEL = "Hostel"
    MESS = "Mess"
    NETWORK = "Network"
    ACADEMIC = "Academic"
    INFRASTRUCTURE = "Infrastructure"
    GENERAL = "General"  # legacy default written before AI triage existed
    OTHER = "Other"


class Role(StrEnum):
    """Roles that can read the complaint collection."""

    __slots__ = ()

    STUDENT = "student"
    DEPARTMENT = "department"
    ADMIN = "admin"

    @property
    def is_staff(self) -> bool:
        return self is not Role.STUDENT


class StatusFilter(StrEnum):
    """Status selector for list queries; ``ALL`` adds no status filter."""

    __slots__ = ()

    ALL = "All"
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    RESPONDED = "Responded"
    USER_RESPONDED = "User Responded"
    RESOLVED = "Resolved"
    REOPENED = "Re-opened"

    @property
    def status(self) -> ComplaintStatus | None:
        if self is StatusFilter.ALL:
            return None
        return ComplaintStatus(self.value)
