"""Caller identity and role context.

``RoleContext`` is an explicit value built once per session and passed
into every scoping, paging and mutation call.  Department accounts carry
a ``DepartmentResolution`` that moves from ``UNRESOLVED`` to either
``RESOLVED`` (with a department name) or ``FAILED``; only a resolved
department may be used to scope a query.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from src.models.enums import Role

if TYPE_CHECKING:
    from src.models.complaint import Complaint


class ResolutionState(StrEnum):
    __slots__ = ()

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DepartmentResolution:
    state: ResolutionState = ResolutionState.UNRESOLVED
    department: str | None = None
    reason: str = ""

    @classmethod
    def unresolved(cls) -> DepartmentResolution:
        return cls()

    @classmethod
    def resolved(cls, department: str) -> DepartmentResolution:
        if not department:
            raise ValueError("a resolved department needs a name")
        return cls(state=ResolutionState.RESOLVED, department=department)

    @classmethod
    def failed(cls, reason: str) -> DepartmentResolution:
        return cls(state=ResolutionState.FAILED, reason=reason)

    @property
    def is_resolved(self) -> bool:
        return self.state is ResolutionState.RESOLVED


@dataclass(frozen=True, slots=True)
class Identity:
    """Verified session identity as reported by the identity provider."""

    uid: str
    email: str = ""
    display_name: str = ""
    email_verified: bool = False
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RoleContext:
    role: Role
    uid: str
    email: str = ""
    display_name: str = ""
    department: DepartmentResolution = DepartmentResolution()

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff

    @property
    def department_name(self) -> str | None:
        """Department name, only once resolution has succeeded."""
        if self.role is Role.DEPARTMENT and self.department.is_resolved:
            return self.department.department
        return None

    def owns(self, complaint: Complaint) -> bool:
        """True when the caller is the student who filed *complaint*."""
        return self.role is Role.STUDENT and bool(self.uid) and complaint.user_id == self.uid

    def with_department(self, resolution: DepartmentResolution) -> RoleContext:
        return dataclasses.replace(self, department=resolution)

    @property
    def author_label(self) -> str:
        """Display name shown on replies written by this caller."""
        if self.role is Role.STUDENT:
            return "Student"
        return f"{self.role.value.capitalize()} Admin"
