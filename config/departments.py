"""Campus department registry.

Each ``DepartmentConfig`` carries the display name stored on complaints
(``assignedDept``), the staff login email prefix used to resolve a
department account to its department, and the complaint categories the
department normally handles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

__all__ = [
    "DepartmentConfig",
    "DEPARTMENTS",
    "UNASSIGNED",
    "EMAIL_PREFIX_MAP",
    "department_for_email",
    "department_for_category",
    "get_department_names",
]

UNASSIGNED: Final[str] = "Unassigned"


@dataclass(frozen=True, slots=True)
class DepartmentConfig:
    """Immutable descriptor for a single campus department."""

    name: str
    """Display name stored in ``assignedDept``."""

    email_prefix: str
    """Local part of the department's staff account email (``it@...``)."""

    categories: tuple[str, ...]
    """Complaint categories routed to this department by default."""


DEPARTMENTS: Final[dict[str, DepartmentConfig]] = {
    "IT Department": DepartmentConfig(
        name="IT Department",
        email_prefix="it",
        categories=("Network",),
    ),
    "Maintenance": DepartmentConfig(
        name="Maintenance",
        email_prefix="maintenance",
        categories=("Infrastructure",),
    ),
    "Hostel Affairs": DepartmentConfig(
        name="Hostel Affairs",
        email_prefix="hostel",
        categories=("Hostel", "Mess"),
    ),
    "Academics": DepartmentConfig(
        name="Academics",
        email_prefix="academics",
        categories=("Academic",),
    ),
    "Library": DepartmentConfig(
        name="Library",
        email_prefix="library",
        categories=(),
    ),
}

EMAIL_PREFIX_MAP: Final[dict[str, str]] = {
    dept.email_prefix: dept.name for dept in DEPARTMENTS.values()
}


def department_for_email(email: str) -> str | None:
    """Map a staff email to its department via the local-part prefix.

    Returns ``None`` when the prefix is unknown.
    """
    if not email or "@" not in email:
        return None
    prefix = email.split("@", 1)[0].strip().lower()
    return EMAIL_PREFIX_MAP.get(prefix)


def department_for_category(category: str) -> str:
    """Return the default department for a complaint category."""
    for dept in DEPARTMENTS.values():
        if category in dept.categories:
            return dept.name
    return UNASSIGNED


def get_department_names(*, include_unassigned: bool = True) -> list[str]:
    """Return every assignable department name."""
    names = list(DEPARTMENTS)
    if include_unassigned:
        names.append(UNASSIGNED)
    return names
