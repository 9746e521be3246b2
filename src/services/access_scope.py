"""Role-scoped access to the complaint collection.

:func:`scope_for` maps a :class:`RoleContext` to the filters every read
of the ``complaints`` collection must carry:

=============  ==========================================
role           filters
=============  ==========================================
student        ``userId == <caller uid>``
department     ``assignedDept == <resolved department>``
admin          none (the only unscoped reader)
=============  ==========================================

A department context whose name has not resolved yet yields
:class:`ScopeNotReady`, one whose resolution failed is refused with
:class:`AccessDenied`; an empty filter list is never produced for a
non-admin role.  :class:`RoleResolver` builds the ``RoleContext`` from a
verified identity, including the department side lookup (email prefix
first, ``users/{uid}`` profile second).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from config.departments import DEPARTMENTS, department_for_email
from src.models.context import DepartmentResolution, Identity, ResolutionState, RoleContext
from src.models.enums import ComplaintStatus, Role
from src.services.errors import AccessDenied, ScopeNotReady, StoreError
from src.services.store.base import FieldFilter

if TYPE_CHECKING:
    from src.models.complaint import Complaint
    from src.services.store.base import DocumentStore

logger = structlog.get_logger(__name__)

COMPLAINTS: Final[str] = "complaints"
USERS: Final[str] = "users"

OWNER_FIELD: Final[str] = "userId"
DEPARTMENT_FIELD: Final[str] = "assignedDept"
STATUS_FIELD: Final[str] = "status"


@dataclass(frozen=True, slots=True)
class AccessScope:
    """Immutable filter set for one role; AND-ed together by the store."""

    role: Role
    filters: tuple[FieldFilter, ...]

    def __post_init__(self) -> None:
        if self.role is Role.ADMIN:
            if self.filters:
                raise ValueError("admin scope carries no filters")
            return
        expected = OWNER_FIELD if self.role is Role.STUDENT else DEPARTMENT_FIELD
        if len(self.filters) != 1 or self.filters[0].field != expected or self.filters[0].op != "==":
            raise ValueError(f"{self.role} scope needs exactly one {expected} equality filter")
        if not self.filters[0].value:
            raise ValueError(f"{self.role} scope filter has no value")

    @property
    def key(self) -> str:
        """Stable identifier, used for cache keys and logging."""
        if not self.filters:
            return self.role.value
        return f"{self.role.value}:{self.filters[0].value}"

    def with_status(self, status: ComplaintStatus | None) -> tuple[FieldFilter, ...]:
        if status is None:
            return self.filters
        return (*self.filters, FieldFilter(STATUS_FIELD, "==", status.value))

    def admits(self, complaint: Complaint) -> bool:
        """True when *complaint* would be returned by a query under this scope."""
        return all(f.matches(complaint.to_document()) for f in self.filters)


def scope_for(ctx: RoleContext) -> AccessScope:
    """Build the scope for *ctx*.  Stateless and deterministic."""
    if ctx.role is Role.STUDENT:
        if not ctx.uid:
            raise AccessDenied("No identity for student scope", operation="scope")
        return AccessScope(Role.STUDENT, (FieldFilter(OWNER_FIELD, "==", ctx.uid),))

    if ctx.role is Role.DEPARTMENT:
        if ctx.department.state is ResolutionState.FAILED:
            raise AccessDenied(
                f"Department for {ctx.email or ctx.uid} could not be resolved: {ctx.department.reason}",
                operation="scope",
            )
        department = ctx.department_name
        if department is None:
            raise ScopeNotReady(f"Department for {ctx.email or ctx.uid} is not resolved yet")
        return AccessScope(Role.DEPARTMENT, (FieldFilter(DEPARTMENT_FIELD, "==", department),))

    return AccessScope(Role.ADMIN, ())


def scopes_seeing(complaint_doc: dict[str, Any]) -> list[AccessScope]:
    """Every scope under which a complaint with these fields is visible."""
    scopes = [AccessScope(Role.ADMIN, ())]
    owner = complaint_doc.get(OWNER_FIELD)
    if owner:
        scopes.append(AccessScope(Role.STUDENT, (FieldFilter(OWNER_FIELD, "==", owner),)))
    department = complaint_doc.get(DEPARTMENT_FIELD)
    if department:
        scopes.append(AccessScope(Role.DEPARTMENT, (FieldFilter(DEPARTMENT_FIELD, "==", department),)))
    return scopes


# ---------------------------------------------------------------------------
# Identity -> RoleContext
# ---------------------------------------------------------------------------


class RoleResolver:
    """Turns a verified identity into a :class:`RoleContext`.

    Resolution order:

    1. ``admin`` custom claim -> admin.
    2. ``department`` custom claim -> department.
    3. ``users/{uid}`` profile -> its ``role``, gated on ``status``
       (``pending`` and ``rejected`` accounts are refused).

    Department accounts then go through :meth:`resolve_department`.
    """

    __slots__ = ("_require_verified_email", "_store")

    def __init__(self, store: DocumentStore, *, require_verified_email: bool = True) -> None:
        self._store = store
        self._require_verified_email = require_verified_email

    async def resolve(self, identity: Identity) -> RoleContext:
        if not identity.uid:
            raise AccessDenied("Not signed in", operation="resolve_role")

        claims = identity.claims
        if claims.get("admin") is True:
            return self._context(Role.ADMIN, identity)
        if claims.get("department") is True:
            return await self.resolve_department(self._context(Role.DEPARTMENT, identity))

        profile = await self._load_profile(identity.uid)
        if profile is None:
            logger.warning("access.profile_missing", uid=identity.uid)
            raise AccessDenied("Account is awaiting approval", operation="resolve_role")

        status = profile.get("status", "approved")
        if status == "pending":
            raise AccessDenied("Account is awaiting approval", operation="resolve_role")
        if status == "rejected":
            raise AccessDenied("Account has been rejected", operation="resolve_role")

        try:
            role = Role(profile.get("role") or Role.STUDENT)
        except ValueError:
            logger.info("access.role_without_complaint_access", uid=identity.uid, role=profile.get("role"))
            raise AccessDenied("This account cannot access complaints", operation="resolve_role") from None

        if role is Role.STUDENT and self._require_verified_email and not identity.email_verified:
            raise AccessDenied("Email address is not verified", operation="resolve_role")

        ctx = self._context(role, identity)
        if role is Role.DEPARTMENT:
            return await self.resolve_department(ctx, profile=profile)
        return ctx

    async def resolve_department(
        self,
        ctx: RoleContext,
        *,
        profile: dict[str, Any] | None = None,
    ) -> RoleContext:
        """Attach a department resolution to a department context.

        Never raises.  An unknown department yields a ``FAILED`` resolution,
        which :func:`scope_for` refuses outright; a store error while reading
        the profile leaves the context unresolved so the caller can retry.
        """
        if ctx.role is not Role.DEPARTMENT:
            return ctx

        department = department_for_email(ctx.email)
        if department is not None:
            logger.debug("access.department_from_email", uid=ctx.uid, department=department)
            return ctx.with_department(DepartmentResolution.resolved(department))

        if profile is None:
            try:
                profile = await self._load_profile(ctx.uid)
            except StoreError:
                logger.warning("access.department_lookup_failed", uid=ctx.uid, exc_info=True)
                return ctx

        department = (profile or {}).get("department")
        if department in DEPARTMENTS:
            logger.debug("access.department_from_profile", uid=ctx.uid, department=department)
            return ctx.with_department(DepartmentResolution.resolved(department))

        logger.warning("access.department_unknown", uid=ctx.uid, email=ctx.email)
        return ctx.with_department(DepartmentResolution.failed("unknown department"))

    async def _load_profile(self, uid: str) -> dict[str, Any] | None:
        doc = await self._store.get(USERS, uid)
        return doc.data if doc is not None else None

    @staticmethod
    def _context(role: Role, identity: Identity) -> RoleContext:
        return RoleContext(
            role=role,
            uid=identity.uid,
            email=identity.email,
            display_name=identity.display_name,
        )
