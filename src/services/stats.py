"""Complaint counters and analytics.

Counts come from independent server-side count queries under the same
:class:`~src.services.access_scope.AccessScope` the list uses, never from
the loaded page.  ``pending`` is ``total - resolved``: it means "not yet
resolved", not the ``Pending`` status, and it will drift if more
terminal statuses are ever added.

A failed count (permission denied or transient) is logged and read as
zero; the list query is where access errors are reported to the user.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from config.departments import UNASSIGNED
from src.models.complaint import Complaint
from src.models.enums import ComplaintStatus
from src.services.access_scope import COMPLAINTS, STATUS_FIELD, AccessScope, scopes_seeing
from src.services.cache import stable_key
from src.services.errors import StoreError
from src.services.store.base import FieldFilter

if TYPE_CHECKING:
    from src.services.cache import CacheManager
    from src.services.store.base import DocumentStore

logger = structlog.get_logger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


class ComplaintStats(BaseModel):
    total: int = 0
    pending: int = 0
    resolved: int = 0


class AnalyticsSummary(BaseModel):
    total: int = 0
    escalated: int = 0
    by_department: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    avg_resolution_days: float | None = None
    start: date | None = None
    end: date | None = None


def summarize(
    complaints: Iterable[Complaint],
    *,
    start: date | None = None,
    end: date | None = None,
) -> AnalyticsSummary:
    """Aggregate *complaints*, optionally limited to a creation date range.

    The range only applies when both ends are given; ``end`` covers the
    whole day.
    """
    selected = list(complaints)
    if start is not None and end is not None:
        lower = datetime.combine(start, time.min, tzinfo=UTC)
        upper = datetime.combine(end, time.min, tzinfo=UTC) + timedelta(days=1)
        selected = [c for c in selected if c.created_at is not None and lower <= c.created_at < upper]

    by_department = Counter(c.assigned_dept or UNASSIGNED for c in selected)
    by_status = Counter(c.status.value for c in selected)
    by_category = Counter(c.category.value for c in selected)
    by_priority = Counter(c.priority.value for c in selected)

    durations = [
        (c.resolved_at - c.created_at).total_seconds()
        for c in selected
        if c.status is ComplaintStatus.RESOLVED and c.created_at is not None and c.resolved_at is not None
    ]
    avg_days = round(sum(durations) / len(durations) / _SECONDS_PER_DAY, 1) if durations else None

    return AnalyticsSummary(
        total=len(selected),
        escalated=sum(1 for c in selected if c.is_escalated),
        by_department=dict(by_department),
        by_status=dict(by_status),
        by_category=dict(by_category),
        by_priority=dict(by_priority),
        avg_resolution_days=avg_days,
        start=start,
        end=end,
    )


class StatsAggregator:
    """Scoped complaint counters with a short-lived per-scope cache."""

    __slots__ = ("_cache", "_store", "_ttl")

    def __init__(
        self,
        store: DocumentStore,
        cache: CacheManager | None = None,
        *,
        ttl_seconds: int = 30,
    ) -> None:
        self._store = store
        self._cache = cache
        self._ttl = ttl_seconds

    @staticmethod
    def cache_key(scope: AccessScope) -> str:
        return stable_key(scope.key)

    async def counts(self, scope: AccessScope) -> ComplaintStats:
        key = self.cache_key(scope)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                return ComplaintStats.model_validate(cached)

        total, total_ok = await self._safe_count(scope, scope.filters)
        resolved, resolved_ok = await self._safe_count(
            scope,
            (*scope.filters, FieldFilter(STATUS_FIELD, "==", ComplaintStatus.RESOLVED.value)),
        )
        stats = ComplaintStats(total=total, pending=max(total - resolved, 0), resolved=resolved)

        # Zeros standing in for failed counts are not worth caching.
        if self._cache is not None and total_ok and resolved_ok:
            await self._cache.set(key, stats.model_dump(), ttl_seconds=self._ttl)
        return stats

    async def invalidate(self, *complaint_docs: dict[str, Any]) -> None:
        """Drop cached counts for every scope that can see these documents.

        Pass both the before and after shape when a write moves a
        complaint between departments.
        """
        if self._cache is None:
            return
        keys = {self.cache_key(scope) for doc in complaint_docs for scope in scopes_seeing(doc)}
        try:
            await self._cache.invalidate(*keys)
        except Exception:
            logger.warning("stats.invalidate_failed", keys=len(keys), exc_info=True)

    async def analytics(
        self,
        scope: AccessScope,
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> AnalyticsSummary:
        """Summary over every complaint visible under *scope*.

        Unlike :meth:`counts`, read failures propagate: an analytics view
        with silently missing rows would be misleading.
        """
        docs = await self._store.query(COMPLAINTS, scope.filters)
        complaints: list[Complaint] = []
        for doc in docs:
            try:
                complaints.append(Complaint.from_document(doc.doc_id, doc.data))
            except ValidationError:
                logger.warning("stats.invalid_document", complaint_id=doc.doc_id)
        return summarize(complaints, start=start, end=end)

    async def _safe_count(self, scope: AccessScope, filters: tuple[FieldFilter, ...]) -> tuple[int, bool]:
        try:
            return await self._store.count(COMPLAINTS, filters), True
        except StoreError:
            logger.warning("stats.count_failed", scope=scope.key, filters=len(filters), exc_info=True)
            return 0, False
