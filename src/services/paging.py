"""Cursor-paginated complaint listing.

:class:`PagedQueryEngine` runs one scoped page query at a time, ordered by
``createdAt`` descending with the document id as tie-breaker, and hands
back an opaque cursor for the last row.  Cursors are bound to the scope
and status filter they were issued for, so changing either invalidates
them.

:class:`ComplaintFeed` is the per-session list state built on top of the
engine: it appends pages, keeps items current from a live store
subscription (in place, by id), discards responses from superseded
queries and tears its listener down on :meth:`ComplaintFeed.close`.

A complaint inserted with exactly the same ``createdAt`` as the last row
of a page can show up again at the top of the next page; the feed
de-duplicates by id on append rather than hiding this in the engine.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import orjson
import structlog
from pydantic import ValidationError

from src.models.complaint import Complaint
from src.models.enums import StatusFilter
from src.services.access_scope import COMPLAINTS, AccessScope, scope_for
from src.services.errors import AccessDenied, InvalidCursor, ScopeNotReady, StoreError
from src.services.store.base import ChangeType, Document, DocumentChange

if TYPE_CHECKING:
    from src.models.context import RoleContext
    from src.services.store.base import DocumentStore, Unsubscribe

logger = structlog.get_logger(__name__)

ORDER_FIELD: Final[str] = "createdAt"
DEFAULT_PAGE_SIZE: Final[int] = 10


# ---------------------------------------------------------------------------
# Cursor tokens
# ---------------------------------------------------------------------------


def encode_cursor(
    scope: AccessScope,
    status_filter: StatusFilter,
    created_at: datetime,
    doc_id: str,
) -> str:
    payload = {
        "s": scope.key,
        "f": status_filter.value,
        "t": created_at.isoformat(),
        "i": doc_id,
    }
    return base64.urlsafe_b64encode(orjson.dumps(payload)).decode("ascii")


def decode_cursor(token: str, scope: AccessScope, status_filter: StatusFilter) -> tuple[datetime, str]:
    """Return the ``(createdAt, id)`` position encoded in *token*.

    Raises :class:`InvalidCursor` when the token is malformed or was issued
    for a different scope or status filter.
    """
    try:
        payload = orjson.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        created_at = datetime.fromisoformat(payload["t"])
        doc_id = str(payload["i"])
    except (ValueError, TypeError, KeyError, orjson.JSONDecodeError) as exc:
        raise InvalidCursor("Malformed pagination cursor") from exc
    if created_at.tzinfo is None:
        raise InvalidCursor("Malformed pagination cursor")

    if payload.get("s") != scope.key or payload.get("f") != status_filter.value:
        raise InvalidCursor("Cursor was issued for a different query")
    return created_at, doc_id


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class QueryPage:
    items: list[Complaint]
    cursor: str | None
    has_more: bool


def _to_complaints(docs: list[Document]) -> list[Complaint]:
    complaints: list[Complaint] = []
    for doc in docs:
        try:
            complaints.append(Complaint.from_document(doc.doc_id, doc.data))
        except ValidationError:
            logger.warning("paging.invalid_document", complaint_id=doc.doc_id, exc_info=True)
    return complaints


class PagedQueryEngine:
    """Runs scoped, cursor-paginated complaint queries."""

    __slots__ = ("_page_size", "_store")

    def __init__(self, store: DocumentStore, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._store = store
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        return self._page_size

    async def first_page(
        self,
        scope: AccessScope,
        status_filter: StatusFilter = StatusFilter.ALL,
    ) -> QueryPage:
        return await self._fetch(scope, status_filter, start_after=None)

    async def next_page(
        self,
        scope: AccessScope,
        status_filter: StatusFilter,
        cursor: str,
    ) -> QueryPage:
        position = decode_cursor(cursor, scope, status_filter)
        return await self._fetch(scope, status_filter, start_after=position)

    async def _fetch(
        self,
        scope: AccessScope,
        status_filter: StatusFilter,
        start_after: tuple[datetime, str] | None,
    ) -> QueryPage:
        filters = scope.with_status(status_filter.status)
        try:
            docs = await self._store.query(
                COMPLAINTS,
                filters,
                order_by=ORDER_FIELD,
                descending=True,
                limit=self._page_size,
                start_after=start_after,
            )
        except AccessDenied:
            logger.warning(
                "paging.access_denied",
                scope=scope.key,
                status_filter=status_filter.value,
            )
            raise

        # has_more follows the raw row count so a skipped bad document
        # does not end pagination early.
        has_more = len(docs) == self._page_size
        items = _to_complaints(docs)
        cursor = None
        if docs:
            last = docs[-1]
            cursor = encode_cursor(scope, status_filter, last.data[ORDER_FIELD], last.doc_id)

        logger.debug(
            "paging.page_fetched",
            scope=scope.key,
            status_filter=status_filter.value,
            count=len(items),
            has_more=has_more,
            continued=start_after is not None,
        )
        return QueryPage(items=items, cursor=cursor, has_more=has_more)


# ---------------------------------------------------------------------------
# Live list session
# ---------------------------------------------------------------------------


class FeedState(StrEnum):
    __slots__ = ()

    IDLE = "idle"  # no scope yet (department unresolved)
    LOADING = "loading"
    READY = "ready"
    ACCESS_DENIED = "access_denied"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(slots=True)
class _FeedSnapshot:
    items: list[Complaint] = field(default_factory=list)
    cursor: str | None = None
    has_more: bool = False


class ComplaintFeed:
    """Paginated, live-updated complaint list for one viewing session.

    Every query is tagged with a generation number; a response that comes
    back after the filter or context has changed is dropped instead of
    overwriting the newer state.
    """

    def __init__(
        self,
        engine: PagedQueryEngine,
        store: DocumentStore,
        ctx: RoleContext,
        status_filter: StatusFilter = StatusFilter.ALL,
    ) -> None:
        self._engine = engine
        self._store = store
        self._ctx = ctx
        self._status_filter = status_filter
        self._scope: AccessScope | None = None
        self._page = _FeedSnapshot()
        self._generation = 0
        self._state = FeedState.IDLE
        self._error: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._closed = False

    # -- read-only state -------------------------------------------------------

    @property
    def items(self) -> list[Complaint]:
        return list(self._page.items)

    @property
    def has_more(self) -> bool:
        return self._page.has_more

    @property
    def cursor(self) -> str | None:
        return self._page.cursor

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def status_filter(self) -> StatusFilter:
        return self._status_filter

    @property
    def generation(self) -> int:
        return self._generation

    # -- queries ---------------------------------------------------------------

    async def refresh(self) -> FeedState:
        """Restart from the first page for the current context and filter."""
        if self._closed:
            return self._state

        self._generation += 1
        generation = self._generation
        self._stop_listening()
        self._page = _FeedSnapshot()
        self._error = None

        try:
            scope = scope_for(self._ctx)
        except ScopeNotReady:
            logger.debug("paging.feed_scope_not_ready", uid=self._ctx.uid)
            self._scope = None
            self._state = FeedState.IDLE
            return self._state
        except AccessDenied as exc:
            return self._fail(FeedState.ACCESS_DENIED, str(exc))

        self._scope = scope
        self._state = FeedState.LOADING
        try:
            page = await self._engine.first_page(scope, self._status_filter)
        except AccessDenied as exc:
            if self._is_stale(generation):
                return self._state
            return self._fail(FeedState.ACCESS_DENIED, str(exc))
        except StoreError as exc:
            if self._is_stale(generation):
                return self._state
            logger.warning("paging.feed_load_failed", scope=scope.key, exc_info=True)
            return self._fail(FeedState.ERROR, str(exc))

        if self._is_stale(generation):
            logger.debug("paging.stale_response_dropped", generation=generation, current=self._generation)
            return self._state

        self._page = _FeedSnapshot(items=list(page.items), cursor=page.cursor, has_more=page.has_more)
        self._state = FeedState.READY
        self._listen(scope)
        return self._state

    async def load_more(self) -> int:
        """Append the next page; returns how many new items were added."""
        if self._closed or self._state is not FeedState.READY:
            return 0
        if not self._page.has_more or self._page.cursor is None or self._scope is None:
            return 0

        generation = self._generation
        try:
            page = await self._engine.next_page(self._scope, self._status_filter, self._page.cursor)
        except AccessDenied as exc:
            if self._is_stale(generation):
                return 0
            self._fail(FeedState.ACCESS_DENIED, str(exc))
            return 0
        except StoreError as exc:
            if self._is_stale(generation):
                return 0
            # Items already on screen stay; refresh() starts over.
            logger.warning("paging.feed_load_failed", scope=self._scope.key, exc_info=True)
            self._state = FeedState.ERROR
            self._error = str(exc)
            return 0

        if self._is_stale(generation):
            logger.debug("paging.stale_response_dropped", generation=generation, current=self._generation)
            return 0

        seen = {c.complaint_id for c in self._page.items}
        fresh = [c for c in page.items if c.complaint_id not in seen]
        if len(fresh) != len(page.items):
            logger.info("paging.boundary_duplicates_skipped", count=len(page.items) - len(fresh))
        self._page.items.extend(fresh)
        self._page.cursor = page.cursor or self._page.cursor
        self._page.has_more = page.has_more
        return len(fresh)

    async def set_status_filter(self, status_filter: StatusFilter) -> FeedState:
        self._status_filter = status_filter
        return await self.refresh()

    async def set_context(self, ctx: RoleContext) -> FeedState:
        self._ctx = ctx
        return await self.refresh()

    def search(self, term: str) -> list[Complaint]:
        """Case-insensitive title match over the items loaded so far."""
        needle = term.strip().lower()
        if not needle:
            return self.items
        return [c for c in self._page.items if needle in c.title.lower()]

    def close(self) -> None:
        """Tear down the live listener; later callbacks and queries are no-ops."""
        self._closed = True
        self._generation += 1
        self._stop_listening()
        self._state = FeedState.CLOSED

    # -- live updates ----------------------------------------------------------

    def _listen(self, scope: AccessScope) -> None:
        filters = scope.with_status(self._status_filter.status)
        generation = self._generation

        def on_change(changes: list[DocumentChange]) -> None:
            if self._closed or generation != self._generation:
                return
            self._apply_changes(changes)

        try:
            self._unsubscribe = self._store.subscribe(COMPLAINTS, filters, on_change)
        except AccessDenied:
            logger.warning("paging.live_updates_denied", scope=scope.key)

    def _stop_listening(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _apply_changes(self, changes: list[DocumentChange]) -> None:
        index = {c.complaint_id: i for i, c in enumerate(self._page.items)}
        removed: set[str] = set()
        added: list[Complaint] = []

        for change in changes:
            doc_id = change.document.doc_id
            if change.type is ChangeType.REMOVED:
                removed.add(doc_id)
                continue
            try:
                complaint = Complaint.from_document(doc_id, change.document.data)
            except ValidationError:
                logger.warning("paging.invalid_document", complaint_id=doc_id, exc_info=True)
                continue
            if doc_id in index:
                self._page.items[index[doc_id]] = complaint
            elif self._is_newer_than_loaded(complaint):
                added.append(complaint)

        if removed:
            self._page.items = [c for c in self._page.items if c.complaint_id not in removed]
        if added:
            added.sort(key=_sort_key, reverse=True)
            self._page.items[:0] = added

    def _is_newer_than_loaded(self, complaint: Complaint) -> bool:
        # Only brand-new complaints are prepended; older ones arrive through paging.
        if complaint.created_at is None:
            return False
        if not self._page.items:
            return not self._page.has_more
        return _sort_key(complaint) > _sort_key(self._page.items[0])

    # -- helpers ---------------------------------------------------------------

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _fail(self, state: FeedState, message: str) -> FeedState:
        self._page = _FeedSnapshot()
        self._state = state
        self._error = message
        return state


def _sort_key(complaint: Complaint) -> tuple[Any, str]:
    return (complaint.created_at, complaint.complaint_id)
