"""In-process document store.

Implements :class:`~src.services.store.base.DocumentStore` over plain
dicts so the core runs without Firestore in development and tests.
Batches are applied to a staged copy and swapped in only when every
write is valid, giving the same all-or-nothing behaviour as a Firestore
``WriteBatch``.  Listeners receive change sets on the next loop
iteration, like a push subscription.

An optional ``read_rule`` stands in for store-side security rules: it is
called with ``(collection, filters)`` before every query, count and
subscription, and a ``False`` result raises :class:`AccessDenied`.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import structlog

from src.services.errors import AccessDenied, DocumentNotFound
from src.services.store.base import (
    SERVER_TIMESTAMP,
    ChangeCallback,
    ChangeType,
    Document,
    DocumentChange,
    FieldFilter,
    Unsubscribe,
    Write,
    matches_all,
)

logger = structlog.get_logger(__name__)

ReadRule = Callable[[str, Sequence[FieldFilter]], bool]


@dataclass(slots=True)
class _Listener:
    collection: str
    filters: tuple[FieldFilter, ...]
    callback: ChangeCallback
    active: bool = True


class InMemoryDocumentStore:
    """Dict-backed store with Firestore-like ordering and batch semantics.

    Parameters
    ----------
    clock:
        Source of server timestamps.  Timestamps are forced to be strictly
        increasing so documents written back-to-back never tie.
    read_rule:
        Optional security-rule stand-in, see module docstring.
    """

    __slots__ = ("_clock", "_collections", "_last_ts", "_listeners", "_lock", "_read_rule")

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        read_rule: ReadRule | None = None,
    ) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: list[_Listener] = []
        self._clock = clock or (lambda: datetime.now(UTC))
        self._last_ts: datetime | None = None
        self._read_rule = read_rule
        self._lock = asyncio.Lock()

    # -- helpers ---------------------------------------------------------------

    def _now(self) -> datetime:
        now = self._clock()
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _resolve_sentinels(self, data: dict[str, Any]) -> dict[str, Any]:
        now: datetime | None = None
        resolved: dict[str, Any] = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                if now is None:
                    now = self._now()
                value = now
            resolved[key] = copy.deepcopy(value)
        return resolved

    def _check_read(self, collection: str, filters: Sequence[FieldFilter], operation: str) -> None:
        if self._read_rule is not None and not self._read_rule(collection, filters):
            logger.info("store.memory.read_denied", collection=collection, operation=operation)
            raise AccessDenied("Missing or insufficient permissions.", operation=operation)

    @staticmethod
    def _sort_key(order_by: str, doc_id: str, data: dict[str, Any]) -> tuple[Any, str]:
        return (data[order_by], doc_id)

    # -- seeding (tests / fixtures) -------------------------------------------

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Insert or replace a document verbatim, bypassing listeners."""
        self._collections.setdefault(collection, {})[doc_id] = self._resolve_sentinels(data)

    def snapshot(self, collection: str) -> dict[str, dict[str, Any]]:
        """Deep copy of a whole collection."""
        return copy.deepcopy(self._collections.get(collection, {}))

    # -- DocumentStore interface ----------------------------------------------

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        ids = await self.commit([Write.create(collection, data)])
        return ids[0]

    async def get(self, collection: str, doc_id: str) -> Document | None:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(doc_id=doc_id, data=copy.deepcopy(data))

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self.commit([Write.update(collection, doc_id, data)])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.commit([Write.delete(collection, doc_id)])

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        start_after: tuple[Any, str] | None = None,
    ) -> list[Document]:
        self._check_read(collection, filters, "query")
        docs = self._collections.get(collection, {})
        rows = [(doc_id, data) for doc_id, data in docs.items() if matches_all(filters, data)]

        if order_by is not None:
            # Like Firestore, documents without the order field are excluded.
            rows = [(doc_id, data) for doc_id, data in rows if data.get(order_by) is not None]
            rows.sort(key=lambda row: self._sort_key(order_by, row[0], row[1]), reverse=descending)
            if start_after is not None:
                if descending:
                    rows = [r for r in rows if self._sort_key(order_by, r[0], r[1]) < start_after]
                else:
                    rows = [r for r in rows if self._sort_key(order_by, r[0], r[1]) > start_after]
        else:
            rows.sort(key=lambda row: row[0])

        if limit is not None:
            rows = rows[:limit]
        return [Document(doc_id=doc_id, data=copy.deepcopy(data)) for doc_id, data in rows]

    async def count(self, collection: str, filters: Sequence[FieldFilter] = ()) -> int:
        self._check_read(collection, filters, "count")
        docs = self._collections.get(collection, {})
        return sum(1 for data in docs.values() if matches_all(filters, data))

    async def commit(self, writes: Sequence[Write]) -> list[str]:
        async with self._lock:
            staged = {name: dict(docs) for name, docs in self._collections.items()}
            touched: list[tuple[str, str, dict[str, Any] | None, dict[str, Any] | None]] = []
            created: list[str] = []

            for write in writes:
                docs = staged.setdefault(write.collection, {})
                if write.kind == "create":
                    doc_id = write.doc_id or uuid4().hex[:20]
                    before = docs.get(doc_id)
                    after = self._resolve_sentinels(write.data)
                    docs[doc_id] = after
                    created.append(doc_id)
                elif write.kind == "update":
                    doc_id = write.doc_id or ""
                    before = docs.get(doc_id)
                    if before is None:
                        raise DocumentNotFound(f"{write.collection}/{doc_id}")
                    after = {**before, **self._resolve_sentinels(write.data)}
                    docs[doc_id] = after
                else:
                    doc_id = write.doc_id or ""
                    before = docs.pop(doc_id, None)
                    after = None
                touched.append((write.collection, doc_id, before, after))

            self._collections = staged

        self._notify(touched)
        return created

    def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        self._check_read(collection, filters, "subscribe")
        listener = _Listener(collection=collection, filters=tuple(filters), callback=on_change)
        self._listeners.append(listener)

        initial = [
            DocumentChange(ChangeType.ADDED, Document(doc_id, copy.deepcopy(data)))
            for doc_id, data in self._collections.get(collection, {}).items()
            if matches_all(listener.filters, data)
        ]
        self._schedule(listener, initial)

        def unsubscribe() -> None:
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def close(self) -> None:
        for listener in self._listeners:
            listener.active = False
        self._listeners.clear()

    # -- push delivery ---------------------------------------------------------

    def _notify(
        self,
        touched: list[tuple[str, str, dict[str, Any] | None, dict[str, Any] | None]],
    ) -> None:
        for listener in list(self._listeners):
            changes: list[DocumentChange] = []
            for collection, doc_id, before, after in touched:
                if collection != listener.collection:
                    continue
                was_in = before is not None and matches_all(listener.filters, before)
                is_in = after is not None and matches_all(listener.filters, after)
                if is_in and after is not None:
                    kind = ChangeType.MODIFIED if was_in else ChangeType.ADDED
                    changes.append(DocumentChange(kind, Document(doc_id, copy.deepcopy(after))))
                elif was_in and before is not None:
                    changes.append(DocumentChange(ChangeType.REMOVED, Document(doc_id, copy.deepcopy(before))))
            self._schedule(listener, changes)

    @staticmethod
    def _schedule(listener: _Listener, changes: list[DocumentChange]) -> None:
        if not changes:
            return

        def deliver() -> None:
            if listener.active:
                listener.callback(changes)

        try:
            asyncio.get_running_loop().call_soon(deliver)
        except RuntimeError:
            deliver()
