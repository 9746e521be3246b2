"""Cloud Firestore implementation of the document store interface.

Queries, counts and writes go through the async client; live
subscriptions use the sync client's ``on_snapshot`` (the async client has
no watch support) and are marshalled back onto the event loop with
``call_soon_threadsafe`` so callbacks never run on the watch thread.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog
from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.services.errors import AccessDenied, DocumentNotFound, StoreError, TransientStoreError
from src.services.store.base import (
    SERVER_TIMESTAMP,
    ChangeCallback,
    ChangeType,
    Document,
    DocumentChange,
    FieldFilter,
    Unsubscribe,
    Write,
)

logger = structlog.get_logger(__name__)

_TRANSIENT = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
)

_CHANGE_TYPES = {
    "ADDED": ChangeType.ADDED,
    "MODIFIED": ChangeType.MODIFIED,
    "REMOVED": ChangeType.REMOVED,
}


def _translate(exc: Exception, operation: str, path: str) -> StoreError:
    if isinstance(exc, gexc.PermissionDenied):
        return AccessDenied("Missing or insufficient permissions.", operation=operation)
    if isinstance(exc, gexc.NotFound):
        return DocumentNotFound(path)
    if isinstance(exc, _TRANSIENT):
        return TransientStoreError(f"{operation} on {path} failed: {exc}")
    return StoreError(f"{operation} on {path} failed: {exc}")


def _encode(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: (firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value)
        for key, value in data.items()
    }


_read_retry = retry(
    retry=retry_if_exception_type(TransientStoreError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


class FirestoreDocumentStore:
    """Firestore-backed :class:`~src.services.store.base.DocumentStore`."""

    def __init__(self, project_id: str, database: str = "(default)") -> None:
        self._project_id = project_id
        self._database = database
        self._client = firestore.AsyncClient(project=project_id, database=database)
        self._watch_client: firestore.Client | None = None
        logger.info("store.firestore_initialised", project=project_id, database=database)

    def _watch(self) -> firestore.Client:
        if self._watch_client is None:
            self._watch_client = firestore.Client(project=self._project_id, database=self._database)
        return self._watch_client

    @staticmethod
    def _apply_filters(query: Any, filters: Sequence[FieldFilter]) -> Any:
        for f in filters:
            query = query.where(filter=FirestoreFieldFilter(f.field, f.op, f.value))
        return query

    # -- DocumentStore interface ----------------------------------------------

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        try:
            _, ref = await self._client.collection(collection).add(_encode(data))
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "create", collection) from exc
        return ref.id

    @_read_retry
    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snap = await self._client.collection(collection).document(doc_id).get()
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "get", f"{collection}/{doc_id}") from exc
        if not snap.exists:
            return None
        return Document(doc_id=snap.id, data=snap.to_dict() or {})

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            await self._client.collection(collection).document(doc_id).update(_encode(data))
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "update", f"{collection}/{doc_id}") from exc

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self._client.collection(collection).document(doc_id).delete()
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "delete", f"{collection}/{doc_id}") from exc

    @_read_retry
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
        coll = self._client.collection(collection)
        query = self._apply_filters(coll, filters)

        if order_by is not None:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction).order_by("__name__", direction=direction)
            if start_after is not None:
                value, doc_id = start_after
                query = query.start_after({order_by: value, "__name__": coll.document(doc_id)})
        if limit is not None:
            query = query.limit(limit)

        try:
            snaps = await query.get()
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "query", collection) from exc
        return [Document(doc_id=s.id, data=s.to_dict() or {}) for s in snaps]

    @_read_retry
    async def count(self, collection: str, filters: Sequence[FieldFilter] = ()) -> int:
        query = self._apply_filters(self._client.collection(collection), filters)
        try:
            result = await query.count(alias="total").get()
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "count", collection) from exc
        return int(result[0][0].value)

    async def commit(self, writes: Sequence[Write]) -> list[str]:
        batch = self._client.batch()
        created: list[str] = []
        for write in writes:
            coll = self._client.collection(write.collection)
            if write.kind == "create":
                ref = coll.document(write.doc_id) if write.doc_id else coll.document()
                batch.create(ref, _encode(write.data))
                created.append(ref.id)
            elif write.kind == "update":
                batch.update(coll.document(write.doc_id), _encode(write.data))
            else:
                batch.delete(coll.document(write.doc_id))
        try:
            await batch.commit()
        except gexc.GoogleAPICallError as exc:
            raise _translate(exc, "commit", ",".join(w.collection for w in writes)) from exc
        return created

    def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        query = self._apply_filters(self._watch().collection(collection), filters)

        def on_snapshot(_docs: Any, changes: Any, _read_time: Any) -> None:
            converted = [
                DocumentChange(
                    _CHANGE_TYPES[change.type.name],
                    Document(doc_id=change.document.id, data=change.document.to_dict() or {}),
                )
                for change in changes
            ]
            if converted:
                loop.call_soon_threadsafe(on_change, converted)

        watch = query.on_snapshot(on_snapshot)
        return watch.unsubscribe

    async def close(self) -> None:
        self._client.close()
        if self._watch_client is not None:
            self._watch_client.close()
