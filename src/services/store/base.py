"""Document store interface consumed by the complaint core.

Mirrors the subset of Firestore the core relies on: CRUD, compound
equality/range queries with server-side ordering and cursor pagination,
server timestamps, server-side counts, atomic batched writes, and live
push subscriptions per query.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final, Literal, Protocol, runtime_checkable


class _ServerTimestamp:
    """Sentinel replaced by the store's own clock when a write is applied."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Final = _ServerTimestamp()

_OPERATORS: Final[dict[str, Callable[[Any, Any], bool]]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """A single equality / range predicate on one document field."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"unsupported filter operator {self.op!r}")
        if not self.field or self.field.startswith("__"):
            raise ValueError(f"invalid filter field {self.field!r}")

    def matches(self, data: dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        candidate = data[self.field]
        if candidate is None and self.op != "==":
            return False
        try:
            return _OPERATORS[self.op](candidate, self.value)
        except TypeError:
            return False


def matches_all(filters: Sequence[FieldFilter], data: dict[str, Any]) -> bool:
    return all(f.matches(data) for f in filters)


@dataclass(frozen=True, slots=True)
class Document:
    doc_id: str
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Write:
    """One operation inside an atomic batch."""

    kind: Literal["create", "update", "delete"]
    collection: str
    doc_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, collection: str, data: dict[str, Any]) -> Write:
        return cls(kind="create", collection=collection, data=data)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> Write:
        return cls(kind="update", collection=collection, doc_id=doc_id, data=data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> Write:
        return cls(kind="delete", collection=collection, doc_id=doc_id)


class ChangeType(StrEnum):
    __slots__ = ()

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class DocumentChange:
    type: ChangeType
    document: Document


ChangeCallback = Callable[[list[DocumentChange]], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class DocumentStore(Protocol):
    """Async document store interface.

    Errors are reported with the taxonomy in :mod:`src.services.errors`:
    ``AccessDenied`` for rule rejections, ``TransientStoreError`` for
    availability failures, ``DocumentNotFound`` for missing targets.
    """

    async def create(self, collection: str, data: dict[str, Any]) -> str: ...

    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

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
        """Run a filtered query.

        Results are ordered by ``order_by`` and then by document id, both in
        the requested direction.  ``start_after`` is the ``(order value,
        document id)`` pair of the last row already seen.
        """
        ...

    async def count(self, collection: str, filters: Sequence[FieldFilter] = ()) -> int: ...

    async def commit(self, writes: Sequence[Write]) -> list[str]:
        """Apply *writes* atomically; returns the ids of created documents."""
        ...

    def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        on_change: ChangeCallback,
    ) -> Unsubscribe: ...

    async def close(self) -> None: ...
