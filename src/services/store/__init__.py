"""Document store collaborator: interface, in-memory backend, Firestore backend.

The Firestore backend is imported lazily by :func:`create_store` so that
``import src.services.store`` works without the google-cloud packages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.services.store.base import (
    SERVER_TIMESTAMP,
    ChangeType,
    Document,
    DocumentChange,
    DocumentStore,
    FieldFilter,
    Unsubscribe,
    Write,
)
from src.services.store.memory import InMemoryDocumentStore

if TYPE_CHECKING:
    from config.settings import Settings


def create_store(settings: Settings) -> DocumentStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "firestore":
        from src.services.store.firestore import FirestoreDocumentStore

        return FirestoreDocumentStore(
            project_id=settings.gcp_project_id,
            database=settings.firestore_database,
        )
    return InMemoryDocumentStore()


__all__ = [
    "SERVER_TIMESTAMP",
    "ChangeType",
    "Document",
    "DocumentChange",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "Unsubscribe",
    "Write",
    "create_store",
]
