"""
Document store lifecycle
"""

import logging
from typing import Optional

from chatty.config import Settings, settings
from chatty.store import DocumentStore, InMemoryDocumentStore, PostgresDocumentStore

logger = logging.getLogger("chatty.database")

# Process-wide store handle
_store: Optional[DocumentStore] = None


async def init_store(active_settings: Settings = settings) -> DocumentStore:
    """Open the configured document store"""
    global _store

    if active_settings.STORE_BACKEND == "memory":
        _store = InMemoryDocumentStore()
    else:
        _store = await PostgresDocumentStore.connect(active_settings.DATABASE_URL)

    logger.info(f"Document store initialized ({active_settings.STORE_BACKEND})")
    return _store


async def close_store():
    """Close the document store"""
    global _store
    if _store:
        await _store.close()
        _store = None


def set_store(store: Optional[DocumentStore]) -> None:
    """Install an already-open store (used by tests and embedding apps)"""
    global _store
    _store = store


async def get_store() -> DocumentStore:
    """Dependency for getting the document store"""
    if _store is None:
        raise RuntimeError("Document store not initialized")
    return _store
