# ChattyNext document stores
from chatty.store.base import DocumentStore
from chatty.store.memory import InMemoryDocumentStore
from chatty.store.postgres import PostgresDocumentStore

__all__ = ["DocumentStore", "InMemoryDocumentStore", "PostgresDocumentStore"]
