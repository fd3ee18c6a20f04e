"""Adapters for integrating factsync with storage backends."""

from .memory_store import InMemoryStore
from .sqlalchemy_store import SQLAlchemyKeyValueStore

__all__ = ["InMemoryStore", "SQLAlchemyKeyValueStore"]
