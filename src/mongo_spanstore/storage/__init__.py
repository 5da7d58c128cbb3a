"""Storage gateway layer.

Core classes (always available):

- :class:`StorageGateway`, :class:`DocumentCursor` -- abstract bases
- :class:`FindOptions`, :class:`IndexSpec` -- option models
- :class:`InMemoryStorageGateway` -- zero-dependency in-memory backend

Optional backends (require extra packages):

- :class:`MongoStorageGateway` -- ``pip install mongo-spanstore[mongo]``
"""

from __future__ import annotations

from mongo_spanstore.storage.base import (
    DocumentCursor,
    FindOptions,
    IndexSpec,
    StorageGateway,
    span_indexes,
)
from mongo_spanstore.storage.memory import InMemoryCursor, InMemoryStorageGateway
from mongo_spanstore.storage.mongo import MongoStorageGateway

__all__ = [
    "DocumentCursor",
    "FindOptions",
    "InMemoryCursor",
    "InMemoryStorageGateway",
    "IndexSpec",
    "MongoStorageGateway",
    "StorageGateway",
    "span_indexes",
]
