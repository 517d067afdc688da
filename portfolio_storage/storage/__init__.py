"""Chunked object storage backends."""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from ..core.config import Settings
from .base import (
    ChunkStore,
    ManifestInfo,
    ObjectId,
    ReadStream,
    StreamState,
    WriteHandle,
    WriteState,
    coerce_object_id,
)
from .database import DatabaseChunkStore
from .errors import (
    ObjectNotFound,
    RangeNotSatisfiable,
    ReadFailure,
    StorageError,
    StoreUnavailable,
    WriteFailure,
)
from .local import LocalChunkStore


def build_chunk_store(settings: Settings, session_factory: Callable[[], Session]) -> ChunkStore:
    """Create the chunk store selected by ``STORAGE_BACKEND``."""

    if settings.storage_backend == "local":
        return LocalChunkStore(settings.storage_root, settings.chunk_size_bytes)
    if settings.storage_backend == "database":
        return DatabaseChunkStore(session_factory, settings.chunk_size_bytes)
    raise RuntimeError(f"Unsupported STORAGE_BACKEND {settings.storage_backend!r}")


__all__ = [
    "ChunkStore",
    "DatabaseChunkStore",
    "LocalChunkStore",
    "ManifestInfo",
    "ObjectId",
    "ReadStream",
    "StreamState",
    "WriteHandle",
    "WriteState",
    "coerce_object_id",
    "build_chunk_store",
    "StorageError",
    "ObjectNotFound",
    "WriteFailure",
    "ReadFailure",
    "StoreUnavailable",
    "RangeNotSatisfiable",
]
