from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, BinaryIO, Callable, Dict, Iterator, Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..core.utils import clean_filename
from ..database.models import StoredObject
from ..storage import ChunkStore, StorageError, WriteHandle
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


def read_chunks(source: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield full ``chunk_size`` blocks from ``source``; only the last may be shorter.

    Short reads are stitched together so chunk boundaries stay fixed no
    matter how the underlying stream hands out bytes.
    """

    buffer = bytearray()
    while True:
        data = source.read(chunk_size - len(buffer))
        if not data:
            break
        buffer.extend(data)
        if len(buffer) >= chunk_size:
            yield bytes(buffer)
            buffer.clear()
    if buffer:
        yield bytes(buffer)


class IngestionService:
    """Turn one incoming byte stream into a committed stored object."""

    def __init__(self, chunk_store: ChunkStore, catalog: Optional[CatalogService] = None) -> None:
        self.chunk_store = chunk_store
        self.catalog = catalog or CatalogService()

    def ingest(
        self,
        db: Session,
        source: BinaryIO,
        *,
        content_type: Optional[str],
        original_name: Optional[str],
        extra_metadata: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UUID:
        """Store ``source`` chunk by chunk and register it in the catalog.

        The catalog record is written only after the chunk store commit, so a
        failed upload never becomes visible. On failure the chunks already
        written are removed before the error propagates.
        """

        object_id = uuid4()
        name = clean_filename(original_name)
        metadata: Dict[str, Any] = {str(key): value for key, value in (extra_metadata or {}).items()}
        metadata["originalName"] = name

        handle = self.chunk_store.open_write_session(object_id)
        try:
            for chunk in read_chunks(source, handle.chunk_size):
                self.chunk_store.write_chunk(handle, chunk)
                if on_progress is not None:
                    on_progress(handle.bytes_written)
            length = self.chunk_store.commit(handle)
        except Exception:
            logger.warning("Ingestion of %s (%s) aborted after %s bytes", object_id, name, handle.bytes_written)
            self._discard(handle)
            raise

        record = StoredObject(
            id=object_id,
            filename=name,
            original_name=name,
            content_type=(content_type or "").strip(),
            length=length,
            chunk_size=handle.chunk_size,
            uploaded_at=datetime.now(timezone.utc),
            object_metadata=metadata,
        )
        try:
            self.catalog.put(db, record)
        except Exception:
            db.rollback()
            logger.exception("Catalog write failed for object %s; removing its chunks", object_id)
            self._discard_committed(object_id)
            raise

        logger.info("Stored %s as object %s (%s bytes)", name, object_id, length)
        return object_id

    def _discard(self, handle: WriteHandle) -> None:
        try:
            self.chunk_store.abort(handle)
        except StorageError:
            logger.exception("Failed to remove partial chunks of object %s", handle.object_id)

    def _discard_committed(self, object_id: UUID) -> None:
        try:
            self.chunk_store.delete_all(object_id)
        except StorageError:
            logger.exception("Failed to remove chunks of uncatalogued object %s", object_id)
