from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.utils import build_content_disposition, parse_range_header, resolve_content_type
from ..storage import ChunkStore, ObjectId, ReadStream
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)


class Disposition(str, enum.Enum):
    inline = "inline"
    attachment = "attachment"


@dataclass
class RetrievedObject:
    """Negotiated response for one object, with its body still unread."""

    object_id: UUID
    content_type: str
    filename: str
    disposition: Disposition
    content_disposition: str
    total_length: int
    stream: ReadStream
    byte_range: Optional[Tuple[int, int]] = None

    @property
    def length(self) -> int:
        return self.stream.length

    @property
    def content_range(self) -> Optional[str]:
        if self.byte_range is None:
            return None
        start, stop = self.byte_range
        return f"bytes {start}-{stop - 1}/{self.total_length}"


class RetrievalService:
    """Resolve an id to a content type, a suggested filename and a byte stream."""

    def __init__(self, chunk_store: ChunkStore, catalog: Optional[CatalogService] = None) -> None:
        self.chunk_store = chunk_store
        self.catalog = catalog or CatalogService()

    def retrieve(
        self,
        db: Session,
        object_id: ObjectId,
        disposition: Disposition = Disposition.inline,
        range_header: Optional[str] = None,
    ) -> RetrievedObject:
        """Look up the record and open its stream.

        ``range_header`` is an HTTP ``Range`` value; when it names a single
        satisfiable range only those bytes are streamed.
        """

        record = self.catalog.get(db, object_id)
        filename = record.suggested_filename
        disposition = Disposition(disposition)
        byte_range = parse_range_header(range_header, record.length)

        if byte_range is None:
            stream = self.chunk_store.open_read_stream(record.id)
        else:
            start, stop = byte_range
            stream = self.chunk_store.open_read_stream(record.id, start, stop - start)

        logger.info("Serving object %s (%s, %s)", record.id, filename, disposition.value)
        return RetrievedObject(
            object_id=record.id,
            content_type=resolve_content_type(record.content_type),
            filename=filename,
            disposition=disposition,
            content_disposition=build_content_disposition(disposition.value, filename),
            total_length=record.length,
            stream=stream,
            byte_range=byte_range,
        )

