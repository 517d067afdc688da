from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..database.models import ChunkManifest, ObjectChunk
from .base import ChunkStore, ManifestInfo, ObjectId, ReadStream, coerce_object_id
from .errors import StoreUnavailable, WriteFailure

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseReadStream(ReadStream):
    """Fetches one chunk row per step, each in its own short-lived session."""

    def __init__(self, session_factory: SessionFactory, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> None:
        super().__init__(object_id, manifest, start, stop)
        self._session_factory = session_factory

    def _read_chunk(self, index: int) -> Optional[bytes]:
        with self._session_factory() as db:
            return db.execute(
                select(ObjectChunk.payload).where(
                    ObjectChunk.object_id == self.object_id,
                    ObjectChunk.sequence_index == index,
                )
            ).scalar_one_or_none()


class DatabaseChunkStore(ChunkStore):
    """Keep chunks as binary rows next to the catalog, GridFS style."""

    def __init__(self, session_factory: SessionFactory, chunk_size: int) -> None:
        super().__init__(chunk_size)
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except OperationalError as exc:
            db.rollback()
            raise StoreUnavailable("Chunk database is unreachable") from exc
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _ensure_available(self) -> None:
        with self._session() as db:
            db.execute(text("SELECT 1"))

    def _put_chunk(self, object_id: UUID, index: int, data: bytes) -> None:
        with self._session() as db:
            db.add(
                ObjectChunk(
                    object_id=object_id,
                    sequence_index=index,
                    payload=data,
                    written_at=_utc_now(),
                )
            )
            db.commit()

    def _put_manifest(self, object_id: UUID, manifest: ManifestInfo) -> None:
        with self._session() as db:
            db.add(
                ChunkManifest(
                    object_id=object_id,
                    length=manifest.length,
                    chunk_count=manifest.chunk_count,
                    chunk_size=manifest.chunk_size,
                    committed_at=_utc_now(),
                )
            )
            db.commit()

    def _load_manifest(self, object_id: UUID) -> Optional[ManifestInfo]:
        with self._session() as db:
            row = db.get(ChunkManifest, object_id)
            if row is None:
                return None
            return ManifestInfo(
                length=row.length,
                chunk_count=row.chunk_count,
                chunk_size=row.chunk_size,
                committed_at=row.committed_at,
            )

    def _make_stream(self, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> ReadStream:
        return DatabaseReadStream(self._session_factory, object_id, manifest, start, stop)

    def delete_all(self, object_id: ObjectId) -> None:
        object_id = coerce_object_id(object_id)
        try:
            with self._session() as db:
                db.execute(delete(ObjectChunk).where(ObjectChunk.object_id == object_id))
                db.execute(delete(ChunkManifest).where(ChunkManifest.object_id == object_id))
                db.commit()
        except StoreUnavailable:
            raise
        except SQLAlchemyError as exc:
            raise WriteFailure(f"Deleting chunks of object {object_id} failed") from exc

    def list_object_ids(self, older_than: Optional[datetime] = None) -> List[UUID]:
        with self._session() as db:
            object_ids = set(db.execute(select(ObjectChunk.object_id).distinct()).scalars().all())
            object_ids |= set(db.execute(select(ChunkManifest.object_id)).scalars().all())
            if older_than is not None:
                # Any chunk or manifest written since the cutoff keeps the object out.
                fresh = db.execute(
                    select(ObjectChunk.object_id).where(ObjectChunk.written_at >= older_than).distinct()
                ).scalars().all()
                object_ids -= set(fresh)
                fresh = db.execute(
                    select(ChunkManifest.object_id).where(ChunkManifest.committed_at >= older_than)
                ).scalars().all()
                object_ids -= set(fresh)
        return sorted(object_ids, key=str)
