"""Chunk store contract shared by the database and local filesystem backends."""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Union
from uuid import UUID

from .errors import ObjectNotFound, RangeNotSatisfiable, ReadFailure, StorageError, WriteFailure

logger = logging.getLogger(__name__)

ObjectId = Union[UUID, str]


def coerce_object_id(value: ObjectId) -> UUID:
    """Normalise an id; malformed ids can never match a stored object."""

    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError as exc:
        raise ObjectNotFound(f"Object {value!r} not found") from exc


class WriteState(str, enum.Enum):
    open = "open"
    committed = "committed"
    failed = "failed"
    aborted = "aborted"


class StreamState(str, enum.Enum):
    open = "open"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


@dataclass
class WriteHandle:
    """Explicit state of one upload session."""

    object_id: UUID
    chunk_size: int
    next_index: int = 0
    bytes_written: int = 0
    state: WriteState = WriteState.open
    tail_written: bool = False


@dataclass(frozen=True)
class ManifestInfo:
    length: int
    chunk_count: int
    chunk_size: int
    committed_at: Optional[datetime] = None


class ReadStream(ABC):
    """Forward-only iterator over the bytes of one committed object.

    Holds at most one chunk in memory. The stream ends in exactly one terminal
    state: ``completed`` once every requested byte was yielded, ``failed``
    when the backend broke mid-stream (the error is raised to the consumer),
    or ``cancelled`` when the consumer closed it early.
    """

    def __init__(self, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> None:
        self.object_id = object_id
        self.manifest = manifest
        self.start = start
        self.stop = stop
        self.bytes_read = 0
        self.state = StreamState.open
        self._index = start // manifest.chunk_size if manifest.chunk_size else 0
        self._skip = start % manifest.chunk_size if manifest.chunk_size else 0
        self._remaining = stop - start

    @property
    def length(self) -> int:
        return self.stop - self.start

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self.state is not StreamState.open:
            raise StopIteration
        if self._remaining <= 0:
            self._finish(StreamState.completed)
            raise StopIteration

        index = self._index
        try:
            data = self._read_chunk(index)
        except StorageError:
            self._finish(StreamState.failed)
            raise
        except Exception as exc:
            self._finish(StreamState.failed)
            raise ReadFailure(f"Reading chunk {index} of object {self.object_id} failed") from exc

        if self._skip:
            data = data[self._skip:] if data is not None else None
            self._skip = 0
        if not data:
            self._finish(StreamState.failed)
            raise ReadFailure(f"Chunk {index} of object {self.object_id} is missing")
        if len(data) > self._remaining:
            data = data[: self._remaining]

        self._index += 1
        self._remaining -= len(data)
        self.bytes_read += len(data)
        return data

    def close(self) -> None:
        if self.state is StreamState.open:
            if self._remaining > 0:
                logger.info(
                    "Stream for object %s closed after %s of %s bytes",
                    self.object_id,
                    self.bytes_read,
                    self.length,
                )
                self._finish(StreamState.cancelled)
            else:
                self._finish(StreamState.completed)

    def __enter__(self) -> "ReadStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _finish(self, state: StreamState) -> None:
        self.state = state
        self._release()

    @abstractmethod
    def _read_chunk(self, index: int) -> Optional[bytes]:
        """Return the payload stored at ``index`` or ``None`` when absent."""

    def _release(self) -> None:
        """Free backend resources held by the stream."""


class ChunkStore(ABC):
    """Durable byte storage addressed by ``(object_id, sequence_index)``."""

    def __init__(self, chunk_size: int) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def open_write_session(self, object_id: ObjectId) -> WriteHandle:
        object_id = coerce_object_id(object_id)
        self._ensure_available()
        return WriteHandle(object_id=object_id, chunk_size=self.chunk_size)

    def write_chunk(self, handle: WriteHandle, data: bytes) -> None:
        """Append the next chunk; its sequence index is the call order."""

        if handle.state is not WriteState.open:
            raise WriteFailure(f"Write session for {handle.object_id} is {handle.state.value}")
        if len(data) > handle.chunk_size:
            handle.state = WriteState.failed
            raise WriteFailure(f"Chunk of {len(data)} bytes exceeds chunk size {handle.chunk_size}")
        if handle.tail_written:
            handle.state = WriteState.failed
            raise WriteFailure("Cannot append after a short final chunk")
        if not data:
            return

        try:
            self._put_chunk(handle.object_id, handle.next_index, bytes(data))
        except StorageError:
            handle.state = WriteState.failed
            raise
        except Exception as exc:
            handle.state = WriteState.failed
            raise WriteFailure(
                f"Writing chunk {handle.next_index} of object {handle.object_id} failed"
            ) from exc

        handle.next_index += 1
        handle.bytes_written += len(data)
        if len(data) < handle.chunk_size:
            handle.tail_written = True

    def commit(self, handle: WriteHandle) -> int:
        """Finalize the session and make its chunks readable. Returns the byte length."""

        if handle.state is not WriteState.open:
            raise WriteFailure(f"Cannot commit write session in state {handle.state.value}")
        manifest = ManifestInfo(
            length=handle.bytes_written,
            chunk_count=handle.next_index,
            chunk_size=handle.chunk_size,
        )
        try:
            self._put_manifest(handle.object_id, manifest)
        except StorageError:
            handle.state = WriteState.failed
            raise
        except Exception as exc:
            handle.state = WriteState.failed
            raise WriteFailure(f"Committing object {handle.object_id} failed") from exc
        handle.state = WriteState.committed
        logger.info(
            "Committed object %s (%s bytes in %s chunks)",
            handle.object_id,
            manifest.length,
            manifest.chunk_count,
        )
        return manifest.length

    def abort(self, handle: WriteHandle) -> None:
        """Drop every chunk written under ``handle``."""

        if handle.state in (WriteState.committed, WriteState.aborted):
            return
        self.delete_all(handle.object_id)
        handle.state = WriteState.aborted
        logger.info("Aborted write session for object %s", handle.object_id)

    def open_read_stream(
        self,
        object_id: ObjectId,
        from_byte_offset: int = 0,
        limit: Optional[int] = None,
    ) -> ReadStream:
        object_id = coerce_object_id(object_id)
        manifest = self._load_manifest(object_id)
        if manifest is None:
            raise ObjectNotFound(f"Object {object_id} not found")
        if from_byte_offset < 0 or from_byte_offset > manifest.length:
            raise RangeNotSatisfiable(
                f"Offset {from_byte_offset} is outside object {object_id} of {manifest.length} bytes"
            )
        stop = manifest.length
        if limit is not None:
            stop = min(stop, from_byte_offset + max(limit, 0))
        return self._make_stream(object_id, manifest, from_byte_offset, stop)

    def exists(self, object_id: ObjectId) -> bool:
        try:
            object_id = coerce_object_id(object_id)
        except ObjectNotFound:
            return False
        return self._load_manifest(object_id) is not None

    @abstractmethod
    def delete_all(self, object_id: ObjectId) -> None:
        """Remove every chunk and the manifest. Unknown ids are not an error."""

    @abstractmethod
    def list_object_ids(self, older_than: Optional[datetime] = None) -> List[UUID]:
        """Ids with any stored data, committed or not, last touched before ``older_than``."""

    @abstractmethod
    def _ensure_available(self) -> None:
        """Raise ``StoreUnavailable`` when the medium cannot be reached."""

    @abstractmethod
    def _put_chunk(self, object_id: UUID, index: int, data: bytes) -> None:
        ...

    @abstractmethod
    def _put_manifest(self, object_id: UUID, manifest: ManifestInfo) -> None:
        ...

    @abstractmethod
    def _load_manifest(self, object_id: UUID) -> Optional[ManifestInfo]:
        ...

    @abstractmethod
    def _make_stream(self, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> ReadStream:
        ...
