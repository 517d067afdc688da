from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from .base import ChunkStore, ManifestInfo, ObjectId, ReadStream, coerce_object_id
from .errors import StoreUnavailable, WriteFailure

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
PENDING_DIR = ".pending"


def _chunk_name(index: int) -> str:
    return f"{index:08d}.chunk"


class LocalReadStream(ReadStream):
    def __init__(self, directory: Path, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> None:
        super().__init__(object_id, manifest, start, stop)
        self._directory = directory

    def _read_chunk(self, index: int) -> Optional[bytes]:
        try:
            return (self._directory / _chunk_name(index)).read_bytes()
        except FileNotFoundError:
            return None


class LocalChunkStore(ChunkStore):
    """Persist chunks as files on local disk.

    Uploads are written to ``<root>/.pending/<id>/``; commit drops a manifest
    next to the chunks and renames the directory to ``<root>/<id[:2]>/<id>/``.
    Sharding by id prefix keeps directories small with thousands of objects.
    """

    def __init__(self, root: Path | str, chunk_size: int) -> None:
        super().__init__(chunk_size)
        self.root = Path(root).resolve()

    def _pending_path(self, object_id: UUID) -> Path:
        return self.root / PENDING_DIR / object_id.hex

    def _committed_path(self, object_id: UUID) -> Path:
        return self.root / object_id.hex[:2] / object_id.hex

    def _ensure_available(self) -> None:
        try:
            (self.root / PENDING_DIR).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Storage root {self.root} is not usable") from exc
        if not os.access(self.root, os.W_OK):
            raise StoreUnavailable(f"Storage root {self.root} is not writable")

    def _put_chunk(self, object_id: UUID, index: int, data: bytes) -> None:
        directory = self._pending_path(object_id)
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / _chunk_name(index), "wb") as dest:
            dest.write(data)
            dest.flush()
            os.fsync(dest.fileno())

    def _put_manifest(self, object_id: UUID, manifest: ManifestInfo) -> None:
        pending = self._pending_path(object_id)
        pending.mkdir(parents=True, exist_ok=True)
        payload = {
            "length": manifest.length,
            "chunk_count": manifest.chunk_count,
            "chunk_size": manifest.chunk_size,
            "committed_at": datetime.now(timezone.utc).isoformat(),
        }
        (pending / MANIFEST_NAME).write_text(json.dumps(payload), encoding="utf-8")

        target = self._committed_path(object_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(pending, target)

    def _load_manifest(self, object_id: UUID) -> Optional[ManifestInfo]:
        path = self._committed_path(object_id) / MANIFEST_NAME
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(f"Manifest for object {object_id} could not be read") from exc
        return ManifestInfo(
            length=int(raw["length"]),
            chunk_count=int(raw["chunk_count"]),
            chunk_size=int(raw["chunk_size"]),
            committed_at=datetime.fromisoformat(raw["committed_at"]),
        )

    def _make_stream(self, object_id: UUID, manifest: ManifestInfo, start: int, stop: int) -> ReadStream:
        return LocalReadStream(self._committed_path(object_id), object_id, manifest, start, stop)

    def delete_all(self, object_id: ObjectId) -> None:
        object_id = coerce_object_id(object_id)
        for path in (self._committed_path(object_id), self._pending_path(object_id)):
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise WriteFailure(f"Deleting chunks of object {object_id} failed") from exc

    def list_object_ids(self, older_than: Optional[datetime] = None) -> List[UUID]:
        if not self.root.exists():
            return []
        cutoff = older_than.timestamp() if older_than is not None else None
        directories = []
        pending_root = self.root / PENDING_DIR
        if pending_root.is_dir():
            directories.extend(pending_root.iterdir())
        for shard in self.root.iterdir():
            if shard.is_dir() and shard.name != PENDING_DIR:
                directories.extend(shard.iterdir())

        object_ids = []
        for directory in directories:
            try:
                object_id = UUID(hex=directory.name)
            except ValueError:
                continue
            if cutoff is not None and self._last_modified(directory) >= cutoff:
                continue
            object_ids.append(object_id)
        return sorted(object_ids, key=str)

    @staticmethod
    def _last_modified(directory: Path) -> float:
        try:
            stamps = [directory.stat().st_mtime]
            stamps.extend(entry.stat().st_mtime for entry in directory.iterdir())
        except FileNotFoundError:
            # Committed or deleted while scanning; treat as fresh.
            return float("inf")
        return max(stamps)
