from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..storage import ChunkStore, ObjectId, ObjectNotFound, StorageError
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalError"


@dataclass(frozen=True)
class DeleteOutcome:
    id: str
    success: bool
    error_reason: Optional[str] = None


@dataclass(frozen=True)
class BulkDeleteReport:
    outcomes: List[DeleteOutcome]

    @property
    def deleted(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


class DeletionCoordinator:
    """Single and bulk object removal with per-id failure accounting."""

    def __init__(
        self,
        chunk_store: ChunkStore,
        session_factory: Callable[[], Session],
        *,
        catalog: Optional[CatalogService] = None,
        max_workers: int = 8,
    ) -> None:
        self.chunk_store = chunk_store
        self.session_factory = session_factory
        self.catalog = catalog or CatalogService()
        self.max_workers = max(1, max_workers)

    def delete(self, db: Session, object_id: ObjectId, *, missing_ok: bool = False) -> bool:
        """Remove one object, chunks first so a crash can only orphan the record.

        Raises ``ObjectNotFound`` for unknown ids unless ``missing_ok`` is set,
        in which case it returns ``False``.
        """

        try:
            record = self.catalog.get(db, object_id)
        except ObjectNotFound:
            if missing_ok:
                return False
            raise
        record_id = record.id
        self.chunk_store.delete_all(record_id)
        self.catalog.delete(db, record_id)
        logger.info("Deleted object %s", record_id)
        return True

    def delete_many(self, object_ids: Iterable[ObjectId]) -> BulkDeleteReport:
        """Delete every id concurrently and report each outcome; never raises.

        Each branch runs in its own session. Duplicate ids are deleted once
        and the shared outcome is reported at every position they occupy.
        """

        requested = [str(object_id) for object_id in object_ids]
        unique_ids = list(dict.fromkeys(requested))
        outcomes: Dict[str, DeleteOutcome] = {}

        if unique_ids:
            workers = min(self.max_workers, len(unique_ids))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(self._delete_isolated, object_id): object_id for object_id in unique_ids}
                for future in concurrent.futures.as_completed(futures):
                    outcome = future.result()
                    outcomes[outcome.id] = outcome

        report = BulkDeleteReport([outcomes[object_id] for object_id in requested])
        logger.info("Bulk delete finished: %s deleted, %s failed", report.deleted, report.failed)
        return report

    def _delete_isolated(self, object_id: str) -> DeleteOutcome:
        db = self.session_factory()
        try:
            self.delete(db, object_id)
            return DeleteOutcome(id=object_id, success=True)
        except StorageError as exc:
            db.rollback()
            logger.warning("Bulk delete of %s failed: %s", object_id, exc)
            return DeleteOutcome(id=object_id, success=False, error_reason=exc.reason)
        except Exception:
            db.rollback()
            logger.exception("Unexpected error deleting object %s", object_id)
            return DeleteOutcome(id=object_id, success=False, error_reason=INTERNAL_ERROR)
        finally:
            db.close()
