from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database.models import StoredObject
from ..storage import ChunkStore
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)


@dataclass
class OrphanReport:
    # Catalog records whose chunks are gone, e.g. a crash between the two delete steps.
    dangling_records: List[UUID] = field(default_factory=list)
    # Chunk sets nobody catalogued, e.g. an upload interrupted before its record was written.
    orphan_chunk_sets: List[UUID] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.dangling_records) + len(self.orphan_chunk_sets)


class MaintenanceService:
    """Find and remove storage left inconsistent by crashed uploads or deletes."""

    def __init__(self, chunk_store: ChunkStore, catalog: Optional[CatalogService] = None) -> None:
        self.chunk_store = chunk_store
        self.catalog = catalog or CatalogService()

    def find_orphans(self, db: Session, stale_after: timedelta) -> OrphanReport:
        catalog_ids = set(db.execute(select(StoredObject.id)).scalars().all())
        report = OrphanReport()
        report.dangling_records = sorted(
            (object_id for object_id in catalog_ids if not self.chunk_store.exists(object_id)),
            key=str,
        )
        # Recent chunk sets may belong to uploads still in flight.
        cutoff = datetime.now(timezone.utc) - stale_after
        report.orphan_chunk_sets = [
            object_id
            for object_id in self.chunk_store.list_object_ids(older_than=cutoff)
            if object_id not in catalog_ids
        ]
        return report

    def sweep(self, db: Session, stale_after: timedelta, *, dry_run: bool = False) -> OrphanReport:
        report = self.find_orphans(db, stale_after)
        if dry_run:
            return report
        for object_id in report.dangling_records:
            self.catalog.delete(db, object_id)
            logger.info("Removed dangling catalog record %s", object_id)
        for object_id in report.orphan_chunk_sets:
            self.chunk_store.delete_all(object_id)
            logger.info("Removed orphaned chunks of %s", object_id)
        return report
