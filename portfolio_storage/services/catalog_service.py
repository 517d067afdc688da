from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from ..database.models import StoredObject
from ..schemas import StoredObjectSummary
from ..storage import ObjectId, ObjectNotFound, coerce_object_id


@dataclass
class CatalogFilter:
    """Listing options for the catalog; every field is optional."""

    content_type_prefix: Optional[str] = None
    search: Optional[str] = None
    newest_first: bool = False
    limit: Optional[int] = None
    offset: int = 0


class CatalogService:
    """Map object ids to their committed catalog records."""

    def put(self, db: Session, record: StoredObject) -> StoredObject:
        record = db.merge(record)
        db.commit()
        return record

    def get(self, db: Session, object_id: ObjectId) -> StoredObject:
        record = db.get(StoredObject, coerce_object_id(object_id))
        if record is None:
            raise ObjectNotFound(f"Object {object_id} not found")
        return record

    def list(self, db: Session, catalog_filter: Optional[CatalogFilter] = None) -> list[StoredObject]:
        catalog_filter = catalog_filter or CatalogFilter()
        stmt = select(StoredObject)

        if catalog_filter.content_type_prefix:
            prefix = catalog_filter.content_type_prefix.lower()
            stmt = stmt.where(func.lower(StoredObject.content_type).startswith(prefix, autoescape=True))
        if catalog_filter.search:
            needle = catalog_filter.search.lower()
            stmt = stmt.where(
                or_(
                    func.lower(StoredObject.original_name).contains(needle, autoescape=True),
                    func.lower(StoredObject.content_type).contains(needle, autoescape=True),
                )
            )

        if catalog_filter.newest_first:
            stmt = stmt.order_by(StoredObject.uploaded_at.desc(), StoredObject.id)
        else:
            stmt = stmt.order_by(StoredObject.uploaded_at.asc(), StoredObject.id)
        if catalog_filter.offset:
            stmt = stmt.offset(catalog_filter.offset)
        if catalog_filter.limit is not None:
            stmt = stmt.limit(catalog_filter.limit)
        return list(db.execute(stmt).scalars().all())

    def delete(self, db: Session, object_id: ObjectId) -> None:
        try:
            object_id = coerce_object_id(object_id)
        except ObjectNotFound:
            return
        db.execute(delete(StoredObject).where(StoredObject.id == object_id))
        db.commit()

    @staticmethod
    def summarize(record: StoredObject) -> StoredObjectSummary:
        return StoredObjectSummary(
            id=record.id,
            original_name=record.suggested_filename,
            content_type=record.content_type,
            length=record.length,
            uploaded_at=record.uploaded_at,
            metadata=dict(record.object_metadata or {}),
        )
