from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
    func,
)

from .db import Base


class StoredObject(Base):
    """Catalog record for one committed object."""

    __tablename__ = "stored_objects"
    __table_args__ = (
        Index("idx_stored_objects_uploaded_at", "uploaded_at"),
        Index("idx_stored_objects_content_type", "content_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Internal name; original_name is what the uploader called the file.
    filename = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    content_type = Column(String, nullable=False, default="")
    length = Column(BigInteger, nullable=False, default=0)
    chunk_size = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    # "metadata" is reserved on declarative classes, hence the attribute name.
    object_metadata = Column("metadata", JSON, nullable=False, default=dict)

    @property
    def suggested_filename(self) -> str:
        metadata = self.object_metadata or {}
        return metadata.get("originalName") or self.filename


class ObjectChunk(Base):
    __tablename__ = "object_chunks"

    object_id = Column(Uuid(as_uuid=True), primary_key=True)
    sequence_index = Column(Integer, primary_key=True)
    payload = Column(LargeBinary, nullable=False)
    written_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ChunkManifest(Base):
    """Written on commit; chunks are readable only once this row exists."""

    __tablename__ = "chunk_manifests"

    object_id = Column(Uuid(as_uuid=True), primary_key=True)
    length = Column(BigInteger, nullable=False)
    chunk_count = Column(Integer, nullable=False)
    chunk_size = Column(Integer, nullable=False)
    committed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
