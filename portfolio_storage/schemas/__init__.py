from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FileUploadResponse(BaseModel):
    file_id: UUID
    filename: str
    content_type: str
    length: int


class StoredObjectSummary(BaseModel):
    """Browse view of one stored object."""

    id: UUID
    original_name: str
    content_type: str
    length: int
    uploaded_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BulkDeleteRequest(BaseModel):
    """Request body for POST /api/files/bulk-delete."""

    ids: List[str]


class DeleteOutcomeResponse(BaseModel):
    id: str
    success: bool
    error_reason: Optional[str] = None


class BulkDeleteResponse(BaseModel):
    """Per-id outcomes plus the counts shown to the operator."""

    results: List[DeleteOutcomeResponse]
    deleted: int
    failed: int
