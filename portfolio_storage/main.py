from __future__ import annotations

import json
import logging
from typing import Any, Dict, Literal, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.types import Receive, Scope, Send

from .core.config import settings
from .database.db import SessionLocal, get_db
from .schemas import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    DeleteOutcomeResponse,
    FileUploadResponse,
    StoredObjectSummary,
)
from .services.catalog_service import CatalogFilter, CatalogService
from .services.deletion_service import DeletionCoordinator
from .services.ingestion_service import IngestionService
from .services.retrieval_service import Disposition, RetrievalService
from .storage import (
    ObjectNotFound,
    RangeNotSatisfiable,
    ReadStream,
    StorageError,
    StoreUnavailable,
    WriteFailure,
    build_chunk_store,
)

app = FastAPI(title="Portfolio Storage")

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Range"],
        expose_headers=["Content-Disposition", "Content-Range", "Accept-Ranges"],
    )

chunk_store = build_chunk_store(settings, SessionLocal)
catalog_service = CatalogService()
ingestion_service = IngestionService(chunk_store, catalog_service)
retrieval_service = RetrievalService(chunk_store, catalog_service)
deletion_coordinator = DeletionCoordinator(
    chunk_store,
    SessionLocal,
    catalog=catalog_service,
    max_workers=settings.bulk_delete_max_workers,
)

logger = logging.getLogger(__name__)


def _parse_metadata_field(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="metadata must be valid JSON") from exc
    if not isinstance(value, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="metadata must be a JSON object")
    return value


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.post("/api/files/upload", response_model=FileUploadResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: Optional[UploadFile] = File(None),
    metadata: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    extra_metadata = _parse_metadata_field(metadata)
    try:
        object_id = ingestion_service.ingest(
            db,
            file.file,
            content_type=file.content_type,
            original_name=file.filename,
            extra_metadata=extra_metadata,
        )
    except (WriteFailure, StoreUnavailable) as exc:
        logger.exception("Upload of %s failed", file.filename)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to upload file") from exc

    record = catalog_service.get(db, object_id)
    return FileUploadResponse(
        file_id=record.id,
        filename=record.original_name,
        content_type=record.content_type,
        length=record.length,
    )


@app.get("/api/files", response_model=list[StoredObjectSummary])
def list_files(
    q: Optional[str] = None,
    content_type: Optional[str] = None,
    order: Literal["asc", "desc"] = "desc",
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    catalog_filter = CatalogFilter(
        content_type_prefix=content_type,
        search=q,
        newest_first=order == "desc",
        limit=limit,
        offset=offset,
    )
    return [catalog_service.summarize(record) for record in catalog_service.list(db, catalog_filter)]


class ObjectStreamResponse(StreamingResponse):
    """Streams a ``ReadStream`` and closes it however the response ends."""

    def __init__(self, stream: ReadStream, **kwargs: Any) -> None:
        super().__init__(stream, **kwargs)
        self.stream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # A client disconnect surfaces here as an exception; the stream ends up cancelled.
            self.stream.close()


def _serve_file(request: Request, file_id: str, disposition: Disposition, download: bool, db: Session):
    if download:
        disposition = Disposition.attachment
    try:
        retrieved = retrieval_service.retrieve(db, file_id, disposition, request.headers.get("range"))
    except ObjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    except RangeNotSatisfiable as exc:
        raise HTTPException(status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE, detail=str(exc)) from exc
    except StorageError as exc:
        logger.exception("Error retrieving file %s", file_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error retrieving file") from exc

    headers = {
        "Content-Disposition": retrieved.content_disposition,
        "Content-Length": str(retrieved.length),
        "Accept-Ranges": "bytes",
        "X-Content-Type-Options": "nosniff",
    }
    status_code = status.HTTP_200_OK
    if retrieved.content_range is not None:
        headers["Content-Range"] = retrieved.content_range
        status_code = status.HTTP_206_PARTIAL_CONTENT

    return ObjectStreamResponse(
        retrieved.stream,
        status_code=status_code,
        media_type=retrieved.content_type,
        headers=headers,
    )


@app.get("/api/files/{file_id}")
def download_file(
    file_id: str,
    request: Request,
    disposition: Disposition = Disposition.inline,
    download: bool = False,
    db: Session = Depends(get_db),
):
    return _serve_file(request, file_id, disposition, download, db)


@app.get("/api/files/{file_id}/{filename}")
def download_file_by_name(
    file_id: str,
    filename: str,
    request: Request,
    disposition: Disposition = Disposition.inline,
    download: bool = False,
    db: Session = Depends(get_db),
):
    """Same as ``download_file``; the trailing name only makes stored URLs readable."""
    return _serve_file(request, file_id, disposition, download, db)


@app.delete("/api/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(file_id: str, db: Session = Depends(get_db)):
    try:
        deletion_coordinator.delete(db, file_id)
    except ObjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    except StorageError as exc:
        logger.exception("Error deleting file %s", file_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete file") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/api/files/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete_files(payload: BulkDeleteRequest):
    report = deletion_coordinator.delete_many(payload.ids)
    return BulkDeleteResponse(
        results=[
            DeleteOutcomeResponse(id=outcome.id, success=outcome.success, error_reason=outcome.error_reason)
            for outcome in report.outcomes
        ],
        deleted=report.deleted,
        failed=report.failed,
    )
