"""Print job endpoints: submit, preview, view, print-token, decrypt, release."""

import base64
import logging
from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.background import BackgroundTask

from config import settings
from models import JobStatus, get_db
from release.lifecycle import DocumentPayload, PrintOptions, ReleaseService
from release.uploads import spool_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

STREAM_CHUNK_SIZE = 64 * 1024
VIEW_MESSAGE = (
    "Document preview opened. This was a one-time view - "
    "the button is now permanently disabled."
)


def get_release_service(request: Request) -> ReleaseService:
    """FastAPI dependency returning the process-wide release coordinator."""
    return request.app.state.release


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class JobOut(CamelModel):
    id: str
    user_id: str
    document_name: str
    pages: int
    copies: int
    color: bool
    duplex: bool
    stapling: bool
    priority: str
    notes: str
    status: JobStatus
    cost: float
    submitted_at: datetime
    released_at: datetime | None = None
    completed_at: datetime | None = None
    deleted_at: datetime | None = None
    first_viewed_at: datetime | None = None
    last_viewed_at: datetime | None = None
    secure_token: str
    release_link: str
    expires_at: datetime
    view_count: int
    printer_id: str | None = None
    released_by: str | None = None


class FileOut(CamelModel):
    filename: str
    originalname: str
    mimetype: str
    size: int


class SubmittedJobOut(JobOut):
    expiration_duration: int
    file: FileOut | None = None


class ViewRequest(CamelModel):
    token: str | None = None
    user_id: str | None = None


class PrintTokenRequest(CamelModel):
    token: str | None = None


class ReleaseRequest(CamelModel):
    token: str | None = None
    printer_id: str | None = None
    released_by: str | None = None


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def resolve_origin(request: Request) -> str:
    """Public base URL for release links.

    Explicit config wins, then the Origin header, then the forwarded
    proto/host pair, then the request's own scheme and host.
    """
    if settings.public_base_url:
        return settings.public_base_url
    origin = request.headers.get("origin")
    if origin:
        return origin
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def _is_true(value: str | bool | None) -> bool:
    return value is True or str(value).lower() == "true"


def _document_out(document: DocumentPayload | None) -> dict | None:
    if document is None:
        return None
    encoded = base64.b64encode(document.content).decode("ascii")
    return {
        "dataUrl": f"data:{document.mime_type};base64,{encoded}",
        "mimeType": document.mime_type,
        "name": document.filename,
        "size": document.size,
        "isEncrypted": document.is_encrypted,
    }


def _iter_chunks(data: bytes):
    view = memoryview(data)
    for start in range(0, len(view), STREAM_CHUNK_SIZE):
        yield bytes(view[start : start + STREAM_CHUNK_SIZE])


# ---------------------------------------------------------------------------
# Routes (fixed paths before /{job_id})
# ---------------------------------------------------------------------------

@router.post("/")
@router.post("", include_in_schema=False)
async def submit_job(
    request: Request,
    file: UploadFile | None = File(None),
    user_id: str | None = Form(None, alias="userId"),
    document_name: str | None = Form(None, alias="documentName"),
    pages: int = Form(1, ge=1),
    copies: int = Form(1, ge=1),
    color: str = Form("false"),
    duplex: str = Form("false"),
    stapling: str = Form("false"),
    priority: str = Form("normal"),
    notes: str = Form(""),
    expiration_duration: int = Form(settings.default_expiration_minutes, alias="expirationDuration", ge=1),
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Submit a print job with an optional document upload."""
    upload = None
    if file is not None and file.filename:
        upload = await spool_upload(file, settings.upload_dir, settings.max_upload_bytes)

    result = await service.submit(
        db,
        user_id=user_id,
        document_name=document_name or (upload.originalname if upload else None) or "Document",
        options=PrintOptions(
            pages=pages,
            copies=copies,
            color=_is_true(color),
            duplex=_is_true(duplex),
            stapling=_is_true(stapling),
            priority=priority or "normal",
            notes=notes or "",
        ),
        origin=resolve_origin(request),
        expiration_minutes=expiration_duration,
        upload=upload,
    )

    job = SubmittedJobOut.model_validate(
        {
            **JobOut.model_validate(result.job).model_dump(),
            "expiration_duration": result.expiration_duration,
            "file": FileOut.model_validate(result.file) if result.file else None,
        }
    )
    return {"success": True, "job": job.model_dump(by_alias=True, mode="json")}


@router.get("/")
@router.get("", include_in_schema=False)
async def list_jobs(
    user_id: str | None = Query(None, alias="userId"),
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """All jobs, newest first, optionally filtered by user."""
    jobs = await service.list_jobs(db, user_id)
    return {"jobs": [JobOut.model_validate(j).model_dump(by_alias=True, mode="json") for j in jobs]}


@router.get("/cleanup/expired")
async def list_expired(service: ReleaseService = Depends(get_release_service)):
    """Expired links the cleanup loop has not swept yet."""
    return {"expired": service.expired_entries()}


@router.get("/decrypt/{job_id}")
async def decrypt_document(
    job_id: str,
    print_token: str | None = Query(None, alias="printToken"),
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Stream the decrypted document. Requires a fresh, unused print token."""
    document = await service.stream_decrypted(db, job_id, print_token)
    logger.info(f"Streaming {document.size} bytes for job {job_id}")
    headers = {
        "Content-Disposition": f'inline; filename="{quote(document.filename)}"',
        "Content-Length": str(document.size),
        "Cache-Control": "no-store",
        "Pragma": "no-cache",
        "Expires": "0",
    }
    return StreamingResponse(
        _iter_chunks(document.content),
        media_type=document.mime_type,
        headers=headers,
        background=BackgroundTask(service.finish_stream, job_id, print_token),
    )


@router.get("/{job_id}")
async def fetch_job(
    job_id: str,
    token: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Preview a job through its release link. Does not spend the view."""
    result = await service.fetch(db, job_id, token)
    job = JobOut.model_validate(result.job).model_dump(by_alias=True, mode="json")
    document = _document_out(result.document)
    if document is not None:
        job["document"] = document
    if result.analysis is not None:
        job["analysis"] = result.analysis
    return {"job": job}


@router.post("/{job_id}/view")
async def view_job(
    job_id: str,
    request: Request,
    body: ViewRequest | None = None,
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Spend the job's one-time view and return the document."""
    body = body or ViewRequest()
    result = await service.view(
        db,
        job_id,
        body.token,
        user_id=body.user_id,
        user_agent=request.headers.get("user-agent", ""),
        ip_address=client_ip(request),
    )
    return {
        "success": True,
        "document": _document_out(result.document),
        "viewCount": result.view_count,
        "firstViewedAt": result.first_viewed_at.isoformat(),
        "message": VIEW_MESSAGE,
    }


@router.post("/{job_id}/print-token")
async def create_print_token(
    job_id: str,
    request: Request,
    body: PrintTokenRequest | None = None,
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Mint a 60-second, single-use token for the decrypt endpoint."""
    body = body or PrintTokenRequest()
    entry = await service.mint_print_token(db, job_id, body.token, client_ip(request))
    return {"success": True, "printToken": entry.token}


@router.post("/{job_id}/release")
async def release_job(
    job_id: str,
    body: ReleaseRequest | None = None,
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Release a viewed job for printing. Destroys the stored document."""
    body = body or ReleaseRequest()
    await service.release(db, job_id, body.token, body.printer_id, body.released_by)
    return {
        "success": True,
        "message": "Print job released successfully!",
        "status": JobStatus.RELEASED.value,
    }


@router.post("/{job_id}/complete")
async def complete_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    service: ReleaseService = Depends(get_release_service),
):
    """Mark a released job as printed."""
    job = await service.complete(db, job_id)
    return {"success": True, "message": "Job marked as completed", "status": job.status.value}
