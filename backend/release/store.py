"""Job, document and view persistence.

None of these helpers commit; the lifecycle controller owns the
transaction so each request's writes land atomically.
"""

import json
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Document, DocumentAnalysis, JobStatus, JobView, PrintJob
from security.tokens import random_id


async def get_job(db: AsyncSession, job_id: str) -> PrintJob | None:
    result = await db.execute(
        select(PrintJob)
        .where(PrintJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_jobs(db: AsyncSession, user_id: str | None = None) -> list[PrintJob]:
    """Jobs, newest first, optionally scoped to one user."""
    query = select(PrintJob)
    if user_id:
        query = query.where(PrintJob.user_id == user_id)
    result = await db.execute(query.order_by(PrintJob.submitted_at.desc()))
    return list(result.scalars().all())


async def get_document(db: AsyncSession, job_id: str) -> Document | None:
    result = await db.execute(
        select(Document)
        .where(Document.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_analysis(db: AsyncSession, document_id: str) -> dict | None:
    result = await db.execute(
        select(DocumentAnalysis).where(DocumentAnalysis.document_id == document_id)
    )
    analysis = result.scalars().first()
    if analysis is None:
        return None
    return json.loads(analysis.result)


def add_document(
    db: AsyncSession,
    job_id: str,
    *,
    content: bytes,
    iv: bytes,
    auth_tag: bytes,
    mime_type: str,
    filename: str,
    size: int,
    created_at: datetime,
) -> Document:
    """Stage an encrypted document row for ``job_id``."""
    document = Document(
        id=random_id(),
        job_id=job_id,
        content=content,
        iv=iv,
        auth_tag=auth_tag,
        is_encrypted=True,
        mime_type=mime_type,
        filename=filename,
        size=size,
        created_at=created_at,
    )
    db.add(document)
    return document


def add_basic_metrics(db: AsyncSession, document_id: str, size: int, now: datetime) -> DocumentAnalysis:
    """Stage the basic_metrics analysis row for a freshly stored document."""
    result = {
        "wordCount": size // 6,
        "processedAt": now.isoformat(),
        "status": "completed",
        "features": ["text-extraction", "metadata-analysis"],
    }
    analysis = DocumentAnalysis(
        id=random_id(),
        document_id=document_id,
        analysis_type="basic_metrics",
        result=json.dumps(result),
        status="completed",
        created_at=now,
    )
    db.add(analysis)
    return analysis


async def delete_document(db: AsyncSession, job_id: str) -> int:
    """Delete a job's document and its analysis rows.

    Returns:
        Number of document rows removed (0 or 1).
    """
    doc_ids = select(Document.id).where(Document.job_id == job_id)
    await db.execute(delete(DocumentAnalysis).where(DocumentAnalysis.document_id.in_(doc_ids)))
    result = await db.execute(delete(Document).where(Document.job_id == job_id))
    return result.rowcount or 0


async def mark_viewed(db: AsyncSession, job_id: str, now: datetime) -> bool:
    """Spend the job's single view.

    Compare-and-set on ``view_count = 0`` so only one caller can win.

    Returns:
        True if this call moved view_count from 0 to 1.
    """
    result = await db.execute(
        update(PrintJob)
        .where(PrintJob.id == job_id, PrintJob.view_count == 0)
        .values(view_count=1, first_viewed_at=now, last_viewed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def add_view(
    db: AsyncSession, job_id: str, user_id: str | None, user_agent: str, ip_address: str, now: datetime
) -> JobView:
    view = JobView(
        id=random_id(),
        job_id=job_id,
        user_id=user_id or "anonymous",
        viewed_at=now,
        user_agent=user_agent or "",
        ip_address=ip_address or "",
    )
    db.add(view)
    return view


async def mark_released(
    db: AsyncSession, job_id: str, now: datetime, printer_id: str | None, released_by: str | None
) -> None:
    await db.execute(
        update(PrintJob)
        .where(PrintJob.id == job_id)
        .values(
            status=JobStatus.RELEASED,
            released_at=now,
            printer_id=printer_id,
            released_by=released_by,
        )
        .execution_options(synchronize_session=False)
    )


async def mark_completed(db: AsyncSession, job_id: str, now: datetime) -> None:
    await db.execute(
        update(PrintJob)
        .where(PrintJob.id == job_id)
        .values(status=JobStatus.COMPLETED, completed_at=now)
        .execution_options(synchronize_session=False)
    )


async def mark_deleted(db: AsyncSession, job_id: str, now: datetime) -> bool:
    """Mark a job deleted and drop its document.

    Idempotent: a job already deleted keeps its original deleted_at.

    Returns:
        True if the job row changed.
    """
    await delete_document(db, job_id)
    result = await db.execute(
        update(PrintJob)
        .where(PrintJob.id == job_id, PrintJob.status != JobStatus.DELETED)
        .values(status=JobStatus.DELETED, deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
