"""Release lifecycle controller.

State machine for a print job::

    (none) --submit--> pending
    pending --view (once)--> pending, view_count = 1
    pending --release (after view)--> released   (document row destroyed)
    released --complete--> completed
    any --expire--> deleted                       (temp file, metadata, document gone)

``ReleaseService`` owns all in-memory state (link metadata, the
active-operation guard, print tokens) and is shared with request handlers
through ``app.state``. Every operation that touches a job holds the job id in
the active-operation guard for its whole duration, so operations on one job
never interleave and the cleanup loop never evicts a job mid-request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import Document, JobStatus, PrintJob
from release import store
from release.errors import (
    AlreadyReleased,
    AlreadyViewed,
    CryptoAuth,
    InvalidTransition,
    LinkExpired,
    NotFound,
    RequiresView,
    TokenInvalid,
    ValidationMissing,
)
from release.print_tokens import PrintToken, PrintTokenRegistry
from release.state import ActiveOperations, Clock, EphemeralMetadata, as_utc, utcnow
from release.uploads import UploadedFile, read_temp_file, remove_temp_file, temp_file_exists
from security.envelope import CryptoError, Envelope, is_valid_pdf
from security.tokens import random_id, release_token, tokens_match
from workers.cleanup import start_cleanup, stop_cleanup

logger = logging.getLogger(__name__)
audit = logging.getLogger("secureprint.audit")

BASE_COST = 0.10
DEFAULT_EXPIRATION_MINUTES = 15
LINK_FALLBACK_HOURS = 24


@dataclass
class PrintOptions:
    pages: int = 1
    copies: int = 1
    color: bool = False
    duplex: bool = False
    stapling: bool = False
    priority: str = "normal"
    notes: str = ""


@dataclass
class DocumentPayload:
    """A decrypted document body ready for the transport layer."""

    content: bytes
    mime_type: str
    filename: str
    size: int
    is_encrypted: bool


@dataclass
class SubmitResult:
    job: PrintJob
    expiration_duration: int
    file: UploadedFile | None


@dataclass
class FetchResult:
    job: PrintJob
    document: DocumentPayload | None
    analysis: dict | None


@dataclass
class ViewResult:
    document: DocumentPayload | None
    view_count: int
    first_viewed_at: datetime


def compute_cost(pages: int, copies: int, color: bool, duplex: bool) -> float:
    """Price of a job, rounded to cents."""
    color_multiplier = 2 if color else 1
    duplex_multiplier = 0.8 if duplex else 1
    return round(BASE_COST * pages * copies * color_multiplier * duplex_multiplier, 2)


def build_release_link(origin: str, job_id: str, token: str) -> str:
    return f"{origin.rstrip('/')}/release/{job_id}?token={token}"


class ReleaseService:
    """Coordinator for the release lifecycle and its in-memory state."""

    def __init__(
        self,
        envelope: Envelope,
        session_factory: async_sessionmaker,
        *,
        clock: Clock = utcnow,
        link_fallback_hours: int = LINK_FALLBACK_HOURS,
    ):
        self.envelope = envelope
        self.session_factory = session_factory
        self.clock = clock
        self.link_fallback = timedelta(hours=link_fallback_hours)
        self.metadata: dict[str, EphemeralMetadata] = {}
        self.active = ActiveOperations()
        self.print_tokens = PrintTokenRegistry(clock=clock)
        self._cleanup_task = None

    def start(self, cleanup_interval: float) -> None:
        """Start the background expiry sweep."""
        self._cleanup_task = start_cleanup(self, cleanup_interval)

    async def stop(self) -> None:
        await stop_cleanup(self._cleanup_task)
        self._cleanup_task = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        db: AsyncSession,
        *,
        user_id: str | None,
        document_name: str | None,
        options: PrintOptions,
        origin: str,
        expiration_minutes: int = DEFAULT_EXPIRATION_MINUTES,
        upload: UploadedFile | None = None,
    ) -> SubmitResult:
        """Create a pending job, encrypting and storing the upload if any.

        The link metadata is registered only after the job row is committed.
        If persisting fails the spooled temp file is removed.
        """
        if not user_id or not document_name:
            if upload is not None:
                await remove_temp_file(upload.path)
            raise ValidationMissing()

        job_id = random_id()
        token = release_token()
        now = self.clock()
        expires_at = now + timedelta(minutes=expiration_minutes)

        async with self.active.hold(job_id):
            try:
                job = PrintJob(
                    id=job_id,
                    user_id=user_id,
                    document_name=document_name,
                    pages=options.pages,
                    copies=options.copies,
                    color=options.color,
                    duplex=options.duplex,
                    stapling=options.stapling,
                    priority=options.priority,
                    notes=options.notes,
                    status=JobStatus.PENDING,
                    cost=compute_cost(options.pages, options.copies, options.color, options.duplex),
                    submitted_at=now,
                    secure_token=token,
                    release_link=build_release_link(origin, job_id, token),
                    expires_at=expires_at,
                    view_count=0,
                )
                db.add(job)
                await db.flush()

                if upload is not None:
                    content = await read_temp_file(upload.path)
                    ciphertext, iv, auth_tag = self.envelope.seal(content)
                    document = store.add_document(
                        db,
                        job_id,
                        content=ciphertext,
                        iv=iv,
                        auth_tag=auth_tag,
                        mime_type=upload.mimetype,
                        filename=upload.originalname,
                        size=upload.size,
                        created_at=now,
                    )
                    await db.flush()
                    store.add_basic_metrics(db, document.id, len(content), now)

                await db.commit()
            except Exception:
                await db.rollback()
                if upload is not None:
                    await remove_temp_file(upload.path)
                raise

            self.metadata[job_id] = EphemeralMetadata(
                expires_at=expires_at,
                created_at=now,
                token=token,
                file_path=upload.path if upload else None,
                mimetype=upload.mimetype if upload else None,
                originalname=upload.originalname if upload else None,
                status=JobStatus.PENDING.value,
            )

        logger.info(
            f"Job {job_id} submitted by user {user_id} "
            f"(expires in {expiration_minutes} min, file={'yes' if upload else 'no'})"
        )
        return SubmitResult(job=job, expiration_duration=expiration_minutes, file=upload)

    async def fetch(self, db: AsyncSession, job_id: str, token: str | None) -> FetchResult:
        """Preview read used by the release page. Does not spend the view."""
        async with self.active.hold(job_id):
            job, metadata = await self._validate_link(db, job_id, token)
            if job.view_count > 0:
                raise AlreadyViewed(job.view_count)

            document = await store.get_document(db, job_id)
            analysis = await store.get_analysis(db, document.id) if document else None
            payload = await self._load_document(job, metadata, document)
            return FetchResult(job=job, document=payload, analysis=analysis)

    async def view(
        self,
        db: AsyncSession,
        job_id: str,
        token: str | None,
        user_id: str | None = None,
        user_agent: str = "",
        ip_address: str = "",
    ) -> ViewResult:
        """Spend the job's single view and return the decrypted document.

        Decryption happens before the view is recorded, so a tampered
        document does not consume the view.
        """
        async with self.active.hold(job_id):
            job, metadata = await self._validate_link(db, job_id, token)
            if job.view_count > 0:
                raise AlreadyViewed(job.view_count)

            document = await store.get_document(db, job_id)
            payload = await self._load_document(job, metadata, document)

            now = self.clock()
            if not await store.mark_viewed(db, job_id, now):
                await db.rollback()
                raise AlreadyViewed()
            store.add_view(db, job_id, user_id, user_agent, ip_address, now)
            await db.commit()

            metadata.view_count = 1
            metadata.first_viewed_at = now
            logger.info(f"[View] Job {job_id} viewed for the first time by user {user_id or 'anonymous'}")
            return ViewResult(document=payload, view_count=1, first_viewed_at=now)

    async def mint_print_token(
        self, db: AsyncSession, job_id: str, token: str | None, client_ip: str
    ) -> PrintToken:
        """Issue a 60-second single-use print token for a live job."""
        async with self.active.hold(job_id):
            job = await store.get_job(db, job_id)
            if job is None:
                audit.info(f"[AUDIT] Job not found for ID: {job_id}")
                raise NotFound()
            if not tokens_match(token, job.secure_token):
                audit.warning(f"[AUDIT] Invalid token attempt for job ID: {job_id}")
                raise TokenInvalid()
            await self._ensure_live(db, job)
            self.print_tokens.check_rate(client_ip)
            return self.print_tokens.mint(job_id, client_ip)

    async def stream_decrypted(
        self, db: AsyncSession, job_id: str, print_token: str | None
    ) -> DocumentPayload:
        """Consume a print token and return the decrypted document.

        The token is marked used before anything else happens; any failure
        afterwards discards it. The caller discards it after streaming
        through ``finish_stream``.
        """
        entry = self.print_tokens.consume(job_id, print_token)
        try:
            async with self.active.hold(job_id):
                job = await store.get_job(db, job_id)
                if job is None:
                    audit.info(f"[AUDIT] Job not found for ID: {job_id}")
                    raise NotFound()
                await self._ensure_live(db, job)

                document = await store.get_document(db, job_id)
                if document is None:
                    audit.info(f"[AUDIT] Document not found for job ID: {job_id}")
                    raise NotFound("Document not found")
                content = self._open(job_id, document, check_pdf=True)
        except Exception:
            self.print_tokens.discard(job_id, entry.token)
            raise

        audit.info(f"[AUDIT] Document decrypted successfully for job ID: {job_id}")
        return DocumentPayload(
            content=content,
            mime_type=document.mime_type or "application/octet-stream",
            filename=document.filename or "document",
            size=len(content),
            is_encrypted=document.is_encrypted,
        )

    def finish_stream(self, job_id: str, print_token: str) -> None:
        """Discard the consumed print token once the body has been sent.

        A token minted for the job while the body was streaming is kept.
        """
        self.print_tokens.discard(job_id, print_token)

    async def release(
        self,
        db: AsyncSession,
        job_id: str,
        token: str | None,
        printer_id: str | None = None,
        released_by: str | None = None,
    ) -> PrintJob:
        """Authorise printing and destroy the stored ciphertext."""
        async with self.active.hold(job_id):
            job, metadata = await self._validate_link(db, job_id, token)
            if job.status in (JobStatus.RELEASED, JobStatus.COMPLETED):
                raise AlreadyReleased()
            if job.view_count == 0:
                raise RequiresView()

            now = self.clock()
            await store.mark_released(db, job_id, now, printer_id, released_by)
            removed = await store.delete_document(db, job_id)
            await db.commit()

            metadata.status = JobStatus.RELEASED.value
            logger.info(
                f"[Release] Job {job_id} released on printer {printer_id} by {released_by} "
                f"({removed} document row(s) destroyed)"
            )
            return await store.get_job(db, job_id)

    async def complete(self, db: AsyncSession, job_id: str) -> PrintJob:
        async with self.active.hold(job_id):
            job = await store.get_job(db, job_id)
            if job is None:
                raise NotFound()
            if job.status != JobStatus.RELEASED:
                raise InvalidTransition()

            await store.mark_completed(db, job_id, self.clock())
            await db.commit()

            metadata = self.metadata.get(job_id)
            if metadata is not None:
                metadata.status = JobStatus.COMPLETED.value
            logger.info(f"[Complete] Job {job_id} marked as completed")
            return await store.get_job(db, job_id)

    async def list_jobs(self, db: AsyncSession, user_id: str | None = None) -> list[PrintJob]:
        return await store.list_jobs(db, user_id)

    def expired_entries(self) -> list[dict]:
        """Links past their deadline that the cleanup loop has not swept yet."""
        now = self.clock()
        return [
            {
                "id": job_id,
                "expiredAt": int(metadata.expires_at.timestamp() * 1000),
                "originalToken": metadata.token[:8] + "...",
            }
            for job_id, metadata in self.metadata.items()
            if metadata.is_expired(now)
        ]

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def evict(self, job_id: str) -> bool:
        """Destroy an expired job unless a handler currently holds it.

        Returns:
            True if the job was evicted by this call.
        """
        if job_id in self.active:
            return False
        async with self.active.hold(job_id):
            metadata = self.metadata.get(job_id)
            if metadata is None or not metadata.is_expired(self.clock()):
                return False
            async with self.session_factory() as db:
                await self._expire(db, job_id, metadata)
            return True

    async def _expire(self, db: AsyncSession, job_id: str, metadata: EphemeralMetadata) -> None:
        """Delete the temp file, mark the job deleted, then drop the metadata.

        Each step is a no-op if already done. Must be called holding ``job_id``.
        """
        await remove_temp_file(metadata.file_path)
        if await store.mark_deleted(db, job_id, self.clock()):
            logger.info(f"[Cleanup] Marked job as deleted: {job_id}")
        await db.commit()
        if self.metadata.get(job_id) is metadata:
            del self.metadata[job_id]
        self.print_tokens.discard(job_id)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    async def _validate_link(
        self, db: AsyncSession, job_id: str, token: str | None
    ) -> tuple[PrintJob, EphemeralMetadata]:
        """Check release token, expiry and job existence, in that order."""
        metadata = self.metadata.get(job_id)
        if metadata is None:
            # No live link. Report expiry only to a holder of the right token.
            job = await store.get_job(db, job_id)
            if job is not None and tokens_match(token, job.secure_token) and self._durably_expired(job):
                raise LinkExpired()
            audit.warning(f"[AUDIT] Invalid token attempt for job ID: {job_id}")
            raise TokenInvalid()

        if not tokens_match(token, metadata.token):
            audit.warning(f"[AUDIT] Invalid token attempt for job ID: {job_id}")
            raise TokenInvalid()

        if metadata.is_expired(self.clock()):
            await self._expire(db, job_id, metadata)
            raise LinkExpired()

        job = await store.get_job(db, job_id)
        if job is None:
            raise NotFound()
        if job.status == JobStatus.DELETED:
            raise LinkExpired()
        return job, metadata

    async def _ensure_live(self, db: AsyncSession, job: PrintJob) -> None:
        """Link-expiry rule for the print path.

        The in-memory deadline wins while an entry exists; without one the
        job falls back to ``submitted_at + link_fallback_hours``.
        """
        if job.status == JobStatus.DELETED:
            audit.info(f"[AUDIT] Attempt to access expired job ID: {job.id}")
            raise LinkExpired()

        now = self.clock()
        metadata = self.metadata.get(job.id)
        if metadata is not None:
            expired = metadata.is_expired(now)
        else:
            expired = now >= as_utc(job.submitted_at) + self.link_fallback
        if expired:
            audit.info(f"[AUDIT] Attempt to access expired job ID: {job.id}")
            if metadata is not None:
                await self._expire(db, job.id, metadata)
            raise LinkExpired()

    def _durably_expired(self, job: PrintJob) -> bool:
        return job.status == JobStatus.DELETED or self.clock() >= as_utc(job.expires_at)

    async def _load_document(
        self, job: PrintJob, metadata: EphemeralMetadata, document: Document | None
    ) -> DocumentPayload | None:
        """Decrypt the stored document, or fall back to the raw temp file."""
        if document is not None:
            content = self._open(job.id, document)
            return DocumentPayload(
                content=content,
                mime_type=document.mime_type,
                filename=document.filename,
                size=document.size,
                is_encrypted=document.is_encrypted,
            )

        if await temp_file_exists(metadata.file_path):
            content = await read_temp_file(metadata.file_path)
            return DocumentPayload(
                content=content,
                mime_type=metadata.mimetype or "application/octet-stream",
                filename=metadata.originalname or job.document_name,
                size=len(content),
                is_encrypted=False,
            )
        return None

    def _open(self, job_id: str, document: Document, check_pdf: bool = False) -> bytes:
        if not document.is_encrypted:
            return bytes(document.content)
        try:
            content = self.envelope.open(document.content, document.iv, document.auth_tag)
        except CryptoError as e:
            audit.error(f"[AUDIT] Decryption failed for job ID: {job_id}: {e}")
            raise CryptoAuth()
        if check_pdf and document.mime_type and "pdf" in document.mime_type:
            if not is_valid_pdf(content):
                audit.error(f"[AUDIT] Decryption failed - invalid PDF content for job ID: {job_id}")
                raise CryptoAuth("Decryption failed - invalid content")
        return content
