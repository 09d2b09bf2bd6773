"""Master test fixtures.

Environment variables are set BEFORE any application imports so that
``config.Settings()`` initialises with test-safe values and never
touches Docker secrets or a production database.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff0f1e2d3c4b5a69788796a5b4c3d2e1f0"

# ── Set test env vars before any app import ──────────────────────────
os.environ.update({
    "DATABASE_URL": "sqlite+aiosqlite://",
    "ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
    "UPLOAD_DIR": os.path.join(tempfile.gettempdir(), "secureprint-test-uploads"),
    "PUBLIC_BASE_URL": "https://test.example.com",
    "CLEANUP_INTERVAL_SECONDS": "3600",
})

import pytest

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Now safe to import application code
from config import settings
from models.base import Base, get_db
from release.lifecycle import PrintOptions, ReleaseService
from release.uploads import UploadedFile
from security.envelope import Envelope


class FakeClock:
    """Injectable clock; tests move time forward with ``advance()``."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ── In-memory SQLite, one fresh database per test ────────────────────

@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Yield a test DB session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def envelope() -> Envelope:
    return Envelope(bytes.fromhex(TEST_ENCRYPTION_KEY))


@pytest.fixture
def service(envelope, session_factory, clock) -> ReleaseService:
    """Release coordinator on the test database, driven by the fake clock."""
    return ReleaseService(envelope, session_factory, clock=clock)


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point the upload directory at a per-test temp dir."""
    directory = tmp_path / "uploads"
    directory.mkdir()
    monkeypatch.setattr(settings, "upload_dir", str(directory))
    return directory


@pytest.fixture
def make_upload(upload_dir):
    """Factory writing a spooled temp file and returning its ``UploadedFile``."""
    counter = {"n": 0}

    def _make(content: bytes = b"%PDF-1.4 quarterly report", name: str = "report.pdf",
              mimetype: str = "application/pdf") -> UploadedFile:
        counter["n"] += 1
        filename = f"spooled{counter['n']:04d}"
        path = upload_dir / filename
        path.write_bytes(content)
        return UploadedFile(
            path=str(path),
            filename=filename,
            originalname=name,
            mimetype=mimetype,
            size=len(content),
        )

    return _make


@pytest.fixture
def submit(service, db_session, make_upload):
    """Submit a job through the service; returns the ``SubmitResult``."""

    async def _submit(content: bytes | None = b"%PDF-1.4 quarterly report", *,
                      expiration_minutes: int = 15, user_id: str = "user-1", **options):
        upload = make_upload(content) if content is not None else None
        return await service.submit(
            db_session,
            user_id=user_id,
            document_name="report.pdf",
            options=PrintOptions(**options),
            origin="https://print.example.com",
            expiration_minutes=expiration_minutes,
            upload=upload,
        )

    return _submit


@pytest.fixture
async def test_client(service, session_factory, upload_dir):
    """HTTPX async client wired to the FastAPI app, with DB override.

    The startup event is NOT run; the test coordinator is installed on
    ``app.state`` directly and each request gets its own session.
    """
    from main import app

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.release = service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
