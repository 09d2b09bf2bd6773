"""SecurePrint FastAPI application."""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import make_url

from config import settings
from models.base import Base, async_engine, async_session_factory
from api import jobs
from release.errors import Internal, ReleaseError, ValidationMissing
from release.lifecycle import ReleaseService
from security.envelope import Envelope

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="SecurePrint API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs.router)


@app.exception_handler(ReleaseError)
async def release_error_handler(request: Request, exc: ReleaseError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
    error = ValidationMissing(fields=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_body())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Uniform 500 body. Starlette's server error middleware logs the traceback."""
    error = Internal()
    return JSONResponse(status_code=error.status_code, content=error.to_body())


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)


@app.on_event("startup")
async def startup():
    """Create database tables and start the release coordinator."""
    _ensure_sqlite_dir(settings.database_url)
    os.makedirs(settings.upload_dir, exist_ok=True)

    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready.")

    service = ReleaseService(
        Envelope(settings.encryption_key),
        async_session_factory,
        link_fallback_hours=settings.link_fallback_hours,
    )
    service.start(settings.cleanup_interval_seconds)
    app.state.release = service
    logger.info("Release service started.")


@app.on_event("shutdown")
async def shutdown():
    service = getattr(app.state, "release", None)
    if service is not None:
        await service.stop()


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
