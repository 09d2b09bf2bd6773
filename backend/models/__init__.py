from .base import Base, async_engine, async_session_factory, get_db
from .job import JobStatus, PrintJob
from .document import Document, DocumentAnalysis
from .job_view import JobView

__all__ = [
    "Base",
    "async_engine",
    "async_session_factory",
    "get_db",
    "JobStatus",
    "PrintJob",
    "Document",
    "DocumentAnalysis",
    "JobView",
]
