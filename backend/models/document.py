"""Encrypted document bodies and their derived analysis records."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(21), primary_key=True)
    job_id: Mapped[str] = mapped_column(
        String(21), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    iv: Mapped[bytes | None] = mapped_column(LargeBinary(16), nullable=True)
    auth_tag: Mapped[bytes | None] = mapped_column(LargeBinary(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class DocumentAnalysis(Base):
    __tablename__ = "document_analysis"

    id: Mapped[str] = mapped_column(String(21), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        String(21), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    analysis_type: Mapped[str] = mapped_column(String(64), nullable=False)
    result: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="completed")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
