"""Print job model: the durable record of a release link's lifecycle."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RELEASED = "released"
    COMPLETED = "completed"
    DELETED = "deleted"


class PrintJob(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(21), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    document_name: Mapped[str] = mapped_column(String(255), nullable=False)

    pages: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    color: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duplex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stapling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(String(32), nullable=False, default="normal")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.PENDING,
    )
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    first_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    secure_token: Mapped[str] = mapped_column(String(32), nullable=False)
    release_link: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    printer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    released_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
