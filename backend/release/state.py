"""In-memory release state: link metadata and the active-operation guard.

Both live only as long as the process. A restart invalidates every
outstanding link because the metadata map is the authority for
"is this link still valid".
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class EphemeralMetadata:
    """Link state for one job: expiry, release token and the spooled file.

    ``view_count``, ``first_viewed_at`` and ``status`` mirror the job row so
    a live link can be inspected without a query. Decisions are made on the
    row; these fields are only kept in step with it.
    """

    expires_at: datetime
    created_at: datetime
    token: str
    view_count: int = 0
    first_viewed_at: datetime | None = None
    file_path: str | None = None
    mimetype: str | None = None
    originalname: str | None = None
    status: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ActiveOperations:
    """Job ids currently held by a request handler.

    ``hold()`` serialises operations on the same id: a second caller waits
    until the first releases. The cleanup loop checks ``in`` and skips held ids.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._holders

    def __len__(self) -> int:
        return len(self._holders)

    @asynccontextmanager
    async def hold(self, job_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._holders[job_id] = self._holders.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[job_id] -= 1
            if not self._holders[job_id]:
                del self._holders[job_id]
                self._locks.pop(job_id, None)
