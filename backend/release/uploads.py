"""Temp-file spooling for uploaded documents."""

import logging
import os
import uuid
from dataclasses import dataclass

import aiofiles
import aiofiles.os

from release.errors import UploadTooLarge

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class UploadedFile:
    path: str
    filename: str
    originalname: str
    mimetype: str
    size: int


async def spool_upload(upload, upload_dir: str, max_bytes: int) -> UploadedFile:
    """Copy an incoming upload to ``upload_dir`` under a random name.

    Args:
        upload: Anything with ``async read(n)``, ``filename`` and ``content_type``
                (a FastAPI ``UploadFile``).
        upload_dir: Directory for temp files; created if missing.
        max_bytes: Upload cap.

    Raises:
        UploadTooLarge: If the body exceeds ``max_bytes``. The partial file is removed.
    """
    await aiofiles.os.makedirs(upload_dir, exist_ok=True)
    filename = uuid.uuid4().hex
    path = os.path.join(upload_dir, filename)
    size = 0
    try:
        async with aiofiles.open(path, "wb") as out:
            while chunk := await upload.read(CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    raise UploadTooLarge(
                        f"File size exceeds limit (max {max_bytes // (1024 * 1024)}MB)"
                    )
                await out.write(chunk)
    except Exception:
        await remove_temp_file(path)
        raise

    logger.info(f"Spooled upload '{upload.filename}' ({size} bytes) to {path}")
    return UploadedFile(
        path=path,
        filename=filename,
        originalname=upload.filename or "document",
        mimetype=upload.content_type or "application/octet-stream",
        size=size,
    )


async def read_temp_file(path: str) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


async def temp_file_exists(path: str | None) -> bool:
    return bool(path) and await aiofiles.os.path.exists(path)


async def remove_temp_file(path: str | None) -> bool:
    """Delete a temp file if it is still there.

    Returns:
        True if a file was removed.
    """
    if not path:
        return False
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return False
    logger.info(f"Deleted temp file: {path}")
    return True
