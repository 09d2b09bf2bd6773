"""Background expiry sweep.

Periodically scans the in-memory link metadata and evicts every entry whose
deadline has passed: the temp file is deleted, the job is marked deleted
(its document row removed) and the entry is dropped. Jobs currently held by
a request handler are skipped and picked up on a later pass. The same pass
purges expired print tokens and stale rate-limit history.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 60


async def run_cleanup_cycle(service) -> int:
    """Run one sweep over ``service``'s link metadata.

    Per-entry failures are logged and the sweep moves on.

    Returns:
        Number of jobs evicted.
    """
    service.print_tokens.purge()

    now = service.clock()
    expired_ids = [
        job_id
        for job_id, metadata in list(service.metadata.items())
        if metadata.is_expired(now) and job_id not in service.active
    ]
    if not expired_ids:
        return 0

    logger.info(f"[Cleanup] Removing {len(expired_ids)} expired print job(s)")
    evicted = 0
    for job_id in expired_ids:
        try:
            if await service.evict(job_id):
                evicted += 1
        except Exception as e:
            logger.error(f"[Cleanup] Error evicting job {job_id}: {e}")
    return evicted


async def _cleanup_loop(service, interval: float):
    """Background loop that sweeps expired links periodically."""
    while True:
        try:
            await run_cleanup_cycle(service)
        except Exception as e:
            logger.error(f"Cleanup cycle error: {e}")
        await asyncio.sleep(interval)


def start_cleanup(service, interval: float = CLEANUP_INTERVAL_SECONDS) -> asyncio.Task:
    """Start the cleanup loop as an async task on the running loop."""
    task = asyncio.get_running_loop().create_task(_cleanup_loop(service, interval))
    logger.info(f"Background cleanup scheduled (every {interval:g}s)")
    return task


async def stop_cleanup(task: asyncio.Task | None) -> None:
    """Cancel the cleanup task and wait for it to finish."""
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info("Background cleanup stopped")
