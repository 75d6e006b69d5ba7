"""
Per-job serialisation.

Every operation that mutates a job or its counters runs inside
JobLocks.hold(job_id) and re-reads the job row with SELECT ... FOR UPDATE,
so in-process callers queue on the asyncio lock and other processes queue
on the row lock.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from content_triage.errors import NotFoundError
from content_triage.models.tables import ContentAnalysisJob


class JobLocks:
    """Registry of asyncio locks keyed by job id (or any hashable scope key)."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                self._locks.pop(key, None)


async def load_job_for_update(
    session: AsyncSession,
    job_id: int,
    campaign_id: Optional[int] = None,
) -> ContentAnalysisJob:
    """Fetch and row-lock a job; other campaigns' jobs report as not found."""
    result = await session.execute(
        select(ContentAnalysisJob)
        .where(ContentAnalysisJob.id == job_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    job = result.scalar_one_or_none()
    if job is None or (campaign_id is not None and job.campaign_id != campaign_id):
        raise NotFoundError(f"Analysis job {job_id} not found")
    return job
