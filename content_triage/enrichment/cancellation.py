"""
Cooperative cancellation for enrichment runs.

A token is checked before every LLM call and before results are persisted.
It trips on the in-process event (set by cancel_enrichment in the same
process) or on the job row: cancel bit set, job no longer enriching, or a
newer run started. The row check is what lets an RQ worker notice a cancel
issued by the API process.
"""

import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_triage.models.enums import JobStatus, Phase
from content_triage.models.tables import ContentAnalysisJob


class EnrichmentCancelled(Exception):
    """Raised at a checkpoint once cancellation has been observed."""

    def __init__(self, job_id: int, run_id: int):
        self.job_id = job_id
        self.run_id = run_id
        super().__init__(f"Enrichment run {run_id} for job {job_id} was cancelled")


class CancellationToken:

    def __init__(
        self,
        job_id: int,
        run_id: int,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.job_id = job_id
        self.run_id = run_id
        self._session_factory = session_factory
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def checkpoint(self) -> None:
        """Raise EnrichmentCancelled if the run should stop."""
        if self._event.is_set():
            raise EnrichmentCancelled(self.job_id, self.run_id)
        if self._session_factory is None:
            return

        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    ContentAnalysisJob.status,
                    ContentAnalysisJob.current_phase,
                    ContentAnalysisJob.cancel_requested,
                    ContentAnalysisJob.enrichment_run_count,
                ).where(ContentAnalysisJob.id == self.job_id)
            )
            row = result.first()

        if (
            row is None
            or row.cancel_requested
            or row.status != JobStatus.RUNNING.value
            or row.current_phase != Phase.ENRICHMENT.value
            or row.enrichment_run_count != self.run_id
        ):
            self._event.set()
            raise EnrichmentCancelled(self.job_id, self.run_id)
