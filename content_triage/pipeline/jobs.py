"""
Job manager: runs the identification phase and tracks analysis jobs.

Stages for one source field:
  OPEN (create or reopen the job, status running)
  -> DETECT (pure scan against the campaign's entity index)
  -> PERSIST (upsert items, recompute counters, status completed)

A failure after OPEN marks the job failed with a user-safe reason and
surfaces as InternalError.
"""

import time
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_triage.config import settings
from content_triage.errors import AnalysisError, InternalError, JobBusyError, NotFoundError, ValidationError
from content_triage.models.enums import JobStatus, Phase, Resolution
from content_triage.models.tables import ContentAnalysisItem, ContentAnalysisJob
from content_triage.observability import metrics
from content_triage.pipeline import state
from content_triage.pipeline.detector import DetectorConfig, KnownEntity, detect
from content_triage.pipeline.locks import JobLocks, load_job_for_update
from content_triage.review import items as item_store
from content_triage.stores.base import EntitySnapshot, EntityStore

logger = structlog.get_logger(__name__)

ANALYSIS_FAILED_REASON = "Content analysis failed; please retry"

# Source whose own entity must not be reported as a mention of itself
ENTITY_SOURCE_TABLE = "entities"


def to_known_entity(entity: EntitySnapshot) -> KnownEntity:
    return KnownEntity(
        id=entity.id,
        name=entity.name,
        entity_type=entity.entity_type,
        aliases=tuple(a for a in entity.aliases if a),
    )


class JobManager:
    """
    Creates and tracks ContentAnalysisJob rows.
    One identification pass per call; concurrent calls for the same source
    field are serialised.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        entity_store: EntityStore,
        locks: JobLocks,
        detector_config: Optional[DetectorConfig] = None,
    ):
        self.session_factory = session_factory
        self.entity_store = entity_store
        self.locks = locks
        self.detector_config = detector_config or DetectorConfig.from_settings()

    # ── Identification ───────────────────────────────────────
    async def trigger_analysis(
        self,
        campaign_id: int,
        source_table: str,
        source_id: int,
        source_field: str,
        content: str,
    ) -> tuple[ContentAnalysisJob, list[ContentAnalysisItem]]:
        """
        Run the detector over content and persist pending items.

        Re-analysing a source field reuses its latest job: resolved items
        survive, pending items that are no longer detected are dropped and
        new detections are added. Rejected with JobBusyError while that job
        is enriching.
        """
        self._validate_source(source_table, source_field, content)
        scope = ("source", campaign_id, source_table, source_id, source_field)

        async with self.locks.hold(scope):
            job_id = await self._open_job(campaign_id, source_table, source_id, source_field, content)
            async with self.locks.hold(job_id):
                return await self._run_identification(job_id, campaign_id, source_table, source_id, content)

    def _validate_source(self, source_table: str, source_field: str, content: str) -> None:
        if not source_table or not source_table.strip():
            raise ValidationError("source_table is required")
        if not source_field or not source_field.strip():
            raise ValidationError("source_field is required")
        if content is None:
            raise ValidationError("content is required")
        if len(content) > settings.MAX_ANALYSIS_CONTENT_CHARS:
            raise ValidationError(
                f"Content exceeds {settings.MAX_ANALYSIS_CONTENT_CHARS} characters",
                details={"length": len(content)},
            )

    async def _open_job(
        self,
        campaign_id: int,
        source_table: str,
        source_id: int,
        source_field: str,
        content: str,
    ) -> int:
        """Create a job, or reopen the latest one for this field. Returns its id."""
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                select(ContentAnalysisJob.id)
                .where(
                    ContentAnalysisJob.campaign_id == campaign_id,
                    ContentAnalysisJob.source_table == source_table,
                    ContentAnalysisJob.source_id == source_id,
                    ContentAnalysisJob.source_field == source_field,
                )
                .order_by(ContentAnalysisJob.created_at.desc(), ContentAnalysisJob.id.desc())
                .limit(1)
            )
            existing_id = result.scalar_one_or_none()

            if existing_id is None:
                job = ContentAnalysisJob(
                    campaign_id=campaign_id,
                    source_table=source_table,
                    source_id=source_id,
                    source_field=source_field,
                    status=JobStatus.CREATED.value,
                    phases=[],
                )
                session.add(job)
                await session.flush()
                logger.info("analysis_job_created", job_id=job.id, campaign_id=campaign_id, source_table=source_table)
            else:
                job = await load_job_for_update(session, existing_id)
                if state.is_enriching(job):
                    raise JobBusyError(
                        f"Analysis job {job.id} is enriching; cancel it or wait before re-analysing",
                        details={"job_id": job.id},
                    )
                if job.status == JobStatus.RUNNING.value:
                    # An identification pass that never finished, e.g. the process died mid-run
                    logger.warning("stale_identification_recovered", job_id=job.id)
                    state.fail_phase(job, ANALYSIS_FAILED_REASON)
                logger.info("analysis_job_reopened", job_id=job.id, previous_status=job.status)

            state.start_phase(job, Phase.IDENTIFICATION)
            job.content_snapshot = content
            return job.id

    async def _run_identification(
        self,
        job_id: int,
        campaign_id: int,
        source_table: str,
        source_id: int,
        content: str,
    ) -> tuple[ContentAnalysisJob, list[ContentAnalysisItem]]:
        started_at = time.time()
        try:
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id)
                entities = await self.entity_store.list_campaign_entities(session, campaign_id)
                exclude_ids = {source_id} if source_table == ENTITY_SOURCE_TABLE else set()

                detections = detect(
                    content,
                    [to_known_entity(e) for e in entities],
                    exclude_ids=exclude_ids,
                    config=self.detector_config,
                )
                job_items = await item_store.upsert_identification_items(session, job, detections)
                job.total_items, job.resolved_items = await item_store.count_items(
                    session, job.id, Phase.IDENTIFICATION
                )
                state.finish_phase(job)
        except AnalysisError:
            await self._mark_failed(job_id, ANALYSIS_FAILED_REASON)
            metrics.analysis_jobs_total.labels(source_table=source_table, outcome="failed").inc()
            raise
        except Exception as e:
            logger.error("analysis_failed", job_id=job_id, error=str(e), exc_info=True)
            await self._mark_failed(job_id, ANALYSIS_FAILED_REASON)
            metrics.analysis_jobs_total.labels(source_table=source_table, outcome="failed").inc()
            raise InternalError(ANALYSIS_FAILED_REASON, details={"job_id": job_id}) from e

        for detection in detections:
            metrics.detections_total.labels(detection_type=detection.detection_type.value).inc()
        metrics.analysis_jobs_total.labels(source_table=source_table, outcome="completed").inc()
        metrics.analysis_duration_seconds.observe(time.time() - started_at)

        logger.info(
            "analysis_completed",
            job_id=job.id,
            detections=len(detections),
            total_items=job.total_items,
            resolved_items=job.resolved_items,
            duration_ms=int((time.time() - started_at) * 1000),
        )
        return job, job_items

    async def _mark_failed(self, job_id: int, reason: str) -> None:
        async with self.session_factory() as session, session.begin():
            job = await load_job_for_update(session, job_id)
            if job.status == JobStatus.RUNNING.value:
                state.fail_phase(job, reason)

    async def mark_failed(self, job_id: int, reason: str) -> None:
        """Record an unrecoverable failure for a running job."""
        async with self.locks.hold(job_id):
            await self._mark_failed(job_id, reason)
        logger.warning("analysis_job_failed", job_id=job_id, reason=reason)

    # ── Queries ──────────────────────────────────────────────
    async def get_job(self, job_id: int, campaign_id: Optional[int] = None) -> ContentAnalysisJob:
        async with self.session_factory() as session:
            job = await session.get(ContentAnalysisJob, job_id)
            if job is None or (campaign_id is not None and job.campaign_id != campaign_id):
                raise NotFoundError(f"Analysis job {job_id} not found")
            return job

    async def list_jobs(
        self,
        campaign_id: int,
        source_table: Optional[str] = None,
        source_id: Optional[int] = None,
        status: Optional[JobStatus] = None,
    ) -> list[ContentAnalysisJob]:
        query = select(ContentAnalysisJob).where(ContentAnalysisJob.campaign_id == campaign_id)
        if source_table is not None:
            query = query.where(ContentAnalysisJob.source_table == source_table)
        if source_id is not None:
            query = query.where(ContentAnalysisJob.source_id == source_id)
        if status is not None:
            query = query.where(ContentAnalysisJob.status == status.value)
        query = query.order_by(ContentAnalysisJob.created_at.desc(), ContentAnalysisJob.id.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_job_items(
        self,
        job_id: int,
        campaign_id: Optional[int] = None,
        resolution: Optional[Resolution] = None,
        phase: Optional[Phase] = None,
    ) -> list[ContentAnalysisItem]:
        async with self.session_factory() as session:
            job = await session.get(ContentAnalysisJob, job_id)
            if job is None or (campaign_id is not None and job.campaign_id != campaign_id):
                raise NotFoundError(f"Analysis job {job_id} not found")
            return await item_store.list_items(session, job_id, resolution=resolution, phase=phase)
