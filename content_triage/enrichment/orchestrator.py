"""
Enrichment orchestrator: the optional second phase of a job.

Stages for one run:
  CONTEXT (grounding context from the job's content snapshot)
  -> GENERATE (one LLM call per confirmed entity, then one new-entity call)
  -> PARSE (strict shape, lenient content filtering)
  -> PERSIST (all items at once, status completed)

A run is all-or-nothing: a provider failure or malformed output marks the
job failed and no enrichment items are written. Cancellation is checked
before every LLM call and before persisting.
"""

import asyncio
import time
from typing import Callable, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_triage.config import settings
from content_triage.enrichment import prompts
from content_triage.enrichment.cancellation import CancellationToken, EnrichmentCancelled
from content_triage.enrichment.context import GroundingContext, build_grounding_context, resolved_entity_ids
from content_triage.enrichment.parser import (
    enrichment_drafts,
    new_entity_drafts,
    parse_enrichment_response,
    parse_new_entity_response,
)
from content_triage.errors import InternalError, NotFoundError, ProviderError, ValidationError
from content_triage.llm.base import LLMProvider
from content_triage.models.enums import EnrichmentStatus, Phase, Resolution
from content_triage.models.tables import ContentAnalysisItem, ContentAnalysisJob
from content_triage.observability import metrics
from content_triage.pipeline import state
from content_triage.pipeline.locks import JobLocks, load_job_for_update
from content_triage.review import items as item_store
from content_triage.review.items import ItemDraft
from content_triage.stores.base import EntityStore, RelationshipStore

logger = structlog.get_logger(__name__)

INTERNAL_FAILURE_REASON = "Enrichment failed due to an internal error"
NO_ENTITIES_WARNING = (
    "No resolved entities in this job; only new-entity detection will run. "
    "Accept some detections first for richer suggestions."
)

# Hands a run to the background queue: (job_id, run_id) -> None
Enqueuer = Callable[[int, int], None]


class EnrichmentOrchestrator:
    """
    Starts, runs and cancels enrichment for analysis jobs.

    At most one run per job is active. Runs execute as asyncio tasks in
    this process (ENRICHMENT_EXECUTION=inline) or on the RQ worker
    (ENRICHMENT_EXECUTION=queue), which calls run() directly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        entity_store: EntityStore,
        relationship_store: RelationshipStore,
        provider: LLMProvider,
        locks: JobLocks,
        execution: Optional[str] = None,
        enqueue: Optional[Enqueuer] = None,
    ):
        self.session_factory = session_factory
        self.entity_store = entity_store
        self.relationship_store = relationship_store
        self.provider = provider
        self.locks = locks
        self.execution = execution or settings.ENRICHMENT_EXECUTION
        self.enqueue = enqueue
        self._tasks: dict[int, asyncio.Task] = {}
        self._tokens: dict[int, CancellationToken] = {}

    # ── Trigger / cancel ─────────────────────────────────────
    async def trigger_enrichment(self, job_id: int, campaign_id: Optional[int] = None) -> dict:
        """
        Start an enrichment run and return immediately.

        Returns {"status", "entity_count", "message"}; status is
        already_running when a run is active, enriching otherwise.
        """
        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id, campaign_id)
                if state.is_enriching(job):
                    logger.info("enrichment_already_running", job_id=job_id)
                    return {
                        "status": EnrichmentStatus.ALREADY_RUNNING.value,
                        "entity_count": None,
                        "message": "Enrichment is already running for this job",
                    }
                if not state.identification_completed(job):
                    raise ValidationError(
                        "Identification must complete before enrichment can start",
                        details={"job_id": job_id, "status": job.status},
                    )

                job_items = await item_store.list_items(session, job_id, phase=Phase.IDENTIFICATION)
                entity_count = len(resolved_entity_ids(job_items))

                state.start_phase(job, Phase.ENRICHMENT)
                job.enrichment_run_count += 1
                run_id = job.enrichment_run_count

            await self._dispatch(job_id, run_id)

        logger.info("enrichment_triggered", job_id=job_id, run_id=run_id, entity_count=entity_count)
        return {
            "status": EnrichmentStatus.ENRICHING.value,
            "entity_count": entity_count,
            "message": NO_ENTITIES_WARNING if entity_count == 0 else None,
        }

    async def cancel_enrichment(self, job_id: int, campaign_id: Optional[int] = None) -> dict:
        """Stop the active run. Without one, report not_running and change nothing."""
        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id, campaign_id)
                if not state.is_enriching(job):
                    return {"status": EnrichmentStatus.NOT_RUNNING.value}
                job.cancel_requested = True
                state.cancel_phase(job)
                run_id = job.enrichment_run_count

        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()
        logger.info("enrichment_cancelled", job_id=job_id, run_id=run_id)
        return {"status": EnrichmentStatus.CANCELLED.value}

    async def _dispatch(self, job_id: int, run_id: int) -> None:
        if self.execution == "queue":
            if self.enqueue is None:
                raise InternalError("Enrichment queue is not configured")
            try:
                self.enqueue(job_id, run_id)
            except Exception as e:
                logger.error("enrichment_enqueue_failed", job_id=job_id, error=str(e))
                async with self.session_factory() as session, session.begin():
                    job = await load_job_for_update(session, job_id)
                    state.fail_phase(job, "Enrichment could not be queued; please retry")
                raise InternalError("Enrichment could not be queued") from e
            return

        token = CancellationToken(job_id, run_id, self.session_factory)
        previous = self._tokens.get(job_id)
        if previous is not None:
            previous.cancel()
        self._tokens[job_id] = token
        task = asyncio.create_task(self.run(job_id, run_id, token), name=f"enrichment-{job_id}-{run_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._forget(job_id, t, token))

    def _forget(self, job_id: int, task: asyncio.Task, token: CancellationToken) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if self._tokens.get(job_id) is token:
            del self._tokens[job_id]

    async def wait(self, job_id: int) -> None:
        """Wait for this process's run of a job, if any, to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every in-process run; used on shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    # ── Run ──────────────────────────────────────────────────
    async def run(self, job_id: int, run_id: int, token: Optional[CancellationToken] = None) -> str:
        """
        Execute one enrichment run to a terminal state.
        Never raises; the outcome lands on the job and is returned.
        """
        token = token or CancellationToken(job_id, run_id, self.session_factory)
        started_at = time.time()
        metrics.enrichment_runs_active.inc()
        structlog.contextvars.bind_contextvars(job_id=job_id, run_id=run_id)
        try:
            drafts = await self._generate(job_id, token)
            await token.checkpoint()
            count = await self._persist(job_id, run_id, drafts)
            outcome = "completed"
            logger.info(
                "enrichment_completed",
                suggestions=count,
                duration_ms=int((time.time() - started_at) * 1000),
            )
        except EnrichmentCancelled:
            outcome = "cancelled"
            logger.info("enrichment_run_discarded")
        except ProviderError as e:
            outcome = "failed"
            logger.warning("enrichment_provider_failed", provider=e.provider_name, error=e.message)
            await self._fail(job_id, run_id, f"Enrichment failed: {e.public_message}")
        except Exception as e:
            outcome = "failed"
            logger.error("enrichment_crashed", error=str(e), exc_info=True)
            await self._fail(job_id, run_id, INTERNAL_FAILURE_REASON)
        finally:
            metrics.enrichment_runs_active.dec()
            structlog.contextvars.unbind_contextvars("job_id", "run_id")

        metrics.enrichment_runs_total.labels(outcome=outcome).inc()
        return outcome

    async def _generate(self, job_id: int, token: CancellationToken) -> list[ItemDraft]:
        async with self.session_factory() as session:
            job = await session.get(ContentAnalysisJob, job_id)
            if job is None:
                raise NotFoundError(f"Analysis job {job_id} not found")
            context = await build_grounding_context(
                session, job, self.entity_store, self.relationship_store
            )

        logger.info(
            "enrichment_context_ready",
            entities=len(context.entities),
            relationships=len(context.relationships),
            content_chars=len(context.content),
        )

        drafts: list[ItemDraft] = []
        suggested_pairs: set[frozenset[int]] = set()
        for entity in context.entities:
            await token.checkpoint()
            text = await self._call(
                prompts.ENRICHMENT_SYSTEM_PROMPT,
                prompts.build_enrichment_user_prompt(context, entity),
                operation="entity_enrichment",
            )
            response = parse_enrichment_response(text, self.provider.provider_name)
            drafts.extend(enrichment_drafts(entity, response, context, suggested_pairs))

        await token.checkpoint()
        drafts.extend(await self._detect_new_entities(context))
        return drafts

    async def _detect_new_entities(self, context: GroundingContext) -> list[ItemDraft]:
        text = await self._call(
            prompts.NEW_ENTITY_SYSTEM_PROMPT,
            prompts.build_new_entity_user_prompt(context),
            operation="new_entity_detection",
        )
        response = parse_new_entity_response(text, self.provider.provider_name)
        return new_entity_drafts(response, context)

    async def _call(self, system_prompt: str, user_prompt: str, operation: str) -> str:
        provider_name = self.provider.provider_name
        started_at = time.time()
        try:
            return await asyncio.wait_for(
                self.provider.generate(system_prompt, user_prompt),
                timeout=self.provider.call_deadline,
            )
        except asyncio.TimeoutError as e:
            metrics.llm_failures_total.labels(provider=provider_name, operation=operation).inc()
            raise ProviderError(provider_name, "request timed out") from e
        except ProviderError:
            metrics.llm_failures_total.labels(provider=provider_name, operation=operation).inc()
            raise
        finally:
            metrics.llm_request_latency_seconds.labels(
                provider=provider_name, operation=operation
            ).observe(time.time() - started_at)

    async def _persist(self, job_id: int, run_id: int, drafts: list[ItemDraft]) -> int:
        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id)
                if not self._owns_job(job, run_id):
                    raise EnrichmentCancelled(job_id, run_id)

                # Pending suggestions from earlier runs are superseded
                await session.execute(
                    delete(ContentAnalysisItem).where(
                        ContentAnalysisItem.job_id == job_id,
                        ContentAnalysisItem.phase == Phase.ENRICHMENT.value,
                        ContentAnalysisItem.resolution == Resolution.PENDING.value,
                    )
                )
                await item_store.add_enrichment_items(session, job, drafts, pipeline_run_id=run_id)
                job.enrichment_total, job.enrichment_resolved = await item_store.count_items(
                    session, job_id, Phase.ENRICHMENT
                )
                state.finish_phase(job)

        for draft in drafts:
            metrics.enrichment_suggestions_total.labels(detection_type=draft.detection_type.value).inc()
        return len(drafts)

    async def _fail(self, job_id: int, run_id: int, reason: str) -> None:
        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await session.get(ContentAnalysisJob, job_id, with_for_update=True, populate_existing=True)
                if job is None or not self._owns_job(job, run_id):
                    return
                state.fail_phase(job, reason)
        logger.info("enrichment_failed", job_id=job_id, reason=reason)

    @staticmethod
    def _owns_job(job: ContentAnalysisJob, run_id: int) -> bool:
        """True while this run is still the job's live enrichment run."""
        return (
            state.is_enriching(job)
            and not job.cancel_requested
            and job.enrichment_run_count == run_id
        )
