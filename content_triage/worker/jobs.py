"""
RQ job functions for enrichment.
The API enqueues (job_id, run_id); the worker runs the orchestrator for it.
"""

import asyncio

import structlog
from redis import Redis
from rq import Queue

from content_triage.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the enrichment job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_enrichment(job_id: int, run_id: int) -> str:
    """
    Enqueue an enrichment run.
    Returns the RQ job ID.
    """
    q = get_queue()
    rq_job = q.enqueue(
        run_enrichment_job,
        job_id,
        run_id,
        job_id=f"enrichment-{job_id}-{run_id}",
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("enrichment_enqueued", job_id=job_id, run_id=run_id, rq_job_id=rq_job.id)
    return rq_job.id


def run_enrichment_job(job_id: int, run_id: int) -> dict:
    """
    Main job function: execute one enrichment run.
    This runs inside the RQ worker process.
    """
    logger.info("worker_job_started", job_id=job_id, run_id=run_id)
    outcome = asyncio.run(_run_enrichment_async(job_id, run_id))
    logger.info("worker_job_finished", job_id=job_id, run_id=run_id, outcome=outcome)
    return {"job_id": job_id, "run_id": run_id, "outcome": outcome}


async def _run_enrichment_async(job_id: int, run_id: int) -> str:
    """
    Each RQ job gets a fresh event loop, so it gets its own engine too;
    pooled connections cannot cross loops.
    """
    from content_triage.dependencies import build_orchestrator
    from content_triage.models.database import build_engine, build_session_factory

    engine = build_engine()
    try:
        orchestrator = build_orchestrator(build_session_factory(engine))
        return await orchestrator.run(job_id, run_id)
    finally:
        await engine.dispose()
