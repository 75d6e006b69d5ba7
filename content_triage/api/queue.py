"""
/api/v1/queue endpoints.
Enrichment queue statistics for ENRICHMENT_EXECUTION=queue deployments.
"""

import structlog
from fastapi import APIRouter, Depends
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.worker import Worker

from content_triage.config import settings
from content_triage.dependencies import verify_api_key
from content_triage.errors import AnalysisError
from content_triage.observability import metrics
from content_triage.schemas.queue import QueueStats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/queue", tags=["queue"], dependencies=[Depends(verify_api_key)])


class QueueUnavailableError(AnalysisError):
    status_code = 503
    error_code = "ERR_QUEUE_UNAVAILABLE"


def _get_redis() -> Redis:
    """Get a Redis connection."""
    return Redis.from_url(settings.REDIS_URL)


@router.get("/stats", response_model=QueueStats)
async def queue_stats():
    """Get current queue statistics."""
    try:
        conn = _get_redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)
        workers = Worker.all(connection=conn)

        stats = QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(q),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            deferred=q.deferred_job_registry.count,
            workers=len(workers),
        )
    except RedisError as e:
        logger.warning("queue_unavailable", error=str(e))
        raise QueueUnavailableError(f"Queue unavailable: {e}") from e

    metrics.worker_queue_depth.set(stats.queued)
    return stats
