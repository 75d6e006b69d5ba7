"""
Worker entry point.
Run with: python -m content_triage.worker.runner
"""

import structlog
from redis import Redis
from rq import Worker

from content_triage.config import settings
from content_triage.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def main():
    """Start the RQ worker."""
    setup_logging()

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"enrichment-worker-{settings.APP_VERSION}",
    )

    logger.info("worker_starting", queue=settings.QUEUE_NAME, llm_provider=settings.LLM_PROVIDER)
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    main()
