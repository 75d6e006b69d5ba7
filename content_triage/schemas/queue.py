"""
Pydantic response schemas for the /api/v1/queue endpoints.
"""

from pydantic import BaseModel


class QueueStats(BaseModel):
    """Snapshot of the RQ enrichment queue."""
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    deferred: int
    workers: int
