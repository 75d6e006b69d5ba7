"""
Item store: persistence for content analysis items.

Identification items are upserted by (matched_text, position_start,
position_end) so re-analysing unchanged content never duplicates pending
work; resolved items follow their mention when edits shift it. Enrichment items are appended in a single batch per run.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_triage.models.enums import AgentName, DetectionType, Phase, Resolution
from content_triage.models.tables import ContentAnalysisItem, ContentAnalysisJob
from content_triage.pipeline.detector import RawDetection

logger = structlog.get_logger(__name__)

SpanKey = tuple[str, Optional[int], Optional[int]]


@dataclass
class ItemDraft:
    """An enrichment suggestion ready to be stored as a pending item."""
    detection_type: DetectionType
    matched_text: str
    suggested_content: dict[str, Any]
    entity_id: Optional[int] = None
    similarity: Optional[float] = None
    context_snippet: Optional[str] = None


def span_key(item: Union[ContentAnalysisItem, RawDetection]) -> SpanKey:
    return (item.matched_text, item.position_start, item.position_end)


def is_resolved(item: ContentAnalysisItem) -> bool:
    return item.resolution != Resolution.PENDING.value


async def upsert_identification_items(
    session: AsyncSession,
    job: ContentAnalysisJob,
    detections: Sequence[RawDetection],
) -> list[ContentAnalysisItem]:
    """
    Reconcile a job's identification items with a fresh detector pass.

    - pending items whose span is detected again are refreshed in place
    - a resolved item whose span is gone follows the same mention to its
      new span, so edits above it do not turn it back into pending work
    - other resolved items are never touched
    - pending items no longer detected are deleted
    - remaining new spans are inserted as pending

    Returns the job's identification items ordered by position.
    """
    existing = await list_items(session, job.id, phase=Phase.IDENTIFICATION)
    by_key = {span_key(item): item for item in existing}
    detected_keys = {span_key(detection) for detection in detections}
    orphans: dict[tuple[str, str], list[ContentAnalysisItem]] = {}
    for item in existing:
        if is_resolved(item) and span_key(item) not in detected_keys:
            orphans.setdefault((item.matched_text, item.detection_type), []).append(item)

    seen: set[SpanKey] = set()
    inserted = 0
    repointed = 0

    for detection in detections:
        key = span_key(detection)
        if key in seen:
            continue
        seen.add(key)

        item = by_key.get(key)
        if item is None:
            moved = orphans.get((detection.matched_text, detection.detection_type.value))
            if moved:
                item = moved.pop(0)
                item.position_start = detection.position_start
                item.position_end = detection.position_end
                item.context_snippet = detection.context_snippet
                repointed += 1
                continue
            session.add(ContentAnalysisItem(
                job_id=job.id,
                detection_type=detection.detection_type.value,
                matched_text=detection.matched_text,
                entity_id=detection.entity_id,
                similarity=detection.similarity,
                context_snippet=detection.context_snippet,
                position_start=detection.position_start,
                position_end=detection.position_end,
                resolution=Resolution.PENDING.value,
                phase=Phase.IDENTIFICATION.value,
                agent_name=AgentName.DETECTOR.value,
            ))
            inserted += 1
        elif not is_resolved(item):
            item.detection_type = detection.detection_type.value
            item.entity_id = detection.entity_id
            item.similarity = detection.similarity
            item.context_snippet = detection.context_snippet

    removed = 0
    for key, item in by_key.items():
        if key not in seen and not is_resolved(item):
            await session.delete(item)
            removed += 1

    await session.flush()
    logger.info(
        "identification_items_upserted",
        job_id=job.id,
        detections=len(detections),
        inserted=inserted,
        repointed=repointed,
        removed=removed,
    )
    return await list_items(session, job.id, phase=Phase.IDENTIFICATION)


async def add_enrichment_items(
    session: AsyncSession,
    job: ContentAnalysisJob,
    drafts: Sequence[ItemDraft],
    pipeline_run_id: int,
) -> list[ContentAnalysisItem]:
    items = [
        ContentAnalysisItem(
            job_id=job.id,
            detection_type=draft.detection_type.value,
            matched_text=draft.matched_text,
            entity_id=draft.entity_id,
            similarity=draft.similarity,
            context_snippet=draft.context_snippet,
            resolution=Resolution.PENDING.value,
            suggested_content=draft.suggested_content,
            phase=Phase.ENRICHMENT.value,
            agent_name=AgentName.ENRICHMENT.value,
            pipeline_run_id=pipeline_run_id,
        )
        for draft in drafts
    ]
    session.add_all(items)
    await session.flush()
    return items


async def get_item(session: AsyncSession, item_id: int, for_update: bool = False) -> Optional[ContentAnalysisItem]:
    query = select(ContentAnalysisItem).where(ContentAnalysisItem.id == item_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list_items(
    session: AsyncSession,
    job_id: int,
    resolution: Optional[Resolution] = None,
    phase: Optional[Phase] = None,
    detection_type: Optional[DetectionType] = None,
) -> list[ContentAnalysisItem]:
    """Items of a job, positioned items first in text order, then by id."""
    query = select(ContentAnalysisItem).where(ContentAnalysisItem.job_id == job_id)
    if resolution is not None:
        query = query.where(ContentAnalysisItem.resolution == resolution.value)
    if phase is not None:
        query = query.where(ContentAnalysisItem.phase == phase.value)
    if detection_type is not None:
        query = query.where(ContentAnalysisItem.detection_type == detection_type.value)
    query = query.order_by(
        ContentAnalysisItem.position_start.is_(None),
        ContentAnalysisItem.position_start,
        ContentAnalysisItem.id,
    )
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_items(session: AsyncSession, job_id: int, phase: Phase) -> tuple[int, int]:
    """Return (total, resolved) for one phase of a job."""
    result = await session.execute(
        select(ContentAnalysisItem.resolution, func.count(ContentAnalysisItem.id))
        .where(ContentAnalysisItem.job_id == job_id, ContentAnalysisItem.phase == phase.value)
        .group_by(ContentAnalysisItem.resolution)
    )
    counts = {row[0]: row[1] for row in result.all()}
    total = sum(counts.values())
    return total, total - counts.get(Resolution.PENDING.value, 0)


async def count_pending(
    session: AsyncSession,
    campaign_id: int,
    source_table: Optional[str] = None,
    source_id: Optional[int] = None,
) -> int:
    query = (
        select(func.count(ContentAnalysisItem.id))
        .join(ContentAnalysisJob, ContentAnalysisItem.job_id == ContentAnalysisJob.id)
        .where(
            ContentAnalysisJob.campaign_id == campaign_id,
            ContentAnalysisItem.resolution == Resolution.PENDING.value,
        )
    )
    if source_table is not None:
        query = query.where(ContentAnalysisJob.source_table == source_table)
    if source_id is not None:
        query = query.where(ContentAnalysisJob.source_id == source_id)
    result = await session.execute(query)
    return result.scalar() or 0


def mark_resolved(
    item: ContentAnalysisItem,
    resolution: Resolution,
    resolved_entity_id: Optional[int],
    resolved_at: datetime,
) -> None:
    item.resolution = resolution.value
    item.resolved_entity_id = resolved_entity_id
    item.resolved_at = resolved_at


def mark_pending(item: ContentAnalysisItem) -> None:
    item.resolution = Resolution.PENDING.value
    item.resolved_entity_id = None
    item.resolved_at = None
