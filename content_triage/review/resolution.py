"""
Review workflow: resolve, revert and batch-resolve analysis items.

Each operation runs under the per-job lock and in one transaction with the
job row locked, so the item update, any collaborator write and the counter
change commit or roll back together.
"""

from typing import Any, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_triage.errors import (
    AlreadyResolvedError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    NotResolvedError,
    UnsupportedResolutionError,
    ValidationError,
)
from content_triage.models.enums import DetectionType, EntityType, Phase, Resolution
from content_triage.models.tables import ContentAnalysisItem, ContentAnalysisJob, utcnow
from content_triage.observability import metrics
from content_triage.pipeline.locks import JobLocks, load_job_for_update
from content_triage.review import items as item_store
from content_triage.stores.base import EntityStore, RelationshipStore

logger = structlog.get_logger(__name__)


def apply_resolution_change(job: ContentAnalysisJob, phase: Phase, delta: int) -> None:
    """
    The only place job counters move after detection or enrichment.
    Results are clamped to [0, total] for the item's phase.
    """
    if phase == Phase.IDENTIFICATION:
        job.resolved_items = max(0, min(job.total_items, job.resolved_items + delta))
    elif phase == Phase.ENRICHMENT:
        job.enrichment_resolved = max(0, min(job.enrichment_total, job.enrichment_resolved + delta))
    else:
        raise InternalError(f"Unknown phase {phase!r}")


def parse_resolution(value: Union[str, Resolution]) -> Resolution:
    try:
        resolution = Resolution(value)
    except ValueError as e:
        raise ValidationError(
            "Resolution must be one of: accepted, new_entity, dismissed"
        ) from e
    if resolution == Resolution.PENDING:
        raise ValidationError("Use revert to return an item to pending")
    return resolution


def parse_detection_type(value: Union[str, DetectionType]) -> DetectionType:
    try:
        return DetectionType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown detection type {value!r}") from e


class ResolutionService:
    """Reviewer-facing operations on analysis items."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        entity_store: EntityStore,
        relationship_store: RelationshipStore,
        locks: JobLocks,
    ):
        self.session_factory = session_factory
        self.entity_store = entity_store
        self.relationship_store = relationship_store
        self.locks = locks

    async def resolve_item(
        self,
        item_id: int,
        resolution: Union[str, Resolution],
        entity_type: Optional[str] = None,
        entity_name: Optional[str] = None,
        override: Optional[dict[str, Any]] = None,
        campaign_id: Optional[int] = None,
    ) -> ContentAnalysisItem:
        """
        Resolve one pending item.

        accepted: the item must already reference an entity; enrichment
            suggestions are applied to the entity store.
        new_entity: creates an entity from entity_type + entity_name.
        dismissed: no side effects.
        """
        resolution = parse_resolution(resolution)
        job_id = await self._job_id_for_item(item_id, campaign_id)

        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id)
                item = await self._load_item(session, item_id, job_id)
                if item_store.is_resolved(item):
                    raise AlreadyResolvedError(
                        f"Item {item_id} is already {item.resolution}",
                        details={"item_id": item_id, "resolution": item.resolution},
                    )

                if resolution == Resolution.ACCEPTED:
                    if item.entity_id is None:
                        raise InvalidStateError(
                            f"Item {item_id} has no entity to accept; use new_entity instead",
                            details={"item_id": item_id},
                        )
                    await self._apply_suggestion(session, job, item, override)
                    resolved_entity_id = item.entity_id
                elif resolution == Resolution.NEW_ENTITY:
                    resolved_entity_id = await self._create_entity(session, job, item, entity_type, entity_name)
                else:
                    resolved_entity_id = None

                item_store.mark_resolved(item, resolution, resolved_entity_id, utcnow())
                apply_resolution_change(job, Phase(item.phase), +1)

        metrics.resolutions_total.labels(resolution=resolution.value, detection_type=item.detection_type).inc()
        logger.info(
            "item_resolved",
            item_id=item_id,
            job_id=job_id,
            resolution=resolution.value,
            detection_type=item.detection_type,
            resolved_entity_id=resolved_entity_id,
        )
        return item

    async def revert_item(self, item_id: int, campaign_id: Optional[int] = None) -> ContentAnalysisItem:
        """
        Return a resolved item to pending.
        Entity store writes made when it was accepted are left in place.
        """
        job_id = await self._job_id_for_item(item_id, campaign_id)

        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id)
                item = await self._load_item(session, item_id, job_id)
                if not item_store.is_resolved(item):
                    raise NotResolvedError(f"Item {item_id} is not resolved", details={"item_id": item_id})

                previous = item.resolution
                item_store.mark_pending(item)
                apply_resolution_change(job, Phase(item.phase), -1)

        metrics.reverts_total.labels(detection_type=item.detection_type).inc()
        logger.info("item_reverted", item_id=item_id, job_id=job_id, previous_resolution=previous)
        return item

    async def batch_resolve(
        self,
        job_id: int,
        detection_type: Union[str, DetectionType],
        resolution: Union[str, Resolution],
        campaign_id: Optional[int] = None,
    ) -> int:
        """
        Apply one resolution to every pending item of a detection type.
        Returns the number of items resolved; a second identical call
        returns 0. Accepting skips items that reference no entity.
        """
        resolution = parse_resolution(resolution)
        if resolution == Resolution.NEW_ENTITY:
            raise UnsupportedResolutionError("new_entity cannot be applied in bulk; resolve items one by one")
        detection_type = parse_detection_type(detection_type)

        async with self.locks.hold(job_id):
            async with self.session_factory() as session, session.begin():
                job = await load_job_for_update(session, job_id, campaign_id)
                pending = await item_store.list_items(
                    session, job_id, resolution=Resolution.PENDING, detection_type=detection_type
                )
                resolved_at = utcnow()
                resolved = 0
                skipped = 0
                for item in pending:
                    if resolution == Resolution.ACCEPTED:
                        if item.entity_id is None:
                            skipped += 1
                            continue
                        await self._apply_suggestion(session, job, item, None)
                        item_store.mark_resolved(item, resolution, item.entity_id, resolved_at)
                    else:
                        item_store.mark_resolved(item, resolution, None, resolved_at)
                    resolved += 1

                apply_resolution_change(job, detection_type.phase, resolved)

        if resolved:
            metrics.resolutions_total.labels(
                resolution=resolution.value, detection_type=detection_type.value
            ).inc(resolved)
        logger.info(
            "batch_resolved",
            job_id=job_id,
            detection_type=detection_type.value,
            resolution=resolution.value,
            resolved=resolved,
            skipped=skipped,
        )
        return resolved

    async def pending_count(
        self,
        campaign_id: int,
        source_table: Optional[str] = None,
        source_id: Optional[int] = None,
    ) -> int:
        async with self.session_factory() as session:
            return await item_store.count_pending(session, campaign_id, source_table, source_id)

    # ── Helpers ──────────────────────────────────────────────
    async def _job_id_for_item(self, item_id: int, campaign_id: Optional[int]) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContentAnalysisItem.job_id, ContentAnalysisJob.campaign_id)
                .join(ContentAnalysisJob, ContentAnalysisItem.job_id == ContentAnalysisJob.id)
                .where(ContentAnalysisItem.id == item_id)
            )
            row = result.first()
        if row is None or (campaign_id is not None and row.campaign_id != campaign_id):
            raise NotFoundError(f"Analysis item {item_id} not found")
        return row.job_id

    async def _load_item(self, session: AsyncSession, item_id: int, job_id: int) -> ContentAnalysisItem:
        item = await item_store.get_item(session, item_id, for_update=True)
        if item is None or item.job_id != job_id:
            raise NotFoundError(f"Analysis item {item_id} not found")
        return item

    async def _create_entity(
        self,
        session: AsyncSession,
        job: ContentAnalysisJob,
        item: ContentAnalysisItem,
        entity_type: Optional[str],
        entity_name: Optional[str],
    ) -> int:
        description = None
        # A new-entity suggestion already carries a name and type
        if item.detection_type == DetectionType.NEW_ENTITY_SUGGESTION.value:
            suggested = item.suggested_content or {}
            entity_type = entity_type or suggested.get("entity_type")
            entity_name = entity_name or item.matched_text
            description = suggested.get("description") or None

        if not entity_type or not entity_type.strip():
            raise ValidationError("Entity type is required for new_entity resolution")
        if not entity_name or not entity_name.strip():
            raise ValidationError("Entity name is required for new_entity resolution")
        try:
            entity_type = EntityType(entity_type.strip().lower()).value
        except ValueError as e:
            raise ValidationError(f"Unknown entity type {entity_type!r}") from e

        entity = await self.entity_store.create_entity(
            session, job.campaign_id, entity_type, entity_name.strip(), description=description
        )
        return entity.id

    async def _require_campaign_entity(self, session: AsyncSession, job: ContentAnalysisJob, entity_id: Any) -> None:
        # Reviewer overrides may carry arbitrary ids
        if isinstance(entity_id, bool) or not isinstance(entity_id, int):
            raise ValidationError(f"Entity id must be an integer, got {entity_id!r}")
        entity = await self.entity_store.get_entity(session, entity_id)
        if entity is None or entity.campaign_id != job.campaign_id:
            raise NotFoundError(f"Entity {entity_id} not found")

    async def _apply_suggestion(
        self,
        session: AsyncSession,
        job: ContentAnalysisJob,
        item: ContentAnalysisItem,
        override: Optional[dict[str, Any]],
    ) -> None:
        """Write an accepted enrichment suggestion through to the entity stores."""
        detection_type = DetectionType(item.detection_type)
        if detection_type.phase == Phase.IDENTIFICATION:
            return

        payload = {**(item.suggested_content or {}), **(override or {})}

        if detection_type == DetectionType.DESCRIPTION_UPDATE:
            description = payload.get("suggestedDescription")
            if not isinstance(description, str) or not description.strip():
                raise InvalidStateError(f"Item {item.id} has no suggested description")
            await self.entity_store.update_description(session, item.entity_id, description)

        elif detection_type == DetectionType.LOG_ENTRY:
            content = payload.get("content")
            if not isinstance(content, str) or not content.strip():
                raise InvalidStateError(f"Item {item.id} has no log entry content")
            await self.entity_store.add_log_entry(
                session, job.campaign_id, item.entity_id, content, occurred_at=payload.get("occurredAt") or None
            )

        elif detection_type == DetectionType.RELATIONSHIP_SUGGESTION:
            source_id = payload.get("sourceEntityId")
            target_id = payload.get("targetEntityId")
            relationship_type = payload.get("relationshipType")
            if not source_id or not target_id or not relationship_type:
                raise InvalidStateError(f"Item {item.id} has an incomplete relationship suggestion")
            for entity_id in (source_id, target_id):
                await self._require_campaign_entity(session, job, entity_id)
            if source_id == target_id:
                raise ValidationError("A relationship needs two different entities")
            if await self.relationship_store.exists_between(session, source_id, target_id):
                logger.info(
                    "relationship_exists_skipped",
                    item_id=item.id,
                    source_entity_id=source_id,
                    target_entity_id=target_id,
                )
                return
            await self.relationship_store.create(
                session,
                job.campaign_id,
                source_id,
                target_id,
                relationship_type,
                description=payload.get("description") or None,
            )

        elif detection_type == DetectionType.NEW_ENTITY_SUGGESTION:
            raise InvalidStateError(f"Item {item.id} suggests a new entity; resolve it with new_entity")

        else:
            raise InternalError(f"No side effect defined for {detection_type.value}")
