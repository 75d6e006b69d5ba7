"""
SQLAlchemy-backed entity and relationship stores.
Used when the service shares a database with the campaign system.
"""

from typing import Optional, Sequence

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_triage.errors import NotFoundError
from content_triage.models.tables import Entity, EntityLogEntry, EntityRelationship
from content_triage.stores.base import (
    EntitySnapshot,
    EntityStore,
    RelationshipSnapshot,
    RelationshipStore,
)

logger = structlog.get_logger(__name__)


class SqlEntityStore(EntityStore):

    async def list_campaign_entities(self, session: AsyncSession, campaign_id: int) -> list[EntitySnapshot]:
        result = await session.execute(
            select(Entity).where(Entity.campaign_id == campaign_id).order_by(Entity.id)
        )
        return [EntitySnapshot.model_validate(e) for e in result.scalars().all()]

    async def get_entity(self, session: AsyncSession, entity_id: int) -> Optional[EntitySnapshot]:
        entity = await session.get(Entity, entity_id)
        return EntitySnapshot.model_validate(entity) if entity else None

    async def create_entity(
        self, session: AsyncSession, campaign_id: int, entity_type: str, name: str,
        description: Optional[str] = None,
    ) -> EntitySnapshot:
        entity = Entity(
            campaign_id=campaign_id,
            entity_type=entity_type,
            name=name,
            aliases=[],
            description=description,
        )
        session.add(entity)
        await session.flush()
        logger.info("entity_created", entity_id=entity.id, campaign_id=campaign_id, entity_type=entity_type)
        return EntitySnapshot.model_validate(entity)

    async def update_description(self, session: AsyncSession, entity_id: int, description: str) -> None:
        entity = await session.get(Entity, entity_id)
        if entity is None:
            raise NotFoundError(f"Entity {entity_id} not found")
        entity.description = description
        await session.flush()

    async def add_log_entry(
        self, session: AsyncSession, campaign_id: int, entity_id: int, content: str,
        occurred_at: Optional[str] = None,
    ) -> None:
        session.add(EntityLogEntry(
            campaign_id=campaign_id,
            entity_id=entity_id,
            content=content,
            occurred_at=occurred_at,
        ))
        await session.flush()


class SqlRelationshipStore(RelationshipStore):

    async def list_for_entities(
        self, session: AsyncSession, entity_ids: Sequence[int],
    ) -> list[RelationshipSnapshot]:
        if not entity_ids:
            return []
        result = await session.execute(
            select(EntityRelationship)
            .where(or_(
                EntityRelationship.source_entity_id.in_(entity_ids),
                EntityRelationship.target_entity_id.in_(entity_ids),
            ))
            .order_by(EntityRelationship.id)
        )
        return [RelationshipSnapshot.model_validate(r) for r in result.scalars().all()]

    async def exists_between(self, session: AsyncSession, entity_a: int, entity_b: int) -> bool:
        result = await session.execute(
            select(EntityRelationship.id).where(or_(
                and_(EntityRelationship.source_entity_id == entity_a,
                     EntityRelationship.target_entity_id == entity_b),
                and_(EntityRelationship.source_entity_id == entity_b,
                     EntityRelationship.target_entity_id == entity_a),
            )).limit(1)
        )
        return result.scalar() is not None

    async def create(
        self, session: AsyncSession, campaign_id: int, source_entity_id: int,
        target_entity_id: int, relationship_type: str, description: Optional[str] = None,
    ) -> RelationshipSnapshot:
        rel = EntityRelationship(
            campaign_id=campaign_id,
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relationship_type=relationship_type,
            description=description,
        )
        session.add(rel)
        await session.flush()
        logger.info(
            "relationship_created",
            relationship_id=rel.id,
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relationship_type=relationship_type,
        )
        return RelationshipSnapshot.model_validate(rel)
