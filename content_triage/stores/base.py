"""
Interfaces to the campaign system's entity and relationship stores.
The analysis service never owns entities; it reads them to build the
detector index and grounding context, and writes through these seams when
a reviewer accepts a suggestion.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession


class EntitySnapshot(BaseModel):
    """Read-only view of an entity as the analysis service sees it."""
    id: int
    campaign_id: int
    entity_type: str
    name: str
    aliases: list[str] = []
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class RelationshipSnapshot(BaseModel):
    id: int
    source_entity_id: int
    target_entity_id: int
    relationship_type: str
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class EntityStore(ABC):
    """
    Entity store boundary.

    Methods take the caller's session so that writes made while resolving
    an item commit or roll back together with the item itself.
    """

    @abstractmethod
    async def list_campaign_entities(self, session: AsyncSession, campaign_id: int) -> list[EntitySnapshot]:
        ...

    @abstractmethod
    async def get_entity(self, session: AsyncSession, entity_id: int) -> Optional[EntitySnapshot]:
        ...

    @abstractmethod
    async def create_entity(
        self, session: AsyncSession, campaign_id: int, entity_type: str, name: str,
        description: Optional[str] = None,
    ) -> EntitySnapshot:
        ...

    @abstractmethod
    async def update_description(self, session: AsyncSession, entity_id: int, description: str) -> None:
        ...

    @abstractmethod
    async def add_log_entry(
        self, session: AsyncSession, campaign_id: int, entity_id: int, content: str,
        occurred_at: Optional[str] = None,
    ) -> None:
        ...


class RelationshipStore(ABC):
    """Relationship store boundary."""

    @abstractmethod
    async def list_for_entities(
        self, session: AsyncSession, entity_ids: Sequence[int],
    ) -> list[RelationshipSnapshot]:
        """Relationships touching any of the given entities, either direction."""
        ...

    @abstractmethod
    async def exists_between(self, session: AsyncSession, entity_a: int, entity_b: int) -> bool:
        ...

    @abstractmethod
    async def create(
        self, session: AsyncSession, campaign_id: int, source_entity_id: int,
        target_entity_id: int, relationship_type: str, description: Optional[str] = None,
    ) -> RelationshipSnapshot:
        ...
