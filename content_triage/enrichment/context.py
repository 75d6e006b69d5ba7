"""
Grounding context for enrichment prompts.

Everything the LLM is allowed to see about a job: the analysed text
(bounded), the entities a reviewer confirmed in it, their existing
relationships and the campaign's entity list for new-entity detection.
"""

from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from content_triage.config import settings
from content_triage.models.enums import Phase, Resolution
from content_triage.models.tables import ContentAnalysisItem, ContentAnalysisJob
from content_triage.pipeline.detector import strip_wiki_links
from content_triage.review import items as item_store
from content_triage.stores.base import EntitySnapshot, EntityStore, RelationshipSnapshot, RelationshipStore

TRUNCATION_MARKER = "[...]"

RESOLVED_VERBS = frozenset({Resolution.ACCEPTED.value, Resolution.NEW_ENTITY.value})


@dataclass
class GroundingContext:
    job_id: int
    campaign_id: int
    content: str
    max_chars: int = 6000
    # Entities confirmed in this content, in order of first appearance
    entities: list[EntitySnapshot] = field(default_factory=list)
    relationships: list[RelationshipSnapshot] = field(default_factory=list)
    # Campaign entities listed in the new-entity prompt (bounded)
    known_entities: list[EntitySnapshot] = field(default_factory=list)
    # All campaign entity names by id, for validating suggestions
    entity_names: dict[int, str] = field(default_factory=dict)
    # Lower-cased names and aliases of every campaign entity
    known_names: frozenset[str] = frozenset()

    def plain_content(self) -> str:
        """Content with [[wiki link]] markup reduced to its display text."""
        return strip_wiki_links(self.content)

    def excerpt(self) -> str:
        return truncate_content(self.plain_content(), self.max_chars)

    def excerpt_for(self, entity: EntitySnapshot) -> str:
        return truncate_around(self.plain_content(), entity.name, self.max_chars)

    def relationships_for(self, entity_id: int) -> list[RelationshipSnapshot]:
        return [
            r for r in self.relationships
            if entity_id in (r.source_entity_id, r.target_entity_id)
        ]

    def related_pairs(self) -> set[frozenset[int]]:
        return {frozenset((r.source_entity_id, r.target_entity_id)) for r in self.relationships}


def truncate_content(content: str, max_chars: int) -> str:
    """Keep the head of the content, marking the cut explicitly."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "\n\n" + TRUNCATION_MARKER


def truncate_around(content: str, focus: str, max_chars: int) -> str:
    """
    Keep a max_chars window centred on the first mention of focus,
    with markers on each side that was cut.
    """
    if len(content) <= max_chars:
        return content

    idx = content.lower().find(focus.lower()) if focus else -1
    if idx < 0:
        return truncate_content(content, max_chars)

    half = max_chars // 2
    start = max(0, idx - half)
    end = start + max_chars
    if end > len(content):
        end = len(content)
        start = max(0, end - max_chars)

    window = content[start:end]
    if start > 0:
        window = TRUNCATION_MARKER + "\n\n" + window
    if end < len(content):
        window = window + "\n\n" + TRUNCATION_MARKER
    return window


def resolved_entity_ids(items: Sequence[ContentAnalysisItem]) -> list[int]:
    """Distinct entities confirmed by accepted or new_entity identification items."""
    seen: list[int] = []
    for item in items:
        if item.phase != Phase.IDENTIFICATION.value or item.resolution not in RESOLVED_VERBS:
            continue
        if item.resolved_entity_id is not None and item.resolved_entity_id not in seen:
            seen.append(item.resolved_entity_id)
    return seen


async def build_grounding_context(
    session: AsyncSession,
    job: ContentAnalysisJob,
    entity_store: EntityStore,
    relationship_store: RelationshipStore,
) -> GroundingContext:
    items = await item_store.list_items(session, job.id, phase=Phase.IDENTIFICATION)
    entity_ids = resolved_entity_ids(items)[: settings.ENRICHMENT_MAX_ENTITIES]

    campaign_entities = await entity_store.list_campaign_entities(session, job.campaign_id)
    by_id = {e.id: e for e in campaign_entities}

    entities = []
    for entity_id in entity_ids:
        # Fall back to a direct lookup; foreign-campaign entities are skipped
        entity = by_id.get(entity_id) or await entity_store.get_entity(session, entity_id)
        if entity is not None and entity.campaign_id == job.campaign_id:
            entities.append(entity)

    known_names = set()
    for e in campaign_entities:
        known_names.add(e.name.strip().lower())
        known_names.update(a.strip().lower() for a in e.aliases if a)

    return GroundingContext(
        job_id=job.id,
        campaign_id=job.campaign_id,
        content=job.content_snapshot or "",
        max_chars=settings.ENRICHMENT_CONTEXT_MAX_CHARS,
        entities=entities,
        relationships=await relationship_store.list_for_entities(session, [e.id for e in entities]),
        known_entities=campaign_entities[: settings.ENRICHMENT_KNOWN_ENTITY_LIMIT],
        entity_names={e.id: e.name for e in campaign_entities},
        known_names=frozenset(known_names),
    )
