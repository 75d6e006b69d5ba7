"""
LLM output parsing for enrichment.

Parsing is strict about shape: anything that is not the documented JSON
object fails the run with ProviderError. Content is filtered leniently:
suggestions pointing at unknown entities or repeating existing
relationships are dropped one by one.
"""

import json
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from content_triage.enrichment.context import GroundingContext
from content_triage.errors import ProviderError
from content_triage.models.enums import DetectionType, EntityType
from content_triage.review.items import ItemDraft
from content_triage.stores.base import EntitySnapshot

logger = structlog.get_logger(__name__)

ALLOWED_ENTITY_TYPES = frozenset(t.value for t in EntityType)


# ── LLM response schemas ─────────────────────────────────────
class _Suggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DescriptionUpdateSuggestion(_Suggestion):
    current_description: Optional[str] = Field(None, alias="currentDescription")
    suggested_description: str = Field(alias="suggestedDescription")
    rationale: Optional[str] = None


class LogEntrySuggestion(_Suggestion):
    content: str
    occurred_at: Optional[str] = Field(None, alias="occurredAt")


class RelationshipSuggestion(_Suggestion):
    source_entity_id: int = Field(alias="sourceEntityId")
    source_entity_name: Optional[str] = Field(None, alias="sourceEntityName")
    target_entity_id: int = Field(alias="targetEntityId")
    target_entity_name: Optional[str] = Field(None, alias="targetEntityName")
    relationship_type: str = Field(alias="relationshipType")
    description: Optional[str] = None


class EnrichmentResponse(_Suggestion):
    description_updates: list[DescriptionUpdateSuggestion] = Field(default_factory=list, alias="descriptionUpdates")
    log_entries: list[LogEntrySuggestion] = Field(default_factory=list, alias="logEntries")
    relationships: list[RelationshipSuggestion] = Field(default_factory=list)


class NewEntitySuggestion(_Suggestion):
    name: str
    entity_type: Optional[str] = None
    description: Optional[str] = None
    reasoning: Optional[str] = None


class NewEntityResponse(_Suggestion):
    new_entities: list[NewEntitySuggestion] = Field(default_factory=list)


# ── Decoding ─────────────────────────────────────────────────
def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` (or bare ```) wrapper if present."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    newline = text.find("\n")
    if newline < 0:
        return ""
    text = text[newline + 1:].strip()
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _decode(text: str, provider_name: str) -> dict:
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        raise ProviderError(provider_name, "malformed response: empty output")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("llm_output_not_json", provider=provider_name, error=str(e), preview=cleaned[:200])
        raise ProviderError(provider_name, "malformed response: output is not valid JSON") from e
    if not isinstance(data, dict):
        raise ProviderError(provider_name, "malformed response: expected a JSON object")
    return data


def parse_enrichment_response(text: str, provider_name: str) -> EnrichmentResponse:
    data = _decode(text, provider_name)
    try:
        return EnrichmentResponse.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("llm_output_invalid", provider=provider_name, errors=e.error_count())
        raise ProviderError(provider_name, "malformed response: enrichment suggestions do not match schema") from e


def parse_new_entity_response(text: str, provider_name: str) -> NewEntityResponse:
    data = _decode(text, provider_name)
    try:
        return NewEntityResponse.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("llm_output_invalid", provider=provider_name, errors=e.error_count())
        raise ProviderError(provider_name, "malformed response: new entity suggestions do not match schema") from e


# ── Conversion to item drafts ────────────────────────────────
def enrichment_drafts(
    entity: EntitySnapshot,
    response: EnrichmentResponse,
    context: GroundingContext,
    suggested_pairs: set[frozenset[int]],
) -> list[ItemDraft]:
    """
    Turn one entity's suggestions into pending items.

    suggested_pairs carries relationship pairs already suggested earlier in
    the run and is updated in place, so A->B and B->A are offered once.
    """
    drafts: list[ItemDraft] = []
    current = entity.description or ""

    for update in response.description_updates:
        suggested = update.suggested_description.strip()
        if not suggested or suggested == current.strip():
            continue
        drafts.append(ItemDraft(
            detection_type=DetectionType.DESCRIPTION_UPDATE,
            matched_text=entity.name,
            entity_id=entity.id,
            suggested_content={
                "currentDescription": current,
                "suggestedDescription": suggested,
                "rationale": update.rationale or "",
            },
        ))

    for entry in response.log_entries:
        content = entry.content.strip()
        if not content:
            continue
        drafts.append(ItemDraft(
            detection_type=DetectionType.LOG_ENTRY,
            matched_text=entity.name,
            entity_id=entity.id,
            suggested_content={"content": content, "occurredAt": entry.occurred_at or ""},
        ))

    existing_pairs = context.related_pairs()
    for rel in response.relationships:
        source_name = context.entity_names.get(rel.source_entity_id)
        target_name = context.entity_names.get(rel.target_entity_id)
        if source_name is None or target_name is None:
            logger.info(
                "relationship_suggestion_dropped",
                reason="unknown_entity",
                source_entity_id=rel.source_entity_id,
                target_entity_id=rel.target_entity_id,
            )
            continue
        if rel.source_entity_id == rel.target_entity_id or not rel.relationship_type.strip():
            continue
        pair = frozenset((rel.source_entity_id, rel.target_entity_id))
        if pair in existing_pairs or pair in suggested_pairs:
            continue
        suggested_pairs.add(pair)
        drafts.append(ItemDraft(
            detection_type=DetectionType.RELATIONSHIP_SUGGESTION,
            matched_text=entity.name,
            entity_id=entity.id,
            suggested_content={
                "sourceEntityId": rel.source_entity_id,
                "sourceEntityName": source_name,
                "targetEntityId": rel.target_entity_id,
                "targetEntityName": target_name,
                "relationshipType": rel.relationship_type.strip(),
                "description": rel.description or "",
            },
        ))

    return drafts


def new_entity_drafts(response: NewEntityResponse, context: GroundingContext) -> list[ItemDraft]:
    drafts: list[ItemDraft] = []
    seen: set[str] = set()
    for suggestion in response.new_entities:
        name = suggestion.name.strip()
        key = name.lower()
        if not name or key in context.known_names or key in seen:
            continue
        seen.add(key)

        entity_type = (suggestion.entity_type or "").strip().lower()
        if entity_type not in ALLOWED_ENTITY_TYPES:
            entity_type = EntityType.OTHER.value

        drafts.append(ItemDraft(
            detection_type=DetectionType.NEW_ENTITY_SUGGESTION,
            matched_text=name,
            suggested_content={
                "entity_type": entity_type,
                "description": suggestion.description or "",
                "reasoning": suggestion.reasoning or "",
            },
        ))
    return drafts
