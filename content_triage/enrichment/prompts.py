"""
Prompt templates for enrichment.
Two calls: one per confirmed entity (descriptions, log entries,
relationships) and one for entities the campaign does not know yet.
"""

from content_triage.enrichment.context import GroundingContext
from content_triage.models.enums import EntityType
from content_triage.stores.base import EntitySnapshot

ENTITY_TYPES = ", ".join(t.value for t in EntityType)


ENRICHMENT_SYSTEM_PROMPT = """You are a TTRPG campaign analyst assistant. You read session notes,
chapter content and other campaign writing and suggest enrichments for one
campaign entity (NPC, location, item, faction, ...).

Given the content and the entity's current state, produce:

1. descriptionUpdates - improvements to the entity's description based on
   new information revealed in the content.
2. logEntries - chronological events involving the entity.
3. relationships - connections between this entity and other entities
   listed in the input, referenced by their IDs.

Rules:
- Only suggest changes supported by the provided content.
- Do not invent information that is not in the source material.
- Use descriptive relationship types such as "ally_of", "enemy_of",
  "located_in", "member_of", "owns", "works_for", "knows".
- Do not repeat relationships listed under Existing Relationships.
- If the content reveals nothing new, return empty arrays.

Respond with valid JSON only, no markdown and no commentary:
{
  "descriptionUpdates": [
    {"currentDescription": "...", "suggestedDescription": "...", "rationale": "..."}
  ],
  "logEntries": [
    {"content": "...", "occurredAt": "optional in-game date"}
  ],
  "relationships": [
    {"sourceEntityId": 1, "sourceEntityName": "...", "targetEntityId": 2,
     "targetEntityName": "...", "relationshipType": "...", "description": "..."}
  ]
}"""


NEW_ENTITY_SYSTEM_PROMPT = f"""You are a TTRPG campaign analyst. Identify named entities mentioned in the
content that are NOT in the campaign's known entities list.

Rules:
- Only proper nouns and clearly named entities.
- Ignore generic references such as "the tavern", "a guard" or "some soldiers".
- Skip anything that matches a known entity by name or obvious variant.

Supported entity types: {ENTITY_TYPES}

Respond with valid JSON only, no markdown and no commentary:
{{
  "new_entities": [
    {{"name": "...", "entity_type": "npc", "description": "...", "reasoning": "..."}}
  ]
}}

If there are none, return {{"new_entities": []}}"""


def build_enrichment_user_prompt(context: GroundingContext, entity: EntitySnapshot) -> str:
    lines = [
        "## Source Content",
        "",
        context.excerpt_for(entity),
        "",
        "## Entity to Enrich",
        "",
        f"- ID: {entity.id}",
        f"- Name: {entity.name}",
        f"- Type: {entity.entity_type}",
        f"- Current Description: {entity.description or '(none)'}",
        "",
    ]

    relationships = context.relationships_for(entity.id)
    if relationships:
        lines += ["## Existing Relationships", ""]
        for rel in relationships:
            source = context.entity_names.get(rel.source_entity_id, f"Entity {rel.source_entity_id}")
            target = context.entity_names.get(rel.target_entity_id, f"Entity {rel.target_entity_id}")
            line = f"- {source} -[{rel.relationship_type}]-> {target}"
            if rel.description:
                line += f" ({rel.description})"
            lines.append(line)
        lines.append("")

    others = [e for e in context.entities if e.id != entity.id]
    if others:
        lines += ["## Other Entities in This Content", ""]
        lines += [f"- {e.name} (ID: {e.id}, Type: {e.entity_type})" for e in others]
        lines.append("")

    lines.append("Produce enrichment suggestions for the entity above. Respond with JSON only.")
    return "\n".join(lines)


def build_new_entity_user_prompt(context: GroundingContext) -> str:
    lines = ["## Source Content", "", context.excerpt(), ""]
    if context.known_entities:
        lines += ["## Known Entities (already in database)", ""]
        lines += [f"- {e.name} ({e.entity_type})" for e in context.known_entities]
        lines.append("")
    lines.append(
        "Identify named entities in the content above that are NOT in the known "
        "entities list. Respond with JSON only."
    )
    return "\n".join(lines)
