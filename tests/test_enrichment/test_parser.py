"""
Tests for LLM output parsing and suggestion filtering.
"""

import json

import pytest

from content_triage.enrichment.context import GroundingContext
from content_triage.enrichment.parser import (
    EnrichmentResponse,
    NewEntityResponse,
    enrichment_drafts,
    new_entity_drafts,
    parse_enrichment_response,
    parse_new_entity_response,
    strip_code_fences,
)
from content_triage.errors import ProviderError
from content_triage.models.enums import DetectionType
from content_triage.stores.base import EntitySnapshot, RelationshipSnapshot

MIRA = EntitySnapshot(id=2, campaign_id=1, entity_type="npc", name="Captain Mira Vance",
                      aliases=["Mira"], description="A smuggler captain.")
LOTUS = EntitySnapshot(id=3, campaign_id=1, entity_type="faction", name="Black Lotus")
ELDORIA = EntitySnapshot(id=4, campaign_id=1, entity_type="location", name="Eldoria")


def _context(relationships=()):
    return GroundingContext(
        job_id=1,
        campaign_id=1,
        content="Mira met the Black Lotus in Eldoria.",
        entities=[MIRA, LOTUS],
        relationships=list(relationships),
        entity_names={2: "Captain Mira Vance", 3: "Black Lotus", 4: "Eldoria"},
        known_names=frozenset({"captain mira vance", "mira", "black lotus", "eldoria"}),
    )


class TestDecoding:

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}```') == '{"a": 1}'
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    def test_camel_case_fields(self):
        text = json.dumps({
            "descriptionUpdates": [{"currentDescription": "x", "suggestedDescription": "y", "rationale": "z"}],
            "logEntries": [{"content": "Arrived.", "occurredAt": "Session 3"}],
            "relationships": [],
        })
        response = parse_enrichment_response(text, "stub")
        assert response.description_updates[0].suggested_description == "y"
        assert response.log_entries[0].occurred_at == "Session 3"

    def test_missing_lists_default_empty(self):
        response = parse_enrichment_response("{}", "stub")
        assert response.description_updates == []
        assert response.log_entries == []
        assert response.relationships == []

    @pytest.mark.parametrize("text", ["", "I could not find anything.", "[1, 2]", '{"logEntries": [{}]}'])
    def test_malformed_output_fails(self, text):
        with pytest.raises(ProviderError) as exc_info:
            parse_enrichment_response(text, "stub")
        assert exc_info.value.public_message.startswith("malformed response")
        assert exc_info.value.provider_name == "stub"

    def test_new_entity_output(self):
        response = parse_new_entity_response(
            '```json\n{"new_entities": [{"name": "Grey Warden", "entity_type": "npc"}]}\n```', "stub"
        )
        assert response.new_entities[0].name == "Grey Warden"

    def test_new_entity_missing_name_fails(self):
        with pytest.raises(ProviderError):
            parse_new_entity_response('{"new_entities": [{"entity_type": "npc"}]}', "stub")


class TestEnrichmentDrafts:

    def test_description_and_log_drafts(self):
        response = EnrichmentResponse.model_validate({
            "descriptionUpdates": [{"suggestedDescription": "A smuggler captain turned informant."}],
            "logEntries": [{"content": "Met the Black Lotus."}, {"content": "   "}],
        })
        drafts = enrichment_drafts(MIRA, response, _context(), set())

        assert [d.detection_type for d in drafts] == [DetectionType.DESCRIPTION_UPDATE, DetectionType.LOG_ENTRY]
        assert drafts[0].entity_id == MIRA.id
        assert drafts[0].suggested_content["currentDescription"] == "A smuggler captain."
        assert drafts[1].suggested_content == {"content": "Met the Black Lotus.", "occurredAt": ""}

    def test_unchanged_description_dropped(self):
        response = EnrichmentResponse.model_validate({
            "descriptionUpdates": [{"suggestedDescription": "A smuggler captain."}],
        })
        assert enrichment_drafts(MIRA, response, _context(), set()) == []

    def test_relationship_filtering(self):
        existing = RelationshipSnapshot(id=1, source_entity_id=2, target_entity_id=3, relationship_type="member_of")
        response = EnrichmentResponse.model_validate({
            "relationships": [
                # already related, reverse direction
                {"sourceEntityId": 3, "targetEntityId": 2, "relationshipType": "employs"},
                # unknown entity
                {"sourceEntityId": 2, "targetEntityId": 99, "relationshipType": "knows"},
                # self link
                {"sourceEntityId": 2, "targetEntityId": 2, "relationshipType": "is"},
                {"sourceEntityId": 2, "targetEntityId": 4, "relationshipType": "visited"},
                # duplicate pair within the response
                {"sourceEntityId": 4, "targetEntityId": 2, "relationshipType": "hosted"},
            ],
        })
        suggested = set()
        drafts = enrichment_drafts(MIRA, response, _context([existing]), suggested)

        assert len(drafts) == 1
        content = drafts[0].suggested_content
        assert (content["sourceEntityId"], content["targetEntityId"]) == (2, 4)
        assert content["targetEntityName"] == "Eldoria"
        assert suggested == {frozenset((2, 4))}

    def test_pairs_suggested_for_earlier_entity_are_skipped(self):
        response = EnrichmentResponse.model_validate({
            "relationships": [{"sourceEntityId": 3, "targetEntityId": 4, "relationshipType": "based_in"}],
        })
        assert enrichment_drafts(LOTUS, response, _context(), {frozenset((3, 4))}) == []


class TestNewEntityDrafts:

    def test_known_and_duplicate_names_dropped(self):
        response = NewEntityResponse.model_validate({"new_entities": [
            {"name": "Mira", "entity_type": "npc"},
            {"name": "Grey Warden", "entity_type": "NPC", "description": "A silent sentry."},
            {"name": "grey warden", "entity_type": "npc"},
            {"name": "Sunken Bell", "entity_type": "artifact"},
        ]})
        drafts = new_entity_drafts(response, _context())

        assert [d.matched_text for d in drafts] == ["Grey Warden", "Sunken Bell"]
        assert drafts[0].suggested_content == {
            "entity_type": "npc", "description": "A silent sentry.", "reasoning": "",
        }
        assert drafts[1].suggested_content["entity_type"] == "other"
        assert all(d.entity_id is None for d in drafts)
