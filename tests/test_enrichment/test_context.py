"""
Tests for enrichment grounding context.
"""

from content_triage.enrichment.context import (
    TRUNCATION_MARKER,
    GroundingContext,
    build_grounding_context,
    truncate_around,
    truncate_content,
)
from content_triage.models.enums import Resolution
from content_triage.models.tables import ContentAnalysisJob
from content_triage.stores.base import EntitySnapshot

NOTE = "The Black Lotus met at Eldoria. Later, Mira arrived."


class TestTruncation:

    def test_short_content_untouched(self):
        assert truncate_content("Eldoria", 100) == "Eldoria"
        assert truncate_around("Eldoria", "Eldoria", 100) == "Eldoria"

    def test_head_kept_with_marker(self):
        result = truncate_content("a" * 50, 10)
        assert result.startswith("a" * 10)
        assert result.endswith(TRUNCATION_MARKER)

    def test_window_centred_on_focus(self):
        content = "x" * 100 + "Eldoria" + "y" * 100
        result = truncate_around(content, "eldoria", 40)
        assert "Eldoria" in result
        assert result.startswith(TRUNCATION_MARKER)
        assert result.endswith(TRUNCATION_MARKER)

    def test_missing_focus_falls_back_to_head(self):
        content = "x" * 100
        assert truncate_around(content, "Eldoria", 10) == truncate_content(content, 10)

    def test_excerpts_drop_wiki_link_markup(self):
        context = GroundingContext(job_id=1, campaign_id=1, content="We reached [[Eldoria]] with [[Captain Mira Vance|Mira]].")
        assert context.excerpt() == "We reached Eldoria with Mira."
        assert "[[" not in context.excerpt_for(EntitySnapshot(id=4, campaign_id=1, name="Eldoria", entity_type="location"))


class TestBuildContext:

    async def test_only_confirmed_entities_in_order(
        self, analyse, resolution_service, session_factory, entity_store, relationship_store,
        entities, relationship,
    ):
        job, items = await analyse(NOTE)
        # Mira accepted first, Black Lotus second, Eldoria dismissed
        await resolution_service.resolve_item(items[2].id, Resolution.ACCEPTED)
        await resolution_service.resolve_item(items[0].id, Resolution.ACCEPTED)
        await resolution_service.resolve_item(items[1].id, Resolution.DISMISSED)

        async with session_factory() as session:
            job = await session.get(ContentAnalysisJob, job.id)
            context = await build_grounding_context(session, job, entity_store, relationship_store)

        assert [e.name for e in context.entities] == ["Black Lotus", "Captain Mira Vance"]
        assert context.content == NOTE
        assert context.related_pairs() == {
            frozenset((entities["Captain Mira Vance"], entities["Black Lotus"]))
        }
        assert len(context.relationships_for(entities["Black Lotus"])) == 1
        assert "mira" in context.known_names
        assert "viktor" not in context.known_names
        assert len(context.known_entities) == 4

    async def test_no_confirmed_entities(self, analyse, session_factory, entity_store, relationship_store, entities):
        job, _ = await analyse(NOTE)
        async with session_factory() as session:
            job = await session.get(ContentAnalysisJob, job.id)
            context = await build_grounding_context(session, job, entity_store, relationship_store)
        assert context.entities == []
        assert context.relationships == []
