"""
Shared test fixtures.
Each test gets its own SQLite database file, services wired to it and a
scripted LLM provider.
"""

import pytest

from content_triage.enrichment.orchestrator import EnrichmentOrchestrator
from content_triage.llm.stub import StubProvider
from content_triage.models.database import build_engine, build_session_factory, init_db
from content_triage.models.tables import Entity, EntityRelationship
from content_triage.pipeline.jobs import JobManager
from content_triage.pipeline.locks import JobLocks
from content_triage.review.resolution import ResolutionService
from content_triage.stores.sql import SqlEntityStore, SqlRelationshipStore

CAMPAIGN_ID = 1
OTHER_CAMPAIGN_ID = 2


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'triage.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def entities(session_factory):
    """Campaign entities keyed by name."""
    rows = [
        Entity(campaign_id=CAMPAIGN_ID, entity_type="location", name="Silver Fox Inn", aliases=[]),
        Entity(campaign_id=CAMPAIGN_ID, entity_type="npc", name="Captain Mira Vance", aliases=["Mira"]),
        Entity(campaign_id=CAMPAIGN_ID, entity_type="faction", name="Black Lotus", aliases=[]),
        Entity(campaign_id=CAMPAIGN_ID, entity_type="location", name="Eldoria", aliases=[]),
        Entity(campaign_id=OTHER_CAMPAIGN_ID, entity_type="npc", name="Viktor", aliases=[]),
    ]
    async with session_factory() as session, session.begin():
        session.add_all(rows)
    return {row.name: row.id for row in rows if row.campaign_id == CAMPAIGN_ID}


@pytest.fixture
async def relationship(session_factory, entities):
    """An existing Mira -> Black Lotus relationship."""
    async with session_factory() as session, session.begin():
        rel = EntityRelationship(
            campaign_id=CAMPAIGN_ID,
            source_entity_id=entities["Captain Mira Vance"],
            target_entity_id=entities["Black Lotus"],
            relationship_type="member_of",
        )
        session.add(rel)
    return rel


@pytest.fixture
def locks():
    return JobLocks()


@pytest.fixture
def entity_store():
    return SqlEntityStore()


@pytest.fixture
def relationship_store():
    return SqlRelationshipStore()


@pytest.fixture
def job_manager(session_factory, entity_store, locks):
    return JobManager(session_factory, entity_store, locks)


@pytest.fixture
def resolution_service(session_factory, entity_store, relationship_store, locks):
    return ResolutionService(session_factory, entity_store, relationship_store, locks)


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def make_orchestrator(session_factory, entity_store, relationship_store, locks):
    """Build an inline orchestrator around a given provider."""
    def _make(provider=None):
        return EnrichmentOrchestrator(
            session_factory=session_factory,
            entity_store=entity_store,
            relationship_store=relationship_store,
            provider=provider or StubProvider(),
            locks=locks,
            execution="inline",
        )
    return _make


@pytest.fixture
def analyse(job_manager):
    """Trigger analysis on a session note for the test campaign."""
    async def _analyse(content, source_id=10, source_field="notes"):
        return await job_manager.trigger_analysis(CAMPAIGN_ID, "sessions", source_id, source_field, content)
    return _analyse
