"""
FastAPI dependency injection.
Provides DB sessions, the analysis services, the LLM provider and API key
validation.
"""

from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_triage.config import settings
from content_triage.enrichment.orchestrator import EnrichmentOrchestrator
from content_triage.llm.base import LLMProvider
from content_triage.llm.openai_compatible import OpenAICompatibleProvider
from content_triage.llm.stub import StubProvider
from content_triage.models.database import async_session_factory, get_session
from content_triage.pipeline.jobs import JobManager
from content_triage.pipeline.locks import JobLocks
from content_triage.review.resolution import ResolutionService
from content_triage.stores.sql import SqlEntityStore, SqlRelationshipStore


def build_provider() -> LLMProvider:
    """Select the LLM provider from LLM_PROVIDER."""
    if settings.LLM_PROVIDER == "openai_compatible":
        return OpenAICompatibleProvider()
    if settings.LLM_PROVIDER == "stub":
        return StubProvider()
    raise ValueError(f"Unknown LLM_PROVIDER {settings.LLM_PROVIDER!r}")


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    locks: Optional[JobLocks] = None,
) -> EnrichmentOrchestrator:
    from content_triage.worker.jobs import enqueue_enrichment

    return EnrichmentOrchestrator(
        session_factory=session_factory,
        entity_store=SqlEntityStore(),
        relationship_store=SqlRelationshipStore(),
        provider=build_provider(),
        locks=locks or JobLocks(),
        enqueue=enqueue_enrichment,
    )


# ── Singleton instances ──────────────────────────────────────
_locks: Optional[JobLocks] = None
_job_manager: Optional[JobManager] = None
_resolution_service: Optional[ResolutionService] = None
_orchestrator: Optional[EnrichmentOrchestrator] = None


def get_locks() -> JobLocks:
    global _locks
    if _locks is None:
        _locks = JobLocks()
    return _locks


def get_job_manager() -> JobManager:
    """Get or create the job manager singleton."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager(async_session_factory, SqlEntityStore(), get_locks())
    return _job_manager


def get_resolution_service() -> ResolutionService:
    """Get or create the resolution service singleton."""
    global _resolution_service
    if _resolution_service is None:
        _resolution_service = ResolutionService(
            async_session_factory, SqlEntityStore(), SqlRelationshipStore(), get_locks()
        )
    return _resolution_service


def get_orchestrator() -> EnrichmentOrchestrator:
    """Get or create the enrichment orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(async_session_factory, get_locks())
    return _orchestrator


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
