"""
/api/v1/campaigns/{campaign_id}/analysis endpoints.
Trigger analysis, browse jobs and items, resolve items and drive enrichment.
Jobs and items of another campaign are reported as not found.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from content_triage.dependencies import (
    get_job_manager,
    get_orchestrator,
    get_resolution_service,
    verify_api_key,
)
from content_triage.enrichment.orchestrator import EnrichmentOrchestrator
from content_triage.models.enums import JobStatus, Phase, Resolution
from content_triage.pipeline.jobs import JobManager
from content_triage.review.resolution import ResolutionService
from content_triage.schemas.analysis import (
    BatchResolveRequest,
    BatchResolveResponse,
    EnrichmentResponse,
    ItemResponse,
    JobResponse,
    PendingCountResponse,
    ResolveItemRequest,
    TriggerAnalysisRequest,
    TriggerAnalysisResponse,
)

router = APIRouter(
    prefix="/api/v1/campaigns/{campaign_id}/analysis",
    tags=["analysis"],
    dependencies=[Depends(verify_api_key)],
)


# ── Jobs ─────────────────────────────────────────────────────

@router.post("/trigger", response_model=TriggerAnalysisResponse, status_code=status.HTTP_201_CREATED)
async def trigger_analysis(
    campaign_id: int,
    body: TriggerAnalysisRequest,
    jobs: JobManager = Depends(get_job_manager),
):
    """Run entity detection over a record field and queue the results for review."""
    job, items = await jobs.trigger_analysis(
        campaign_id, body.source_table, body.source_id, body.source_field, body.content
    )
    return TriggerAnalysisResponse(
        job=JobResponse.model_validate(job),
        items=[ItemResponse.model_validate(i) for i in items],
    )


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    campaign_id: int,
    source_table: Optional[str] = Query(None),
    source_id: Optional[int] = Query(None),
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    jobs: JobManager = Depends(get_job_manager),
):
    return await jobs.list_jobs(campaign_id, source_table=source_table, source_id=source_id, status=status_filter)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    campaign_id: int,
    job_id: int,
    jobs: JobManager = Depends(get_job_manager),
):
    return await jobs.get_job(job_id, campaign_id=campaign_id)


@router.get("/jobs/{job_id}/items", response_model=list[ItemResponse])
async def list_job_items(
    campaign_id: int,
    job_id: int,
    resolution: Optional[Resolution] = Query(None),
    phase: Optional[Phase] = Query(None),
    jobs: JobManager = Depends(get_job_manager),
):
    return await jobs.list_job_items(job_id, campaign_id=campaign_id, resolution=resolution, phase=phase)


@router.put("/jobs/{job_id}/resolve-all", response_model=BatchResolveResponse)
async def batch_resolve(
    campaign_id: int,
    job_id: int,
    body: BatchResolveRequest,
    service: ResolutionService = Depends(get_resolution_service),
):
    """Apply one resolution to every pending item of a detection type."""
    count = await service.batch_resolve(job_id, body.detection_type, body.resolution, campaign_id=campaign_id)
    return BatchResolveResponse(resolved_count=count)


# ── Enrichment ───────────────────────────────────────────────

@router.post("/jobs/{job_id}/enrich", response_model=EnrichmentResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_enrichment(
    campaign_id: int,
    job_id: int,
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """Start LLM enrichment; poll the job for progress."""
    return await orchestrator.trigger_enrichment(job_id, campaign_id=campaign_id)


@router.post("/jobs/{job_id}/cancel-enrichment", response_model=EnrichmentResponse)
async def cancel_enrichment(
    campaign_id: int,
    job_id: int,
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cancel_enrichment(job_id, campaign_id=campaign_id)


# ── Items ────────────────────────────────────────────────────

@router.put("/items/{item_id}", response_model=ItemResponse)
async def resolve_item(
    campaign_id: int,
    item_id: int,
    body: ResolveItemRequest,
    service: ResolutionService = Depends(get_resolution_service),
):
    return await service.resolve_item(
        item_id,
        body.resolution,
        entity_type=body.entity_type,
        entity_name=body.entity_name,
        override=body.suggested_content_override,
        campaign_id=campaign_id,
    )


@router.put("/items/{item_id}/revert", response_model=ItemResponse)
async def revert_item(
    campaign_id: int,
    item_id: int,
    service: ResolutionService = Depends(get_resolution_service),
):
    return await service.revert_item(item_id, campaign_id=campaign_id)


@router.get("/pending-count", response_model=PendingCountResponse)
async def pending_count(
    campaign_id: int,
    source_table: Optional[str] = Query(None),
    source_id: Optional[int] = Query(None),
    service: ResolutionService = Depends(get_resolution_service),
):
    count = await service.pending_count(campaign_id, source_table=source_table, source_id=source_id)
    return PendingCountResponse(pending_count=count)
