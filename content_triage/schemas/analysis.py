"""
Pydantic request/response schemas for the content analysis endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from content_triage.models.enums import DetectionType, EnrichmentStatus, Resolution


# ── Request Schemas ──────────────────────────────────────────

class TriggerAnalysisRequest(BaseModel):
    """Text to analyse and the record field it came from."""
    source_table: str = Field(min_length=1)
    source_id: int
    source_field: str = Field(min_length=1)
    content: str


class ResolveItemRequest(BaseModel):
    resolution: Resolution
    entity_type: Optional[str] = None
    entity_name: Optional[str] = None
    # Merged over the item's suggested_content before it is applied
    suggested_content_override: Optional[dict[str, Any]] = None


class BatchResolveRequest(BaseModel):
    detection_type: DetectionType
    resolution: Resolution


# ── Response Schemas ─────────────────────────────────────────

class JobResponse(BaseModel):
    id: int
    campaign_id: int
    source_table: str
    source_id: int
    source_field: str
    status: str
    total_items: int
    resolved_items: int
    enrichment_total: int
    enrichment_resolved: int
    phases: list[str] = []
    current_phase: Optional[str] = None
    failure_reason: Optional[str] = None
    enrichment_run_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ItemResponse(BaseModel):
    id: int
    job_id: int
    detection_type: str
    matched_text: str
    entity_id: Optional[int] = None
    similarity: Optional[float] = None
    context_snippet: Optional[str] = None
    position_start: Optional[int] = None
    position_end: Optional[int] = None
    resolution: str
    resolved_entity_id: Optional[int] = None
    resolved_at: Optional[datetime] = None
    suggested_content: Optional[dict[str, Any]] = None
    phase: str
    agent_name: Optional[str] = None
    pipeline_run_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TriggerAnalysisResponse(BaseModel):
    job: JobResponse
    items: list[ItemResponse]


class BatchResolveResponse(BaseModel):
    resolved_count: int


class EnrichmentResponse(BaseModel):
    status: EnrichmentStatus
    entity_count: Optional[int] = None
    message: Optional[str] = None


class PendingCountResponse(BaseModel):
    pending_count: int
