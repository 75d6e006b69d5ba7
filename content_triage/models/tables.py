"""
SQLAlchemy ORM models.
Column types are portable: JSONB and BIGSERIAL on PostgreSQL, JSON and
INTEGER rowids on SQLite.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from content_triage.models.database import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────
# CONTENT ANALYSIS JOBS
# ────────────────────────────────────────────────────────────
class ContentAnalysisJob(Base):
    __tablename__ = "content_analysis_jobs"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False)
    source_table: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False)
    source_field: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="created", server_default="created")
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    resolved_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enrichment_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enrichment_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Ordered list of phases run so far, e.g. ["identification", "enrichment"]
    phases: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    current_phase: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    enrichment_run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    items = relationship(
        "ContentAnalysisItem", back_populates="job",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_content_analysis_jobs_field", "campaign_id", "source_table", "source_id", "source_field"),
        Index("idx_content_analysis_jobs_status", "campaign_id", "status"),
    )


# ────────────────────────────────────────────────────────────
# CONTENT ANALYSIS ITEMS
# ────────────────────────────────────────────────────────────
class ContentAnalysisItem(Base):
    __tablename__ = "content_analysis_items"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("content_analysis_jobs.id", ondelete="CASCADE"), nullable=False
    )
    detection_type: Mapped[str] = mapped_column(Text, nullable=False)
    matched_text: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("entities.id", ondelete="SET NULL"), nullable=True
    )
    similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    context_snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    position_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolution: Mapped[str] = mapped_column(Text, nullable=False, default="pending", server_default="pending")
    resolved_entity_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("entities.id", ondelete="SET NULL"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    suggested_content: Mapped[Optional[dict]] = mapped_column(JSON_TYPE, nullable=True)
    phase: Mapped[str] = mapped_column(Text, nullable=False, default="identification", server_default="identification")
    agent_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pipeline_run_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    # Relationships
    job = relationship("ContentAnalysisJob", back_populates="items")

    __table_args__ = (
        Index("idx_content_analysis_items_resolution", "job_id", "resolution"),
        Index("idx_content_analysis_items_span", "job_id", "matched_text", "position_start", "position_end"),
    )


# ────────────────────────────────────────────────────────────
# CAMPAIGN COLLABORATORS
# Owned by the surrounding campaign system; modelled here so the
# service can run against its own database.
# ────────────────────────────────────────────────────────────
class Entity(Base):
    __tablename__ = "entities"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    aliases: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_entities_campaign", "campaign_id"),
    )


class EntityRelationship(Base):
    __tablename__ = "entity_relationships"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False)
    source_entity_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    target_entity_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    relationship_type: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_relationships_source", "source_entity_id"),
        Index("idx_relationships_target", "target_entity_id"),
    )


class EntityLogEntry(Base):
    __tablename__ = "entity_log_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False)
    entity_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_entity_log_entity", "entity_id"),
    )
