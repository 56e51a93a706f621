"""
SQLAlchemy Database Models

This module defines the database schema for storing attribution channels,
tracked events and generated attribution reports.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Integer, Float, DateTime, JSON, Index, UniqueConstraint,
    Enum as SQLEnum
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB
import uuid

from models.attribution import (
    ChannelCategory, EventType, AttributionModelType, ReportType
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Channels
# ============================================================================

class AttributionChannel(Base):
    """
    Marketing channel of a project

    (project_id, name) is unique so a concurrent default-channel bootstrap
    cannot insert the same set twice.
    """
    __tablename__ = "attribution_channels"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(50), index=True)

    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[ChannelCategory] = mapped_column(SQLEnum(ChannelCategory))
    source: Mapped[Optional[str]] = mapped_column(String(255))
    medium: Mapped[Optional[str]] = mapped_column(String(255))
    campaign: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('project_id', 'name', name='uq_channel_project_name'),
        Index('idx_channel_project', 'project_id'),
    )


# ============================================================================
# Events
# ============================================================================

class AttributionEventRecord(Base):
    """
    Recorded user action

    Written by the ingestion pipeline; read-only to the attribution engine.
    """
    __tablename__ = "attribution_events"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(50), index=True)
    user_identifier: Mapped[str] = mapped_column(String(255), index=True)
    channel_id: Mapped[Optional[str]] = mapped_column(String(50), index=True)

    event_type: Mapped[EventType] = mapped_column(SQLEnum(EventType), index=True)
    event_value: Mapped[Optional[float]] = mapped_column(Float)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)

    occurred_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_event_project_user_time', 'project_id', 'user_identifier', 'occurred_at'),
        Index('idx_event_project_type_time', 'project_id', 'event_type', 'occurred_at'),
    )


# ============================================================================
# Reports
# ============================================================================

class AttributionReportRecord(Base):
    """
    Generated attribution report

    Immutable once written; a newer report for the same parameters supersedes it.
    """
    __tablename__ = "attribution_reports"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(50), index=True)

    report_type: Mapped[ReportType] = mapped_column(SQLEnum(ReportType))
    attribution_model: Mapped[AttributionModelType] = mapped_column(SQLEnum(AttributionModelType), index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime)
    end_date: Mapped[datetime] = mapped_column(DateTime)
    lookback_days: Mapped[int] = mapped_column(Integer)

    # Summary metrics
    total_conversions: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    avg_touchpoints: Mapped[float] = mapped_column(Float, default=0.0)
    avg_time_to_convert_hours: Mapped[float] = mapped_column(Float, default=0.0)
    skipped_conversions: Mapped[int] = mapped_column(Integer, default=0)
    skipped_conversion_ids: Mapped[Optional[list]] = mapped_column(JSONType)

    # ROI totals
    total_spend: Mapped[Optional[float]] = mapped_column(Float)
    overall_roi: Mapped[Optional[float]] = mapped_column(Float)
    overall_roas: Mapped[Optional[float]] = mapped_column(Float)

    # Denormalized breakdowns
    channel_breakdown: Mapped[Optional[list]] = mapped_column(JSONType)
    top_conversion_paths: Mapped[Optional[list]] = mapped_column(JSONType)

    generated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_report_project_generated', 'project_id', 'generated_at'),
    )
