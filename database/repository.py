"""
SQLAlchemy implementation of the attribution data source

Every public method runs in its own session. Transient connection failures
(OperationalError) are retried with exponential backoff; anything the
database still refuses surfaces as PersistenceError.
"""
from datetime import datetime
from functools import wraps
from typing import List, Sequence

from loguru import logger
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import settings
from database.models import AttributionChannel, AttributionEventRecord, AttributionReportRecord
from engine.data_source import AttributionDataSource
from engine.exceptions import DuplicateChannelError, PersistenceError
from models.attribution import (
    AttributionEvent, AttributionReport, Channel, ChannelDefinition, EventType
)


def db_operation(operation: str):
    """Retry transient failures, then translate driver errors into PersistenceError"""
    def decorator(func):
        retrying = retry(
            stop=stop_after_attempt(settings.persistence_retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(OperationalError),
            reraise=True
        )(func)

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return retrying(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Database error during {operation}: {e}")
                raise PersistenceError(operation, str(e)) from e

        return wrapper
    return decorator


# ============================================================================
# Row conversion
# ============================================================================

def channel_from_row(row: AttributionChannel) -> Channel:
    return Channel(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        category=row.category,
        source=row.source,
        medium=row.medium,
        campaign=row.campaign,
        created_at=row.created_at,
        updated_at=row.updated_at
    )


def event_from_row(row: AttributionEventRecord) -> AttributionEvent:
    return AttributionEvent(
        id=row.id,
        project_id=row.project_id,
        user_identifier=row.user_identifier,
        channel_id=row.channel_id,
        event_type=row.event_type,
        event_value=row.event_value,
        occurred_at=row.occurred_at,
        metadata=row.event_metadata or {},
        created_at=row.created_at
    )


def report_from_row(row: AttributionReportRecord) -> AttributionReport:
    return AttributionReport(
        id=row.id,
        project_id=row.project_id,
        report_type=row.report_type,
        attribution_model=row.attribution_model,
        start_date=row.start_date,
        end_date=row.end_date,
        lookback_days=row.lookback_days,
        generated_at=row.generated_at,
        total_conversions=row.total_conversions,
        total_revenue=row.total_revenue,
        avg_touchpoints=row.avg_touchpoints,
        avg_time_to_convert_hours=row.avg_time_to_convert_hours,
        skipped_conversions=row.skipped_conversions,
        skipped_conversion_ids=row.skipped_conversion_ids or [],
        total_spend=row.total_spend,
        overall_roi=row.overall_roi,
        overall_roas=row.overall_roas,
        channel_breakdown=row.channel_breakdown or [],
        top_conversion_paths=row.top_conversion_paths or []
    )


def report_to_row(report: AttributionReport) -> AttributionReportRecord:
    data = report.model_dump(mode="json", include={"channel_breakdown", "top_conversion_paths"})
    return AttributionReportRecord(
        project_id=report.project_id,
        report_type=report.report_type,
        attribution_model=report.attribution_model,
        start_date=report.start_date,
        end_date=report.end_date,
        lookback_days=report.lookback_days,
        generated_at=report.generated_at,
        total_conversions=report.total_conversions,
        total_revenue=report.total_revenue,
        avg_touchpoints=report.avg_touchpoints,
        avg_time_to_convert_hours=report.avg_time_to_convert_hours,
        skipped_conversions=report.skipped_conversions,
        skipped_conversion_ids=list(report.skipped_conversion_ids),
        total_spend=report.total_spend,
        overall_roi=report.overall_roi,
        overall_roas=report.overall_roas,
        channel_breakdown=data["channel_breakdown"],
        top_conversion_paths=data["top_conversion_paths"]
    )


# ============================================================================
# Data source
# ============================================================================

class SQLAlchemyDataSource(AttributionDataSource):
    """Attribution data source backed by a relational database"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @db_operation("add_events")
    def add_events(self, events: Sequence[AttributionEvent]) -> int:
        """Bulk-load events (used by seeding scripts and tests)"""
        with self.session_factory.begin() as session:
            session.add_all([
                AttributionEventRecord(
                    id=e.id,
                    project_id=e.project_id,
                    user_identifier=e.user_identifier,
                    channel_id=e.channel_id,
                    event_type=e.event_type,
                    event_value=e.event_value,
                    event_metadata=e.metadata,
                    occurred_at=e.occurred_at,
                    created_at=e.created_at
                )
                for e in events
            ])
        return len(events)

    @db_operation("fetch_events")
    def fetch_events(self, project_id, user_identifier, start, end):
        with self.session_factory() as session:
            rows = session.scalars(
                select(AttributionEventRecord)
                .where(
                    AttributionEventRecord.project_id == project_id,
                    AttributionEventRecord.user_identifier == user_identifier,
                    AttributionEventRecord.occurred_at >= start,
                    AttributionEventRecord.occurred_at <= end
                )
                .order_by(AttributionEventRecord.occurred_at)
            ).all()
            return [event_from_row(r) for r in rows]

    @db_operation("fetch_event")
    def fetch_event(self, project_id, event_id):
        with self.session_factory() as session:
            row = session.get(AttributionEventRecord, event_id)
            if row is None or row.project_id != project_id:
                return None
            return event_from_row(row)

    @db_operation("fetch_conversion_events")
    def fetch_conversion_events(self, project_id, start, end):
        with self.session_factory() as session:
            rows = session.scalars(
                select(AttributionEventRecord)
                .where(
                    AttributionEventRecord.project_id == project_id,
                    AttributionEventRecord.event_type == EventType.CONVERSION,
                    AttributionEventRecord.occurred_at >= start,
                    AttributionEventRecord.occurred_at <= end
                )
                .order_by(AttributionEventRecord.occurred_at, AttributionEventRecord.id)
            ).all()
            return [event_from_row(r) for r in rows]

    @db_operation("fetch_project_events")
    def fetch_project_events(self, project_id, start, end):
        with self.session_factory() as session:
            rows = session.scalars(
                select(AttributionEventRecord)
                .where(
                    AttributionEventRecord.project_id == project_id,
                    AttributionEventRecord.occurred_at >= start,
                    AttributionEventRecord.occurred_at <= end
                )
                .order_by(AttributionEventRecord.user_identifier, AttributionEventRecord.occurred_at)
            ).all()
            return [event_from_row(r) for r in rows]

    @db_operation("fetch_channels")
    def fetch_channels(self, project_id):
        with self.session_factory() as session:
            rows = session.scalars(
                select(AttributionChannel)
                .where(AttributionChannel.project_id == project_id)
                .order_by(AttributionChannel.created_at, AttributionChannel.name)
            ).all()
            return [channel_from_row(r) for r in rows]

    def persist_channels(self, project_id: str, definitions: Sequence[ChannelDefinition]) -> List[Channel]:
        try:
            return self._insert_channel_set(project_id, definitions)
        except PersistenceError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # Lost the bootstrap race: the unique constraint kept the winner's rows
            existing = self.fetch_channels(project_id)
            if existing:
                logger.info(f"Concurrent bootstrap detected for project {project_id}, returning existing channels")
                return existing
            raise

    @staticmethod
    def _existing_channel_rows(session, project_id: str) -> Sequence[AttributionChannel]:
        return session.scalars(
            select(AttributionChannel).where(AttributionChannel.project_id == project_id)
        ).all()

    @db_operation("persist_channels")
    def _insert_channel_set(self, project_id: str, definitions: Sequence[ChannelDefinition]) -> List[Channel]:
        with self.session_factory.begin() as session:
            existing = self._existing_channel_rows(session, project_id)
            if existing:
                return [channel_from_row(r) for r in existing]

            now = datetime.utcnow()
            rows = [
                AttributionChannel(
                    project_id=project_id,
                    name=d.name,
                    category=d.category,
                    source=d.source,
                    medium=d.medium,
                    campaign=d.campaign,
                    created_at=now,
                    updated_at=now
                )
                for d in definitions
            ]
            session.add_all(rows)
            session.flush()
            return [channel_from_row(r) for r in rows]

    def insert_channel(self, project_id: str, definition: ChannelDefinition) -> Channel:
        try:
            return self._insert_channel(project_id, definition)
        except PersistenceError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise DuplicateChannelError(project_id, definition.name) from e
            raise

    @db_operation("insert_channel")
    def _insert_channel(self, project_id: str, definition: ChannelDefinition) -> Channel:
        with self.session_factory.begin() as session:
            row = AttributionChannel(project_id=project_id, **definition.model_dump())
            session.add(row)
            session.flush()
            return channel_from_row(row)

    @db_operation("persist_report")
    def persist_report(self, report):
        with self.session_factory.begin() as session:
            row = report_to_row(report)
            session.add(row)
            session.flush()
            return row.id

    @db_operation("fetch_report")
    def fetch_report(self, report_id):
        with self.session_factory() as session:
            row = session.get(AttributionReportRecord, report_id)
            return report_from_row(row) if row is not None else None

    @db_operation("list_reports")
    def list_reports(self, project_id):
        with self.session_factory() as session:
            rows = session.scalars(
                select(AttributionReportRecord)
                .where(AttributionReportRecord.project_id == project_id)
                .order_by(AttributionReportRecord.generated_at.desc())
            ).all()
            return [report_from_row(r) for r in rows]

    @db_operation("delete_report")
    def delete_report(self, report_id):
        with self.session_factory.begin() as session:
            result = session.execute(
                delete(AttributionReportRecord).where(AttributionReportRecord.id == report_id)
            )
            return result.rowcount > 0
