"""
Report Aggregator

Runs journey assembly and attribution over every conversion of a date range
and rolls the weighted credit up into channel performance reports. Journey
maps lay the same per-conversion credit out event by event.

Conversions are independent of each other, so they are split into chunks and
processed on a bounded thread pool. Each chunk accumulates into its own
_PartialTotals; the partials are merged by addition on the calling thread in
chunk order.
"""
from typing import List, Dict, Optional, Sequence, Tuple, Mapping, Union
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta
import contextvars
import csv
import io
import math
import os

from loguru import logger

from models.attribution import (
    AttributionEvent, AttributionModelType, AttributionReport, Channel,
    ChannelBreakdown, ChannelModelCredit, ConversionPath, CustomerJourney, Journey,
    JourneyMap, JourneyTouchpoint, ModelComparison, ProjectStatus, ReportType,
    TouchpointWeight, to_naive_utc
)
from engine.calculator import AttributionCalculator, ModelLike, calculate
from engine.channels import ChannelRegistry
from engine.data_source import AttributionDataSource
from engine.exceptions import (
    InvalidJourneyError, InvalidValueError, EventNotFoundError, ReportTimeoutError
)
from engine.journey import JourneyAssembler
from engine.logging_utils import LogContext, log_with_context
from config import settings

UNATTRIBUTED_CHANNEL = "Unattributed"
PATH_SEPARATOR = " → "
CHUNKS_PER_WORKER = 4

# Per-journey failures that are skipped and counted instead of aborting a report
SKIPPABLE_ERRORS = (InvalidJourneyError, InvalidValueError, EventNotFoundError)


def channel_label(channel_id: Optional[str], channels: Mapping[str, Channel]) -> str:
    """Display name of a channel id (unresolved touchpoints have none)"""
    if channel_id is None:
        return UNATTRIBUTED_CHANNEL
    channel = channels.get(channel_id)
    return channel.name if channel else f"Unknown channel {channel_id}"


def path_signature(journey: Journey, channels: Mapping[str, Channel]) -> Tuple[str, ...]:
    """Channel names of a journey with immediately repeated names collapsed"""
    signature: List[str] = []
    for event in journey.events:
        label = channel_label(event.channel_id, channels)
        if not signature or signature[-1] != label:
            signature.append(label)
    return tuple(signature)


# ============================================================================
# Accumulators
# ============================================================================

@dataclass
class _ChannelTotals:
    credited_conversions: float = 0.0
    revenue: float = 0.0
    touchpoints: int = 0
    hours_before_conversion: float = 0.0

    def add(self, touchpoint: TouchpointWeight) -> None:
        self.credited_conversions += touchpoint.weight
        self.revenue += touchpoint.attributed_value
        self.touchpoints += 1
        self.hours_before_conversion += touchpoint.hours_before_conversion

    def merge(self, other: "_ChannelTotals") -> None:
        self.credited_conversions += other.credited_conversions
        self.revenue += other.revenue
        self.touchpoints += other.touchpoints
        self.hours_before_conversion += other.hours_before_conversion


@dataclass
class _PathTotals:
    first_seen: int
    conversions: int = 0
    revenue: float = 0.0
    touchpoints: int = 0

    def merge(self, other: "_PathTotals") -> None:
        self.first_seen = min(self.first_seen, other.first_seen)
        self.conversions += other.conversions
        self.revenue += other.revenue
        self.touchpoints += other.touchpoints


@dataclass
class _PartialTotals:
    conversions: int = 0
    revenue: float = 0.0
    touchpoints: int = 0
    hours_to_convert: float = 0.0
    channels: Dict[Optional[str], _ChannelTotals] = field(default_factory=dict)
    paths: Dict[Tuple[str, ...], _PathTotals] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    def add_journey(self, order: int, journey: Journey, conversion_value: float,
                    touchpoints: Sequence[TouchpointWeight], signature: Tuple[str, ...]) -> None:
        self.conversions += 1
        self.revenue += conversion_value
        self.touchpoints += len(touchpoints)
        self.hours_to_convert += journey.hours_to_convert

        for touchpoint in touchpoints:
            self.channels.setdefault(touchpoint.channel_id, _ChannelTotals()).add(touchpoint)

        path = self.paths.setdefault(signature, _PathTotals(first_seen=order))
        path.conversions += 1
        path.revenue += conversion_value
        path.touchpoints += len(touchpoints)

    def merge(self, other: "_PartialTotals") -> None:
        self.conversions += other.conversions
        self.revenue += other.revenue
        self.touchpoints += other.touchpoints
        self.hours_to_convert += other.hours_to_convert
        for channel_id, totals in other.channels.items():
            self.channels.setdefault(channel_id, _ChannelTotals()).merge(totals)
        for signature, totals in other.paths.items():
            if signature in self.paths:
                self.paths[signature].merge(totals)
            else:
                self.paths[signature] = _PathTotals(
                    first_seen=totals.first_seen,
                    conversions=totals.conversions,
                    revenue=totals.revenue,
                    touchpoints=totals.touchpoints
                )
        self.skipped.extend(other.skipped)


# ============================================================================
# Aggregator
# ============================================================================

class ReportAggregator:
    """Generates channel performance reports for a project"""

    def __init__(
        self,
        data_source: AttributionDataSource,
        calculator: Optional[AttributionCalculator] = None,
        max_workers: Optional[int] = None
    ):
        self.data_source = data_source
        self.registry = ChannelRegistry(data_source)
        self.calculator = calculator or AttributionCalculator(settings.time_decay_half_life_hours)
        self.max_workers = max_workers or settings.report_max_workers or os.cpu_count() or 1

    # ------------------------------------------------------------------
    # Journey processing
    # ------------------------------------------------------------------

    def _chunk(self, items: List[Tuple[int, AttributionEvent]]) -> List[List[Tuple[int, AttributionEvent]]]:
        if not items:
            return []
        size = max(1, math.ceil(len(items) / (self.max_workers * CHUNKS_PER_WORKER)))
        return [items[i:i + size] for i in range(0, len(items), size)]

    def _process_chunk(
        self,
        project_id: str,
        chunk: List[Tuple[int, AttributionEvent]],
        models: List[ModelLike],
        lookback: timedelta,
        channels: Mapping[str, Channel]
    ) -> Dict[AttributionModelType, _PartialTotals]:
        """Assemble and attribute every conversion of a chunk into local totals"""
        specs = [self.calculator.resolve(m) for m in models]
        partials = {AttributionModelType(s.kind): _PartialTotals() for s in specs}
        assembler = JourneyAssembler(self.data_source, project_id)

        for order, conversion in chunk:
            try:
                journey = assembler.assemble_journey(conversion.user_identifier, conversion, lookback)
                results = [(AttributionModelType(s.kind), calculate(journey, conversion.id, s)) for s in specs]
            except SKIPPABLE_ERRORS as e:
                log_with_context("warning", f"Skipping conversion {conversion.id}: {e}")
                for partial in partials.values():
                    partial.skipped.append(conversion.id)
                continue

            signature = path_signature(journey, channels)
            value = conversion.event_value or 0.0
            for model_type, touchpoints in results:
                partials[model_type].add_journey(order, journey, value, touchpoints, signature)

        return partials

    def _aggregate(
        self,
        project_id: str,
        conversions: List[AttributionEvent],
        models: List[ModelLike],
        lookback: timedelta,
        channels: Mapping[str, Channel],
        timeout: Optional[float] = None
    ) -> Dict[AttributionModelType, _PartialTotals]:
        merged = {AttributionModelType(self.calculator.resolve(m).kind): _PartialTotals() for m in models}
        chunks = self._chunk(list(enumerate(conversions)))
        if not chunks:
            return merged

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(chunks)),
            thread_name_prefix="attribution-report"
        )
        try:
            futures = [
                executor.submit(
                    contextvars.copy_context().run,
                    self._process_chunk, project_id, chunk, models, lookback, channels
                )
                for chunk in chunks
            ]
            _, pending = wait(futures, timeout=timeout)
            if pending:
                raise ReportTimeoutError(timeout)

            for future in futures:
                for model_type, partial in future.result().items():
                    merged[model_type].merge(partial)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return merged

    def _load_conversions(self, project_id: str, start_date: datetime,
                          end_date: datetime) -> List[AttributionEvent]:
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")
        conversions = self.data_source.fetch_conversion_events(project_id, start_date, end_date)
        logger.info(
            f"Found {len(conversions)} conversions for project {project_id} "
            f"between {start_date.isoformat()} and {end_date.isoformat()}"
        )
        return conversions

    # ------------------------------------------------------------------
    # Report building
    # ------------------------------------------------------------------

    @staticmethod
    def _channel_breakdown(
        totals: _PartialTotals,
        channels: Mapping[str, Channel],
        channel_spend: Optional[Mapping[str, float]]
    ) -> List[ChannelBreakdown]:
        breakdown = []
        for channel_id, channel_totals in totals.channels.items():
            channel = channels.get(channel_id) if channel_id is not None else None
            credited = channel_totals.credited_conversions
            revenue = channel_totals.revenue

            entry = ChannelBreakdown(
                channel_id=channel_id,
                channel_name=channel_label(channel_id, channels),
                channel_category=channel.category if channel else None,
                credited_conversions=credited,
                revenue=revenue,
                revenue_percentage=(revenue / totals.revenue * 100) if totals.revenue > 0 else 0.0,
                touchpoints=channel_totals.touchpoints,
                avg_time_to_conversion_hours=(
                    channel_totals.hours_before_conversion / channel_totals.touchpoints
                    if channel_totals.touchpoints else 0.0
                ),
                avg_value_per_conversion=revenue / credited if credited > 0 else 0.0
            )

            spend = channel_spend.get(channel_id) if channel_spend and channel_id is not None else None
            if spend is not None and spend > 0:
                entry.spend = spend
                entry.roi = (revenue - spend) / spend * 100
                entry.roas = revenue / spend
                entry.cost_per_conversion = spend / credited if credited > 0 else None

            breakdown.append(entry)

        breakdown.sort(key=lambda b: (-b.revenue, -b.credited_conversions, b.channel_name))
        return breakdown

    @staticmethod
    def _top_paths(totals: _PartialTotals, limit: int) -> List[ConversionPath]:
        ranked = sorted(totals.paths.items(), key=lambda item: (-item[1].conversions, item[1].first_seen))
        return [
            ConversionPath(
                path=list(signature),
                path_string=PATH_SEPARATOR.join(signature),
                conversions=path.conversions,
                revenue=path.revenue,
                avg_touchpoints=path.touchpoints / path.conversions if path.conversions else 0.0
            )
            for signature, path in ranked[:limit]
        ]

    def generate_report(
        self,
        project_id: str,
        report_type: Union[ReportType, str],
        model: ModelLike,
        start_date: datetime,
        end_date: datetime,
        lookback_days: Optional[int] = None,
        top_paths_limit: Optional[int] = None,
        channel_spend: Optional[Mapping[str, float]] = None,
        timeout: Optional[float] = None,
        persist: bool = True
    ) -> AttributionReport:
        """
        Generate a channel performance report for a date range

        Args:
            project_id: Project whose conversions are reported
            report_type: ReportType or its value
            model: Attribution model (variant, enum or name)
            start_date: Inclusive start of the conversion window
            end_date: Inclusive end of the conversion window
            lookback_days: Journey lookback (default from settings)
            top_paths_limit: Number of conversion paths to keep
            channel_spend: Spend per channel id, fills the ROI fields
            timeout: Seconds before the computation is abandoned
            persist: Store the report through the data source

        Returns:
            The generated AttributionReport (with id when persisted)

        Raises:
            ReportTimeoutError: If the timeout expires; nothing is persisted
            PersistenceError: If the data layer fails; nothing is persisted
        """
        report_type = ReportType(report_type)
        spec = self.calculator.resolve(model)
        model_type = AttributionModelType(spec.kind)
        lookback_days = lookback_days or settings.attribution_lookback_days
        top_paths_limit = top_paths_limit or settings.top_paths_limit
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)

        with LogContext(f"generate_report project={project_id} model={model_type.value}"):
            conversions = self._load_conversions(project_id, start_date, end_date)
            channels = self.registry.channel_map(project_id)
            totals = self._aggregate(
                project_id, conversions, [spec], timedelta(days=lookback_days), channels, timeout
            )[model_type]

            processed = totals.conversions
            report = AttributionReport(
                project_id=project_id,
                report_type=report_type,
                attribution_model=model_type,
                start_date=start_date,
                end_date=end_date,
                lookback_days=lookback_days,
                total_conversions=processed,
                total_revenue=totals.revenue,
                avg_touchpoints=totals.touchpoints / processed if processed else 0.0,
                avg_time_to_convert_hours=totals.hours_to_convert / processed if processed else 0.0,
                skipped_conversions=len(totals.skipped),
                skipped_conversion_ids=totals.skipped,
                channel_breakdown=self._channel_breakdown(totals, channels, channel_spend),
                top_conversion_paths=self._top_paths(totals, top_paths_limit)
            )

            if channel_spend:
                total_spend = sum(channel_spend.values())
                report.total_spend = total_spend
                if total_spend > 0:
                    report.overall_roi = (report.total_revenue - total_spend) / total_spend * 100
                    report.overall_roas = report.total_revenue / total_spend

            if report.skipped_conversions:
                logger.warning(
                    f"Report for project {project_id} skipped {report.skipped_conversions} "
                    f"of {len(conversions)} conversions"
                )

            if persist:
                report.id = self.data_source.persist_report(report)
                logger.info(f"Persisted attribution report {report.id}")

        return report

    def compare_models(
        self,
        project_id: str,
        start_date: datetime,
        end_date: datetime,
        lookback_days: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> ModelComparison:
        """Per-channel credit under every model for the same journeys"""
        lookback_days = lookback_days or settings.attribution_lookback_days
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)

        with LogContext(f"compare_models project={project_id}"):
            conversions = self._load_conversions(project_id, start_date, end_date)
            channels = self.registry.channel_map(project_id)
            all_totals = self._aggregate(
                project_id, conversions, list(AttributionCalculator.ALL_MODELS),
                timedelta(days=lookback_days), channels, timeout
            )

        reference = all_totals[AttributionModelType.LINEAR]
        comparison = ModelComparison(
            project_id=project_id,
            start_date=start_date,
            end_date=end_date,
            total_conversions=reference.conversions,
            total_revenue=reference.revenue,
            skipped_conversions=len(reference.skipped)
        )
        for model_type, totals in all_totals.items():
            credits = [
                ChannelModelCredit(
                    channel_id=channel_id,
                    channel_name=channel_label(channel_id, channels),
                    credited_conversions=channel_totals.credited_conversions,
                    revenue=channel_totals.revenue
                )
                for channel_id, channel_totals in totals.channels.items()
            ]
            credits.sort(key=lambda c: (-c.revenue, c.channel_name))
            comparison.models[model_type] = credits
        return comparison

    # ------------------------------------------------------------------
    # Journey maps
    # ------------------------------------------------------------------

    @staticmethod
    def _map_journey(
        journey: Journey,
        touchpoints: Sequence[TouchpointWeight],
        channels: Mapping[str, Channel]
    ) -> CustomerJourney:
        conversion = journey.conversion
        signature = path_signature(journey, channels)
        mapped = []
        for event, touchpoint in zip(journey.events, touchpoints):
            channel = channels.get(event.channel_id) if event.channel_id is not None else None
            mapped.append(JourneyTouchpoint(
                event_id=event.id,
                event_type=event.event_type,
                channel_id=event.channel_id,
                channel_name=channel_label(event.channel_id, channels),
                channel_category=channel.category if channel else None,
                occurred_at=event.occurred_at,
                position=touchpoint.position,
                weight=touchpoint.weight,
                attributed_value=touchpoint.attributed_value,
                hours_before_conversion=touchpoint.hours_before_conversion
            ))
        return CustomerJourney(
            user_identifier=journey.user_identifier,
            conversion_event_id=conversion.id,
            conversion_value=conversion.event_value or 0.0,
            converted_at=conversion.occurred_at,
            journey_start=journey.events[0].occurred_at,
            touchpoint_count=journey.touchpoint_count,
            hours_to_convert=journey.hours_to_convert,
            path=list(signature),
            path_string=PATH_SEPARATOR.join(signature),
            touchpoints=mapped
        )

    def journey_map(
        self,
        project_id: str,
        start_date: datetime,
        end_date: datetime,
        user_identifier: Optional[str] = None,
        limit: int = 100,
        model: Optional[ModelLike] = None,
        lookback_days: Optional[int] = None
    ) -> JourneyMap:
        """
        Lay out the converting journeys of a date range

        Args:
            project_id: Project whose conversions are mapped
            start_date: Inclusive start of the conversion window
            end_date: Inclusive end of the conversion window
            user_identifier: Only map this user's conversions
            limit: Maximum number of journeys returned
            model: Model used for the per-touchpoint credit (default from settings)
            lookback_days: Journey lookback (default from settings)

        Returns:
            JourneyMap with at most `limit` journeys, oldest conversion first.
            Conversions that cannot be attributed are skipped and counted.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        spec = self.calculator.resolve(model or settings.attribution_model)
        lookback_days = lookback_days or settings.attribution_lookback_days
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)

        with LogContext(f"journey_map project={project_id}"):
            conversions = self._load_conversions(project_id, start_date, end_date)
            if user_identifier is not None:
                conversions = [c for c in conversions if c.user_identifier == user_identifier]
            channels = self.registry.channel_map(project_id)
            assembler = JourneyAssembler(self.data_source, project_id)

            result = JourneyMap(
                project_id=project_id,
                attribution_model=AttributionModelType(spec.kind),
                start_date=start_date,
                end_date=end_date,
                lookback_days=lookback_days
            )
            for conversion in conversions:
                if len(result.journeys) >= limit:
                    break
                try:
                    journey = assembler.assemble_journey(
                        conversion.user_identifier, conversion, timedelta(days=lookback_days)
                    )
                    touchpoints = calculate(journey, conversion.id, spec)
                except SKIPPABLE_ERRORS as e:
                    log_with_context("warning", f"Skipping conversion {conversion.id}: {e}")
                    result.skipped_conversion_ids.append(conversion.id)
                    continue
                result.journeys.append(self._map_journey(journey, touchpoints, channels))

            result.total_journeys = len(result.journeys)
            result.total_revenue = sum(j.conversion_value for j in result.journeys)
            result.skipped_conversions = len(result.skipped_conversion_ids)
        return result

    # ------------------------------------------------------------------
    # Stored reports
    # ------------------------------------------------------------------

    def project_status(self, project_id: str) -> ProjectStatus:
        """Channel and stored-report counts of a project"""
        channels = self.registry.list_channels(project_id)
        reports = self.data_source.list_reports(project_id)
        return ProjectStatus(
            project_id=project_id,
            enabled=bool(channels),
            channel_count=len(channels),
            report_count=len(reports),
            latest_report_at=reports[0].generated_at if reports else None
        )

    def get_report(self, report_id: str) -> Optional[AttributionReport]:
        return self.data_source.fetch_report(report_id)

    def list_reports(self, project_id: str) -> List[AttributionReport]:
        return self.data_source.list_reports(project_id)

    def delete_report(self, report_id: str) -> bool:
        deleted = self.data_source.delete_report(report_id)
        if deleted:
            logger.info(f"Deleted attribution report {report_id}")
        return deleted


def export_channel_breakdown_csv(report: AttributionReport) -> str:
    """Serialize a report's channel breakdown as CSV"""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["channel", "category", "credited_conversions", "revenue", "avg_value_per_conversion"])
    for row in report.channel_breakdown:
        writer.writerow([
            row.channel_name,
            row.channel_category.value if row.channel_category else "",
            f"{row.credited_conversions:.4f}",
            f"{row.revenue:.2f}",
            f"{row.avg_value_per_conversion:.2f}"
        ])
    return buffer.getvalue()
