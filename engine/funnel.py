"""
Funnel Analysis

Counts how many users move through an ordered sequence of event types
within a date range, and where they drop out.

A user completes step N when they have an event of that step's type at or
after the event that completed step N - 1. Every user with at least one
event in the range enters the first step.
"""
from typing import List, Dict, Sequence
from datetime import datetime

from loguru import logger

from models.attribution import (
    AttributionEvent, FunnelAnalysis, FunnelDropOff, FunnelStep, FunnelStepResult,
    to_naive_utc
)
from engine.data_source import AttributionDataSource
from engine.logging_utils import LogContext


def walk_funnel(events: Sequence[AttributionEvent], steps: Sequence[FunnelStep]) -> List[AttributionEvent]:
    """
    Events that completed each step for one user, in step order

    The result is shorter than `steps` when the user stopped part way.
    """
    completed: List[AttributionEvent] = []
    cursor = 0
    for step in steps:
        match = next(
            (i for i in range(cursor, len(events)) if events[i].event_type == step.event_type),
            None
        )
        if match is None:
            break
        completed.append(events[match])
        cursor = match + 1
    return completed


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class FunnelAnalyzer:
    """Step completion and drop-off analysis over a project's events"""

    def __init__(self, data_source: AttributionDataSource):
        self.data_source = data_source

    def _user_events(self, project_id: str, start_date: datetime,
                     end_date: datetime) -> Dict[str, List[AttributionEvent]]:
        journeys: Dict[str, List[AttributionEvent]] = {}
        for event in self.data_source.fetch_project_events(project_id, start_date, end_date):
            journeys.setdefault(event.user_identifier, []).append(event)
        for events in journeys.values():
            events.sort(key=lambda e: e.occurred_at)
        return journeys

    def analyze_funnel(
        self,
        project_id: str,
        funnel_name: str,
        steps: Sequence[FunnelStep],
        start_date: datetime,
        end_date: datetime
    ) -> FunnelAnalysis:
        """
        Analyze a conversion funnel

        Args:
            project_id: Project whose events are analyzed
            funnel_name: Display name of the funnel
            steps: Ordered steps, at least one
            start_date: Inclusive start of the event window
            end_date: Inclusive end of the event window

        Returns:
            FunnelAnalysis with one result per step and the drop-off points
            ranked by drop-off rate

        Raises:
            ValueError: If no steps are given or the range is inverted
        """
        if not steps:
            raise ValueError("a funnel needs at least one step")
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")

        with LogContext(f"analyze_funnel project={project_id} funnel={funnel_name}"):
            journeys = self._user_events(project_id, start_date, end_date)
            progress = {user: walk_funnel(events, steps) for user, events in journeys.items()}

            results: List[FunnelStepResult] = []
            entered = len(journeys)
            for index, step in enumerate(steps):
                completed = sum(1 for reached in progress.values() if len(reached) > index)
                completion_rate = _rate(completed, entered)
                results.append(FunnelStepResult(
                    step_number=index + 1,
                    step_name=step.step_name,
                    event_type=step.event_type,
                    users_entered=entered,
                    users_completed=completed,
                    drop_off_count=entered - completed,
                    completion_rate=completion_rate,
                    drop_off_rate=100.0 - completion_rate if entered else 0.0
                ))
                entered = completed

            durations = [
                (reached[-1].occurred_at - reached[0].occurred_at).total_seconds() / 60.0
                for reached in progress.values()
                if len(reached) == len(steps)
            ]

            analysis = FunnelAnalysis(
                project_id=project_id,
                funnel_name=funnel_name,
                start_date=start_date,
                end_date=end_date,
                total_users=len(journeys),
                total_entered=results[0].users_entered,
                total_completed=results[-1].users_completed,
                conversion_rate=_rate(results[-1].users_completed, results[0].users_entered),
                avg_time_to_complete_minutes=sum(durations) / len(durations) if durations else None,
                steps=results,
                drop_off_points=self._drop_offs(results)
            )

            logger.info(
                f"Funnel '{funnel_name}': {analysis.total_completed} of {analysis.total_entered} "
                f"users completed {len(steps)} steps"
            )
        return analysis

    @staticmethod
    def _drop_offs(results: Sequence[FunnelStepResult]) -> List[FunnelDropOff]:
        drop_offs = []
        for current, following in zip(results, results[1:]):
            count = current.users_completed - following.users_completed
            rate = _rate(count, current.users_completed)
            if rate > 0:
                drop_offs.append(FunnelDropOff(
                    from_step=current.step_number,
                    to_step=following.step_number,
                    drop_off_count=count,
                    drop_off_rate=rate
                ))
        drop_offs.sort(key=lambda d: (-d.drop_off_rate, d.from_step))
        return drop_offs
