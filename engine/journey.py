"""
Journey Assembler

Builds the chronological event sequence that precedes a conversion.
"""
from typing import List, Optional, Union
from datetime import datetime, timedelta
from loguru import logger

from models.attribution import AttributionEvent, Journey, to_naive_utc
from engine.data_source import AttributionDataSource
from engine.exceptions import EventNotFoundError
from config import settings

LookbackWindow = Union[timedelta, int, float]

USER_HISTORY_HOURS = 720


def to_timedelta(lookback_window: Optional[LookbackWindow]) -> timedelta:
    """Accept a timedelta or a number of days"""
    if lookback_window is None:
        return timedelta(days=settings.attribution_lookback_days)
    if isinstance(lookback_window, timedelta):
        return lookback_window
    return timedelta(days=lookback_window)


class JourneyAssembler:
    """Fetches a user's touchpoints inside a lookback window"""

    def __init__(self, data_source: AttributionDataSource, project_id: str):
        self.data_source = data_source
        self.project_id = project_id

    def resolve_conversion(self, conversion_event: Union[AttributionEvent, str, None]) -> AttributionEvent:
        """
        Return the conversion event, fetching it when only an id is given

        Raises:
            EventNotFoundError: If the event cannot be located
        """
        if isinstance(conversion_event, AttributionEvent):
            return conversion_event
        if conversion_event is None:
            raise EventNotFoundError(None)

        event = self.data_source.fetch_event(self.project_id, conversion_event)
        if event is None:
            raise EventNotFoundError(conversion_event)
        return event

    def assemble_journey(
        self,
        user_identifier: str,
        conversion_event: Union[AttributionEvent, str],
        lookback_window: Optional[LookbackWindow] = None
    ) -> Journey:
        """
        Assemble the journey that ends with a conversion

        Events in [conversion - lookback, conversion] are sorted ascending and
        the conversion is placed last, whether or not the source query
        returned it.

        Args:
            user_identifier: Opaque user identifier
            conversion_event: The conversion event or its id
            lookback_window: timedelta or days (default from settings)

        Returns:
            Journey with at least the conversion event

        Raises:
            EventNotFoundError: If the conversion event cannot be located
        """
        conversion = self.resolve_conversion(conversion_event)
        window = to_timedelta(lookback_window)
        start = conversion.occurred_at - window

        fetched = self.data_source.fetch_events(
            self.project_id, user_identifier, start, conversion.occurred_at
        )

        prior: List[AttributionEvent] = [
            e for e in fetched
            if e.id != conversion.id and start <= e.occurred_at <= conversion.occurred_at
        ]
        prior.sort(key=lambda e: e.occurred_at)

        logger.debug(
            f"Assembled journey for {user_identifier}: {len(prior)} touchpoints "
            f"before conversion {conversion.id}"
        )

        return Journey(
            user_identifier=user_identifier,
            conversion_event_id=conversion.id,
            lookback_start=start,
            events=prior + [conversion]
        )

    def user_event_history(
        self,
        user_identifier: str,
        hours_back: float = USER_HISTORY_HOURS,
        now: Optional[datetime] = None
    ) -> List[AttributionEvent]:
        """A user's events from the last `hours_back` hours, oldest first"""
        end = to_naive_utc(now) if now is not None else datetime.utcnow()
        events = self.data_source.fetch_events(
            self.project_id, user_identifier, end - timedelta(hours=hours_back), end
        )
        logger.debug(f"Fetched {len(events)} events for {user_identifier} over {hours_back}h")
        return events
