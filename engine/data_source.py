"""Persistence interface consumed by the attribution engine."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence
import threading
import uuid

from models.attribution import (
    AttributionEvent, AttributionReport, Channel, ChannelDefinition
)
from engine.exceptions import DuplicateChannelError


class AttributionDataSource(ABC):
    """Interface for the datastore holding channels, events and reports."""

    @abstractmethod
    def fetch_events(
        self,
        project_id: str,
        user_identifier: str,
        start: datetime,
        end: datetime,
    ) -> List[AttributionEvent]:
        """Fetch one user's events with start <= occurred_at <= end."""
        pass

    @abstractmethod
    def fetch_event(self, project_id: str, event_id: str) -> Optional[AttributionEvent]:
        """Fetch a single event, or None when it does not exist."""
        pass

    @abstractmethod
    def fetch_conversion_events(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> List[AttributionEvent]:
        """Fetch conversion events with start <= occurred_at <= end, oldest first."""
        pass

    @abstractmethod
    def fetch_project_events(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> List[AttributionEvent]:
        """Fetch every user's events with start <= occurred_at <= end,
        ordered by user_identifier then occurred_at."""
        pass

    @abstractmethod
    def fetch_channels(self, project_id: str) -> List[Channel]:
        """Fetch every channel of a project."""
        pass

    @abstractmethod
    def persist_channels(
        self,
        project_id: str,
        definitions: Sequence[ChannelDefinition],
    ) -> List[Channel]:
        """Insert channels for a project that has none, in one transaction.

        Returns the existing channels unchanged when the project already has
        any, including when a concurrent caller inserted them first.
        """
        pass

    @abstractmethod
    def insert_channel(self, project_id: str, definition: ChannelDefinition) -> Channel:
        """Insert a single channel; raises DuplicateChannelError on a name clash."""
        pass

    @abstractmethod
    def persist_report(self, report: AttributionReport) -> str:
        """Store a report atomically and return its id."""
        pass

    @abstractmethod
    def fetch_report(self, report_id: str) -> Optional[AttributionReport]:
        pass

    @abstractmethod
    def list_reports(self, project_id: str) -> List[AttributionReport]:
        """Reports of a project, newest first."""
        pass

    @abstractmethod
    def delete_report(self, report_id: str) -> bool:
        pass


class InMemoryDataSource(AttributionDataSource):
    """Dictionary-backed data source for tests and offline analysis.

    A single lock guards every read and write, which gives persist_channels
    the same check-then-insert atomicity a database transaction provides.
    """

    def __init__(
        self,
        events: Optional[Sequence[AttributionEvent]] = None,
        channels: Optional[Sequence[Channel]] = None,
    ):
        self._lock = threading.RLock()
        self._events: Dict[str, AttributionEvent] = {}
        self._channels: Dict[str, Channel] = {}
        self._reports: Dict[str, AttributionReport] = {}
        for event in events or []:
            self.add_event(event)
        for channel in channels or []:
            self._channels[channel.id] = channel

    def add_event(self, event: AttributionEvent) -> AttributionEvent:
        with self._lock:
            self._events[event.id] = event
        return event

    def fetch_events(self, project_id, user_identifier, start, end):
        with self._lock:
            events = [
                e for e in self._events.values()
                if e.project_id == project_id
                and e.user_identifier == user_identifier
                and start <= e.occurred_at <= end
            ]
        return sorted(events, key=lambda e: e.occurred_at)

    def fetch_event(self, project_id, event_id):
        with self._lock:
            event = self._events.get(event_id)
        if event is None or event.project_id != project_id:
            return None
        return event

    def fetch_conversion_events(self, project_id, start, end):
        with self._lock:
            events = [
                e for e in self._events.values()
                if e.project_id == project_id
                and e.is_conversion
                and start <= e.occurred_at <= end
            ]
        return sorted(events, key=lambda e: e.occurred_at)

    def fetch_project_events(self, project_id, start, end):
        with self._lock:
            events = [
                e for e in self._events.values()
                if e.project_id == project_id and start <= e.occurred_at <= end
            ]
        return sorted(events, key=lambda e: (e.user_identifier, e.occurred_at))

    def fetch_channels(self, project_id):
        with self._lock:
            channels = [c for c in self._channels.values() if c.project_id == project_id]
        return sorted(channels, key=lambda c: c.created_at)

    def persist_channels(self, project_id, definitions):
        with self._lock:
            existing = self.fetch_channels(project_id)
            if existing:
                return existing

            names = [d.name for d in definitions]
            if len(set(names)) != len(names):
                duplicate = next(n for n in names if names.count(n) > 1)
                raise DuplicateChannelError(project_id, duplicate)

            created = [
                Channel(project_id=project_id, **d.model_dump())
                for d in definitions
            ]
            for channel in created:
                self._channels[channel.id] = channel
            return created

    def insert_channel(self, project_id, definition):
        with self._lock:
            if any(c.name == definition.name for c in self.fetch_channels(project_id)):
                raise DuplicateChannelError(project_id, definition.name)
            channel = Channel(project_id=project_id, **definition.model_dump())
            self._channels[channel.id] = channel
            return channel

    def persist_report(self, report):
        with self._lock:
            report_id = report.id or str(uuid.uuid4())
            self._reports[report_id] = report.model_copy(update={"id": report_id})
            return report_id

    def fetch_report(self, report_id):
        with self._lock:
            return self._reports.get(report_id)

    def list_reports(self, project_id):
        with self._lock:
            reports = [r for r in self._reports.values() if r.project_id == project_id]
        return sorted(reports, key=lambda r: r.generated_at, reverse=True)

    def delete_report(self, report_id):
        with self._lock:
            return self._reports.pop(report_id, None) is not None
