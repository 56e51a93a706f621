"""
Custom Exception Classes for the Attribution Engine

This module defines custom exceptions for better error handling and debugging.
"""
from typing import Optional


class AttributionEngineError(Exception):
    """Base exception for all attribution engine errors"""
    pass


class InvalidJourneyError(AttributionEngineError):
    """Raised when a journey cannot be attributed to its conversion"""
    def __init__(self, conversion_event_id: Optional[str], message: str):
        self.conversion_event_id = conversion_event_id
        super().__init__(f"Invalid journey for conversion {conversion_event_id}: {message}")


class InvalidValueError(AttributionEngineError):
    """Raised when a conversion carries a negative value"""
    def __init__(self, conversion_event_id: str, value: float):
        self.conversion_event_id = conversion_event_id
        self.value = value
        super().__init__(f"Conversion {conversion_event_id} has a negative value: {value}")


class EventNotFoundError(AttributionEngineError):
    """Raised when a referenced event does not exist"""
    def __init__(self, event_id: Optional[str]):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class PersistenceError(AttributionEngineError):
    """Raised when the data layer cannot complete an operation"""
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Persistence error during {operation}: {message}")


class DuplicateChannelError(AttributionEngineError):
    """Raised when a channel name is already taken within a project"""
    def __init__(self, project_id: str, name: str):
        self.project_id = project_id
        self.name = name
        super().__init__(f"Channel '{name}' already exists for project {project_id}")


class ReportTimeoutError(AttributionEngineError):
    """Raised when report generation exceeds the caller's time budget"""
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Report generation exceeded {timeout} seconds")


class ConfigurationError(AttributionEngineError):
    """Raised when configuration is invalid or missing"""
    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}")
