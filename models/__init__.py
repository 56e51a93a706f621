"""Models package for the Attribution Engine"""
from .attribution import (
    ChannelCategory,
    EventType,
    AttributionModelType,
    ReportType,
    FirstTouch,
    LastTouch,
    Linear,
    TimeDecay,
    UShaped,
    AttributionModelSpec,
    ChannelDefinition,
    Channel,
    AttributionEvent,
    Journey,
    TouchpointWeight,
    AttributionResult,
    ChannelBreakdown,
    ConversionPath,
    AttributionReport,
    ChannelModelCredit,
    ModelComparison,
    JourneyTouchpoint,
    CustomerJourney,
    JourneyMap,
    FunnelStep,
    FunnelStepResult,
    FunnelDropOff,
    FunnelAnalysis,
    ProjectStatus
)

__all__ = [
    'ChannelCategory',
    'EventType',
    'AttributionModelType',
    'ReportType',
    'FirstTouch',
    'LastTouch',
    'Linear',
    'TimeDecay',
    'UShaped',
    'AttributionModelSpec',
    'ChannelDefinition',
    'Channel',
    'AttributionEvent',
    'Journey',
    'TouchpointWeight',
    'AttributionResult',
    'ChannelBreakdown',
    'ConversionPath',
    'AttributionReport',
    'ChannelModelCredit',
    'ModelComparison',
    'JourneyTouchpoint',
    'CustomerJourney',
    'JourneyMap',
    'FunnelStep',
    'FunnelStepResult',
    'FunnelDropOff',
    'FunnelAnalysis',
    'ProjectStatus'
]
