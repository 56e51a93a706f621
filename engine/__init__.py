"""Engine package for the Attribution Engine"""
from .calculator import AttributionCalculator, calculate
from .channels import ChannelRegistry, DEFAULT_CHANNELS
from .journey import JourneyAssembler
from .funnel import FunnelAnalyzer
from .reports import ReportAggregator, export_channel_breakdown_csv
from .data_source import AttributionDataSource, InMemoryDataSource

__all__ = [
    'AttributionCalculator',
    'calculate',
    'ChannelRegistry',
    'DEFAULT_CHANNELS',
    'JourneyAssembler',
    'FunnelAnalyzer',
    'ReportAggregator',
    'export_channel_breakdown_csv',
    'AttributionDataSource',
    'InMemoryDataSource'
]
