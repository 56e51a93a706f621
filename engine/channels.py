"""
Channel Registry

Stores marketing channels per project and bootstraps the default set.
"""
from typing import List, Dict, Optional, Sequence
from loguru import logger

from models.attribution import Channel, ChannelDefinition, ChannelCategory
from engine.data_source import AttributionDataSource
from engine.exceptions import PersistenceError, AttributionEngineError
from engine.logging_utils import with_correlation_id


DEFAULT_CHANNELS: List[ChannelDefinition] = [
    ChannelDefinition(name="Organic Search", category=ChannelCategory.ORGANIC, source="google", medium="organic"),
    ChannelDefinition(name="Paid Search", category=ChannelCategory.PAID, source="google_ads", medium="cpc"),
    ChannelDefinition(name="Social Media", category=ChannelCategory.SOCIAL, source="facebook", medium="social"),
    ChannelDefinition(name="Email Marketing", category=ChannelCategory.EMAIL, source="email_campaign", medium="email"),
    ChannelDefinition(name="Direct Traffic", category=ChannelCategory.DIRECT, source="direct", medium="none"),
    ChannelDefinition(name="Referral", category=ChannelCategory.REFERRAL, source="partner_sites", medium="referral"),
    ChannelDefinition(name="Display Ads", category=ChannelCategory.PAID, source="google_display", medium="display"),
    ChannelDefinition(name="Other", category=ChannelCategory.OTHER, source=None, medium=None),
]


class ChannelRegistry:
    """Manages the channels of attribution projects"""

    def __init__(self, data_source: AttributionDataSource):
        self.data_source = data_source

    def list_channels(self, project_id: str) -> List[Channel]:
        return self.data_source.fetch_channels(project_id)

    def channel_map(self, project_id: str) -> Dict[str, Channel]:
        """Channels of a project keyed by id"""
        return {c.id: c for c in self.list_channels(project_id)}

    def is_initialized(self, project_id: str) -> bool:
        return bool(self.list_channels(project_id))

    @with_correlation_id
    def create_default_channels(
        self,
        project_id: str,
        channel_defs: Optional[Sequence[ChannelDefinition]] = None
    ) -> List[Channel]:
        """
        Create the default channel set for a project, once

        If the project already has channels they are returned unchanged.
        Otherwise every definition is inserted in a single transaction.

        Args:
            project_id: Project to initialize
            channel_defs: Definitions to insert (defaults to DEFAULT_CHANNELS)

        Returns:
            The project's channels

        Raises:
            PersistenceError: If the atomic insert cannot complete
        """
        definitions = list(channel_defs) if channel_defs is not None else DEFAULT_CHANNELS

        existing = self.list_channels(project_id)
        if existing:
            logger.info(f"Project {project_id} already has {len(existing)} channels, skipping bootstrap")
            return existing

        try:
            channels = self.data_source.persist_channels(project_id, definitions)
        except PersistenceError:
            raise
        except AttributionEngineError as e:
            raise PersistenceError("persist_channels", str(e)) from e

        logger.info(f"Initialized {len(channels)} channels for project {project_id}")
        return channels

    def create_channel(self, project_id: str, definition: ChannelDefinition) -> Channel:
        """
        Create a single channel

        Raises:
            DuplicateChannelError: If the name is already used in the project
        """
        channel = self.data_source.insert_channel(project_id, definition)
        logger.info(f"Created channel '{channel.name}' for project {project_id}")
        return channel
