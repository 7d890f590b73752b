"""Plugins bundled with the event detector."""

from .simple_logging import SimpleLoggingPlugin
from .tracking_token_extraction import TrackingTokenExtractionPlugin

__all__ = ["SimpleLoggingPlugin", "TrackingTokenExtractionPlugin"]
