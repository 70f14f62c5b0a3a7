"""Client-side helpers: API wrapper and adaptive polling."""

from tracker.client.api_client import TrackerAPIClient, TrackerAPIError
from tracker.client.polling import PollingConfig, PollingSession, PollTier

__all__ = ["TrackerAPIClient", "TrackerAPIError", "PollingConfig", "PollingSession", "PollTier"]
