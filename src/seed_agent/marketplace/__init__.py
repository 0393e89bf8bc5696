"""Marketplace job source adapters."""

from seed_agent.marketplace.base import JobSource, MarketplaceError
from seed_agent.marketplace.client import MarketplaceClient
from seed_agent.marketplace.push import PushChannel, PushChannelClosed, QueuePushChannel

__all__ = [
    "JobSource",
    "MarketplaceClient",
    "MarketplaceError",
    "PushChannel",
    "PushChannelClosed",
    "QueuePushChannel",
]
