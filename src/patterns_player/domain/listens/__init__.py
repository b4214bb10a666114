"""Listens domain - counted-listen detection and delivery."""

from .delivery import ListenDeliveryService, QueuedListen
from .tracker import ListenTracker

__all__ = [
    "ListenDeliveryService",
    "ListenTracker",
    "QueuedListen",
]
