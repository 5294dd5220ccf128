"""Ports: the interfaces workboard consumes from its collaborators."""

from workboard.kernel.ports.data_store import SupportsCollectionStorage
from workboard.kernel.ports.observer_manager import Observer, ObserverManager
from workboard.kernel.ports.scheduler import JobScheduler

__all__ = [
    "JobScheduler",
    "Observer",
    "ObserverManager",
    "SupportsCollectionStorage",
]
