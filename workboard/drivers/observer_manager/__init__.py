"""Observer manager drivers."""

from workboard.drivers.observer_manager.local import (
    CallableObserver,
    LocalObserverManager,
    LoggingErrorHandler,
    Subscription,
)

__all__ = ["CallableObserver", "LocalObserverManager", "LoggingErrorHandler", "Subscription"]
