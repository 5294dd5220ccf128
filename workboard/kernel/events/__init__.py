"""Workboard notification events."""

from workboard.kernel.events.events import (
    CancelFailed,
    CancelRequested,
    Event,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobStatusUpdated,
    JobSubmissionFailed,
    JobSubmitted,
    NodeStateChanged,
    PersistenceFailed,
    PollingFailed,
    TransitionRejected,
    UpstreamAmbiguous,
    UpstreamMissing,
)

__all__ = [
    "CancelFailed",
    "CancelRequested",
    "Event",
    "JobCancelled",
    "JobCompleted",
    "JobFailed",
    "JobStatusUpdated",
    "JobSubmissionFailed",
    "JobSubmitted",
    "NodeStateChanged",
    "PersistenceFailed",
    "PollingFailed",
    "TransitionRejected",
    "UpstreamAmbiguous",
    "UpstreamMissing",
]
