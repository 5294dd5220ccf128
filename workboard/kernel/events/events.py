"""Event data classes for workboard notifications.

Every user-visible toast of the workboard is one of these events; observers
registered on the observer manager receive them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Machine events
@dataclass(slots=True)
class NodeStateChanged(Event):
    """A node machine moved to a new state."""

    node_id: str
    node_type: str
    old_state: str
    new_state: str
    status: str

    def log_message(self) -> str:
        return (
            f"Node '{self.node_id}' ({self.node_type}) {self.old_state} -> {self.new_state}"
            f" [{self.status}]"
        )


@dataclass(slots=True)
class TransitionRejected(Event):
    """An event was not accepted by the node's current state."""

    node_id: str
    state: str
    event: str

    def log_message(self) -> str:
        return f"Node '{self.node_id}' ignored '{self.event}' in state '{self.state}'"


# Job events
@dataclass(slots=True)
class JobSubmitted(Event):
    """The scheduler accepted a submission."""

    node_id: str
    job_id: str
    trigger: str = "create"

    def log_message(self) -> str:
        return f"Job {self.job_id} submitted for node '{self.node_id}' ({self.trigger})"


@dataclass(slots=True)
class JobSubmissionFailed(Event):
    """The scheduler rejected a submission; the node is in an error state."""

    node_id: str
    reason: str

    def log_message(self) -> str:
        return f"Error submitting job for node '{self.node_id}': {self.reason}"


@dataclass(slots=True)
class JobStatusUpdated(Event):
    """A poll returned a non-terminal status."""

    node_id: str
    job_id: str
    status: str

    def log_message(self) -> str:
        return f"Job {self.job_id} is {self.status.lower()}"


@dataclass(slots=True)
class JobCompleted(Event):
    """The scheduler reported COMPLETED."""

    node_id: str
    job_id: str

    def log_message(self) -> str:
        return f"Job {self.job_id} finished successfully"


@dataclass(slots=True)
class JobFailed(Event):
    """The scheduler reported FAILED."""

    node_id: str
    job_id: str

    def log_message(self) -> str:
        return f"Job {self.job_id} failed"


@dataclass(slots=True)
class JobCancelled(Event):
    """The scheduler reported CANCELLED, whoever requested it."""

    node_id: str
    job_id: str

    def log_message(self) -> str:
        return f"Job {self.job_id} was cancelled"


@dataclass(slots=True)
class CancelRequested(Event):
    """A cancel request reached the scheduler."""

    node_id: str
    job_id: str

    def log_message(self) -> str:
        return f"Cancel requested for job {self.job_id}"


@dataclass(slots=True)
class CancelFailed(Event):
    """A cancel request could not be delivered."""

    node_id: str
    job_id: str
    reason: str

    def log_message(self) -> str:
        return f"Could not cancel job {self.job_id}: {self.reason}"


@dataclass(slots=True)
class PollingFailed(Event):
    """A poll could not reach the scheduler; it will be retried."""

    node_id: str
    job_id: str
    reason: str
    attempt: int = 1

    def log_message(self) -> str:
        return f"Polling job {self.job_id} failed (attempt {self.attempt}): {self.reason}"


@dataclass(slots=True)
class PersistenceFailed(Event):
    """A new snapshot could not be saved; the machine keeps running on it."""

    node_id: str
    state: str
    reason: str

    def log_message(self) -> str:
        return f"Could not save node '{self.node_id}' in state '{self.state}': {self.reason}"


# Caller-layer events
@dataclass(slots=True)
class UpstreamMissing(Event):
    """A required upstream node is not connected or has no data yet."""

    node_id: str
    required_type: str

    def log_message(self) -> str:
        return f"Please connect a {self.required_type} to node '{self.node_id}'"


@dataclass(slots=True)
class UpstreamAmbiguous(Event):
    """More than one upstream node of a required type is connected."""

    node_id: str
    required_type: str
    candidates: tuple[str, ...] = field(default_factory=tuple)

    def log_message(self) -> str:
        return (
            f"Node '{self.node_id}' has {len(self.candidates)} connected "
            f"{self.required_type} nodes, keep only one"
        )
