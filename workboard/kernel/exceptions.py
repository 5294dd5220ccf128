"""Errors raised by workboard.

Everything derives from :class:`WorkboardError`. The :class:`SchedulerError`
family comes out of scheduler adapters; node machines turn it into error
states and notifications, so callers of the controller only ever see the
configuration, validation and lookup errors.
"""

from __future__ import annotations


class WorkboardError(Exception):
    """Root of the workboard error hierarchy."""


class ConfigurationError(WorkboardError):
    """A settings file, URL or section is unusable.

    Args
    ----
        component: Section, file name or adapter the problem belongs to.
        reason: What is wrong with it.
    """

    def __init__(self, component: str, reason: str) -> None:
        self.component = component
        self.reason = reason
        super().__init__(f"Configuration error in '{component}': {reason}")


class ValidationError(WorkboardError):
    """A value broke a rule of the model it was given to.

    ``value`` is shown in the message when given; ``None`` means "not shown",
    so pass the offending value whenever there is one.
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        self.field = field
        self.constraint = constraint
        self.value = value
        shown = "" if value is None else f" (got {value!r})"
        super().__init__(f"Validation failed for '{field}': {constraint}{shown}")


class ResourceNotFoundError(WorkboardError):
    """Lookup of a node, edge or job by id came back empty.

    Up to five of the ids that do exist are listed in the message, e.g.
    ``Node 'x' not found. Available: n0, n1, n2, n3, n4 ... and 2 more``.
    """

    SHOWN = 5

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available
        message = f"{resource_type.capitalize()} '{resource_id}' not found"
        if available:
            message += ". Available: " + ", ".join(available[: self.SHOWN])
            if (hidden := len(available) - self.SHOWN) > 0:
                message += f" ... and {hidden} more"
        super().__init__(message)


class InvalidTransitionError(WorkboardError):
    """The machine's current state has no transition for the event."""

    def __init__(self, state: str, event: str) -> None:
        self.state = state
        self.event = event
        super().__init__(f"Event '{event}' is not accepted in state '{state}'")


class MissingUpstreamDataError(WorkboardError):
    """A network or evaluation node lacks the upstream node it depends on.

    Raised by the upstream resolver before any event is sent, so machines
    never see a start without its inputs.
    """

    def __init__(
        self, required_type: str, reason: str = "not connected", node_id: str | None = None
    ) -> None:
        self.node_id = node_id
        self.required_type = required_type
        self.reason = reason
        who = f"Node '{node_id}'" if node_id else "Node"
        super().__init__(f"{who} requires a {required_type} node: {reason}")


class SchedulerError(WorkboardError):
    """Failure reported by, or talking to, a scheduler adapter."""


class SubmissionError(SchedulerError):
    """The scheduler rejected a job or could not be reached to submit it."""


class _JobRequestError(SchedulerError):
    verb = ""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Could not {self.verb} job '{job_id}': {reason}")


class PollingTransportError(_JobRequestError):
    """A status query did not get an answer; the poller retries next interval."""

    verb = "poll"


class CancellationError(_JobRequestError):
    """A cancel request could not be delivered."""

    verb = "cancel"
