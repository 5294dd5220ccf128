"""Tests for the workboard exception hierarchy."""

import pytest

from workboard.kernel.exceptions import (
    CancellationError,
    ConfigurationError,
    InvalidTransitionError,
    MissingUpstreamDataError,
    PollingTransportError,
    ResourceNotFoundError,
    SchedulerError,
    SubmissionError,
    ValidationError,
    WorkboardError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError("polling", "bad"),
            ValidationError("field", "bad"),
            ResourceNotFoundError("node", "n1"),
            InvalidTransitionError("inactive", "start"),
            MissingUpstreamDataError("dataset"),
            SchedulerError("down"),
            SubmissionError("rejected"),
            PollingTransportError("42", "timeout"),
            CancellationError("42", "unreachable"),
        ],
    )
    def test_all_errors_are_workboard_errors(self, exc: Exception) -> None:
        assert isinstance(exc, WorkboardError)

    def test_scheduler_family(self) -> None:
        assert issubclass(SubmissionError, SchedulerError)
        assert issubclass(PollingTransportError, SchedulerError)
        assert issubclass(CancellationError, SchedulerError)


class TestMessages:
    def test_configuration_error(self) -> None:
        err = ConfigurationError("polling", "interval must be positive")
        assert str(err) == "Configuration error in 'polling': interval must be positive"
        assert err.component == "polling"
        assert err.reason == "interval must be positive"

    def test_validation_error_with_value(self) -> None:
        err = ValidationError("ntasks", "must be >= 1", 0)
        assert str(err) == "Validation failed for 'ntasks': must be >= 1 (got 0)"
        assert err.value == 0

    def test_validation_error_without_value(self) -> None:
        assert str(ValidationError("name", "is required")) == (
            "Validation failed for 'name': is required"
        )

    def test_resource_not_found_lists_available(self) -> None:
        err = ResourceNotFoundError("node", "x", [f"n{i}" for i in range(7)])
        assert str(err) == "Node 'x' not found. Available: n0, n1, n2, n3, n4 ... and 2 more"

    def test_invalid_transition_keeps_state_and_event(self) -> None:
        err = InvalidTransitionError("success", "cancel")
        assert err.state == "success"
        assert err.event == "cancel"
        assert "cancel" in str(err)
        assert "success" in str(err)

    def test_missing_upstream_with_node(self) -> None:
        err = MissingUpstreamDataError("dataset", node_id="net-1")
        assert str(err) == "Node 'net-1' requires a dataset node: not connected"

    def test_missing_upstream_without_node(self) -> None:
        err = MissingUpstreamDataError("network", "upstream has no network_label")
        assert str(err) == "Node requires a network node: upstream has no network_label"

    def test_polling_transport_error(self) -> None:
        err = PollingTransportError("123", "connection reset")
        assert err.job_id == "123"
        assert str(err) == "Could not poll job '123': connection reset"
