"""Mock adapters for testing purposes."""

from workboard.stdlib.adapters.mock.mock_scheduler import MockJob, MockScheduler

__all__ = ["MockJob", "MockScheduler"]
