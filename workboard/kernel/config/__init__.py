"""Configuration models and loader for workboard."""

from workboard.kernel.config.loader import (
    ConfigLoader,
    build_config,
    clear_config_cache,
    get_default_config,
    load_config,
)
from workboard.kernel.config.models import (
    LoggingConfig,
    PollingConfig,
    SchedulerDefaults,
    WorkboardConfig,
)

__all__ = [
    "ConfigLoader",
    "LoggingConfig",
    "PollingConfig",
    "SchedulerDefaults",
    "WorkboardConfig",
    "build_config",
    "clear_config_cache",
    "get_default_config",
    "load_config",
]
