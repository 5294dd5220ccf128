"""Configuration data models for workboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from workboard.kernel.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Arguments for :func:`workboard.kernel.logging.configure_logging`.

    Read from the ``logging`` section; every field can be overridden by a
    ``WORKBOARD_LOG_*`` variable (``LEVEL``, ``FORMAT``, ``FILE``, ``COLOR``,
    ``TIMESTAMP``, ``STDLIB_BRIDGE``, ``BACKTRACE``, ``DIAGNOSE``)::

        spec:
          logging:
            level: DEBUG
            format: rich
            output_file: ~/.workboard/workboard.log
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = True


@dataclass(frozen=True, slots=True)
class PollingConfig:
    """How often a running job is sampled.

    Attributes
    ----------
    interval_seconds : float, default=5.0
        Fixed delay between two polls of the same job
    jitter_seconds : float, default=0.0
        Upper bound of a uniform random delay added to each interval
    """

    interval_seconds: float = 5.0
    jitter_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValidationError("interval_seconds", "must be positive", self.interval_seconds)
        if self.jitter_seconds < 0:
            raise ValidationError("jitter_seconds", "must not be negative", self.jitter_seconds)


@dataclass(frozen=True, slots=True)
class SchedulerDefaults:
    """Resource defaults used when a form carries no ``slurm_options``.

    Attributes
    ----------
    partition : str | None
        Partition override; ``None`` keeps each node type's own default
    ntasks : int
        Number of tasks requested
    gpus : int
        Number of GPUs requested
    request_timeout_seconds : float | None
        Timeout applied to every scheduler call; ``None`` disables it
    """

    partition: str | None = None
    ntasks: int = 1
    gpus: int = 0
    request_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.ntasks < 1:
            raise ValidationError("ntasks", "must be at least 1", self.ntasks)
        if self.gpus < 0:
            raise ValidationError("gpus", "must not be negative", self.gpus)
        if self.request_timeout_seconds is not None and self.request_timeout_seconds <= 0:
            raise ValidationError(
                "request_timeout_seconds", "must be positive", self.request_timeout_seconds
            )


@dataclass(slots=True)
class WorkboardConfig:
    """Complete workboard configuration.

    Attributes
    ----------
    workspace_path : str
        Remote workspace root; dataset files land under ``{workspace_path}/datasets``
    storage_url : str | None
        SQLAlchemy URL of the node store; ``None`` keeps everything in memory
    logging : LoggingConfig
        Logging settings
    polling : PollingConfig
        Poll interval settings
    scheduler : SchedulerDefaults
        Default resource requests
    settings : dict[str, Any]
        Free-form extra settings
    """

    workspace_path: str = ""
    storage_url: str | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    scheduler: SchedulerDefaults = field(default_factory=SchedulerDefaults)
    settings: dict[str, Any] = field(default_factory=dict)
