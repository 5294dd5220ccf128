"""Where workboard settings come from.

Lookup order for :func:`load_config`:

1. the path given on the command line (``--config``);
2. ``WORKBOARD_CONFIG_PATH``;
3. ``[tool.workboard]`` in the nearest ``pyproject.toml``;
4. built-in defaults.

YAML files use the manifest shape ``kind: Config`` / ``spec: {...}``.
``${VAR}`` references in string values are expanded from the environment,
then ``WORKBOARD_*`` variables override individual fields.
"""

from __future__ import annotations

import dataclasses
import os
import re
import tomllib
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from workboard.kernel.config.models import (
    LoggingConfig,
    PollingConfig,
    SchedulerDefaults,
    WorkboardConfig,
)
from workboard.kernel.exceptions import ConfigurationError, ValidationError
from workboard.kernel.logging import get_logger

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
_YES = {"1", "true", "yes", "on", "enabled"}
_NO = {"0", "false", "no", "off", "disabled"}


def _flag(raw: str) -> bool:
    word = raw.strip().lower()
    if word in _YES:
        return True
    if word in _NO:
        return False
    raise ValueError(f"{raw!r} is not a boolean (try one of {sorted(_YES | _NO)})")


# env var -> (section, field, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "WORKBOARD_POLL_INTERVAL": ("polling", "interval_seconds", float),
    "WORKBOARD_LOG_LEVEL": ("logging", "level", str.upper),
    "WORKBOARD_LOG_FORMAT": ("logging", "format", str.lower),
    "WORKBOARD_LOG_FILE": ("logging", "output_file", str),
    "WORKBOARD_LOG_COLOR": ("logging", "use_color", _flag),
    "WORKBOARD_LOG_TIMESTAMP": ("logging", "include_timestamp", _flag),
    "WORKBOARD_LOG_STDLIB_BRIDGE": ("logging", "enable_stdlib_bridge", _flag),
    "WORKBOARD_LOG_BACKTRACE": ("logging", "backtrace", _flag),
    "WORKBOARD_LOG_DIAGNOSE": ("logging", "diagnose", _flag),
}

_SECTIONS: dict[str, type] = {
    "logging": LoggingConfig,
    "polling": PollingConfig,
    "scheduler": SchedulerDefaults,
}

# YAML and TOML may hand us ints or strings for these
_NUMERIC: dict[str, Callable[[Any], Any]] = {
    "interval_seconds": float,
    "jitter_seconds": float,
    "request_timeout_seconds": float,
    "ntasks": int,
    "gpus": int,
}


def _expand(value: Any) -> Any:
    """Replace ``${VAR}`` in every string; unset variables stay as written."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}
    for env_name, (section, field, parse) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError as exc:
            logger.warning("Ignoring {env}: {error}", env=env_name, error=exc)
            continue
        merged.setdefault(section, {})[field] = value
        logger.debug("{env} sets {section}.{field}", env=env_name, section=section, field=field)
    return merged


def _build_section[T](model: type[T], name: str, raw: Any) -> T:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(name, f"must be a mapping, got {type(raw).__name__}")
    known = {f.name for f in dataclasses.fields(model)}  # type: ignore[arg-type]
    if unknown := sorted(set(raw) - known):
        raise ConfigurationError(name, f"unknown keys {unknown}")
    values = {
        key: _NUMERIC[key](value) if key in _NUMERIC and value is not None else value
        for key, value in raw.items()
    }
    return model(**values)


def build_config(data: dict[str, Any]) -> WorkboardConfig:
    """Turn the ``spec`` mapping of a config file into a :class:`WorkboardConfig`.

    Raises
    ------
    ConfigurationError
        If a section has unknown keys or a value fails validation
    """
    data = _apply_env_overrides(data)
    try:
        sections = {
            name: _build_section(model, name, data.get(name)) for name, model in _SECTIONS.items()
        }
        settings = data.get("settings") or {}
        return WorkboardConfig(
            workspace_path=str(data.get("workspace_path") or ""),
            storage_url=data.get("storage_url"),
            settings=dict(settings),
            **sections,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise ConfigurationError("workboard", str(exc)) from exc


def _read_yaml(path: Path) -> dict[str, Any]:
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(document, dict):
        raise ConfigurationError(path.name, f"expected a mapping, got {type(document).__name__}")
    if (kind := document.get("kind")) != "Config":
        raise ConfigurationError(path.name, f"expected 'kind: Config', got 'kind: {kind}'")
    spec = document.get("spec") or {}
    if not isinstance(spec, dict):
        raise ConfigurationError(path.name, "'spec' must be a mapping")
    return spec


def _read_toml(path: Path) -> dict[str, Any] | None:
    with path.open("rb") as fh:
        document = tomllib.load(fh)
    if path.name != "pyproject.toml":
        return document
    return document.get("tool", {}).get("workboard")


@lru_cache(maxsize=32)
def _load_cached(resolved: str) -> WorkboardConfig:
    path = Path(resolved)
    logger.info("Loading configuration from {path}", path=path)
    if path.suffix in {".yaml", ".yml"}:
        return build_config(_expand(_read_yaml(path)))
    section = _read_toml(path)
    if section is None:
        logger.warning("{path} has no [tool.workboard] table; using defaults", path=path)
        return get_default_config()
    return build_config(_expand(section))


class ConfigLoader:
    """Finds and parses a workboard configuration file."""

    def load_config_file(self, path: str | Path | None = None) -> WorkboardConfig:
        """Parse *path*, or the first file found by the lookup order.

        Raises
        ------
        FileNotFoundError
            If *path* does not exist, or nothing was found by discovery
        ConfigurationError
            If the file is not a valid workboard configuration
        """
        return _load_cached(str(self._find_config_file(path).resolve()))

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            explicit = Path(path)
            if not explicit.exists():
                raise FileNotFoundError(f"Configuration file not found: {explicit}")
            return explicit

        if from_env := os.getenv("WORKBOARD_CONFIG_PATH"):
            candidate = Path(from_env)
            if candidate.exists():
                return candidate
            logger.warning("WORKBOARD_CONFIG_PATH points to missing {path}", path=candidate)

        here = Path.cwd()
        if (here / "pyproject.toml").exists():
            return here / "pyproject.toml"
        for parent in here.parents:
            pyproject = parent / "pyproject.toml"
            if pyproject.exists() and _read_toml(pyproject) is not None:
                return pyproject

        raise FileNotFoundError(
            "No workboard configuration: pass --config, set WORKBOARD_CONFIG_PATH "
            "or add [tool.workboard] to pyproject.toml"
        )


def load_config(path: str | Path | None = None) -> WorkboardConfig:
    """Load settings, falling back to defaults when discovery finds nothing.

    An explicit *path* that does not exist still raises ``FileNotFoundError``.
    """
    try:
        return ConfigLoader().load_config_file(path)
    except FileNotFoundError:
        if path:
            raise
        logger.debug("No configuration file found, using defaults")
        return get_default_config()


def clear_config_cache() -> None:
    _load_cached.cache_clear()


def get_default_config() -> WorkboardConfig:
    """Defaults with any ``WORKBOARD_*`` overrides applied."""
    return build_config({})
