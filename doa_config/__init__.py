"""
doa_config -- single public entrypoint for engine settings.

Responsibility:
    Provides ``get_engine_settings()``, which loads the packaged
    ``defaults.yaml`` (or a caller-supplied file) and returns a frozen
    ``EngineSettings``.  Services receive settings by injection and never
    read configuration files themselves.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- a value failed validation.
"""

from __future__ import annotations

from pathlib import Path

from doa_config.loader import load_yaml_file, parse_engine_settings
from doa_config.schema import (
    HR_DOCUMENT_TYPES,
    DefaultMatrixSettings,
    EngineSettings,
    TaskSettings,
)
from doa_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_engine_settings(path: Path | str | None = None) -> EngineSettings:
    """Load engine settings from ``path`` (default: the packaged defaults)."""
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = parse_engine_settings(load_yaml_file(settings_path))
    logger.debug(
        "engine_settings_loaded",
        extra={
            "path": str(settings_path),
            "max_write_attempts": settings.max_write_attempts,
        },
    )
    return settings


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "DefaultMatrixSettings",
    "EngineSettings",
    "HR_DOCUMENT_TYPES",
    "TaskSettings",
    "get_engine_settings",
]
