"""
Settings loader (``doa_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses each section into the typed
``doa_config.schema`` dataclasses.  The public entry point is
``doa_config.get_engine_settings()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Invalid values raise ``ValueError`` with the offending key in the
  message; missing keys fall back to schema defaults.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown document type or priority, non-positive counts  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from doa_config.schema import (
    DefaultMatrixSettings,
    EngineSettings,
    TaskSettings,
)
from doa_kernel.domain.approval import DocumentType, TaskPriority


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def _priority(value: Any, key: str) -> TaskPriority:
    try:
        return TaskPriority(value)
    except ValueError:
        raise ValueError(f"'{key}' must be one of low/medium/high, got {value!r}") from None


def parse_defaults(data: dict[str, Any]) -> DefaultMatrixSettings:
    base = DefaultMatrixSettings()
    raw_types = data.get("document_types")
    if raw_types is None:
        document_types = base.document_types
    else:
        if not isinstance(raw_types, list):
            raise ValueError("'defaults.document_types' must be a list")
        try:
            document_types = tuple(DocumentType(t) for t in raw_types)
        except ValueError as exc:
            raise ValueError(f"'defaults.document_types': {exc}") from None
    return DefaultMatrixSettings(
        matrix_name=str(data.get("matrix_name", base.matrix_name)),
        matrix_description=str(data.get("matrix_description", base.matrix_description)),
        document_types=document_types,
    )


def parse_tasks(data: dict[str, Any]) -> TaskSettings:
    base = TaskSettings()
    return TaskSettings(
        approver_priority=_priority(
            data.get("approver_priority", base.approver_priority.value),
            "tasks.approver_priority",
        ),
        initiator_priority=_priority(
            data.get("initiator_priority", base.initiator_priority.value),
            "tasks.initiator_priority",
        ),
        declined_priority=_priority(
            data.get("declined_priority", base.declined_priority.value),
            "tasks.declined_priority",
        ),
        review_priority=_priority(
            data.get("review_priority", base.review_priority.value),
            "tasks.review_priority",
        ),
        review_deadline_days=_positive_int(
            data.get("review_deadline_days", base.review_deadline_days),
            "tasks.review_deadline_days",
        ),
    )


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse a whole settings document into ``EngineSettings``."""
    engine = _section(data, "engine")
    return EngineSettings(
        max_write_attempts=_positive_int(
            engine.get("max_write_attempts", EngineSettings.max_write_attempts),
            "engine.max_write_attempts",
        ),
        defaults=parse_defaults(_section(data, "defaults")),
        tasks=parse_tasks(_section(data, "tasks")),
    )
