"""Configuration management for SpecLinter.

Configuration lives in ``.speclinter/config.json`` with camelCase keys.
Sections that this package does not use (grading, context, ...) are ignored,
so config files written by older SpecLinter releases still load.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import InvalidInputError, NotInitializedError

CONFIG_FILENAME = "config.json"
LOG_LEVEL_ENV = "SPECLINTER_LOG_LEVEL"


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StorageConfig(_Section):
    """Where task files and the database live, relative to the project root."""

    tasks_dir: str = "tasks"
    db_path: str = ".speclinter/speclinter.db"


class DeduplicationConfig(_Section):
    """Duplicate detection and merge policy."""

    enabled: bool = True
    similarity_threshold: float = Field(0.8, ge=0.0, le=1.0)
    default_strategy: Literal["merge", "replace", "skip", "prompt"] = "prompt"
    auto_merge_threshold: float = Field(0.8, ge=0.0, le=1.0)
    task_similarity_threshold: float = Field(0.9, ge=0.0, le=1.0)
    skip_threshold: float = Field(0.95, ge=0.0, le=1.0)


class GenerationConfig(_Section):
    """Defaults applied when converting analysed tasks."""

    coverage_target: str = "90%"


class LoggingConfig(_Section):
    level: str = "INFO"
    file: Optional[str] = None


class SpecLinterConfig(_Section):
    """Top-level SpecLinter configuration."""

    version: str = "1.0.0"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2) + "\n"


def load_config(path: Path) -> SpecLinterConfig:
    """Load and validate the configuration file at ``path``.

    Environment variables take precedence over file values.
    """
    if not path.exists():
        raise NotInitializedError(f"Configuration file {path} not found.")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        config = SpecLinterConfig.model_validate(data)
    except json.JSONDecodeError as e:
        raise InvalidInputError([f"{path} is not valid JSON: {e}"]) from e
    except ValidationError as e:
        raise InvalidInputError(
            [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e

    env_level = os.getenv(LOG_LEVEL_ENV)
    if env_level:
        config.logging.level = env_level.upper()
    return config


def write_default_config(path: Path, *, overwrite: bool = False) -> SpecLinterConfig:
    """Write the default configuration unless a file already exists."""
    config = SpecLinterConfig()
    if overwrite or not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(config.to_json(), encoding="utf-8")
    return config
