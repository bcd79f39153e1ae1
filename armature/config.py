"""Armature configuration.

Typed settings for template discovery and logging, loaded from the
environment or a YAML file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Settings(BaseModel):
    """Runtime settings shared by the CLI and the library entry points."""

    template_dirs: list[Path] = Field(
        default_factory=list,
        alias="templateDirs",
        description="Extra directories searched for templates",
    )
    include_builtin: bool = Field(
        default=True, alias="includeBuiltin", description="Load the bundled templates"
    )
    log_level: str = Field(default="WARNING", alias="logLevel")
    staging_prefix: str = Field(default=".armature-staging-", alias="stagingPrefix")

    model_config = {"populate_by_name": True}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "Settings":
        """Build settings from ARMATURE_* environment variables."""
        env = dict(os.environ if env is None else env)
        data: dict[str, Any] = {}

        raw_dirs = env.get("ARMATURE_TEMPLATES_PATH", "")
        if raw_dirs:
            data["template_dirs"] = [Path(p) for p in raw_dirs.split(os.pathsep) if p]
        if env.get("ARMATURE_LOG_LEVEL"):
            data["log_level"] = env["ARMATURE_LOG_LEVEL"]
        if env.get("ARMATURE_NO_BUILTIN", "").lower() in ("1", "true", "yes"):
            data["include_builtin"] = False

        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        content = Path(path).read_text(encoding="utf-8")
        return cls.model_validate(yaml.safe_load(content) or {})
