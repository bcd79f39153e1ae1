"""Unit tests for Settings (armature.config).

Tests cover:
- Defaults
- from_env parsing of ARMATURE_* variables
- from_file with camelCase keys
- Log level validation
- Registry construction from settings
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from armature.config import Settings
from armature.registry import TemplateRegistry


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    @pytest.mark.unit
    def test_defaults(self):
        settings = Settings()
        assert settings.template_dirs == []
        assert settings.include_builtin is True
        assert settings.log_level == "WARNING"
        assert settings.staging_prefix == ".armature-staging-"

    @pytest.mark.unit
    def test_from_env(self, tmp_path):
        env = {
            "ARMATURE_TEMPLATES_PATH": os.pathsep.join([str(tmp_path / "a"), "", str(tmp_path / "b")]),
            "ARMATURE_LOG_LEVEL": "debug",
            "ARMATURE_NO_BUILTIN": "true",
        }
        settings = Settings.from_env(env)
        assert settings.template_dirs == [tmp_path / "a", tmp_path / "b"]
        assert settings.log_level == "DEBUG"
        assert settings.include_builtin is False

    @pytest.mark.unit
    def test_from_empty_env(self):
        assert Settings.from_env({}) == Settings()

    @pytest.mark.unit
    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    @pytest.mark.unit
    def test_from_file(self, tmp_path):
        path = tmp_path / "armature.yaml"
        path.write_text("templateDirs:\n  - ./templates\nincludeBuiltin: false\nlogLevel: info\n")
        settings = Settings.from_file(path)
        assert settings.template_dirs == [Path("./templates")]
        assert settings.include_builtin is False
        assert settings.log_level == "INFO"

    @pytest.mark.unit
    def test_from_empty_file(self, tmp_path):
        path = tmp_path / "armature.yaml"
        path.write_text("")
        assert Settings.from_file(path) == Settings()


class TestRegistryFromSettings:
    @pytest.mark.unit
    def test_without_builtin(self, svc_template, templates_dir):
        settings = Settings(template_dirs=[templates_dir], include_builtin=False)
        assert TemplateRegistry.from_settings(settings).ids() == ["svc"]

    @pytest.mark.unit
    def test_with_builtin(self, svc_template, templates_dir):
        registry = TemplateRegistry.from_settings(Settings(template_dirs=[templates_dir]))
        assert {"svc", "nestjs", "react", "expo"} <= set(registry.ids())
