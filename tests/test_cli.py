"""Tests for the armature CLI (armature.cli).

Covers:
- generate, list, show and version commands
- Exit codes mapped from generation errors
- --dry-run, --answers and --var parsing
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import typer
from rich.logging import RichHandler
from typer.testing import CliRunner

from armature.cli import app, parse_vars


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------

pytestmark = pytest.mark.unit

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ARMATURE_TEMPLATES_PATH", "ARMATURE_LOG_LEVEL", "ARMATURE_NO_BUILTIN"):
        monkeypatch.delenv(name, raising=False)
    yield
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)


@pytest.fixture
def cli_args(svc_template: Path, templates_dir: Path) -> list[str]:
    return ["--templates-dir", str(templates_dir)]


# ---------------------------------------------------------------------------
# parse_vars
# ---------------------------------------------------------------------------


class TestParseVars:
    def test_separators(self):
        assert parse_vars(["a=b", "c:d", " e = f=g "]) == {"a": "b", "c": "d", "e": "f=g"}

    def test_empty(self):
        assert parse_vars(None) == {}

    def test_malformed(self):
        with pytest.raises(typer.BadParameter):
            parse_vars(["novalue"])


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerateCommand:
    def test_generate(self, cli_args, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            ["generate", "svc", "-o", str(out), "-v", "project_name=My Service", "-a", "extra", *cli_args],
        )
        assert result.exit_code == 0, result.output
        assert "Generated 5 files" in result.output
        assert (out / "extra.txt").read_text() == "My Service extra=on\n"

    def test_default_output_uses_project_name(self, cli_args, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["generate", "svc", "-v", "project_name=demo", *cli_args])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "demo" / "README.md").read_text() == "# demo\n"

    def test_answers_file(self, cli_args, tmp_path):
        answers = tmp_path / "answers.yaml"
        answers.write_text("project_name: From File\nversion: 2.0.0\n")
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            ["generate", "svc", "-o", str(out), "--answers", str(answers), "-v", "version=3.0.0", *cli_args],
        )
        assert result.exit_code == 0, result.output
        assert '"version": "3.0.0"' in (out / "package.json").read_text()
        assert (out / "README.md").read_text() == "# From File\n"

    def test_dry_run(self, cli_args, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(
            app, ["generate", "svc", "-o", str(out), "-v", "project_name=x", "--dry-run", *cli_args]
        )
        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert "package.json" in result.output
        assert not out.exists()

    def test_missing_variable_exit_code(self, cli_args, tmp_path):
        result = runner.invoke(app, ["generate", "svc", "-o", str(tmp_path / "out"), *cli_args])
        assert result.exit_code == 4
        assert "project_name" in result.output

    def test_unknown_template_exit_code(self, cli_args, tmp_path):
        result = runner.invoke(app, ["generate", "rails", "-o", str(tmp_path / "out"), *cli_args])
        assert result.exit_code == 2

    def test_merge_conflict_exit_code(self, cli_args, tmp_path):
        result = runner.invoke(
            app,
            ["generate", "svc", "-o", str(tmp_path / "out"), "-v", "project_name=x",
             "-a", "extra", "-a", "clash", *cli_args],
        )
        assert result.exit_code == 7
        assert not (tmp_path / "out").exists()

    def test_target_not_empty_exit_code(self, cli_args, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "keep.txt").write_text("mine")
        args = ["generate", "svc", "-o", str(out), "-v", "project_name=x", *cli_args]

        assert runner.invoke(app, args).exit_code == 8
        assert runner.invoke(app, [*args, "--overwrite"]).exit_code == 0
        assert not (out / "keep.txt").exists()

    def test_malformed_var(self, cli_args, tmp_path):
        result = runner.invoke(app, ["generate", "svc", "-o", str(tmp_path / "out"), "-v", "oops", *cli_args])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# list / show / version
# ---------------------------------------------------------------------------


class TestInfoCommands:
    def test_list(self, cli_args):
        result = runner.invoke(app, ["list", *cli_args])
        assert result.exit_code == 0, result.output
        assert "svc" in result.output
        assert "nestjs" in result.output

    def test_show(self, cli_args):
        result = runner.invoke(app, ["show", "svc", *cli_args])
        assert result.exit_code == 0, result.output
        assert "project_name" in result.output
        assert "required" in result.output
        assert "extra" in result.output

    def test_show_unknown(self, cli_args):
        assert runner.invoke(app, ["show", "rails", *cli_args]).exit_code == 2

    def test_broken_template_dir(self, make_template, templates_dir):
        make_template("bad", definition={"kind": "desktop"})
        result = runner.invoke(app, ["list", "--templates-dir", str(templates_dir)])
        assert result.exit_code == 10

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
