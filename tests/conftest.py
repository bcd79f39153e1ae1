"""Shared pytest fixtures for the Armature test suite.

Provides reusable fixtures for:
- Writing template directories into a temporary location
- A small `svc` template with compatible and conflicting add-ons
- Registries built from those directories
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from armature.registry import TemplateRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def write_tree(root: Path, files: dict[str, str | bytes]) -> None:
    """Write `relative path -> content` under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


TemplateFactory = Callable[..., Path]


# ---------------------------------------------------------------------------
# Template directories
# ---------------------------------------------------------------------------


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Empty directory that template fixtures write into."""
    directory = tmp_path / "templates"
    directory.mkdir()
    return directory


@pytest.fixture
def make_template(templates_dir: Path) -> TemplateFactory:
    """Factory writing a template directory and returning its root.

    Usage:
        make_template("svc", definition={...}, files={...},
                      addons={"extra": ({...}, {...})}, renderers={...})
    """

    def factory(
        template_id: str,
        definition: dict[str, Any] | None = None,
        files: dict[str, str | bytes] | None = None,
        addons: dict[str, tuple[dict[str, Any], dict[str, str | bytes]]] | None = None,
        renderers: dict[str, str] | None = None,
    ) -> Path:
        root = templates_dir / template_id
        root.mkdir()
        data = {"id": template_id, "name": template_id.title(), "kind": "backend"}
        data.update(definition or {})
        (root / "template.yaml").write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        write_tree(root / "files", files or {})
        write_tree(root / "renderers", renderers or {})
        for addon_id, (addon_definition, addon_files) in (addons or {}).items():
            addon_root = root / "addons" / addon_id
            addon_root.mkdir(parents=True)
            (addon_root / "addon.yaml").write_text(
                yaml.safe_dump(addon_definition, sort_keys=False), encoding="utf-8"
            )
            write_tree(addon_root / "files", addon_files)
        return root

    return factory


@pytest.fixture
def svc_template(make_template: TemplateFactory) -> Path:
    """Backend template with a merged package.json and three add-ons.

    - `extra` adds a dependency and a file (merges cleanly)
    - `clash` pins an existing dependency to another version
    - `plugins` registers a module through a rendered manifest
    """
    return make_template(
        "svc",
        definition={
            "description": "Small service",
            "placeholders": {
                "project_name": {"description": "Project name"},
                "package_name": {"derive": {"from": "project_name", "case": "kebab"}},
                "version": "1.0.0",
            },
            "manifests": [
                {"path": "package.json"},
                {"path": "modules.txt", "source": "modules.yaml", "renderer": "modules.j2"},
            ],
        },
        files={
            "package.json": json.dumps({
                "name": "{{package_name}}",
                "version": "{{version}}",
                "dependencies": {"x": "1.0"},
            }),
            "modules.yaml": "modules:\n  - name: Core\n",
            "README.md": "# {{project_name}}\n",
            "src/{{package_name}}.txt": "Hello {{ project_name }}\n",
        },
        renderers={
            "modules.j2": (
                "{% for module in manifest.modules %}\n"
                "{{ module.name }}\n"
                "{% endfor %}\n"
            ),
        },
        addons={
            "extra": (
                {
                    "description": "Extra dependency",
                    "placeholders": {"extra_flag": {"default": "on"}},
                    "manifests": [{"path": "package.json"}],
                },
                {
                    "package.json": json.dumps({"dependencies": {"x": "1.0", "y": "2.0"}}),
                    "extra.txt": "{{project_name}} extra={{extra_flag}}\n",
                },
            ),
            "clash": (
                {"manifests": [{"path": "package.json"}]},
                {"package.json": json.dumps({"dependencies": {"x": "2.0"}})},
            ),
            "plugins": (
                {
                    "manifests": [
                        {"path": "modules.txt", "source": "modules.yaml", "renderer": "modules.j2"},
                    ],
                },
                {"modules.yaml": "modules:\n  - name: Core\n  - name: Plugins\n"},
            ),
        },
    )


@pytest.fixture
def registry(svc_template: Path, templates_dir: Path) -> TemplateRegistry:
    """Registry holding only the `svc` template."""
    return TemplateRegistry.from_directories([templates_dir])


@pytest.fixture
def svc(registry: TemplateRegistry):
    return registry.lookup("svc")
