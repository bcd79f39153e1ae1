"""
Armature Template Registry - Append-only catalog of loaded templates

Templates are loaded from directory trees once and never mutated. A registry
is passed explicitly into each generation run.
"""

from __future__ import annotations

import logging
from fnmatch import fnmatch
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator

import yaml
from pydantic import ValidationError

from armature.errors import TemplateDefinitionError, UnknownTemplate
from armature.template import (
    Addon,
    AddonDefinition,
    FileKind,
    ManifestSpec,
    Template,
    TemplateDefinition,
    TemplateFile,
)
from armature.variables import resolution_order

if TYPE_CHECKING:
    from armature.config import Settings

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATES_DIR = Path(__file__).parent / "templates"

TEMPLATE_FILE = "template.yaml"
ADDON_FILE = "addon.yaml"


# ═══════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════


def _read_definition(path: Path, model: type) -> object:
    if not path.is_file():
        raise TemplateDefinitionError(str(path.parent), f"missing {path.name}")
    try:
        return model.from_yaml(path.read_text(encoding="utf-8"))
    except (ValidationError, yaml.YAMLError) as e:
        raise TemplateDefinitionError(str(path), str(e)) from e


def _read_renderers(root: Path) -> dict[str, str]:
    renderers_dir = root / "renderers"
    if not renderers_dir.is_dir():
        return {}
    return {
        p.relative_to(renderers_dir).as_posix(): p.read_text(encoding="utf-8")
        for p in sorted(renderers_dir.rglob("*"))
        if p.is_file()
    }


def _collect_files(
    root: Path,
    manifests: list[ManifestSpec],
    raw: list[str],
    origin: str,
    renderers: dict[str, str],
) -> tuple[TemplateFile, ...]:
    """Read `root/files` into TemplateFile entries, sorted by path."""
    files_dir = root / "files"
    by_source = {m.source_path: m for m in manifests}
    files: list[TemplateFile] = []
    found: set[str] = set()

    paths = sorted(files_dir.rglob("*")) if files_dir.is_dir() else []
    for file_path in paths:
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(files_dir).as_posix()
        content = file_path.read_bytes()
        spec = by_source.get(rel)

        if spec is None:
            files.append(TemplateFile(
                path=rel,
                content=content,
                kind=FileKind.VERBATIM,
                origin=origin,
                substitute=not any(fnmatch(rel, pattern) for pattern in raw),
            ))
            continue

        found.add(rel)
        try:
            content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TemplateDefinitionError(f"{origin}:{rel}", "manifest is not UTF-8 text") from e
        if spec.renderer and spec.renderer not in renderers:
            raise TemplateDefinitionError(f"{origin}:{rel}", f"unknown renderer {spec.renderer!r}")
        files.append(TemplateFile(
            path=spec.path,
            content=content,
            kind=FileKind.MANIFEST,
            origin=origin,
            format=spec.format,
            renderer=spec.renderer,
            source=spec.source_path,
        ))

    missing = sorted(set(by_source) - found)
    if missing:
        raise TemplateDefinitionError(origin, f"manifest source not found: {', '.join(missing)}")

    return tuple(files)


def load_addon(root: Path, template_id: str, renderers: dict[str, str]) -> Addon:
    """Load one add-on directory. Its renderers are added to `renderers`."""
    definition: AddonDefinition = _read_definition(root / ADDON_FILE, AddonDefinition)
    addon_id = root.name
    origin = f"{template_id}+{addon_id}"

    for name, source in _read_renderers(root).items():
        if name in renderers and renderers[name] != source:
            raise TemplateDefinitionError(origin, f"renderer {name!r} already defined")
        renderers[name] = source

    return Addon(
        id=addon_id,
        description=definition.description,
        files=_collect_files(root, definition.manifests, definition.raw, origin, renderers),
        placeholders=definition.placeholders,
    )


def load_template(root: str | Path) -> Template:
    """
    Load a template directory.

    Args:
        root: Directory holding template.yaml, files/, renderers/ and addons/

    Returns:
        Immutable Template

    Raises:
        TemplateDefinitionError: the directory is malformed
    """
    root = Path(root)
    definition: TemplateDefinition = _read_definition(root / TEMPLATE_FILE, TemplateDefinition)
    renderers = _read_renderers(root)

    addons: dict[str, Addon] = {}
    addons_dir = root / "addons"
    if addons_dir.is_dir():
        for addon_root in sorted(p for p in addons_dir.iterdir() if p.is_dir()):
            addons[addon_root.name] = load_addon(addon_root, definition.id, renderers)

    template = Template(
        id=definition.id,
        name=definition.name,
        kind=definition.kind,
        version=definition.version,
        description=definition.description,
        files=_collect_files(root, definition.manifests, definition.raw, definition.id, renderers),
        placeholders=definition.placeholders,
        addons=addons,
        renderers=renderers,
    )
    _check_placeholders(template)

    logger.debug("Loaded template %s (%d files, %d add-ons)", template.id, len(template.files), len(addons))
    return template


def _check_placeholders(template: Template) -> None:
    """Reject cycles, dangling references and conflicting re-declarations."""
    try:
        resolution_order(template.placeholders)
        for addon in template.addons.values():
            for name, placeholder in addon.placeholders.items():
                base = template.placeholders.get(name)
                if base is not None and base != placeholder:
                    raise TemplateDefinitionError(
                        f"{template.id}+{addon.id}", f"placeholder {name!r} redeclared differently"
                    )
            resolution_order(template.declared_placeholders([addon]))
    except TemplateDefinitionError as e:
        if e.source == template.id or e.source.startswith(f"{template.id}+"):
            raise
        raise TemplateDefinitionError(template.id, e.reason) from e


def discover_templates(directory: str | Path) -> list[Path]:
    """Template directories directly under `directory`, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if (p / TEMPLATE_FILE).is_file())


# ═══════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════


class TemplateRegistry:
    """
    Catalog of templates keyed by id.

    Registration is append-only: an id can be registered once, and the stored
    Template is immutable, so a run never observes a template changing.
    """

    def __init__(self, templates: Iterable[Template] = ()):
        self._templates: dict[str, Template] = {}
        for template in templates:
            self.register(template)

    def register(self, template: Template) -> Template:
        if template.id in self._templates:
            raise TemplateDefinitionError(template.id, "template id already registered")
        self._templates[template.id] = template
        return template

    def lookup(self, template_id: str) -> Template:
        try:
            return self._templates[template_id]
        except KeyError:
            raise UnknownTemplate(template_id) from None

    def list_addons(self, template_id: str) -> frozenset[str]:
        return self.lookup(template_id).addon_ids

    def ids(self) -> list[str]:
        return sorted(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __iter__(self) -> Iterator[Template]:
        return iter(self._templates[i] for i in self.ids())

    def __len__(self) -> int:
        return len(self._templates)

    @classmethod
    def from_directories(cls, directories: Iterable[str | Path]) -> "TemplateRegistry":
        """Load every template found under the given directories."""
        registry = cls()
        for directory in directories:
            for root in discover_templates(directory):
                registry.register(load_template(root))
        logger.info("Loaded %d template(s)", len(registry))
        return registry

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TemplateRegistry":
        directories: list[Path] = []
        if settings.include_builtin:
            directories.append(BUILTIN_TEMPLATES_DIR)
        directories.extend(settings.template_dirs)
        return cls.from_directories(directories)


@lru_cache(maxsize=1)
def default_registry() -> TemplateRegistry:
    """Built-in templates plus ARMATURE_TEMPLATES_PATH, loaded once per process."""
    from armature.config import Settings

    return TemplateRegistry.from_settings(Settings.from_env())
