"""
Armature Materializer - Turn a template and variables into a generation plan

The plan is pure data: final paths, final bytes and merged manifests.
Nothing here touches the filesystem.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Mapping, Sequence

from armature.errors import MergeConflict, SubstitutionError
from armature.manifest import ManifestFragment, MergedManifest, create_jinja_env, merge, parse_fragment
from armature.template import Addon, FileKind, Template, TemplateFile
from armature.variables import VariableMap, substitute

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# PLAN
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PlannedFile:
    """A file as it will be written, relative to the project root."""

    path: str
    content: bytes
    origin: str = ""


@dataclass(frozen=True)
class GenerationPlan:
    """Everything a run would write. Built fresh per run."""

    template_id: str
    addons: tuple[str, ...] = ()
    variables: VariableMap = field(default_factory=lambda: MappingProxyType({}))
    files: tuple[PlannedFile, ...] = ()
    manifests: Mapping[str, MergedManifest] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def file(self, path: str) -> PlannedFile | None:
        return next((f for f in self.files if f.path == path), None)

    def __len__(self) -> int:
        return len(self.files)


# ═══════════════════════════════════════════════════════════════════════════
# MATERIALIZER
# ═══════════════════════════════════════════════════════════════════════════


def normalize_path(path: str, file: str) -> str:
    """Validate a substituted path and return it in POSIX form."""
    pure = PurePosixPath(path.replace("\\", "/"))
    if not path.strip() or pure.is_absolute() or ".." in pure.parts:
        raise SubstitutionError(file, path, "path escapes the project root")
    parts = [p for p in pure.parts if p not in ("", ".")]
    if not parts:
        raise SubstitutionError(file, path, "path is empty after substitution")
    return "/".join(parts)


class Materializer:
    """
    Applies a variable map to every file of a template and its add-ons.

    Sources are processed in a fixed order: the base template first, then
    add-ons in selection order. Manifest fragments for the same output path
    are merged once, at the end.
    """

    def materialize(
        self,
        template: Template,
        variables: VariableMap,
        addons: Sequence[Addon] = (),
    ) -> GenerationPlan:
        """
        Build the generation plan.

        Raises:
            SubstitutionError: a path or file references an undeclared placeholder
            MergeConflict: manifests or files from different sources disagree
        """
        sources: list[tuple[str, tuple[TemplateFile, ...], frozenset[str]]] = [
            (template.id, template.files, template.placeholder_names)
        ]
        for addon in addons:
            scope = template.placeholder_names | frozenset(addon.placeholders)
            sources.append((f"{template.id}+{addon.id}", addon.files, scope))

        planned: dict[str, PlannedFile] = {}
        fragments: dict[str, list[ManifestFragment]] = {}

        for origin, files, scope in sources:
            for template_file in files:
                where = f"{origin}:{template_file.path}"
                path = normalize_path(
                    substitute(template_file.path, variables, file=where, declared=scope),
                    where,
                )

                if template_file.kind == FileKind.MANIFEST:
                    if path in planned:
                        raise MergeConflict(path, [planned[path].origin, origin], path)
                    fragments.setdefault(path, []).append(
                        self._fragment(template_file, path, variables, scope, where, origin)
                    )
                    logger.debug("Planned manifest fragment %s from %s", path, origin)
                    continue

                if path in fragments:
                    raise MergeConflict(path, [fragments[path][0].origin, origin], path)
                content = self._render_content(template_file, variables, scope, where)
                existing = planned.get(path)
                if existing is not None:
                    if existing.content != content:
                        raise MergeConflict(path, [existing.origin, origin], path)
                    continue
                planned[path] = PlannedFile(path=path, content=content, origin=origin)
                logger.debug("Planned %s from %s", path, origin)

        env = create_jinja_env(template.renderers)
        manifests: dict[str, MergedManifest] = {}
        for path, parts in fragments.items():
            merged = merge(parts)
            manifests[path] = merged
            planned[path] = PlannedFile(
                path=path,
                content=merged.serialize(env, variables).encode("utf-8"),
                origin=", ".join(dict.fromkeys(merged.origins)),
            )

        files = tuple(planned[p] for p in sorted(planned))
        logger.info(
            "Planned %d file(s) and %d manifest(s) for %s", len(files), len(manifests), template.id
        )
        return GenerationPlan(
            template_id=template.id,
            addons=tuple(a.id for a in addons),
            variables=variables,
            files=files,
            manifests=MappingProxyType(manifests),
        )

    @staticmethod
    def _render_content(
        template_file: TemplateFile,
        variables: VariableMap,
        scope: frozenset[str],
        where: str,
    ) -> bytes:
        if not template_file.substitute:
            return template_file.content
        try:
            text = template_file.content.decode("utf-8")
        except UnicodeDecodeError:
            # Binary payloads (images, fonts) carry no placeholders
            return template_file.content
        return substitute(text, variables, file=where, declared=scope).encode("utf-8")

    @staticmethod
    def _fragment(
        template_file: TemplateFile,
        path: str,
        variables: VariableMap,
        scope: frozenset[str],
        where: str,
        origin: str,
    ) -> ManifestFragment:
        return parse_fragment(
            path,
            template_file.content.decode("utf-8"),
            template_file.format,
            source=template_file.source,
            origin=origin,
            renderer=template_file.renderer,
            transform=lambda text: substitute(text, variables, file=where, declared=scope),
        )
