"""
Armature Manifest Merger - Combine manifest fragments into one manifest

A manifest (package.json, app.json, a module registry) can receive fragments
from the base template and from every selected add-on. Fragments are merged
as a union: identical declarations collapse, differing ones are a conflict.
There is no precedence rule; the merger never picks a winner.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

import yaml
from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError

from armature.errors import MergeConflict, TemplateDefinitionError
from armature.template import ManifestFormat
from armature.variables import camel_case, kebab_case, pascal_case, plural, snake_case

logger = logging.getLogger(__name__)

KeyPath = tuple[str, ...]

# Mapping fields that identify a registration entry
ENTRY_KEY_FIELDS = ("name", "id", "key")


# ═══════════════════════════════════════════════════════════════════════════
# FRAGMENTS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ManifestFragment:
    """
    The merge-relevant content of one manifest file from one source.

    Nested mappings are flattened to key paths. Scalars are merge entries,
    lists are registration lists that keep their own order.
    """

    path: str
    format: ManifestFormat
    entries: Mapping[KeyPath, Any] = field(default_factory=lambda: MappingProxyType({}))
    registrations: Mapping[KeyPath, tuple[Any, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    containers: frozenset[KeyPath] = frozenset()
    layout: tuple[KeyPath, ...] = ()
    origin: str = ""
    renderer: str | None = None

    @classmethod
    def from_document(
        cls,
        path: str,
        document: Any,
        format: ManifestFormat,
        origin: str = "",
        renderer: str | None = None,
    ) -> "ManifestFragment":
        if document is None:
            document = {}
        if not isinstance(document, Mapping):
            raise TemplateDefinitionError(path, "manifest root must be a mapping")

        entries: dict[KeyPath, Any] = {}
        registrations: dict[KeyPath, tuple[Any, ...]] = {}
        containers: set[KeyPath] = set()
        layout: list[KeyPath] = []

        def walk(node: Any, prefix: KeyPath) -> None:
            if isinstance(node, Mapping):
                if prefix:
                    containers.add(prefix)
                    layout.append(prefix)
                for key, value in node.items():
                    walk(value, prefix + (str(key),))
            elif isinstance(node, list):
                registrations[prefix] = tuple(node)
                layout.append(prefix)
            else:
                entries[prefix] = node
                layout.append(prefix)

        walk(document, ())
        return cls(
            path=path,
            format=format,
            entries=MappingProxyType(entries),
            registrations=MappingProxyType(registrations),
            containers=frozenset(containers),
            layout=tuple(layout),
            origin=origin,
            renderer=renderer,
        )


def map_strings(node: Any, transform: Callable[[str], str], path: str = "") -> Any:
    """
    Apply transform to every string key and string value of a parsed document.

    Raises:
        MergeConflict: two keys of one mapping become the same key
    """
    if isinstance(node, str):
        return transform(node)
    if isinstance(node, Mapping):
        result: dict[Any, Any] = {}
        originals: dict[Any, Any] = {}
        for key, value in node.items():
            new_key = transform(key) if isinstance(key, str) else key
            if new_key in result:
                raise MergeConflict(str(new_key), [originals[new_key], key], path or None)
            originals[new_key] = key
            result[new_key] = map_strings(value, transform, path)
        return result
    if isinstance(node, list):
        return [map_strings(item, transform, path) for item in node]
    return node


def parse_fragment(
    path: str,
    text: str,
    format: ManifestFormat,
    *,
    source: str | None = None,
    origin: str = "",
    renderer: str | None = None,
    transform: Callable[[str], str] | None = None,
) -> ManifestFragment:
    """
    Parse manifest text. The source extension picks the parser.

    The text is parsed as written; `transform` (placeholder substitution)
    then runs over the parsed string keys and values, so substituted values
    never need quoting for JSON or YAML.
    """
    source = source or path
    try:
        if PurePosixPath(source).suffix.lower() == ".json":
            document = json.loads(text) if text.strip() else {}
        else:
            document = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise TemplateDefinitionError(f"{origin}:{source}", f"cannot parse manifest: {e}") from e
    if transform is not None:
        document = map_strings(document, transform, path)
    return ManifestFragment.from_document(path, document, format, origin=origin, renderer=renderer)


# ═══════════════════════════════════════════════════════════════════════════
# MERGED MANIFEST
# ═══════════════════════════════════════════════════════════════════════════


def _dotted(path: KeyPath) -> str:
    return ".".join(path)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def entry_key(entry: Any) -> tuple[str, str]:
    """Identity used to spot two registrations of the same thing."""
    if isinstance(entry, str):
        return ("value", entry)
    if isinstance(entry, Mapping):
        for name in ENTRY_KEY_FIELDS:
            if name in entry:
                return (name, _canonical(entry[name]))
    if isinstance(entry, list) and entry and isinstance(entry[0], str):
        # ["expo-font", {...}] style plugin declarations
        return ("value", entry[0])
    return ("entry", _canonical(entry))


@dataclass(frozen=True)
class MergedManifest:
    """Union of every fragment contributed to one manifest path."""

    path: str
    format: ManifestFormat
    entries: Mapping[KeyPath, Any]
    registrations: Mapping[KeyPath, tuple[Any, ...]]
    containers: frozenset[KeyPath]
    layout: tuple[KeyPath, ...]
    origins: tuple[str, ...] = ()
    renderer: str | None = None

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Look up a merge entry or registration list by dotted key."""
        key = tuple(dotted_key.split("."))
        if key in self.entries:
            return self.entries[key]
        if key in self.registrations:
            return list(self.registrations[key])
        return default

    def section(self, name: str) -> dict[str, Any]:
        """Top-level mapping section, e.g. `dependencies` of a package.json."""
        value = self.to_document().get(name, {})
        return value if isinstance(value, dict) else {}

    def to_document(self) -> dict[str, Any]:
        """Rebuild the nested document in first-seen key order."""
        document: dict[str, Any] = {}
        for path in self.layout:
            parent = document
            for part in path[:-1]:
                parent = parent.setdefault(part, {})
            leaf = path[-1]
            if path in self.containers:
                parent.setdefault(leaf, {})
            elif path in self.registrations:
                parent[leaf] = list(self.registrations[path])
            else:
                parent[leaf] = self.entries[path]
        return document

    def serialize(
        self,
        env: Environment | None = None,
        variables: Mapping[str, str] | None = None,
    ) -> str:
        document = self.to_document()
        if self.format == ManifestFormat.JSON:
            return json.dumps(document, indent=2, ensure_ascii=False) + "\n"
        if self.format == ManifestFormat.YAML:
            return yaml.safe_dump(
                document, default_flow_style=False, sort_keys=False, allow_unicode=True
            )

        if env is None or self.renderer is None:
            raise TemplateDefinitionError(self.path, "no renderer available for manifest")
        try:
            template = env.get_template(self.renderer)
            return template.render(manifest=document, variables=dict(variables or {}))
        except TemplateError as e:
            raise TemplateDefinitionError(self.renderer, f"rendering {self.path} failed: {e}") from e


# ═══════════════════════════════════════════════════════════════════════════
# MERGE
# ═══════════════════════════════════════════════════════════════════════════


def _check_format(fragments: Sequence[ManifestFragment]) -> None:
    first = fragments[0]
    for fragment in fragments[1:]:
        if fragment.format != first.format:
            raise MergeConflict(
                "format", [first.format.value, fragment.format.value], first.path
            )
        if fragment.renderer and first.renderer and fragment.renderer != first.renderer:
            raise MergeConflict("renderer", [first.renderer, fragment.renderer], first.path)


def _check_shape(
    path: str,
    entries: Mapping[KeyPath, Any],
    registrations: Mapping[KeyPath, Any],
    containers: set[KeyPath],
) -> None:
    """A key cannot be a scalar, a list and a mapping at the same time."""
    shapes: dict[KeyPath, str] = {}
    for key in entries:
        shapes[key] = "value"
    for key in registrations:
        if key in shapes:
            raise MergeConflict(_dotted(key), ["<value>", "<list>"], path)
        shapes[key] = "list"
    for key in containers:
        if key in shapes:
            raise MergeConflict(_dotted(key), [f"<{shapes[key]}>", "<mapping>"], path)

    for key in shapes:
        for i in range(1, len(key)):
            prefix = key[:i]
            if prefix in shapes:
                raise MergeConflict(_dotted(prefix), [f"<{shapes[prefix]}>", "<mapping>"], path)


def merge(fragments: Sequence[ManifestFragment]) -> MergedManifest:
    """
    Merge fragments in the given order (base template first, then add-ons).

    Raises:
        MergeConflict: a key carries differing values, a registration entry is
            declared twice with different content, or fragments disagree on
            the shape or format of the manifest.
    """
    if not fragments:
        raise ValueError("merge() needs at least one fragment")

    _check_format(fragments)
    path = fragments[0].path

    values: dict[KeyPath, list[Any]] = {}
    registrations: dict[KeyPath, list[Any]] = {}
    seen_entries: dict[KeyPath, dict[tuple[str, str], Any]] = {}
    containers: set[KeyPath] = set()
    layout: dict[KeyPath, None] = {}

    for fragment in fragments:
        for key in fragment.layout:
            layout.setdefault(key, None)
        containers.update(fragment.containers)

        for key, value in fragment.entries.items():
            competing = values.setdefault(key, [])
            if not any(_canonical(v) == _canonical(value) for v in competing):
                competing.append(value)

        for key, items in fragment.registrations.items():
            merged = registrations.setdefault(key, [])
            seen = seen_entries.setdefault(key, {})
            for item in items:
                identity = entry_key(item)
                if identity in seen:
                    if _canonical(seen[identity]) != _canonical(item):
                        raise MergeConflict(
                            f"{_dotted(key)}[{identity[1]}]", [seen[identity], item], path
                        )
                    continue
                seen[identity] = item
                merged.append(item)

    for key in layout:
        if key in values and len(values[key]) > 1:
            raise MergeConflict(_dotted(key), values[key], path)

    entries = {key: competing[0] for key, competing in values.items()}
    _check_shape(path, entries, registrations, containers)

    logger.debug("Merged %d fragment(s) into %s", len(fragments), path)
    return MergedManifest(
        path=path,
        format=fragments[0].format,
        entries=MappingProxyType(entries),
        registrations=MappingProxyType({k: tuple(v) for k, v in registrations.items()}),
        containers=frozenset(containers),
        layout=tuple(layout),
        origins=tuple(f.origin for f in fragments),
        renderer=next((f.renderer for f in fragments if f.renderer), None),
    )


# ═══════════════════════════════════════════════════════════════════════════
# JINJA ENVIRONMENT SETUP
# ═══════════════════════════════════════════════════════════════════════════


def _single_quote(value: Any) -> str:
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n")
    return f"'{escaped}'"


def create_jinja_env(renderers: Mapping[str, str]) -> Environment:
    """Create the Jinja2 environment used by manifest renderers."""

    env = Environment(
        loader=DictLoader(dict(renderers)),
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )

    # String transformation filters
    env.filters["camel_case"] = camel_case
    env.filters["pascal_case"] = pascal_case
    env.filters["snake_case"] = snake_case
    env.filters["kebab_case"] = kebab_case
    env.filters["plural"] = plural

    env.filters["to_json"] = lambda x: json.dumps(x, indent=2)
    env.filters["to_yaml"] = lambda x: yaml.safe_dump(x, default_flow_style=False, sort_keys=False)
    env.filters["quote"] = _single_quote
    env.filters["dquote"] = lambda x: json.dumps(str(x))

    return env
