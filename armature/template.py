"""
Armature Template Models - Pydantic models for template.yaml / addon.yaml

Defines the schema of template definitions on disk and the immutable
runtime structures the registry builds from them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator, model_validator

from armature.errors import UnknownAddon


PLACEHOLDER_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ═══════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════


class TemplateKind(str, Enum):
    MOBILE = "mobile"
    BACKEND = "backend"
    WEB = "web"


class FileKind(str, Enum):
    VERBATIM = "verbatim"
    MANIFEST = "manifest"


class ManifestFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"
    TEMPLATE = "template"  # Rendered through a Jinja2 renderer


class CaseStyle(str, Enum):
    CAMEL = "camel"
    PASCAL = "pascal"
    SNAKE = "snake"
    KEBAB = "kebab"
    UPPER = "upper"
    LOWER = "lower"
    PLURAL = "plural"


# ═══════════════════════════════════════════════════════════════════════════
# PLACEHOLDERS
# ═══════════════════════════════════════════════════════════════════════════


class Derivation(BaseModel):
    """Value computed from another placeholder"""

    source: str = Field(..., alias="from")
    case: CaseStyle

    model_config = {"populate_by_name": True, "frozen": True}


class Placeholder(BaseModel):
    """Placeholder declaration"""

    name: str
    description: str = ""
    default: str | None = None
    derive: Derivation | None = None
    pattern: str | None = None
    choices: list[str] | None = None

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not PLACEHOLDER_NAME.match(v):
            raise ValueError(f"invalid placeholder name {v!r}")
        return v

    @field_validator("default", mode="before")
    @classmethod
    def stringify_default(cls, v: Any) -> Any:
        # YAML turns `port: 3000` into an int
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            re.compile(v)
        return v

    @property
    def required(self) -> bool:
        """True when the caller must supply a value."""
        return self.default is None and self.derive is None

    def references(self) -> set[str]:
        """Names of other placeholders this one's default or derivation reads."""
        from armature.variables import find_tokens

        refs: set[str] = set()
        if self.derive is not None:
            refs.add(self.derive.source)
        if self.default is not None:
            refs.update(find_tokens(self.default))
        return refs


def _parse_placeholders(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Accept `name: {default: x}` or `name: "literal default"` shorthand."""
    parsed: dict[str, Any] = {}
    for name, value in (raw or {}).items():
        if value is None:
            value = {}
        elif not isinstance(value, dict):
            value = {"default": value}
        parsed[name] = {**value, "name": name}
    return parsed


# ═══════════════════════════════════════════════════════════════════════════
# MANIFESTS
# ═══════════════════════════════════════════════════════════════════════════


class ManifestSpec(BaseModel):
    """A file whose structured content is merged across fragments"""

    path: str
    source: str | None = None  # Defaults to path
    renderer: str | None = None

    model_config = {"populate_by_name": True}

    @property
    def source_path(self) -> str:
        return self.source or self.path

    @property
    def format(self) -> ManifestFormat:
        if self.renderer:
            return ManifestFormat.TEMPLATE
        suffix = Path(self.path).suffix.lower()
        if suffix == ".json":
            return ManifestFormat.JSON
        if suffix in (".yaml", ".yml"):
            return ManifestFormat.YAML
        raise ValueError(f"manifest {self.path!r} needs a renderer (not .json/.yaml)")

    @model_validator(mode="after")
    def check_format(self) -> "ManifestSpec":
        self.format  # raises for unsupported extensions
        return self


# ═══════════════════════════════════════════════════════════════════════════
# DEFINITIONS (on-disk schema)
# ═══════════════════════════════════════════════════════════════════════════


class AddonDefinition(BaseModel):
    """addon.yaml"""

    description: str = ""
    placeholders: dict[str, Placeholder] = {}
    manifests: list[ManifestSpec] = []
    raw: list[str] = []  # Glob patterns copied without substitution

    model_config = {"populate_by_name": True}

    @field_validator("placeholders", mode="before")
    @classmethod
    def expand_placeholders(cls, v: Any) -> Any:
        return _parse_placeholders(v)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "AddonDefinition":
        import yaml

        return cls.model_validate(yaml.safe_load(yaml_content) or {})


class TemplateDefinition(BaseModel):
    """template.yaml"""

    id: str
    name: str
    kind: TemplateKind
    version: str = "0.1.0"
    description: str = ""
    placeholders: dict[str, Placeholder] = {}
    manifests: list[ManifestSpec] = []
    raw: list[str] = []

    model_config = {"populate_by_name": True}

    @field_validator("placeholders", mode="before")
    @classmethod
    def expand_placeholders(cls, v: Any) -> Any:
        return _parse_placeholders(v)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "TemplateDefinition":
        """Parse YAML content into TemplateDefinition"""
        import yaml

        return cls.model_validate(yaml.safe_load(yaml_content) or {})

    @classmethod
    def from_file(cls, path: str | Path) -> "TemplateDefinition":
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))


# ═══════════════════════════════════════════════════════════════════════════
# RUNTIME STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TemplateFile:
    """One file of a template tree. Path and content may hold placeholders."""

    path: str
    content: bytes
    kind: FileKind = FileKind.VERBATIM
    origin: str = ""
    format: ManifestFormat | None = None
    renderer: str | None = None
    substitute: bool = True
    source: str | None = None  # Manifest source file when it differs from path


@dataclass(frozen=True)
class Addon:
    id: str
    description: str = ""
    files: tuple[TemplateFile, ...] = ()
    placeholders: Mapping[str, Placeholder] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.placeholders, MappingProxyType):
            object.__setattr__(self, "placeholders", MappingProxyType(dict(self.placeholders)))
        object.__setattr__(self, "files", tuple(self.files))


@dataclass(frozen=True)
class Template:
    """A loaded template. Never mutated after registration."""

    id: str
    name: str
    kind: TemplateKind
    version: str = "0.1.0"
    description: str = ""
    files: tuple[TemplateFile, ...] = ()
    placeholders: Mapping[str, Placeholder] = field(default_factory=lambda: MappingProxyType({}))
    addons: Mapping[str, Addon] = field(default_factory=lambda: MappingProxyType({}))
    renderers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        # Freeze whatever mappings the caller handed in
        for name in ("placeholders", "addons", "renderers"):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))
        object.__setattr__(self, "files", tuple(self.files))

    @property
    def placeholder_names(self) -> frozenset[str]:
        return frozenset(self.placeholders)

    @property
    def addon_ids(self) -> frozenset[str]:
        return frozenset(self.addons)

    def addon(self, addon_id: str) -> Addon:
        try:
            return self.addons[addon_id]
        except KeyError:
            raise UnknownAddon(self.id, addon_id) from None

    def select_addons(self, addon_ids: Any) -> list[Addon]:
        """Resolve add-on ids in a fixed order.

        Sets are sorted so the merge order never depends on hash order;
        sequences keep the caller's order.
        """
        if isinstance(addon_ids, (set, frozenset)):
            ordered = sorted(addon_ids)
        else:
            ordered = list(dict.fromkeys(addon_ids or ()))
        return [self.addon(a) for a in ordered]

    def declared_placeholders(self, addons: list[Addon] | tuple[Addon, ...] = ()) -> dict[str, Placeholder]:
        """Placeholders visible to a run with the given add-ons."""
        declared = dict(self.placeholders)
        for addon in addons:
            declared.update(addon.placeholders)
        return declared
