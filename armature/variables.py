"""
Armature Variables - Resolve user answers into a closed variable map

Resolution is pure: the same declarations and answers always produce the
same map, with no I/O.
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Any, Callable, Mapping

from armature.errors import (
    InvalidVariable,
    MissingVariable,
    SubstitutionError,
    TemplateDefinitionError,
)
from armature.template import CaseStyle, Placeholder

logger = logging.getLogger(__name__)

# `{{name}}`, with optional inner whitespace
TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

VariableMap = Mapping[str, str]


# ═══════════════════════════════════════════════════════════════════════════
# CASE HELPERS
# ═══════════════════════════════════════════════════════════════════════════


def _words(s: str) -> list[str]:
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", s)
    return [w for w in re.split(r"[\s_\-\.]+", s) if w]


def camel_case(s: str) -> str:
    """Convert to camelCase. Handles PascalCase input correctly."""
    parts = _words(s)
    if not parts:
        return ""
    return parts[0].lower() + "".join(p.capitalize() for p in parts[1:])


def pascal_case(s: str) -> str:
    """Convert to PascalCase."""
    return "".join(p.capitalize() for p in _words(s))


def snake_case(s: str) -> str:
    """Convert to snake_case."""
    return "_".join(p.lower() for p in _words(s))


def kebab_case(s: str) -> str:
    """Convert to kebab-case."""
    return "-".join(p.lower() for p in _words(s))


def plural(s: str) -> str:
    """Simple English pluralization."""
    if s.endswith("y") and not s.endswith(("ay", "ey", "iy", "oy", "uy")):
        return s[:-1] + "ies"
    if s.endswith(("s", "x", "ch", "sh")):
        return s + "es"
    return s + "s"


CASE_TRANSFORMS: dict[CaseStyle, Callable[[str], str]] = {
    CaseStyle.CAMEL: camel_case,
    CaseStyle.PASCAL: pascal_case,
    CaseStyle.SNAKE: snake_case,
    CaseStyle.KEBAB: kebab_case,
    CaseStyle.UPPER: str.upper,
    CaseStyle.LOWER: str.lower,
    CaseStyle.PLURAL: plural,
}


# ═══════════════════════════════════════════════════════════════════════════
# TOKENS
# ═══════════════════════════════════════════════════════════════════════════


def find_tokens(text: str) -> list[str]:
    """Placeholder names referenced in text, in order of first appearance."""
    return list(dict.fromkeys(m.group(1) for m in TOKEN_PATTERN.finditer(text)))


def substitute(text: str, values: Mapping[str, str], *, file: str, declared: Any = None) -> str:
    """Replace every `{{name}}` token in text.

    A token is an error when its name is outside `declared` (defaults to the
    keys of `values`) or has no value.
    """
    scope = values if declared is None else declared

    def repl(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in scope:
            raise SubstitutionError(file, name, "not a declared placeholder")
        if name not in values:
            raise SubstitutionError(file, name, "no value resolved")
        return values[name]

    return TOKEN_PATTERN.sub(repl, text)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ═══════════════════════════════════════════════════════════════════════════
# RESOLUTION
# ═══════════════════════════════════════════════════════════════════════════


def resolution_order(placeholders: Mapping[str, Placeholder]) -> list[str]:
    """Placeholders ordered so every default/derivation follows what it reads."""
    sorted_names: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(name: str) -> None:
        if name in visited:
            return
        if name in visiting:
            raise TemplateDefinitionError(name, f"placeholder cycle involving {name!r}")

        visiting.add(name)
        for dep in sorted(placeholders[name].references()):
            if dep not in placeholders:
                raise TemplateDefinitionError(
                    name, f"placeholder {name!r} refers to undeclared {dep!r}"
                )
            visit(dep)
        visiting.remove(name)
        visited.add(name)
        sorted_names.append(name)

    for name in placeholders:
        visit(name)

    return sorted_names


def _validate(placeholder: Placeholder, value: str) -> None:
    if placeholder.choices is not None and value not in placeholder.choices:
        raise InvalidVariable(
            placeholder.name, value, f"expected one of {', '.join(placeholder.choices)}"
        )
    if placeholder.pattern is not None and not re.fullmatch(placeholder.pattern, value):
        raise InvalidVariable(placeholder.name, value, f"does not match {placeholder.pattern!r}")


def resolve_variables(
    placeholders: Mapping[str, Placeholder],
    answers: Mapping[str, Any] | None = None,
) -> VariableMap:
    """
    Build the complete variable map for a run.

    Each placeholder takes the caller's answer, else its derivation, else its
    default. Raises MissingVariable for the first required placeholder with no
    answer.

    Args:
        placeholders: Declared placeholders (template plus selected add-ons)
        answers: Caller-supplied values; undeclared names are ignored

    Returns:
        Read-only mapping of placeholder name to string value
    """
    answers = dict(answers or {})
    for extra in sorted(set(answers) - set(placeholders)):
        logger.debug("Ignoring answer for undeclared placeholder %r", extra)

    values: dict[str, str] = {}
    for name in resolution_order(placeholders):
        placeholder = placeholders[name]
        answer = answers.get(name)

        if answer is not None:
            value = _stringify(answer)
        elif placeholder.derive is not None:
            derive = placeholder.derive
            value = CASE_TRANSFORMS[derive.case](values[derive.source])
        elif placeholder.default is not None:
            value = substitute(placeholder.default, values, file=f"default of {name}")
        else:
            raise MissingVariable(name)

        _validate(placeholder, value)
        values[name] = value

    # Declaration order, independent of dependency order
    return MappingProxyType({name: values[name] for name in placeholders})
