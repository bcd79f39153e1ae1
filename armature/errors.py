"""
Armature Errors - Generation error taxonomy

Every failure a generation run can report is a GenerationError subclass.
Each class carries the process exit code the CLI maps it to.
"""

from __future__ import annotations

from typing import Any


class GenerationError(Exception):
    """Base class for every error a generation run can surface."""

    exit_code: int = 1


class UnknownTemplate(GenerationError):
    exit_code = 2

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Unknown template: {template_id!r}")


class UnknownAddon(GenerationError):
    exit_code = 3

    def __init__(self, template_id: str, addon_id: str):
        self.template_id = template_id
        self.addon_id = addon_id
        super().__init__(f"Template {template_id!r} has no add-on {addon_id!r}")


class MissingVariable(GenerationError):
    exit_code = 4

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing required variable: {name!r}")


class InvalidVariable(GenerationError):
    exit_code = 5

    def __init__(self, name: str, value: str, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value {value!r} for {name!r}: {reason}")


class SubstitutionError(GenerationError):
    """A placeholder token that cannot be resolved in a template file."""

    exit_code = 6

    def __init__(self, file: str, token: str, reason: str | None = None):
        self.file = file
        self.token = token
        message = f"Unresolved placeholder {token!r} in {file}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MergeConflict(GenerationError):
    """Two fragments disagree about the same key. No winner is picked."""

    exit_code = 7

    def __init__(self, key: str, competing_values: list[Any], path: str | None = None):
        self.key = key
        self.competing_values = competing_values
        self.path = path
        where = f" in {path}" if path else ""
        values = ", ".join(repr(v) for v in competing_values)
        super().__init__(f"Conflicting values for {key!r}{where}: {values}")


class TargetNotEmpty(GenerationError):
    exit_code = 8

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Target directory is not empty: {target} (use overwrite to replace it)")


class WriteFailure(GenerationError):
    """Storage failed during commit. `recovery` is set when a replaced target could not be restored."""

    exit_code = 9

    def __init__(self, path: str, reason: str, recovery: str | None = None):
        self.path = path
        self.reason = reason
        self.recovery = recovery
        super().__init__(f"Failed to write {path}: {reason}")


class TemplateDefinitionError(GenerationError):
    """A template directory on disk is malformed."""

    exit_code = 10

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid template definition {source}: {reason}")
