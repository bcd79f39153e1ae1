"""
Armature Generator - Resolve, plan and atomically commit a project

Sequences the variable resolver, the materializer and the manifest merger,
then writes the plan through a staging directory so the target is either
fully generated or left as it was.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Mapping

from armature.errors import GenerationError, TargetNotEmpty, WriteFailure
from armature.manifest import MergedManifest
from armature.materializer import GenerationPlan, Materializer
from armature.registry import TemplateRegistry, default_registry
from armature.variables import resolve_variables

logger = logging.getLogger(__name__)

DEFAULT_STAGING_PREFIX = ".armature-staging-"


# ═══════════════════════════════════════════════════════════════════════════
# RESULT TRACKING
# ═══════════════════════════════════════════════════════════════════════════


class GenerationState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    PLANNING = "planning"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class GenerationResult:
    """Result of project generation."""

    template_id: str
    target: Path
    state: GenerationState = GenerationState.IDLE
    written_paths: list[str] = field(default_factory=list)  # Relative to target
    manifests: dict[str, MergedManifest] = field(default_factory=dict)
    plan: GenerationPlan | None = None
    error: GenerationError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.state == GenerationState.DONE

    @property
    def errors(self) -> list[str]:
        return [str(self.error)] if self.error else []


# ═══════════════════════════════════════════════════════════════════════════
# FILESYSTEM HELPERS
# ═══════════════════════════════════════════════════════════════════════════


def _write_file(path: Path, content: bytes) -> None:
    """Create parent dirs and write content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _is_empty(target: Path) -> bool:
    if not target.exists() and not target.is_symlink():
        return True
    return target.is_dir() and not target.is_symlink() and not any(target.iterdir())


# ═══════════════════════════════════════════════════════════════════════════
# PROJECT GENERATOR
# ═══════════════════════════════════════════════════════════════════════════


class ProjectGenerator:
    """
    Runs one generation at a time: IDLE -> RESOLVING -> PLANNING ->
    COMMITTING -> DONE, with FAILED reachable from every step.

    Resolving and planning are pure, so every error except WriteFailure is
    raised before the filesystem is touched. Concurrent runs should use
    separate generators; they can share one registry.
    """

    def __init__(
        self,
        registry: TemplateRegistry | None = None,
        materializer: Materializer | None = None,
        staging_prefix: str = DEFAULT_STAGING_PREFIX,
    ):
        """
        Args:
            registry: Template catalog. Defaults to the bundled templates.
            materializer: Plan builder. Defaults to a plain Materializer.
            staging_prefix: Name prefix of the temporary staging directory.
        """
        self.registry = registry if registry is not None else default_registry()
        self.materializer = materializer or Materializer()
        self.staging_prefix = staging_prefix
        self.state = GenerationState.IDLE
        self.history: list[GenerationState] = [GenerationState.IDLE]

    def _transition(self, state: GenerationState) -> None:
        logger.info("%s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _reset(self) -> None:
        self.state = GenerationState.IDLE
        self.history = [GenerationState.IDLE]

    # ═══════════════════════════════════════════════════════════════════════
    # RESOLVE + PLAN
    # ═══════════════════════════════════════════════════════════════════════

    def plan(
        self,
        template_id: str,
        addons: Iterable[str] = (),
        variables: Mapping[str, Any] | None = None,
    ) -> GenerationPlan:
        """
        Build the generation plan without writing anything.

        Raises:
            UnknownTemplate, UnknownAddon, MissingVariable, InvalidVariable,
            SubstitutionError, MergeConflict
        """
        self._reset()
        try:
            self._transition(GenerationState.RESOLVING)
            template = self.registry.lookup(template_id)
            selected = template.select_addons(addons)
            values = resolve_variables(template.declared_placeholders(selected), variables)

            self._transition(GenerationState.PLANNING)
            return self.materializer.materialize(template, values, selected)
        except Exception:
            self._transition(GenerationState.FAILED)
            raise

    # ═══════════════════════════════════════════════════════════════════════
    # COMMIT
    # ═══════════════════════════════════════════════════════════════════════

    def commit(
        self,
        plan: GenerationPlan,
        target_dir: str | Path,
        overwrite: bool = False,
    ) -> list[str]:
        """
        Write a plan into target_dir through a staging directory.

        The staging directory is created beside the target so the final move
        is a rename on the same filesystem. It is removed afterwards, unless
        a replaced target could not be moved back; then the old contents stay
        in it and WriteFailure.recovery names their location.

        Returns:
            Written paths relative to target_dir, sorted
        """
        target = Path(target_dir).resolve()
        try:
            occupied = not _is_empty(target)
        except OSError as e:
            raise WriteFailure(str(target), str(e)) from e
        if occupied and not overwrite:
            raise TargetNotEmpty(str(target))

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=self.staging_prefix, dir=target.parent))
        except OSError as e:
            raise WriteFailure(str(target.parent), str(e)) from e

        tree = staging / "tree"
        backup = staging / "previous"
        keep_backup = False
        try:
            tree.mkdir()
            for planned in plan.files:
                try:
                    _write_file(tree.joinpath(*PurePosixPath(planned.path).parts), planned.content)
                except OSError as e:
                    raise WriteFailure(planned.path, str(e)) from e
            logger.debug("Staged %d file(s) in %s", len(plan.files), staging)

            self._move_into_place(tree, target, backup, overwrite)
        except WriteFailure as e:
            keep_backup = e.recovery is not None
            raise
        finally:
            if keep_backup:
                shutil.rmtree(tree, ignore_errors=True)
                logger.error("Previous contents of %s kept at %s", target, backup)
            else:
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Committed %d file(s) to %s", len(plan.files), target)
        return [f.path for f in plan.files]

    @staticmethod
    def _move_into_place(tree: Path, target: Path, backup: Path, overwrite: bool) -> None:
        # Checked again here: the target may have been populated while staging
        moved_aside = False
        try:
            exists = target.exists() or target.is_symlink()
            empty = _is_empty(target)
        except OSError as e:
            raise WriteFailure(str(target), str(e)) from e
        if exists:
            if not empty and not overwrite:
                raise TargetNotEmpty(str(target))
            try:
                if empty:
                    target.rmdir()
                else:
                    os.replace(target, backup)
                    moved_aside = True
            except OSError as e:
                raise WriteFailure(str(target), str(e)) from e

        try:
            os.replace(tree, target)
        except OSError as e:
            if not moved_aside:
                raise WriteFailure(str(target), str(e)) from e
            try:
                os.replace(backup, target)
            except OSError as restore_error:
                raise WriteFailure(
                    str(target),
                    f"{e}; restoring the previous contents also failed ({restore_error}), "
                    f"they are kept at {backup}",
                    recovery=str(backup),
                ) from e
            raise WriteFailure(str(target), str(e)) from e

    # ═══════════════════════════════════════════════════════════════════════
    # FULL RUN
    # ═══════════════════════════════════════════════════════════════════════

    def generate(
        self,
        template_id: str,
        addons: Iterable[str] = (),
        variables: Mapping[str, Any] | None = None,
        target_dir: str | Path = ".",
        overwrite: bool = False,
    ) -> GenerationResult:
        """
        Generate a project.

        Args:
            template_id: Registered template id
            addons: Add-on ids; sequences keep their order, sets are sorted
            variables: Answers for the template's placeholders
            target_dir: Directory to create or fill
            overwrite: Replace a non-empty target instead of failing

        Returns:
            GenerationResult; `error` is set instead of raising
        """
        result = GenerationResult(template_id=template_id, target=Path(target_dir))
        try:
            plan = self.plan(template_id, addons, variables)
            result.plan = plan
            result.manifests = dict(plan.manifests)

            self._transition(GenerationState.COMMITTING)
            result.written_paths = self.commit(plan, target_dir, overwrite)
            self._transition(GenerationState.DONE)
        except GenerationError as e:
            if self.state != GenerationState.FAILED:
                self._transition(GenerationState.FAILED)
            logger.error("Generation of %s failed: %s", template_id, e)
            result.error = e
        except Exception:
            if self.state != GenerationState.FAILED:
                self._transition(GenerationState.FAILED)
            raise

        result.state = self.state
        return result


# ═══════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════


def generate_project(
    template_id: str,
    addons: Iterable[str] = (),
    variables: Mapping[str, Any] | None = None,
    target_dir: str | Path = ".",
    overwrite: bool = False,
    registry: TemplateRegistry | None = None,
) -> GenerationResult:
    """
    Generate a project from a registered template.

    Args:
        template_id: Template to instantiate
        addons: Add-ons layered onto the template
        variables: Placeholder answers
        target_dir: Directory to write the project into
        overwrite: Replace existing target contents
        registry: Optional custom registry (defaults to bundled templates)

    Returns:
        GenerationResult with written paths and merged manifests, or the error
    """
    generator = ProjectGenerator(registry)
    return generator.generate(template_id, addons, variables, target_dir, overwrite)
