"""
Armature - Project skeleton generator

Instantiates framework templates (mobile, backend, web) with add-ons,
resolves placeholders, merges manifests and commits the tree atomically.
"""

__version__ = "0.1.0"

from armature.errors import (
    GenerationError,
    InvalidVariable,
    MergeConflict,
    MissingVariable,
    SubstitutionError,
    TargetNotEmpty,
    TemplateDefinitionError,
    UnknownAddon,
    UnknownTemplate,
    WriteFailure,
)
from armature.generator import GenerationResult, GenerationState, ProjectGenerator, generate_project
from armature.manifest import ManifestFragment, MergedManifest, merge
from armature.materializer import GenerationPlan, Materializer
from armature.registry import TemplateRegistry, default_registry, load_template
from armature.template import Template, TemplateFile
from armature.variables import resolve_variables

__all__ = [
    "GenerationError",
    "InvalidVariable",
    "MergeConflict",
    "MissingVariable",
    "SubstitutionError",
    "TargetNotEmpty",
    "TemplateDefinitionError",
    "UnknownAddon",
    "UnknownTemplate",
    "WriteFailure",
    "GenerationPlan",
    "GenerationResult",
    "GenerationState",
    "ManifestFragment",
    "Materializer",
    "MergedManifest",
    "ProjectGenerator",
    "Template",
    "TemplateFile",
    "TemplateRegistry",
    "default_registry",
    "generate_project",
    "load_template",
    "merge",
    "resolve_variables",
]
