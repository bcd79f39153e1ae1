"""
Armature CLI - Command-line interface for project generation

Usage:
    armature generate <template> -o <output_dir> [-a addon] [-v key=value]
    armature list
    armature show <template>
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from armature.config import Settings
from armature.errors import GenerationError
from armature.generator import ProjectGenerator
from armature.materializer import GenerationPlan
from armature.registry import TemplateRegistry

app = typer.Typer(
    name="armature",
    help="Generate project skeletons from framework templates",
    add_completion=False,
)
console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(error: GenerationError) -> None:
    rprint(f"[red]✗[/red] {escape(str(error))}")
    raise typer.Exit(error.exit_code)


def _load(templates_dir: Optional[List[Path]], verbose: bool = False) -> tuple[Settings, TemplateRegistry]:
    """Settings from the environment plus CLI overrides, and the registry they describe."""
    settings = Settings.from_env()
    if templates_dir:
        settings = settings.model_copy(
            update={"template_dirs": [*settings.template_dirs, *templates_dir]}
        )
    _setup_logging("DEBUG" if verbose else settings.log_level)

    try:
        registry = TemplateRegistry.from_settings(settings)
    except GenerationError as e:
        _fail(e)
    return settings, registry


def parse_vars(pairs: Optional[List[str]]) -> dict[str, str]:
    """Parse repeated `key=value` (or `key:value`) options."""
    result: dict[str, str] = {}
    for raw in pairs or []:
        s = raw.strip()
        for sep in ("=", ":"):
            key, found, value = s.partition(sep)
            if found and key.strip():
                result[key.strip()] = value.strip()
                break
        else:
            raise typer.BadParameter(f"expected key=value, got {raw!r}", param_hint="--var")
    return result


def _read_answers(path: Optional[Path]) -> dict[str, Any]:
    if path is None:
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise typer.BadParameter("answers file must hold a mapping", param_hint="--answers")
    return data


@app.command()
def generate(
    template_id: str = typer.Argument(..., help="Template id (see `armature list`)"),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output directory (defaults to ./<project_name>)",
        resolve_path=True,
    ),
    addon: Optional[List[str]] = typer.Option(None, "--addon", "-a", help="Add-on to layer on (repeatable)"),
    var: Optional[List[str]] = typer.Option(None, "--var", "-v", help="Placeholder answer key=value (repeatable)"),
    answers: Optional[Path] = typer.Option(
        None,
        "--answers",
        help="YAML file of placeholder answers",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace a non-empty output directory"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would be generated without writing files",
    ),
    templates_dir: Optional[List[Path]] = typer.Option(
        None, "--templates-dir", "-t", help="Extra template directory (repeatable)"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """Generate a project from a template."""
    settings, registry = _load(templates_dir, verbose)
    variables = {**_read_answers(answers), **parse_vars(var)}
    generator = ProjectGenerator(registry, staging_prefix=settings.staging_prefix)

    if output is None:
        output = Path.cwd() / str(variables.get("project_name") or template_id)

    if dry_run:
        try:
            plan = generator.plan(template_id, addon or [], variables)
        except GenerationError as e:
            _fail(e)
        rprint(f"\n[yellow]Dry run - would generate to: {output}[/yellow]\n")
        _show_preview(plan)
        return

    result = generator.generate(template_id, addon or [], variables, output, overwrite)

    if result.success:
        rprint(f"[green]✓[/green] Generated {len(result.written_paths)} files to {output}")
        _show_next_steps(output, result.manifests)
    else:
        for error in result.errors:
            rprint(f"[red]✗[/red] {escape(error)}")
        raise typer.Exit(result.error.exit_code if result.error else 1)


@app.command("list")
def list_templates(
    templates_dir: Optional[List[Path]] = typer.Option(None, "--templates-dir", "-t"),
) -> None:
    """List available templates."""
    _, registry = _load(templates_dir)

    table = Table()
    table.add_column("Template", style="cyan")
    table.add_column("Kind")
    table.add_column("Version")
    table.add_column("Add-ons")
    table.add_column("Description")

    for template in registry:
        table.add_row(
            template.id,
            template.kind.value,
            template.version,
            ", ".join(sorted(template.addon_ids)) or "-",
            template.description,
        )

    rprint(table)


@app.command()
def show(
    template_id: str = typer.Argument(..., help="Template id"),
    templates_dir: Optional[List[Path]] = typer.Option(None, "--templates-dir", "-t"),
) -> None:
    """Show a template's placeholders and add-ons."""
    _, registry = _load(templates_dir)
    try:
        template = registry.lookup(template_id)
    except GenerationError as e:
        _fail(e)

    rprint(f"[bold]{template.name}[/bold] ({template.kind.value}, {template.version})")

    table = Table(title="Placeholders")
    table.add_column("Name", style="cyan")
    table.add_column("Value")
    table.add_column("Description")

    def describe(placeholder: Any) -> str:
        if placeholder.derive is not None:
            return f"{placeholder.derive.case.value}({placeholder.derive.source})"
        if placeholder.default is not None:
            return f"default: {placeholder.default}"
        return "[red]required[/red]"

    for placeholder in template.placeholders.values():
        table.add_row(placeholder.name, describe(placeholder), placeholder.description)
    rprint(table)

    if template.addons:
        tree = Tree("[blue]Add-ons[/blue]")
        for addon in template.addons.values():
            node = tree.add(f"[cyan]{addon.id}[/cyan] {addon.description}")
            for placeholder in addon.placeholders.values():
                node.add(f"{placeholder.name}: {describe(placeholder)}")
        rprint(tree)


@app.command()
def version() -> None:
    """Show version."""
    from armature import __version__
    rprint(f"armature {__version__}")


def _show_preview(plan: GenerationPlan) -> None:
    """Show what would be generated."""
    title = plan.template_id + "".join(f" + {a}" for a in plan.addons)
    tree = Tree(f"[bold]{title}[/bold]")

    files = tree.add("[blue]Files[/blue]")
    for planned in plan.files:
        marker = " [magenta](manifest)[/magenta]" if planned.path in plan.manifests else ""
        files.add(f"{planned.path}{marker}")

    variables = tree.add("[blue]Variables[/blue]")
    for name, value in plan.variables.items():
        variables.add(escape(f"{name} = {value}"))

    rprint(tree)


def _show_next_steps(output_dir: Path, manifests: dict[str, Any]) -> None:
    """Show next steps."""
    steps = f"[bold]Next:[/bold]\n  cd {output_dir}\n"
    if "package.json" in manifests:
        steps += "  npm install\n"
    rprint(Panel(steps, title="Done"))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
