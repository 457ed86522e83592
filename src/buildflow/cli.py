# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Tuple

import click

from buildflow.ci.github_actions import generate, render, workflow_path, write_workflow
from buildflow.dag import TargetGraph
from buildflow.dsl import BuildDefinition
from buildflow.errors import BuildError, ConfigurationError, DependencyCycleError
from buildflow.runner import Executor, RunConfig, load_definition, parameters_used
from buildflow.ui.console import Console, get_console, set_console

DEFAULT_DEFINITION = "build_definition.py"


def find_definition_files() -> list[Path]:
    """
    Find all build definition files in the current directory.

    Returns:
        List of Path objects for definition files
    """
    current_dir = Path(".")
    files = []

    default = current_dir / DEFAULT_DEFINITION
    if default.exists():
        files.append(default)

    for path in current_dir.glob("*_build.py"):
        if path != default:
            files.append(path)

    return sorted(files)


def discover_definition(definition_arg: str | None) -> Path:
    """
    Discover the build definition file from argument or default.

    Raises:
        SystemExit: If no definition can be found or several are ambiguous
    """
    console = get_console()

    if definition_arg:
        path = Path(definition_arg)
        if not path.exists() and path.suffix != ".py":
            path = Path(str(path) + ".py")
        if not path.exists():
            console.print_error(
                "Build definition not found",
                f"Could not find build definition: {definition_arg}",
                suggestion=f"Create a build definition or specify a different path:\n  buildflow run --definition {DEFAULT_DEFINITION}",
            )
            sys.exit(1)
        return path

    default = Path(DEFAULT_DEFINITION)
    if default.exists():
        return default

    files = find_definition_files()

    if len(files) == 0:
        console.print_error(
            "No build definition found",
            "Could not find any build definition files.",
            details=["Looked for:", f"  {DEFAULT_DEFINITION}", "  *_build.py"],
            suggestion=f"Create {DEFAULT_DEFINITION} or pass --definition <path>",
        )
        sys.exit(1)

    if len(files) > 1:
        console.print_error(
            "Multiple build definitions found",
            "Found multiple build definition files. Please specify which one to use:",
            details=[f"  {f}" for f in files],
            suggestion=f"Specify one explicitly:\n  buildflow run --definition {files[0]}",
        )
        sys.exit(1)

    return files[0]


def parse_invocation(args: List[str]) -> Tuple[List[str], Dict[str, str]]:
    """
    Split leftover command-line tokens into target names and parameter bindings.

        Pack --configuration Release --release-feed-api-key=xyz --verbose
        -> (["Pack"], {"configuration": "Release", "release-feed-api-key": "xyz", "verbose": "true"})
    """
    targets: List[str] = []
    params: Dict[str, str] = {}
    i = 0
    while i < len(args):
        token = args[i]
        if token.startswith("--") and len(token) > 2:
            name = token[2:]
            if "=" in name:
                name, value = name.split("=", 1)
                i += 1
            elif i + 1 < len(args) and not args[i + 1].startswith("--"):
                value = args[i + 1]
                i += 2
            else:
                value = "true"
                i += 1
            params[name] = value
        elif token.startswith("-"):
            raise click.UsageError(f"Unknown option: {token}")
        else:
            targets.append(token)
            i += 1
    return targets, params


def _load(definition: str | None) -> Tuple[Path, BuildDefinition, TargetGraph]:
    """Load definition and build its graph, exiting on structural errors."""
    console = get_console()
    path = discover_definition(definition)
    try:
        build = load_definition(path)
    except Exception as e:
        console.print_error(
            "Failed to load build definition",
            f"Could not load build definition from {path}",
            details=[str(e)],
        )
        if console.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    try:
        graph = build.graph()
    except DependencyCycleError as e:
        console.print_error("Dependency cycle", e.message, details=[" -> ".join(e.cycle)])
        sys.exit(1)
    except ValueError as e:
        console.print_error("Invalid build definition", str(e))
        sys.exit(1)
    console.print_debug(f"Loaded {build.name} from {path} ({len(graph)} targets)")
    return path, build, graph


def _root(path: Path, build: BuildDefinition) -> Path:
    return build.root if build.root.is_absolute() else (path.parent / build.root).resolve()


def _requested(targets: List[str], build: BuildDefinition, graph: TargetGraph) -> List[str]:
    console = get_console()
    if not targets:
        if not build.default_target:
            console.print_error(
                "No target specified",
                "The build definition has no default target.",
                suggestion="Name a target:\n  buildflow run <Target>\n\nSee available targets:\n  buildflow list",
            )
            sys.exit(1)
        targets = [build.default_target]
    try:
        return [graph.get(t).name for t in targets]
    except ValueError as e:
        console.print_error("Unknown target", str(e), suggestion="See available targets:\n  buildflow list --all")
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """buildflow: declarative build targets, run locally or generated into CI."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.option("--definition", default=None, help=f"Build definition path (defaults to {DEFAULT_DEFINITION})")
@click.option("--workers", default=1, show_default=True, type=click.IntRange(min=1), help="Run independent targets in parallel")
@click.option("--skip", "skip_dependencies", is_flag=True, default=False, help="Run only the named targets, not their dependencies")
@click.option("--skip-target", multiple=True, help="Never visit this target (repeatable)")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Cancel remaining targets after the first failure")
@click.option("--interactive/--no-interactive", default=lambda: sys.stdin.isatty(), help="Prompt for missing parameters (defaults to TTY detection)")
@click.pass_context
def run(ctx, definition, workers, skip_dependencies, skip_target, fail_fast, interactive):
    """Run build targets: buildflow run [TARGET]... [--<parameter> VALUE]..."""
    console = get_console()
    targets, arguments = parse_invocation(list(ctx.args))
    path, build, graph = _load(definition)
    requested = _requested(targets, build, graph)

    config = RunConfig(
        root=_root(path, build),
        max_workers=workers,
        skip=frozenset(skip_target),
        skip_dependencies=skip_dependencies,
        fail_fast=fail_fast,
    )
    try:
        order = Executor(graph, config=config, console=console).plan(requested)
    except ConfigurationError as e:
        raise click.UsageError(e.message) from None

    try:
        resolver = build.resolver(arguments=arguments, interactive=interactive)
        params = resolver.resolve_all(needed=parameters_used(order))
    except ConfigurationError as e:
        console.print_error("Configuration error", e.message, details=[f"{k}: {v}" for k, v in e.details.items()])
        sys.exit(1)

    executor = Executor(graph, params, config, console)

    try:
        console.print_run_started(
            build=build.name,
            definition=path.name,
            targets=requested,
            parameters=params.describe(),
        )
        planned = {t.key for t in order}
        skipped = [t.name for t in graph.closure(requested) if t.key not in planned]
        console.print_plan(order, skipped)

        report = executor.run(requested)
        console.print_results(report)

        if executor.interrupted:
            console.print_info("\nInterrupted by user")
            sys.exit(130)
        if not report.ok:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except BuildError as e:
        console.print_error(e.kind, e.message)
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command(name="list")
@click.option("--definition", default=None, help=f"Build definition path (defaults to {DEFAULT_DEFINITION})")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include unlisted targets")
def list_targets(definition, show_all):
    """List the targets of a build definition."""
    console = get_console()
    _path, build, graph = _load(definition)
    targets = list(graph) if show_all else graph.listed()
    console.print_header(f"Targets of {build.name}")
    console.print_targets(targets, default=build.default_target)


@cli.command()
@click.argument("targets", nargs=-1)
@click.option("--definition", default=None, help=f"Build definition path (defaults to {DEFAULT_DEFINITION})")
@click.option("--stages", is_flag=True, default=False, help="Group targets into stages that may run in parallel")
def plan(targets, definition, stages):
    """Print the execution order of targets without running them."""
    console = get_console()
    _path, build, graph = _load(definition)
    requested = _requested(list(targets), build, graph)
    if stages:
        for i, level in enumerate(graph.levels(requested), start=1):
            console.print_info(f"=== Stage {i}: {level} ===")
        return
    console.print_plan(graph.order(requested))


@cli.command(name="generate")
@click.option("--definition", default=None, help=f"Build definition path (defaults to {DEFAULT_DEFINITION})")
@click.option("--output-dir", default=None, type=click.Path(file_okay=False), help="Directory for workflow files (defaults to .github/workflows)")
@click.option("--check", is_flag=True, default=False, help="Fail if a generated file differs from the one on disk")
@click.option("--stdout", "to_stdout", is_flag=True, default=False, help="Print workflows instead of writing them")
def generate_workflows(definition, output_dir, check, to_stdout):
    """Generate CI workflow files from the build definition."""
    console = get_console()
    path, build, graph = _load(definition)
    if not build.workflows:
        console.print_error("No workflows", f"{path.name} registers no CI workflow.")
        sys.exit(1)

    stale = []
    for spec in build.workflows:
        try:
            job = generate(graph, spec.metadata, hooks=spec.hooks, parameters=build.parameters)
        except ValueError as e:
            console.print_error("Invalid workflow", str(e))
            sys.exit(1)

        if output_dir:
            target_path = Path(output_dir) / spec.metadata.file_name
        else:
            target_path = workflow_path(spec.metadata, _root(path, build))

        if to_stdout:
            click.echo(render(job), nl=False)
        elif check:
            current = target_path.read_text(encoding="utf-8") if target_path.exists() else None
            if current != render(job):
                stale.append(target_path)
        else:
            changed = write_workflow(job, target_path)
            console.print_info(f"{'Wrote' if changed else 'Up to date'}: {target_path}")

    if stale:
        console.print_error(
            "Workflow files out of date",
            "Generated workflows differ from the files on disk:",
            details=[str(p) for p in stale],
            suggestion="Regenerate them:\n  buildflow generate",
        )
        sys.exit(1)


if __name__ == "__main__":
    cli()
