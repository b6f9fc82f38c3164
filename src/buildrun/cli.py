# cli.py
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import click
import yaml

from buildrun import settings
from buildrun.errors import BuildError, ConfigError, Problem, SubstitutionError
from buildrun.executors import DockerExecutor, DryRunExecutor
from buildrun.loader import DEFAULT_CONFIG_NAMES, find_config_files, load_config
from buildrun.logs import BuildLog
from buildrun.model import Build, build_to_mapping
from buildrun.plan import build_plan
from buildrun.runner import run_build
from buildrun.substitutions import build_builtins, resolve_config
from buildrun.ui.console import Console, get_console, set_console
from buildrun.validate import check_config, validate_file


def discover_config(config_arg: str | None) -> Path:
    """
    Config file from the argument, or the single default-named file in
    the current directory. Exits with an error otherwise.
    """
    console = get_console()

    if config_arg:
        config_path = Path(config_arg)
        if not config_path.exists():
            console.print_error(
                "Build config not found",
                f"Could not find build config: {config_arg}",
            )
            sys.exit(1)
        return config_path

    config_files = find_config_files(".")

    if len(config_files) == 0:
        console.print_error(
            "No build config found",
            "Could not find a build config in the current directory.",
            details=["Looked for:", *(f"  {name}" for name in DEFAULT_CONFIG_NAMES)],
            suggestion="Pass a config explicitly:\n  buildrun run path/to/cloudbuild.yaml",
        )
        sys.exit(1)

    if len(config_files) > 1:
        console.print_error(
            "Multiple build configs found",
            "Found more than one build config. Please specify which one to use:",
            details=[str(f) for f in config_files],
        )
        sys.exit(1)

    return config_files[0]


def parse_substitutions(values: Tuple[str, ...]) -> Dict[str, str]:
    """
    Parse --substitutions values: "_A=x,_B=y" (the option may repeat).
    """
    out: Dict[str, str] = {}
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if not item:
                continue
            key, sep, val = item.partition("=")
            if not sep or not key.strip():
                raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--substitutions")
            out[key.strip()] = val
    return out


def _prepare(
    config_path: Path,
    substitutions: Tuple[str, ...],
    project_id: str,
    workspace: str,
    use_git: bool,
) -> Tuple[Build, List[Problem]]:
    config = load_config(config_path)
    warnings = check_config(config, source=str(config_path))
    builtins = build_builtins(
        project_id=project_id,
        location=settings.LOCATION,
        repo_root=workspace,
        use_git=use_git,
    )
    build = resolve_config(config, builtins, parse_substitutions(substitutions))
    return build, warnings


def _fail(exc: BaseException) -> None:
    """Print a handled error the way each kind deserves, then exit 1."""
    console = get_console()
    if isinstance(exc, ConfigError):
        console.print_problems(exc.problems, source=exc.source)
    elif isinstance(exc, SubstitutionError):
        console.print_error("Substitution failed", str(exc))
    elif isinstance(exc, BuildError):
        details = [f"{k}: {v}" for k, v in exc.details.items()]
        console.print_error(exc.kind, exc.message, details=details or None)
    elif isinstance(exc, FileNotFoundError):
        console.print_error("File not found", str(exc))
    else:
        console.print_exception(exc)
    sys.exit(1)


# ----------------------------------------------------------------------
# Shared options
# ----------------------------------------------------------------------

_config_argument = click.argument("config", required=False)
_substitutions_option = click.option(
    "--substitutions",
    multiple=True,
    help="User substitutions as KEY=VALUE[,KEY=VALUE...]; overrides the config defaults",
)
_project_option = click.option(
    "--project-id",
    default=settings.PROJECT_ID,
    show_default=True,
    help="Value of the PROJECT_ID built-in substitution (env: BUILDRUN_PROJECT_ID)",
)
_workspace_option = click.option(
    "--workspace",
    default=settings.WORKSPACE,
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory mounted at /workspace",
)
_git_option = click.option(
    "--git/--no-git",
    "use_git",
    default=True,
    help="Derive COMMIT_SHA, BRANCH_NAME, ... from the workspace's git checkout",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """buildrun: validate and run Cloud Build style configs locally."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@_config_argument
@click.option("--strict", is_flag=True, default=False, help="Treat warnings as errors")
@click.pass_context
def validate(ctx, config, strict):
    """Check a build config for problems."""
    console = get_console()
    config_path = discover_config(config)

    problems = validate_file(config_path)
    console.print_problems(problems, source=str(config_path))

    if any(p.is_error for p in problems) or (strict and problems):
        sys.exit(1)
    console.print_info(f"OK: {config_path}")


@cli.command()
@_config_argument
@_substitutions_option
@_project_option
@_workspace_option
@_git_option
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", show_default=True)
@click.pass_context
def render(ctx, config, substitutions, project_id, workspace, use_git, fmt):
    """Print the config with every substitution applied."""
    config_path = discover_config(config)
    try:
        build, _warnings = _prepare(config_path, substitutions, project_id, workspace, use_git)
    except (ConfigError, SubstitutionError, FileNotFoundError) as e:
        _fail(e)
        return

    mapping = build_to_mapping(build)
    if fmt == "json":
        click.echo(json.dumps(mapping, indent=2))
    else:
        click.echo(yaml.safe_dump(mapping, sort_keys=False), nl=False)


@cli.command()
@_config_argument
@_substitutions_option
@_project_option
@_workspace_option
@_git_option
@click.pass_context
def plan(ctx, config, substitutions, project_id, workspace, use_git):
    """Show the order steps will start in."""
    console = get_console()
    config_path = discover_config(config)
    try:
        build, _warnings = _prepare(config_path, substitutions, project_id, workspace, use_git)
        stages = build_plan(build.steps)
    except (ConfigError, SubstitutionError, FileNotFoundError, ValueError) as e:
        _fail(e)
        return
    console.print_plan(stages)


@cli.command()
@_config_argument
@_substitutions_option
@_project_option
@_workspace_option
@_git_option
@click.option("--log-dir", default=settings.LOG_DIR, show_default=True, help="Where build logs are written")
@click.option("--docker", default=settings.DOCKER, show_default=True, help="Docker CLI to invoke")
@click.option("--dry-run", is_flag=True, default=False, help="Print docker commands instead of running them")
@click.option("--pull/--no-pull", default=True, show_default=True, help="Pull step images before running")
@click.option("--fail-fast/--no-fail-fast", default=True, help="Stop starting new steps after the first failure")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Maximum number of steps running at once")
@click.option("--quiet", is_flag=True, default=False, help="Do not echo step output (logs are still written)")
@click.pass_context
def run(ctx, config, substitutions, project_id, workspace, use_git, log_dir, docker, dry_run, pull,
        fail_fast, workers, quiet):
    """Run a build config with local docker."""
    console = get_console()
    console.quiet = quiet
    config_path = discover_config(config)

    try:
        build, warnings = _prepare(config_path, substitutions, project_id, workspace, use_git)
        console.print_problems(warnings, source=str(config_path))

        executor_cls = DryRunExecutor if dry_run else DockerExecutor
        executor = executor_cls(workspace, docker=docker)

        console.print_build_started(build, config=str(config_path))
        with BuildLog(log_dir, build.build_id) as log:
            result = run_build(
                build,
                executor,
                log=log,
                pull=pull,
                fail_fast=fail_fast,
                max_workers=workers,
                warnings=warnings,
            )

        console.print_results(result)
        console.print_info(f"Logs: {log.dir}")

        if not result.ok:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (ConfigError, SubstitutionError, BuildError, FileNotFoundError) as e:
        _fail(e)
    except click.ClickException:
        raise
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
