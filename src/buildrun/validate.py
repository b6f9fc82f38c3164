# validate.py
from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Dict, List

from .durations import parse_duration
from .errors import ConfigError, Problem
from .loader import load_config
from .schema import BuildConfig, LoggingMode
from .substitutions import is_user_key

WORKSPACE = "/workspace"

# logging modes that never write to a bucket
_BUCKETLESS_LOGGING = (
    LoggingMode.CLOUD_LOGGING_ONLY,
    LoggingMode.STACKDRIVER_ONLY,
    LoggingMode.NONE,
)


def _check_wait_for(loc: str, step_id: str | None, wait_for: List[str],
                    earlier: Dict[str, int], later: set[str]) -> List[Problem]:
    problems: List[Problem] = []
    if "-" in wait_for and len(wait_for) > 1:
        problems.append(Problem(f"{loc}.waitFor", "'-' must be the only entry when used"))
    for ref in wait_for:
        if ref == "-":
            continue
        if step_id is not None and ref == step_id:
            problems.append(Problem(f"{loc}.waitFor", f"step {ref!r} cannot wait for itself"))
        elif ref in earlier:
            continue
        elif ref in later:
            problems.append(Problem(f"{loc}.waitFor", f"{ref!r} is defined after this step; waitFor may only name earlier steps"))
        else:
            problems.append(Problem(f"{loc}.waitFor", f"unknown step id {ref!r}"))
    return problems


def _check_dir(loc: str, directory: str) -> List[Problem]:
    if directory.startswith("$"):
        return []
    if posixpath.isabs(directory):
        return [Problem(f"{loc}.dir", f"absolute dir {directory!r} is outside {WORKSPACE} unless a volume is mounted there",
                        severity="warning")]
    norm = posixpath.normpath(directory)
    if norm == ".." or norm.startswith("../"):
        return [Problem(f"{loc}.dir", f"dir {directory!r} escapes the workspace")]
    return []


def validate_config(config: BuildConfig) -> List[Problem]:
    """
    Checks that need the whole config (the schema covers single fields).

    Returns every problem found, errors and warnings alike.
    """
    problems: List[Problem] = []

    build_timeout = config.timeout_seconds
    if build_timeout <= 0:
        problems.append(Problem("timeout", "build timeout must be positive"))

    all_ids = {s.id for s in config.steps if s.id is not None}
    earlier: Dict[str, int] = {}

    for index, step in enumerate(config.steps):
        loc = f"steps[{index}]"

        if step.id is not None:
            if not step.id.strip():
                problems.append(Problem(f"{loc}.id", "step id must not be empty"))
            elif step.id in earlier:
                problems.append(Problem(f"{loc}.id", f"duplicate step id {step.id!r} (first used by steps[{earlier[step.id]}])"))

        later = all_ids - set(earlier) - {step.id}
        problems.extend(_check_wait_for(loc, step.id, step.wait_for, earlier, later))

        if step.id is not None and step.id not in earlier:
            earlier[step.id] = index

        if step.args and step.script:
            problems.append(Problem(loc, "args and script cannot both be set"))

        if step.dir:
            problems.extend(_check_dir(loc, step.dir))

        if step.timeout is not None:
            step_timeout = parse_duration(step.timeout)
            if step_timeout <= 0:
                problems.append(Problem(f"{loc}.timeout", "step timeout must be positive"))
            elif step_timeout > build_timeout:
                problems.append(Problem(
                    f"{loc}.timeout",
                    f"step timeout {step.timeout} exceeds the build timeout {config.timeout}",
                    severity="warning",
                ))

        seen_paths: set[str] = set()
        for v_index, volume in enumerate(step.volumes):
            vloc = f"{loc}.volumes[{v_index}]"
            if not posixpath.isabs(volume.path):
                problems.append(Problem(f"{vloc}.path", "volume path must be absolute"))
            elif posixpath.normpath(volume.path) == WORKSPACE:
                problems.append(Problem(f"{vloc}.path", f"{WORKSPACE} is reserved for the build workspace"))
            if volume.path in seen_paths:
                problems.append(Problem(f"{vloc}.path", f"volume path {volume.path!r} mounted twice"))
            seen_paths.add(volume.path)

        if step.secret_env:
            if config.available_secrets is None:
                problems.append(Problem(f"{loc}.secretEnv", "secretEnv requires availableSecrets"))
            else:
                problems.append(Problem(f"{loc}.secretEnv", "secrets are not injected when running locally",
                                        severity="warning"))

    for key in config.substitutions:
        if not is_user_key(key):
            problems.append(Problem(
                f"substitutions.{key}",
                "user substitution names must start with '_' and use only A-Z, 0-9 and '_'",
            ))

    if config.logs_bucket is not None:
        bucket = config.logs_bucket
        if not bucket.startswith("$") and not bucket.startswith("gs://"):
            problems.append(Problem("logsBucket", f"logsBucket {bucket!r} must start with gs://"))
        if config.options.logging in _BUCKETLESS_LOGGING:
            problems.append(Problem(
                "logsBucket",
                f"logsBucket is ignored when options.logging is {config.options.logging.value}",
                severity="warning",
            ))

    return problems


def check_config(config: BuildConfig, *, source: str | None = None) -> List[Problem]:
    """Raise ConfigError if any error-level problem exists; return the warnings otherwise."""
    problems = validate_config(config)
    errors = [p for p in problems if p.is_error]
    if errors:
        raise ConfigError(errors, source=source)
    return problems


def validate_file(path: str | Path) -> List[Problem]:
    """Every problem in a config file, from parsing through cross-field checks."""
    try:
        config = load_config(path)
    except ConfigError as exc:
        return list(exc.problems)
    return validate_config(config)
