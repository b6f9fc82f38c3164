# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .durations import format_duration


@dataclass(frozen=True)
class Step:
    """A build step with every substitution applied, ready to run."""
    index: int
    id: str
    image: str
    args: Tuple[str, ...] = ()
    dir: str | None = None
    entrypoint: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    wait_for: Tuple[str, ...] = ()
    timeout: float | None = None
    script: str | None = None
    volumes: Tuple[Tuple[str, str], ...] = ()  # (volume name, container path)
    allow_failure: bool = False
    allow_exit_codes: Tuple[int, ...] = ()
    has_explicit_id: bool = False

    def exit_allowed(self, exit_code: int) -> bool:
        return self.allow_failure or exit_code in self.allow_exit_codes


@dataclass
class Build:
    """
    A resolved build: the config after substitution, plus run metadata.

    `timeout` is the total budget in seconds for the whole build.
    """
    build_id: str
    steps: List[Step]
    timeout: float
    substitutions: Dict[str, str] = field(default_factory=dict)
    logs_bucket: Optional[str] = None
    machine_type: str = "UNSPECIFIED"
    logging: str = "LOGGING_UNSPECIFIED"
    images: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


@dataclass
class StepResult:
    id: str
    image: str
    status: str = "pending"  # pending | ok | failed | timeout | cancelled | allowed-failure
    exit_code: Optional[int] = None
    duration: Optional[float] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        # dependents may start after these
        return self.status in ("ok", "allowed-failure")


@dataclass
class BuildResult:
    build_id: str
    status: str  # success | failure | timeout
    steps: List[StepResult]
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def step(self, step_id: str) -> StepResult:
        for s in self.steps:
            if s.id == step_id:
                return s
        raise KeyError(step_id)


def build_to_mapping(build: Build) -> dict:
    """A resolved build in config shape (camelCase keys), for rendering."""
    steps = []
    for step in build.steps:
        item: dict = {"name": step.image}
        if step.has_explicit_id:
            item["id"] = step.id
        if step.entrypoint:
            item["entrypoint"] = step.entrypoint
        if step.args:
            item["args"] = list(step.args)
        if step.script is not None:
            item["script"] = step.script
        if step.dir:
            item["dir"] = step.dir
        if step.env:
            item["env"] = [f"{k}={v}" for k, v in step.env.items()]
        if step.wait_for:
            item["waitFor"] = list(step.wait_for)
        if step.timeout is not None:
            item["timeout"] = format_duration(step.timeout)
        if step.volumes:
            item["volumes"] = [{"name": name, "path": path} for name, path in step.volumes]
        if step.allow_failure:
            item["allowFailure"] = True
        if step.allow_exit_codes:
            item["allowExitCodes"] = list(step.allow_exit_codes)
        steps.append(item)

    out: dict = {"steps": steps, "timeout": format_duration(build.timeout)}
    if build.machine_type != "UNSPECIFIED":
        out["options"] = {"machineType": build.machine_type}
    if build.logs_bucket:
        out["logsBucket"] = build.logs_bucket
    if build.images:
        out["images"] = list(build.images)
    if build.tags:
        out["tags"] = list(build.tags)
    return out
