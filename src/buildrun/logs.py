# logs.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import List, Optional, TextIO

from .durations import format_duration
from .errors import Problem
from .model import Build, BuildResult, Step


def step_prefix(step: Step) -> str:
    return f'Step #{step.index} - "{step.id}"'


class StepLog:
    """Writes one step's output to its own file and to the combined build log."""

    def __init__(self, build_log: BuildLog, step: Step):
        self.build_log = build_log
        self.step = step
        self.path = build_log.step_path(step)
        self._fh: Optional[TextIO] = None

    def __enter__(self) -> StepLog:
        self._fh = self.path.open("w", encoding="utf-8")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def write_line(self, line: str) -> None:
        if self._fh is not None:
            self._fh.write(line + "\n")
            self._fh.flush()
        self.build_log.write_line(f"{step_prefix(self.step)}: {line}")


class BuildLog:
    """
    Local log directory for one build.

    Layout:
      <root>/<build_id>/build.log        every step, prefixed, in arrival order
      <root>/<build_id>/step-<n>.log     one file per step
      <root>/<build_id>/summary.json     statuses plus the configured logsBucket
    """

    def __init__(self, root: str | Path, build_id: str):
        self.dir = Path(root).expanduser() / build_id
        self.dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._combined: Optional[TextIO] = (self.dir / "build.log").open("a", encoding="utf-8")

    def __enter__(self) -> BuildLog:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._combined is not None:
                self._combined.close()
                self._combined = None

    def step_path(self, step: Step) -> Path:
        return self.dir / f"step-{step.index}.log"

    def open_step(self, step: Step) -> StepLog:
        return StepLog(self, step)

    def write_line(self, line: str) -> None:
        with self._lock:
            if self._combined is not None:
                self._combined.write(line + "\n")
                self._combined.flush()

    def write_summary(self, build: Build, result: BuildResult, warnings: List[Problem] | None = None) -> Path:
        summary = {
            "build_id": build.build_id,
            "status": result.status,
            "duration": round(result.duration, 3),
            "error": result.error,
            "timeout": format_duration(build.timeout),
            "logsBucket": build.logs_bucket,
            "machineType": build.machine_type,
            "images": build.images,
            "tags": build.tags,
            "steps": [
                {
                    "index": step.index,
                    "id": step.id,
                    "image": step.image,
                    "status": res.status,
                    "exit_code": res.exit_code,
                    "duration": None if res.duration is None else round(res.duration, 3),
                    "log": self.step_path(step).name,
                }
                for step, res in zip(build.steps, result.steps)
            ],
            "warnings": [str(w) for w in (warnings or [])],
        }
        path = self.dir / "summary.json"
        path.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
        return path
