"""Console output formatting utilities for buildrun."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, List, Optional

from ..durations import format_duration
from ..errors import Problem
from ..logs import step_prefix
from ..model import Build, BuildResult, Step, StepResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, do not echo step output (it still goes to the log files)
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        # steps run on worker threads; keep multi-line blocks together
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_build_started(self, build: Build, config: str) -> None:
        """Print build start information."""
        lines = [
            "",
            "BUILD STARTED",
            f"Config: {config}",
            f"Build ID: {build.build_id}",
            f"Steps: {len(build.steps)}",
            f"Timeout: {format_duration(build.timeout)}",
        ]
        if build.machine_type != "UNSPECIFIED":
            lines.append(f"Machine type: {build.machine_type}")
        if build.logs_bucket:
            lines.append(f"Logs bucket: {build.logs_bucket}")
        lines.append("")
        self._print(*lines)

    def print_pull(self, image: str) -> None:
        self._print(f"PULL: {image}")

    def print_step_start(self, step: Step) -> None:
        self._print(f"\nSTEP STARTED: {step_prefix(step)}", f"Image: {step.image}")

    def print_step_output(self, step: Step, line: str) -> None:
        if not self.quiet:
            self._print(f"{step_prefix(step)}: {line}")

    def print_step_finished(self, step: Step, result: StepResult) -> None:
        lines = [f"STEP FINISHED: {step_prefix(step)}", f"Status: {result.status}"]
        if result.exit_code is not None and result.exit_code != 0:
            lines.append(f"Exit code: {result.exit_code}")
        if result.duration is not None:
            lines.append(f"Duration: {result.duration:.1f}s")
        if result.error and result.status not in ("ok", "allowed-failure"):
            if self.debug:
                lines.append(f"Error details: {result.error}")
            else:
                lines.append(f"Error: {result.error.splitlines()[0]}")
        self._print(*lines)

    def print_results(self, result: BuildResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for step in result.steps:
            status_display = "SUCCESS" if step.status == "ok" else step.status.upper()
            lines.append(f"  {step.id}: {status_display}")
        lines.append(f"BUILD {result.status.upper()} ({result.duration:.1f}s)")
        if result.error:
            lines.append(f"Error: {result.error.splitlines()[0]}")
        self._print(*lines)

    def print_plan(self, stages: List[List[Step]]) -> None:
        lines: List[str] = []
        for n, stage in enumerate(stages, start=1):
            lines.append(f"=== Stage {n} ===")
            for step in stage:
                lines.append(f"  {step_prefix(step)}  {step.image}")
        self._print(*lines)

    def print_problems(self, problems: Iterable[Problem], source: Optional[str] = None) -> None:
        problems = list(problems)
        errors = [p for p in problems if p.is_error]
        warnings = [p for p in problems if not p.is_error]
        for p in errors:
            self._print(f"ERROR {p}", err=True)
        for p in warnings:
            self._print(f"WARNING {p}", err=True)
        where = f" in {source}" if source else ""
        if errors:
            self._print(f"\n{len(errors)} error(s), {len(warnings)} warning(s){where}", err=True)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
