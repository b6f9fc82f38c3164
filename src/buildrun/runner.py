# runner.py
from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import nullcontext
from typing import Dict, List, Optional, Protocol, Tuple

from .durations import format_duration
from .errors import BuildError, Problem, StepFailure
from .executors import Sink, StepOutcome
from .logs import BuildLog
from .model import Build, BuildResult, Step, StepResult
from .plan import build_graph
from .ui.console import get_console


class Executor(Protocol):
    def check_available(self) -> None: ...
    def pull(self, image: str) -> None: ...
    def run_step(self, build: Build, step: Step, *, timeout: float | None, sink: Sink) -> StepOutcome: ...
    def cleanup(self, build: Build) -> None: ...


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _step_images(build: Build) -> List[str]:
    seen: List[str] = []
    for step in build.steps:
        if step.image not in seen:
            seen.append(step.image)
    return seen


def _pull_images(build: Build, executor: Executor) -> None:
    console = get_console()
    for image in _step_images(build):
        console.print_pull(image)
        executor.pull(image)


def _run_step(
    executor: Executor,
    build: Build,
    step: Step,
    timeout: float | None,
    log: Optional[BuildLog],
) -> Tuple[StepOutcome, float]:
    console = get_console()
    console.print_step_start(step)

    with (log.open_step(step) if log is not None else nullcontext()) as step_log:
        def sink(line: str) -> None:
            console.print_step_output(step, line)
            if step_log is not None:
                step_log.write_line(line)

        started = time.monotonic()
        outcome = executor.run_step(build, step, timeout=timeout, sink=sink)
        return outcome, time.monotonic() - started


def _record_outcome(step: Step, res: StepResult, outcome: StepOutcome, duration: float) -> None:
    res.exit_code = outcome.exit_code
    res.duration = duration
    if outcome.timed_out:
        res.status = "timeout"
        res.error = f"step '{step.id}' timed out after {duration:.1f}s"
    elif outcome.exit_code == 0:
        res.status = "ok"
    elif step.exit_allowed(outcome.exit_code):
        res.status = "allowed-failure"
    else:
        res.status = "failed"
        res.error = str(StepFailure(step=step.id, image=step.image, exit_code=outcome.exit_code,
                                    output_tail=outcome.output_tail))


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_build(
    build: Build,
    executor: Executor,
    *,
    log: Optional[BuildLog] = None,
    pull: bool = True,
    fail_fast: bool = True,
    max_workers: int | None = None,
    warnings: List[Problem] | None = None,
) -> BuildResult:
    """
    Run every step of a resolved build.

    Steps start as soon as the steps they wait for have succeeded. The
    whole build shares one time budget (build.timeout); a step's own
    timeout is capped by what is left of it. After the first failure no
    new steps are started (unless fail_fast is off, in which case only
    the dependents of failed steps are skipped).
    """
    console = get_console()
    started = time.monotonic()
    deadline = started + build.timeout
    results: Dict[int, StepResult] = {s.index: StepResult(id=s.id, image=s.image) for s in build.steps}
    by_index = {s.index: s for s in build.steps}

    failed = False
    timed_out = False
    error: Optional[str] = None

    try:
        executor.check_available()
        if pull:
            _pull_images(build, executor)

        adj, indeg = build_graph(build.steps)
        ready: List[int] = sorted(i for i, d in indeg.items() if d == 0)
        in_flight: Dict[Future, Tuple[int, bool]] = {}

        if max_workers is None:
            max_workers = max(1, len(build.steps))

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            while ready or in_flight:
                # start ready steps up to the worker limit; the rest stay in `ready`
                while ready and len(in_flight) < max_workers:
                    if (fail_fast and failed) or timed_out:
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        timed_out = True
                        break
                    step = by_index[ready.pop(0)]
                    capped = step.timeout is None or step.timeout >= remaining
                    step_timeout = remaining if capped else step.timeout
                    fut = pool.submit(_run_step, executor, build, step, step_timeout, log)
                    in_flight[fut] = (step.index, capped)

                if not in_flight:
                    break

                done, _pending = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    index, capped = in_flight.pop(fut)
                    step = by_index[index]
                    res = results[index]
                    try:
                        outcome, duration = fut.result()
                        _record_outcome(step, res, outcome, duration)
                    except Exception as e:
                        res.status = "failed"
                        res.error = str(e)

                    console.print_step_finished(step, res)

                    if res.status == "timeout" and capped:
                        timed_out = True
                    if res.succeeded:
                        for nxt in adj[index]:
                            indeg[nxt] -= 1
                            if indeg[nxt] == 0:
                                ready.append(nxt)
                        ready.sort()
                    else:
                        failed = True
                        error = error or res.error
    except BuildError as e:
        failed = True
        error = str(e)
    finally:
        executor.cleanup(build)

    for res in results.values():
        if res.status == "pending":
            res.status = "cancelled"

    if timed_out:
        status = "timeout"
        error = f"build exceeded its timeout of {format_duration(build.timeout)}"
    elif failed:
        status = "failure"
    else:
        status = "success"

    result = BuildResult(
        build_id=build.build_id,
        status=status,
        steps=[results[s.index] for s in build.steps],
        duration=time.monotonic() - started,
        error=error,
    )
    if log is not None:
        log.write_summary(build, result, warnings=warnings)
    return result
