# plan.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Sequence, Set, Tuple

from .model import Step


def step_dependencies(steps: Sequence[Step]) -> Dict[int, List[int]]:
    """
    Map step index -> indices of the steps it waits for.

      - no waitFor     -> every earlier step
      - waitFor ["-"]  -> nothing (starts with the build)
      - waitFor [ids]  -> exactly those steps
    """
    by_id: Dict[str, int] = {}
    deps: Dict[int, List[int]] = {}

    for step in steps:
        if not step.wait_for:
            deps[step.index] = [s.index for s in steps if s.index < step.index]
        elif list(step.wait_for) == ["-"]:
            deps[step.index] = []
        else:
            wanted: List[int] = []
            for ref in step.wait_for:
                if ref not in by_id:
                    raise ValueError(
                        f"Step '{step.id}' waits for unknown or later step '{ref}'. "
                        f"Known earlier steps: {sorted(by_id)}"
                    )
                wanted.append(by_id[ref])
            deps[step.index] = wanted

        if step.has_explicit_id:
            by_id.setdefault(step.id, step.index)

    return deps


def build_graph(steps: Sequence[Step]) -> Tuple[Dict[int, Set[int]], Dict[int, int]]:
    """
    Build the step DAG.

    Returns (adj, indeg) where adj[a] holds the steps that wait for a.
    """
    deps = step_dependencies(steps)
    adj: Dict[int, Set[int]] = {s.index: set() for s in steps}
    indeg: Dict[int, int] = {s.index: 0 for s in steps}

    for index, wanted in deps.items():
        for dep in wanted:
            if index not in adj[dep]:
                adj[dep].add(index)
                indeg[index] += 1

    return adj, indeg


def topo_levels(adj: Dict[int, Set[int]], indeg: Dict[int, int]) -> List[List[int]]:
    """
    Convert the DAG into topological "stages".
    Steps in one stage may run at the same time.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[int]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[int] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(sorted(level))

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"Step graph has a cycle. Stuck steps: {remaining}")

    return levels


def build_plan(steps: Sequence[Step]) -> List[List[Step]]:
    """Execution stages as lists of steps, in start order."""
    adj, indeg = build_graph(steps)
    by_index = {s.index: s for s in steps}
    return [[by_index[i] for i in level] for level in topo_levels(adj, indeg)]
