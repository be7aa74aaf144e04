# dag.py
from __future__ import annotations

from collections import Counter
from typing import Dict, List, Sequence, Set, Tuple

from .errors import CyclicDependencyError, DefinitionError
from .model import Job


def build_dag(jobs: Sequence[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Index the `needs` edges of a job list.

    Returns (adj, indeg): adj maps a job to the jobs that need it, indeg counts
    the distinct jobs each job needs.
    """
    counts = Counter(j.name for j in jobs)
    dupes = sorted(name for name, n in counts.items() if n > 1)
    if dupes:
        raise DefinitionError(f"Duplicate job names found: {dupes}")

    adj: Dict[str, Set[str]] = {name: set() for name in counts}
    indeg: Dict[str, int] = {}
    for job in jobs:
        needs = set(job.needs)
        unknown = sorted(needs - adj.keys())
        if unknown:
            raise DefinitionError(
                f"Job '{job.name}' needs missing job '{unknown[0]}'. "
                f"Known jobs: {sorted(adj)}"
            )
        for dep in needs:
            adj[dep].add(job.name)
        indeg[job.name] = len(needs)

    return adj, indeg


def find_cycle(adj: Dict[str, Set[str]]) -> List[str] | None:
    """Return one cycle as [a, b, ..., a], or None if the graph is acyclic."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in adj}
    stack: List[str] = []

    def visit(node: str) -> List[str] | None:
        color[node] = GREY
        stack.append(node)
        for child in sorted(adj.get(node, set())):
            if color[child] == GREY:
                return stack[stack.index(child):] + [child]
            if color[child] == WHITE:
                found = visit(child)
                if found:
                    return found
        stack.pop()
        color[node] = BLACK
        return None

    for n in sorted(adj):
        if color[n] == WHITE:
            found = visit(n)
            if found:
                return found
    return None


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Group jobs into stages: a stage holds every job whose needs all sit in
    earlier stages. Raises CyclicDependencyError if some jobs never qualify.
    """
    waiting = dict(indeg)
    stage = sorted(name for name, n in waiting.items() if n == 0)
    levels: List[List[str]] = []

    while stage:
        levels.append(stage)
        unlocked: Set[str] = set()
        for name in stage:
            del waiting[name]
            for dependent in adj.get(name, ()):
                waiting[dependent] -= 1
                if waiting[dependent] == 0:
                    unlocked.add(dependent)
        stage = sorted(unlocked)

    if waiting:
        cycle = find_cycle(adj) or sorted(waiting)
        raise CyclicDependencyError(cycle=tuple(cycle))

    return levels
