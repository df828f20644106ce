"""
Dependency Graph Accessor.

Typed queries over job_dependencies edges. Edges are stored as
(parent, child, kind); the graph is expected to be a DAG but nothing at
the storage layer enforces it, so every walker keeps its own visited set.
"""

from typing import Optional

from .entities import DependencyKind, Job
from .persistence import PersistenceAdapter


class DependencyGraph:
    """Read access to parents/children of a job, by kind."""

    def __init__(self, persistence: PersistenceAdapter):
        self.persistence = persistence

    def parent_edges(self, job_id: int, kind: Optional[DependencyKind] = None):
        return self.persistence.get_parent_edges(job_id, kind)

    def child_edges(self, job_id: int, kind: Optional[DependencyKind] = None):
        return self.persistence.get_child_edges(job_id, kind)

    def parent_ids(self, job_id: int, kind: Optional[DependencyKind] = None) -> list[int]:
        return [edge.parent_job_id for edge in self.parent_edges(job_id, kind)]

    def child_ids(self, job_id: int, kind: Optional[DependencyKind] = None) -> list[int]:
        return [edge.child_job_id for edge in self.child_edges(job_id, kind)]

    def children(self, job_id: int, kind: Optional[DependencyKind] = None) -> list[Job]:
        return self.persistence.get_jobs(self.child_ids(job_id, kind))

    def dependencies(self, job_id: int) -> dict:
        """
        Edge ids grouped by direction and kind:

            {"parents": {"Chained": [...], "Parallel": [...]},
             "children": {"Chained": [...], "Parallel": [...]}}
        """
        deps = {
            "parents": {kind.value: [] for kind in (DependencyKind.CHAINED, DependencyKind.PARALLEL)},
            "children": {kind.value: [] for kind in (DependencyKind.CHAINED, DependencyKind.PARALLEL)},
        }
        for edge in self.parent_edges(job_id):
            deps["parents"][edge.kind.value].append(edge.parent_job_id)
        for edge in self.child_edges(job_id):
            deps["children"][edge.kind.value].append(edge.child_job_id)
        return deps

    def chained_ancestors(self, job_id: int) -> list[int]:
        """
        Every job reachable through Chained parent edges, nearest first.

        Breadth-first with a visited set.
        """
        ancestors: list[int] = []
        seen = {job_id}
        frontier = [job_id]
        while frontier:
            next_frontier = []
            for current in frontier:
                for parent_id in self.parent_ids(current, DependencyKind.CHAINED):
                    if parent_id in seen:
                        continue
                    seen.add(parent_id)
                    ancestors.append(parent_id)
                    next_frontier.append(parent_id)
            frontier = next_frontier
        return ancestors

    def parallel_cluster(self, job_id: int) -> list[int]:
        """All jobs connected to job_id through Parallel edges (either way)."""
        cluster: list[int] = []
        seen: set[int] = set()
        stack = [job_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            cluster.append(current)
            stack.extend(self.parent_ids(current, DependencyKind.PARALLEL))
            stack.extend(self.child_ids(current, DependencyKind.PARALLEL))
        return cluster
