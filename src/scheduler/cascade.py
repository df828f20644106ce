"""
Cascade Propagator for the Job Scheduler.

Forward propagation after a job ends with a non-OK result:
- skip: every not-yet-started descendant becomes cancelled/skipped,
  whatever the edge kind
- stop: every executing Parallel descendant is flagged parallel_failed
  and its worker told to cancel

What the propagator MUST NOT do:
- Touch running Chained children (they are independent executions)
- Block on worker acknowledgement
"""

import logging
from typing import Optional

from .entities import DependencyKind, JobResult, WorkerCommand
from .graph import DependencyGraph
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)


class CascadePropagator:
    """
    Walks the dependency graph forward from a failed job.

    Both traversals carry a visited set; the graph is not guaranteed to
    be acyclic. Storage errors propagate.
    """

    def __init__(self, persistence: PersistenceAdapter, graph: DependencyGraph, command_sink):
        self.persistence = persistence
        self.graph = graph
        self.command_sink = command_sink

    def skip_children(self, job_id: int, visited: Optional[set] = None) -> int:
        """
        Skip scheduled children of job_id, transitively.

        Returns:
            Number of jobs moved to cancelled/skipped
        """
        if visited is None:
            visited = set()
        visited.add(job_id)

        count = 0
        for child_id in self.graph.child_ids(job_id):
            if child_id in visited:
                continue
            visited.add(child_id)
            if not self.persistence.skip_job(child_id):
                continue
            logger.info(f"Job {child_id} skipped, parent {job_id} did not pass")
            count += 1 + self.skip_children(child_id, visited)
        return count

    def stop_children(self, job_id: int, visited: Optional[set] = None) -> int:
        """
        Flag and cancel executing Parallel children of job_id, transitively.

        Returns:
            Number of jobs a cancel command was issued for
        """
        if visited is None:
            visited = set()
        visited.add(job_id)

        count = 0
        for child in self.graph.children(job_id, DependencyKind.PARALLEL):
            if child.id in visited:
                continue
            visited.add(child.id)
            if not child.is_executing():
                continue

            if self.persistence.set_result_if_none(child.id, JobResult.PARALLEL_FAILED):
                logger.info(f"Job {child.id} marked parallel_failed, parent {job_id} failed")

            worker = self.persistence.get_worker_for_job(child.id)
            self.command_sink.send_command(worker, WorkerCommand.CANCEL, child.id)
            count += 1 + self.stop_children(child.id, visited)
        return count

    def propagate(self, job_id: int) -> int:
        """Run skip and stop for a job that just failed."""
        return self.skip_children(job_id) + self.stop_children(job_id)
