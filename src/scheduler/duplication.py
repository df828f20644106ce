"""
Duplication Engine for the Job Scheduler.

Clones a job together with the part of the dependency graph that has to
restart with it:

Parallel edges
- parents are cloned (a scheduled parent is linked as-is, an already
  cloned parent is followed to its latest clone)
- children are cloned, except done ones; a scheduled child is re-routed
  to the clone

Chained edges
- parents are never cloned, the clone is linked to the same parents
- children are cloned; a scheduled child is re-routed to the clone

The clone row and the origin's clone_id are written in one transaction,
the clone_id update only succeeds while it is still unset. A caller that
loses that race gets an empty result and nothing is left behind.
"""

import logging
from typing import Optional

from .assets import AssetResolver
from .entities import (
    DependencyKind,
    EXECUTION_STATES,
    FailureReason,
    FINAL_STATES,
    Job,
    JobResult,
    JobState,
    Outcome,
    WorkerCommand,
)
from .errors import CloneConflictError
from .graph import DependencyGraph
from .persistence import PersistenceAdapter
from .view import JobView


logger = logging.getLogger(__name__)

# Settings that belong to one job instance and are not copied to clones
PER_INSTANCE_SETTINGS = {"NAME", "TEST", "JOBTOKEN"}

# Bound on following clone_id pointers (guards against a corrupted chain)
MAX_CLONE_CHAIN_STEPS = 100


class DuplicationEngine:
    """
    Creates clones of jobs and rewires their dependency edges.

    jobs_map, threaded through the recursion, maps job id to 0 while the
    job is being processed and to its clone once done.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        graph: DependencyGraph,
        assets: AssetResolver,
        command_sink,
    ):
        self.persistence = persistence
        self.graph = graph
        self.assets = assets
        self.command_sink = command_sink

    @staticmethod
    def can_duplicate(job: Job) -> bool:
        """Only started or finished jobs without a clone can be duplicated."""
        if job.state not in EXECUTION_STATES + FINAL_STATES:
            return False
        return job.clone_id is None

    # =========================================================================
    # Clone Chain Helpers
    # =========================================================================

    def _latest_clone(self, job: Job) -> Job:
        """Follow clone_id to the end of the chain, bounded."""
        seen = {job.id}
        current = job
        for _ in range(MAX_CLONE_CHAIN_STEPS):
            if current.clone_id is None or current.clone_id in seen:
                return current
            seen.add(current.clone_id)
            next_job = self.persistence.get_job(current.clone_id)
            if next_job is None:
                return current
            current = next_job
        logger.warning(f"Clone chain of job {job.id} longer than {MAX_CLONE_CHAIN_STEPS} steps")
        return current

    def _duplicate_related(self, job: Job, jobs_map: dict) -> tuple[Optional[Job], dict]:
        """
        Duplicate a parent or child, walking its clone chain if needed.

        Returns:
            (job to link against or None, duplicated jobs by original id)
        """
        current = job
        for _ in range(MAX_CLONE_CHAIN_STEPS):
            dups = self.duplicate(current, jobs_map=jobs_map)
            if dups:
                return dups[current.id], dups

            current = self.persistence.get_job(current.id)
            if current is None:
                return None, {}
            if self.can_duplicate(current):
                continue
            if current.state == JobState.SCHEDULED:
                # not started yet, just route dependencies to it
                return current, {current.id: current}
            if current.clone_id is None:
                return None, {}

            current = self._latest_clone(current)
            if current.id in jobs_map:
                return jobs_map[current.id] or None, {}

        logger.warning(f"Giving up duplicating job {job.id} through its clone chain")
        return None, {}

    # =========================================================================
    # Duplication
    # =========================================================================

    def duplicate(
        self,
        job: Job,
        priority: Optional[int] = None,
        retry_avbl: Optional[int] = None,
        jobs_map: Optional[dict] = None,
    ) -> dict:
        """
        Clone job and the jobs that must restart with it.

        Args:
            job: Snapshot of the job to clone
            priority: Priority of the clone (default: inherited)
            retry_avbl: Retries of the clone (default: inherited)
            jobs_map: Shared recursion state, callers leave it out

        Returns:
            {original id: resulting job}, empty if nothing was created
        """
        if not self.can_duplicate(job):
            return {}
        if jobs_map is None:
            jobs_map = {}
        jobs_map[job.id] = 0

        duplicated: dict = {}
        parents_parallel: list[Job] = []
        parents_chained: list[Job] = []
        children: list[tuple[DependencyKind, Job]] = []

        # parents first
        for edge in self.graph.parent_edges(job.id):
            parent = self.persistence.get_job(edge.parent_job_id)
            if parent is None:
                continue

            if parent.id not in jobs_map:
                if edge.kind == DependencyKind.PARALLEL:
                    target, dups = self._duplicate_related(parent, jobs_map)
                    duplicated.update(dups)
                    if target is not None:
                        parents_parallel.append(target)
                else:
                    # chained ancestry is shared, not cloned
                    parents_chained.append(parent)
            elif jobs_map[parent.id]:
                if edge.kind == DependencyKind.PARALLEL:
                    parents_parallel.append(jobs_map[parent.id])
                else:
                    parents_chained.append(parent)
            # else the parent is being processed and we are its descendant

        for edge in self.graph.child_edges(job.id):
            child = self.persistence.get_job(edge.child_job_id)
            if child is None or child.id in duplicated:
                continue
            if edge.kind == DependencyKind.PARALLEL and child.state == JobState.DONE:
                continue

            if child.id not in jobs_map:
                target, dups = self._duplicate_related(child, jobs_map)
                if target is not None and target.id == edge.child_job_id and target.state == JobState.SCHEDULED:
                    self.persistence.delete_dependency(job.id, child.id, edge.kind)
                duplicated.update(dups)
                if target is not None:
                    children.append((edge.kind, target))
            elif jobs_map[child.id]:
                children.append((edge.kind, jobs_map[child.id]))

        clone = self._create_clone(job, priority, retry_avbl)
        if clone is None:
            return {}

        for parent in parents_parallel:
            self.persistence.add_dependency(parent.id, clone.id, DependencyKind.PARALLEL)
        for parent in parents_chained:
            self.persistence.add_dependency(parent.id, clone.id, DependencyKind.CHAINED)
        for kind, child in children:
            self.persistence.add_dependency(clone.id, child.id, kind)

        # links are in place, resolve assets against the new chained parents
        self.assets.register_assets_from_settings(
            clone.id, JobView(clone, self.persistence, self.graph).settings
        )

        jobs_map[job.id] = clone
        logger.info(f"Job {job.id} duplicated as {clone.id}")
        return {job.id: clone, **duplicated}

    def _create_clone(self, job: Job, priority: Optional[int], retry_avbl: Optional[int]) -> Optional[Job]:
        settings = [
            (key, value)
            for key, value in self.persistence.get_settings(job.id)
            if key not in PER_INSTANCE_SETTINGS
        ]
        clone = Job.create(
            job.TEST,
            DISTRI=job.DISTRI,
            VERSION=job.VERSION,
            FLAVOR=job.FLAVOR,
            ARCH=job.ARCH,
            BUILD=job.BUILD,
            MACHINE=job.MACHINE,
            group_id=job.group_id,
            priority=priority or job.priority,
            retry_avbl=job.retry_avbl if retry_avbl is None else retry_avbl,
        )
        try:
            return self.persistence.atomic_create_clone(job.id, clone, settings)
        except CloneConflictError as e:
            # somebody else was faster
            logger.debug(f"Rollback duplicate of job {job.id}: {e}")
            return None

    # =========================================================================
    # Restart
    # =========================================================================

    def abort_members(self, root_id: int, job_ids, result: JobResult) -> int:
        """
        Flag executing jobs other than root_id and send them abort.

        Returns:
            Number of jobs an abort was sent for
        """
        count = 0
        for member in self.persistence.get_jobs(i for i in job_ids if i != root_id):
            if not member.is_executing():
                continue
            self.persistence.set_result_if_none(member.id, result)
            worker = self.persistence.get_worker_for_job(member.id)
            if worker is None:
                continue
            logger.debug(f"Enqueuing abort for job {member.id} on worker {worker.id}")
            self.command_sink.send_command(worker, WorkerCommand.ABORT, member.id)
            count += 1
        return count

    def auto_duplicate(self, job_id: int, automatic: bool = False, priority: Optional[int] = None) -> Outcome:
        """
        Restart a job with its dependency cluster.

        Automatic restarts consume one retry and fail once none are left;
        manual restarts keep the counter (at least 1).

        Returns:
            Outcome with the clone of job_id
        """
        job = self.persistence.require_job(job_id)

        if automatic:
            if job.retry_avbl <= 0:
                logger.warning(
                    f"Could not auto-duplicate job {job_id}, it was auto-duplicated too many times. "
                    f"Please restart the job manually."
                )
                return Outcome.failure(FailureReason.RETRIES_EXHAUSTED, "No retries available")
            retry_avbl = job.retry_avbl - 1
        else:
            retry_avbl = job.retry_avbl if job.retry_avbl > 0 else 1

        clones = self.duplicate(job, priority=priority, retry_avbl=retry_avbl)
        if not clones:
            logger.debug(f"Duplication of job {job_id} failed")
            current = self.persistence.get_job(job_id)
            if current is not None and current.clone_id is not None:
                return Outcome.failure(FailureReason.ALREADY_CLONED, f"Job {job_id} already has clone {current.clone_id}")
            return Outcome.failure(FailureReason.NOT_DUPLICABLE, f"Job {job_id} cannot be duplicated in state {job.state.value}")

        # abort jobs restarted because of dependencies
        self.abort_members(job_id, clones.keys(), JobResult.PARALLEL_RESTARTED)
        return Outcome.success(clones[job_id])
