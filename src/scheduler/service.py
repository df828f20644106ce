"""
Scheduler Service - entry point for the excluded API and worker layers.

This service wires all scheduler components:
- PersistenceAdapter (storage)
- DependencyGraph (edge queries)
- CascadePropagator (failure propagation)
- NetworkAllocator / AssetResolver (resources)
- JobStateMachine (status, done, cancel)
- DuplicationEngine (clone/restart)

Every operation returns an Outcome; unknown job ids come back as
FailureReason.JOB_NOT_FOUND instead of raising.

Usage:
    service = SchedulerService.create(db_path)
    outcome = service.auto_duplicate(job_id)
    if outcome:
        print(outcome.value.id)
"""

import logging
import shutil
from pathlib import Path
from typing import Iterable, Optional

from src.infra.data_paths import get_db_path, get_num_prefix_dir
from src.infra.worker_commands import WorkerCommandSink, create_command_sink

from .assets import AssetResolver
from .cascade import CascadePropagator
from .duplication import DuplicationEngine
from .entities import FailureReason, JobResult, Outcome, WorkerCommand
from .graph import DependencyGraph
from .networks import NetworkAllocator
from .persistence import PersistenceAdapter
from .schemas import StatusReport
from .state_machine import JobStateMachine
from .view import JobView


logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Coordinates the scheduler components.

    Provides:
    - Component initialization and wiring
    - Outcome-returning methods for job operations
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        command_sink: Optional[WorkerCommandSink] = None,
        carry_over_config: Optional[dict] = None,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for construction from configuration.
        """
        self.persistence = persistence
        self.command_sink = command_sink or WorkerCommandSink()
        self.graph = DependencyGraph(persistence)
        self.cascade = CascadePropagator(persistence, self.graph, self.command_sink)
        self.networks = NetworkAllocator(persistence, self.graph)
        self.assets = AssetResolver(persistence, self.graph)
        self.state_machine = JobStateMachine(
            persistence,
            self.cascade,
            self.networks,
            self.command_sink,
            carry_over_config=carry_over_config,
        )
        self.duplication = DuplicationEngine(persistence, self.graph, self.assets, self.command_sink)

    @classmethod
    def create(
        cls,
        db_path: Optional[str | Path] = None,
        command_sink: Optional[WorkerCommandSink] = None,
    ) -> "SchedulerService":
        """
        Create a SchedulerService from configuration.

        Args:
            db_path: Path to SQLite database (default: SCHEDULER_DB_PATH)
            command_sink: Worker command sink (default: from WORKER_COMMAND_* settings)

        Returns:
            Configured SchedulerService
        """
        db_path = Path(db_path) if db_path else get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(
            persistence=PersistenceAdapter(db_path),
            command_sink=command_sink or create_command_sink(),
        )

    def _not_found(self, job_id: int) -> Outcome:
        logger.info(f"Job {job_id} does not exist")
        return Outcome.failure(FailureReason.JOB_NOT_FOUND, f"Job not found: {job_id}")

    def view(self, job_id: int) -> Optional[JobView]:
        job = self.persistence.get_job(job_id)
        if job is None:
            return None
        return JobView(job, self.persistence, self.graph)

    # =========================================================================
    # Read Operations
    # =========================================================================

    def job_summary(self, job_id: int, include_assets: bool = False, include_deps: bool = False) -> Outcome:
        view = self.view(job_id)
        if view is None:
            return self._not_found(job_id)
        return Outcome.success(view.to_summary(include_assets=include_assets, include_deps=include_deps))

    # =========================================================================
    # Lifecycle Operations
    # =========================================================================

    def update_status(self, job_id: int, report: StatusReport) -> Outcome:
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return self.state_machine.update_status(job_id, report)

    def done(
        self,
        job_id: int,
        force_new_build: bool = False,
        result: Optional[JobResult] = None,
    ) -> Outcome:
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return Outcome.success(
            self.state_machine.done(job_id, force_new_build=force_new_build, result=result)
        )

    def cancel(self, job_id: int, obsoleted: bool = False) -> Outcome:
        """Outcome value is the number of affected jobs (0: already had a result)."""
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return Outcome.success(self.state_machine.cancel(job_id, obsoleted=obsoleted))

    def duplicate(
        self,
        job_id: int,
        priority: Optional[int] = None,
        retry_avbl: Optional[int] = None,
    ) -> Outcome:
        """Outcome value is {original id: resulting job}."""
        job = self.persistence.get_job(job_id)
        if job is None:
            return self._not_found(job_id)

        clones = self.duplication.duplicate(job, priority=priority, retry_avbl=retry_avbl)
        if clones:
            return Outcome.success(clones)

        current = self.persistence.get_job(job_id)
        if current is not None and current.clone_id is not None:
            return Outcome.failure(FailureReason.ALREADY_CLONED, f"Job {job_id} already has clone {current.clone_id}")
        return Outcome.failure(FailureReason.NOT_DUPLICABLE, f"Job {job_id} cannot be duplicated")

    def auto_duplicate(self, job_id: int, automatic: bool = False, priority: Optional[int] = None) -> Outcome:
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return self.duplication.auto_duplicate(job_id, automatic=automatic, priority=priority)

    def restart_jobs(self, job_ids: Iterable[int]) -> Outcome:
        """
        Manually restart several jobs.

        Originals still executing without a result become user_restarted
        and their workers are told to abort.

        Returns:
            Outcome with {original id: clone id} of the restarted jobs
        """
        job_ids = list(job_ids)
        restarted: dict[int, int] = {}
        for job_id in job_ids:
            outcome = self.auto_duplicate(job_id)
            if outcome:
                restarted[job_id] = outcome.value.id
            else:
                logger.info(f"Job {job_id} not restarted: {outcome.reason.value}")

        for job in self.persistence.get_jobs(job_ids):
            if not job.is_executing():
                continue
            self.persistence.set_result_if_none(job.id, JobResult.USER_RESTARTED)
            worker = self.persistence.get_worker_for_job(job.id)
            self.command_sink.send_command(worker, WorkerCommand.ABORT, job.id)

        return Outcome.success(restarted)

    # =========================================================================
    # Resources
    # =========================================================================

    def allocate_network(self, job_id: int, name: str) -> Outcome:
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return Outcome.success(self.networks.allocate(job_id, name))

    def register_assets(self, job_id: int) -> Outcome:
        """
        Resolve and link the job's assets, rewriting settings to the
        resolved file names.
        """
        view = self.view(job_id)
        if view is None:
            return self._not_found(job_id)

        updated = self.assets.register_assets_from_settings(job_id, view.settings)
        for key, name in updated.items():
            if view.settings.get(key) != name:
                self.persistence.set_setting(job_id, key, name)
        return Outcome.success(updated)

    # =========================================================================
    # Administration
    # =========================================================================

    def set_priority(self, job_id: int, priority: int) -> Outcome:
        if self.persistence.get_job(job_id) is None:
            return self._not_found(job_id)
        return Outcome.success(self.state_machine.set_priority(job_id, priority))

    def delete_job(self, job_id: int) -> Outcome:
        """Delete a job, its owned records and its result directory."""
        job = self.persistence.get_job(job_id)
        if job is None:
            return self._not_found(job_id)

        self.persistence.delete_job(job_id)
        if job.result_dir:
            result_dir = get_num_prefix_dir(job_id) / job.result_dir
            if result_dir.is_dir():
                shutil.rmtree(result_dir)
        logger.info(f"Job {job_id} deleted")
        return Outcome.success(True)
