"""
Job State Machine for the Job Scheduler.

Owns the state/result transitions of a single job and their side effects:

    scheduled -> setup -> running <-> waiting -> uploading -> done
    (any non-final state) -> cancelled

- update_status: worker progress reports (logs, modules, running/waiting)
- done: finalization, resource cleanup, failure cascade, bugref carry-over
- cancel: first-writer-wins cancellation with cascade

What the state machine MUST NOT do:
- Create clones (DuplicationEngine)
- Overwrite a result that is already set, except through done()/cancel()
"""

import logging
import re
from typing import Iterable, Optional

from src.infra.data_paths import get_carry_over_config

from . import artifacts
from .cascade import CascadePropagator
from .entities import (
    Comment,
    EXECUTION_STATES,
    FailureReason,
    Job,
    JobModule,
    JobResult,
    JobState,
    ModuleResult,
    OK_RESULTS,
    Outcome,
    WorkerCommand,
)
from .networks import NetworkAllocator
from .persistence import PersistenceAdapter
from .schemas import ModuleReport, ModuleSpec, StatusReport, StatusUpdate
from .view import display_name


logger = logging.getLogger(__name__)

JOBTOKEN_KEY = "JOBTOKEN"
AUTOMATIC_TAKEOVER = "Automatic takeover"

# Comments referencing a bug tracker entry, e.g. "bsc#1234", "poo#42"
BUGREF_REGEX = re.compile(r"\b(?:poo|bsc|boo|bnc|bgo|brc|fdo|kde|gh|jsc)#[\w/.-]+")

# Raw worker module results -> stored module results
_WORKER_MODULE_RESULTS = {
    "ok": ModuleResult.PASSED,
    "fail": ModuleResult.FAILED,
    "softfail": ModuleResult.SOFTFAILED,
    "na": ModuleResult.NONE,
    "unk": ModuleResult.NONE,
    "skip": ModuleResult.SKIPPED,
}


def normalize_module_result(report: ModuleReport) -> ModuleResult:
    """Translate a worker module result, passed with dents counts as softfailed."""
    raw = report.result.lower()
    result = _WORKER_MODULE_RESULTS.get(raw)
    if result is None:
        try:
            result = ModuleResult(raw)
        except ValueError:
            logger.warning(f"Unknown module result '{report.result}', storing none")
            result = ModuleResult.NONE

    if result == ModuleResult.PASSED and report.dents:
        return ModuleResult.SOFTFAILED
    return result


def aggregate_result(modules: Iterable[JobModule]) -> JobResult:
    """
    Overall result of a module list.

    Unimportant modules count as passed whatever their result, so a job
    made only of ignore_failure modules passes. No modules at all fails.
    """
    overall: Optional[JobResult] = None
    for module in modules:
        if module.result == ModuleResult.PASSED or not module.important:
            overall = overall or JobResult.PASSED
        elif module.result == ModuleResult.SOFTFAILED:
            if overall is None or overall == JobResult.PASSED:
                overall = JobResult.SOFTFAILED
        else:
            overall = JobResult.FAILED
    return overall or JobResult.FAILED


class JobStateMachine:
    """
    State/result transitions of one job at a time.

    Cascades run through CascadePropagator, networks are released through
    NetworkAllocator and worker commands go out through the command sink.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        cascade: CascadePropagator,
        networks: NetworkAllocator,
        command_sink,
        carry_over_config: Optional[dict] = None,
    ):
        self.persistence = persistence
        self.cascade = cascade
        self.networks = networks
        self.command_sink = command_sink
        self.carry_over_config = carry_over_config or get_carry_over_config()

    # =========================================================================
    # Modules
    # =========================================================================

    def calculate_result(self, job_id: int) -> JobResult:
        return aggregate_result(self.persistence.get_modules(job_id))

    def insert_module(self, job_id: int, spec: ModuleSpec) -> JobModule:
        """Find-or-create by name; flags are refreshed on every call."""
        flags = spec.flags
        return self.persistence.upsert_module(
            job_id,
            spec.name,
            category=spec.category,
            script=spec.script,
            important=not flags.get("ignore_failure", False),
            fatal=bool(flags.get("fatal", False)),
            milestone=bool(flags.get("milestone", False)),
        )

    def insert_modules(self, job_id: int, specs: Iterable[ModuleSpec]) -> None:
        for spec in specs:
            self.insert_module(job_id, spec)

    def update_module(self, job: Job, name: str, report: ModuleReport) -> list[str]:
        """
        Store a module result and its details.

        Returns:
            Known image checksums referenced by the details
        """
        module = self.persistence.get_module(job.id, name)
        if module is None:
            logger.debug(f"Result for unknown module '{name}' of job {job.id} ignored")
            return []

        result_dir = self.ensure_result_dir(job)
        self.persistence.set_module_result(module.id, normalize_module_result(report))
        return artifacts.save_module_details(result_dir, name, report.details)

    def ensure_result_dir(self, job: Job):
        """Create (and record on first use) the job's result directory."""
        if not job.result_dir:
            dir_name = artifacts.result_dir_name(job.id, display_name(job))
            self.persistence.update_job(job.id, result_dir=dir_name)
            job.result_dir = dir_name
        return artifacts.create_result_dir(job.id, job.result_dir)

    # =========================================================================
    # Settings
    # =========================================================================

    def set_property(self, job_id: int, key: str, value: Optional[str] = None) -> None:
        """Set a single-valued setting; None removes it."""
        self.persistence.set_setting(job_id, key, value)

    def set_priority(self, job_id: int, priority: int) -> Job:
        logger.info(f"Job {job_id} priority set to {priority}")
        return self.persistence.update_job(job_id, priority=priority)

    # =========================================================================
    # Status Updates
    # =========================================================================

    def update_status(self, job_id: int, report: StatusReport) -> Outcome:
        """
        Apply a worker status report.

        Only running <-> waiting is toggled here; an uploading report moves
        the job to uploading and nothing else is applied.

        Returns:
            Outcome with a StatusUpdate, or NO_WORKER_ASSIGNED
        """
        job = self.persistence.require_job(job_id)
        worker = self.persistence.get_worker_for_job(job_id)
        if worker is None:
            logger.info(
                f"Got status update for job {job_id} with no worker assigned "
                f"(maybe running job already considered dead)"
            )
            return Outcome.failure(FailureReason.NO_WORKER_ASSIGNED, "No worker assigned")

        if report.uploading:
            self.persistence.set_state(
                job_id, JobState.UPLOADING, from_states=(JobState.RUNNING, JobState.WAITING)
            )
            return Outcome.success(StatusUpdate())

        tmpdir = self.persistence.get_worker_property(worker.id, "WORKER_TMPDIR")
        if report.log:
            artifacts.append_log(tmpdir, artifacts.LIVE_LOG_FILE, report.log.data)
        for chunk in (report.serial_log, report.serial_terminal):
            if chunk:
                artifacts.append_log(tmpdir, artifacts.SERIAL_TERMINAL_LIVE_FILE, chunk.data)

        if report.screen:
            try:
                artifacts.save_screenshot(tmpdir, report.screen.name, report.screen.png)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not store screenshot of job {job_id}: {e}")

        if report.backend:
            self.persistence.set_backend(job_id, report.backend.backend, report.backend.backend_info)

        if report.test_order:
            self.insert_modules(job_id, report.test_order)

        known: set[str] = set()
        if report.result:
            for name, module_report in report.result.items():
                known.update(self.update_module(job, name, module_report))
            self.persistence.refresh_module_counts(job_id)

        self.persistence.set_worker_property(worker.id, "INTERACTIVE", int(report.status.interactive))
        self.persistence.touch_worker(worker.id)

        if report.status.needinput:
            self.persistence.set_state(job_id, JobState.WAITING, from_states=(JobState.RUNNING,))
        else:
            self.persistence.set_state(job_id, JobState.RUNNING, from_states=(JobState.WAITING,))

        return Outcome.success(
            StatusUpdate(
                job_result=self.calculate_result(job_id).value,
                known_images=sorted(known),
            )
        )

    # =========================================================================
    # Finalization
    # =========================================================================

    def done(
        self,
        job_id: int,
        force_new_build: bool = False,
        result: Optional[JobResult] = None,
    ) -> JobResult:
        """
        Finalize a job by setting it to DONE.

        Args:
            job_id: Job to finalize
            force_new_build: A newer build superseded this one (result obsoleted)
            result: Imposed result; computed from modules when omitted

        Returns:
            The result used for the transition
        """
        job = self.persistence.require_job(job_id)
        if job.state == JobState.DONE:
            logger.debug(f"Job {job_id} is already done ({job.result.value})")
            return job.result

        # cleanup
        self.set_property(job_id, JOBTOKEN_KEY, None)
        self.networks.release(job_id)
        self.persistence.release_locks(job_id)
        worker = self.persistence.get_worker_for_job(job_id)
        if worker is not None:
            self.persistence.release_worker(worker.id)

        if force_new_build:
            result = JobResult.OBSOLETED
        elif result is None:
            result = self.calculate_result(job_id)

        # a cancelled job keeps its result
        self.persistence.finish_job(job_id, result)
        logger.info(f"Job {job_id} done: {result.value}")

        if result not in OK_RESULTS:
            self.cascade.propagate(job_id)

        try:
            self.carry_over_bugrefs(job_id)
        except Exception as e:
            logger.warning(f"Bugref carry-over for job {job_id} failed: {e}")

        return result

    def cancel(self, job_id: int, obsoleted: bool = False) -> int:
        """
        Cancel a job that has no result yet.

        Returns:
            0 if a result was already recorded, otherwise 1 plus the number
            of jobs affected by the cascade
        """
        result = JobResult.OBSOLETED if obsoleted else JobResult.USER_CANCELLED
        previous_state = self.persistence.cancel_job(job_id, result)
        if previous_state is None:
            logger.debug(f"Job {job_id} already has a result, not cancelling")
            return 0

        logger.info(f"Job {job_id} cancelled ({result.value}), was {previous_state.value}")
        count = 1
        if previous_state in EXECUTION_STATES:
            worker = self.persistence.get_worker_for_job(job_id)
            self.command_sink.send_command(worker, WorkerCommand.CANCEL, job_id)
            count += self.cascade.propagate(job_id)
        return count

    # =========================================================================
    # Bugref Carry-over
    # =========================================================================

    def failure_reason(self, job_id: int) -> str:
        """'name:result' of every failed/softfailed module, or 'GOOD'."""
        failed = [
            f"{module.name}:{module.result.value}"
            for module in self.persistence.get_modules(job_id)
            if module.result in (ModuleResult.FAILED, ModuleResult.SOFTFAILED)
        ]
        return ",".join(failed) if failed else "GOOD"

    def carry_over_candidate(self, job: Job) -> Optional[Job]:
        """
        Previous job of the same scenario failing the same way.

        Gives up when the failure signature changed too often along the way.
        """
        current = self.failure_reason(job.id)
        if current == "GOOD":
            return None

        previous_reason = ""
        state_changes = 0
        limit = self.carry_over_config["state_changes_limit"]

        for previous in self.persistence.previous_scenario_jobs(job, self.carry_over_config["lookup_depth"]):
            reason = self.failure_reason(previous.id)
            logger.debug(f"Checking take over from {previous.id}: {reason} vs {current}")
            if reason == current:
                return previous
            if reason == previous_reason:
                continue

            previous_reason = reason
            state_changes += 1
            if state_changes > limit:
                logger.debug(f"Changed state more than {limit} times, aborting search")
                return None
        return None

    def carry_over_bugrefs(self, job_id: int) -> Optional[Comment]:
        """Copy the newest bugref comment of the carry-over candidate."""
        job = self.persistence.require_job(job_id)
        previous = self.carry_over_candidate(job)
        if previous is None:
            return None

        for comment in self.persistence.get_comments(previous.id, newest_first=True):
            if not BUGREF_REGEX.search(comment.text):
                continue
            text = comment.text
            if AUTOMATIC_TAKEOVER not in text:
                text += f"\n\n({AUTOMATIC_TAKEOVER} from t#{previous.id})\n"
            logger.info(f"Carrying over bugref from job {previous.id} to job {job_id}")
            return self.persistence.add_comment(job_id, text, user_id=comment.user_id)
        return None
