"""
Scheduler Domain Entities.

- Job: a scheduled test run for one scenario
- JobDependency: Parallel / Chained edge between two jobs
- JobModule: ordered test step belonging to a job
- Asset, NetworkAllocation, JobLock, Comment, Worker: satellite records
- Outcome: structured result handed back to callers of lifecycle operations

State and result values are stored as plain strings in SQLite.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobState(str, Enum):
    """Job state values."""

    SCHEDULED = "scheduled"
    SETUP = "setup"
    RUNNING = "running"
    WAITING = "waiting"
    UPLOADING = "uploading"
    DONE = "done"
    CANCELLED = "cancelled"


class JobResult(str, Enum):
    """
    Job result values, orthogonal to JobState.

    NONE means "not finalized yet". COMPLETE results are computed from
    modules, INCOMPLETE results are imposed from outside.
    """

    NONE = "none"
    PASSED = "passed"
    SOFTFAILED = "softfailed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"  # worker died or reported some problem
    SKIPPED = "skipped"  # dependencies failed before starting this job
    OBSOLETED = "obsoleted"  # new build was posted
    PARALLEL_FAILED = "parallel_failed"
    PARALLEL_RESTARTED = "parallel_restarted"
    USER_CANCELLED = "user_cancelled"
    USER_RESTARTED = "user_restarted"


class ModuleResult(str, Enum):
    """Result values of a single job module."""

    NONE = "none"
    RUNNING = "running"
    PASSED = "passed"
    SOFTFAILED = "softfailed"
    FAILED = "failed"
    SKIPPED = "skipped"


class DependencyKind(str, Enum):
    """Kind of a job dependency edge."""

    PARALLEL = "Parallel"
    CHAINED = "Chained"


class WorkerCommand(str, Enum):
    """Commands sent to workers through the command channel."""

    CANCEL = "cancel"
    ABORT = "abort"


class FailureReason(str, Enum):
    """Why a lifecycle operation did not produce its payload."""

    NO_WORKER_ASSIGNED = "no_worker_assigned"
    RETRIES_EXHAUSTED = "retries_exhausted"
    ALREADY_CLONED = "already_cloned"
    NOT_DUPLICABLE = "not_duplicable"
    JOB_NOT_FOUND = "job_not_found"


EXECUTION_STATES = (JobState.RUNNING, JobState.WAITING, JobState.UPLOADING)
FINAL_STATES = (JobState.DONE, JobState.CANCELLED)

COMPLETE_RESULTS = (JobResult.PASSED, JobResult.SOFTFAILED, JobResult.FAILED)
OK_RESULTS = (JobResult.PASSED, JobResult.SOFTFAILED)

# Scenario columns, MACHINE is appended with '@' when present
SCENARIO_KEYS = ("DISTRI", "VERSION", "FLAVOR", "ARCH", "TEST")
SCENARIO_WITH_MACHINE_KEYS = SCENARIO_KEYS + ("MACHINE",)

DEFAULT_PRIORITY = 50
DEFAULT_RETRY_AVBL = 3


def now_iso() -> str:
    """Get current time as ISO format string."""
    return datetime.utcnow().isoformat() + "Z"


@dataclass
class Job:
    """
    A unit of scheduled test work.

    Mutability rules:
    - id, scenario columns, BUILD, group_id: immutable
    - clone_id: set exactly once (compare-and-swap in persistence)
    - result: written once away from NONE, except by done()/cancel()
    """

    id: Optional[int]
    TEST: str
    DISTRI: str = ""
    VERSION: str = ""
    FLAVOR: str = ""
    ARCH: str = ""
    BUILD: str = ""
    MACHINE: Optional[str] = None
    state: JobState = JobState.SCHEDULED
    result: JobResult = JobResult.NONE
    priority: int = DEFAULT_PRIORITY
    retry_avbl: int = DEFAULT_RETRY_AVBL
    clone_id: Optional[int] = None
    group_id: Optional[int] = None
    assigned_worker_id: Optional[int] = None
    backend: Optional[str] = None
    backend_info: Optional[str] = None
    result_dir: Optional[str] = None
    t_started: Optional[str] = None
    t_finished: Optional[str] = None
    t_created: str = field(default_factory=now_iso)
    passed_module_count: int = 0
    failed_module_count: int = 0
    softfailed_module_count: int = 0
    skipped_module_count: int = 0

    @classmethod
    def create(cls, TEST: str, **columns: Any) -> "Job":
        """Create an unsaved Job, the id is assigned by persistence."""
        return cls(id=None, TEST=TEST, **columns)

    def scenario_columns(self) -> dict:
        """Scenario values keyed by column name (MACHINE included)."""
        return {key: getattr(self, key) for key in SCENARIO_WITH_MACHINE_KEYS}

    def is_executing(self) -> bool:
        return self.state in EXECUTION_STATES


@dataclass
class JobDependency:
    """Directed edge parent -> child."""

    parent_job_id: int
    child_job_id: int
    kind: DependencyKind


@dataclass
class JobModule:
    """
    Ordered, named test step of one job.

    important=False means a failure here never blocks an overall pass.
    """

    id: int
    job_id: int
    name: str
    category: Optional[str] = None
    script: Optional[str] = None
    result: ModuleResult = ModuleResult.NONE
    important: bool = True
    fatal: bool = False
    milestone: bool = False
    t_updated: str = field(default_factory=now_iso)


@dataclass
class Asset:
    id: int
    type: str
    name: str


@dataclass
class NetworkAllocation:
    job_id: int
    name: str
    vlan: int


@dataclass
class JobLock:
    id: int
    name: str
    owner: int
    locked_by: Optional[int] = None


@dataclass
class Comment:
    id: int
    job_id: int
    user_id: Optional[int]
    text: str
    t_created: str = field(default_factory=now_iso)


@dataclass
class Worker:
    """Fleet capacity; holds at most one active job."""

    id: int
    host: str
    instance: int = 1
    job_id: Optional[int] = None
    t_seen: Optional[str] = None


@dataclass
class Outcome:
    """
    Structured result of a lifecycle operation.

    Precondition failures are reported here instead of being raised, so
    that the job is left untouched and the caller decides what to do.
    """

    ok: bool
    value: Any = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: FailureReason, message: Optional[str] = None) -> "Outcome":
        return cls(ok=False, reason=reason, message=message)

    def __bool__(self) -> bool:
        return self.ok
