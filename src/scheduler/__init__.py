"""
Job Scheduler Core Module.

Job state machine, dependency-graph duplication, cascade propagation and
resource resolution (assets, VLANs) over a SQLite entity store.
"""

from .entities import (
    JobState,
    JobResult,
    ModuleResult,
    DependencyKind,
    WorkerCommand,
    FailureReason,
    Job,
    JobDependency,
    JobModule,
    Asset,
    NetworkAllocation,
    JobLock,
    Comment,
    Worker,
    Outcome,
    EXECUTION_STATES,
    FINAL_STATES,
    OK_RESULTS,
)
from .errors import (
    SchedulerError,
    InvalidOperationError,
    JobNotFoundError,
    WorkerNotFoundError,
    ConcurrencyViolationError,
    CloneConflictError,
    NetworkAllocationError,
)
from .persistence import PersistenceAdapter
from .graph import DependencyGraph
from .view import JobView
from .cascade import CascadePropagator
from .networks import NetworkAllocator
from .assets import AssetResolver
from .state_machine import JobStateMachine
from .duplication import DuplicationEngine
from .service import SchedulerService

__all__ = [
    # Entities
    "JobState",
    "JobResult",
    "ModuleResult",
    "DependencyKind",
    "WorkerCommand",
    "FailureReason",
    "Job",
    "JobDependency",
    "JobModule",
    "Asset",
    "NetworkAllocation",
    "JobLock",
    "Comment",
    "Worker",
    "Outcome",
    "EXECUTION_STATES",
    "FINAL_STATES",
    "OK_RESULTS",
    # Errors
    "SchedulerError",
    "InvalidOperationError",
    "JobNotFoundError",
    "WorkerNotFoundError",
    "ConcurrencyViolationError",
    "CloneConflictError",
    "NetworkAllocationError",
    # Components
    "PersistenceAdapter",
    "DependencyGraph",
    "JobView",
    "CascadePropagator",
    "NetworkAllocator",
    "AssetResolver",
    "JobStateMachine",
    "DuplicationEngine",
    "SchedulerService",
]
