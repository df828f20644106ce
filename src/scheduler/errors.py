"""
Scheduler-specific exceptions.

Precondition failures (no worker, retries exhausted, already cloned) are
not exceptions: they come back as Outcome values. The classes here cover
lookups that fail and the optimistic-lock signal used to roll back a
clone transaction.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation violates scheduler invariants.

    Examples:
    - Creating a dependency edge from a job to itself
    - Unknown dependency kind
    """
    pass


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class WorkerNotFoundError(SchedulerError):
    """Raised when a requested worker does not exist."""

    def __init__(self, worker_id: int):
        self.worker_id = worker_id
        super().__init__(f"Worker not found: {worker_id}")


class ConcurrencyViolationError(SchedulerError):
    """
    Raised when a conditional write affected no rows.

    Another caller changed the row between our read and our write.
    """

    def __init__(self, job_id: int, detail: str):
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Concurrency violation for job {job_id}: {detail}")


class CloneConflictError(ConcurrencyViolationError):
    """
    Raised inside the clone transaction when the origin already has a clone.

    The transaction is rolled back, so the freshly inserted clone row and
    its settings disappear with it.
    """

    def __init__(self, job_id: int):
        super().__init__(job_id, "there is already a clone")


class NetworkAllocationError(SchedulerError):
    """Raised when no free VLAN tag could be claimed for a network."""

    def __init__(self, job_id: int, name: str):
        self.job_id = job_id
        self.name = name
        super().__init__(f"Could not allocate a VLAN for network '{name}' of job {job_id}")
