"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty database in a temporary file
  - Asset, result and image directories under tmp_path
  - Recording worker command sink

Factory fixtures:
  - create_job: job with scenario defaults, state/result and settings
  - add_dep: dependency edge
  - add_module: module with a result
  - create_worker: worker, optionally executing a job
"""

import itertools
import tempfile
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from src.infra.worker_commands import RecordingCommandSink
from src.scheduler import (
    DependencyKind,
    Job,
    JobModule,
    JobResult,
    JobState,
    ModuleResult,
    PersistenceAdapter,
    SchedulerService,
    Worker,
)


DEFAULT_SCENARIO = {
    "DISTRI": "sle",
    "VERSION": "15",
    "FLAVOR": "dvd",
    "ARCH": "x86_64",
    "BUILD": "100",
}

CARRY_OVER_CONFIG = {"lookup_depth": 10, "state_changes_limit": 3}


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    return PersistenceAdapter(temp_db_path)


@pytest.fixture(autouse=True)
def data_dirs(tmp_path: Path, monkeypatch) -> dict:
    """Point asset, result and image directories at tmp_path."""
    dirs = {
        "assets": tmp_path / "assets",
        "results": tmp_path / "testresults",
        "images": tmp_path / "images",
    }
    for path in dirs.values():
        path.mkdir()
    monkeypatch.setenv("ASSET_DIR", str(dirs["assets"]))
    monkeypatch.setenv("RESULT_DIR", str(dirs["results"]))
    monkeypatch.setenv("IMAGES_DIR", str(dirs["images"]))
    return dirs


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def command_sink() -> RecordingCommandSink:
    """Worker command sink that keeps every command."""
    return RecordingCommandSink()


@pytest.fixture
def service(persistence: PersistenceAdapter, command_sink: RecordingCommandSink) -> SchedulerService:
    """SchedulerService wired to the test database and recording sink."""
    return SchedulerService(persistence, command_sink, carry_over_config=CARRY_OVER_CONFIG)


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def create_job(persistence: PersistenceAdapter) -> Callable:
    """
    Factory fixture for creating jobs.

    Scenario columns default to sle-15-dvd-x86_64 build 100.
    """

    def _create(
        TEST: str = "install",
        state: JobState = JobState.SCHEDULED,
        result: JobResult = JobResult.NONE,
        settings=None,
        **columns,
    ) -> Job:
        values = {**DEFAULT_SCENARIO, **columns}
        job = Job.create(TEST, state=state, result=result, **values)
        return persistence.create_job(job, settings=settings)

    return _create


@pytest.fixture
def add_dep(persistence: PersistenceAdapter) -> Callable:
    """Factory fixture for dependency edges (parent -> child)."""

    def _add(parent: Job, child: Job, kind: DependencyKind = DependencyKind.PARALLEL) -> None:
        persistence.add_dependency(parent.id, child.id, kind)

    return _add


@pytest.fixture
def add_module(persistence: PersistenceAdapter) -> Callable:
    """Factory fixture for job modules."""

    def _add(
        job: Job,
        name: str,
        result: ModuleResult = ModuleResult.PASSED,
        important: bool = True,
        category: str = "tests",
    ) -> JobModule:
        module = persistence.upsert_module(job.id, name, category=category, important=important)
        if result != ModuleResult.NONE:
            persistence.set_module_result(module.id, result)
        return persistence.get_module(job.id, name)

    return _add


@pytest.fixture
def create_worker(persistence: PersistenceAdapter) -> Callable:
    """Factory fixture for workers; a given job is assigned to the worker."""
    instances = itertools.count(1)

    def _create(job: Optional[Job] = None, host: str = "worker1") -> Worker:
        worker = persistence.create_worker(host, next(instances))
        if job is not None:
            persistence.assign_worker(worker.id, job.id)
        return persistence.get_worker(worker.id)

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_job_state(persistence: PersistenceAdapter, job_id: int, state: JobState, result: JobResult):
    """Assert a job has the expected state and result."""
    job = persistence.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert (job.state, job.result) == (state, result), (
        f"Expected {state.value}/{result.value}, got {job.state.value}/{job.result.value}"
    )
