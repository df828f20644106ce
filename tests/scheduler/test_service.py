"""
SchedulerService Tests.

Service-level behavior not covered by the component tests:
- unknown job ids come back as JOB_NOT_FOUND
- restart of several jobs
- administration (priority, deletion)
- construction from environment
"""

import pytest

from src.infra.worker_commands import HttpCommandSink, WorkerCommandSink
from src.scheduler import FailureReason, JobResult, JobState, SchedulerService
from src.scheduler.schemas import StatusReport

from .conftest import assert_job_state


class TestJobNotFound:

    @pytest.mark.parametrize(
        "call",
        [
            lambda s: s.job_summary(999),
            lambda s: s.update_status(999, StatusReport()),
            lambda s: s.done(999),
            lambda s: s.cancel(999),
            lambda s: s.duplicate(999),
            lambda s: s.auto_duplicate(999),
            lambda s: s.allocate_network(999, "fixed"),
            lambda s: s.register_assets(999),
            lambda s: s.set_priority(999, 10),
            lambda s: s.delete_job(999),
        ],
    )
    def test_unknown_job(self, service, call):
        outcome = call(service)
        assert not outcome
        assert outcome.reason == FailureReason.JOB_NOT_FOUND


class TestRestartJobs:

    def test_restart_several(self, service, create_job, create_worker, command_sink):
        failed = create_job(state=JobState.DONE, result=JobResult.FAILED)
        running = create_job(TEST="other", state=JobState.RUNNING)
        worker = create_worker(running)
        scheduled = create_job(TEST="later")

        outcome = service.restart_jobs([failed.id, running.id, scheduled.id])

        assert set(outcome.value) == {failed.id, running.id}
        assert outcome.value[failed.id] == service.persistence.get_job(failed.id).clone_id
        assert_job_state(service.persistence, failed.id, JobState.DONE, JobResult.FAILED)
        assert_job_state(service.persistence, running.id, JobState.RUNNING, JobResult.USER_RESTARTED)
        assert command_sink.sent == [(worker.id, "abort", running.id)]
        assert_job_state(service.persistence, scheduled.id, JobState.SCHEDULED, JobResult.NONE)

    def test_restart_twice(self, service, create_job):
        job = create_job(state=JobState.DONE, result=JobResult.FAILED)
        first = service.restart_jobs([job.id]).value

        assert service.restart_jobs([job.id]).value == {}
        assert first == {job.id: service.persistence.get_job(job.id).clone_id}


class TestAdministration:

    def test_set_priority(self, service, create_job):
        job = create_job()

        outcome = service.set_priority(job.id, 10)

        assert outcome.value.priority == 10
        assert service.persistence.get_job(job.id).priority == 10

    def test_delete_job_removes_result_dir(self, service, create_job, data_dirs):
        job = create_job(state=JobState.RUNNING)
        result_dir = service.state_machine.ensure_result_dir(job)
        (result_dir / "details-boot.json").write_text("[]")

        outcome = service.delete_job(job.id)

        assert outcome.ok
        assert service.persistence.get_job(job.id) is None
        assert not result_dir.exists()

    def test_delete_job_without_results(self, service, create_job):
        job = create_job()
        assert service.delete_job(job.id).ok


class TestCreate:

    def test_create_from_environment(self, tmp_path, monkeypatch):
        db_path = tmp_path / "nested" / "scheduler.sqlite"
        monkeypatch.setenv("SCHEDULER_DB_PATH", str(db_path))
        monkeypatch.delenv("WORKER_COMMAND_URL", raising=False)

        service = SchedulerService.create()

        assert db_path.exists()
        assert type(service.command_sink) is WorkerCommandSink

    def test_create_with_command_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WORKER_COMMAND_URL", "http://localhost:9526/api")

        service = SchedulerService.create(tmp_path / "scheduler.sqlite")

        assert isinstance(service.command_sink, HttpCommandSink)
        assert service.command_sink.command_url(3) == "http://localhost:9526/api/workers/3/commands"
