"""
Cascade Propagator Tests.

- skip is transitive through scheduled jobs, whatever the edge kind
- stop only follows Parallel edges into executing jobs
- both walks terminate on cyclic graphs
"""

from src.scheduler import DependencyKind, JobResult, JobState

from .conftest import assert_job_state


class TestSkipChildren:

    def test_skip_is_transitive(self, service, create_job, add_dep):
        """A -> B -> C, all scheduled, mixed edge kinds: both skipped."""
        a = create_job(state=JobState.RUNNING)
        b = create_job()
        c = create_job()
        add_dep(a, b, DependencyKind.CHAINED)
        add_dep(b, c, DependencyKind.PARALLEL)

        count = service.cascade.skip_children(a.id)

        assert count == 2
        assert_job_state(service.persistence, b.id, JobState.CANCELLED, JobResult.SKIPPED)
        assert_job_state(service.persistence, c.id, JobState.CANCELLED, JobResult.SKIPPED)

    def test_skip_leaves_started_children(self, service, create_job, add_dep):
        a = create_job(state=JobState.RUNNING)
        running = create_job(state=JobState.RUNNING)
        grandchild = create_job()
        add_dep(a, running, DependencyKind.CHAINED)
        add_dep(running, grandchild, DependencyKind.CHAINED)

        assert service.cascade.skip_children(a.id) == 0
        assert_job_state(service.persistence, running.id, JobState.RUNNING, JobResult.NONE)
        assert_job_state(service.persistence, grandchild.id, JobState.SCHEDULED, JobResult.NONE)

    def test_skip_terminates_on_cycle(self, service, create_job, add_dep):
        a = create_job(state=JobState.RUNNING)
        b = create_job()
        c = create_job()
        add_dep(a, b, DependencyKind.CHAINED)
        add_dep(b, c, DependencyKind.CHAINED)
        add_dep(c, b, DependencyKind.PARALLEL)

        assert service.cascade.skip_children(a.id) == 2


class TestStopChildren:

    def test_stop_follows_parallel_edges(self, service, create_job, create_worker, add_dep, command_sink):
        a = create_job(state=JobState.RUNNING)
        b = create_job(state=JobState.RUNNING)
        c = create_job(state=JobState.WAITING)
        create_worker(b)
        create_worker(c)
        add_dep(a, b, DependencyKind.PARALLEL)
        add_dep(b, c, DependencyKind.PARALLEL)

        count = service.cascade.stop_children(a.id)

        assert count == 2
        assert_job_state(service.persistence, b.id, JobState.RUNNING, JobResult.PARALLEL_FAILED)
        assert_job_state(service.persistence, c.id, JobState.WAITING, JobResult.PARALLEL_FAILED)
        assert command_sink.commands_for(b.id) == ["cancel"]
        assert command_sink.commands_for(c.id) == ["cancel"]

    def test_stop_ignores_chained_children(self, service, create_job, create_worker, add_dep, command_sink):
        """An executing Chained child is an independent execution."""
        a = create_job(state=JobState.RUNNING)
        chained = create_job(state=JobState.RUNNING)
        create_worker(chained)
        add_dep(a, chained, DependencyKind.CHAINED)

        assert service.cascade.stop_children(a.id) == 0
        assert_job_state(service.persistence, chained.id, JobState.RUNNING, JobResult.NONE)
        assert command_sink.sent == []

    def test_stop_keeps_existing_result(self, service, create_job, create_worker, add_dep, command_sink):
        """Cancel is still sent when the child already has a result."""
        a = create_job(state=JobState.RUNNING)
        b = create_job(state=JobState.UPLOADING, result=JobResult.FAILED)
        create_worker(b)
        add_dep(a, b, DependencyKind.PARALLEL)

        assert service.cascade.stop_children(a.id) == 1
        assert_job_state(service.persistence, b.id, JobState.UPLOADING, JobResult.FAILED)
        assert command_sink.commands_for(b.id) == ["cancel"]

    def test_stop_without_worker(self, service, create_job, add_dep, command_sink):
        """A child without worker is flagged, nothing is sent."""
        a = create_job(state=JobState.RUNNING)
        b = create_job(state=JobState.RUNNING)
        add_dep(a, b, DependencyKind.PARALLEL)

        assert service.cascade.stop_children(a.id) == 1
        assert_job_state(service.persistence, b.id, JobState.RUNNING, JobResult.PARALLEL_FAILED)
        assert command_sink.sent == []

    def test_stop_terminates_on_cycle(self, service, create_job, add_dep):
        a = create_job(state=JobState.RUNNING)
        b = create_job(state=JobState.RUNNING)
        add_dep(a, b, DependencyKind.PARALLEL)
        add_dep(b, a, DependencyKind.PARALLEL)

        assert service.cascade.stop_children(a.id) == 1


class TestPropagate:

    def test_skip_and_stop_counted_together(self, service, create_job, create_worker, add_dep, command_sink):
        """Failed A: scheduled chained child skipped, running parallel child stopped."""
        a = create_job(state=JobState.DONE, result=JobResult.FAILED)
        scheduled = create_job(TEST="chained")
        running = create_job(TEST="parallel", state=JobState.RUNNING)
        worker = create_worker(running)
        add_dep(a, scheduled, DependencyKind.CHAINED)
        add_dep(a, running, DependencyKind.PARALLEL)

        assert service.cascade.propagate(a.id) == 2
        assert_job_state(service.persistence, scheduled.id, JobState.CANCELLED, JobResult.SKIPPED)
        assert_job_state(service.persistence, running.id, JobState.RUNNING, JobResult.PARALLEL_FAILED)
        assert command_sink.sent == [(worker.id, "cancel", running.id)]
