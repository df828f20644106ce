"""
Bugref Carry-over Tests.

A failed job inherits the newest bugref comment of the previous job in
its scenario that failed the same way.
"""

import pytest

from src.scheduler import JobResult, JobState, ModuleResult
from src.scheduler.state_machine import AUTOMATIC_TAKEOVER, BUGREF_REGEX


@pytest.fixture
def finished_job(create_job, add_module):
    """Factory: done job whose modules have the given results."""

    def _create(modules: dict, result: JobResult = JobResult.FAILED, **columns):
        job = create_job(state=JobState.DONE, result=result, **columns)
        for name, module_result in modules.items():
            add_module(job, name, module_result)
        return job

    return _create


@pytest.fixture
def failing_job(create_job, add_module):
    """Factory: running job about to fail in the given modules."""

    def _create(*failed, **columns):
        job = create_job(state=JobState.RUNNING, **columns)
        add_module(job, "boot")
        for name in failed:
            add_module(job, name, ModuleResult.FAILED)
        return job

    return _create


class TestBugrefRegex:

    @pytest.mark.parametrize("text", ["bsc#1234", "see poo#42 for details", "gh#os-autoinst/openQA#1"])
    def test_matches(self, text):
        assert BUGREF_REGEX.search(text)

    @pytest.mark.parametrize("text", ["flaky again", "bsc 1234", "#1234"])
    def test_no_match(self, text):
        assert BUGREF_REGEX.search(text) is None


class TestCarryOver:

    def test_same_failure_inherits_bugref(self, service, finished_job, failing_job):
        previous = finished_job({"boot": ModuleResult.PASSED, "network": ModuleResult.FAILED})
        service.persistence.add_comment(previous.id, "bsc#1234", user_id=7)
        job = failing_job("network")

        service.done(job.id)

        comments = service.persistence.get_comments(job.id)
        assert len(comments) == 1
        assert comments[0].text.startswith("bsc#1234")
        assert f"({AUTOMATIC_TAKEOVER} from t#{previous.id})" in comments[0].text
        assert comments[0].user_id == 7

    def test_newest_bugref_comment_wins(self, service, finished_job, failing_job):
        previous = finished_job({"network": ModuleResult.FAILED})
        service.persistence.add_comment(previous.id, "poo#1 old")
        service.persistence.add_comment(previous.id, "poo#2 new")
        service.persistence.add_comment(previous.id, "just a remark")
        job = failing_job("network")

        service.done(job.id)

        assert service.persistence.get_comments(job.id)[0].text.startswith("poo#2 new")

    def test_takeover_note_not_repeated(self, service, finished_job, failing_job):
        previous = finished_job({"network": ModuleResult.FAILED})
        text = f"bsc#1\n\n({AUTOMATIC_TAKEOVER} from t#1)\n"
        service.persistence.add_comment(previous.id, text)
        job = failing_job("network")

        service.done(job.id)

        assert service.persistence.get_comments(job.id)[0].text == text

    def test_different_failure_not_inherited(self, service, finished_job, failing_job):
        previous = finished_job({"network": ModuleResult.FAILED})
        service.persistence.add_comment(previous.id, "bsc#1234")
        job = failing_job("desktop")

        service.done(job.id)

        assert service.persistence.get_comments(job.id) == []

    def test_passing_job_inherits_nothing(self, service, finished_job, create_job, add_module):
        previous = finished_job({"boot": ModuleResult.PASSED}, result=JobResult.PASSED)
        service.persistence.add_comment(previous.id, "bsc#1234")
        job = create_job(state=JobState.RUNNING)
        add_module(job, "boot")

        service.done(job.id)

        assert service.persistence.get_comments(job.id) == []

    def test_other_scenario_ignored(self, service, finished_job, failing_job):
        previous = finished_job({"network": ModuleResult.FAILED}, MACHINE="uefi")
        service.persistence.add_comment(previous.id, "bsc#1234")
        job = failing_job("network")

        service.done(job.id)

        assert service.persistence.get_comments(job.id) == []

    def test_incomplete_jobs_skipped(self, service, finished_job, failing_job):
        """Only jobs with a complete result are candidates."""
        previous = finished_job({"network": ModuleResult.FAILED}, result=JobResult.INCOMPLETE)
        service.persistence.add_comment(previous.id, "bsc#1234")
        job = failing_job("network")

        service.done(job.id)

        assert service.persistence.get_comments(job.id) == []

    def test_search_stops_after_state_changes_limit(self, service, finished_job, failing_job):
        """More distinct failures than the limit in between: give up."""
        match = finished_job({"network": ModuleResult.FAILED})
        service.persistence.add_comment(match.id, "bsc#1234")
        for name in ("a", "b", "c", "d"):
            finished_job({name: ModuleResult.FAILED})
        job = failing_job("network")

        service.done(job.id)

        assert service.persistence.get_comments(job.id) == []

    def test_repeated_failure_counts_once(self, service, finished_job, failing_job):
        match = finished_job({"network": ModuleResult.FAILED})
        service.persistence.add_comment(match.id, "bsc#1234")
        for _ in range(5):
            finished_job({"a": ModuleResult.FAILED})
        job = failing_job("network")

        service.done(job.id)

        assert len(service.persistence.get_comments(job.id)) == 1

    def test_carry_over_error_does_not_break_done(self, service, failing_job, monkeypatch):
        job = failing_job("network")

        def broken(job_id):
            raise RuntimeError("comment store unavailable")

        monkeypatch.setattr(service.state_machine, "carry_over_bugrefs", broken)

        outcome = service.done(job.id)

        assert outcome.value == JobResult.FAILED
        assert service.persistence.get_job(job.id).state == JobState.DONE
