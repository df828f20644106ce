"""
Tests for the operator command line.
"""

import json

import pytest

from main import EXIT_FAILURE, EXIT_SUCCESS, create_parser, main
from src.scheduler import DependencyKind, Job, JobResult, JobState, PersistenceAdapter


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Database with a failed job (1) and its Parallel child (2)."""
    monkeypatch.delenv("WORKER_COMMAND_URL", raising=False)
    for key, sub in (("ASSET_DIR", "assets"), ("RESULT_DIR", "results"), ("IMAGES_DIR", "images"), ("LOG_DIR", "logs")):
        monkeypatch.setenv(key, str(tmp_path / sub))
    monkeypatch.setattr("src.infra.data_paths.get_data_root", lambda: tmp_path / "data")
    db_path = tmp_path / "cli.sqlite"
    persistence = PersistenceAdapter(db_path)
    parent = persistence.create_job(
        Job.create("server", DISTRI="sle", VERSION="15", state=JobState.DONE, result=JobResult.FAILED),
        settings={"DESKTOP": "gnome"},
    )
    child = persistence.create_job(Job.create("client", DISTRI="sle", VERSION="15"))
    persistence.add_dependency(parent.id, child.id, DependencyKind.PARALLEL)
    return {"path": str(db_path), "persistence": persistence}


def run(db, *args) -> int:
    return main(["--db", db["path"], *args])


class TestParser:

    def test_done_result_choices(self):
        parser = create_parser()

        args = parser.parse_args(["done", "4", "--result", "incomplete"])

        assert args.job_id == 4
        assert args.result == "incomplete"

    def test_none_is_not_a_result(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["done", "4", "--result", "none"])


class TestCommands:

    def test_no_command_prints_help(self, db, capsys):
        assert run(db) == EXIT_SUCCESS
        assert "usage" in capsys.readouterr().out

    def test_command_creates_data_directories(self, db, tmp_path):
        assert run(db, "show", "1") == EXIT_SUCCESS

        assert (tmp_path / "assets" / "hdd").is_dir()
        assert (tmp_path / "images").is_dir()

    def test_show(self, db, capsys):
        assert run(db, "show", "1", "--deps") == EXIT_SUCCESS

        summary = json.loads(capsys.readouterr().out)
        assert summary["name"] == "sle-15-server"
        assert summary["settings"]["DESKTOP"] == "gnome"
        assert summary["children"]["Parallel"] == [2]
        assert "assets" not in summary

    def test_show_unknown_job(self, db, capsys):
        assert run(db, "show", "99") == EXIT_FAILURE
        assert "job_not_found" in capsys.readouterr().err

    def test_cancel(self, db, capsys):
        assert run(db, "cancel", "2") == EXIT_SUCCESS
        assert "Cancelled 1 job(s)" in capsys.readouterr().out
        assert db["persistence"].get_job(2).result == JobResult.USER_CANCELLED

    def test_restart(self, db, capsys):
        assert run(db, "restart", "1") == EXIT_SUCCESS

        clone_id = db["persistence"].get_job(1).clone_id
        assert f"1 -> {clone_id}" in capsys.readouterr().out

    def test_restart_partially_failing(self, db):
        assert run(db, "restart", "1", "2") == EXIT_FAILURE

    def test_done(self, db, capsys):
        assert run(db, "done", "2", "--result", "incomplete") == EXIT_SUCCESS
        assert "Job 2: incomplete" in capsys.readouterr().out

    def test_allocate_network(self, db, capsys):
        assert run(db, "allocate-network", "2", "fixed") == EXIT_SUCCESS
        assert capsys.readouterr().out.strip() == "1"

    def test_set_priority(self, db):
        assert run(db, "set-priority", "2", "10") == EXIT_SUCCESS
        assert db["persistence"].get_job(2).priority == 10

    def test_delete(self, db):
        assert run(db, "delete", "2") == EXIT_SUCCESS
        assert db["persistence"].get_job(2) is None
