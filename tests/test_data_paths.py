"""
Tests for data_paths module.
"""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest


class TestGetProjectRoot:
    """Tests for get_project_root function."""

    def test_returns_path_object(self):
        """Should return a Path object."""
        from src.infra.data_paths import get_project_root

        result = get_project_root()
        assert isinstance(result, Path)

    def test_contains_main_py(self):
        """Should be the project root containing main.py."""
        from src.infra.data_paths import get_project_root

        result = get_project_root()
        assert (result / "main.py").exists()


class TestDefaults:
    """Paths without environment overrides."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for key in ("SCHEDULER_DB_PATH", "ASSET_DIR", "RESULT_DIR", "IMAGES_DIR", "LOG_DIR"):
            monkeypatch.delenv(key, raising=False)

    def test_db_path(self):
        from src.infra.data_paths import get_data_root, get_db_path

        assert get_db_path() == get_data_root() / "scheduler.sqlite"

    def test_asset_dir(self):
        from src.infra.data_paths import get_asset_dir, get_data_root

        assert get_asset_dir() == get_data_root() / "assets"

    def test_result_root(self):
        from src.infra.data_paths import get_data_root, get_result_root

        assert get_result_root() == get_data_root() / "testresults"

    def test_logs_dir(self):
        from src.infra.data_paths import get_logs_dir, get_project_root

        assert get_logs_dir() == get_project_root() / "logs"


class TestEnvOverrides:

    def test_db_path_override(self):
        """Should respect SCHEDULER_DB_PATH environment variable."""
        from src.infra.data_paths import get_db_path

        with tempfile.TemporaryDirectory() as tmpdir:
            db = Path(tmpdir) / "other.sqlite"
            with patch.dict("os.environ", {"SCHEDULER_DB_PATH": str(db)}):
                assert get_db_path() == db.resolve()

    def test_result_dir_override(self):
        from src.infra.data_paths import get_result_root

        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict("os.environ", {"RESULT_DIR": tmpdir}):
                assert get_result_root() == Path(tmpdir).resolve()


class TestResultPaths:

    def test_num_prefix_dir(self, tmp_path, monkeypatch):
        from src.infra.data_paths import get_num_prefix_dir

        monkeypatch.setenv("RESULT_DIR", str(tmp_path))

        assert get_num_prefix_dir(42).name == "00000"
        assert get_num_prefix_dir(42123).name == "00042"

    def test_image_md5_path(self, tmp_path, monkeypatch):
        from src.infra.data_paths import image_md5_path

        monkeypatch.setenv("IMAGES_DIR", str(tmp_path))

        assert image_md5_path("abcdef") == tmp_path.resolve() / "abc" / "abcdef.png"


class TestLocateAsset:

    @pytest.fixture
    def asset_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ASSET_DIR", str(tmp_path))
        (tmp_path / "iso" / "fixed").mkdir(parents=True)
        return tmp_path.resolve()

    def test_missing_asset(self, asset_dir):
        from src.infra.data_paths import locate_asset

        assert locate_asset("iso", "missing.iso", must_exist=True) is None
        assert locate_asset("iso", "missing.iso") == asset_dir / "iso" / "missing.iso"

    def test_regular_asset(self, asset_dir):
        from src.infra.data_paths import locate_asset

        (asset_dir / "iso" / "a.iso").write_bytes(b"")

        assert locate_asset("iso", "a.iso", must_exist=True) == asset_dir / "iso" / "a.iso"

    def test_fixed_asset_wins(self, asset_dir):
        from src.infra.data_paths import locate_asset

        (asset_dir / "iso" / "a.iso").write_bytes(b"")
        (asset_dir / "iso" / "fixed" / "a.iso").write_bytes(b"")

        assert locate_asset("iso", "a.iso") == asset_dir / "iso" / "fixed" / "a.iso"


class TestConfig:

    def test_worker_command_defaults(self, monkeypatch):
        from src.infra.data_paths import get_worker_command_config

        for key in ("WORKER_COMMAND_URL", "WORKER_COMMAND_TIMEOUT", "WORKER_COMMAND_MAX_RETRIES"):
            monkeypatch.delenv(key, raising=False)

        assert get_worker_command_config() == {"url": None, "timeout": 10, "max_retries": 3}

    def test_carry_over_overrides(self):
        from src.infra.data_paths import get_carry_over_config

        with patch.dict("os.environ", {
            "CARRY_OVER_LOOKUP_DEPTH": "5",
            "CARRY_OVER_STATE_CHANGES_LIMIT": "1",
        }):
            assert get_carry_over_config() == {"lookup_depth": 5, "state_changes_limit": 1}

    def test_invalid_integer_falls_back(self):
        from src.infra.data_paths import get_carry_over_config

        with patch.dict("os.environ", {"CARRY_OVER_LOOKUP_DEPTH": "many"}):
            assert get_carry_over_config()["lookup_depth"] == 10

    @pytest.mark.parametrize("value,expected", [("true", True), ("0", False), ("off", False), ("", True)])
    def test_file_logging_flag(self, monkeypatch, value, expected):
        from src.infra.data_paths import is_file_logging_enabled

        monkeypatch.setenv("LOG_TO_FILE", value)
        assert is_file_logging_enabled() is expected


class TestEnsureDataDirectories:
    """Tests for ensure_data_directories function."""

    def test_creates_directories(self, tmp_path, monkeypatch):
        from src.infra.data_paths import ensure_data_directories

        for key, sub in (("ASSET_DIR", "assets"), ("RESULT_DIR", "results"), ("IMAGES_DIR", "images"), ("LOG_DIR", "logs")):
            monkeypatch.setenv(key, str(tmp_path / sub))

        with patch("src.infra.data_paths.get_data_root", return_value=tmp_path / "data"):
            result = ensure_data_directories()

        assert (tmp_path / "assets" / "hdd").is_dir()
        assert (tmp_path / "results").is_dir()
        assert result["assets_iso"] == (tmp_path / "assets" / "iso").resolve()

    def test_idempotent(self, tmp_path, monkeypatch):
        from src.infra.data_paths import ensure_data_directories

        for key in ("ASSET_DIR", "RESULT_DIR", "IMAGES_DIR", "LOG_DIR"):
            monkeypatch.setenv(key, str(tmp_path / key.lower()))

        with patch("src.infra.data_paths.get_data_root", return_value=tmp_path / "data"):
            assert ensure_data_directories() == ensure_data_directories()
