"""
Data path and configuration helpers for the job scheduler.

Directory structure:
data/
 ├── scheduler.sqlite          # Entity store
 ├── assets/
 │   ├── iso/                  # ISO images (iso/fixed/ for pinned ones)
 │   ├── hdd/                  # Disk images
 │   ├── repo/
 │   └── other/
 ├── testresults/
 │   └── 00042/                # %05d of job id / 1000
 │       └── 00042123-<name>/  # per-job result directory
 └── images/                   # Screenshot store, <md5[:3]>/<md5>.png

logs/                          # Process logs

Environment Variables:
- SCHEDULER_DB_PATH: Entity store path (default: data/scheduler.sqlite)
- ASSET_DIR: Asset root (default: data/assets)
- RESULT_DIR: Test result root (default: data/testresults)
- IMAGES_DIR: Screenshot store (default: data/images)
- LOG_DIR: Log directory (default: logs)
- LOG_TO_FILE: Write a daily log file besides the console (default: true)
- WORKER_COMMAND_URL: Base URL of the worker command endpoint (default: unset)
- WORKER_COMMAND_TIMEOUT: Seconds per command request (default: 10)
- WORKER_COMMAND_MAX_RETRIES: Attempts per command (default: 3)
- CARRY_OVER_LOOKUP_DEPTH: Previous jobs inspected for bugref carry-over (default: 10)
- CARRY_OVER_STATE_CHANGES_LIMIT: Distinct failures tolerated before giving up (default: 3)
"""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger("scheduler")


# =============================================================================
# Environment Variable Configuration
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[DataPaths] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_path(key: str, default: Path) -> Path:
    env_path = os.getenv(key)
    if env_path:
        return Path(env_path).resolve()
    return default


# =============================================================================
# Base Paths (relative to project root)
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    File is at src/infra/data_paths.py, so project root is 2 levels up.
    """
    return Path(__file__).parent.parent.parent.resolve()


def get_data_root() -> Path:
    """Get the data root directory."""
    return get_project_root() / "data"


def get_db_path() -> Path:
    """Entity store SQLite path (SCHEDULER_DB_PATH)."""
    return _get_env_path("SCHEDULER_DB_PATH", get_data_root() / "scheduler.sqlite")


def get_logs_dir() -> Path:
    """Process log directory (LOG_DIR)."""
    return _get_env_path("LOG_DIR", get_project_root() / "logs")


# =============================================================================
# Asset Paths
# =============================================================================

def get_asset_dir() -> Path:
    """Asset root directory (ASSET_DIR)."""
    return _get_env_path("ASSET_DIR", get_data_root() / "assets")


def locate_asset(asset_type: str, name: str, must_exist: bool = False) -> Optional[Path]:
    """
    Resolve the on-disk path of an asset.

    Pinned assets under <type>/fixed/ win over regular ones.

    Args:
        asset_type: iso, hdd, repo or other
        name: File name of the asset
        must_exist: Return None unless the file (or directory) exists

    Returns:
        Path of the asset, or None
    """
    type_dir = get_asset_dir() / asset_type
    fixed = type_dir / "fixed" / name
    if fixed.exists():
        return fixed

    regular = type_dir / name
    if regular.exists() or not must_exist:
        return regular
    return None


# =============================================================================
# Result Paths
# =============================================================================

def get_result_root() -> Path:
    """Test result root directory (RESULT_DIR)."""
    return _get_env_path("RESULT_DIR", get_data_root() / "testresults")


def get_num_prefix_dir(job_id: int) -> Path:
    """Bucket directory grouping 1000 consecutive job ids."""
    return get_result_root() / f"{job_id // 1000:05d}"


def get_images_dir() -> Path:
    """Screenshot store (IMAGES_DIR)."""
    return _get_env_path("IMAGES_DIR", get_data_root() / "images")


def image_md5_path(md5: str) -> Path:
    """Location of a stored screenshot by checksum."""
    return get_images_dir() / md5[:3] / f"{md5}.png"


# =============================================================================
# Worker Command Channel
# =============================================================================

def get_worker_command_config() -> dict:
    """
    Worker command channel configuration from environment variables.

    Returns:
        dict with url (None disables HTTP delivery), timeout and max_retries
    """
    return {
        "url": os.getenv("WORKER_COMMAND_URL") or None,
        "timeout": _get_env_int("WORKER_COMMAND_TIMEOUT", 10),
        "max_retries": _get_env_int("WORKER_COMMAND_MAX_RETRIES", 3),
    }


# =============================================================================
# Carry-over Configuration
# =============================================================================

def get_carry_over_config() -> dict:
    """
    Bugref carry-over tuning.

    Returns:
        dict with lookup_depth and state_changes_limit
    """
    return {
        "lookup_depth": _get_env_int("CARRY_OVER_LOOKUP_DEPTH", 10),
        "state_changes_limit": _get_env_int("CARRY_OVER_STATE_CHANGES_LIMIT", 3),
    }


# =============================================================================
# Directory Initialization
# =============================================================================

def ensure_data_directories() -> dict:
    """
    Ensure all required data directories exist.

    Safe to call multiple times.

    Returns:
        dict: Dictionary of created/existing directory paths
    """
    directories = {
        "data_root": get_data_root(),
        "assets": get_asset_dir(),
        "results": get_result_root(),
        "images": get_images_dir(),
        "logs": get_logs_dir(),
    }
    for asset_type in ("iso", "hdd", "repo", "other"):
        directories[f"assets_{asset_type}"] = get_asset_dir() / asset_type

    for name, path in directories.items():
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"[DataPaths] Ensured directory: {name} -> {path}")

    return directories


def is_file_logging_enabled() -> bool:
    """LOG_TO_FILE (default: true) controls the daily log file handler."""
    return _get_env_bool("LOG_TO_FILE", True)
