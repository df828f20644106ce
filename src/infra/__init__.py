"""
Infrastructure module - configuration, logging, paths and the worker command channel.
"""

from .data_paths import (
    get_project_root,
    get_data_root,
    get_db_path,
    get_logs_dir,
    get_asset_dir,
    get_result_root,
    get_images_dir,
    locate_asset,
    ensure_data_directories,
)

from .logging_config import setup_logging

from .worker_commands import (
    WorkerCommandSink,
    RecordingCommandSink,
    HttpCommandSink,
    create_command_sink,
)

__all__ = [
    # data_paths
    "get_project_root",
    "get_data_root",
    "get_db_path",
    "get_logs_dir",
    "get_asset_dir",
    "get_result_root",
    "get_images_dir",
    "locate_asset",
    "ensure_data_directories",
    # logging
    "setup_logging",
    # worker_commands
    "WorkerCommandSink",
    "RecordingCommandSink",
    "HttpCommandSink",
    "create_command_sink",
]
