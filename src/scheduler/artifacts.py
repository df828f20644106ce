"""
Files produced while a job runs.

- live logs and the latest screenshot go to the worker's WORKER_TMPDIR
- module details go to the job's result directory
  (<RESULT_DIR>/<%05d of id/1000>/<%08d id>-<name>/details-<module>.json)
"""

import base64
import json
import logging
import os
from pathlib import Path
from typing import Optional

from src.infra.data_paths import get_num_prefix_dir, image_md5_path


logger = logging.getLogger(__name__)

LIVE_LOG_FILE = "autoinst-log-live.txt"
SERIAL_TERMINAL_LIVE_FILE = "serial-terminal-live.txt"
LAST_SCREENSHOT_LINK = "last.png"


def append_log(tmpdir: Optional[str], file_name: str, data: str) -> bool:
    """Append a live log chunk; silently does nothing without a tmpdir."""
    if not data or not tmpdir or not Path(tmpdir).is_dir():
        return False
    with open(Path(tmpdir) / file_name, "a", encoding="utf-8") as f:
        f.write(data)
    return True


def save_screenshot(tmpdir: Optional[str], name: str, png_base64: str) -> Optional[Path]:
    """
    Store the latest screenshot and point last.png at it.

    The previous screenshot referenced by last.png is removed.
    """
    if not name or not tmpdir or not Path(tmpdir).is_dir():
        return None

    directory = Path(tmpdir)
    link = directory / LAST_SCREENSHOT_LINK
    previous = os.readlink(link) if link.is_symlink() else None

    target = directory / f"{name}.png"
    target.write_bytes(base64.b64decode(png_base64))

    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target.name)

    if previous and previous != target.name:
        (directory / previous).unlink(missing_ok=True)
    return target


def result_dir_name(job_id: int, name: str) -> str:
    return f"{job_id:08d}-{name}"


def create_result_dir(job_id: int, dir_name: str) -> Path:
    """Create the job's result directory with its .thumbs and ulogs subdirectories."""
    path = get_num_prefix_dir(job_id) / dir_name
    for sub in (".thumbs", "ulogs"):
        (path / sub).mkdir(parents=True, exist_ok=True)
    return path


def save_module_details(result_dir: Path, module_name: str, details: list) -> list[str]:
    """
    Write module details as JSON.

    Returns:
        Checksums of screenshots referenced by the details that are
        already present in the image store
    """
    (result_dir / f"details-{module_name}.json").write_text(
        json.dumps(details), encoding="utf-8"
    )
    known = []
    for detail in details:
        md5 = detail.get("md5") if isinstance(detail, dict) else None
        if md5 and image_md5_path(md5).exists():
            known.append(md5)
    return known


def load_module_details(result_dir: Path, module_name: str) -> list:
    path = result_dir / f"details-{module_name}.json"
    if not path.exists():
        return []
    return json.loads(path.read_text(encoding="utf-8"))
