"""
Wire schemas for status reports coming from workers and the job summary
read projection handed to the API layer.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Worker Status Report
# =============================================================================


class LogChunk(BaseModel):
    """A fragment of a live log file."""

    data: str = ""


class Screen(BaseModel):
    """Latest screenshot, base64 encoded PNG."""

    name: str = ""
    png: str = ""


class BackendReport(BaseModel):
    backend: str
    backend_info: dict = Field(default_factory=dict)


class ModuleSpec(BaseModel):
    """Module definition announced by the worker before running it."""

    name: str
    category: Optional[str] = None
    script: Optional[str] = None
    flags: Dict[str, bool] = Field(
        default_factory=dict,
        description="ignore_failure, fatal, milestone",
    )


class ModuleReport(BaseModel):
    """Raw module result as reported by the worker (ok/fail/unk/...)."""

    result: str
    details: List[dict] = Field(default_factory=list)
    dents: int = 0


class WorkerStatus(BaseModel):
    needinput: bool = False
    interactive: bool = False


class StatusReport(BaseModel):
    """Periodic status update for a running job."""

    uploading: bool = False
    log: Optional[LogChunk] = None
    serial_log: Optional[LogChunk] = None
    serial_terminal: Optional[LogChunk] = None
    screen: Optional[Screen] = None
    backend: Optional[BackendReport] = None
    test_order: Optional[List[ModuleSpec]] = None
    result: Dict[str, ModuleReport] = Field(default_factory=dict)
    status: WorkerStatus = Field(default_factory=WorkerStatus)


class StatusUpdate(BaseModel):
    """Payload returned for an accepted status report."""

    job_result: Optional[str] = Field(
        default=None,
        description="Overall result computed from modules; not stored",
    )
    known_images: List[str] = Field(default_factory=list)


# =============================================================================
# Job Summary
# =============================================================================


class JobSummary(BaseModel):
    """Flat read projection of a job."""

    id: int
    name: str
    priority: int
    state: str
    result: str
    clone_id: Optional[int] = None
    origin_id: Optional[int] = None
    retry_avbl: int
    t_started: Optional[str] = None
    t_finished: Optional[str] = None
    group_id: Optional[int] = None
    group: Optional[str] = None
    assigned_worker_id: Optional[int] = None
    settings: Dict[str, str] = Field(default_factory=dict)
    test: str
    failed_modules: Optional[List[str]] = None
    assets: Optional[Dict[str, List[str]]] = None
    networks: Optional[Dict[str, int]] = None
    parents: Optional[Dict[str, List[int]]] = None
    children: Optional[Dict[str, List[int]]] = None
