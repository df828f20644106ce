"""
Job handle with memoized projections.

A JobView wraps one Job snapshot. Display name, settings mapping,
dependency mapping and asset list are computed on first access and kept
for the lifetime of the view; to see fresh data, build a new view.
"""

import re
from typing import Optional

from .entities import Job, JobModule, ModuleResult, SCENARIO_KEYS, SCENARIO_WITH_MACHINE_KEYS
from .graph import DependencyGraph
from .persistence import PersistenceAdapter
from .schemas import JobSummary

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9@._+:-]")

# Columns contributing to the display name, in order
_NAME_COLUMNS = ("DISTRI", "VERSION", "FLAVOR", "ARCH", "BUILD", "TEST")
_NAME_FORMATS = {"BUILD": "Build{}"}

# Columns mirrored into the settings mapping
_SETTINGS_COLUMNS = ("DISTRI", "VERSION", "FLAVOR", "MACHINE", "ARCH", "BUILD", "TEST")


def display_name(job: Job) -> str:
    """DISTRI-VERSION-FLAVOR-ARCH-Build<BUILD>-TEST@MACHINE, sanitized."""
    parts = [
        _NAME_FORMATS.get(column, "{}").format(getattr(job, column))
        for column in _NAME_COLUMNS
        if getattr(job, column)
    ]
    name = "-".join(parts)
    if job.MACHINE:
        name += "@" + job.MACHINE
    return _UNSAFE_NAME_CHARS.sub("_", name)


def scenario_name(job: Job) -> str:
    """DISTRI-VERSION-FLAVOR-ARCH-TEST, plus @MACHINE when set."""
    scenario = "-".join(getattr(job, key) or "" for key in SCENARIO_KEYS)
    if job.MACHINE:
        scenario += "@" + job.MACHINE
    return scenario


class JobView:
    """Read-side handle for a single job."""

    def __init__(self, job: Job, persistence: PersistenceAdapter, graph: Optional[DependencyGraph] = None):
        self.job = job
        self.persistence = persistence
        self.graph = graph or DependencyGraph(persistence)
        self._name: Optional[str] = None
        self._settings: Optional[dict] = None
        self._deps: Optional[dict] = None
        self._assets: Optional[list] = None

    @property
    def id(self) -> int:
        return self.job.id

    @property
    def name(self) -> str:
        if self._name is None:
            self._name = display_name(self.job)
        return self._name

    @property
    def scenario(self) -> str:
        return scenario_name(self.job)

    def scenario_hash(self) -> dict:
        return {key.lower(): getattr(self.job, key) for key in SCENARIO_WITH_MACHINE_KEYS}

    @property
    def settings(self) -> dict:
        """
        Flat settings mapping.

        Repeated keys (WORKER_CLASS) are comma-joined, scenario columns are
        mirrored in and NAME is synthesized from id and display name.
        """
        if self._settings is None:
            settings: dict = {}
            for key, value in self.persistence.get_settings(self.job.id):
                if key in settings:
                    settings[key] += "," + value
                else:
                    settings[key] = value
            for column in _SETTINGS_COLUMNS:
                value = getattr(self.job, column)
                if value:
                    settings[column] = value
            settings["NAME"] = f"{self.job.id:08d}-{self.name}"
            self._settings = settings
        return self._settings

    @property
    def deps(self) -> dict:
        if self._deps is None:
            self._deps = self.graph.dependencies(self.job.id)
        return self._deps

    @property
    def assets(self) -> list:
        if self._assets is None:
            self._assets = self.persistence.get_job_assets(self.job.id)
        return self._assets

    def to_summary(self, include_assets: bool = False, include_deps: bool = False) -> JobSummary:
        """Flat record for the API layer."""
        job = self.job
        summary = JobSummary(
            id=job.id,
            name=self.name,
            priority=job.priority,
            state=job.state.value,
            result=job.result.value,
            clone_id=job.clone_id,
            origin_id=self.persistence.get_origin_id(job.id),
            retry_avbl=job.retry_avbl,
            t_started=job.t_started,
            t_finished=job.t_finished,
            group_id=job.group_id,
            group=self.persistence.get_group_name(job.group_id) if job.group_id else None,
            assigned_worker_id=job.assigned_worker_id,
            settings=self.settings,
            test=job.TEST,
        )
        if job.failed_module_count:
            summary.failed_modules = self.persistence.failed_module_names(job.id)
        if include_assets:
            assets: dict = {}
            for asset in self.assets:
                assets.setdefault(asset.type, []).append(asset.name)
            summary.assets = assets
            networks = self.persistence.get_networks(job.id)
            if networks:
                summary.networks = {network.name: network.vlan for network in networks}
        if include_deps:
            summary.parents = self.deps["parents"]
            summary.children = self.deps["children"]
        return summary

    def running_modinfo(self) -> dict:
        """
        Module progress grouped by category.

        Modules before the running one are "done", the running one is
        "current", the rest "todo".
        """
        modules: list[JobModule] = self.persistence.get_modules(self.job.id)
        modlist: list[dict] = []
        done_count = 0
        modstate = "done"
        running = None
        category = None

        for module in modules:
            if not modlist or category != module.category:
                category = module.category
                modlist.append({"category": category, "modules": []})

            if module.result == ModuleResult.RUNNING:
                modstate = "current"
                running = module.name
            elif modstate == "current":
                modstate = "todo"
            elif modstate == "done":
                done_count += 1

            modlist[-1]["modules"].append(
                {"name": module.name, "state": modstate, "result": module.result.value}
            )

        return {
            "modlist": modlist,
            "modcount": len(modules),
            "moddone": done_count,
            "running": running,
        }
