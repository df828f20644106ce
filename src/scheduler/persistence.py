"""
Persistence Adapter for the Job Scheduler.

SQLite with WAL mode, one connection per operation. Provides:
- CRUD for jobs, settings, dependencies, modules, assets, networks,
  locks, comments and workers
- Conditional (compare-and-swap) writes for every cross-entity invariant:
  clone creation, cancellation, skipping, VLAN assignment
- The final-state hook: entering done/cancelled stamps t_finished and
  resets modules still marked running

Business rules live in the components above this module.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .entities import (
    Asset,
    Comment,
    COMPLETE_RESULTS,
    DependencyKind,
    FINAL_STATES,
    Job,
    JobDependency,
    JobLock,
    JobModule,
    JobResult,
    JobState,
    ModuleResult,
    NetworkAllocation,
    SCENARIO_WITH_MACHINE_KEYS,
    Worker,
    now_iso,
)
from .errors import (
    CloneConflictError,
    InvalidOperationError,
    JobNotFoundError,
    WorkerNotFoundError,
)


_JOB_COLUMNS = (
    "TEST",
    "DISTRI",
    "VERSION",
    "FLAVOR",
    "ARCH",
    "BUILD",
    "MACHINE",
    "state",
    "result",
    "priority",
    "retry_avbl",
    "clone_id",
    "group_id",
    "assigned_worker_id",
    "backend",
    "backend_info",
    "result_dir",
    "t_started",
    "t_finished",
    "t_created",
)

# Columns update_job() may touch; state/result/clone_id go through
# the dedicated conditional writers below.
_UPDATABLE_JOB_COLUMNS = {
    "priority",
    "retry_avbl",
    "assigned_worker_id",
    "backend",
    "backend_info",
    "result_dir",
    "t_started",
}


class PersistenceAdapter:
    """
    SQLite-based persistence for all job-related entities.

    - Does NOT contain business logic
    - Multi-row invariants are enforced with conditional writes inside
      a single transaction; a write that affects zero rows means another
      caller won the race
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = str(db_path)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        immediate=True takes the write lock up front, so a read followed
        by a write inside the block cannot interleave with another writer.
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_groups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS workers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    host TEXT NOT NULL,
                    instance INTEGER NOT NULL DEFAULT 1,
                    job_id INTEGER,
                    t_seen TEXT,
                    UNIQUE (host, instance)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS worker_properties (
                    worker_id INTEGER NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT,
                    PRIMARY KEY (worker_id, key),
                    FOREIGN KEY (worker_id) REFERENCES workers(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    TEST TEXT NOT NULL,
                    DISTRI TEXT NOT NULL DEFAULT '',
                    VERSION TEXT NOT NULL DEFAULT '',
                    FLAVOR TEXT NOT NULL DEFAULT '',
                    ARCH TEXT NOT NULL DEFAULT '',
                    BUILD TEXT NOT NULL DEFAULT '',
                    MACHINE TEXT,
                    state TEXT NOT NULL DEFAULT 'scheduled',
                    result TEXT NOT NULL DEFAULT 'none',
                    priority INTEGER NOT NULL DEFAULT 50,
                    retry_avbl INTEGER NOT NULL DEFAULT 3,
                    clone_id INTEGER,
                    group_id INTEGER,
                    assigned_worker_id INTEGER,
                    backend TEXT,
                    backend_info TEXT,
                    result_dir TEXT,
                    t_started TEXT,
                    t_finished TEXT,
                    t_created TEXT NOT NULL,
                    passed_module_count INTEGER NOT NULL DEFAULT 0,
                    failed_module_count INTEGER NOT NULL DEFAULT 0,
                    softfailed_module_count INTEGER NOT NULL DEFAULT 0,
                    skipped_module_count INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (clone_id) REFERENCES jobs(id) ON DELETE SET NULL,
                    FOREIGN KEY (group_id) REFERENCES job_groups(id) ON DELETE SET NULL
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs (state)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_result ON jobs (result)")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_scenario
                ON jobs (VERSION, DISTRI, FLAVOR, TEST, MACHINE, ARCH)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_settings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_job_settings_job
                ON job_settings (job_id, key)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_dependencies (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    parent_job_id INTEGER NOT NULL,
                    child_job_id INTEGER NOT NULL,
                    dependency TEXT NOT NULL,
                    UNIQUE (parent_job_id, child_job_id, dependency),
                    FOREIGN KEY (parent_job_id) REFERENCES jobs(id) ON DELETE CASCADE,
                    FOREIGN KEY (child_job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_modules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    category TEXT,
                    script TEXT,
                    result TEXT NOT NULL DEFAULT 'none',
                    important INTEGER NOT NULL DEFAULT 1,
                    fatal INTEGER NOT NULL DEFAULT 0,
                    milestone INTEGER NOT NULL DEFAULT 0,
                    t_updated TEXT NOT NULL,
                    UNIQUE (job_id, name),
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    UNIQUE (type, name)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs_assets (
                    job_id INTEGER NOT NULL,
                    asset_id INTEGER NOT NULL,
                    created_by INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (job_id, asset_id),
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_networks (
                    job_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    vlan INTEGER NOT NULL,
                    PRIMARY KEY (job_id, name),
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_job_networks_vlan
                ON job_networks (vlan)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_locks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    owner INTEGER NOT NULL,
                    locked_by INTEGER,
                    UNIQUE (name, owner),
                    FOREIGN KEY (owner) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS comments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    user_id INTEGER,
                    text TEXT NOT NULL,
                    t_created TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

    # =========================================================================
    # Job Groups
    # =========================================================================

    def create_group(self, name: str) -> int:
        """Create a job group and return its id."""
        with self._transaction() as conn:
            cursor = conn.execute("INSERT INTO job_groups (name) VALUES (?)", (name,))
            return cursor.lastrowid

    def get_group_name(self, group_id: int) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT name FROM job_groups WHERE id = ?", (group_id,)
            ).fetchone()
        return row["name"] if row else None

    # =========================================================================
    # Job Operations
    # =========================================================================

    @staticmethod
    def _job_values(job: Job) -> tuple:
        values = []
        for column in _JOB_COLUMNS:
            value = getattr(job, column)
            if isinstance(value, (JobState, JobResult)):
                value = value.value
            values.append(value)
        return tuple(values)

    @staticmethod
    def _insert_job(conn: sqlite3.Connection, job: Job) -> int:
        placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
        cursor = conn.execute(
            f"INSERT INTO jobs ({', '.join(_JOB_COLUMNS)}) VALUES ({placeholders})",
            PersistenceAdapter._job_values(job),
        )
        return cursor.lastrowid

    @staticmethod
    def _insert_settings(
        conn: sqlite3.Connection, job_id: int, settings: Iterable[tuple[str, str]]
    ) -> None:
        conn.executemany(
            "INSERT INTO job_settings (job_id, key, value) VALUES (?, ?, ?)",
            [(job_id, key, str(value)) for key, value in settings],
        )

    @staticmethod
    def _settings_pairs(settings) -> list[tuple[str, str]]:
        if settings is None:
            return []
        if isinstance(settings, dict):
            return list(settings.items())
        return list(settings)

    def create_job(self, job: Job, settings=None) -> Job:
        """
        Persist a new job with its settings.

        Args:
            job: Unsaved Job (id is ignored and assigned here)
            settings: Mapping or list of (key, value) pairs; repeating a
                key (WORKER_CLASS) stores several rows
        """
        with self._transaction() as conn:
            job.id = self._insert_job(conn, job)
            self._insert_settings(conn, job.id, self._settings_pairs(settings))
        return job

    def get_job(self, job_id: int) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def require_job(self, job_id: int) -> Job:
        """Get a job by ID or raise JobNotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_jobs(self, job_ids: Iterable[int]) -> list[Job]:
        ids = list(job_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs WHERE id IN ({placeholders}) ORDER BY id",
                ids,
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            id=row["id"],
            TEST=row["TEST"],
            DISTRI=row["DISTRI"],
            VERSION=row["VERSION"],
            FLAVOR=row["FLAVOR"],
            ARCH=row["ARCH"],
            BUILD=row["BUILD"],
            MACHINE=row["MACHINE"],
            state=JobState(row["state"]),
            result=JobResult(row["result"]),
            priority=row["priority"],
            retry_avbl=row["retry_avbl"],
            clone_id=row["clone_id"],
            group_id=row["group_id"],
            assigned_worker_id=row["assigned_worker_id"],
            backend=row["backend"],
            backend_info=row["backend_info"],
            result_dir=row["result_dir"],
            t_started=row["t_started"],
            t_finished=row["t_finished"],
            t_created=row["t_created"],
            passed_module_count=row["passed_module_count"],
            failed_module_count=row["failed_module_count"],
            softfailed_module_count=row["softfailed_module_count"],
            skipped_module_count=row["skipped_module_count"],
        )

    def get_origin_id(self, job_id: int) -> Optional[int]:
        """Id of the job whose clone is job_id, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM jobs WHERE clone_id = ?", (job_id,)
            ).fetchone()
        return row["id"] if row else None

    def update_job(self, job_id: int, **fields) -> Job:
        """Update plain job columns (priority, backend, result_dir, ...)."""
        unknown = set(fields) - _UPDATABLE_JOB_COLUMNS
        if unknown:
            raise InvalidOperationError(f"Cannot update job columns: {sorted(unknown)}")

        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            with self._transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE jobs SET {assignments} WHERE id = ?",
                    (*fields.values(), job_id),
                )
                if cursor.rowcount == 0:
                    raise JobNotFoundError(job_id)

        return self.require_job(job_id)

    @staticmethod
    def _apply_final_state(conn: sqlite3.Connection, job_id: int) -> None:
        """Stamp t_finished and make sure no module is left running."""
        conn.execute(
            "UPDATE jobs SET t_finished = COALESCE(t_finished, ?) WHERE id = ?",
            (now_iso(), job_id),
        )
        conn.execute(
            "UPDATE job_modules SET result = ? WHERE job_id = ? AND result = ?",
            (ModuleResult.NONE.value, job_id, ModuleResult.RUNNING.value),
        )

    def set_state(
        self,
        job_id: int,
        state: JobState,
        from_states: Optional[Iterable[JobState]] = None,
    ) -> bool:
        """
        Set job state, optionally only when the current state is one of
        from_states. Returns True if the row was changed.
        """
        query = "UPDATE jobs SET state = ? WHERE id = ?"
        values: list = [state.value, job_id]
        if from_states is not None:
            allowed = [s.value for s in from_states]
            query += f" AND state IN ({', '.join('?' for _ in allowed)})"
            values.extend(allowed)

        with self._transaction() as conn:
            cursor = conn.execute(query, values)
            changed = cursor.rowcount == 1
            if changed and state == JobState.RUNNING:
                conn.execute(
                    "UPDATE jobs SET t_started = COALESCE(t_started, ?) WHERE id = ?",
                    (now_iso(), job_id),
                )
            if changed and state in FINAL_STATES:
                self._apply_final_state(conn, job_id)
        return changed

    def finish_job(self, job_id: int, result: JobResult) -> None:
        """
        Move a job to DONE.

        The result is written only while it is still NONE, so a result
        pre-set by cancellation survives.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET state = ?, result = CASE WHEN result = ? THEN ? ELSE result END
                WHERE id = ?
                """,
                (JobState.DONE.value, JobResult.NONE.value, result.value, job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)
            self._apply_final_state(conn, job_id)

    def cancel_job(self, job_id: int, result: JobResult) -> Optional[JobState]:
        """
        Atomically cancel a job that has no result yet.

        Returns:
            The state the job was in before cancellation, or None when the
            job already had a result (first writer wins).
        """
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT state FROM jobs WHERE id = ? AND result = ?",
                (job_id, JobResult.NONE.value),
            ).fetchone()
            if row is None:
                return None

            conn.execute(
                "UPDATE jobs SET state = ?, result = ? WHERE id = ? AND result = ?",
                (JobState.CANCELLED.value, result.value, job_id, JobResult.NONE.value),
            )
            self._apply_final_state(conn, job_id)
            return JobState(row["state"])

    def skip_job(self, job_id: int) -> bool:
        """SCHEDULED -> CANCELLED/SKIPPED, only if still scheduled."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET state = ?, result = ? WHERE id = ? AND state = ?",
                (
                    JobState.CANCELLED.value,
                    JobResult.SKIPPED.value,
                    job_id,
                    JobState.SCHEDULED.value,
                ),
            )
            skipped = cursor.rowcount == 1
            if skipped:
                self._apply_final_state(conn, job_id)
        return skipped

    def set_result_if_none(self, job_id: int, result: JobResult) -> bool:
        """Write result only while it is still NONE."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET result = ? WHERE id = ? AND result = ?",
                (result.value, job_id, JobResult.NONE.value),
            )
        return cursor.rowcount == 1

    def atomic_create_clone(self, origin_id: int, clone: Job, settings) -> Job:
        """
        Create clone and point origin.clone_id at it, atomically.

        The linchpin is the conditional update on the origin: it only
        succeeds while clone_id is still NULL. If no row is affected the
        whole transaction (clone row and settings included) is rolled back.

        Raises:
            CloneConflictError: origin is gone or already has a clone
        """
        with self._transaction() as conn:
            clone_id = self._insert_job(conn, clone)
            self._insert_settings(conn, clone_id, self._settings_pairs(settings))

            cursor = conn.execute(
                "UPDATE jobs SET clone_id = ? WHERE id = ? AND clone_id IS NULL",
                (clone_id, origin_id),
            )
            if cursor.rowcount != 1:
                raise CloneConflictError(origin_id)

            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (clone_id,)).fetchone()
            return self._row_to_job(row)

    def previous_scenario_jobs(self, job: Job, rows: int) -> list[Job]:
        """
        Last `rows` finished jobs with a complete result in the same scenario.

        Ordered by id descending, only jobs older than `job`.
        """
        conditions = ["state = ?", "id < ?"]
        values: list = [JobState.DONE.value, job.id]

        complete = [r.value for r in COMPLETE_RESULTS]
        conditions.append(f"result IN ({', '.join('?' for _ in complete)})")
        values.extend(complete)

        for key in SCENARIO_WITH_MACHINE_KEYS:
            conditions.append(f"{key} IS ?")
            values.append(getattr(job, key))

        values.append(rows)
        with self._connection() as conn:
            result_rows = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE {' AND '.join(conditions)}
                ORDER BY id DESC
                LIMIT ?
                """,
                values,
            ).fetchall()
        return [self._row_to_job(row) for row in result_rows]

    def delete_job(self, job_id: int) -> bool:
        """
        Delete a job and everything it owns.

        The origin pointing at this job loses its clone reference.
        """
        with self._transaction() as conn:
            conn.execute("UPDATE jobs SET clone_id = NULL WHERE clone_id = ?", (job_id,))
            conn.execute("UPDATE workers SET job_id = NULL WHERE job_id = ?", (job_id,))
            conn.execute("UPDATE job_locks SET locked_by = NULL WHERE locked_by = ?", (job_id,))
            for table in ("job_modules", "job_settings", "jobs_assets", "job_networks", "comments"):
                conn.execute(f"DELETE FROM {table} WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM job_locks WHERE owner = ?", (job_id,))
            conn.execute(
                "DELETE FROM job_dependencies WHERE parent_job_id = ? OR child_job_id = ?",
                (job_id, job_id),
            )
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        return cursor.rowcount == 1

    # =========================================================================
    # Job Settings
    # =========================================================================

    def get_settings(self, job_id: int) -> list[tuple[str, str]]:
        """All (key, value) rows of a job in insertion order."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT key, value FROM job_settings WHERE job_id = ? ORDER BY id",
                (job_id,),
            ).fetchall()
        return [(row["key"], row["value"]) for row in rows]

    def set_setting(self, job_id: int, key: str, value: Optional[str]) -> None:
        """Create/update a single-valued setting; None deletes it."""
        with self._transaction() as conn:
            if value is None:
                conn.execute(
                    "DELETE FROM job_settings WHERE job_id = ? AND key = ?",
                    (job_id, key),
                )
                return

            cursor = conn.execute(
                "UPDATE job_settings SET value = ? WHERE job_id = ? AND key = ?",
                (str(value), job_id, key),
            )
            if cursor.rowcount == 0:
                conn.execute(
                    "INSERT INTO job_settings (job_id, key, value) VALUES (?, ?, ?)",
                    (job_id, key, str(value)),
                )

    # =========================================================================
    # Dependencies
    # =========================================================================

    def add_dependency(self, parent_id: int, child_id: int, kind: DependencyKind) -> bool:
        """
        Create an edge; an existing identical edge is left alone.

        Returns True if a new edge was inserted.
        """
        if parent_id == child_id:
            raise InvalidOperationError(f"Job {parent_id} cannot depend on itself")

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO job_dependencies (parent_job_id, child_job_id, dependency)
                VALUES (?, ?, ?)
                """,
                (parent_id, child_id, DependencyKind(kind).value),
            )
        return cursor.rowcount == 1

    def delete_dependency(self, parent_id: int, child_id: int, kind: DependencyKind) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM job_dependencies
                WHERE parent_job_id = ? AND child_job_id = ? AND dependency = ?
                """,
                (parent_id, child_id, DependencyKind(kind).value),
            )
        return cursor.rowcount == 1

    def _edges(self, column: str, job_id: int, kind: Optional[DependencyKind]) -> list[JobDependency]:
        query = f"SELECT * FROM job_dependencies WHERE {column} = ?"
        values: list = [job_id]
        if kind is not None:
            query += " AND dependency = ?"
            values.append(DependencyKind(kind).value)
        query += " ORDER BY id"

        with self._connection() as conn:
            rows = conn.execute(query, values).fetchall()
        return [
            JobDependency(
                parent_job_id=row["parent_job_id"],
                child_job_id=row["child_job_id"],
                kind=DependencyKind(row["dependency"]),
            )
            for row in rows
        ]

    def get_parent_edges(self, job_id: int, kind: Optional[DependencyKind] = None) -> list[JobDependency]:
        """Edges where job_id is the child."""
        return self._edges("child_job_id", job_id, kind)

    def get_child_edges(self, job_id: int, kind: Optional[DependencyKind] = None) -> list[JobDependency]:
        """Edges where job_id is the parent."""
        return self._edges("parent_job_id", job_id, kind)

    # =========================================================================
    # Job Modules
    # =========================================================================

    def _row_to_module(self, row: sqlite3.Row) -> JobModule:
        return JobModule(
            id=row["id"],
            job_id=row["job_id"],
            name=row["name"],
            category=row["category"],
            script=row["script"],
            result=ModuleResult(row["result"]),
            important=bool(row["important"]),
            fatal=bool(row["fatal"]),
            milestone=bool(row["milestone"]),
            t_updated=row["t_updated"],
        )

    def upsert_module(
        self,
        job_id: int,
        name: str,
        category: Optional[str] = None,
        script: Optional[str] = None,
        important: bool = True,
        fatal: bool = False,
        milestone: bool = False,
    ) -> JobModule:
        """
        Find-or-create a module by name, then refresh its flags.

        category/script are only set when the module is first created.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO job_modules (job_id, name, category, script, t_updated)
                VALUES (?, ?, ?, ?, ?)
                """,
                (job_id, name, category, script, now_iso()),
            )
            conn.execute(
                """
                UPDATE job_modules SET important = ?, fatal = ?, milestone = ?
                WHERE job_id = ? AND name = ?
                """,
                (int(important), int(fatal), int(milestone), job_id, name),
            )
            row = conn.execute(
                "SELECT * FROM job_modules WHERE job_id = ? AND name = ?",
                (job_id, name),
            ).fetchone()
        return self._row_to_module(row)

    def get_modules(self, job_id: int) -> list[JobModule]:
        """Modules of a job in insertion order."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM job_modules WHERE job_id = ? ORDER BY id",
                (job_id,),
            ).fetchall()
        return [self._row_to_module(row) for row in rows]

    def get_module(self, job_id: int, name: str) -> Optional[JobModule]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM job_modules WHERE job_id = ? AND name = ?",
                (job_id, name),
            ).fetchone()
        return self._row_to_module(row) if row else None

    def set_module_result(self, module_id: int, result: ModuleResult) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE job_modules SET result = ?, t_updated = ? WHERE id = ?",
                (result.value, now_iso(), module_id),
            )

    def refresh_module_counts(self, job_id: int) -> None:
        """Recompute the per-result module counters on the job row."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT result, COUNT(*) AS n FROM job_modules WHERE job_id = ? GROUP BY result",
                (job_id,),
            ).fetchall()
            counts = {row["result"]: row["n"] for row in rows}
            conn.execute(
                """
                UPDATE jobs SET passed_module_count = ?, failed_module_count = ?,
                    softfailed_module_count = ?, skipped_module_count = ?
                WHERE id = ?
                """,
                (
                    counts.get(ModuleResult.PASSED.value, 0),
                    counts.get(ModuleResult.FAILED.value, 0),
                    counts.get(ModuleResult.SOFTFAILED.value, 0),
                    counts.get(ModuleResult.SKIPPED.value, 0),
                    job_id,
                ),
            )

    def failed_module_names(self, job_id: int) -> list[str]:
        """Names of failed modules, oldest update first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT name FROM job_modules WHERE job_id = ? AND result = ?
                ORDER BY t_updated, id
                """,
                (job_id, ModuleResult.FAILED.value),
            ).fetchall()
        return [row["name"] for row in rows]

    # =========================================================================
    # Assets
    # =========================================================================

    def find_or_create_asset(self, asset_type: str, name: str) -> Asset:
        """Upsert an asset; two logical names may map to one physical asset."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO assets (type, name) VALUES (?, ?)",
                (asset_type, name),
            )
            row = conn.execute(
                "SELECT * FROM assets WHERE type = ? AND name = ?",
                (asset_type, name),
            ).fetchone()
        return Asset(id=row["id"], type=row["type"], name=row["name"])

    def link_asset(self, job_id: int, asset_id: int, created_by: bool = False) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO jobs_assets (job_id, asset_id, created_by)
                VALUES (?, ?, ?)
                """,
                (job_id, asset_id, int(created_by)),
            )
        return cursor.rowcount == 1

    def get_job_assets(self, job_id: int) -> list[Asset]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT assets.* FROM assets
                JOIN jobs_assets ON jobs_assets.asset_id = assets.id
                WHERE jobs_assets.job_id = ?
                ORDER BY assets.id
                """,
                (job_id,),
            ).fetchall()
        return [Asset(id=row["id"], type=row["type"], name=row["name"]) for row in rows]

    # =========================================================================
    # Networks
    # =========================================================================

    def get_network(self, job_id: int, name: str) -> Optional[int]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT vlan FROM job_networks WHERE job_id = ? AND name = ?",
                (job_id, name),
            ).fetchone()
        return row["vlan"] if row else None

    def used_vlans(self) -> set[int]:
        with self._connection() as conn:
            rows = conn.execute("SELECT DISTINCT vlan FROM job_networks").fetchall()
        return {row["vlan"] for row in rows}

    def claim_network(self, job_id: int, name: str, cluster_ids: Iterable[int], vlan: int) -> Optional[int]:
        """
        Claim a VLAN tag for job_id under name.

        Runs in an immediate transaction. A tag the job already holds, or
        one held by a member of its Parallel cluster, is returned (and
        registered for job_id) before vlan is tried. vlan itself is only
        inserted if no row anywhere uses it yet.

        Returns:
            The job's tag, or None if vlan was taken by another job
        """
        cluster_ids = [member_id for member_id in cluster_ids if member_id != job_id]
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT vlan FROM job_networks WHERE job_id = ? AND name = ?",
                (job_id, name),
            ).fetchone()
            if row:
                return row["vlan"]

            if cluster_ids:
                placeholders = ",".join("?" * len(cluster_ids))
                row = conn.execute(
                    f"""
                    SELECT vlan FROM job_networks
                    WHERE name = ? AND job_id IN ({placeholders})
                    ORDER BY job_id LIMIT 1
                    """,
                    (name, *cluster_ids),
                ).fetchone()
                if row:
                    conn.execute(
                        "INSERT INTO job_networks (job_id, name, vlan) VALUES (?, ?, ?)",
                        (job_id, name, row["vlan"]),
                    )
                    return row["vlan"]

            taken = conn.execute(
                "SELECT 1 FROM job_networks WHERE vlan = ? LIMIT 1", (vlan,)
            ).fetchone()
            if taken:
                return None
            conn.execute(
                "INSERT INTO job_networks (job_id, name, vlan) VALUES (?, ?, ?)",
                (job_id, name, vlan),
            )
        return vlan

    def release_networks(self, job_id: int) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM job_networks WHERE job_id = ?", (job_id,))
        return cursor.rowcount

    # =========================================================================
    # Locks
    # =========================================================================

    def create_lock(self, name: str, owner: int, locked_by: Optional[int] = None) -> JobLock:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO job_locks (name, owner, locked_by) VALUES (?, ?, ?)",
                (name, owner, locked_by),
            )
        return JobLock(id=cursor.lastrowid, name=name, owner=owner, locked_by=locked_by)

    def get_locks(self, name: str) -> list[JobLock]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM job_locks WHERE name = ? ORDER BY id", (name,)
            ).fetchall()
        return [
            JobLock(id=row["id"], name=row["name"], owner=row["owner"], locked_by=row["locked_by"])
            for row in rows
        ]

    def release_locks(self, job_id: int) -> tuple[int, int]:
        """
        Drop locks owned by job_id and detach it from locks it holds.

        Returns:
            (deleted owned locks, detached locks)
        """
        with self._transaction() as conn:
            deleted = conn.execute("DELETE FROM job_locks WHERE owner = ?", (job_id,)).rowcount
            detached = conn.execute(
                "UPDATE job_locks SET locked_by = NULL WHERE locked_by = ?", (job_id,)
            ).rowcount
        return deleted, detached

    # =========================================================================
    # Comments
    # =========================================================================

    def add_comment(self, job_id: int, text: str, user_id: Optional[int] = None) -> Comment:
        created = now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO comments (job_id, user_id, text, t_created) VALUES (?, ?, ?, ?)",
                (job_id, user_id, text, created),
            )
        return Comment(id=cursor.lastrowid, job_id=job_id, user_id=user_id, text=text, t_created=created)

    def get_comments(self, job_id: int, newest_first: bool = False) -> list[Comment]:
        order = "DESC" if newest_first else "ASC"
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM comments WHERE job_id = ? ORDER BY id {order}",
                (job_id,),
            ).fetchall()
        return [
            Comment(
                id=row["id"],
                job_id=row["job_id"],
                user_id=row["user_id"],
                text=row["text"],
                t_created=row["t_created"],
            )
            for row in rows
        ]

    # =========================================================================
    # Workers
    # =========================================================================

    def _row_to_worker(self, row: sqlite3.Row) -> Worker:
        return Worker(
            id=row["id"],
            host=row["host"],
            instance=row["instance"],
            job_id=row["job_id"],
            t_seen=row["t_seen"],
        )

    def create_worker(self, host: str, instance: int = 1) -> Worker:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO workers (host, instance) VALUES (?, ?)", (host, instance)
            )
        return Worker(id=cursor.lastrowid, host=host, instance=instance)

    def get_worker(self, worker_id: int) -> Optional[Worker]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM workers WHERE id = ?", (worker_id,)).fetchone()
        return self._row_to_worker(row) if row else None

    def get_worker_for_job(self, job_id: int) -> Optional[Worker]:
        """The worker currently executing job_id, if any."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM workers WHERE job_id = ?", (job_id,)).fetchone()
        return self._row_to_worker(row) if row else None

    def assign_worker(self, worker_id: int, job_id: int) -> None:
        """Point the worker at job_id and record the assignment on the job."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE workers SET job_id = ? WHERE id = ?", (job_id, worker_id)
            )
            if cursor.rowcount == 0:
                raise WorkerNotFoundError(worker_id)
            conn.execute(
                "UPDATE jobs SET assigned_worker_id = ? WHERE id = ?", (worker_id, job_id)
            )

    def release_worker(self, worker_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE workers SET job_id = NULL WHERE id = ?", (worker_id,))

    def touch_worker(self, worker_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE workers SET t_seen = ? WHERE id = ?", (now_iso(), worker_id))

    def get_worker_property(self, worker_id: int, key: str) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM worker_properties WHERE worker_id = ? AND key = ?",
                (worker_id, key),
            ).fetchone()
        return row["value"] if row else None

    def set_worker_property(self, worker_id: int, key: str, value) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO worker_properties (worker_id, key, value) VALUES (?, ?, ?)
                ON CONFLICT (worker_id, key) DO UPDATE SET value = excluded.value
                """,
                (worker_id, key, None if value is None else str(value)),
            )

    def set_backend(self, job_id: int, backend: str, backend_info: dict) -> None:
        self.update_job(job_id, backend=backend, backend_info=json.dumps(backend_info))
