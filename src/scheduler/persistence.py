"""
Persistence Adapter for the form submission scheduler.

SQLite job store (WAL mode) with atomic single-row operations:
- Unique job_id enforced by the schema (DuplicateKeyError on collision)
- Conditional status updates (compare-and-set) for claims and cancels
- Batch claim inside one IMMEDIATE transaction
- Due-job query ordered by scheduled_time, then insertion sequence

Connectivity contract:
Every call runs under a CircuitBreaker. Connection or I/O errors surface as
StoreUnavailableError; after repeated failures calls fail fast until the
reset timeout elapses. There are no retry loops inside query methods.
"""

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .entities import (
    FormTemplate,
    Job,
    JobStatus,
    StatusUpdate,
    TERMINAL_STATUSES,
    parse_iso,
    parse_optional_iso,
    to_iso,
    utc_now,
)
from .errors import (
    DuplicateKeyError,
    StoreUnavailableError,
    TemplateNotFoundError,
)


logger = logging.getLogger(__name__)

# Columns a StatusUpdate may write besides status/updated_at
UPDATABLE_FIELDS = frozenset({"executed_at", "error_message", "requeued_at"})


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for store access.

    closed -> open after `failure_threshold` consecutive failures.
    open -> half_open once `reset_timeout` seconds have passed. Exactly one caller
    is let through as the trial; others fail fast until it closes the breaker
    (success) or re-opens it (failure).
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._opened_at is None:
                return "closed"
            if self._clock() - self._opened_at >= self.reset_timeout:
                return "half_open"
            return "open"

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def before_call(self) -> None:
        """Raise StoreUnavailableError while the breaker is open."""
        with self._lock:
            if self._opened_at is None:
                return
            remaining = self.reset_timeout - (self._clock() - self._opened_at)
            if remaining <= 0:
                if not self._trial_in_flight:
                    self._trial_in_flight = True
                    return
                raise StoreUnavailableError("Job store circuit half-open; trial call in progress")
        raise StoreUnavailableError(
            f"Job store circuit open after {self._failures} failure(s); "
            f"retry in {remaining:.0f}s"
        )

    def record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("Job store reachable again, closing circuit")
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._failures >= self.failure_threshold:
                if self._opened_at is None:
                    logger.warning(
                        f"Opening job store circuit after {self._failures} "
                        f"consecutive failure(s)"
                    )
                self._opened_at = self._clock()


class PersistenceAdapter:
    """
    SQLite-based job store.

    - Owns uniqueness and status-transition atomicity
    - Does NOT contain business logic (lead time, due window, validation)
    """

    def __init__(
        self,
        db_path: str | Path,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        busy_timeout: float = 10.0,
    ):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file. Use ":memory:" for testing.
            failure_threshold: Consecutive failures before the circuit opens
            reset_timeout: Seconds the circuit stays open
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self.breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
        )

        # An in-memory database only exists for the lifetime of one connection
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

        if self.db_path == ":memory:":
            self._shared_conn = self._open()
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Run a store call under the circuit breaker."""
        self.breaker.before_call()
        failed = False
        try:
            yield
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            failed = True
            self.breaker.record_failure()
            raise StoreUnavailableError(f"Job store unavailable: {e}") from e
        finally:
            if not failed:
                self.breaker.record_success()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        with self._guard():
            if self._shared_conn is not None:
                with self._shared_lock:
                    yield self._shared_conn
                return

            conn = self._open()
            try:
                yield conn
            finally:
                conn.close()

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE) so that
                reads inside the transaction cannot be invalidated by another
                writer before the update lands.
        """
        with self._connection() as conn:
            try:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            if self._shared_conn is None:
                conn.execute("PRAGMA journal_mode=WAL")

            # sequence gives a stable insertion order for scheduled_time ties
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL UNIQUE,
                    payload TEXT NOT NULL,
                    scheduled_time TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    executed_at TEXT,
                    error_message TEXT,
                    template_id TEXT,
                    requeued_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_due
                ON jobs (status, scheduled_time, sequence)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_created
                ON jobs (created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS form_templates (
                    template_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Health
    # =========================================================================

    def check_health(self) -> bool:
        """
        Check the database, bypassing an open circuit.

        A successful check closes the circuit; a failed one counts as a failure.
        """
        try:
            conn = self._shared_conn or self._open()
            try:
                conn.execute("SELECT 1").fetchone()
            finally:
                if conn is not self._shared_conn:
                    conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Job store health check failed: {e}")
            self.breaker.record_failure()
            return False

        self.breaker.record_success()
        return True

    # =========================================================================
    # Job Operations
    # =========================================================================

    def insert_job(self, job: Job) -> Job:
        """
        Insert a new job.

        Raises:
            DuplicateKeyError: If job_id already exists
        """
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO jobs
                    (job_id, payload, scheduled_time, status, executed_at,
                     error_message, template_id, requeued_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.job_id,
                        json.dumps(job.payload),
                        to_iso(job.scheduled_time),
                        job.status.value,
                        to_iso(job.executed_at) if job.executed_at else None,
                        job.error_message,
                        job.template_id,
                        to_iso(job.requeued_at) if job.requeued_at else None,
                        to_iso(job.created_at),
                        to_iso(job.updated_at),
                    ),
                )
                job.sequence = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(job.job_id) from e

        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            job_id=row["job_id"],
            payload=json.loads(row["payload"]),
            scheduled_time=parse_iso(row["scheduled_time"]),
            status=JobStatus(row["status"]),
            executed_at=parse_optional_iso(row["executed_at"]),
            error_message=row["error_message"],
            template_id=row["template_id"],
            requeued_at=parse_optional_iso(row["requeued_at"]),
            sequence=row["sequence"],
            created_at=parse_iso(row["created_at"]),
            updated_at=parse_iso(row["updated_at"]),
        )

    def find_due_jobs(
        self,
        until: datetime,
        since: Optional[datetime] = None,
    ) -> list[Job]:
        """
        Find PENDING jobs due no later than `until`.

        Args:
            until: Upper bound on scheduled_time (now + forward buffer)
            since: Optional lower bound. Re-queued jobs are measured from
                requeued_at instead of scheduled_time.

        Returns:
            Jobs ordered by scheduled_time ASC, then insertion sequence ASC
        """
        query = "SELECT * FROM jobs WHERE status = ? AND scheduled_time <= ?"
        params: list = [JobStatus.PENDING.value, to_iso(until)]

        if since is not None:
            query += " AND COALESCE(requeued_at, scheduled_time) >= ?"
            params.append(to_iso(since))

        query += " ORDER BY scheduled_time ASC, sequence ASC"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_job(row) for row in rows]

    def compare_and_set_status(
        self,
        job_id: str,
        update: StatusUpdate,
        now: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Atomically apply `update` if the job's status is one of update.expected.

        Returns:
            The updated Job, or None if the job is missing or its status did
            not match.
        """
        if not update.expected:
            return None

        unknown = set(update.fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable via status update: {sorted(unknown)}")

        assignments = ["status = ?", "updated_at = ?"]
        values: list = [update.new_status.value, to_iso(now or utc_now())]

        for name, value in update.fields.items():
            assignments.append(f"{name} = ?")
            values.append(to_iso(value) if isinstance(value, datetime) else value)

        expected = sorted(status.value for status in update.expected)
        placeholders = ", ".join("?" for _ in expected)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE jobs
                SET {', '.join(assignments)}
                WHERE job_id = ? AND status IN ({placeholders})
                """,
                (*values, job_id, *expected),
            )

            if cursor.rowcount == 0:
                return None

            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        return self._row_to_job(row)

    def batch_compare_and_set_status(
        self,
        job_ids: Iterable[str],
        expected: JobStatus,
        new_status: JobStatus,
        now: Optional[datetime] = None,
    ) -> list[str]:
        """
        Atomically move every listed job still in `expected` to `new_status`.

        Runs in one IMMEDIATE transaction, so two concurrent callers can never
        both modify the same job.

        Returns:
            IDs of the jobs that were modified, in input order
        """
        ids = list(dict.fromkeys(job_ids))
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)

        with self._transaction(immediate=True) as conn:
            rows = conn.execute(
                f"SELECT job_id FROM jobs WHERE status = ? AND job_id IN ({placeholders})",
                (expected.value, *ids),
            ).fetchall()
            matched = {row["job_id"] for row in rows}

            if matched:
                matched_ids = [job_id for job_id in ids if job_id in matched]
                matched_placeholders = ", ".join("?" for _ in matched_ids)
                conn.execute(
                    f"""
                    UPDATE jobs
                    SET status = ?, updated_at = ?
                    WHERE status = ? AND job_id IN ({matched_placeholders})
                    """,
                    (
                        new_status.value,
                        to_iso(now or utc_now()),
                        expected.value,
                        *matched_ids,
                    ),
                )

        return [job_id for job_id in ids if job_id in matched]

    def delete_job(self, job_id: str) -> bool:
        """Delete a job in any status. Returns True if a row was removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
        return cursor.rowcount > 0

    def list_jobs(self, limit: int = 50) -> list[Job]:
        """List jobs, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC, sequence DESC LIMIT ?",
                (limit,),
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def list_jobs_by_status(self, status: JobStatus, limit: int = 100) -> list[Job]:
        """List jobs by status in execution order."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ?
                ORDER BY scheduled_time ASC, sequence ASC
                LIMIT ?
                """,
                (status.value, limit),
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def count_jobs_by_status(self) -> dict[JobStatus, int]:
        """Aggregate job counts per status (every status present, zero if none)."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM jobs GROUP BY status"
            ).fetchall()

        counts = {status: 0 for status in JobStatus}
        for row in rows:
            counts[JobStatus(row["status"])] = row["count"]
        return counts

    # =========================================================================
    # Recovery / Maintenance Queries
    # =========================================================================

    def find_stale_processing_jobs(self, updated_before: datetime) -> list[Job]:
        """PROCESSING jobs not touched since `updated_before`."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ? AND updated_at < ?
                ORDER BY scheduled_time ASC, sequence ASC
                """,
                (JobStatus.PROCESSING.value, to_iso(updated_before)),
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def count_overdue_pending(self, before: datetime) -> int:
        """Count PENDING jobs that fell out of the due window (older than `before`)."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count FROM jobs
                WHERE status = ? AND COALESCE(requeued_at, scheduled_time) < ?
                """,
                (JobStatus.PENDING.value, to_iso(before)),
            ).fetchone()

        return row["count"]

    def delete_terminal_jobs_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs created before `cutoff`. Returns rows removed."""
        statuses = sorted(status.value for status in TERMINAL_STATUSES)
        placeholders = ", ".join("?" for _ in statuses)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM jobs WHERE created_at < ? AND status IN ({placeholders})",
                (to_iso(cutoff), *statuses),
            )
        return cursor.rowcount

    # =========================================================================
    # FormTemplate Operations
    # =========================================================================

    def create_template(self, template: FormTemplate) -> FormTemplate:
        """Create a new form template."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO form_templates
                (template_id, name, payload, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    template.template_id,
                    template.name,
                    json.dumps(template.payload),
                    1 if template.is_active else 0,
                    to_iso(template.created_at),
                    to_iso(template.updated_at),
                ),
            )
        return template

    def get_template(self, template_id: str) -> Optional[FormTemplate]:
        """Get a form template by ID (active or not)."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM form_templates WHERE template_id = ?",
                (template_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_template(row)

    def _row_to_template(self, row: sqlite3.Row) -> FormTemplate:
        return FormTemplate(
            template_id=row["template_id"],
            name=row["name"],
            payload=json.loads(row["payload"]),
            is_active=bool(row["is_active"]),
            created_at=parse_iso(row["created_at"]),
            updated_at=parse_iso(row["updated_at"]),
        )

    def list_templates(self, include_inactive: bool = False) -> list[FormTemplate]:
        """List form templates, newest first."""
        query = "SELECT * FROM form_templates"
        if not include_inactive:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC"

        with self._connection() as conn:
            rows = conn.execute(query).fetchall()

        return [self._row_to_template(row) for row in rows]

    def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> FormTemplate:
        """
        Update a form template.

        Changes apply only to jobs scheduled afterwards; existing jobs keep
        their payload snapshot.
        """
        if self.get_template(template_id) is None:
            raise TemplateNotFoundError(template_id)

        updates = []
        values: list = []

        if name is not None:
            updates.append("name = ?")
            values.append(name)
        if payload is not None:
            updates.append("payload = ?")
            values.append(json.dumps(payload))

        if updates:
            updates.append("updated_at = ?")
            values.append(to_iso(utc_now()))
            values.append(template_id)

            with self._transaction() as conn:
                conn.execute(
                    f"UPDATE form_templates SET {', '.join(updates)} WHERE template_id = ?",
                    values,
                )

        return self.get_template(template_id)

    def deactivate_template(self, template_id: str) -> bool:
        """Soft delete. Returns True if the template existed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE form_templates SET is_active = 0, updated_at = ? WHERE template_id = ?",
                (to_iso(utc_now()), template_id),
            )
        return cursor.rowcount > 0

    def delete_template(self, template_id: str) -> bool:
        """Hard delete. Returns True if a row was removed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM form_templates WHERE template_id = ?",
                (template_id,),
            )
        return cursor.rowcount > 0
