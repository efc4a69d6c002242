import json
import os
import sqlite3
import threading
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import DEFAULTS, JobDescriptor, JobState
from .utils import utcnow

ENV_HOME = "RETRYCTL_HOME"
DEAD_STATES = (JobState.ESCALATED.value, JobState.EXHAUSTED.value)
_local = threading.local()


def db_path() -> Path:
    home = Path(os.environ.get(ENV_HOME, Path.home() / ".retryctl"))
    home.mkdir(parents=True, exist_ok=True)
    return home / "queue.db"


def get_conn() -> sqlite3.Connection:
    """One connection per thread, reopened when RETRYCTL_HOME moves."""
    path = db_path()
    conn = getattr(_local, "conn", None)
    if conn is not None and getattr(_local, "path", None) != path:
        conn.close()
        conn = None
    if conn is None:
        conn = sqlite3.connect(path, isolation_level=None, timeout=30)
        conn.row_factory = sqlite3.Row
        _local.conn = conn
        _local.path = path
        init_db(conn)
    return conn


def close_conn() -> None:
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None
        _local.path = None


def with_conn(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        conn = get_conn()
        return fn(conn, *args, **kwargs)
    return wrapper


def init_db(conn: sqlite3.Connection):
    conn.executescript(
        """
        PRAGMA journal_mode=WAL;
        CREATE TABLE IF NOT EXISTS jobs(
          id TEXT PRIMARY KEY,
          job_class TEXT NOT NULL,
          arguments TEXT NOT NULL,
          queue TEXT NOT NULL,
          priority INTEGER NOT NULL DEFAULT 0,
          state TEXT NOT NULL,
          executions INTEGER NOT NULL DEFAULT 0,
          exception_executions TEXT NOT NULL DEFAULT '{}',
          created_at TEXT NOT NULL,
          updated_at TEXT NOT NULL,
          scheduled_at TEXT,
          last_error TEXT,
          worker_id TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_jobs_state_scheduled ON jobs(state,scheduled_at);
        CREATE TABLE IF NOT EXISTS config(
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS workers(
          id TEXT PRIMARY KEY,
          pid INTEGER NOT NULL,
          started_at TEXT NOT NULL,
          stopped_at TEXT
        );
        """
    )
    # defaults
    for k, v in DEFAULTS.items():
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) ON CONFLICT(key) DO NOTHING",
            (k, str(v)),
        )
    conn.execute("INSERT INTO config(key,value) VALUES('shutdown','false') ON CONFLICT(key) DO NOTHING")


def _ts(value: Optional[datetime]) -> Optional[str]:
    # fixed width so that timestamps compare correctly as strings
    return value.isoformat(timespec="microseconds") if value is not None else None


def _row_params(job: JobDescriptor) -> Dict[str, object]:
    return {
        "id": job.id,
        "job_class": job.job_class,
        "arguments": json.dumps(job.arguments),
        "queue": job.queue,
        "priority": job.priority,
        "state": job.state.value,
        "executions": job.executions,
        "exception_executions": json.dumps(job.exception_executions, sort_keys=True),
        "created_at": _ts(job.created_at),
        "updated_at": _ts(job.updated_at),
        "scheduled_at": _ts(job.scheduled_at),
        "last_error": job.last_error,
        "worker_id": job.worker_id,
    }


def descriptor_from_row(row: sqlite3.Row) -> JobDescriptor:
    data = dict(row)
    data["arguments"] = json.loads(data["arguments"])
    data["exception_executions"] = json.loads(data["exception_executions"] or "{}")
    return JobDescriptor(**data)


@with_conn
def upsert_job(conn, job: JobDescriptor):
    conn.execute(
        """INSERT INTO jobs(id,job_class,arguments,queue,priority,state,executions,exception_executions,
                            created_at,updated_at,scheduled_at,last_error,worker_id)
           VALUES(:id,:job_class,:arguments,:queue,:priority,:state,:executions,:exception_executions,
                  :created_at,:updated_at,:scheduled_at,:last_error,:worker_id)
           ON CONFLICT(id) DO UPDATE SET
             job_class=excluded.job_class,
             arguments=excluded.arguments,
             queue=excluded.queue,
             priority=excluded.priority,
             state=excluded.state,
             executions=excluded.executions,
             exception_executions=excluded.exception_executions,
             updated_at=excluded.updated_at,
             scheduled_at=excluded.scheduled_at,
             last_error=excluded.last_error,
             worker_id=excluded.worker_id
        """, _row_params(job))


@with_conn
def get_job(conn, job_id: str) -> Optional[JobDescriptor]:
    row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    return descriptor_from_row(row) if row else None


@with_conn
def list_jobs(conn, state: Optional[str] = None) -> List[JobDescriptor]:
    if state:
        cur = conn.execute("SELECT * FROM jobs WHERE state=? ORDER BY created_at", (state,))
    else:
        cur = conn.execute("SELECT * FROM jobs ORDER BY created_at")
    return [descriptor_from_row(r) for r in cur.fetchall()]


@with_conn
def counts_by_state(conn) -> List[Tuple[str, int]]:
    cur = conn.execute("SELECT state, COUNT(*) FROM jobs GROUP BY state ORDER BY state")
    return [(r[0], r[1]) for r in cur.fetchall()]


@with_conn
def config_get(conn, key: str, default: Optional[str] = None) -> Optional[str]:
    row = conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
    return row[0] if row else default


@with_conn
def config_set(conn, key: str, value: str):
    conn.execute("INSERT INTO config(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value", (key, value))


@with_conn
def config_all(conn) -> Dict[str, str]:
    return {r["key"]: r["value"] for r in conn.execute("SELECT key, value FROM config").fetchall()}


@with_conn
def recover_running(conn) -> int:
    """Jobs left 'running' by a dead worker become due again."""
    now = _ts(utcnow())
    cur = conn.execute("""
      UPDATE jobs
         SET state='retrying', scheduled_at=?, worker_id=NULL, updated_at=?
       WHERE state='running'
    """, (now, now))
    return cur.rowcount


@with_conn
def fetch_and_lock_next_job(conn, worker_id: str, now: Optional[datetime] = None) -> Optional[JobDescriptor]:
    """BEGIN IMMEDIATE ensures only one writer wins; we move a job to running atomically."""
    now_s = _ts(now or utcnow())
    conn.execute("BEGIN IMMEDIATE")
    try:
        row = conn.execute(
            """
            SELECT id FROM jobs
             WHERE state IN ('pending','retrying') AND (scheduled_at IS NULL OR scheduled_at <= ?)
             ORDER BY priority DESC, scheduled_at ASC, created_at ASC
             LIMIT 1
            """, (now_s,)
        ).fetchone()
        if not row:
            conn.execute("COMMIT")
            return None
        conn.execute(
            "UPDATE jobs SET state='running', worker_id=?, updated_at=? WHERE id=?",
            (worker_id, now_s, row["id"]),
        )
        job = conn.execute("SELECT * FROM jobs WHERE id=?", (row["id"],)).fetchone()
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return descriptor_from_row(job)


@with_conn
def cancel_job(conn, job_id: str) -> bool:
    cur = conn.execute(
        "UPDATE jobs SET state='cancelled', updated_at=?, worker_id=NULL WHERE id=? AND state IN ('pending','retrying')",
        (_ts(utcnow()), job_id),
    )
    return cur.rowcount > 0


@with_conn
def reset_lineage(conn, job_id: str) -> bool:
    """Re-queue a dead job as a fresh lineage: attempt counters start over."""
    now = _ts(utcnow())
    cur = conn.execute(
        """
        UPDATE jobs
           SET state='pending', executions=0, exception_executions='{}', last_error=NULL,
               scheduled_at=?, updated_at=?, worker_id=NULL
         WHERE id=? AND state IN ('escalated','exhausted','discarded','cancelled')
        """, (now, now, job_id),
    )
    return cur.rowcount > 0


@with_conn
def register_worker(conn, wid: str, pid: int):
    conn.execute("INSERT INTO workers(id,pid,started_at) VALUES(?,?,?)", (wid, pid, _ts(utcnow())))


@with_conn
def stop_worker_record(conn, wid: str):
    conn.execute("UPDATE workers SET stopped_at=? WHERE id=?", (_ts(utcnow()), wid))


@with_conn
def list_workers(conn):
    return conn.execute("SELECT * FROM workers WHERE stopped_at IS NULL").fetchall()
