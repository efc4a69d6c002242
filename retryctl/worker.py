# retryctl/worker.py
import os
import time
import uuid
from multiprocessing import Process
from typing import Optional

from .adapters import SQLiteAdapter
from .config import ExecutorConfig, load_config
from .errors import EnqueueError
from .executor import Executor
from .log import get_logger, setup_logging
from .storage import (
    fetch_and_lock_next_job,
    register_worker,
    stop_worker_record,
    recover_running,
    config_get,
    config_set,          # <-- needed for graceful shutdown on Ctrl+C
)

logger = get_logger(__name__)


def build_executor(config: Optional[ExecutorConfig] = None) -> Executor:
    return Executor(SQLiteAdapter(), config=config or load_config())


def work_once(worker_id: str, executor: Executor) -> bool:
    """
    Claim and run one due job. Returns False when nothing was due.

    Escalated failures end the job's lineage, not the worker: the executor
    has already recorded them as 'escalated', so they are only logged here.
    A failed re-enqueue is recorded by hand since the adapter itself failed.
    """
    job = fetch_and_lock_next_job(worker_id, now=executor.clock())
    if job is None:
        return False
    job.worker_id = worker_id
    try:
        executor.run_job(job)
    except EnqueueError:
        logger.exception("Lost retry of job %s", job.id)
        try:
            executor.adapter.update(job)
        except Exception:
            logger.exception("Could not record job %s as escalated", job.id)
    except Exception:
        logger.exception("Job %s escalated", job.id)
    return True


def worker_loop(worker_id: str, poll_interval: Optional[float] = None):
    """
    Single worker process loop:
      - respects global 'shutdown' flag
      - fetches and locks one job at a time
      - runs it through the executor, which re-enqueues retries itself
      - always deregisters itself on exit
    """
    config = load_config()
    setup_logging(config.log_level)
    executor = build_executor(config)
    interval = poll_interval if poll_interval is not None else config.poll_interval

    register_worker(worker_id, os.getpid())
    recovered = recover_running()  # jobs orphaned by a crashed worker become due again
    if recovered:
        logger.warning("Recovered %d orphaned job(s)", recovered)
    logger.info("Worker %s started (pid %d)", worker_id, os.getpid())

    try:
        while True:
            if config_get("shutdown", "false") == "true":
                break
            if not work_once(worker_id, executor):
                time.sleep(interval)
    except KeyboardInterrupt:
        # quiet exit on Ctrl+C
        pass
    finally:
        stop_worker_record(worker_id)
        logger.info("Worker %s stopped", worker_id)


def start_workers(count: int):
    """
    Spawn N workers and join them. If Ctrl+C is pressed in the parent,
    set shutdown=true so children finish their current job and exit cleanly.
    """
    procs = []
    for _ in range(count):
        wid = f"w-{uuid.uuid4().hex[:8]}"
        p = Process(target=worker_loop, args=(wid,), daemon=False)
        p.start()
        procs.append(p)

    try:
        for p in procs:
            p.join()
    except KeyboardInterrupt:
        # parent interrupted -> request graceful stop for all workers
        config_set("shutdown", "true")
        for p in procs:
            p.join()
