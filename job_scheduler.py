"""
Job scheduler for chapterdown
A single polling loop picks due jobs once per tick and hands each to its own worker
thread, so a slow download never holds up the loop.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from download_jobs import Job, JobContext, JobState, format_job_label

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class JobScheduler:
    """
    Holds the job set, polls it for due jobs and runs them

    Jobs are keyed by their derived id, so adding a job that is already known
    (e.g. re-imported from the store, or queued twice by a scan) is a no-op.
    """

    def __init__(self, context: JobContext, store=None, tick_interval: float = 1.0,
                 run_in_background: bool = True):
        self.context = context
        self.store = store
        self.tick_interval = tick_interval
        self.run_in_background = run_in_background
        self.jobs: Dict[str, Job] = {}
        self.lock = threading.Lock()
        self._stop = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []

    # ==================================================================
    # JOB SET
    # ==================================================================

    def add_job(self, job: Job) -> bool:
        with self.lock:
            if job.id in self.jobs:
                logger.debug(f"Job {job.id} already scheduled")
                return False
            self.jobs[job.id] = job
        logger.info(f"Added job {job.id}")
        return True

    def add_jobs(self, jobs: Iterable[Job]) -> int:
        return sum(1 for job in jobs if self.add_job(job))

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self.jobs.get(job_id)

    def get_jobs(self) -> List[Job]:
        with self.lock:
            return list(self.jobs.values())

    def remove_job(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self.jobs.pop(job_id, None)

    def cancel_job(self, job_id: str) -> bool:
        """
        Request cancellation of a job and every job it spawned, then drop them.
        Running downloads stop at their next checkpoint.
        """
        with self.lock:
            job = self.jobs.pop(job_id, None)
            if job is None:
                return False
            cancelled = [job]
            for child_id in [j.id for j in self.jobs.values() if j.parent_job_id == job_id]:
                cancelled.append(self.jobs.pop(child_id))

        for cancelled_job in cancelled:
            cancelled_job.progress_token.cancel()
            if cancelled_job.state != JobState.EXECUTING:
                cancelled_job.state = JobState.CANCELLED
                cancelled_job.progress_token.complete()
            logger.info(f"Cancelled job {cancelled_job.id}")
        return True

    # ==================================================================
    # POLLING
    # ==================================================================

    def run_pending(self, now: Optional[datetime] = None) -> List[Job]:
        """
        One tick: retire finished jobs, then start every due job

        Returns:
            The jobs started during this tick
        """
        now = now or datetime.now()
        with self.lock:
            for job in list(self.jobs.values()):
                if job.state == JobState.COMPLETED and job.is_recurring:
                    job.reschedule()
                elif job.state in (JobState.COMPLETED, JobState.CANCELLED):
                    del self.jobs[job.id]
                    logger.info(f"Finished job {job.id} ({format_job_label(job)})")

            due = [job for job in self.jobs.values() if job.is_due(now)]
            for job in due:
                job.state = JobState.EXECUTING
                job.last_execution = now

        for job in due:
            self._dispatch(job)
        return due

    def _dispatch(self, job: Job):
        logger.info(f"Executing job {job.id}")
        if not self.run_in_background:
            self._run_job(job)
            return
        worker = threading.Thread(target=self._run_job, args=(job,), name=f"job-{job.id}", daemon=True)
        with self.lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _run_job(self, job: Job):
        sub_jobs: List[Job] = []
        try:
            sub_jobs = job.execute(self.context) or []
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
        finally:
            job.progress_token.complete()

        # children are added before the job leaves EXECUTING, so the next tick
        # cannot retire a one-off parent while its children are still pending
        added = 0
        with self.lock:
            # cancel_job() takes the job out of the set under this lock
            cancelled = job.progress_token.cancellation_requested or self.jobs.get(job.id) is not job
            if cancelled and sub_jobs:
                logger.info(f"Job {job.id} was cancelled, dropping {len(sub_jobs)} spawned jobs")
            elif sub_jobs:
                for sub_job in sub_jobs:
                    if sub_job.id not in self.jobs:
                        self.jobs[sub_job.id] = sub_job
                        added += 1
            job.state = JobState.CANCELLED if cancelled else JobState.COMPLETED

        if added:
            logger.info(f"Job {job.id} spawned {added} new jobs")

    def wait_for_workers(self, timeout: Optional[float] = None):
        """Block until the worker threads started so far have finished"""
        with self.lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)

    # ==================================================================
    # LIFECYCLE
    # ==================================================================

    def _loop(self):
        logger.info(f"Scheduler loop started (tick {self.tick_interval}s)")
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            self._stop.wait(self.tick_interval)
        logger.info("Scheduler loop stopped")

    def load(self, connectors) -> int:
        """Import persisted jobs into the job set"""
        if self.store is None:
            return 0
        return self.add_jobs(self.store.import_jobs(connectors))

    def start(self):
        if self._loop_thread is not None and self._loop_thread.is_alive():
            return
        self._stop.clear()
        self._loop_thread = threading.Thread(target=self._loop, name='job-scheduler', daemon=True)
        self._loop_thread.start()

    def shutdown(self, timeout: Optional[float] = None):
        """Stop the loop and persist the job set"""
        self._stop.set()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
            self._loop_thread = None
        if self.store is not None:
            self.store.export_jobs(self.get_jobs())
