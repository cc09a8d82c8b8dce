from __future__ import annotations
from dataclasses import replace
from typing import Callable, Dict, List, Optional
import logging

from .errors import QueueBusyError
from .models import AnalysisResult, Job, JobStatus

logger = logging.getLogger("sonic_lab.queue")

Listener = Callable[[int, List[Job]], None]


class JobQueue:
    """
    Ordered, versioned in-memory job collection.

    Only the batch runner changes job status/results; callers append or
    remove whole jobs. Every mutation bumps ``version`` and pushes a snapshot
    to subscribers so a UI can follow progress without polling the runner.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}  # dicts keep insertion order
        self._listeners: List[Listener] = []
        self.version = 0
        self.busy = False

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    # ---------- reads ----------
    def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    def snapshot(self) -> List[Job]:
        return [replace(j) for j in self._jobs.values()]

    def pending(self) -> List[Job]:
        return [replace(j) for j in self._jobs.values() if j.is_pending]

    def count(self, status: JobStatus) -> int:
        return sum(1 for j in self._jobs.values() if j.status is status)

    # ---------- whole-job mutations ----------
    def append(self, *jobs: Job) -> List[Job]:
        for job in jobs:
            if job.id in self._jobs:
                raise ValueError(f"duplicate job id {job.id}")
            self._jobs[job.id] = job
        if jobs:
            self._changed()
        return list(jobs)

    def remove(self, job_id: str) -> Optional[Job]:
        job = self._jobs.pop(job_id, None)
        if job is not None:
            self._changed()
        return job

    def clear(self) -> List[Job]:
        if self.busy:
            raise QueueBusyError("cannot clear the queue while a batch run is active")
        removed = list(self._jobs.values())
        self._jobs.clear()
        self._changed()
        return removed

    # ---------- field mutations ----------
    def update(self, job_id: str, **fields) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if not job:
            # removed mid-run: nothing left to update
            logger.debug("update skipped for missing job id=%s", job_id)
            return None
        for k, v in fields.items():
            if not hasattr(job, k):
                raise AttributeError(f"Job has no field {k!r}")
            setattr(job, k, v)
        self._changed()
        return replace(job)

    def mark_processing(self, job_id: str) -> Optional[Job]:
        return self.update(job_id, status=JobStatus.processing, result=None, error=None)

    def mark_completed(self, job_id: str, result: AnalysisResult) -> Optional[Job]:
        return self.update(job_id, status=JobStatus.completed, result=result, error=None)

    def mark_failed(self, job_id: str, error: str) -> Optional[Job]:
        return self.update(job_id, status=JobStatus.failed, result=None, error=error)

    # ---------- subscriptions ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _changed(self) -> None:
        self.version += 1
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(self.version, snap)
            except Exception:
                logger.exception("queue listener failed at version=%s", self.version)


# simple in-memory registry; jobs do not survive a restart
queue = JobQueue()
