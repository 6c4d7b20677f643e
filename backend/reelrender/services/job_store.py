"""Job table for render jobs.

The in-memory store is per-process only. A durable backend (Redis, a DB
table) can replace it by implementing JobStore; the pipeline only talks to
the interface.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Iterable

from reelrender.exceptions import JobNotFoundError
from reelrender.models.render_job import RenderJob, RenderStatus


class JobStore(ABC):
    """Storage interface for render job records."""

    @abstractmethod
    def create(self, job: RenderJob) -> RenderJob:
        """Insert a new job. Ids are unique; inserting a known id is an error."""

    @abstractmethod
    def get(self, job_id: str) -> RenderJob | None:
        """Return a snapshot of the job, or None if unknown."""

    @abstractmethod
    def update(self, job_id: str, mutate: Callable[[RenderJob], None]) -> RenderJob:
        """Apply `mutate` to the stored record atomically and return a snapshot."""

    @abstractmethod
    def list_by_status(self, statuses: Iterable[RenderStatus]) -> list[RenderJob]:
        """Snapshots of all jobs whose status is in `statuses`, oldest first."""


class InMemoryJobStore(JobStore):
    """Thread-safe in-memory job table."""

    def __init__(self) -> None:
        self._jobs: dict[str, RenderJob] = {}
        self._lock = threading.Lock()

    def create(self, job: RenderJob) -> RenderJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Duplicate job id: {job.id}")
            self._jobs[job.id] = job
            return job.snapshot()

    def get(self, job_id: str) -> RenderJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def update(self, job_id: str, mutate: Callable[[RenderJob], None]) -> RenderJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            mutate(job)
            return job.snapshot()

    def list_by_status(self, statuses: Iterable[RenderStatus]) -> list[RenderJob]:
        wanted = set(statuses)
        with self._lock:
            jobs = [job.snapshot() for job in self._jobs.values() if job.status in wanted]
        return sorted(jobs, key=lambda j: j.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
