"""Process-local job store."""

import copy
import threading
from typing import Dict, List, Optional

from .base import BaseJobStore
from ..models.core import JobStatus, TranslationJob


class InMemoryJobStore(BaseJobStore):
    """Thread-safe store that keeps and hands out deep copies of jobs."""

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, TranslationJob] = {}

    def create(self, job: TranslationJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job already exists: {job.id}")
            self._jobs[job.id] = copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[TranslationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def save(self, job: TranslationJob) -> None:
        with self._lock:
            if job.id not in self._jobs:
                raise KeyError(job.id)
            self._jobs[job.id] = copy.deepcopy(job)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[TranslationJob]:
        with self._lock:
            jobs = [
                copy.deepcopy(job) for job in self._jobs.values()
                if status is None or job.status == status
            ]
        return sorted(jobs, key=lambda job: job.created_at)
