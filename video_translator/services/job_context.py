"""Per-job state shared by the orchestrator and its language workers."""

import threading
from datetime import datetime
from typing import Dict, Iterable, Optional

from .base import BaseJobStore
from .error_handler import JobCancelled
from ..models.core import ResultStatus, TranslationJob, TranslationResult

PREPARATION_SHARE = 30
LANGUAGE_SHARE = 70


class ProgressTracker:
    """Computes monotonic job progress from completed stage fractions.

    Preparation (fetch, probe, extraction, chunking, transcription) accounts
    for 30 percent and the target languages share the remaining 70 percent
    equally.
    """

    def __init__(self, languages: Iterable[str]):
        self._lock = threading.Lock()
        self._preparation = 0.0
        self._languages: Dict[str, float] = {language: 0.0 for language in languages}
        self._percent = 0

    @property
    def percent(self) -> int:
        with self._lock:
            return self._percent

    def preparation(self, fraction: float) -> int:
        """Record preparation progress (0-1) and return the job percentage."""
        with self._lock:
            self._preparation = max(self._preparation, _clamp(fraction))
            return self._recompute()

    def language(self, language: str, fraction: float) -> int:
        """Record one language's progress (0-1) and return the job percentage."""
        with self._lock:
            current = self._languages.get(language, 0.0)
            self._languages[language] = max(current, _clamp(fraction))
            return self._recompute()

    def complete(self) -> int:
        with self._lock:
            self._percent = 100
            return self._percent

    def _recompute(self) -> int:
        if self._languages:
            language_part = sum(self._languages.values()) / len(self._languages)
        else:
            language_part = 0.0
        value = int(PREPARATION_SHARE * self._preparation + LANGUAGE_SHARE * language_part)
        # Only a terminal job reports 100
        self._percent = max(self._percent, min(value, 99))
        return self._percent


def _clamp(fraction: float) -> float:
    return min(max(fraction, 0.0), 1.0)


class JobContext:
    """Everything a running job needs, passed through every pipeline call.

    All job and result mutations go through this object and happen under its
    lock, followed by a save to the job store.
    """

    def __init__(self, job: TranslationJob, store: BaseJobStore):
        self.job = job
        self.store = store
        self.workdir: Optional[str] = None
        self.cancel_event = threading.Event()
        self.finished = threading.Event()
        self.lock = threading.RLock()
        self.tracker = ProgressTracker(job.target_languages)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self, stage: str = "") -> None:
        """Stop at a stage boundary once cancellation was requested.

        Raises:
            JobCancelled: If the job's cancel flag is set
        """
        if self.cancel_event.is_set():
            where = f" before {stage}" if stage else ""
            raise JobCancelled(f"Job {self.job.id} cancelled{where}")

    def update_job(self, **changes) -> None:
        """Apply field changes to the job and persist it."""
        with self.lock:
            for name, value in changes.items():
                setattr(self.job, name, value)
            self._persist()

    def update_result(self, language: str, **changes) -> TranslationResult:
        """Apply field changes to one language's result and persist the job."""
        with self.lock:
            result = self.job.result_for(language)
            if result is None:
                raise KeyError(language)
            for name, value in changes.items():
                setattr(result, name, value)
            self._persist()
            return result

    def result_status(self, language: str) -> Optional[ResultStatus]:
        with self.lock:
            result = self.job.result_for(language)
            return result.status if result is not None else None

    def advance_preparation(self, fraction: float) -> None:
        with self.lock:
            self.job.progress = self.tracker.preparation(fraction)
            self._persist()

    def advance_language(self, language: str, fraction: float) -> None:
        with self.lock:
            self.job.progress = self.tracker.language(language, fraction)
            self._persist()

    def close_results(self, status: ResultStatus, message: Optional[str] = None,
                      classification: Optional[str] = None) -> None:
        """Move every non-terminal result to a terminal status."""
        with self.lock:
            now = datetime.now()
            for result in self.job.results:
                if result.status.is_terminal:
                    continue
                result.status = status
                result.error_message = message
                result.error_classification = classification
                result.completed_at = now
            self._persist()

    def _persist(self) -> None:
        self.job.updated_at = datetime.now()
        self.store.save(self.job)
