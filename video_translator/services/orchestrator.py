"""Job orchestration: schedules jobs and drives them through the pipeline."""

import logging
import os
import shutil
import tempfile
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .assembly import AssemblyEngine
from .base import BaseJobStore, BaseNotificationSink, BaseObjectStorage
from .chunking import ChunkingEngine
from .config_manager import ConfigurationManager
from .dubbing_service import DubbingService
from .error_handler import (
    ErrorHandler, ErrorSeverity, JobCancelled, MediaTooLong, MediaUnreadable,
    NoAudioContent, UnsupportedLanguagePair
)
from .job_context import JobContext
from .job_store import InMemoryJobStore
from .media_shell import MediaShell
from .notification import LoggingNotificationSink
from .script_exporter import ScriptExporter
from .storage import LocalObjectStorage
from .text_heuristics import HeuristicProperNounDetector
from .transcription_service import FasterWhisperRecognizer, TranscriptionService
from .translation_service import TranslationService, build_translation_backend
from .tts_service import EdgeTTSBackend, SpeechSynthesisEngine
from .voice_analysis import SpeakerAnalyzer
from ..models.core import (
    AudioChunk, JobEvent, JobStatus, ProcessingConfig, ResultStatus, TranslationJob, TranslationResult
)
from ..models.languages import AUTO, normalize_language_code

logger = logging.getLogger(__name__)

# Free resources recommended before a job starts
REQUIRED_MEMORY_GB = 2.0
REQUIRED_DISK_GB = 1.0

# Preparation progress reached after each step
FETCHED = 0.05
PROBED = 0.1
EXTRACTED = 0.2
CHUNKED = 0.3
ANALYZED = 0.4


class JobOrchestrator:
    """Schedules translation jobs and drives each one to a terminal state."""

    def __init__(
        self,
        config: ProcessingConfig,
        media_shell: MediaShell,
        storage: BaseObjectStorage,
        job_store: BaseJobStore,
        transcription_service: TranscriptionService,
        dubbing_service: DubbingService,
        chunking_engine: Optional[ChunkingEngine] = None,
        speaker_analyzer: Optional[SpeakerAnalyzer] = None,
        notification_sink: Optional[BaseNotificationSink] = None,
        config_manager: Optional[ConfigurationManager] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        self.config = config
        self.media_shell = media_shell
        self.storage = storage
        self.job_store = job_store
        self.transcription_service = transcription_service
        self.dubbing_service = dubbing_service
        self.chunking_engine = chunking_engine or ChunkingEngine(media_shell, config)
        self.speaker_analyzer = speaker_analyzer
        self.notification_sink = notification_sink
        self.config_manager = config_manager
        self.error_handler = error_handler or ErrorHandler()

        self.dubbing_service.notify = self._notify
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, config.max_concurrent_jobs), thread_name_prefix="translation-job"
        )
        self._lock = threading.Lock()
        self._contexts: Dict[str, JobContext] = {}
        self._futures: Dict[str, Future] = {}

    @classmethod
    def from_config(
        cls,
        config: ProcessingConfig,
        storage: Optional[BaseObjectStorage] = None,
        job_store: Optional[BaseJobStore] = None,
        notification_sink: Optional[BaseNotificationSink] = None,
        error_handler: Optional[ErrorHandler] = None
    ) -> 'JobOrchestrator':
        """Build an orchestrator wired to the production backends.

        Uses faster-whisper for transcription, the configured translation
        backend and edge-tts for synthesis.
        """
        error_handler = error_handler or ErrorHandler()
        config_manager = ConfigurationManager()
        media_shell = MediaShell(config.ffmpeg_cmd, config.ffprobe_cmd, config.media_timeout_seconds)
        storage = storage or LocalObjectStorage(config.storage_root)
        detector = HeuristicProperNounDetector(config.proper_noun_strictness)

        device, compute_type = config_manager.resolve_whisper_device(config)
        recognizer = FasterWhisperRecognizer(config.whisper_model_size, device, compute_type)
        transcription = TranscriptionService(recognizer, config, detector, error_handler)

        translation = TranslationService(
            build_translation_backend(config), config, detector, error_handler=error_handler
        )
        synthesis = SpeechSynthesisEngine(
            EdgeTTSBackend(config.service_timeout_seconds), media_shell, config, error_handler=error_handler
        )
        dubbing = DubbingService(
            translation,
            synthesis,
            AssemblyEngine(media_shell, config, error_handler),
            storage,
            config,
            script_exporter=ScriptExporter(error_handler),
            error_handler=error_handler
        )
        analyzer = SpeakerAnalyzer(media_shell) if config.enable_gender_detection else None

        return cls(
            config,
            media_shell,
            storage,
            job_store or InMemoryJobStore(),
            transcription,
            dubbing,
            speaker_analyzer=analyzer,
            notification_sink=notification_sink or LoggingNotificationSink(),
            config_manager=config_manager,
            error_handler=error_handler
        )

    # -- public operations -------------------------------------------------

    def submit(self, job: TranslationJob) -> str:
        """Persist a job as PENDING and schedule it.

        Target languages are normalized to ISO codes where known and
        de-duplicated in their declared order; one PENDING result is created
        per language.

        Raises:
            ValueError: If the job has no target languages or its id is taken
        """
        languages: List[str] = []
        for language in job.target_languages:
            code = normalize_language_code(language) or language.strip().lower()
            if code and code not in languages:
                languages.append(code)
        if not languages:
            raise ValueError("At least one target language is required")

        job.target_languages = languages
        job.results = [TranslationResult(target_language=language) for language in languages]
        job.status = JobStatus.PENDING
        job.progress = 0
        job.updated_at = datetime.now()
        self.job_store.create(job)

        context = JobContext(job, self.job_store)
        with self._lock:
            self._contexts[job.id] = context
            self._futures[job.id] = self._executor.submit(self._run_job, context)
        logger.info(f"[job {job.id}] submitted for {', '.join(languages)}")
        return job.id

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a job.

        Returns:
            False if the job is unknown or already terminal, True otherwise
        """
        with self._lock:
            context = self._contexts.get(job_id)
            future = self._futures.get(job_id)
        if context is None:
            return False
        with context.lock:
            if context.job.status.is_terminal:
                return False
            context.cancel_event.set()

        if future is not None and future.cancel():
            logger.info(f"[job {job_id}] cancelled before it started")
            self._finish_cancelled(context)
            self._release(context)
        else:
            logger.info(f"[job {job_id}] cancellation requested")
        return True

    def wait(self, job_id: str, timeout: Optional[float] = None) -> TranslationJob:
        """Block until a job is terminal and return a snapshot of it.

        Raises:
            KeyError: If the job is unknown
            TimeoutError: If the job is still running after ``timeout`` seconds
        """
        with self._lock:
            context = self._contexts.get(job_id)
        if context is not None and not context.finished.wait(timeout):
            raise TimeoutError(f"Job {job_id} did not finish within {timeout}s")
        job = self.job_store.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def get_job(self, job_id: str) -> Optional[TranslationJob]:
        return self.job_store.get(job_id)

    def get_system_stats(self) -> Dict[str, Any]:
        """Scheduler, job-status and error statistics."""
        with self._lock:
            contexts = list(self._contexts.values())
        running = sum(1 for c in contexts if c.job.status == JobStatus.PROCESSING)
        queued = sum(1 for c in contexts if c.job.status == JobStatus.PENDING)
        by_status = Counter(job.status.value for job in self.job_store.list_jobs())

        stats = {
            'active_jobs': running,
            'queued_jobs': queued,
            'max_concurrent_jobs': self.config.max_concurrent_jobs,
            'jobs_by_status': dict(by_status),
            'errors': self.error_handler.get_error_summary(),
        }
        if self.config_manager is not None:
            usage = self.config_manager.get_resource_usage(self._temp_root())
            stats['resources'] = {
                'cpu_percent': usage.cpu_percent,
                'memory_percent': usage.memory_percent,
                'disk_free_gb': round(usage.disk_free_gb, 2),
            }
        return stats

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs; without ``wait``, running jobs are asked to cancel."""
        if not wait:
            with self._lock:
                contexts = list(self._contexts.values())
            for context in contexts:
                context.cancel_event.set()
        self._executor.shutdown(wait=wait)

    # -- job pipeline ------------------------------------------------------

    def _run_job(self, context: JobContext) -> None:
        job = context.job
        try:
            context.raise_if_cancelled("start")
            self._check_resources(job.id)
            context.workdir = tempfile.mkdtemp(prefix=f"translation_{job.id}_", dir=self.config.temp_root)
            context.update_job(status=JobStatus.PROCESSING, error_message=None, error_classification=None)
            self._notify(job.id, JobEvent.JOB_STARTED, {'languages': list(job.target_languages)})

            chunks, source_language, video_path = self._prepare(context)
            self._fan_out(context, chunks, source_language, video_path)
            self._finish(context)
        except JobCancelled:
            logger.info(f"[job {job.id}] cancelled")
            self._finish_cancelled(context)
        except Exception as e:
            self._fail_job(context, e)
        finally:
            self._cleanup(context)
            self._release(context)

    def _prepare(self, context: JobContext) -> Tuple[List[AudioChunk], str, str]:
        """Fetch, probe, extract, chunk and transcribe the source media.

        Returns:
            Tuple of (transcribed chunks, resolved source language, local video path)
        """
        job = context.job
        hint = job.source_language or AUTO
        if hint.lower() != AUTO and normalize_language_code(hint) is None:
            raise UnsupportedLanguagePair(hint, ", ".join(job.target_languages), reason="unknown source language")

        video_path = self._fetch_media(context)
        context.advance_preparation(FETCHED)

        context.raise_if_cancelled("probing")
        info = self._media(self.media_shell.probe, video_path)
        if info.duration_seconds > self.config.max_video_duration_seconds:
            raise MediaTooLong(
                f"Video is {info.duration_seconds:.0f}s, limit is {self.config.max_video_duration_seconds:.0f}s"
            )
        if not info.has_audio_stream:
            raise NoAudioContent(f"Job {job.id}: source video has no audio stream")
        context.advance_preparation(PROBED)

        context.raise_if_cancelled("audio extraction")
        audio_path = os.path.join(context.workdir, "source_audio.wav")
        self._media(self.media_shell.extract_audio, video_path, audio_path)
        context.advance_preparation(EXTRACTED)

        context.raise_if_cancelled("chunking")
        chunk_dir = os.path.join(context.workdir, "chunks")
        os.makedirs(chunk_dir, exist_ok=True)
        chunks = self.chunking_engine.chunk(audio_path, chunk_dir)
        context.advance_preparation(CHUNKED)

        if self.speaker_analyzer is not None:
            for chunk in chunks:
                context.raise_if_cancelled(f"voice analysis of chunk {chunk.index}")
                chunk.speaker_gender = self.speaker_analyzer.estimate_gender(chunk.path)
            logger.debug(f"[job {job.id}] speaker genders: {[c.speaker_gender.value for c in chunks]}")
        context.advance_preparation(ANALYZED)

        detected = []
        for position, chunk in enumerate(chunks, start=1):
            context.raise_if_cancelled(f"transcribing chunk {chunk.index}")
            transcript = self.transcription_service.transcribe_chunk(chunk, hint)
            chunk.transcript = transcript.text
            if transcript.language:
                detected.append(transcript.language)
            context.advance_preparation(ANALYZED + (1.0 - ANALYZED) * position / len(chunks))

        source_language = self._resolve_source_language(job, hint, detected, chunks)
        context.update_job(resolved_source_language=source_language)
        logger.info(f"[job {job.id}] {len(chunks)} chunk(s) transcribed, source language {source_language}")
        return chunks, source_language, video_path

    def _fetch_media(self, context: JobContext) -> str:
        key = context.job.media_key
        try:
            data = self.storage.get(key)
        except KeyError as e:
            raise MediaUnreadable(f"Source media not found in storage: {key}") from e
        extension = os.path.splitext(key)[1] or ".mp4"
        video_path = os.path.join(context.workdir, f"source{extension}")
        with open(video_path, 'wb') as f:
            f.write(data)
        return video_path

    def _resolve_source_language(self, job: TranslationJob, hint: str, detected: List[str],
                                 chunks: List[AudioChunk]) -> str:
        """Pick the job's source language.

        An explicit hint wins. Otherwise the language the recognizer reported
        for most chunks is used, and only when it reported none is the
        transcript classified.

        Raises:
            UnsupportedLanguagePair: If the recognizer's majority language is unknown
        """
        if hint.lower() != AUTO:
            return normalize_language_code(hint)
        votes = Counter(lang.strip().lower() for lang in detected if lang and lang.strip())
        if votes:
            reported = votes.most_common(1)[0][0]
            code = normalize_language_code(reported)
            if code is None:
                raise UnsupportedLanguagePair(
                    reported, ", ".join(job.target_languages), reason="detected source language is not supported"
                )
            return code
        text = " ".join(chunk.transcript or "" for chunk in chunks)
        return self.dubbing_service.translation_service.detect_language(text)

    def _fan_out(self, context: JobContext, chunks: List[AudioChunk], source_language: str, video_path: str) -> None:
        """Run every target language, at most ``language_fanout`` at a time."""
        languages = list(context.job.target_languages)
        workers = max(1, min(self.config.language_fanout, len(languages)))
        cancelled = False
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"lang-{context.job.id[:8]}") as pool:
            futures = [
                pool.submit(self.dubbing_service.process_language, context, chunks, source_language,
                            language, video_path)
                for language in languages
            ]
            for future in futures:
                try:
                    future.result()
                except JobCancelled:
                    cancelled = True
        if cancelled:
            raise JobCancelled(f"Job {context.job.id} cancelled during language processing")

    def _finish(self, context: JobContext) -> None:
        job = context.job
        with context.lock:
            completed = [r for r in job.results if r.status == ResultStatus.COMPLETED]
            failed = [r for r in job.results if r.status == ResultStatus.FAILED]
            context.tracker.complete()
            if completed:
                summary = None
                if failed:
                    summary = "Failed languages: " + ", ".join(
                        f"{r.target_language} ({r.error_classification})" for r in failed
                    )
                context.update_job(
                    status=JobStatus.COMPLETED,
                    progress=100,
                    error_message=summary,
                    completed_at=datetime.now()
                )
                event = JobEvent.JOB_COMPLETED
            else:
                first = failed[0] if failed else None
                context.update_job(
                    status=JobStatus.FAILED,
                    progress=100,
                    error_message=first.error_message if first else "No target language completed",
                    error_classification=first.error_classification if first else "internal_error",
                    completed_at=datetime.now()
                )
                event = JobEvent.JOB_FAILED

        logger.info(f"[job {job.id}] {job.status.value}: {len(completed)} completed, {len(failed)} failed")
        self._notify(job.id, event, {
            'completed': [r.target_language for r in completed],
            'failed': [r.target_language for r in failed],
        })

    def _fail_job(self, context: JobContext, error: Exception) -> None:
        job = context.job
        classification, user_message = self.error_handler.describe(error)
        self.error_handler.log_error(
            error,
            severity=ErrorSeverity.ERROR,
            context={'job_id': job.id, 'stage': 'job'}
        )
        with context.lock:
            context.close_results(ResultStatus.FAILED, user_message, classification)
            context.tracker.complete()
            context.update_job(
                status=JobStatus.FAILED,
                progress=100,
                error_message=user_message,
                error_classification=classification,
                completed_at=datetime.now()
            )
        self._notify(job.id, JobEvent.JOB_FAILED, {'classification': classification})

    def _finish_cancelled(self, context: JobContext) -> None:
        job = context.job
        with context.lock:
            context.close_results(ResultStatus.CANCELLED, JobCancelled.user_message, JobCancelled.classification)
            context.tracker.complete()
            context.update_job(
                status=JobStatus.CANCELLED,
                progress=100,
                error_classification=JobCancelled.classification,
                completed_at=datetime.now()
            )
        self._notify(job.id, JobEvent.JOB_CANCELLED, None)

    def _cleanup(self, context: JobContext) -> None:
        if not context.workdir or not os.path.exists(context.workdir):
            return
        try:
            shutil.rmtree(context.workdir)
            logger.debug(f"[job {context.job.id}] removed {context.workdir}")
        except OSError as e:
            self.error_handler.log_error(
                e,
                severity=ErrorSeverity.WARNING,
                context={'job_id': context.job.id, 'workdir': context.workdir},
                recovery_suggestion="Remove the directory manually"
            )

    def _release(self, context: JobContext) -> None:
        with self._lock:
            self._contexts.pop(context.job.id, None)
            self._futures.pop(context.job.id, None)
        context.finished.set()

    # -- helpers -----------------------------------------------------------

    def _check_resources(self, job_id: str) -> None:
        if self.config_manager is None:
            return
        try:
            warnings = self.config_manager.check_resource_availability(
                self._temp_root(), REQUIRED_MEMORY_GB, REQUIRED_DISK_GB
            )
        except OSError as e:
            logger.warning(f"[job {job_id}] resource check failed: {e}")
            return
        for warning in warnings:
            self.error_handler.log_warning(warning, context={'job_id': job_id})

    def _temp_root(self) -> str:
        return self.config.temp_root or tempfile.gettempdir()

    def _media(self, func, *args):
        return self.error_handler.call_with_retry(
            func,
            *args,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_delay_seconds,
            operation=getattr(func, '__name__', 'media')
        )

    def _notify(self, job_id: str, event: JobEvent, details: Optional[Dict[str, Any]] = None) -> None:
        if self.notification_sink is None:
            return
        try:
            self.notification_sink.notify(job_id, event, details)
        except Exception as e:
            logger.warning(f"[job {job_id}] notification {event.value} failed: {e}")
