"""Centralized error handling and logging service.

This module defines the pipeline's error taxonomy and provides logging,
classification and retry for transient failures.
"""

import json
import logging
import random
import sys
import threading
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


class VideoTranslatorError(Exception):
    """Base class for pipeline errors.

    Every subclass carries a short classification, a message that is safe to
    show to end users, and whether the failure is worth retrying.
    """
    classification = "internal_error"
    user_message = "An unexpected error occurred while processing the video."
    transient = False


class MediaUnreadable(VideoTranslatorError):
    """The media tool could not read the input, or it lacked required fields."""
    classification = "media_unreadable"
    user_message = "The uploaded video could not be read. Please upload a valid video file."


class NoAudioContent(VideoTranslatorError):
    """The input has no usable audio stream."""
    classification = "no_audio_content"
    user_message = "The video does not contain any audio to translate."


class MediaTooLong(VideoTranslatorError):
    """The input exceeds the configured maximum duration."""
    classification = "media_too_long"
    user_message = "The video is longer than the maximum supported duration."


class MediaToolError(VideoTranslatorError):
    """The media tool timed out or exited non-zero."""
    classification = "media_tool_error"
    user_message = "Processing the video's media failed. Please try again later."
    transient = True

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class ServiceTemporarilyUnavailable(VideoTranslatorError):
    """An external capability failed in a way that may succeed on retry."""
    classification = "service_unavailable"
    user_message = "An external service is temporarily unavailable. Please try again later."
    transient = True


class TranscriptionUnavailable(VideoTranslatorError):
    """Speech recognition failed or produced no text."""
    classification = "transcription_unavailable"
    user_message = "The speech in the video could not be transcribed."


class UnsupportedLanguagePair(VideoTranslatorError):
    """No supported route exists between two languages."""
    classification = "unsupported_language_pair"

    def __init__(self, source_language: str, target_language: str, reason: str = ""):
        message = f"Unsupported language pair: {source_language} -> {target_language}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.source_language = source_language
        self.target_language = target_language

    @property
    def user_message(self) -> str:
        return (
            f"Translation from '{self.source_language}' to '{self.target_language}' "
            f"is not supported."
        )


class TranslationFailed(VideoTranslatorError):
    """The translation backend failed for a non-transient reason."""
    classification = "translation_failed"
    user_message = "Translating the transcript failed."


class SynthesisFailed(VideoTranslatorError):
    """Speech synthesis failed."""
    classification = "synthesis_failed"
    user_message = "Generating translated speech failed."


class SynthesisMarkupRejected(VideoTranslatorError):
    """The synthesis backend refused the pause/emphasis markup."""
    classification = "synthesis_markup_rejected"
    user_message = "Generating translated speech failed."


class TimingReconciliationOverflow(VideoTranslatorError):
    """Synthesized duration was too far off to reconcile within tempo bounds."""
    classification = "timing_reconciliation_overflow"
    user_message = "Translated speech timing could not be fully matched."


class AssemblyFailed(VideoTranslatorError):
    """The translated audio could not be assembled into the output video."""
    classification = "assembly_failed"
    user_message = "Assembling the translated video failed."


class JobCancelled(VideoTranslatorError):
    """Raised at a stage boundary once cancellation has been requested."""
    classification = "cancelled"
    user_message = "The job was cancelled."


RECOVERY_SUGGESTIONS: Dict[str, str] = {
    "media_unreadable": "Verify the upload is a complete video file in a supported container",
    "no_audio_content": "Upload a video that has an audio track with speech",
    "media_too_long": "Trim the video or raise VIDEO_TRANSLATOR_MAX_VIDEO_DURATION_SECONDS",
    "media_tool_error": "Check that ffmpeg is installed and the working directory has free space",
    "service_unavailable": "Check network connectivity and API quotas, then retry the job",
    "transcription_unavailable": "Try a larger Whisper model or set the source language explicitly",
    "unsupported_language_pair": "Choose a target language from the supported list",
    "translation_failed": "Verify the translation API key or switch translation backend",
    "synthesis_failed": "Check connectivity to the speech service and the selected voice",
    "assembly_failed": "Inspect the job log for the failing chunk",
}


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ErrorRecord:
    """Record of an error occurrence."""
    timestamp: datetime
    severity: ErrorSeverity
    error_type: str
    message: str
    classification: str = "internal_error"
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    recovery_suggestion: Optional[str] = None


class ErrorHandler:
    """Centralized error handler with logging, classification and retry."""

    def __init__(self, log_file: Optional[str] = None, log_level: Optional[Union[int, str]] = None):
        """Initialize the error handler.

        Logging handlers are installed only when a log file or level is
        given; otherwise the existing ``video_translator`` logger is reused.

        Args:
            log_file: Optional path to log file. If None, logs to console only.
            log_level: Logging level name or number
        """
        self.error_log: List[ErrorRecord] = []
        self._lock = threading.Lock()
        self.sleep: Callable[[float], None] = time.sleep
        if log_file or log_level is not None:
            self.logger = self._setup_logger(log_file, log_level or logging.INFO)
        else:
            self.logger = logging.getLogger('video_translator')

    def _setup_logger(self, log_file: Optional[str], log_level: Union[int, str]) -> logging.Logger:
        """Set up the logging system.

        Args:
            log_file: Optional path to log file
            log_level: Logging level

        Returns:
            Configured logger instance
        """
        if isinstance(log_level, str):
            log_level = logging.getLevelName(log_level.upper())
            if not isinstance(log_level, int):
                log_level = logging.INFO

        logger = logging.getLogger('video_translator')
        logger.setLevel(log_level)

        # Clear existing handlers
        logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(console_handler)

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            logger.addHandler(file_handler)

        return logger

    def log_error(
        self,
        error: Exception,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[Dict[str, Any]] = None,
        recovery_suggestion: Optional[str] = None
    ) -> ErrorRecord:
        """Log an error with full context and recovery suggestions.

        Captured media-tool stderr is written to the log here and nowhere else.

        Args:
            error: The exception that occurred
            severity: Error severity level
            context: Additional context information
            recovery_suggestion: Suggestion for recovering from the error

        Returns:
            ErrorRecord object
        """
        classification, _ = self.describe(error)
        if recovery_suggestion is None:
            recovery_suggestion = RECOVERY_SUGGESTIONS.get(classification)

        record = ErrorRecord(
            timestamp=datetime.now(),
            severity=severity,
            error_type=type(error).__name__,
            message=str(error),
            classification=classification,
            traceback=traceback.format_exc() if sys.exc_info()[0] is not None else None,
            context=context or {},
            recovery_suggestion=recovery_suggestion
        )
        with self._lock:
            self.error_log.append(record)

        log_message = f"{record.error_type}: {record.message}"
        if context:
            log_message += f" | Context: {context}"
        if recovery_suggestion:
            log_message += f" | Suggestion: {recovery_suggestion}"

        level = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }.get(severity, logging.DEBUG)
        self.logger.log(level, log_message)

        stderr = getattr(error, 'stderr', None)
        if stderr:
            self.logger.log(level, f"Media tool stderr:\n{stderr.strip()[-4000:]}")

        if record.traceback and severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL):
            self.logger.debug(f"Traceback:\n{record.traceback}")

        return record

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log an informational message."""
        if context:
            message += f" | Context: {context}"
        self.logger.info(message)

    def log_warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log a warning message."""
        if context:
            message += f" | Context: {context}"
        self.logger.warning(message)

    @staticmethod
    def describe(error: BaseException) -> Tuple[str, str]:
        """Map an exception to a short classification and a user-facing message.

        Args:
            error: Any exception raised while processing a job

        Returns:
            Tuple of (classification, user_message)
        """
        if isinstance(error, VideoTranslatorError):
            return error.classification, error.user_message
        return VideoTranslatorError.classification, VideoTranslatorError.user_message

    def call_with_retry(
        self,
        func: Callable,
        *args,
        attempts: int = 3,
        base_delay: float = 1.0,
        operation: Optional[str] = None,
        **kwargs
    ) -> Any:
        """Call a function, retrying transient failures with exponential backoff.

        Only errors flagged as transient are retried; everything else
        propagates on the first occurrence.

        Args:
            func: The callable to invoke
            *args: Positional arguments for the callable
            attempts: Maximum number of attempts (at least one)
            base_delay: Delay before the first retry in seconds
            operation: Name used in log messages
            **kwargs: Keyword arguments for the callable

        Returns:
            The callable's return value

        Raises:
            VideoTranslatorError: The last transient error once attempts are exhausted
        """
        operation = operation or getattr(func, '__name__', 'operation')
        attempts = max(1, attempts)

        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except VideoTranslatorError as e:
                if not e.transient or attempt == attempts - 1:
                    raise
                delay = base_delay * (2 ** attempt) + random.uniform(0, base_delay)
                self.log_error(
                    e,
                    severity=ErrorSeverity.WARNING,
                    context={'operation': operation, 'attempt': attempt + 1, 'max_attempts': attempts},
                    recovery_suggestion=f"Retrying in {delay:.1f}s"
                )
                self.sleep(delay)

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of all logged errors.

        Returns:
            Dictionary with error statistics and recent errors
        """
        with self._lock:
            records = list(self.error_log)

        by_severity: Dict[str, int] = {}
        by_classification: Dict[str, int] = {}
        for record in records:
            by_severity[record.severity.value] = by_severity.get(record.severity.value, 0) + 1
            by_classification[record.classification] = by_classification.get(record.classification, 0) + 1

        recent_errors = [
            {
                'timestamp': record.timestamp.isoformat(),
                'severity': record.severity.value,
                'type': record.error_type,
                'classification': record.classification,
                'message': record.message,
                'suggestion': record.recovery_suggestion
            }
            for record in records[-10:]
        ]

        return {
            'total_errors': len(records),
            'by_severity': by_severity,
            'by_classification': by_classification,
            'recent_errors': recent_errors
        }

    def export_error_log(self, output_file: str) -> None:
        """Export error log to a JSON file.

        Args:
            output_file: Path to output file
        """
        with self._lock:
            records = list(self.error_log)

        log_data = {
            'export_time': datetime.now().isoformat(),
            'total_errors': len(records),
            'errors': [
                {
                    'timestamp': record.timestamp.isoformat(),
                    'severity': record.severity.value,
                    'type': record.error_type,
                    'classification': record.classification,
                    'message': record.message,
                    'traceback': record.traceback,
                    'context': record.context,
                    'recovery_suggestion': record.recovery_suggestion
                }
                for record in records
            ]
        }

        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(log_data, f, indent=2, default=str)

        self.logger.info(f"Error log exported to {output_file}")
