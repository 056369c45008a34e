"""Command-line interface for Video Translator System.

This module provides a CLI for translating local videos and inspecting the
runtime environment.
"""

import argparse
import logging
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from .models.core import JobStatus, ResultStatus, TranslationJob
from .models.languages import SUPPORTED_LANGUAGES
from .services.config_manager import ConfigurationManager
from .services.error_handler import ErrorHandler
from .services.orchestrator import JobOrchestrator
from .services.storage import LocalObjectStorage

logger = logging.getLogger(__name__)


class VideoTranslatorCLI:
    """Command-line interface for video translation."""

    def __init__(self, config_manager: Optional[ConfigurationManager] = None):
        """Initialize CLI components."""
        self.config_manager = config_manager or ConfigurationManager()

    def translate(
        self,
        input_path: str,
        target_languages: List[str],
        source_language: str = "auto",
        timeout: Optional[float] = None,
        **overrides
    ) -> int:
        """Translate a local video and print where the outputs are.

        Args:
            input_path: Path to the input video
            target_languages: Target language names or codes
            source_language: Source language, or "auto" to detect it
            timeout: Seconds to wait for the job, None to wait indefinitely
            **overrides: ProcessingConfig field overrides

        Returns:
            Process exit code: 0 when the job completed, 1 otherwise
        """
        if not Path(input_path).is_file():
            logger.error(f"Input file not found: {input_path}")
            return 1

        config = self.config_manager.load_config(**overrides)
        valid, errors = self.config_manager.validate_configuration(config)
        if not valid:
            for error in errors:
                logger.error(f"Invalid configuration: {error}")
            return 1

        error_handler = ErrorHandler(config.log_file, config.log_level)
        storage = LocalObjectStorage(config.storage_root)
        media_key = storage.put_file(input_path, storage.generate_key(input_path, prefix="uploads"))

        orchestrator = JobOrchestrator.from_config(config, storage=storage, error_handler=error_handler)
        job = TranslationJob(
            id=uuid.uuid4().hex,
            media_key=media_key,
            target_languages=list(target_languages),
            source_language=source_language
        )
        try:
            job_id = orchestrator.submit(job)
            logger.info(f"Submitted job {job_id}; waiting for it to finish")
            try:
                finished = orchestrator.wait(job_id, timeout)
            except (KeyboardInterrupt, TimeoutError) as e:
                logger.warning(f"{type(e).__name__}; cancelling job {job_id}")
                orchestrator.cancel(job_id)
                finished = orchestrator.wait(job_id)
        finally:
            orchestrator.shutdown(wait=True)

        self._print_summary(finished, storage, config.presigned_url_ttl_seconds)
        return 0 if finished.status == JobStatus.COMPLETED else 1

    def info(self) -> int:
        """Print hardware capabilities and the configuration check."""
        print(self.config_manager.get_hardware_summary())
        try:
            config = self.config_manager.load_config()
        except ValueError as e:
            print(f"Configuration: invalid ({e})")
            return 1

        valid, errors = self.config_manager.validate_configuration(config)
        print(f"Configuration: {'valid' if valid else 'invalid'}")
        for error in errors:
            print(f"  - {error}")
        print(f"Translation backend: {config.translation_backend}")
        print(f"Whisper model: {config.whisper_model_size} ({config.whisper_device})")
        print(f"Supported languages: {', '.join(sorted(SUPPORTED_LANGUAGES))}")
        return 0 if valid else 1

    @staticmethod
    def _print_summary(job: TranslationJob, storage: LocalObjectStorage, ttl_seconds: int) -> None:
        print(f"Job {job.id}: {job.status.value} (source language: {job.resolved_source_language or 'unknown'})")
        if job.error_message:
            print(f"  {job.error_message}")
        for result in job.results:
            print(f"  [{result.target_language}] {result.status.value}")
            if result.status != ResultStatus.COMPLETED:
                if result.error_message:
                    print(f"      {result.error_message}")
                continue
            for label, key in (
                ("video", result.output_video_key),
                ("audio", result.translated_audio_key),
                ("script", result.script_key),
                ("subtitles", result.subtitle_key),
            ):
                if key:
                    print(f"      {label}: {storage.presigned_url(key, ttl_seconds)}")
            print(
                f"      quality: translation {result.translation_quality_score}, "
                f"audio {result.audio_quality_score}, {result.processing_seconds}s"
            )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="video-translator",
        description="Video Translator - Dub a video's speech into other languages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dub into Hindi and Tamil
  video-translator translate input.mp4 --target hi --target ta

  # Force the source language and use 30 second chunks
  video-translator translate input.mp4 --target es --source en --chunk-seconds 30

  # Show hardware and configuration
  video-translator info
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    translate = subparsers.add_parser("translate", help="Translate a video")
    translate.add_argument("input", help="Input video file path")
    translate.add_argument(
        "-t", "--target",
        action="append",
        required=True,
        dest="targets",
        help="Target language name or code (repeatable)"
    )
    translate.add_argument(
        "-s", "--source",
        default="auto",
        help="Source language code (default: auto-detect)"
    )
    translate.add_argument("--chunk-seconds", type=float, help="Nominal chunk length in seconds")
    translate.add_argument("--storage-root", help="Directory used as object storage")
    translate.add_argument("--gemini-api-key", help="Gemini API key (or set GEMINI_API_KEY)")
    translate.add_argument(
        "--translation-backend",
        choices=["auto", "gemini", "nllb"],
        help="Translation backend (default: auto)"
    )
    translate.add_argument(
        "-m", "--whisper-model",
        choices=["tiny", "base", "small", "medium", "large-v3"],
        help="Whisper model size (default: base)"
    )
    translate.add_argument("--log-file", help="Also write logs to this file")
    translate.add_argument("--timeout", type=float, help="Give up waiting after this many seconds")

    subparsers.add_parser("info", help="Show hardware and configuration")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    ErrorHandler(log_level=logging.DEBUG if args.verbose else logging.INFO)
    cli = VideoTranslatorCLI()

    if args.command == "info":
        return cli.info()

    overrides = {
        'chunk_duration_seconds': args.chunk_seconds,
        'storage_root': args.storage_root,
        'gemini_api_key': args.gemini_api_key,
        'translation_backend': args.translation_backend,
        'whisper_model_size': args.whisper_model,
        'log_file': args.log_file,
    }
    if args.verbose:
        overrides['log_level'] = "DEBUG"
    try:
        return cli.translate(args.input, args.targets, args.source, timeout=args.timeout, **overrides)
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
