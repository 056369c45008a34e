"""Per-language dubbing: translate, synthesize, assemble, export and upload."""

import copy
import logging
import os
import time
from datetime import datetime
from typing import List, Optional

from .assembly import AssemblyEngine
from .base import BaseObjectStorage
from .error_handler import ErrorHandler, ErrorSeverity, JobCancelled, VideoTranslatorError
from .job_context import JobContext
from .script_exporter import ScriptExporter
from .translation_service import TranslationService
from .tts_service import SpeechSynthesisEngine
from ..models.core import (
    AudioChunk, JobEvent, ProcessingConfig, ResultStatus, SynthesizedAudio, VoiceProfile
)

logger = logging.getLogger(__name__)

# Share of a language's progress reached at the end of each stage
TRANSLATION_DONE = 0.35
SYNTHESIS_DONE = 0.8
ASSEMBLY_DONE = 0.9


def output_keys(job_id: str, language: str) -> dict:
    """Object-storage keys of every artifact produced for one language."""
    prefix = f"translated/{job_id}/{job_id}_{language}"
    return {
        'video': f"{prefix}.mp4",
        'audio': f"{prefix}_audio.wav",
        'script': f"{prefix}_script.txt",
        'subtitles': f"{prefix}.srt",
    }


class DubbingService:
    """Runs one target language of a job through to uploaded outputs."""

    def __init__(
        self,
        translation_service: TranslationService,
        synthesis_engine: SpeechSynthesisEngine,
        assembly_engine: AssemblyEngine,
        storage: BaseObjectStorage,
        config: ProcessingConfig,
        script_exporter: Optional[ScriptExporter] = None,
        voice_profile: Optional[VoiceProfile] = None,
        error_handler: Optional[ErrorHandler] = None,
        notify=None
    ):
        """Initialize the dubbing service.

        Args:
            translation_service: Translation adapter
            synthesis_engine: Speech synthesis engine
            assembly_engine: Assembly engine
            storage: Object storage receiving the outputs
            config: Processing configuration
            script_exporter: Script and subtitle writer
            voice_profile: Voice table; the synthesis engine default when None
            error_handler: Error handler for logging
            notify: Callable(job_id, event, details) for language events
        """
        self.translation_service = translation_service
        self.synthesis_engine = synthesis_engine
        self.assembly_engine = assembly_engine
        self.storage = storage
        self.config = config
        self.error_handler = error_handler or ErrorHandler()
        self.script_exporter = script_exporter or ScriptExporter(self.error_handler)
        self.voice_profile = voice_profile
        self.notify = notify

    def process_language(
        self,
        context: JobContext,
        chunks: List[AudioChunk],
        source_language: str,
        target_language: str,
        video_path: str
    ) -> ResultStatus:
        """Produce and upload the translated outputs for one language.

        Failures are recorded on the language's result and do not propagate;
        only cancellation does.

        Args:
            context: The running job's context
            chunks: Transcribed chunks; they are copied, never modified
            source_language: Resolved source language code
            target_language: Target language code
            video_path: Local copy of the source video

        Returns:
            The terminal status of the language's result

        Raises:
            JobCancelled: If the job is cancelled at a stage boundary
        """
        job_id = context.job.id
        started = time.monotonic()
        own_chunks = copy.deepcopy(sorted(chunks, key=lambda chunk: chunk.index))
        workdir = os.path.join(context.workdir, target_language)
        try:
            os.makedirs(workdir, exist_ok=True)
            context.raise_if_cancelled(f"translating {target_language}")
            context.update_result(target_language, status=ResultStatus.TRANSLATING)
            translation_score = self._translate(context, own_chunks, source_language, target_language)

            context.raise_if_cancelled(f"synthesizing {target_language}")
            context.update_result(target_language, status=ResultStatus.SYNTHESIZING)
            synthesized = self._synthesize(context, own_chunks, target_language, workdir)

            context.raise_if_cancelled(f"assembling {target_language}")
            context.update_result(target_language, status=ResultStatus.ASSEMBLING)
            assembled = self.assembly_engine.assemble(
                own_chunks, video_path, workdir, output_name=f"{job_id}_{target_language}"
            )
            context.advance_language(target_language, ASSEMBLY_DONE)

            context.raise_if_cancelled(f"uploading {target_language}")
            keys = self._export_and_upload(
                context, own_chunks, source_language, target_language, workdir,
                assembled.video_path, assembled.audio_path
            )
        except JobCancelled:
            raise
        except Exception as e:
            self._record_failure(context, target_language, e, time.monotonic() - started)
            return ResultStatus.FAILED

        elapsed = time.monotonic() - started
        context.update_result(
            target_language,
            status=ResultStatus.COMPLETED,
            output_video_key=keys['video'],
            translated_audio_key=keys['audio'],
            script_key=keys.get('script'),
            subtitle_key=keys.get('subtitles'),
            translation_quality_score=translation_score,
            audio_quality_score=self.score_audio(synthesized, own_chunks),
            processing_seconds=round(elapsed, 3),
            completed_at=datetime.now()
        )
        context.advance_language(target_language, 1.0)
        logger.info(f"[job {job_id}] {target_language} completed in {elapsed:.1f}s")
        self._notify(job_id, JobEvent.LANGUAGE_COMPLETED, {'language': target_language})
        return ResultStatus.COMPLETED

    def _translate(
        self, context: JobContext, chunks: List[AudioChunk], source_language: str, target_language: str
    ) -> float:
        """Translate every chunk in order and return the mean quality score."""
        scores = []
        for position, chunk in enumerate(chunks, start=1):
            context.raise_if_cancelled(f"translating chunk {chunk.index}")
            if target_language == source_language:
                chunk.translated_text = chunk.transcript
                scores.append(1.0)
            else:
                chunk.translated_text = self.translation_service.translate(
                    chunk.transcript or "", source_language, target_language
                )
                scores.append(self.translation_service.score_translation(
                    chunk.transcript or "", chunk.translated_text
                ))
            context.advance_language(target_language, TRANSLATION_DONE * position / len(chunks))
        return round(sum(scores) / len(scores), 3) if scores else 0.0

    def _synthesize(
        self, context: JobContext, chunks: List[AudioChunk], target_language: str, workdir: str
    ) -> List[SynthesizedAudio]:
        """Synthesize every chunk, each fitted to its source duration."""
        results = []
        span = SYNTHESIS_DONE - TRANSLATION_DONE
        for position, chunk in enumerate(chunks, start=1):
            context.raise_if_cancelled(f"synthesizing chunk {chunk.index}")
            output_path = os.path.join(workdir, f"tts_{chunk.index:04d}.wav")
            audio = self.synthesis_engine.synthesize(
                chunk.translated_text,
                target_language,
                self.voice_profile,
                chunk.duration,
                output_path,
                gender=chunk.speaker_gender
            )
            chunk.synthesized_path = audio.path
            results.append(audio)
            context.advance_language(target_language, TRANSLATION_DONE + span * position / len(chunks))
        return results

    def _export_and_upload(
        self,
        context: JobContext,
        chunks: List[AudioChunk],
        source_language: str,
        target_language: str,
        workdir: str,
        video_path: str,
        audio_path: str
    ) -> dict:
        """Write the script and subtitles, then upload every artifact.

        Script or subtitle export failures are logged and leave their key unset.
        """
        job_id = context.job.id
        keys = output_keys(job_id, target_language)
        uploaded = {
            'video': self.storage.put_file(video_path, keys['video']),
            'audio': self.storage.put_file(audio_path, keys['audio']),
        }

        script_path = os.path.join(workdir, f"{job_id}_{target_language}_script.txt")
        if self.script_exporter.export_script_document(chunks, source_language, target_language, script_path):
            uploaded['script'] = self.storage.put_file(script_path, keys['script'])

        subtitle_path = os.path.join(workdir, f"{job_id}_{target_language}.srt")
        if self.script_exporter.export_srt(chunks, subtitle_path, use_translation=True):
            uploaded['subtitles'] = self.storage.put_file(subtitle_path, keys['subtitles'])

        logger.debug(f"[job {job_id}] uploaded {sorted(uploaded)} for {target_language}")
        return uploaded

    @staticmethod
    def score_audio(synthesized: List[SynthesizedAudio], chunks: List[AudioChunk]) -> float:
        """Heuristic 0-1 score of how closely synthesized audio matches chunk timing."""
        scores = []
        for audio, chunk in zip(synthesized, chunks):
            if chunk.duration <= 0:
                continue
            deviation = abs(audio.final_duration / chunk.duration - 1.0)
            scores.append(max(0.0, 1.0 - deviation))
        return round(sum(scores) / len(scores), 3) if scores else 0.0

    def _record_failure(self, context: JobContext, language: str, error: Exception, elapsed: float) -> None:
        classification, user_message = self.error_handler.describe(error)
        severity = ErrorSeverity.ERROR if isinstance(error, VideoTranslatorError) else ErrorSeverity.CRITICAL
        self.error_handler.log_error(
            error,
            severity=severity,
            context={'job_id': context.job.id, 'language': language}
        )
        context.update_result(
            language,
            status=ResultStatus.FAILED,
            error_message=user_message,
            error_classification=classification,
            processing_seconds=round(elapsed, 3),
            completed_at=datetime.now()
        )
        context.advance_language(language, 1.0)
        self._notify(context.job.id, JobEvent.LANGUAGE_FAILED, {
            'language': language, 'classification': classification
        })

    def _notify(self, job_id: str, event: JobEvent, details: dict) -> None:
        if self.notify is not None:
            self.notify(job_id, event, details)
