"""End-to-end tests of job orchestration with fake media and capability backends."""

import dataclasses
import os
import threading

import pytest

from video_translator.models.core import Gender, JobStatus, ResultStatus, TranslationJob
from video_translator.services.assembly import AssemblyEngine
from video_translator.services.dubbing_service import DubbingService, output_keys
from video_translator.services.error_handler import ErrorHandler
from video_translator.services.job_store import InMemoryJobStore
from video_translator.services.orchestrator import JobOrchestrator
from video_translator.services.storage import LocalObjectStorage
from video_translator.services.transcription_service import TranscriptionService
from video_translator.services.translation_service import TranslationService
from video_translator.services.tts_service import SpeechSynthesisEngine

from fakes import (
    FakeMediaShell,
    FakeRecognizer,
    FakeSpeechBackend,
    FakeTranslationBackend,
    RecordingNotificationSink,
    encode_media,
)

WAIT_SECONDS = 30


class GatedRecognizer(FakeRecognizer):
    """Recognizer that blocks until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.gate = threading.Event()

    def recognize(self, audio_path, language, max_alternatives):
        self.entered.set()
        self.gate.wait(WAIT_SECONDS)
        return super().recognize(audio_path, language, max_alternatives)


class RecordingJobStore(InMemoryJobStore):
    """Job store remembering the progress value of every save."""

    def __init__(self):
        super().__init__()
        self.progress_log = []

    def save(self, job):
        self.progress_log.append((job.status, job.progress))
        super().save(job)


class FixedAnalyzer:
    def __init__(self, gender):
        self.gender = gender

    def estimate_gender(self, audio_path):
        return self.gender


class TestJobOrchestrator:
    """Jobs run from upload to uploaded outputs, or to a classified failure."""

    @pytest.fixture(autouse=True)
    def _workspace(self, config, temp_dir):
        self.config = config
        self.temp_dir = temp_dir
        self.shell = FakeMediaShell()
        self.storage = LocalObjectStorage(config.storage_root)
        self.orchestrators = []
        yield
        for orchestrator in self.orchestrators:
            orchestrator.shutdown(wait=True)

    def _build(self, config=None, recognizer=None, translation_backend=None, speech_backend=None,
               sink=None, analyzer=None, job_store=None):
        config = config or self.config
        handler = ErrorHandler()
        handler.sleep = lambda seconds: None
        self.recognizer = recognizer or FakeRecognizer()
        self.translation_backend = translation_backend or FakeTranslationBackend()
        self.speech_backend = speech_backend or FakeSpeechBackend(self.shell)
        self.sink = sink if sink is not None else RecordingNotificationSink()
        self.job_store = job_store or InMemoryJobStore()

        transcription = TranscriptionService(self.recognizer, config, error_handler=handler)
        translation = TranslationService(self.translation_backend, config, error_handler=handler)
        synthesis = SpeechSynthesisEngine(self.speech_backend, self.shell, config, error_handler=handler)
        dubbing = DubbingService(
            translation, synthesis, AssemblyEngine(self.shell, config, handler), self.storage, config,
            error_handler=handler
        )
        orchestrator = JobOrchestrator(
            config, self.shell, self.storage, self.job_store, transcription, dubbing,
            speaker_analyzer=analyzer, notification_sink=self.sink, error_handler=handler
        )
        self.orchestrators.append(orchestrator)
        return orchestrator

    def _upload(self, duration=65.0, has_audio=True, key="uploads/20240101000000/abc_talk.mp4"):
        return self.storage.put(encode_media(duration, has_audio=has_audio, has_video=True), key)

    def _run(self, orchestrator, targets, job_id="job1", source_language="auto", media_key=None):
        job = TranslationJob(
            id=job_id,
            media_key=media_key or self._upload(),
            target_languages=targets,
            source_language=source_language
        )
        orchestrator.submit(job)
        return orchestrator.wait(job_id, timeout=WAIT_SECONDS)

    def _leftover_workdirs(self):
        return [name for name in os.listdir(self.temp_dir) if name.startswith("translation_")]

    # -- successful jobs -----------------------------------------------------

    def test_two_languages_complete_with_uploaded_outputs(self):
        orchestrator = self._build()

        job = self._run(orchestrator, ["Spanish", "hi", "es"])

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.error_message is None
        assert job.resolved_source_language == "en"
        assert job.target_languages == ["es", "hi"]
        assert job.completed_at is not None

        for result in job.results:
            keys = output_keys("job1", result.target_language)
            assert result.status == ResultStatus.COMPLETED
            assert result.output_video_key == keys['video']
            assert result.translated_audio_key == keys['audio']
            assert result.script_key == keys['script']
            assert result.subtitle_key == keys['subtitles']
            for key in keys.values():
                assert self.storage.exists(key)
            assert 0.0 <= result.translation_quality_score <= 1.0
            assert 0.0 <= result.audio_quality_score <= 1.0
            assert result.processing_seconds >= 0.0

        video = self.storage.local_path("translated/job1/job1_es.mp4")
        assert self.shell.probe(video).video_codec == 'h264'
        assert self.shell.probe(video).duration_seconds >= 65.0

        subtitles = self.storage.get("translated/job1/job1_hi.srt").decode('utf-8')
        assert subtitles.startswith("1\n00:00:00,000 --> 00:00:30,000\n<hi> Alice met Bob in Paris")
        assert "3\n00:01:00,000 --> 00:01:05,000\n" in subtitles

        script = self.storage.get("translated/job1/job1_es_script.txt").decode('utf-8')
        assert "CHUNK 3:" in script

    def test_chunks_are_transcribed_once_in_order(self):
        orchestrator = self._build()

        self._run(orchestrator, ["es", "fr"])

        transcribed = [os.path.basename(call[0]) for call in self.recognizer.calls]
        assert transcribed == ["chunk_0000.wav", "chunk_0001.wav", "chunk_0002.wav"]

    def test_workdir_is_removed(self):
        orchestrator = self._build()

        self._run(orchestrator, ["es"])

        assert self._leftover_workdirs() == []

    def test_progress_is_monotonic_and_ends_at_100(self):
        store = RecordingJobStore()
        orchestrator = self._build(job_store=store)

        self._run(orchestrator, ["es", "hi", "fr"])

        values = [progress for _, progress in store.progress_log]
        assert values == sorted(values)
        assert values[-1] == 100
        assert all(progress <= 99 for status, progress in store.progress_log if not status.is_terminal)

    def test_notifications_are_emitted(self):
        orchestrator = self._build()

        self._run(orchestrator, ["es", "hi"])

        events = self.sink.event_names("job1")
        assert events[0] == "job_started"
        assert events[-1] == "job_completed"
        assert events.count("language_completed") == 2

    def test_failing_notification_sink_does_not_fail_job(self):
        orchestrator = self._build(sink=RecordingNotificationSink(fail=True))

        job = self._run(orchestrator, ["es"])

        assert job.status == JobStatus.COMPLETED
        assert self.sink.event_names("job1")[-1] == "job_completed"

    def test_same_language_target_keeps_transcript(self):
        orchestrator = self._build()

        job = self._run(orchestrator, ["en"])

        assert job.status == JobStatus.COMPLETED
        assert job.results[0].translation_quality_score == 1.0
        assert self.translation_backend.calls == []
        subtitles = self.storage.get(job.results[0].subtitle_key).decode('utf-8')
        assert "Alice met Bob in Paris during chunk_0000." in subtitles

    def test_explicit_source_language_is_used(self):
        orchestrator = self._build(recognizer=FakeRecognizer(language="en"))

        job = self._run(orchestrator, ["en"], source_language="Hindi")

        assert job.resolved_source_language == "hi"
        assert all(call[1] == "hi" for call in self.recognizer.calls)
        assert {call[1:] for call in self.translation_backend.calls} == {("hi", "en")}

    def test_source_language_falls_back_to_transcript_classification(self):
        recognizer = FakeRecognizer(alternatives=["नमस्ते दुनिया"], language=None)
        orchestrator = self._build(recognizer=recognizer)

        job = self._run(orchestrator, ["es"])

        assert job.resolved_source_language == "hi"
        assert job.status == JobStatus.COMPLETED
        assert {call[1:] for call in self.translation_backend.calls} == {("hi", "en"), ("en", "es")}

    def test_detected_unsupported_source_fails_job(self):
        recognizer = FakeRecognizer(alternatives=["Ciao a tutti, oggi parliamo di Roma."], language="it")
        orchestrator = self._build(recognizer=recognizer)

        job = self._run(orchestrator, ["hi"])

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "unsupported_language_pair"
        assert job.resolved_source_language is None
        assert self.translation_backend.calls == []

    def test_speaker_gender_selects_voice(self):
        orchestrator = self._build(analyzer=FixedAnalyzer(Gender.MALE))

        self._run(orchestrator, ["es"])

        assert {call[1] for call in self.speech_backend.calls} == {"es-ES-AlvaroNeural"}

    def test_system_stats(self):
        orchestrator = self._build()
        self._run(orchestrator, ["es"])

        stats = orchestrator.get_system_stats()

        assert stats['active_jobs'] == 0
        assert stats['queued_jobs'] == 0
        assert stats['jobs_by_status'] == {'completed': 1}
        assert stats['max_concurrent_jobs'] == self.config.max_concurrent_jobs
        assert 'resources' not in stats

    # -- failures --------------------------------------------------------------

    def test_one_failed_language_still_completes_job(self):
        orchestrator = self._build(translation_backend=FakeTranslationBackend(fail_targets={"hi"}))

        job = self._run(orchestrator, ["es", "hi"])

        assert job.status == JobStatus.COMPLETED
        assert job.error_message == "Failed languages: hi (translation_failed)"
        spanish, hindi = job.results
        assert spanish.status == ResultStatus.COMPLETED
        assert hindi.status == ResultStatus.FAILED
        assert hindi.error_classification == "translation_failed"
        assert hindi.error_message == "Translating the transcript failed."
        assert hindi.output_video_key is None
        assert not self.storage.exists(output_keys("job1", "hi")['video'])
        assert "language_failed" in self.sink.event_names("job1")

    def test_synthesis_failure_is_isolated(self):
        speech = FakeSpeechBackend(self.shell, fail_voices={"hi-IN-SwaraNeural"})
        orchestrator = self._build(speech_backend=speech)

        job = self._run(orchestrator, ["hi", "es"])

        assert job.status == JobStatus.COMPLETED
        assert job.result_for("hi").error_classification == "synthesis_failed"
        assert job.result_for("es").status == ResultStatus.COMPLETED

    def test_all_languages_failing_fails_job(self):
        orchestrator = self._build(translation_backend=FakeTranslationBackend(fail_targets={"es", "hi"}))

        job = self._run(orchestrator, ["es", "hi"])

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "translation_failed"
        assert job.progress == 100
        assert all(result.status == ResultStatus.FAILED for result in job.results)
        assert self.sink.event_names("job1")[-1] == "job_failed"

    def test_unknown_target_language_fails_only_that_language(self):
        orchestrator = self._build()

        job = self._run(orchestrator, ["es", "xx"])

        assert job.status == JobStatus.COMPLETED
        assert job.result_for("xx").status == ResultStatus.FAILED
        assert job.result_for("xx").error_classification == "unsupported_language_pair"

    def test_video_without_audio_fails_job(self):
        orchestrator = self._build()
        key = self._upload(has_audio=False)

        job = self._run(orchestrator, ["es", "hi"], media_key=key)

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "no_audio_content"
        assert job.error_message == "The video does not contain any audio to translate."
        assert all(result.status == ResultStatus.FAILED for result in job.results)
        assert all(result.error_classification == "no_audio_content" for result in job.results)
        assert self.sink.event_names("job1") == ["job_started", "job_failed"]
        assert self._leftover_workdirs() == []

    def test_missing_media_fails_job(self):
        orchestrator = self._build()

        job = self._run(orchestrator, ["es"], media_key="uploads/missing.mp4")

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "media_unreadable"

    def test_too_long_video_fails_job(self):
        config = dataclasses.replace(self.config, max_video_duration_seconds=60.0)
        orchestrator = self._build(config=config)

        job = self._run(orchestrator, ["es"])

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "media_too_long"

    def test_unknown_source_language_fails_job(self):
        orchestrator = self._build()

        job = self._run(orchestrator, ["es"], source_language="klingon")

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "unsupported_language_pair"
        assert self.recognizer.calls == []

    def test_transcription_failure_fails_job(self):
        orchestrator = self._build(recognizer=FakeRecognizer(fail=True))

        job = self._run(orchestrator, ["es", "hi"])

        assert job.status == JobStatus.FAILED
        assert job.error_classification == "transcription_unavailable"
        assert self.translation_backend.calls == []

    def test_submit_requires_target_language(self):
        orchestrator = self._build()
        job = TranslationJob(id="empty", media_key=self._upload(), target_languages=["", "  "])

        with pytest.raises(ValueError):
            orchestrator.submit(job)

    # -- cancellation and waiting ----------------------------------------------

    def test_cancel_queued_job(self):
        config = dataclasses.replace(self.config, max_concurrent_jobs=1)
        recognizer = GatedRecognizer()
        orchestrator = self._build(config=config, recognizer=recognizer)
        key = self._upload()
        orchestrator.submit(TranslationJob(id="first", media_key=key, target_languages=["es"]))
        orchestrator.submit(TranslationJob(id="second", media_key=key, target_languages=["es", "hi"]))

        assert orchestrator.cancel("second")
        second = orchestrator.wait("second", timeout=WAIT_SECONDS)
        recognizer.gate.set()
        first = orchestrator.wait("first", timeout=WAIT_SECONDS)

        assert second.status == JobStatus.CANCELLED
        assert second.progress == 100
        assert all(result.status == ResultStatus.CANCELLED for result in second.results)
        assert self.sink.event_names("second") == ["job_cancelled"]
        assert first.status == JobStatus.COMPLETED

    def test_cancel_running_job(self):
        recognizer = GatedRecognizer()
        orchestrator = self._build(recognizer=recognizer)
        orchestrator.submit(TranslationJob(id="job1", media_key=self._upload(), target_languages=["es"]))
        assert recognizer.entered.wait(WAIT_SECONDS)

        assert orchestrator.cancel("job1")
        recognizer.gate.set()
        job = orchestrator.wait("job1", timeout=WAIT_SECONDS)

        assert job.status == JobStatus.CANCELLED
        assert job.error_classification == "cancelled"
        assert job.results[0].status == ResultStatus.CANCELLED
        assert len(recognizer.calls) == 1
        assert self.sink.event_names("job1") == ["job_started", "job_cancelled"]
        assert self._leftover_workdirs() == []

    def test_cancel_unknown_or_finished_job(self):
        orchestrator = self._build()
        self._run(orchestrator, ["es"])

        assert not orchestrator.cancel("job1")
        assert not orchestrator.cancel("nope")

    def test_wait_times_out(self):
        recognizer = GatedRecognizer()
        orchestrator = self._build(recognizer=recognizer)
        orchestrator.submit(TranslationJob(id="job1", media_key=self._upload(), target_languages=["es"]))

        with pytest.raises(TimeoutError):
            orchestrator.wait("job1", timeout=0.05)
        assert orchestrator.get_job("job1").status in (JobStatus.PENDING, JobStatus.PROCESSING)

        recognizer.gate.set()
        assert orchestrator.wait("job1", timeout=WAIT_SECONDS).status == JobStatus.COMPLETED

    def test_wait_for_unknown_job(self):
        orchestrator = self._build()

        with pytest.raises(KeyError):
            orchestrator.wait("missing", timeout=0.1)
