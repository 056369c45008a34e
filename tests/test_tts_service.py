"""Tests for speech markup, voice selection, tempo reconciliation and Edge TTS."""

import asyncio
import dataclasses
import os
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import video_translator.services.tts_service as tts_module
from video_translator.models.core import Gender, ProcessingConfig
from video_translator.services.error_handler import (
    ServiceTemporarilyUnavailable,
    SynthesisFailed,
    SynthesisMarkupRejected,
)
from video_translator.services.tts_service import (
    EdgeTTSBackend,
    SpeechMarkupBuilder,
    SpeechSynthesisEngine,
)

from fakes import FakeMediaShell, FakeSpeechBackend


class TestSpeechMarkupBuilder:
    """Pause and emphasis markup."""

    def setup_method(self):
        self.builder = SpeechMarkupBuilder()

    def test_pauses_follow_punctuation(self):
        markup = self.builder.build("Hello, world. Bye")

        assert markup == (
            '<speak>Hello,<break time="250ms"/> world.<break time="600ms"/> Bye</speak>'
        )

    def test_special_characters_are_escaped(self):
        markup = self.builder.build("Tom & Jerry <3")

        assert "&amp;" in markup
        assert "&lt;3" in markup
        assert SpeechMarkupBuilder.validate(markup)

    def test_quoted_spans_and_long_words_are_emphasized(self):
        markup = self.builder.build('He said "stop now" about internationalization.')

        assert '<emphasis level="moderate">&quot;stop now&quot;</emphasis>' in markup
        assert '<emphasis level="moderate">internationalization</emphasis>.' in markup

    def test_empty_text_has_no_markup(self):
        assert self.builder.build(" \x00 ") is None

    def test_validate_rejects_malformed_markup(self):
        assert not SpeechMarkupBuilder.validate("<speak>unclosed")
        assert not SpeechMarkupBuilder.validate("<p>wrong root</p>")
        assert SpeechMarkupBuilder.validate("<speak>ok</speak>")

    def test_pause_segments_follow_punctuation(self):
        assert self.builder.pause_segments("Hello, world. Bye") == [
            ("Hello,", 250), ("world.", 600), ("Bye", 0)
        ]
        assert self.builder.pause_segments("Done.") == [("Done.", 0)]
        assert self.builder.pause_segments("  ") == []

    def test_plain_text_collapses_whitespace(self):
        assert SpeechMarkupBuilder.plain_text("  a\x07 b\n\nc ") == "a b c"


class TestSpeechSynthesisEngine:
    """Voice choice and duration matching with a fake backend."""

    def setup_method(self):
        self.shell = FakeMediaShell()
        self.config = ProcessingConfig(retry_attempts=2, retry_delay_seconds=0.0)

    def _engine(self, **backend_options):
        self.backend = FakeSpeechBackend(self.shell, **backend_options)
        engine = SpeechSynthesisEngine(self.backend, self.shell, self.config)
        engine.error_handler.sleep = lambda seconds: None
        return engine

    def test_select_voice_by_language_and_gender(self):
        engine = self._engine()

        assert engine.select_voice("hi", Gender.MALE) == "hi-IN-MadhurNeural"
        assert engine.select_voice("Hindi", Gender.FEMALE) == "hi-IN-SwaraNeural"
        assert engine.select_voice("en", Gender.UNKNOWN) == "en-US-JennyNeural"

    def test_select_voice_falls_back_to_multilingual(self):
        engine = self._engine()

        assert engine.select_voice("pa", Gender.UNKNOWN) == "en-US-AvaMultilingualNeural"
        assert engine.select_voice("pa", Gender.MALE) == "en-US-AndrewMultilingualNeural"

    def test_compute_tempo_within_tolerance_is_unity(self):
        engine = self._engine()

        assert engine.compute_tempo(10.2, 10.0) == 1.0
        assert engine.compute_tempo(0.0, 10.0) == 1.0
        assert engine.compute_tempo(10.0, 0.0) == 1.0

    def test_compute_tempo_matches_ratio(self):
        engine = self._engine()

        assert engine.compute_tempo(12.0, 10.0) == pytest.approx(1.2)
        assert engine.compute_tempo(6.0, 10.0) == pytest.approx(0.6)

    def test_compute_tempo_clamps_and_logs_overflow(self):
        engine = self._engine()

        assert engine.compute_tempo(50.0, 10.0) == 2.0
        assert engine.compute_tempo(1.0, 10.0) == 0.5
        classifications = [record.classification for record in engine.error_handler.error_log]
        assert classifications == ["timing_reconciliation_overflow"] * 2

    def test_matching_duration_keeps_audio(self, temp_dir):
        engine = self._engine()
        output = os.path.join(temp_dir, "tts_0000.wav")

        result = engine.synthesize("a" * 30, "es", None, 3.0, output)

        assert result.tempo == 1.0
        assert result.final_duration == pytest.approx(3.0)
        assert result.voice == "es-ES-ElviraNeural"
        assert os.path.exists(output)
        assert sorted(os.listdir(temp_dir)) == ["tts_0000.wav"]
        assert 'change_tempo' not in self.shell.operations()

    def test_long_synthesis_is_sped_up(self, temp_dir):
        engine = self._engine()
        output = os.path.join(temp_dir, "tts_0001.wav")

        result = engine.synthesize("a" * 60, "fr", None, 3.0, output, Gender.MALE)

        assert result.raw_duration == pytest.approx(6.0)
        assert result.tempo == pytest.approx(2.0)
        assert result.final_duration == pytest.approx(3.0)
        assert result.voice == "fr-FR-HenriNeural"
        assert sorted(os.listdir(temp_dir)) == ["tts_0001.wav"]

    def test_markup_is_used_when_supported(self, temp_dir):
        engine = self._engine(supports_markup=True)

        result = engine.synthesize("Hello, world.", "en", None, 1.3, os.path.join(temp_dir, "t.wav"))

        assert result.used_markup
        assert self.backend.calls[0][0].startswith("<speak>")
        assert self.backend.calls[0][3] is True

    def test_rejected_markup_is_retried_as_plain_text(self, temp_dir):
        engine = self._engine(supports_markup=True, reject_markup=True)

        result = engine.synthesize("Hello, world.", "en", None, 1.3, os.path.join(temp_dir, "t.wav"))

        assert not result.used_markup
        assert [call[3] for call in self.backend.calls] == [True, False, False]
        assert [call[0] for call in self.backend.calls[1:]] == ["Hello,", "world."]

    def test_plain_text_pauses_become_silence(self, temp_dir):
        engine = self._engine()
        output = os.path.join(temp_dir, "tts_0002.wav")

        result = engine.synthesize("Hello, world. Bye", "en", None, 2.35, output)

        assert not result.used_markup
        assert [call[0] for call in self.backend.calls] == ["Hello,", "world.", "Bye"]
        silences = [call[1] for call in self.shell.calls if call[0] == 'generate_silence']
        assert silences == [pytest.approx(0.25), pytest.approx(0.6)]
        assert result.raw_duration == pytest.approx(2.35)
        assert result.tempo == 1.0
        assert sorted(os.listdir(temp_dir)) == ["tts_0002.wav"]

    def test_pause_lengths_change_synthesized_duration(self, temp_dir):
        self.config = dataclasses.replace(self.config, long_pause_ms=1000, short_pause_ms=500)
        engine = self._engine()

        result = engine.synthesize("Hello, world. Bye", "en", None, 3.0, os.path.join(temp_dir, "t.wav"))

        assert result.raw_duration == pytest.approx(3.0)

    def test_single_segment_is_spoken_once(self, temp_dir):
        engine = self._engine()

        engine.synthesize("Guten Tag", "de", None, 0.9, os.path.join(temp_dir, "t.wav"))

        assert [call[0] for call in self.backend.calls] == ["Guten Tag"]
        assert 'generate_silence' not in self.shell.operations()

    def test_backend_failure_is_synthesis_failed(self, temp_dir):
        engine = self._engine(fail_voices={"de-DE-KatjaNeural"})

        with pytest.raises(SynthesisFailed):
            engine.synthesize("Guten Tag", "de", None, 1.0, os.path.join(temp_dir, "t.wav"))

    def test_empty_text_is_rejected(self, temp_dir):
        engine = self._engine()

        with pytest.raises(SynthesisFailed):
            engine.synthesize("   ", "de", None, 1.0, os.path.join(temp_dir, "t.wav"))
        assert self.backend.calls == []


NoAudioReceived = type("NoAudioReceived", (Exception,), {})
WebSocketError = type("WebSocketError", (Exception,), {})


def fake_edge_tts(save):
    """Stand-in for the edge_tts module whose Communicate.save runs `save`."""

    class Communicate:
        instances = []

        def __init__(self, text, voice, rate="+0%"):
            self.text = text
            self.voice = voice
            self.rate = rate
            Communicate.instances.append(self)

        async def save(self, path):
            await save(path)

    return SimpleNamespace(
        Communicate=Communicate,
        exceptions=SimpleNamespace(NoAudioReceived=NoAudioReceived, WebSocketError=WebSocketError),
    )


class TestEdgeTTSBackend:
    """Edge TTS error mapping with the client library replaced."""

    def test_writes_audio_file(self, temp_dir):
        async def save(path):
            with open(path, 'wb') as f:
                f.write(b"ID3 fake mp3")

        module = fake_edge_tts(save)
        output = os.path.join(temp_dir, "out.mp3")
        with patch.object(tts_module, 'edge_tts', module):
            backend = EdgeTTSBackend(rate="+5%")
            assert backend.synthesize("hola", "es-ES-ElviraNeural", output) == output

        communicate = module.Communicate.instances[0]
        assert (communicate.text, communicate.voice, communicate.rate) == ("hola", "es-ES-ElviraNeural", "+5%")

    def test_markup_is_rejected(self, temp_dir):
        async def save(path):
            raise AssertionError("should not be called")

        with patch.object(tts_module, 'edge_tts', fake_edge_tts(save)):
            with pytest.raises(SynthesisMarkupRejected):
                EdgeTTSBackend().synthesize("<speak>hi</speak>", "v", os.path.join(temp_dir, "o"), markup=True)

    @pytest.mark.parametrize("error,expected", [
        (NoAudioReceived("nothing"), SynthesisFailed),
        (WebSocketError("closed"), ServiceTemporarilyUnavailable),
        (ConnectionResetError("reset"), ServiceTemporarilyUnavailable),
    ])
    def test_errors_are_mapped(self, temp_dir, error, expected):
        async def save(path):
            raise error

        with patch.object(tts_module, 'edge_tts', fake_edge_tts(save)):
            with pytest.raises(expected):
                EdgeTTSBackend().synthesize("hi", "v", os.path.join(temp_dir, "o.mp3"))

    def test_timeout_is_transient(self, temp_dir):
        async def save(path):
            await asyncio.sleep(1.0)

        with patch.object(tts_module, 'edge_tts', fake_edge_tts(save)):
            with pytest.raises(ServiceTemporarilyUnavailable):
                EdgeTTSBackend(timeout_seconds=0.01).synthesize("hi", "v", os.path.join(temp_dir, "o.mp3"))

    def test_empty_output_fails(self, temp_dir):
        async def save(path):
            open(path, 'wb').close()

        with patch.object(tts_module, 'edge_tts', fake_edge_tts(save)):
            with pytest.raises(SynthesisFailed):
                EdgeTTSBackend().synthesize("hi", "v", os.path.join(temp_dir, "o.mp3"))

    def test_requires_edge_tts(self):
        with patch.object(tts_module, 'edge_tts', None):
            with pytest.raises(ImportError):
                EdgeTTSBackend()
