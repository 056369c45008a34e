"""Speech synthesis engine with an Edge-TTS backend."""

import asyncio
import logging
import os
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Tuple
from xml.sax.saxutils import escape

try:
    import edge_tts
except ImportError:
    edge_tts = None

from .base import BaseSpeechBackend
from .error_handler import (
    ErrorHandler,
    ErrorSeverity,
    ServiceTemporarilyUnavailable,
    SynthesisFailed,
    SynthesisMarkupRejected,
    TimingReconciliationOverflow,
)
from .media_shell import MediaShell
from ..models.core import Gender, ProcessingConfig, SynthesizedAudio, VoiceProfile
from ..models.languages import normalize_language_code

logger = logging.getLogger(__name__)


DEFAULT_VOICES: Dict[str, Dict[str, str]] = {
    "en": {"female": "en-US-JennyNeural", "male": "en-US-GuyNeural"},
    "hi": {"female": "hi-IN-SwaraNeural", "male": "hi-IN-MadhurNeural"},
    "ta": {"female": "ta-IN-PallaviNeural", "male": "ta-IN-ValluvarNeural"},
    "te": {"female": "te-IN-ShrutiNeural", "male": "te-IN-MohanNeural"},
    "kn": {"female": "kn-IN-SapnaNeural", "male": "kn-IN-GaganNeural"},
    "ml": {"female": "ml-IN-SobhanaNeural", "male": "ml-IN-MidhunNeural"},
    "bn": {"female": "bn-IN-TanishaaNeural", "male": "bn-IN-BashkarNeural"},
    "mr": {"female": "mr-IN-AarohiNeural", "male": "mr-IN-ManoharNeural"},
    "gu": {"female": "gu-IN-DhwaniNeural", "male": "gu-IN-NiranjanNeural"},
    "ur": {"female": "ur-PK-UzmaNeural", "male": "ur-PK-AsadNeural"},
    "ar": {"female": "ar-SA-ZariyahNeural", "male": "ar-SA-HamedNeural"},
    "ko": {"female": "ko-KR-SunHiNeural", "male": "ko-KR-InJoonNeural"},
    "zh": {"female": "zh-CN-XiaoxiaoNeural", "male": "zh-CN-YunxiNeural"},
    "es": {"female": "es-ES-ElviraNeural", "male": "es-ES-AlvaroNeural"},
    "fr": {"female": "fr-FR-DeniseNeural", "male": "fr-FR-HenriNeural"},
    "de": {"female": "de-DE-KatjaNeural", "male": "de-DE-ConradNeural"},
    "ja": {"female": "ja-JP-NanamiNeural", "male": "ja-JP-KeitaNeural"},
}

# Multilingual voices picked for intelligibility across languages
FALLBACK_VOICES: Dict[str, str] = {
    "female": "en-US-AvaMultilingualNeural",
    "male": "en-US-AndrewMultilingualNeural",
}


def default_voice_profile() -> VoiceProfile:
    """Voice table used when no custom profile is configured."""
    return VoiceProfile(voices=DEFAULT_VOICES, fallback_voices=FALLBACK_VOICES)


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_QUOTED_SPAN = re.compile(r"(\"[^\"]+\"|“[^”]+”)")
_TOKEN = re.compile(r"\S+")
_WORD_CORE = re.compile(r"^(\W*)(\w+)(\W*)$", re.UNICODE)
_SENTENCE_END = tuple(".!?।")
_CLAUSE_END = (",", ";")


class SpeechMarkupBuilder:
    """Builds pause/emphasis markup for speech synthesis.

    Sentence ends get a long break, commas and semicolons a short one. Quoted
    spans and long words are emphasized. All text is XML-escaped and the
    result is validated before use.
    """

    def __init__(self, long_pause_ms: int = 600, short_pause_ms: int = 250, emphasis_min_word_length: int = 12):
        self.long_pause_ms = long_pause_ms
        self.short_pause_ms = short_pause_ms
        self.emphasis_min_word_length = emphasis_min_word_length

    @staticmethod
    def plain_text(text: str) -> str:
        """Strip control characters and collapse whitespace."""
        return " ".join(_CONTROL_CHARS.sub("", text).split())

    def build(self, text: str) -> Optional[str]:
        """Return validated markup for text, or None if it cannot be built safely."""
        clean = self.plain_text(text)
        if not clean:
            return None

        parts = []
        for segment in _QUOTED_SPAN.split(clean):
            if not segment:
                continue
            if _QUOTED_SPAN.fullmatch(segment):
                parts.append(f'<emphasis level="moderate">{self._escape(segment)}</emphasis>')
            else:
                parts.append(self._mark_words(segment))

        markup = f"<speak>{''.join(parts).strip()}</speak>"
        if not self.validate(markup):
            logger.warning("Generated speech markup failed validation; using plain text")
            return None
        return markup

    def _mark_words(self, segment: str) -> str:
        pieces = []
        tokens = list(_TOKEN.finditer(segment))
        cursor = 0
        for position, match in enumerate(tokens):
            pieces.append(self._escape(segment[cursor:match.start()]))
            word = match.group(0)
            pieces.append(self._emphasize(word))
            pause = self._pause_after(word)
            if pause and position < len(tokens) - 1:
                pieces.append(f'<break time="{pause}ms"/>')
            cursor = match.end()
        pieces.append(self._escape(segment[cursor:]))
        return "".join(pieces)

    def pause_segments(self, text: str) -> List[Tuple[str, int]]:
        """Split plain text at the points where markup would insert a break.

        Used for backends that cannot read markup, which speak each segment
        separately with silence between them.

        Returns:
            (segment, pause after it in ms) pairs; the final pause is 0
        """
        clean = self.plain_text(text)
        tokens = list(_TOKEN.finditer(clean))
        segments = []
        start = 0
        for match in tokens[:-1]:
            pause = self._pause_after(match.group(0))
            if pause:
                segments.append((clean[start:match.end()].strip(), pause))
                start = match.end()
        tail = clean[start:].strip()
        if tail:
            segments.append((tail, 0))
        return segments

    def _pause_after(self, word: str) -> int:
        if word.endswith(_SENTENCE_END):
            return self.long_pause_ms
        if word.endswith(_CLAUSE_END):
            return self.short_pause_ms
        return 0

    def _emphasize(self, word: str) -> str:
        match = _WORD_CORE.match(word)
        if match and len(match.group(2)) >= self.emphasis_min_word_length:
            lead, core, trail = match.groups()
            return (
                f'{self._escape(lead)}<emphasis level="moderate">{self._escape(core)}</emphasis>'
                f'{self._escape(trail)}'
            )
        return self._escape(word)

    @staticmethod
    def _escape(fragment: str) -> str:
        return escape(fragment, {'"': "&quot;", "'": "&apos;"})

    @staticmethod
    def validate(markup: str) -> bool:
        """Whether markup is well-formed XML rooted at <speak>."""
        try:
            root = ET.fromstring(markup)
        except ET.ParseError:
            return False
        return root.tag == "speak"


class EdgeTTSBackend(BaseSpeechBackend):
    """Text-to-speech through Microsoft Edge neural voices.

    The Edge service reads any markup literally, so only plain text is sent.
    """

    supports_markup = False

    def __init__(self, timeout_seconds: float = 120.0, rate: str = "+0%"):
        if edge_tts is None:
            raise ImportError("edge-tts package is required for TTS functionality")
        self.timeout_seconds = timeout_seconds
        self.rate = rate

    def synthesize(self, text: str, voice: str, output_path: str, markup: bool = False) -> str:
        if markup:
            raise SynthesisMarkupRejected("Edge TTS does not accept speech markup")
        try:
            asyncio.run(self._synthesize_async(text, voice, output_path))
        except asyncio.TimeoutError as e:
            raise ServiceTemporarilyUnavailable(
                f"Edge TTS timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except edge_tts.exceptions.NoAudioReceived as e:
            raise SynthesisFailed(f"Edge TTS returned no audio for voice {voice}") from e
        except (edge_tts.exceptions.WebSocketError, OSError) as e:
            raise ServiceTemporarilyUnavailable(f"Edge TTS connection failed: {e}") from e

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise SynthesisFailed("Edge TTS did not produce an audio file")
        return output_path

    async def _synthesize_async(self, text: str, voice: str, output_path: str) -> None:
        communicate = edge_tts.Communicate(text, voice, rate=self.rate)
        await asyncio.wait_for(communicate.save(output_path), timeout=self.timeout_seconds)


class SpeechSynthesisEngine:
    """Renders translated text to speech that fits the source chunk's duration."""

    def __init__(
        self,
        backend: BaseSpeechBackend,
        media_shell: MediaShell,
        config: ProcessingConfig,
        voice_profile: Optional[VoiceProfile] = None,
        markup_builder: Optional[SpeechMarkupBuilder] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        self.backend = backend
        self.media_shell = media_shell
        self.config = config
        self.voice_profile = voice_profile or default_voice_profile()
        self.markup_builder = markup_builder or SpeechMarkupBuilder(
            config.long_pause_ms, config.short_pause_ms, config.emphasis_min_word_length
        )
        self.error_handler = error_handler or ErrorHandler()

    def select_voice(
        self, language: str, gender: Gender = Gender.UNKNOWN, voice_profile: Optional[VoiceProfile] = None
    ) -> str:
        """Pick a voice for a language and speaker gender."""
        profile = voice_profile or self.voice_profile
        code = normalize_language_code(language) or language
        voice, native = profile.lookup(code, gender)
        if not native:
            logger.info(f"No native {gender.value} voice for '{code}', using fallback voice {voice}")
        return voice

    def synthesize(
        self,
        text: str,
        target_language: str,
        voice_profile: Optional[VoiceProfile],
        target_duration: float,
        output_path: str,
        gender: Gender = Gender.UNKNOWN
    ) -> SynthesizedAudio:
        """Synthesize text and reconcile its duration with the source chunk.

        Args:
            text: Translated text
            target_language: Language of the text
            voice_profile: Voice table; the engine default when None
            target_duration: Duration of the source chunk in seconds
            output_path: Destination WAV file
            gender: Estimated speaker gender

        Returns:
            SynthesizedAudio describing the reconciled file

        Raises:
            SynthesisFailed: If the text is empty or the backend fails
        """
        if not text or not text.strip():
            raise SynthesisFailed("Cannot synthesize empty text")

        voice = self.select_voice(target_language, gender, voice_profile)
        base, _ = os.path.splitext(output_path)
        normalized_path = f"{base}.norm.wav"

        raw_path, used_markup = self._render(text, voice, base)
        self._media(self.media_shell.normalize_audio, raw_path, normalized_path)
        raw_duration = self._media(self.media_shell.probe, normalized_path).duration_seconds

        tempo = self.compute_tempo(raw_duration, target_duration)
        if tempo == 1.0:
            os.replace(normalized_path, output_path)
            final_duration = raw_duration
        else:
            self._media(self.media_shell.change_tempo, normalized_path, tempo, output_path)
            final_duration = self._media(self.media_shell.probe, output_path).duration_seconds
            os.unlink(normalized_path)
        if os.path.exists(raw_path):
            os.unlink(raw_path)

        logger.debug(
            f"Synthesized {raw_duration:.2f}s with {voice}, tempo {tempo:.2f} -> "
            f"{final_duration:.2f}s (target {target_duration:.2f}s)"
        )
        return SynthesizedAudio(
            path=output_path,
            voice=voice,
            raw_duration=raw_duration,
            final_duration=final_duration,
            tempo=tempo,
            used_markup=used_markup
        )

    def compute_tempo(self, produced_duration: float, target_duration: float) -> float:
        """Tempo factor that brings produced audio to the target duration.

        Returns 1.0 inside the tolerance band. Outside it, the ratio is
        clamped to the configured tempo bounds and the overflow is logged.
        """
        if produced_duration <= 0 or target_duration <= 0:
            return 1.0
        ratio = produced_duration / target_duration
        if abs(ratio - 1.0) <= self.config.duration_tolerance:
            return 1.0

        tempo = min(max(ratio, self.config.min_tempo), self.config.max_tempo)
        if tempo != ratio:
            self.error_handler.log_error(
                TimingReconciliationOverflow(
                    f"Synthesis ratio {ratio:.2f} outside [{self.config.min_tempo}, "
                    f"{self.config.max_tempo}], clamped to {tempo:.2f}"
                ),
                severity=ErrorSeverity.WARNING,
                context={'produced': round(produced_duration, 3), 'target': round(target_duration, 3)},
                recovery_suggestion="Duration is matched on a best-effort basis"
            )
        return tempo

    def _render(self, text: str, voice: str, base: str) -> Tuple[str, bool]:
        """Call the backend, preferring markup.

        Returns:
            The path of the raw audio and whether markup was used
        """
        raw_path = f"{base}.raw.mp3"
        if self.backend.supports_markup:
            markup = self.markup_builder.build(text)
            if markup:
                try:
                    self._call_backend(markup, voice, raw_path, True)
                    return raw_path, True
                except SynthesisMarkupRejected as e:
                    logger.info(f"Synthesis markup rejected ({e}); retrying with plain text")

        segments = self.markup_builder.pause_segments(text)
        if len(segments) > 1:
            return self._render_with_pauses(segments, voice, base), False
        self._call_plain(self.markup_builder.plain_text(text), voice, raw_path)
        return raw_path, False

    def _render_with_pauses(self, segments: List[Tuple[str, int]], voice: str, base: str) -> str:
        """Speak each segment separately and join them with silent gaps."""
        joined_path = f"{base}.raw.wav"
        pieces: List[str] = []
        scratch: List[str] = []
        try:
            for position, (segment, pause_ms) in enumerate(segments):
                part_path = f"{base}.part{position:03d}.mp3"
                scratch.append(part_path)
                self._call_plain(segment, voice, part_path)
                part_wav = f"{base}.part{position:03d}.wav"
                scratch.append(part_wav)
                pieces.append(self._media(self.media_shell.normalize_audio, part_path, part_wav))
                if pause_ms > 0:
                    gap_path = f"{base}.gap{position:03d}.wav"
                    scratch.append(gap_path)
                    pieces.append(self._media(self.media_shell.generate_silence, pause_ms / 1000.0, gap_path))
            self._media(self.media_shell.concatenate, pieces, joined_path)
        finally:
            for path in scratch:
                if os.path.exists(path):
                    os.unlink(path)
        logger.debug(f"Joined {len(segments)} spoken segment(s) with pauses")
        return joined_path

    def _call_plain(self, text: str, voice: str, output_path: str) -> None:
        try:
            self._call_backend(text, voice, output_path, False)
        except SynthesisMarkupRejected as e:
            raise SynthesisFailed(f"Plain-text synthesis was rejected: {e}") from e

    def _call_backend(self, text: str, voice: str, output_path: str, markup: bool) -> None:
        try:
            self.error_handler.call_with_retry(
                self.backend.synthesize,
                text,
                voice,
                output_path,
                markup,
                attempts=self.config.retry_attempts,
                base_delay=self.config.retry_delay_seconds,
                operation="synthesize"
            )
        except (SynthesisMarkupRejected, SynthesisFailed):
            raise
        except Exception as e:
            raise SynthesisFailed(f"Speech synthesis failed: {e}") from e

    def _media(self, func, *args):
        return self.error_handler.call_with_retry(
            func,
            *args,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_delay_seconds,
            operation=getattr(func, '__name__', 'media')
        )
