"""Transcription adapter and faster-whisper speech recognizer."""

import logging
import math
import os
import threading
from typing import List, Optional

try:
    from faster_whisper import WhisperModel
except ImportError:
    WhisperModel = None

from .base import BaseSpeechRecognizer, ProperNounDetector
from .error_handler import ErrorHandler, TranscriptionUnavailable
from .text_heuristics import HeuristicProperNounDetector
from ..models.core import AudioChunk, ProcessingConfig, Transcript, TranscriptAlternative
from ..models.languages import AUTO, normalize_language_code

logger = logging.getLogger(__name__)


# Decoding passes used to produce alternative hypotheses, best-effort first.
# The prompted pass nudges Whisper toward keeping names capitalized.
DECODING_PASSES = [
    {'beam_size': 5, 'temperature': 0.0},
    {'beam_size': 5, 'temperature': 0.0,
     'initial_prompt': "The speaker mentions people, places and organizations by name."},
    {'beam_size': 1, 'temperature': 0.0},
    {'beam_size': 5, 'best_of': 5, 'temperature': 0.4},
    {'beam_size': 1, 'best_of': 5, 'temperature': 0.8},
]


class FasterWhisperRecognizer(BaseSpeechRecognizer):
    """Speech recognizer backed by a local faster-whisper model."""

    def __init__(self, model_size: str = "base", device: str = "cpu", compute_type: str = "int8"):
        """Initialize the recognizer; the model loads on first use.

        Args:
            model_size: Whisper model size ('tiny', 'base', 'small', ...)
            device: 'cpu' or 'cuda'
            compute_type: CTranslate2 compute type, e.g. 'int8' or 'float16'
        """
        if WhisperModel is None:
            raise ImportError("faster-whisper package is required for transcription")
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.model: Optional[WhisperModel] = None
        self._lock = threading.Lock()

    def load_model(self) -> None:
        """Load the faster-whisper model if it is not loaded yet.

        Raises:
            TranscriptionUnavailable: If the model cannot be loaded
        """
        if self.model is not None:
            return
        try:
            logger.info(f"Loading faster-whisper model: {self.model_size} ({self.device}, {self.compute_type})")
            self.model = WhisperModel(self.model_size, device=self.device, compute_type=self.compute_type)
            logger.info(f"Successfully loaded model: {self.model_size}")
        except Exception as e:
            logger.error(f"Failed to load model {self.model_size}: {e}")
            raise TranscriptionUnavailable(f"Failed to load ASR model: {e}") from e

    def recognize(
        self, audio_path: str, language: Optional[str], max_alternatives: int
    ) -> List[TranscriptAlternative]:
        """Transcribe with several decoding passes and return them ranked by confidence."""
        if not os.path.exists(audio_path):
            raise TranscriptionUnavailable(f"Audio file not found: {audio_path}")

        alternatives = []
        last_error: Optional[Exception] = None
        with self._lock:
            self.load_model()
            for params in DECODING_PASSES[:max(1, max_alternatives)]:
                try:
                    segments, info = self.model.transcribe(
                        audio_path,
                        language=language,
                        vad_filter=True,
                        condition_on_previous_text=False,
                        **params
                    )
                    # Decoding happens lazily while iterating
                    segments = list(segments)
                except Exception as e:
                    logger.warning(f"Whisper pass {params} failed: {e}")
                    last_error = e
                    continue

                text = " ".join(s.text.strip() for s in segments if s.text.strip())
                if segments:
                    mean_logprob = sum(s.avg_logprob for s in segments) / len(segments)
                    confidence = math.exp(mean_logprob)
                else:
                    confidence = 0.0
                alternatives.append(TranscriptAlternative(
                    text=text,
                    confidence=confidence,
                    language=info.language
                ))

        if not alternatives and last_error is not None:
            raise TranscriptionUnavailable(f"Transcription failed: {last_error}") from last_error

        alternatives.sort(key=lambda alt: alt.confidence, reverse=True)
        for rank, alternative in enumerate(alternatives):
            alternative.rank = rank
        return alternatives


class TranscriptionService:
    """Turns audio chunks into transcript text."""

    def __init__(
        self,
        recognizer: BaseSpeechRecognizer,
        config: ProcessingConfig,
        detector: Optional[ProperNounDetector] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        self.recognizer = recognizer
        self.config = config
        self.detector = detector or HeuristicProperNounDetector(config.proper_noun_strictness)
        self.error_handler = error_handler or ErrorHandler()

    def transcribe(self, chunk: AudioChunk, language_hint: str = AUTO) -> str:
        """Transcribe one chunk and return its text.

        Args:
            chunk: The chunk to transcribe
            language_hint: "auto" to detect, or a language name/code to force

        Raises:
            TranscriptionUnavailable: If recognition fails or yields no text
        """
        return self.transcribe_chunk(chunk, language_hint).text

    def transcribe_chunk(self, chunk: AudioChunk, language_hint: str = AUTO) -> Transcript:
        """Transcribe one chunk, also reporting the recognizer's detected language."""
        language = None
        if language_hint and language_hint.lower() != AUTO:
            language = normalize_language_code(language_hint) or language_hint.lower()

        try:
            alternatives = self.error_handler.call_with_retry(
                self.recognizer.recognize,
                chunk.path,
                language,
                self.config.transcription_alternatives,
                attempts=self.config.retry_attempts,
                base_delay=self.config.retry_delay_seconds,
                operation=f"transcribe chunk {chunk.index}"
            )
        except TranscriptionUnavailable:
            raise
        except Exception as e:
            raise TranscriptionUnavailable(f"Transcription failed for chunk {chunk.index}: {e}") from e

        ranked = self.rank_alternatives(alternatives or [])
        if not ranked:
            raise TranscriptionUnavailable(f"No speech recognized in chunk {chunk.index}")

        best = ranked[0]
        if best.rank != min(alt.rank for alt in ranked):
            logger.info(
                f"Chunk {chunk.index}: preferring alternative #{best.rank} "
                f"for proper-noun coverage over the default hypothesis"
            )
        return Transcript(
            text=best.text.strip(),
            language=best.language or language,
            alternatives_considered=len(ranked)
        )

    def rank_alternatives(self, alternatives: List[TranscriptAlternative]) -> List[TranscriptAlternative]:
        """Order hypotheses so the one preserving the most proper nouns comes first.

        Empty and duplicate hypotheses are dropped. Ties keep the recognizer's
        original ranking.
        """
        unique = []
        seen = set()
        for alternative in sorted(alternatives, key=lambda alt: alt.rank):
            text = alternative.text.strip()
            if not text or text in seen:
                continue
            seen.add(text)
            unique.append(alternative)

        return sorted(unique, key=lambda alt: (-self.detector.count_signals(alt.text), alt.rank))
