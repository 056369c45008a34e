"""Core data models for the Video Translator System."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class JobStatus(Enum):
    """Status enumeration for translation jobs."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class ResultStatus(Enum):
    """Status enumeration for a single target-language result."""
    PENDING = "pending"
    TRANSLATING = "translating"
    SYNTHESIZING = "synthesizing"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ResultStatus.COMPLETED, ResultStatus.FAILED, ResultStatus.CANCELLED)


class Gender(Enum):
    """Speaker gender used for voice selection."""
    FEMALE = "female"
    MALE = "male"
    UNKNOWN = "unknown"


class JobEvent(Enum):
    """Events emitted to the notification sink."""
    JOB_STARTED = "job_started"
    LANGUAGE_COMPLETED = "language_completed"
    LANGUAGE_FAILED = "language_failed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"


@dataclass
class TranslationResult:
    """Outcome of a job for one target language."""
    target_language: str
    status: ResultStatus = ResultStatus.PENDING
    output_video_key: Optional[str] = None
    translated_audio_key: Optional[str] = None
    script_key: Optional[str] = None
    subtitle_key: Optional[str] = None
    translation_quality_score: Optional[float] = None
    audio_quality_score: Optional[float] = None
    processing_seconds: Optional[float] = None
    error_message: Optional[str] = None
    error_classification: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass
class TranslationJob:
    """Represents a video translation request."""
    id: str
    media_key: str
    target_languages: List[str]
    source_language: str = "auto"
    resolved_source_language: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error_message: Optional[str] = None
    error_classification: Optional[str] = None
    results: List[TranslationResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def result_for(self, language: str) -> Optional[TranslationResult]:
        """Return the result entry for a target language, if any."""
        for result in self.results:
            if result.target_language == language:
                return result
        return None


@dataclass
class MediaInfo:
    """Stream and container facts reported by the media tool."""
    duration_seconds: float
    has_audio_stream: bool
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


@dataclass
class AudioChunk:
    """A contiguous, time-bounded slice of the source audio."""
    index: int
    start: float
    duration: float
    path: str
    transcript: Optional[str] = None
    translated_text: Optional[str] = None
    synthesized_path: Optional[str] = None
    speaker_gender: Gender = Gender.UNKNOWN

    @property
    def end(self) -> float:
        """Calculate the end offset of the chunk."""
        return self.start + self.duration


@dataclass
class TranscriptAlternative:
    """One recognition hypothesis for a chunk."""
    text: str
    confidence: float = 0.0
    rank: int = 0
    language: Optional[str] = None


@dataclass
class Transcript:
    """The chosen transcript for a chunk."""
    text: str
    language: Optional[str] = None
    alternatives_considered: int = 1


@dataclass
class SynthesizedAudio:
    """Synthesized speech for one chunk after duration reconciliation."""
    path: str
    voice: str
    raw_duration: float
    final_duration: float
    tempo: float = 1.0
    used_markup: bool = False


@dataclass
class AssembledMedia:
    """Outputs of the assembly stage for one language."""
    video_path: str
    audio_path: str
    duration: float


@dataclass(frozen=True)
class VoiceProfile:
    """Read-only mapping of (language, gender) to a synthesis voice."""
    voices: Dict[str, Dict[str, str]]
    fallback_voices: Dict[str, str]

    def lookup(self, language: str, gender: Gender) -> Tuple[str, bool]:
        """Resolve a voice for a language and gender.

        Args:
            language: ISO language code
            gender: Detected speaker gender

        Returns:
            Tuple of (voice_id, is_native) where is_native is False when the
            cross-language fallback voice was used
        """
        wanted = gender if gender != Gender.UNKNOWN else Gender.FEMALE
        native = self.voices.get(language, {})
        if wanted.value in native:
            return native[wanted.value], True
        return self.fallback_voices[wanted.value], False


@dataclass
class ProcessingConfig:
    """Configuration settings for the translation pipeline."""
    # Chunking
    chunk_duration_seconds: float = 60.0
    min_chunk_seconds: float = 5.0
    min_chunk_duration_seconds: float = 0.5
    min_chunk_bytes: int = 1024

    # Scheduling and retry
    max_concurrent_jobs: int = 5
    language_fanout: int = 2
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0

    # Timeouts and limits
    media_timeout_seconds: float = 600.0
    service_timeout_seconds: float = 120.0
    max_video_duration_seconds: float = 3600.0

    # Transcription
    whisper_model_size: str = "base"
    whisper_device: str = "auto"
    transcription_alternatives: int = 3

    # Translation
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    translation_backend: str = "auto"
    nllb_model_name: str = "facebook/nllb-200-distilled-600M"
    max_translation_chars: int = 5000
    proper_noun_strictness: str = "balanced"

    # Synthesis
    duration_tolerance: float = 0.05
    min_tempo: float = 0.5
    max_tempo: float = 2.0
    long_pause_ms: int = 600
    short_pause_ms: int = 250
    emphasis_min_word_length: int = 12
    enable_gender_detection: bool = True

    # Storage and tooling
    storage_root: str = "./storage"
    temp_root: Optional[str] = None
    presigned_url_ttl_seconds: int = 3600
    ffmpeg_cmd: str = "ffmpeg"
    ffprobe_cmd: str = "ffprobe"

    # Logging
    log_file: Optional[str] = None
    log_level: str = "INFO"
