"""Base service interfaces and abstract classes.

Concrete backends bound their own blocking calls with a timeout taken from
configuration, so the adapters above them never depend on which provider
is plugged in. Tests substitute in-memory fakes for every interface here.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import JobEvent, JobStatus, TranscriptAlternative, TranslationJob


class BaseSpeechRecognizer(ABC):
    """Abstract base class for speech-to-text capabilities."""

    @abstractmethod
    def recognize(
        self, audio_path: str, language: Optional[str], max_alternatives: int
    ) -> List[TranscriptAlternative]:
        """Transcribe an audio file.

        Args:
            audio_path: Path to the audio to transcribe
            language: ISO code to force, or None to auto-detect
            max_alternatives: Upper bound on hypotheses to return

        Returns:
            Hypotheses ordered best-first by the recognizer's own confidence
        """
        pass


class BaseTranslationBackend(ABC):
    """Abstract base class for machine translation capabilities."""

    name = "translation"

    @abstractmethod
    def translate(self, text: str, source_language: str, target_language: str) -> str:
        """Translate text between two ISO language codes."""
        pass


class BaseSpeechBackend(ABC):
    """Abstract base class for text-to-speech capabilities."""

    supports_markup = False

    @abstractmethod
    def synthesize(self, text: str, voice: str, output_path: str, markup: bool = False) -> str:
        """Render text to an audio file and return its path.

        Raises:
            SynthesisMarkupRejected: If ``markup`` is set and the backend
                refuses the markup
        """
        pass


class ProperNounDetector(ABC):
    """Strategy that locates tokens which must survive translation verbatim."""

    @abstractmethod
    def find_spans(self, text: str) -> List[Tuple[int, int]]:
        """Return (start, end) offsets of protected tokens, in order."""
        pass

    def find(self, text: str) -> List[str]:
        """Return the protected tokens of ``text`` in order of appearance."""
        return [text[start:end] for start, end in self.find_spans(text)]

    @abstractmethod
    def count_signals(self, text: str) -> int:
        """Count capitalized mid-sentence tokens that are not common words."""
        pass


class LanguageClassifier(ABC):
    """Strategy that guesses the language of a piece of text."""

    @abstractmethod
    def classify(self, text: str) -> Optional[str]:
        """Return an ISO code, or None when no rule matched."""
        pass


class BaseObjectStorage(ABC):
    """Abstract base class for object storage."""

    @abstractmethod
    def put(self, data: bytes, key: str) -> str:
        """Store bytes under a key and return the key."""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Fetch the bytes stored under a key.

        Raises:
            KeyError: If nothing is stored under the key
        """
        pass

    @abstractmethod
    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        """Return a time-limited URL for downloading an object."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Whether an object is stored under the key."""
        pass

    def put_file(self, path: str, key: str) -> str:
        """Store the contents of a local file under a key."""
        with open(path, 'rb') as f:
            return self.put(f.read(), key)

    def size(self, key: str) -> int:
        """Size of a stored object in bytes."""
        return len(self.get(key))


class BaseJobStore(ABC):
    """Abstract base class for job persistence."""

    @abstractmethod
    def create(self, job: TranslationJob) -> None:
        """Persist a new job.

        Raises:
            ValueError: If a job with the same id already exists
        """
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[TranslationJob]:
        """Return a snapshot of a job, or None if unknown."""
        pass

    @abstractmethod
    def save(self, job: TranslationJob) -> None:
        """Replace the stored state of an existing job."""
        pass

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Remove a job and return whether it existed."""
        pass

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None) -> List[TranslationJob]:
        """Return snapshots of all jobs, optionally filtered by status."""
        pass


class BaseNotificationSink(ABC):
    """Abstract base class for job event notifications."""

    @abstractmethod
    def notify(self, job_id: str, event: JobEvent, details: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event; delivery is best-effort."""
        pass
