"""Translation adapter with Gemini API and NLLB-200 backends."""

import logging
import re
import threading
import time
from typing import FrozenSet, List, Optional, Sequence, Tuple

try:
    from google import genai
    from google.genai import errors as genai_errors
    from google.genai import types
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False
    genai = None
    genai_errors = None
    types = None

try:
    from transformers import AutoModelForSeq2SeqLM, AutoTokenizer
    TRANSFORMERS_AVAILABLE = True
except ImportError:
    TRANSFORMERS_AVAILABLE = False
    AutoTokenizer = None
    AutoModelForSeq2SeqLM = None

from .base import BaseTranslationBackend, LanguageClassifier, ProperNounDetector
from .error_handler import (
    ErrorHandler,
    ServiceTemporarilyUnavailable,
    TranslationFailed,
    UnsupportedLanguagePair,
    VideoTranslatorError,
)
from .text_heuristics import HeuristicProperNounDetector, UnicodeScriptClassifier, protect, restore
from ..models.core import ProcessingConfig
from ..models.languages import (
    AUTO,
    ENGLISH,
    NLLB_CODES,
    default_supported_pairs,
    language_name,
    normalize_language_code,
)

logger = logging.getLogger(__name__)

_SENTENCE_PATTERN = re.compile(r".+?(?:[.!?।]+\s*|$)", re.DOTALL)


class GeminiTranslationBackend(BaseTranslationBackend):
    """Translation through the Gemini API."""

    name = "gemini"
    max_chars = 5000

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout_seconds: float = 120.0,
        min_request_interval: float = 1.0
    ):
        if not GEMINI_AVAILABLE:
            raise ImportError("google-genai package is required for Gemini translation")
        if not api_key:
            raise ValueError("A Gemini API key is required")
        self.model = model
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000))
        )
        self.min_request_interval = min_request_interval
        self.last_request_time = 0.0
        self._rate_lock = threading.Lock()
        logger.info(f"Gemini API client initialized ({model})")

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        self._apply_rate_limit()
        prompt = self._create_translation_prompt(text, source_language, target_language)
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(temperature=0.2)
            )
        except genai_errors.APIError as e:
            if e.code == 429 or (e.code or 0) >= 500:
                raise ServiceTemporarilyUnavailable(f"Gemini API error {e.code}: {e.message}") from e
            raise TranslationFailed(f"Gemini API error {e.code}: {e.message}") from e
        except Exception as e:
            raise ServiceTemporarilyUnavailable(f"Gemini request failed: {e}") from e

        translated = (response.text or "").strip()
        if not translated:
            raise TranslationFailed("Gemini returned an empty translation")
        return translated

    def _apply_rate_limit(self) -> None:
        """Space out requests across threads sharing this backend."""
        with self._rate_lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.min_request_interval:
                time.sleep(self.min_request_interval - elapsed)
            self.last_request_time = time.time()

    @staticmethod
    def _create_translation_prompt(text: str, source_language: str, target_language: str) -> str:
        return (
            f"Translate the following {language_name(source_language)} text into "
            f"{language_name(target_language)}.\n\n"
            "Tokens such as [[PN0]] or [[PN1]] are placeholders. Copy every placeholder "
            "into the translation exactly as written, in the position that fits the sentence.\n"
            "The text is speech from a video transcript, so keep a natural spoken register.\n"
            "Return only the translation, without notes, quotes or explanations.\n\n"
            f"Text:\n{text}"
        )


class NllbTranslationBackend(BaseTranslationBackend):
    """Local translation with the NLLB-200 model."""

    name = "nllb"
    max_chars = 1000

    def __init__(self, model_name: str = "facebook/nllb-200-distilled-600M"):
        if not TRANSFORMERS_AVAILABLE:
            raise ImportError("transformers package is required for NLLB translation")
        self.model_name = model_name
        self.model = None
        self.tokenizer = None
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        if self.model is not None and self.tokenizer is not None:
            return
        logger.info(f"Loading NLLB-200 model {self.model_name}...")
        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_name)
            self.model = AutoModelForSeq2SeqLM.from_pretrained(self.model_name)
        except (OSError, ValueError) as e:
            raise TranslationFailed(f"Failed to load NLLB model: {e}") from e
        logger.info("NLLB-200 model loaded successfully")

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        source_code = NLLB_CODES.get(source_language)
        target_code = NLLB_CODES.get(target_language)
        if source_code is None or target_code is None:
            raise UnsupportedLanguagePair(source_language, target_language, reason="not available in NLLB")

        with self._lock:
            self._ensure_loaded()
            try:
                self.tokenizer.src_lang = source_code
                inputs = self.tokenizer(text, return_tensors="pt", truncation=True, max_length=512)
                generated = self.model.generate(
                    **inputs,
                    forced_bos_token_id=self.tokenizer.convert_tokens_to_ids(target_code),
                    max_length=512
                )
                translated = self.tokenizer.batch_decode(generated, skip_special_tokens=True)[0]
            except (RuntimeError, ValueError, IndexError) as e:
                raise TranslationFailed(f"NLLB translation failed: {e}") from e

        if not translated.strip():
            raise TranslationFailed("NLLB returned an empty translation")
        return translated.strip()


class ChainedTranslationBackend(BaseTranslationBackend):
    """Tries backends in order until one succeeds."""

    name = "chain"

    def __init__(self, backends: Sequence[BaseTranslationBackend]):
        if not backends:
            raise ValueError("At least one translation backend is required")
        self.backends = list(backends)
        self.max_chars = min(getattr(b, 'max_chars', 5000) for b in self.backends)

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        last_error: Optional[VideoTranslatorError] = None
        for backend in self.backends:
            try:
                return backend.translate(text, source_language, target_language)
            except VideoTranslatorError as e:
                logger.warning(f"{backend.name} translation failed, trying next backend: {e}")
                last_error = e
        raise last_error


def build_translation_backend(config: ProcessingConfig) -> BaseTranslationBackend:
    """Create the translation backend selected by configuration.

    ``auto`` chains Gemini in front of NLLB when an API key is configured,
    and uses NLLB alone otherwise.
    """
    choice = config.translation_backend
    if choice == "gemini":
        return GeminiTranslationBackend(
            config.gemini_api_key, config.gemini_model, config.service_timeout_seconds
        )
    if choice == "nllb":
        return NllbTranslationBackend(config.nllb_model_name)

    nllb = NllbTranslationBackend(config.nllb_model_name)
    if config.gemini_api_key and GEMINI_AVAILABLE:
        gemini = GeminiTranslationBackend(
            config.gemini_api_key, config.gemini_model, config.service_timeout_seconds
        )
        return ChainedTranslationBackend([gemini, nllb])
    if config.gemini_api_key:
        logger.warning("Google Genai not available - install with: pip install google-genai")
    return nllb


class TranslationService:
    """Translates transcripts while keeping proper nouns intact."""

    def __init__(
        self,
        backend: BaseTranslationBackend,
        config: ProcessingConfig,
        detector: Optional[ProperNounDetector] = None,
        classifier: Optional[LanguageClassifier] = None,
        supported_pairs: Optional[FrozenSet[Tuple[str, str]]] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        self.backend = backend
        self.config = config
        self.detector = detector or HeuristicProperNounDetector(config.proper_noun_strictness)
        self.classifier = classifier or UnicodeScriptClassifier()
        self.supported_pairs = supported_pairs if supported_pairs is not None else default_supported_pairs()
        self.error_handler = error_handler or ErrorHandler()

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        """Translate text, routing through English when the pair is unsupported.

        Args:
            text: Source text
            source_language: Language name or code, or "auto"
            target_language: Language name or code

        Returns:
            Translated text with every protected token restored verbatim

        Raises:
            UnsupportedLanguagePair: If no direct or English-hop route exists
            TranslationFailed: If the backend fails
        """
        if source_language and source_language.lower() == AUTO:
            source = self.detect_language(text)
        else:
            source = normalize_language_code(source_language)
        target = normalize_language_code(target_language)
        if source is None or target is None or target == AUTO:
            raise UnsupportedLanguagePair(source_language, target_language, reason="unknown language")

        if not text.strip() or source == target:
            return text

        route = self.plan_route(source, target)
        protected = protect(text, self.detector)
        if protected.tokens:
            logger.debug(f"Protecting {len(protected.tokens)} proper noun(s): {protected.tokens}")

        current = protected.text
        for leg_source, leg_target in route:
            current = self._translate_leg(current, leg_source, leg_target)
        return restore(current, protected)

    def plan_route(self, source: str, target: str) -> List[Tuple[str, str]]:
        """Return the translation legs for a language pair.

        Raises:
            UnsupportedLanguagePair: If the direct pair is unsupported and a
                required English-hop leg is unsupported too
        """
        if (source, target) in self.supported_pairs:
            return [(source, target)]
        if ENGLISH in (source, target):
            raise UnsupportedLanguagePair(source, target)

        legs = [(source, ENGLISH), (ENGLISH, target)]
        for leg in legs:
            if leg not in self.supported_pairs:
                raise UnsupportedLanguagePair(
                    source, target, reason=f"no route via English, {leg[0]} -> {leg[1]} is unsupported"
                )
        logger.info(f"No direct {source} -> {target} pair; translating through English")
        return legs

    def detect_language(self, text: str) -> str:
        """Guess the language of text; defaults to English when nothing matches."""
        language = self.classifier.classify(text)
        if language is None:
            logger.warning("Language detection found no script or word pattern; assuming English (low confidence)")
            return ENGLISH
        return language

    def _translate_leg(self, text: str, source: str, target: str) -> str:
        max_chars = min(self.config.max_translation_chars, getattr(self.backend, 'max_chars', 5000))
        pieces = self.split_sentences(text, max_chars)
        translated = []
        for piece in pieces:
            try:
                translated.append(self.error_handler.call_with_retry(
                    self.backend.translate,
                    piece,
                    source,
                    target,
                    attempts=self.config.retry_attempts,
                    base_delay=self.config.retry_delay_seconds,
                    operation=f"translate {source}->{target}"
                ))
            except (UnsupportedLanguagePair, TranslationFailed):
                raise
            except Exception as e:
                raise TranslationFailed(f"Translation {source} -> {target} failed: {e}") from e
        return " ".join(part.strip() for part in translated if part.strip())

    @staticmethod
    def split_sentences(text: str, max_chars: int) -> List[str]:
        """Pack sentences into pieces of at most ``max_chars`` characters.

        A single sentence longer than the limit is split at whitespace.
        """
        if len(text) <= max_chars:
            return [text]

        pieces: List[str] = []
        current = ""
        for sentence in _SENTENCE_PATTERN.findall(text):
            while len(sentence) > max_chars:
                cut = sentence.rfind(" ", 0, max_chars)
                cut = cut if cut > 0 else max_chars
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(sentence[:cut])
                sentence = sentence[cut:].lstrip()
            if len(current) + len(sentence) > max_chars:
                pieces.append(current)
                current = ""
            current += sentence
        if current:
            pieces.append(current)
        return [piece for piece in (p.strip() for p in pieces) if piece]

    @staticmethod
    def score_translation(original: str, translated: str) -> float:
        """Heuristic 0-1 quality score for a translation."""
        if not translated or not translated.strip():
            return 0.0

        score = 1.0
        if len(translated) < len(original) * 0.3:
            score *= 0.7
        if len(translated) > len(original) * 3:
            score *= 0.8
        if any(char * 5 in translated.lower() for char in 'abcdefghijklmnopqrstuvwxyz'):
            score *= 0.5
        if translated.strip() == original.strip():
            score *= 0.5
        return score
