"""Heuristic proper-noun detection and script-based language classification.

Both heuristics sit behind the ``ProperNounDetector`` and
``LanguageClassifier`` interfaces so that statistical models can replace them
without touching the pipeline.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .base import LanguageClassifier, ProperNounDetector

logger = logging.getLogger(__name__)


class Strictness(Enum):
    """How aggressively capitalized tokens are protected.

    The capitalization heuristic both over- and under-protects: sentence-initial
    words are capitalized by convention, and short capitalized tokens are often
    not names. Strictness trades recall against precision.
    """
    STRICT = "strict"
    BALANCED = "balanced"
    LENIENT = "lenient"


COMMON_WORDS = frozenset("""
a an the and or but nor so yet if then than because although though while
in on at to for of with by from up down out off over under into onto upon
about above across after against along among around before behind below
beneath beside between beyond during except inside near past since through
throughout toward towards until within without
is are was were be been being am have has had do does did will would could
should may might must can shall
this that these those i you he she it we they me him her us them my your his
its our their mine yours hers ours theirs who whom whose which what where when
why how all any both each every few many more most much no not only other
some such very too also just now here there today tomorrow yesterday
yes ok okay hello hi thank thanks please sorry welcome goodbye
good morning evening afternoon night everyone everybody someone anyone
back center stage host session high performance grace skill artistry display
performers journey moment entertainment pause festivities continues
captivating refined keeping enthralled transit take offer let lets let's
ladies gentlemen friends dear well oh
""".split())

SENTENCE_STARTERS = frozenset(
    ["The", "A", "An", "This", "That", "These", "Those", "I", "You", "He", "She", "It", "We", "They"]
)

_WORD_PATTERN = re.compile(r"(?<![\w'])[A-Za-z]{2,20}(?!\w)")
_ACRONYM_PATTERN = re.compile(r"^[A-Z]{2,}$")
_COMPOUND_PATTERN = re.compile(r"^[A-Za-z]*[a-z][A-Z][A-Za-z]*$")
_CAPITALIZED_PATTERN = re.compile(r"^[A-Z][a-z]+$")

_SENTENCE_END = ".!?।"
_OPENERS = " \t\r\n\"'(“‘[«"

MARKER_TEMPLATE = "[[PN{index}]]"
_MARKER_PATTERN = re.compile(r"\[{1,2}\s*PN\s*(\d+)\s*\]{1,2}", re.IGNORECASE)


def is_sentence_start(text: str, offset: int) -> bool:
    """Whether the token at ``offset`` opens a sentence."""
    prefix = text[:offset].rstrip(_OPENERS)
    return not prefix or prefix[-1] in _SENTENCE_END


class HeuristicProperNounDetector(ProperNounDetector):
    """Capitalization-based proper-noun detector."""

    def __init__(self, strictness: Strictness = Strictness.BALANCED):
        if isinstance(strictness, str):
            strictness = Strictness(strictness)
        self.strictness = strictness

    def find_spans(self, text: str) -> List[Tuple[int, int]]:
        spans = []
        for match in _WORD_PATTERN.finditer(text):
            if self._is_proper_noun(match.group(0), is_sentence_start(text, match.start())):
                spans.append((match.start(), match.end()))
        return spans

    def count_signals(self, text: str) -> int:
        count = 0
        for match in _WORD_PATTERN.finditer(text):
            word = match.group(0)
            if not word[0].isupper() or word.lower() in COMMON_WORDS:
                continue
            if not is_sentence_start(text, match.start()):
                count += 1
        return count

    def _is_proper_noun(self, word: str, sentence_start: bool) -> bool:
        if _ACRONYM_PATTERN.match(word) or _COMPOUND_PATTERN.match(word):
            return True
        if not _CAPITALIZED_PATTERN.match(word):
            return False
        if word in SENTENCE_STARTERS or word.lower() in COMMON_WORDS:
            return False
        if sentence_start:
            return self.strictness == Strictness.LENIENT
        if self.strictness == Strictness.STRICT:
            return len(word) >= 3
        return True


@dataclass
class ProtectedText:
    """Text with proper nouns replaced by opaque markers."""
    text: str
    tokens: List[str]


def protect(text: str, detector: ProperNounDetector) -> ProtectedText:
    """Wrap every detected proper noun in an opaque marker.

    Args:
        text: Source text
        detector: Strategy that locates the tokens to protect

    Returns:
        ProtectedText whose marker ``n`` stands for ``tokens[n]``
    """
    pieces = []
    tokens = []
    cursor = 0
    for start, end in detector.find_spans(text):
        pieces.append(text[cursor:start])
        pieces.append(MARKER_TEMPLATE.format(index=len(tokens)))
        tokens.append(text[start:end])
        cursor = end
    pieces.append(text[cursor:])
    return ProtectedText(text="".join(pieces), tokens=tokens)


def restore(translated: str, protected: ProtectedText) -> str:
    """Replace markers in translated text with the original surface forms.

    Tolerates whitespace or a lost bracket that a backend introduced inside a
    marker. Markers the backend dropped entirely are logged; marker syntax
    never survives into the returned text.
    """
    seen = set()

    def substitute(match: re.Match) -> str:
        index = int(match.group(1))
        if index >= len(protected.tokens):
            logger.warning(f"Translation produced unknown proper-noun marker {match.group(0)!r}")
            return ""
        seen.add(index)
        return protected.tokens[index]

    restored = _MARKER_PATTERN.sub(substitute, translated)
    missing = [protected.tokens[i] for i in range(len(protected.tokens)) if i not in seen]
    if missing:
        logger.warning(f"Translation dropped {len(missing)} protected token(s): {missing}")
    return restored


# Ordered script rules; ties in character count go to the earlier entry
_SCRIPT_RANGES: List[Tuple[str, List[Tuple[int, int]]]] = [
    ("arabic", [(0x0600, 0x06FF), (0x0750, 0x077F), (0xFB50, 0xFDFF), (0xFE70, 0xFEFF)]),
    ("ja", [(0x3040, 0x309F), (0x30A0, 0x30FF)]),
    ("zh", [(0x4E00, 0x9FFF), (0x3400, 0x4DBF)]),
    ("ko", [(0xAC00, 0xD7AF), (0x1100, 0x11FF), (0x3130, 0x318F)]),
    ("ta", [(0x0B80, 0x0BFF)]),
    ("te", [(0x0C00, 0x0C7F)]),
    ("kn", [(0x0C80, 0x0CFF)]),
    ("ml", [(0x0D00, 0x0D7F)]),
    ("bn", [(0x0980, 0x09FF)]),
    ("gu", [(0x0A80, 0x0AFF)]),
    ("pa", [(0x0A00, 0x0A7F)]),
    ("hi", [(0x0900, 0x097F)]),
]

# Letters used by Urdu but not by standard Arabic
_URDU_LETTERS = frozenset("ٹڈڑںےہھکگیۓ")

_ENGLISH_PATTERN = re.compile(
    r"\b(the|and|is|are|was|were|have|has|will|would|could|should|this|that|with|from|"
    r"you|what|there|about|which|their)\b",
    re.IGNORECASE
)


class UnicodeScriptClassifier(LanguageClassifier):
    """Classifies text by the Unicode blocks its letters fall in."""

    def classify(self, text: str) -> Optional[str]:
        if not text or not text.strip():
            return None

        counts: Dict[str, int] = {}
        for char in text:
            code_point = ord(char)
            if code_point < 0x0600:
                continue
            for script, ranges in _SCRIPT_RANGES:
                if any(low <= code_point <= high for low, high in ranges):
                    counts[script] = counts.get(script, 0) + 1
                    break

        if counts:
            # Japanese mixes kana with Han characters
            if counts.get("ja"):
                return "ja"
            order = [script for script, _ in _SCRIPT_RANGES]
            best = max(counts, key=lambda script: (counts[script], -order.index(script)))
            if best == "arabic":
                return "ur" if any(char in _URDU_LETTERS for char in text) else "ar"
            return best

        if _ENGLISH_PATTERN.search(text):
            return "en"
        return None
