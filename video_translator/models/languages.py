"""Language names, codes and the default translation pair table."""

from typing import Dict, FrozenSet, Optional, Tuple

ENGLISH = "en"
AUTO = "auto"

LANGUAGE_CODES: Dict[str, str] = {
    "english": "en",
    "hindi": "hi",
    "tamil": "ta",
    "telugu": "te",
    "kannada": "kn",
    "malayalam": "ml",
    "bengali": "bn",
    "marathi": "mr",
    "gujarati": "gu",
    "punjabi": "pa",
    "urdu": "ur",
    "arabic": "ar",
    "korean": "ko",
    "chinese": "zh",
    "spanish": "es",
    "french": "fr",
    "german": "de",
    "japanese": "ja",
}

SUPPORTED_LANGUAGES: FrozenSet[str] = frozenset(LANGUAGE_CODES.values())

LANGUAGE_NAMES: Dict[str, str] = {code: name.capitalize() for name, code in LANGUAGE_CODES.items()}

# NLLB-200 uses script-qualified codes
NLLB_CODES: Dict[str, str] = {
    "en": "eng_Latn",
    "hi": "hin_Deva",
    "ta": "tam_Taml",
    "te": "tel_Telu",
    "kn": "kan_Knda",
    "ml": "mal_Mlym",
    "bn": "ben_Beng",
    "mr": "mar_Deva",
    "gu": "guj_Gujr",
    "pa": "pan_Guru",
    "ur": "urd_Arab",
    "ar": "arb_Arab",
    "ko": "kor_Hang",
    "zh": "zho_Hans",
    "es": "spa_Latn",
    "fr": "fra_Latn",
    "de": "deu_Latn",
    "ja": "jpn_Jpan",
}


def normalize_language_code(language: str) -> Optional[str]:
    """Map a language name or code to its ISO code.

    Accepts names ("Hindi"), bare codes ("hi") and locale codes ("hi-IN").

    Returns:
        The ISO code, "auto" for auto-detection, or None if unknown
    """
    if not language:
        return None
    value = language.strip().lower().replace("_", "-")
    if value == AUTO:
        return AUTO
    if value in LANGUAGE_CODES:
        return LANGUAGE_CODES[value]
    base = value.split("-", 1)[0]
    if base in SUPPORTED_LANGUAGES:
        return base
    return None


def language_name(code: str) -> str:
    """Human-readable name for an ISO code."""
    return LANGUAGE_NAMES.get(code, code)


def default_supported_pairs() -> FrozenSet[Tuple[str, str]]:
    """English paired with every other supported language, both directions."""
    pairs = set()
    for code in SUPPORTED_LANGUAGES:
        if code == ENGLISH:
            continue
        pairs.add((ENGLISH, code))
        pairs.add((code, ENGLISH))
    return frozenset(pairs)
