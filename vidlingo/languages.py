"""Language names accepted by the pipeline and their ISO codes."""

from __future__ import annotations

from typing import Optional

# name -> (ISO 639-1, ISO 639-2/B)
SUPPORTED_LANGUAGES: dict[str, tuple[str, str]] = {
    "English": ("en", "eng"),
    "Spanish": ("es", "spa"),
    "French": ("fr", "fre"),
    "German": ("de", "ger"),
    "Italian": ("it", "ita"),
    "Portuguese": ("pt", "por"),
    "Chinese": ("zh", "chi"),
    "Japanese": ("ja", "jpn"),
    "Korean": ("ko", "kor"),
    "Arabic": ("ar", "ara"),
    "Russian": ("ru", "rus"),
    "Hindi": ("hi", "hin"),
    "Dutch": ("nl", "dut"),
    "Polish": ("pl", "pol"),
    "Turkish": ("tr", "tur"),
    "Vietnamese": ("vi", "vie"),
    "Thai": ("th", "tha"),
    "Indonesian": ("id", "ind"),
    "Malay": ("ms", "may"),
    "Swedish": ("sv", "swe"),
    "Norwegian": ("no", "nor"),
    "Danish": ("da", "dan"),
    "Finnish": ("fi", "fin"),
    "Greek": ("el", "gre"),
    "Hebrew": ("he", "heb"),
    "Czech": ("cs", "cze"),
    "Romanian": ("ro", "rum"),
    "Hungarian": ("hu", "hun"),
    "Ukrainian": ("uk", "ukr"),
}

_BY_LOWER = {name.lower(): codes for name, codes in SUPPORTED_LANGUAGES.items()}
_BY_ISO1 = {codes[0]: codes for codes in SUPPORTED_LANGUAGES.values()}


def _lookup(language: str) -> Optional[tuple[str, str]]:
    key = language.strip().lower()
    return _BY_LOWER.get(key) or _BY_ISO1.get(key)


def iso639_1(language: Optional[str]) -> Optional[str]:
    """Two-letter code for a language name or code, ``None`` if unknown."""
    if not language:
        return None
    codes = _lookup(language)
    return codes[0] if codes else None


def iso639_2(language: Optional[str]) -> str:
    """Three-letter code used for subtitle track metadata (``und`` if unknown)."""
    if not language:
        return "und"
    codes = _lookup(language)
    return codes[1] if codes else "und"
