from __future__ import annotations

import re
import unicodedata
from typing import Optional

_FENCE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_LEAD_LABEL = re.compile(r"^(?:translation|translated text|here is the translation)\s*[:：]\s*", re.IGNORECASE)
_QUOTE_PAIRS = {'"': '"', "'": "'", "“": "”", "「": "」", "«": "»"}

TEMPLATE_MARKERS = ("{{", "}}", "Translation:", "Text to translate", "Requirements:")

# Unicode name prefixes of the letters expected in each target language.
_TARGET_SCRIPTS = {
    "ja": ("HIRAGANA", "KATAKANA", "CJK"),
    "zh": ("CJK",),
    "ko": ("HANGUL",),
    "ru": ("CYRILLIC",),
    "uk": ("CYRILLIC",),
    "bg": ("CYRILLIC",),
    "mk": ("CYRILLIC",),
    "be": ("CYRILLIC",),
    "kk": ("CYRILLIC",),
    "el": ("GREEK",),
    "ar": ("ARABIC",),
    "fa": ("ARABIC",),
    "ur": ("ARABIC",),
    "he": ("HEBREW",),
    "hi": ("DEVANAGARI",),
    "mr": ("DEVANAGARI",),
    "ne": ("DEVANAGARI",),
    "bn": ("BENGALI",),
    "ta": ("TAMIL",),
    "te": ("TELUGU",),
    "th": ("THAI",),
    "ka": ("GEORGIAN",),
    "hy": ("ARMENIAN",),
    "am": ("ETHIOPIC",),
}
# Targets written in Latin script. Anything not listed here or above is not script-checked.
_LATIN_TARGETS = frozenset(
    "en es fr de it pt nl sv da no nb fi is pl cs sk sl hr ro hu tr az id ms vi tl ca gl eu et lv lt sq af sw cy ga".split()
)
_CJK_TARGETS = ("ja", "zh", "ko")

REASON_EMPTY = "empty"
REASON_TOO_SHORT = "too_short"
REASON_IDENTICAL = "identical"
REASON_MARKERS = "template_markers"
REASON_SCRIPT = "script_mismatch"


def clean_output(raw: str) -> str:
    """Strip the wrapping a model tends to add around a bare translation."""
    text = (raw or "").strip()
    m = _FENCE.match(text)
    if m:
        text = m.group(1).strip()
    text = _LEAD_LABEL.sub("", text, count=1).strip()
    if len(text) >= 2 and _QUOTE_PAIRS.get(text[0]) == text[-1]:
        text = text[1:-1].strip()
    return text


def _letters(text: str) -> list[str]:
    return [c for c in text if c.isalpha()]


def script_ratio(text: str, prefixes: tuple[str, ...]) -> float:
    letters = _letters(text)
    if not letters:
        return 0.0
    hits = 0
    for c in letters:
        name = unicodedata.name(c, "")
        if name.startswith(prefixes):
            hits += 1
    return hits / len(letters)


def _normalize(text: str) -> str:
    return " ".join(re.findall(r"\w+", text.lower()))


def check_quality(original: str, translated: str, target_language: str) -> Optional[str]:
    """Return the rejection reason, or None when the translation looks usable."""
    if not translated or not translated.strip():
        return REASON_EMPTY

    target = (target_language or "").lower().split("-", 1)[0]
    ratio = 0.1 if target in _CJK_TARGETS else 0.2
    if len(original.strip()) >= 10 and len(translated.strip()) < len(original.strip()) * ratio:
        return REASON_TOO_SHORT

    if any(marker in translated for marker in TEMPLATE_MARKERS):
        return REASON_MARKERS

    if _normalize(original) and _normalize(original) == _normalize(translated):
        return REASON_IDENTICAL

    letters = _letters(translated)
    if len(letters) >= 3:
        prefixes = _TARGET_SCRIPTS.get(target)
        if prefixes is not None:
            if script_ratio(translated, prefixes) < 0.3:
                return REASON_SCRIPT
        elif target in _LATIN_TARGETS and script_ratio(translated, ("LATIN",)) < 0.5:
            return REASON_SCRIPT

    return None
