from __future__ import annotations

import re
from typing import Iterable, Sequence

from livescribe.nlp.context_window import ContextPair

TEMPLATE_STANDARD = "standard"
TEMPLATE_TECHNICAL = "technical"
TEMPLATE_CONVERSATIONAL = "conversational"

LANGUAGE_NAMES = {
    "auto": "Auto-detect",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
}

TECHNICAL_INDICATORS = (
    "api", "database", "server", "application", "system", "configuration",
    "algorithm", "function", "variable", "object", "method", "class",
    "framework", "library", "component", "service", "endpoint",
)

CONVERSATIONAL_INDICATORS = (
    "hello", "hi", "how are you", "thanks", "please", "sorry", "yes", "no",
    "what do you think", "i think", "maybe", "probably", "actually",
    "by the way", "anyway", "well", "you know",
)

_TEMPLATE_RULES = {
    TEMPLATE_STANDARD: (),
    TEMPLATE_TECHNICAL: (
        "Keep technical terms, code identifiers and product names unchanged unless a standard translation exists",
        "Prefer precise wording over stylistic freedom",
    ),
    TEMPLATE_CONVERSATIONAL: (
        "This is spoken conversation: use a natural, spoken register",
        "Keep greetings and fillers short and idiomatic",
    ),
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get((code or "").lower(), code)


def _score(text: str, indicators: Iterable[str]) -> int:
    # whole-word match so "hi" does not fire on "this"
    padded = " " + " ".join(re.findall(r"[a-z']+", text.lower())) + " "
    return sum(1 for term in indicators if f" {term} " in padded)


def classify_template(text: str) -> str:
    technical = _score(text, TECHNICAL_INDICATORS)
    conversational = _score(text, CONVERSATIONAL_INDICATORS)
    if technical > conversational and technical > 0:
        return TEMPLATE_TECHNICAL
    if conversational > 0:
        return TEMPLATE_CONVERSATIONAL
    return TEMPLATE_STANDARD


def build_prompt(
    text: str,
    source_language: str,
    target_language: str,
    *,
    template: str = TEMPLATE_STANDARD,
    examples: Sequence[ContextPair] = (),
    terms: Sequence[str] = (),
) -> str:
    source = language_name(source_language)
    target = language_name(target_language)
    if (source_language or "auto").lower() == "auto":
        header = f"You are a professional translator. Translate the following text to {target}."
    else:
        header = f"You are a professional translator. Translate the following text from {source} to {target}."

    rules = [
        "Maintain the original meaning and tone",
        f"Use natural {target} expressions",
        "Keep the same level of formality",
        *_TEMPLATE_RULES.get(template, ()),
        "Return only the translated text without explanations",
    ]
    parts = [header, "", "Requirements:", *(f"- {r}" for r in rules)]

    if terms:
        parts += ["", "Translate these recurring terms consistently: " + ", ".join(terms)]

    if examples:
        parts += ["", "Previous sentences and their translations, for context:"]
        for pair in examples:
            parts.append(f"{pair.original} => {pair.translated}")

    parts += ["", "Text to translate:", text, "", "Translation:"]
    return "\n".join(parts)


def build_bare_prompt(text: str, target_language: str) -> str:
    return f"Translate into {language_name(target_language)}. Reply with the translation only.\n\n{text}"
