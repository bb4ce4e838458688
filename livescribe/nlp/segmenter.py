from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.contracts import SentenceSegment, SentenceStatus

# Runs like "?!" or "..." count as one terminator.
_TERMINATOR_RUN = re.compile(r"[.!?]+|[。！？]+")
_CLOSERS = "\"')]}»”’"
_LAST_TOKEN = re.compile(r"(\S+)$")
_NUMERIC = re.compile(r"^[\d.,:]+$")

ABBREVIATIONS = frozenset(
    {
        # English
        "mr", "mrs", "ms", "dr", "prof", "rev", "fr", "sr", "jr", "vs", "etc",
        "inc", "ltd", "corp", "co", "ave", "st", "rd", "blvd", "apt", "vol",
        "pp", "ed", "eds", "ph", "phd", "md", "ba", "bs", "llb", "jd", "ca", "cpa",
        # Spanish
        "sra", "srta", "dra", "ing", "lic", "mtro", "mtra", "av", "blvr", "col", "fracc",
        # French
        "mme", "mlle", "ste", "bd", "fg", "pl", "rte", "sq",
        # German
        "hr", "str", "geb", "bzw", "inkl", "zzgl", "mwst", "nr", "tel",
        # Italian
        "sig", "sigg", "sigra", "dott", "avv", "vle", "pza",
    }
)


@dataclass
class _Span:
    """Stretch of the buffer that came from one consume() call."""
    end: int
    t0: float
    t1: float


def sentence_confidence(text: str) -> float:
    """Rough 0..1 score of how much `text` looks like a complete sentence."""
    text = text.strip()
    if not text:
        return 0.0
    score = 0.5
    if text[-1] in ".!?。！？" or (text[-1] in _CLOSERS and len(text) > 1 and text[-2] in ".!?"):
        score += 0.3
    words = len(text.split())
    if 3 <= words <= 20:
        score += 0.2
    elif words > 20:
        score -= 0.1
    if text[0].isupper():
        score += 0.1
    if "..." in text or "…" in text:
        score -= 0.2
    return round(min(1.0, max(0.0, score)), 2)


def _is_abbreviation(token: str) -> bool:
    word = token.lstrip("\"'([{«“‘").lower()
    if not word:
        return False
    if "." in word:
        # dotted tokens: e.g, i.e, u.s
        return True
    if len(word) == 1 and word.isalpha():
        return True
    return word in ABBREVIATIONS


class SentenceSegmenter:
    """
    Turns the growing transcript into sentences.

    Commit rules:
      1) A terminator (. ! ? or a run of them, plus closing quotes/brackets)
         followed by whitespace ends a sentence.
      2) A terminator at the very end of the buffer ends a sentence only when
         it is unambiguous: ! or ?, or . after a word that is neither a number
         nor an abbreviation.
      3) Emergency commit at the last whitespace once the buffer grows past
         max_pending_chars.

    Every emitted sentence keeps its exact raw slice; leading whitespace
    belongs to the following sentence, and whitespace left over at finalize()
    is appended to the last sentence. Joining all raw_text values gives back
    the consumed text whenever at least one sentence was emitted.

    Not thread-safe: consume() and finalize() must be called from one thread
    at a time.
    """

    def __init__(
        self,
        *,
        source_language: str = "auto",
        target_language: str = "en",
        max_pending_chars: int = 500,
        min_sentence_chars: int = 3,
        on_sentence: Callable[[SentenceSegment], None] | None = None,
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_pending_chars < 10:
            raise ValueError("max_pending_chars must be >= 10")
        self.source_language = source_language
        self.target_language = target_language
        self.max_pending_chars = int(max_pending_chars)
        self.min_sentence_chars = max(1, int(min_sentence_chars))
        self.on_sentence = on_sentence
        self.events = events
        self.logger = logger

        self._buf = ""
        self._spans: List[_Span] = []
        self._count = 0
        self._last: Optional[SentenceSegment] = None

    @property
    def pending_text(self) -> str:
        return self._buf

    @property
    def sentences_emitted(self) -> int:
        return self._count

    def consume(self, text: str, t0: float, t1: float) -> List[SentenceSegment]:
        if not text:
            return []
        self._buf += text
        self._spans.append(_Span(end=len(self._buf), t0=t0, t1=t1))

        out: List[SentenceSegment] = []
        while True:
            cut = self._find_boundary()
            if cut is None:
                break
            out.append(self._commit(cut, forced=False))

        while len(self._buf) > self.max_pending_chars:
            out.append(self._commit(self._emergency_cut(), forced=True))

        return out

    def finalize(self) -> List[SentenceSegment]:
        """Flush whatever is buffered as one last sentence."""
        if not self._buf.strip():
            if self._buf and self._last is not None:
                self._last.raw_text += self._buf
            self._buf = ""
            self._spans = []
            return []
        return [self._commit(len(self._buf), forced=True)]

    def _find_boundary(self) -> Optional[int]:
        buf = self._buf
        for m in _TERMINATOR_RUN.finditer(buf):
            end = m.end()
            while end < len(buf) and buf[end] in _CLOSERS:
                end += 1
            run = m.group()
            at_end = end == len(buf)

            if run[0] in "。！？":
                pass
            elif set(run) == {"."}:
                tok = _LAST_TOKEN.search(buf[: m.start()])
                word = tok.group(1) if tok else ""
                if word and _is_abbreviation(word):
                    continue
                if at_end and (not word or _NUMERIC.match(word)):
                    continue
                if not at_end and not buf[end].isspace():
                    continue
            elif not at_end and not buf[end].isspace():
                continue

            candidate = buf[:end].strip()
            if len(candidate) < self.min_sentence_chars or not any(c.isalnum() for c in candidate):
                continue
            return end
        return None

    def _emergency_cut(self) -> int:
        limit = self.max_pending_chars
        idx = -1
        for i in range(limit, 0, -1):
            if self._buf[i].isspace() and self._buf[:i].strip():
                idx = i
                break
        return idx if idx > 0 else limit

    def _commit(self, cut: int, *, forced: bool) -> SentenceSegment:
        raw = self._buf[:cut]
        first = self._spans[0]
        last = next((s for s in self._spans if s.end >= cut), self._spans[-1])

        self._count += 1
        sentence = SentenceSegment(
            id=f"sent_{self._count:05d}",
            text=raw.strip(),
            start_time=first.t0,
            end_time=last.t1,
            source_language=self.source_language,
            target_language=self.target_language,
            confidence=sentence_confidence(raw),
            status=SentenceStatus.TRANSCRIBED,
            raw_text=raw,
        )
        self._last = sentence

        self._buf = self._buf[cut:]
        self._spans = [
            _Span(end=s.end - cut, t0=s.t0, t1=s.t1) for s in self._spans if s.end > cut
        ]

        log_event(
            self.logger,
            logging.INFO,
            "sentence_ready",
            sentence_id=sentence.id,
            chars=len(sentence.text),
            forced=forced,
            pending_chars=len(self._buf),
        )
        if self.on_sentence is not None:
            self.on_sentence(sentence)
        if self.events is not None:
            self.events.emit(ev.SENTENCE_READY, sentence)
        return sentence
