from __future__ import annotations

import re
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, List

_WORD = re.compile(r"[^\W\d_][\w'-]*", re.UNICODE)

_STOPWORDS = frozenset(
    """
    a an and are as at be been but by can could did do does for from had has have
    he her here him his how i if in into is it its just like me my no not now of
    on or our out she so some than that the their them then there these they this
    those to too up us very was we were what when where which who why will with
    would yes you your about after again also because before being both each few
    more most other over same should such through under until while
    """.split()
)


@dataclass(frozen=True)
class ContextPair:
    original: str
    translated: str


class ContextWindow:
    """
    Recent (original, translated) pairs plus a running count of domain terms.

    Owned by the translation loop; lives only as long as the session.
    """

    def __init__(self, max_pairs: int = 10, min_term_chars: int = 4) -> None:
        if max_pairs < 1:
            raise ValueError("max_pairs must be >= 1")
        self.max_pairs = int(max_pairs)
        self.min_term_chars = int(min_term_chars)
        self._pairs: Deque[ContextPair] = deque(maxlen=self.max_pairs)
        self._terms: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._pairs)

    def add(self, original: str, translated: str) -> None:
        self._pairs.append(ContextPair(original=original, translated=translated))
        self._terms.update(self.extract_terms(original))

    def recent(self, n: int = 3) -> List[ContextPair]:
        if n <= 0:
            return []
        return list(self._pairs)[-n:]

    def top_terms(self, n: int = 10, min_count: int = 1) -> List[str]:
        return [t for t, c in self._terms.most_common(n) if c >= min_count]

    def term_count(self, term: str) -> int:
        return self._terms[term.lower()]

    def extract_terms(self, text: str) -> List[str]:
        terms: List[str] = []
        for word in _WORD.findall(text or ""):
            w = word.strip("'-").lower()
            if len(w) < self.min_term_chars or w in _STOPWORDS:
                continue
            terms.append(w)
        return terms

    def clear(self) -> None:
        self._pairs.clear()
        self._terms.clear()
