from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class WordTiming:
    word: str
    start: float
    end: float
    probability: float = 0.0


@dataclass(frozen=True)
class RecognitionOutput:
    text: str
    language: Optional[str] = None
    confidence: float = 0.0
    words: List[WordTiming] = field(default_factory=list)


class SpeechRecognizer(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def recognize(
        self,
        wav_bytes: bytes,
        *,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
    ) -> RecognitionOutput:
        """Recognize one complete audio file. prompt is prior transcript text."""

    def reduce_quality(self) -> bool:
        """Switch to a cheaper setting. Return False when already at the floor."""
        return False

    def reset_defaults(self) -> None:
        return None
