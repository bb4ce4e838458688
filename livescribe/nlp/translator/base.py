from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List


class LanguageModel(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def generate(self, prompt: str, *, model: str) -> str:
        """Run one non-streaming completion and return the raw text."""

    def list_models(self) -> List[str]:
        return []

    def close(self) -> None:
        return None
