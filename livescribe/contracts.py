from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, List, Optional


@dataclass(frozen=True)
class AudioChunk:
    """
    Raw PCM16 audio block captured from a live source (e.g., microphone).
    pcm16: little-endian signed 16-bit PCM bytes (interleaved if channels > 1).
    """
    pcm16: bytes
    sample_rate: int
    channels: int
    start_time: float  # seconds since stream start
    duration: float    # seconds


@dataclass(frozen=True)
class AudioSegment:
    """
    Self-contained slice of captured audio. audio_bytes is a complete WAV file
    so the segment can be decoded without any neighbour.
    """
    id: str
    ordinal: int
    audio_bytes: bytes
    start_time: float  # seconds since session start
    end_time: float
    duration_ms: int


@dataclass(frozen=True)
class TranscriptionResult:
    segment_id: str
    text: str
    detected_language: Optional[str] = None
    confidence: float = 0.0
    processing_time_ms: float = 0.0


class SentenceStatus(str, Enum):
    TRANSCRIBED = "transcribed"
    TRANSLATING = "translating"
    TRANSLATED = "translated"
    ERROR = "error"


@dataclass
class SentenceSegment:
    id: str
    text: str
    start_time: float
    end_time: float
    source_language: str = "auto"
    target_language: str = "en"
    confidence: float = 0.0
    status: SentenceStatus = SentenceStatus.TRANSCRIBED
    translated_text: Optional[str] = None
    # Exact slice of the transcript stream this sentence was cut from.
    raw_text: str = ""
    attempts: int = 0
    translation_model: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SentenceStatus.TRANSLATED, SentenceStatus.ERROR)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


@dataclass
class SessionStats:
    segments_produced: int = 0
    segments_transcribed: int = 0
    segments_failed: int = 0
    sentences: int = 0
    sentences_translated: int = 0
    sentences_failed: int = 0
    sentences_skipped: int = 0
    transcription_ms_total: float = 0.0
    translation_ms_total: float = 0.0

    @property
    def avg_transcription_ms(self) -> float:
        if self.segments_transcribed <= 0:
            return 0.0
        return self.transcription_ms_total / self.segments_transcribed

    @property
    def avg_translation_ms(self) -> float:
        done = self.sentences_translated + self.sentences_failed
        if done <= 0:
            return 0.0
        return self.translation_ms_total / done

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["avg_transcription_ms"] = round(self.avg_transcription_ms, 2)
        out["avg_translation_ms"] = round(self.avg_translation_ms, 2)
        return out


@dataclass
class Session:
    id: str
    start_time: float  # unix seconds
    source_language: str
    target_language: str
    end_time: Optional[float] = None
    segments: List[SentenceSegment] = field(default_factory=list)
    audio_ref: Optional[str] = None
    stats: SessionStats = field(default_factory=SessionStats)

    @property
    def finalized(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "audio_ref": self.audio_ref,
            "segments": [s.to_dict() for s in self.segments],
            "stats": self.stats.to_dict(),
        }
