from __future__ import annotations

import io
import logging
import threading
import wave
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Protocol

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.audio.level import level_percent
from livescribe.audio.mic import MicError
from livescribe.contracts import AudioChunk, AudioSegment


class ChunkSource(Protocol):
    def chunks(self) -> Iterator[AudioChunk]:
        ...

    def close(self) -> None:
        ...


class CutAction(str, Enum):
    WAIT = "wait"        # nominal duration not reached yet
    EXTEND = "extend"    # still loud, keep waiting for a quiet moment
    CUT_QUIET = "cut_quiet"
    CUT_FORCED = "cut_forced"

    @property
    def is_cut(self) -> bool:
        return self in (CutAction.CUT_QUIET, CutAction.CUT_FORCED)


@dataclass(frozen=True)
class CutPolicy:
    chunk_duration_ms: int = 5000
    max_extension_ms: int = 2000
    quiet_threshold: float = 15.0

    @property
    def max_segment_ms(self) -> int:
        return self.chunk_duration_ms + self.max_extension_ms


def decide_cut(elapsed_ms: float, level: float, policy: CutPolicy) -> CutAction:
    """
    Decide whether the in-flight segment ends now.

    level is the current audio level percentage, sampled by the caller.
    """
    if elapsed_ms < policy.chunk_duration_ms:
        return CutAction.WAIT
    if level < policy.quiet_threshold:
        return CutAction.CUT_QUIET
    if elapsed_ms >= policy.max_segment_ms:
        return CutAction.CUT_FORCED
    return CutAction.EXTEND


def encode_wav(pcm16: bytes, sample_rate: int, channels: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)
    return buf.getvalue()


class SegmentProducer:
    """
    Turns a stream of small capture blocks into self-contained AudioSegments.

    feed() is the single entry point for audio; it can be driven directly
    (tests, replay) or by the capture thread started with start_session().
    """

    def __init__(
        self,
        *,
        policy: CutPolicy | None = None,
        on_segment: Callable[[AudioSegment], None] | None = None,
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy or CutPolicy()
        self.on_segment = on_segment
        self.events = events
        self.logger = logger

        self._parts: List[bytes] = []
        self._elapsed_ms = 0.0
        self._seg_t0 = 0.0
        self._seg_t1 = 0.0
        self._sample_rate = 0
        self._channels = 0
        self._ordinal = 0

        self._thread: threading.Thread | None = None
        self._source: ChunkSource | None = None
        # set only when a source ignores close(); later chunks are dropped
        self._abandoned = threading.Event()
        self.capture_error: Optional[BaseException] = None

    @property
    def segments_emitted(self) -> int:
        return self._ordinal

    @property
    def pending_ms(self) -> float:
        return self._elapsed_ms

    def feed(self, chunk: AudioChunk, level: float | None = None) -> Optional[AudioSegment]:
        if not chunk.pcm16:
            return None
        if not self._parts:
            self._seg_t0 = float(chunk.start_time)
            self._sample_rate = int(chunk.sample_rate)
            self._channels = int(chunk.channels)
        self._parts.append(chunk.pcm16)
        self._elapsed_ms += float(chunk.duration) * 1000.0
        self._seg_t1 = float(chunk.start_time + chunk.duration)

        if level is None:
            level = level_percent(chunk.pcm16)
        action = decide_cut(self._elapsed_ms, level, self.policy)
        if not action.is_cut:
            return None
        return self._cut(reason=action.value, level=level)

    def flush(self) -> Optional[AudioSegment]:
        if not self._parts:
            return None
        return self._cut(reason="flush", level=None)

    def _cut(self, *, reason: str, level: float | None) -> AudioSegment:
        pcm16 = b"".join(self._parts)
        self._ordinal += 1
        segment = AudioSegment(
            id=f"seg_{self._ordinal:05d}",
            ordinal=self._ordinal,
            audio_bytes=encode_wav(pcm16, self._sample_rate, self._channels),
            start_time=self._seg_t0,
            end_time=self._seg_t1,
            duration_ms=int(round(self._elapsed_ms)),
        )
        self._parts = []
        self._elapsed_ms = 0.0

        log_event(
            self.logger,
            logging.DEBUG,
            "segment_cut",
            segment_id=segment.id,
            reason=reason,
            duration_ms=segment.duration_ms,
            level=None if level is None else round(level, 1),
        )
        if self.on_segment is not None:
            self.on_segment(segment)
        if self.events is not None:
            self.events.emit(ev.SEGMENT_READY, segment)
        return segment

    def start_session(self, source: ChunkSource) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("segment producer already running")
        self._source = source
        self._abandoned.clear()
        self.capture_error = None
        self._thread = threading.Thread(
            target=self._capture_loop,
            args=(source,),
            name="livescribe-capture",
            daemon=True,
        )
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the capture loop ends (source exhausted, stopped or failed)."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> Optional[AudioSegment]:
        """
        Close the source, feed whatever it still hands over, then flush.

        Blocks already captured when stop() is called end up in a segment.
        """
        if self._source is not None:
            self._source.close()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self._abandoned.set()
                log_event(self.logger, logging.WARNING, "capture_thread_join_timeout")
            self._thread = None
        return self.flush()

    def _capture_loop(self, source: ChunkSource) -> None:
        try:
            for chunk in source.chunks():
                if self._abandoned.is_set():
                    break
                self.feed(chunk)
        except Exception as e:
            err = e if isinstance(e, MicError) else MicError(f"audio capture failed: {e}")
            if err is not e:
                err.__cause__ = e
            self.capture_error = err
            log_event(self.logger, logging.ERROR, "capture_failed", error=str(err))
            if self.events is not None:
                self.events.emit(ev.CAPTURE_FAILED, err)
