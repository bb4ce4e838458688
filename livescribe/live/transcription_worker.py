from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.asr.base import RecognitionOutput, SpeechRecognizer
from livescribe.contracts import AudioSegment, TranscriptionResult
from livescribe.resilience.layer import SPEECH_RECOGNITION, CallOutcome, ResilienceLayer

# (segment, result, text appended to the transcript including its separator)
TranscribedCallback = Callable[[AudioSegment, TranscriptionResult, str], None]
FailedCallback = Callable[[AudioSegment, CallOutcome], None]


class TranscriptionWorker:
    """
    Single background consumer for the speech-recognition engine.

    Segments are processed strictly one at a time in enqueue order, because
    every call is primed with the tail of the transcript built so far.
    """

    def __init__(
        self,
        *,
        recognizer: SpeechRecognizer,
        resilience: ResilienceLayer,
        context_chars: int = 1000,
        poll_interval_s: float = 0.5,
        on_transcribed: TranscribedCallback | None = None,
        on_failed: FailedCallback | None = None,
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if context_chars < 0:
            raise ValueError("context_chars must be >= 0")
        self.recognizer = recognizer
        self.resilience = resilience
        self.context_chars = int(context_chars)
        self.poll_interval_s = float(poll_interval_s)
        self.on_transcribed = on_transcribed
        self.on_failed = on_failed
        self.events = events
        self.logger = logger
        self.clock = clock

        # Unbounded: audio is never dropped, speech pauses let the queue catch up.
        self._queue: "queue.Queue[AudioSegment]" = queue.Queue()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._transcript = ""
        self.processed = 0
        self.failed = 0
        self.busy_ms_total = 0.0

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def context_prompt(self) -> str:
        if self.context_chars <= 0:
            return ""
        return self._transcript[-self.context_chars:]

    def enqueue(self, segment: AudioSegment) -> None:
        self._queue.put_nowait(segment)
        log_event(
            self.logger,
            logging.DEBUG,
            "transcription_enqueued",
            segment_id=segment.id,
            queue_depth=self._queue.qsize(),
        )

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="livescribe-transcription-worker",
            daemon=True,
        )
        self._thread.start()

    def drain_and_stop(self, timeout: float | None = None) -> bool:
        """Process everything already queued, then end the loop."""
        self._stopping.set()
        if self._thread is None:
            while True:
                try:
                    segment = self._queue.get_nowait()
                except queue.Empty:
                    return True
                self.process_one(segment)
        self._thread.join(timeout)
        alive = self._thread.is_alive()
        if not alive:
            self._thread = None
        return not alive

    def _loop(self) -> None:
        while True:
            try:
                segment = self._queue.get(timeout=self.poll_interval_s)
            except queue.Empty:
                if self._stopping.is_set():
                    return
                continue
            try:
                self.process_one(segment)
            finally:
                self._queue.task_done()

    def process_one(self, segment: AudioSegment) -> Optional[TranscriptionResult]:
        prompt = self.context_prompt()
        t0 = self.clock()
        outcome: CallOutcome[RecognitionOutput] = self.resilience.call(
            SPEECH_RECOGNITION,
            lambda: self.recognizer.recognize(segment.audio_bytes, prompt=prompt or None),
        )
        dur_ms = (self.clock() - t0) * 1000.0
        self.busy_ms_total += dur_ms

        if not outcome.ok or outcome.value is None:
            self.failed += 1
            log_event(
                self.logger,
                logging.WARNING,
                "transcription_failed",
                segment_id=segment.id,
                category=None if outcome.category is None else outcome.category.value,
                short_circuited=outcome.short_circuited,
                error=outcome.error,
            )
            if self.on_failed is not None:
                self.on_failed(segment, outcome)
            if self.events is not None:
                self.events.emit(
                    ev.TRANSCRIPTION_FAILED,
                    {"segment_id": segment.id, "error": outcome.error, "outcome": outcome},
                )
            return None

        recognized = outcome.value
        text = (recognized.text or "").strip()
        appended = ""
        if text:
            appended = f" {text}" if self._transcript else text
            self._transcript += appended
        self.processed += 1

        result = TranscriptionResult(
            segment_id=segment.id,
            text=text,
            detected_language=recognized.language,
            confidence=float(recognized.confidence),
            processing_time_ms=round(dur_ms, 2),
        )
        log_event(
            self.logger,
            logging.INFO,
            "transcribed",
            segment_id=segment.id,
            chars=len(text),
            ms=result.processing_time_ms,
            queue_depth=self._queue.qsize(),
        )
        if self.on_transcribed is not None:
            self.on_transcribed(segment, result, appended)
        if self.events is not None:
            self.events.emit(ev.TRANSCRIBED, result)
        return result
