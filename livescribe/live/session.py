from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from livescribe import events as ev
from livescribe.app.config import SessionConfig
from livescribe.app.logging_setup import log_event
from livescribe.app.state import SessionState, SessionStateTracker
from livescribe.asr.base import SpeechRecognizer
from livescribe.audio.segment_producer import ChunkSource, CutPolicy, SegmentProducer
from livescribe.contracts import (
    AudioSegment,
    SentenceSegment,
    SentenceStatus,
    Session,
    SessionStats,
    TranscriptionResult,
)
from livescribe.live.transcription_worker import TranscriptionWorker
from livescribe.live.translation_orchestrator import TranslationOrchestrator
from livescribe.nlp.context_window import ContextWindow
from livescribe.nlp.segmenter import SentenceSegmenter
from livescribe.nlp.translator.base import LanguageModel
from livescribe.resilience.circuit import BreakerState
from livescribe.resilience.layer import SPEECH_RECOGNITION, TRANSLATION, ResilienceLayer


def new_session_id(now: float) -> str:
    stamp = time.strftime("%Y%m%d-%H%M%S", time.localtime(now))
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


class LiveSession:
    """
    One recording session: capture -> transcription -> sentences -> translation.

    Owns the three loops and the resilience layer they share. Once start() has
    returned, nothing in here raises into the caller except a second start();
    failures surface as events, sentence status and status().
    """

    def __init__(
        self,
        cfg: SessionConfig | None = None,
        *,
        recognizer: SpeechRecognizer,
        language_model: LanguageModel,
        translation_model: str = "llama3:8b",
        fallback_translation_model: Optional[str] = "phi3:mini",
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        on_completed: Callable[[Session], Any] | None = None,
    ) -> None:
        self.cfg = cfg or SessionConfig()
        self.events = events or ev.EventHub()
        self.logger = logger
        self.wall_clock = wall_clock
        self.on_completed = on_completed
        self.tracker = SessionStateTracker()

        poll_s = self.cfg.queue_poll_ms / 1000.0

        self.resilience = ResilienceLayer(
            max_retries=self.cfg.max_retries,
            breaker_threshold=self.cfg.circuit_breaker_threshold,
            breaker_cooldown_s=self.cfg.circuit_breaker_cooldown_ms / 1000.0,
            clock=monotonic,
            sleep=sleep,
            events=self.events,
            logger=logger,
        )
        self.resilience.register(
            SPEECH_RECOGNITION,
            reduce_quality=recognizer.reduce_quality,
            reset_defaults=recognizer.reset_defaults,
        )

        self.orchestrator = TranslationOrchestrator(
            model=language_model,
            resilience=self.resilience,
            model_name=translation_model,
            fallback_model=fallback_translation_model,
            max_quality_attempts=self.cfg.max_quality_attempts,
            context_pairs=self.cfg.context_pairs,
            context=ContextWindow(max_pairs=max(self.cfg.context_pairs, 10)),
            poll_interval_s=poll_s,
            events=self.events,
            logger=logger,
        )
        self.resilience.register(
            TRANSLATION,
            reduce_quality=self.orchestrator.reduce_quality,
            reset_defaults=self.orchestrator.reset_defaults,
        )

        self.segmenter = SentenceSegmenter(
            source_language=self.cfg.source_language,
            target_language=self.cfg.target_language,
            max_pending_chars=self.cfg.max_pending_chars,
            on_sentence=self._on_sentence,
            events=self.events,
            logger=logger,
        )

        self.worker = TranscriptionWorker(
            recognizer=recognizer,
            resilience=self.resilience,
            context_chars=self.cfg.context_chars,
            poll_interval_s=poll_s,
            on_transcribed=self._on_transcribed,
            events=self.events,
            logger=logger,
        )

        self.producer = SegmentProducer(
            policy=CutPolicy(
                chunk_duration_ms=self.cfg.chunk_duration_ms,
                max_extension_ms=self.cfg.max_extension_ms,
                quiet_threshold=self.cfg.quiet_threshold,
            ),
            on_segment=self._on_segment,
            events=self.events,
            logger=logger,
        )

        self._lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._unsubscribe: List[Callable[[], None]] = []
        self.session: Optional[Session] = None

    # control

    def start(self, source: ChunkSource | None = None) -> Session:
        """
        Start the worker loops and, when a source is given, audio capture.

        Without a source, audio is pushed through `self.producer.feed()`.
        """
        if self.session is not None:
            raise RuntimeError("a LiveSession can only be started once")
        self.tracker.set_starting()
        now = self.wall_clock()
        self.session = Session(
            id=new_session_id(now),
            start_time=now,
            source_language=self.cfg.source_language,
            target_language=self.cfg.target_language,
        )
        self._unsubscribe = [
            self.events.on(ev.CIRCUIT_BREAKER_STATE_CHANGED, self._on_breaker_change),
            self.events.on(ev.CAPTURE_FAILED, self._on_capture_failed),
        ]
        self.worker.start()
        self.orchestrator.start()
        if source is not None:
            self.producer.start_session(source)
        self.tracker.set_running()
        log_event(
            self.logger,
            logging.INFO,
            "session_started",
            session_id=self.session.id,
            source_language=self.cfg.source_language,
            target_language=self.cfg.target_language,
            chunk_duration_ms=self.cfg.chunk_duration_ms,
        )
        self.events.emit(ev.SESSION_STARTED, {"session_id": self.session.id})
        return self.session

    def stop(self, timeout: float | None = None) -> Session:
        """Flush, drain every stage in order and return the finalized session."""
        if self.session is None:
            raise RuntimeError("session was never started")
        with self._stop_lock:
            if self.session.finalized:
                return self.session
            self.tracker.set_stopping()

            self.producer.stop()
            self.worker.drain_and_stop(timeout)
            self.segmenter.finalize()
            self.orchestrator.drain_and_stop(timeout)

            for unsubscribe in self._unsubscribe:
                unsubscribe()
            self._unsubscribe = []

            session = self.session
            session.stats = self._collect_stats()
            session.end_time = self.wall_clock()
            self.tracker.set_completed()

            log_event(
                self.logger,
                logging.INFO,
                "session_completed",
                session_id=session.id,
                state=self.tracker.state.value,
                **session.stats.to_dict(),
            )
            self.events.emit(ev.SESSION_COMPLETED, session)
            if self.on_completed is not None:
                try:
                    self.on_completed(session)
                except OSError:
                    # the finalized session is still returned to the caller
                    if self.logger is not None:
                        self.logger.exception("session_save_failed", extra={"session_id": session.id})
            return session

    def retry_connection(self) -> int:
        """Close both circuits and queue sentences that were held back by an outage."""
        parked = len(self.orchestrator.parked)
        self.resilience.reset(SPEECH_RECOGNITION)
        self.resilience.reset(TRANSLATION)
        self.orchestrator.requeue_parked()
        log_event(self.logger, logging.INFO, "retry_connection", parked=parked)
        return parked

    def retry_failed_translations(self) -> int:
        return self.orchestrator.retry_failed()

    @property
    def state(self) -> SessionState:
        return self.tracker.state

    @property
    def fallback_mode(self) -> bool:
        return self.tracker.fallback_mode

    @property
    def capture_failed(self) -> bool:
        return self.tracker.state == SessionState.CAPTURE_FAILED

    @property
    def transcript(self) -> str:
        return self.worker.transcript

    def sentences(self) -> List[SentenceSegment]:
        if self.session is None:
            return []
        with self._lock:
            return list(self.session.segments)

    def status(self) -> Dict[str, Any]:
        return {
            "session_id": None if self.session is None else self.session.id,
            "state": self.tracker.state.value,
            "fallback_mode": self.tracker.fallback_mode,
            "last_error": self.tracker.last_error,
            "transcription_queue": self.worker.pending,
            "translation_queue": self.orchestrator.pending,
            "parked_sentences": len(self.orchestrator.parked),
            "services": {
                SPEECH_RECOGNITION: self.resilience.state(SPEECH_RECOGNITION).value,
                TRANSLATION: self.resilience.state(TRANSLATION).value,
            },
            "stats": self._collect_stats().to_dict(),
        }

    # pipeline callbacks

    def _on_segment(self, segment: AudioSegment) -> None:
        self.worker.enqueue(segment)

    def _on_transcribed(self, segment: AudioSegment, result: TranscriptionResult, appended: str) -> None:
        if self.cfg.source_language == "auto" and result.detected_language:
            self.segmenter.source_language = result.detected_language
        if appended:
            self.segmenter.consume(appended, segment.start_time, segment.end_time)

    def _on_sentence(self, sentence: SentenceSegment) -> None:
        if self.session is not None:
            with self._lock:
                self.session.segments.append(sentence)
        self.orchestrator.translate(sentence)

    def _on_breaker_change(self, payload: Dict[str, Any]) -> None:
        if payload.get("service") != TRANSLATION:
            return
        state = payload.get("state")
        if state == BreakerState.OPEN.value:
            enabled, reason = True, "translation service unavailable"
        elif state == BreakerState.CLOSED.value:
            enabled, reason = False, "translation service recovered"
        else:
            return
        if not self.tracker.set_fallback(enabled):
            return
        log_event(self.logger, logging.WARNING if enabled else logging.INFO, "fallback_mode_changed", enabled=enabled, reason=reason)
        self.events.emit(ev.FALLBACK_MODE_CHANGED, {"enabled": enabled, "reason": reason})

    def _on_capture_failed(self, err: BaseException) -> None:
        self.tracker.set_capture_failed(str(err))

    def _collect_stats(self) -> SessionStats:
        sentences = self.sentences()
        return SessionStats(
            segments_produced=self.producer.segments_emitted,
            segments_transcribed=self.worker.processed,
            segments_failed=self.worker.failed,
            sentences=len(sentences),
            sentences_translated=sum(1 for s in sentences if s.status is SentenceStatus.TRANSLATED),
            sentences_failed=sum(1 for s in sentences if s.status is SentenceStatus.ERROR),
            sentences_skipped=sum(1 for s in sentences if s.status is SentenceStatus.TRANSCRIBED),
            transcription_ms_total=self.worker.busy_ms_total,
            translation_ms_total=self.orchestrator.busy_ms_total,
        )
