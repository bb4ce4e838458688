from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

SEGMENT_READY = "segmentReady"
TRANSCRIBED = "transcribed"
TRANSCRIPTION_FAILED = "transcriptionFailed"
SENTENCE_READY = "sentenceReady"
SENTENCE_UPDATE = "sentence-update"
CIRCUIT_BREAKER_STATE_CHANGED = "circuit-breaker-state-changed"
FALLBACK_MODE_CHANGED = "fallback-mode-changed"
CAPTURE_FAILED = "capture-failed"
SESSION_STARTED = "session-started"
SESSION_COMPLETED = "session-completed"

Listener = Callable[[Any], None]

logger = logging.getLogger(__name__)


class EventHub:
    """
    Minimal synchronous publish/subscribe hub.

    Listeners run on the emitting thread. A listener that raises is logged
    and skipped; it never reaches the emitter, so a broken subscriber cannot
    stop a worker loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.off(event, listener)

        return _unsubscribe

    def off(self, event: str, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners[event].remove(listener)
            except ValueError:
                pass

    def emit(self, event: str, payload: Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("event_listener_failed", extra={"event_name": event})
