from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.audio.segment_producer import ChunkSource
from livescribe.contracts import SentenceSegment, SentenceStatus, Session
from livescribe.live.session import LiveSession
from livescribe.ui.bridge import StatusUpdate, UpdateBus

FORWARDED_EVENTS = (
    ev.SENTENCE_UPDATE,
    ev.TRANSCRIPTION_FAILED,
    ev.FALLBACK_MODE_CHANGED,
    ev.CIRCUIT_BREAKER_STATE_CHANGED,
    ev.CAPTURE_FAILED,
)


def attach_update_bus(events: ev.EventHub, bus: UpdateBus) -> List[Callable[[], None]]:
    """Forward pipeline events onto the bus; returns the unsubscribe functions."""
    unsubscribe = []
    for name in FORWARDED_EVENTS:
        unsubscribe.append(events.on(name, lambda payload, name=name: bus.push(StatusUpdate(name, payload))))
    return unsubscribe


def _format_sentence(s: SentenceSegment) -> Optional[str]:
    stamp = f"[{s.start_time:6.2f}-{s.end_time:6.2f}]"
    if s.status is SentenceStatus.TRANSLATING:
        return f"{stamp} {s.text}"
    if s.status is SentenceStatus.TRANSLATED:
        return f"{' ' * len(stamp)} -> {s.translated_text}"
    if s.status is SentenceStatus.ERROR:
        return f"{' ' * len(stamp)} -> {s.translated_text} ({s.error})"
    # parked while translation is unavailable
    return f"{stamp} {s.text} (translation pending)"


def format_update(update: StatusUpdate) -> Optional[str]:
    payload: Any = update.payload
    if update.kind == ev.SENTENCE_UPDATE:
        return _format_sentence(payload)
    if update.kind == ev.TRANSCRIPTION_FAILED:
        return f"! segment {payload.get('segment_id')} could not be transcribed: {payload.get('error')}"
    if update.kind == ev.FALLBACK_MODE_CHANGED:
        if payload.get("enabled"):
            return "! translation unavailable, continuing with transcription only"
        return "! translation restored"
    if update.kind == ev.CIRCUIT_BREAKER_STATE_CHANGED:
        return f"! {payload.get('service')}: {payload.get('previous')} -> {payload.get('state')}"
    if update.kind == ev.CAPTURE_FAILED:
        return f"! audio capture failed: {payload}"
    return None


def drain_update_bus(bus: UpdateBus, sink: Callable[[str], Any] | None, max_items: int) -> int:
    drained = 0
    for update in bus.drain(max_items):
        drained += 1
        line = format_update(update)
        if line is not None and sink is not None:
            sink(line)
    return drained


def run_session(
    session: LiveSession,
    source: ChunkSource,
    bus: UpdateBus,
    stop_event: threading.Event,
    *,
    sink: Callable[[str], Any] | None = print,
    tick_s: float = 0.1,
    max_updates_per_tick: int = 50,
    logger: logging.Logger | None = None,
) -> Session:
    """
    Run one session until stop_event is set, the source runs dry or capture fails.

    Always stops the session (flush and drain) before returning it.
    """
    unsubscribe = attach_update_bus(session.events, bus)
    session.start(source)
    log_event(logger, logging.INFO, "runtime_started", session_id=session.session.id if session.session else None)
    try:
        while not stop_event.is_set():
            drain_update_bus(bus, sink, max(1, int(max_updates_per_tick)))
            if session.capture_failed:
                log_event(logger, logging.ERROR, "runtime_capture_failed", error=session.tracker.last_error)
                break
            if session.producer.wait(timeout=tick_s):
                # source exhausted (replay) or capture ended
                break
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "runtime_keyboard_interrupt")
    finally:
        result = session.stop()
        drain_update_bus(bus, sink, bus.q.maxsize)
        for fn in unsubscribe:
            fn()
        log_event(
            logger,
            logging.INFO,
            "runtime_stopped",
            session_id=result.id,
            state=session.state.value,
            dropped_updates=bus.dropped,
        )
    return result
