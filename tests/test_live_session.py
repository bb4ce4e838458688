from __future__ import annotations

import time
from typing import Iterator
from unittest.mock import MagicMock

import numpy as np
import pytest

from livescribe import events as ev
from livescribe.app.config import SessionConfig
from livescribe.app.state import SessionState
from livescribe.asr.base import RecognitionOutput, SpeechRecognizer
from livescribe.contracts import AudioChunk, SentenceStatus
from livescribe.live.session import LiveSession, new_session_id
from livescribe.nlp.translator.base import LanguageModel
from livescribe.resilience.errors import ErrorCategory, ServiceError

SR = 16000


def _quiet_blocks(seconds: float, t0: float = 0.0):
    n = int(SR * 0.1)
    pcm = (np.ones(n, dtype=np.int16) * 50).tobytes()
    return [
        AudioChunk(pcm16=pcm, sample_rate=SR, channels=1, start_time=t0 + i * 0.1, duration=0.1)
        for i in range(int(round(seconds / 0.1)))
    ]


class QueueRecognizer(SpeechRecognizer):
    """Returns the scripted texts in call order."""

    def __init__(self, texts):
        self.texts = list(texts)
        self.prompts = []

    @property
    def name(self) -> str:
        return "queued"

    def recognize(self, wav_bytes, *, prompt=None, language=None):
        self.prompts.append(prompt)
        text = self.texts.pop(0) if self.texts else ""
        return RecognitionOutput(text=text, language="en", confidence=0.95)


class DictionaryModel(LanguageModel):
    def __init__(self, table, *, down=False):
        self.table = table
        self.down = down
        self.calls = 0

    @property
    def name(self) -> str:
        return "dictionary"

    def generate(self, prompt, *, model):
        self.calls += 1
        if self.down:
            raise ServiceError("ollama returned 503: loading model", ErrorCategory.SERVICE_UNAVAILABLE)
        text = prompt.split("Text to translate:\n")[-1].split("\n\nTranslation:")[0]
        text = text.rsplit("\n\n", 1)[-1]
        return self.table[text]


TABLE = {"Hello there.": "Hola.", "How are you?": "¿Cómo estás?"}


def _session(model, texts, **cfg):
    cfg.setdefault("source_language", "en")
    cfg.setdefault("target_language", "es")
    cfg.setdefault("queue_poll_ms", 10)
    hub = ev.EventHub()
    completed = []
    session = LiveSession(
        SessionConfig(**cfg),
        recognizer=QueueRecognizer(texts),
        language_model=model,
        events=hub,
        wall_clock=lambda: 1_700_000_000.0,
        sleep=lambda _s: None,
        on_completed=completed.append,
    )
    session.completed = completed
    return session, hub


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()


def test_new_session_id_format():
    sid = new_session_id(1_700_000_000.0)
    stamp, suffix = sid.rsplit("-", 1)
    assert len(stamp) == len("20231114-221320")
    assert len(suffix) == 6


def test_audio_to_translated_sentences_end_to_end():
    session, hub = _session(DictionaryModel(TABLE), ["Hello there.", "How are you?"])
    lifecycle = []
    hub.on(ev.SESSION_STARTED, lambda p: lifecycle.append(("started", p["session_id"])))
    hub.on(ev.SESSION_COMPLETED, lambda s: lifecycle.append(("completed", s.id)))

    started = session.start()
    assert session.state is SessionState.RUNNING
    for chunk in _quiet_blocks(10.0):
        session.producer.feed(chunk)
    result = session.stop(timeout=10.0)

    assert result is started
    assert result.finalized
    assert [s.text for s in result.segments] == ["Hello there.", "How are you?"]
    assert [s.translated_text for s in result.segments] == ["Hola.", "¿Cómo estás?"]
    assert all(s.status is SentenceStatus.TRANSLATED for s in result.segments)
    times = [t for s in result.segments for t in (s.start_time, s.end_time)]
    assert times == pytest.approx([0.0, 5.0, 5.0, 10.0])
    assert session.transcript == "Hello there. How are you?"
    assert session.worker.recognizer.prompts == [None, "Hello there."]

    stats = result.stats
    assert stats.segments_produced == 2
    assert stats.segments_transcribed == 2
    assert stats.sentences == 2
    assert stats.sentences_translated == 2
    assert stats.sentences_failed == 0

    assert session.state is SessionState.COMPLETED
    assert session.completed == [result]
    assert lifecycle == [("started", result.id), ("completed", result.id)]
    assert session.stop() is result


def test_unfinished_text_is_flushed_as_last_sentence():
    session, _ = _session(DictionaryModel({"Hello there.": "Hola.", "and then": "y luego"}), ["Hello there. and then"])
    session.start()
    for chunk in _quiet_blocks(3.0):
        session.producer.feed(chunk)
    result = session.stop(timeout=10.0)

    assert [s.text for s in result.segments] == ["Hello there.", "and then"]
    assert [s.translated_text for s in result.segments] == ["Hola.", "y luego"]
    assert result.stats.segments_produced == 1


def test_translation_outage_enters_fallback_mode_and_keeps_transcribing():
    session, hub = _session(DictionaryModel(TABLE, down=True), ["Hello there.", "How are you?"], circuit_breaker_threshold=1)
    fallback = []
    hub.on(ev.FALLBACK_MODE_CHANGED, fallback.append)

    session.start()
    for chunk in _quiet_blocks(10.0):
        session.producer.feed(chunk)
    result = session.stop(timeout=10.0)

    assert [s.text for s in result.segments] == ["Hello there.", "How are you?"]
    assert all(s.status is SentenceStatus.TRANSCRIBED for s in result.segments)
    assert result.stats.sentences_skipped == 2
    assert session.fallback_mode
    assert fallback == [{"enabled": True, "reason": "translation service unavailable"}]
    assert session.orchestrator.model.calls == 1


def test_retry_connection_translates_parked_sentences():
    model = DictionaryModel(TABLE, down=True)
    session, hub = _session(model, ["Hello there."], circuit_breaker_threshold=1)
    fallback = []
    hub.on(ev.FALLBACK_MODE_CHANGED, lambda p: fallback.append(p["enabled"]))

    session.start()
    for chunk in _quiet_blocks(5.0):
        session.producer.feed(chunk)
    assert _wait_for(lambda: len(session.orchestrator.parked) == 1)
    assert session.status()["services"]["translation"] == "open"
    assert session.status()["parked_sentences"] == 1

    model.down = False
    assert session.retry_connection() == 1
    result = session.stop(timeout=10.0)

    assert result.segments[0].status is SentenceStatus.TRANSLATED
    assert result.segments[0].translated_text == "Hola."
    assert fallback == [True, False]
    assert not session.fallback_mode


def test_capture_failure_is_terminal_and_keeps_captured_audio():
    class BrokenSource:
        def chunks(self) -> Iterator[AudioChunk]:
            yield from _quiet_blocks(0.2)
            raise OSError("device unplugged")

        def close(self) -> None:
            pass

    session, _ = _session(DictionaryModel(TABLE), ["Hello there."])
    session.start(BrokenSource())
    assert session.producer.wait(timeout=5.0)
    assert _wait_for(lambda: session.capture_failed)

    result = session.stop(timeout=10.0)

    assert session.state is SessionState.CAPTURE_FAILED
    assert "device unplugged" in session.tracker.last_error
    assert result.stats.segments_produced == 1
    assert [s.text for s in result.segments] == ["Hello there."]


def test_session_cannot_be_started_twice():
    session, _ = _session(DictionaryModel(TABLE), [])
    session.start()
    try:
        with pytest.raises(RuntimeError):
            session.start()
    finally:
        session.stop(timeout=5.0)


def test_save_failure_is_logged_and_session_still_returned():
    logger = MagicMock()
    session = LiveSession(
        SessionConfig(queue_poll_ms=10),
        recognizer=QueueRecognizer([]),
        language_model=DictionaryModel(TABLE),
        logger=logger,
        on_completed=MagicMock(side_effect=OSError("disk full")),
    )
    session.start()
    result = session.stop(timeout=5.0)

    assert result.finalized
    logger.exception.assert_called_once()
    assert logger.exception.call_args.args[0] == "session_save_failed"


def test_status_reports_queues_and_services():
    session, _ = _session(DictionaryModel(TABLE), [])
    assert session.status()["state"] == "idle"
    session.start()
    status = session.status()
    session.stop(timeout=5.0)

    assert status["state"] == "running"
    assert status["services"] == {"speech-recognition": "closed", "translation": "closed"}
    assert status["transcription_queue"] == 0
    assert status["fallback_mode"] is False
