from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.contracts import SentenceSegment, SentenceStatus
from livescribe.nlp.context_window import ContextWindow
from livescribe.nlp.translator.base import LanguageModel
from livescribe.nlp.translator.prompts import build_bare_prompt, build_prompt, classify_template
from livescribe.nlp.translator.quality import check_quality, clean_output
from livescribe.resilience.circuit import BreakerState
from livescribe.resilience.errors import ErrorCategory
from livescribe.resilience.layer import TRANSLATION, CallOutcome, ResilienceLayer

UNTRANSLATED_PREFIX = "[untranslated] "


def _same_language(source: str, target: str) -> bool:
    s = (source or "auto").lower().split("-", 1)[0]
    t = (target or "").lower().split("-", 1)[0]
    return s != "auto" and s == t


@dataclass(frozen=True)
class _Step:
    kind: str  # "template" | "bare"
    # None: whatever model is current when the call is made
    model: Optional[str] = None


class TranslationOrchestrator:
    """
    Translates sentences one at a time on a single background thread.

    A sentence moves transcribed -> translating when it is accepted, and ends
    either translated or error. While the translation circuit is open new
    sentences stay transcribed and are parked; they are queued again once the
    circuit lets calls through.
    """

    def __init__(
        self,
        *,
        model: LanguageModel,
        resilience: ResilienceLayer,
        model_name: str = "llama3:8b",
        fallback_model: Optional[str] = "phi3:mini",
        max_quality_attempts: int = 2,
        context_pairs: int = 3,
        context: ContextWindow | None = None,
        poll_interval_s: float = 0.5,
        on_update: Callable[[SentenceSegment], None] | None = None,
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.model = model
        self.resilience = resilience
        self.default_model_name = model_name
        self.model_name = model_name
        self.fallback_model = fallback_model
        self.max_quality_attempts = max(1, int(max_quality_attempts))
        self.context_pairs = max(0, int(context_pairs))
        self.context = context if context is not None else ContextWindow()
        self.poll_interval_s = float(poll_interval_s)
        self.on_update = on_update
        self.events = events
        self.logger = logger
        self.clock = clock

        self._queue: "queue.Queue[SentenceSegment]" = queue.Queue()
        self._lock = threading.Lock()
        self._known: Dict[str, SentenceSegment] = {}
        self._parked: Dict[str, SentenceSegment] = {}
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

        self.translated = 0
        self.failed = 0
        self.busy_ms_total = 0.0

        if events is not None:
            events.on(ev.CIRCUIT_BREAKER_STATE_CHANGED, self._on_breaker_change)

    # recovery hooks for the resilience layer

    def reduce_quality(self) -> bool:
        if not self.fallback_model or self.model_name == self.fallback_model:
            return False
        self.model_name = self.fallback_model
        return True

    def reset_defaults(self) -> None:
        self.model_name = self.default_model_name

    @property
    def parked(self) -> List[SentenceSegment]:
        with self._lock:
            return list(self._parked.values())

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def translate(self, sentence: SentenceSegment) -> bool:
        """Accept a transcribed sentence. Returns False when it was not queued."""
        with self._lock:
            if sentence.status is not SentenceStatus.TRANSCRIBED:
                return False
            self._known.setdefault(sentence.id, sentence)
            if not self.resilience.is_available(TRANSLATION):
                self._parked.setdefault(sentence.id, sentence)
                log_event(self.logger, logging.DEBUG, "translation_parked", sentence_id=sentence.id)
                return False
            self._parked.pop(sentence.id, None)
            sentence.status = SentenceStatus.TRANSLATING
        self._announce(sentence)
        self._queue.put_nowait(sentence)
        return True

    def requeue_parked(self) -> int:
        with self._lock:
            parked = list(self._parked.values())
        queued = 0
        for sentence in parked:
            if self.translate(sentence):
                queued += 1
        if queued:
            log_event(self.logger, logging.INFO, "translation_requeued", count=queued)
        return queued

    def retry_failed(self) -> int:
        """Queue every sentence that ended in error again."""
        with self._lock:
            failed = [s for s in self._known.values() if s.status is SentenceStatus.ERROR]
            for s in failed:
                s.status = SentenceStatus.TRANSCRIBED
                s.translated_text = None
                s.error = None
        queued = 0
        for s in failed:
            if self.translate(s):
                queued += 1
        log_event(self.logger, logging.INFO, "translation_retry_failed", count=len(failed), queued=queued)
        return queued

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="livescribe-translation-worker",
            daemon=True,
        )
        self._thread.start()

    def drain_and_stop(self, timeout: float | None = None) -> bool:
        self._stopping.set()
        if self._thread is None:
            while True:
                try:
                    sentence = self._queue.get_nowait()
                except queue.Empty:
                    return True
                self.process_one(sentence)
        self._thread.join(timeout)
        alive = self._thread.is_alive()
        if not alive:
            self._thread = None
        return not alive

    def _loop(self) -> None:
        while True:
            try:
                sentence = self._queue.get(timeout=self.poll_interval_s)
            except queue.Empty:
                if self._stopping.is_set():
                    return
                # cool-down over: let one parked sentence try the service
                if self._parked and self.resilience.is_available(TRANSLATION):
                    self.requeue_parked()
                continue
            try:
                self.process_one(sentence)
            finally:
                self._queue.task_done()

    def _plan(self) -> List[_Step]:
        steps = [_Step("template")] * self.max_quality_attempts
        steps.append(_Step("bare"))
        if self.fallback_model and self.fallback_model != self.model_name:
            steps.append(_Step("template", self.fallback_model))
        return steps

    def _step_model(self, step: _Step) -> str:
        return step.model or self.model_name

    def _prompt(self, sentence: SentenceSegment, step: _Step) -> str:
        if step.kind == "bare":
            return build_bare_prompt(sentence.text, sentence.target_language)
        return build_prompt(
            sentence.text,
            sentence.source_language,
            sentence.target_language,
            template=classify_template(sentence.text),
            examples=self.context.recent(self.context_pairs),
            terms=self.context.top_terms(5, min_count=2),
        )

    def process_one(self, sentence: SentenceSegment) -> None:
        if sentence.status is not SentenceStatus.TRANSLATING:
            return
        if not self.resilience.is_available(TRANSLATION):
            self._park(sentence)
            return

        if _same_language(sentence.source_language, sentence.target_language):
            sentence.translated_text = sentence.text
            sentence.translation_model = None
            sentence.status = SentenceStatus.TRANSLATED
            self.translated += 1
            self._announce(sentence)
            return

        # a reduction made for the previous sentence does not carry over
        self.model_name = self.default_model_name
        t0 = self.clock()
        reason: Optional[str] = None
        failure: Optional[CallOutcome] = None
        done = False

        for step in self._plan():
            sentence.attempts += 1
            prompt = self._prompt(sentence, step)
            outcome = self.resilience.call(
                TRANSLATION,
                lambda: self.model.generate(prompt, model=self._step_model(step)),
            )
            if not outcome.ok:
                if outcome.category is ErrorCategory.FORMAT:
                    reason = outcome.error
                    continue
                failure = outcome
                break

            text = clean_output(outcome.value or "")
            reason = check_quality(sentence.text, text, sentence.target_language)
            if reason is None:
                sentence.translated_text = text
                sentence.translation_model = self._step_model(step)
                sentence.error = None
                sentence.status = SentenceStatus.TRANSLATED
                self.context.add(sentence.text, text)
                done = True
                break
            log_event(
                self.logger,
                logging.INFO,
                "translation_rejected",
                sentence_id=sentence.id,
                step=step.kind,
                model=self._step_model(step),
                reason=reason,
            )

        self.busy_ms_total += (self.clock() - t0) * 1000.0

        if done:
            self.translated += 1
            log_event(
                self.logger,
                logging.INFO,
                "translated",
                sentence_id=sentence.id,
                model=sentence.translation_model,
                attempts=sentence.attempts,
            )
            self._announce(sentence)
            return

        if failure is not None and (
            failure.short_circuited or self.resilience.state(TRANSLATION) is BreakerState.OPEN
        ):
            self._park(sentence)
            return

        self.failed += 1
        sentence.status = SentenceStatus.ERROR
        sentence.translated_text = UNTRANSLATED_PREFIX + sentence.text
        sentence.translation_model = None
        if failure is not None:
            sentence.error = failure.error
        else:
            sentence.error = f"quality check failed: {reason}"
        log_event(
            self.logger,
            logging.WARNING,
            "translation_failed",
            sentence_id=sentence.id,
            attempts=sentence.attempts,
            error=sentence.error,
        )
        self._announce(sentence)

    def _park(self, sentence: SentenceSegment) -> None:
        with self._lock:
            sentence.status = SentenceStatus.TRANSCRIBED
            self._parked.setdefault(sentence.id, sentence)
        log_event(self.logger, logging.INFO, "translation_parked", sentence_id=sentence.id)
        self._announce(sentence)

    def _announce(self, sentence: SentenceSegment) -> None:
        if self.on_update is not None:
            self.on_update(sentence)
        if self.events is not None:
            self.events.emit(ev.SENTENCE_UPDATE, sentence)

    def _on_breaker_change(self, payload: dict) -> None:
        if payload.get("service") != TRANSLATION:
            return
        if payload.get("state") == BreakerState.CLOSED.value:
            self.requeue_parked()
