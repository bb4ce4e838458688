from __future__ import annotations

import os
import tempfile
import threading
from typing import List, Optional

from livescribe.asr.base import RecognitionOutput, SpeechRecognizer, WordTiming
from livescribe.resilience.errors import ErrorCategory, ServiceError


class FasterWhisperRecognizer(SpeechRecognizer):
    """
    faster-whisper adapter: one complete WAV file per call.

    The model is loaded lazily on first use and reloaded whenever the model
    size changes (quality reduction or reset).
    """

    def __init__(
        self,
        *,
        model_size: str = "base",
        fallback_model_size: str = "tiny",
        device: str = "cpu",
        compute_type: str = "int8",  # good default for CPU
        cpu_threads: int = 4,
        language: Optional[str] = None,
        beam_size: int = 1,
    ) -> None:
        self.default_model_size = model_size
        self.model_size = model_size
        self.fallback_model_size = fallback_model_size
        self.device = device
        self.compute_type = compute_type
        self.cpu_threads = max(1, int(cpu_threads))
        self.default_cpu_threads = self.cpu_threads
        self.language = language
        self.beam_size = beam_size
        self._model = None
        self._loaded_size: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "faster-whisper"

    def _get_model(self):
        with self._lock:
            if self._model is None or self._loaded_size != self.model_size:
                from faster_whisper import WhisperModel

                try:
                    self._model = WhisperModel(
                        self.model_size,
                        device=self.device,
                        compute_type=self.compute_type,
                        cpu_threads=self.cpu_threads,
                    )
                except (OSError, ValueError) as e:
                    raise ServiceError(
                        f"whisper model not found or invalid: {self.model_size}",
                        ErrorCategory.CONFIGURATION,
                    ) from e
                self._loaded_size = self.model_size
            return self._model

    def reduce_quality(self) -> bool:
        if self.model_size == self.fallback_model_size and self.cpu_threads <= 2:
            return False
        self.model_size = self.fallback_model_size
        self.cpu_threads = min(self.cpu_threads, 2)
        return True

    def reset_defaults(self) -> None:
        self.model_size = self.default_model_size
        self.cpu_threads = self.default_cpu_threads
        self.language = None

    def recognize(
        self,
        wav_bytes: bytes,
        *,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
    ) -> RecognitionOutput:
        if not wav_bytes:
            raise ServiceError("empty audio segment", ErrorCategory.FORMAT)

        model = self._get_model()
        lang = language if language not in (None, "", "auto") else self.language

        fd, tmp_path = tempfile.mkstemp(suffix=".wav", prefix="livescribe_seg_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(wav_bytes)
            try:
                segments, info = model.transcribe(
                    tmp_path,
                    language=lang,
                    beam_size=self.beam_size,
                    initial_prompt=prompt or None,
                    vad_filter=False,
                    condition_on_previous_text=False,
                    word_timestamps=True,
                )
            except ValueError as e:
                if "language" in str(e).lower():
                    raise ServiceError(str(e), ErrorCategory.CONFIGURATION) from e
                raise

            texts: List[str] = []
            words: List[WordTiming] = []
            # segments is a lazy generator; decoding happens while iterating.
            for s in segments:
                text = (s.text or "").strip()
                if text:
                    texts.append(text)
                for w in s.words or ():
                    words.append(
                        WordTiming(
                            word=str(w.word),
                            start=float(w.start),
                            end=float(w.end),
                            probability=float(w.probability),
                        )
                    )
            return RecognitionOutput(
                text=" ".join(texts).strip(),
                language=getattr(info, "language", None),
                confidence=float(getattr(info, "language_probability", 0.0) or 0.0),
                words=words,
            )
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
