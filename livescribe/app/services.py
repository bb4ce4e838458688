from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from livescribe.app.config import SessionConfig
from livescribe.asr.base import SpeechRecognizer
from livescribe.asr.faster_whisper_engine import FasterWhisperRecognizer
from livescribe.audio.mic import SoundDeviceMicSource
from livescribe.audio.replay import WavFileSource
from livescribe.audio.segment_producer import ChunkSource
from livescribe.events import EventHub
from livescribe.live.session import LiveSession
from livescribe.nlp.translator.base import LanguageModel
from livescribe.nlp.translator.ollama import OllamaClient
from livescribe.storage import SessionStore


@dataclass(frozen=True)
class LiveServices:
    source: ChunkSource
    recognizer: SpeechRecognizer
    language_model: LanguageModel
    store: SessionStore | None


def session_config_from_args(args: Any) -> SessionConfig:
    cfg, _ = SessionConfig.from_values(vars(args))
    return cfg


def build_source(args: Any) -> ChunkSource:
    block_seconds = max(10, int(args.block_ms)) / 1000.0
    if getattr(args, "replay", None):
        return WavFileSource(args.replay, block_seconds=block_seconds, realtime=False)
    return SoundDeviceMicSource(
        block_seconds=block_seconds,
        sample_rate=int(args.sr),
        channels=int(args.channels),
        device=args.device,
    )


def build_live_services(args: Any, *, logger: logging.Logger | None = None) -> LiveServices:
    source_language = str(args.source_language)
    recognizer = FasterWhisperRecognizer(
        model_size=str(args.whisper_model),
        fallback_model_size=str(args.whisper_fallback_model),
        cpu_threads=int(args.whisper_threads),
        language=None if source_language == "auto" else source_language,
    )
    language_model = OllamaClient(
        str(args.ollama_endpoint),
        timeout=float(args.translation_timeout_sec),
    )
    store = SessionStore(args.sessions_dir, logger=logger) if args.save_sessions else None
    return LiveServices(
        source=build_source(args),
        recognizer=recognizer,
        language_model=language_model,
        store=store,
    )


def build_live_session(
    args: Any,
    services: LiveServices,
    *,
    events: EventHub | None = None,
    logger: logging.Logger | None = None,
) -> LiveSession:
    return LiveSession(
        session_config_from_args(args),
        recognizer=services.recognizer,
        language_model=services.language_model,
        translation_model=str(args.translation_model),
        fallback_translation_model=str(args.translation_fallback_model) or None,
        events=events,
        logger=logger,
        on_completed=None if services.store is None else services.store.save,
    )
