from __future__ import annotations

import signal
import threading
import traceback

from livescribe.app.config import resolve_args
from livescribe.app.diagnostics import describe_connection_check, hint_for_exception, summarize_exception
from livescribe.app.logging_setup import setup_app_logger
from livescribe.app.runtime import run_session
from livescribe.app.services import build_live_services, build_live_session
from livescribe.audio.mic import SoundDeviceMicSource
from livescribe.nlp.translator.ollama import OllamaClient
from livescribe.ui.bridge import UpdateBus


def _run_check(args) -> int:
    client = OllamaClient(str(args.ollama_endpoint), timeout=float(args.translation_timeout_sec))
    try:
        result = client.check_connection()
    finally:
        client.close()
    wanted = (str(args.translation_model), str(args.translation_fallback_model))
    for line in describe_connection_check(result, wanted):
        print(line)
    return 0 if result.get("ok") else 2


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, _log_dir, log_path = setup_app_logger(debug=bool(args.debug), console=bool(args.debug))
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "")), "argv": argv or []})

    if args.list_devices:
        print(SoundDeviceMicSource.list_devices())
        return 0

    if args.check:
        return _run_check(args)

    stop_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: stop_event.set())

    try:
        services = build_live_services(args, logger=logger)
        session = build_live_session(args, services, logger=logger)
        bus = UpdateBus(maxsize=max(1, int(args.queue_maxsize)))

        source_name = f"replay {args.replay}" if args.replay else f"mic {args.device if args.device is not None else 'default'}"
        print(
            f"livescribe: {source_name} | {args.source_language} -> {args.target_language} | "
            f"whisper {args.whisper_model} | {args.translation_model}"
        )
        print("Press Ctrl+C to stop.")
        print(f"Logs: {log_path}")

        result = run_session(
            session,
            services.source,
            bus,
            stop_event,
            sink=print if args.print_console else None,
            logger=logger,
        )
    except Exception:
        detail = traceback.format_exc()
        logger.exception("app_crash")
        summary = summarize_exception(detail)
        print(f"livescribe failed: {summary}")
        print(hint_for_exception(summary))
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    stats = result.stats
    print(
        f"Session {result.id}: {stats.sentences} sentence(s), {stats.sentences_translated} translated, "
        f"{stats.sentences_failed} failed, {stats.sentences_skipped} untranslated"
    )
    if session.capture_failed:
        summary = summarize_exception(session.tracker.last_error or "")
        print(f"Audio capture failed: {summary}")
        print(hint_for_exception(summary))
    if services.store is not None:
        print(f"Saved to: {services.store.root / result.id}")
    services.language_model.close()
    logger.info("app_quit", extra={"session_id": result.id})
    return 3 if session.capture_failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
