from __future__ import annotations

import argparse
import copy
import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir, user_data_dir

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    # session options
    "source_language": "auto",
    "target_language": "en",
    "chunk_duration_ms": 5000,
    "max_extension_ms": 2000,
    "quiet_threshold": 15.0,
    "context_chars": 1000,
    "max_retries": 2,
    "circuit_breaker_threshold": 5,
    "circuit_breaker_cooldown_ms": 30000,
    # capture
    "list_devices": False,
    "device": None,
    "sr": 16000,
    "channels": 1,
    "block_ms": 100,
    # speech recognition
    "whisper_model": "base",
    "whisper_fallback_model": "tiny",
    "whisper_threads": 4,
    # language model
    "ollama_endpoint": "http://localhost:11434",
    "translation_model": "llama3:8b",
    "translation_fallback_model": "phi3:mini",
    "translation_timeout_sec": 30.0,
    "max_quality_attempts": 2,
    "context_pairs": 3,
    # pipeline
    "queue_poll_ms": 500,
    "max_pending_chars": 500,
    # app
    "save_sessions": True,
    "sessions_dir": None,
    "print_console": True,
    "queue_maxsize": 200,
    "debug": False,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())

CHUNK_DURATION_RANGE_MS = (3000, 10000)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path
    data_dir: Path


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("livescribe", "livescribe"))
    return AppPaths(
        config_dir=config_dir,
        config_path=config_dir / "config.json",
        data_dir=Path(user_data_dir("livescribe", "livescribe")),
    )


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ConfigError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in CONFIG_KEYS:
        if key in payload:
            out[key] = payload[key]
    return out


def load_default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULTS)


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    _write_json_dict(paths.config_path, defaults or load_default_config())
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    merged = dict(defaults)
    merged.update(_known_only(_load_json_dict(chosen)))
    return merged, chosen


def save_user_config(values: dict[str, Any], config_path: str | None = None) -> Path:
    payload = _known_only(values)
    path = Path(config_path) if config_path else ensure_user_config_exists()
    existing = _known_only(_load_json_dict(path)) if path.exists() else {}
    merged = load_default_config()
    merged.update(existing)
    merged.update(payload)
    _write_json_dict(path, _known_only(merged))
    return path


@dataclass(frozen=True)
class SessionConfig:
    """Start-time options of a live session, already validated."""

    source_language: str = "auto"
    target_language: str = "en"
    chunk_duration_ms: int = 5000
    max_extension_ms: int = 2000
    quiet_threshold: float = 15.0
    context_chars: int = 1000
    max_retries: int = 2
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_ms: int = 30000
    max_quality_attempts: int = 2
    context_pairs: int = 3
    queue_poll_ms: int = 500
    max_pending_chars: int = 500

    @classmethod
    def from_values(cls, values: dict[str, Any]) -> tuple["SessionConfig", list[str]]:
        """
        Build a config from loose values (JSON config, argparse namespace dict).

        Malformed or out-of-range values fall back to the known-good default;
        the names of the keys that were reset are returned so the caller can
        warn once.
        """
        defaults = cls()
        kwargs: dict[str, Any] = {}
        reset: list[str] = []
        for f in fields(cls):
            default = getattr(defaults, f.name)
            if f.name not in values or values[f.name] is None:
                kwargs[f.name] = default
                continue
            raw = values[f.name]
            try:
                value = _coerce(f.name, raw, default)
            except (TypeError, ValueError):
                value = default
                reset.append(f.name)
            kwargs[f.name] = value
        lo, hi = CHUNK_DURATION_RANGE_MS
        chunk = kwargs["chunk_duration_ms"]
        if chunk < lo or chunk > hi:
            kwargs["chunk_duration_ms"] = min(hi, max(lo, chunk))
            reset.append("chunk_duration_ms")
        if reset:
            logger.warning("config_values_reset", extra={"keys": sorted(set(reset))})
        return cls(**kwargs), sorted(set(reset))


_MINIMUMS = {
    "circuit_breaker_threshold": 1,
    "max_quality_attempts": 1,
    "queue_poll_ms": 1,
    "max_pending_chars": 10,
}


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if isinstance(default, str):
        text = str(raw).strip()
        if not text:
            raise ValueError(f"{name} must not be empty")
        return text
    if isinstance(raw, bool):
        raise TypeError(f"{name} must be numeric")
    if isinstance(default, int):
        value = int(raw)
        minimum = _MINIMUMS.get(name, 0)
        if value < minimum:
            raise ValueError(f"{name} must be >= {minimum}")
        return value
    value = float(raw)
    if name == "quiet_threshold" and not (0.0 <= value <= 100.0):
        raise ValueError("quiet_threshold must be a percentage")
    return value


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="livescribe", description="Live transcription and translation")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--check", action="store_true", help="check the language-model service and exit")
    p.add_argument("--replay", default=None, help="feed this WAV file instead of the microphone")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    p.add_argument("--sr", type=int, default=defaults["sr"], help="sample rate (Hz)")
    p.add_argument("--channels", type=int, default=defaults["channels"], help="input channels")
    p.add_argument("--block-ms", type=int, default=defaults["block_ms"], help="capture block size (ms)")
    p.add_argument("--source-language", default=defaults["source_language"], help="spoken language or auto")
    p.add_argument("--target-language", default=defaults["target_language"], help="translation language")
    p.add_argument(
        "--chunk-duration-ms",
        type=int,
        default=defaults["chunk_duration_ms"],
        help="nominal segment length (3000-10000)",
    )
    p.add_argument(
        "--max-extension-ms",
        type=int,
        default=defaults["max_extension_ms"],
        help="how long a cut may wait for a quiet moment",
    )
    p.add_argument(
        "--quiet-threshold",
        type=float,
        default=defaults["quiet_threshold"],
        help="audio level percentage below which a cut is allowed",
    )
    p.add_argument(
        "--context-chars",
        type=int,
        default=defaults["context_chars"],
        help="transcript tail passed to the recognizer as prompt",
    )
    p.add_argument("--max-retries", type=int, default=defaults["max_retries"], help="retries per call")
    p.add_argument(
        "--circuit-breaker-threshold",
        type=int,
        default=defaults["circuit_breaker_threshold"],
        help="consecutive failures before a service is cut off",
    )
    p.add_argument(
        "--circuit-breaker-cooldown-ms",
        type=int,
        default=defaults["circuit_breaker_cooldown_ms"],
        help="cool-down before a trial call",
    )
    p.add_argument("--whisper-model", default=defaults["whisper_model"], help="faster-whisper model size")
    p.add_argument(
        "--whisper-threads",
        type=int,
        default=defaults["whisper_threads"],
        help="CPU threads for speech recognition",
    )
    p.add_argument("--ollama-endpoint", default=defaults["ollama_endpoint"], help="Ollama base URL")
    p.add_argument("--translation-model", default=defaults["translation_model"], help="Ollama model")
    p.add_argument(
        "--translation-fallback-model",
        default=defaults["translation_fallback_model"],
        help="smaller Ollama model used after repeated failures",
    )
    p.add_argument(
        "--save-sessions",
        action=argparse.BooleanOptionalAction,
        default=defaults["save_sessions"],
        help="write session JSON and exports on stop",
    )
    p.add_argument("--sessions-dir", default=defaults["sessions_dir"], help="where sessions are saved")
    p.add_argument(
        "--print-console",
        action=argparse.BooleanOptionalAction,
        default=defaults["print_console"],
        help="print sentences and translations to console",
    )
    p.add_argument("--debug", action="store_true", help="verbose logging")
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    # Keys without a CLI flag still come from the config file.
    for key, value in defaults.items():
        if not hasattr(args, key):
            setattr(args, key, value)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("debug"):
        args.debug = True
    return args
