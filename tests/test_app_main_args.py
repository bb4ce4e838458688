from __future__ import annotations

import json
from pathlib import Path

from livescribe.app.config import resolve_args


def test_app_resolve_args_cli_overrides_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps({"target_language": "ja", "sr": 16000, "chunk_duration_ms": 6000}),
        encoding="utf-8",
    )
    args = resolve_args(
        [
            "--config",
            str(cfg_path),
            "--target-language",
            "fr",
            "--chunk-duration-ms",
            "4000",
        ]
    )
    assert args.target_language == "fr"
    assert args.sr == 16000
    assert args.chunk_duration_ms == 4000


def test_app_resolve_args_keeps_config_only_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps({"max_quality_attempts": 3, "translation_timeout_sec": 12.5}),
        encoding="utf-8",
    )
    args = resolve_args(["--config", str(cfg_path)])
    assert args.max_quality_attempts == 3
    assert args.translation_timeout_sec == 12.5
    assert args.context_pairs == 3


def test_app_resolve_args_replay_and_toggles(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(json.dumps({"save_sessions": True, "print_console": True}), encoding="utf-8")
    args = resolve_args(
        [
            "--config",
            str(cfg_path),
            "--replay",
            "talk.wav",
            "--no-save-sessions",
            "--no-print-console",
        ]
    )
    assert args.replay == "talk.wav"
    assert args.save_sessions is False
    assert args.print_console is False
    assert args.check is False


def test_app_resolve_args_debug_from_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(json.dumps({"debug": True}), encoding="utf-8")
    args = resolve_args(["--config", str(cfg_path), "--check"])
    assert args.debug is True
    assert args.check is True
