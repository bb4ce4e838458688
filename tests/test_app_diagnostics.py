from __future__ import annotations

from livescribe.app.diagnostics import describe_connection_check, hint_for_exception, summarize_exception


def test_summarize_exception_picks_last_meaningful_line() -> None:
    detail = (
        "Traceback (most recent call last):\n"
        '  File "x.py", line 1, in <module>\n'
        "    boom()\n"
        "RuntimeError: failed to start worker"
    )
    assert summarize_exception(detail) == "RuntimeError: failed to start worker"


def test_summarize_exception_truncates_long_line() -> None:
    detail = "ValueError: " + ("x" * 500)
    out = summarize_exception(detail, max_len=60)
    assert out.startswith("ValueError: ")
    assert out.endswith("...")
    assert len(out) <= 60


def test_hint_for_ollama_not_running() -> None:
    hint = hint_for_exception("ServiceError: cannot reach ollama at http://localhost:11434: [Errno 111] Connection refused")
    assert "ollama serve" in hint


def test_hint_for_missing_translation_model() -> None:
    hint = hint_for_exception("ServiceError: ollama returned 404: model 'llama3:8b' not found")
    assert "ollama pull" in hint


def test_hint_for_microphone_failure() -> None:
    hint = hint_for_exception("MicError: Failed to open microphone stream. Try --list-devices")
    assert "--list-devices" in hint


def test_hint_for_exception_default() -> None:
    hint = hint_for_exception("RuntimeError: unknown")
    assert hint == "Check logs for full traceback."


def test_describe_connection_check_lists_missing_models() -> None:
    lines = describe_connection_check(
        {"ok": True, "models": ["llama3:8b", "mistral:latest"]},
        ("llama3:8b", "phi3:mini"),
    )
    assert lines[0].startswith("Ollama: reachable, 2 model(s)")
    assert "llama3:8b: ok" in lines[1]
    assert "phi3:mini: missing" in lines[2]


def test_describe_connection_check_unreachable() -> None:
    lines = describe_connection_check({"ok": False, "models": [], "message": "cannot reach ollama: refused"})
    assert lines[0].startswith("Ollama: NOT reachable")
    assert "ollama serve" in lines[1]
