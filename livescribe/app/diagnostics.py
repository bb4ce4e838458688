from __future__ import annotations

from typing import Any, Mapping


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return "Unknown runtime error."
    for ln in reversed(lines):
        if ln.startswith(("File ", "^", "Traceback ")):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "ollama" in s and ("connect" in s or "refused" in s or "reach" in s):
        return "Ollama is not reachable. Start it with `ollama serve` or fix --ollama-endpoint."
    if "model" in s and "not found" in s:
        if "whisper" in s:
            return "Speech model could not be loaded. Check --whisper-model or the model cache."
        return "Translation model is missing. Run `ollama pull <model>` or change --translation-model."
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "permission" in s and ("mic" in s or "audio" in s or "device" in s):
        return "Microphone access was denied. Allow microphone access for this terminal."
    if "portaudio" in s or "microphone" in s or ("sounddevice" in s and "failed" in s):
        return "Microphone init failed. Check --device (see --list-devices) and mic permissions."
    if "replay file" in s:
        return "Replay input must be a 16-bit PCM WAV file."
    return "Check logs for full traceback."


def describe_connection_check(result: Mapping[str, Any], wanted_models: tuple[str, ...] = ()) -> list[str]:
    """Human-readable lines for `--check`."""
    if not result.get("ok"):
        msg = summarize_exception(str(result.get("message", "")))
        return [f"Ollama: NOT reachable ({msg})", hint_for_exception(f"ollama connect {msg}")]
    models = [str(m) for m in result.get("models") or []]
    lines = [f"Ollama: reachable, {len(models)} model(s) installed"]
    bases = {m.split(":", 1)[0] for m in models}
    for wanted in wanted_models:
        if not wanted:
            continue
        present = wanted in models or wanted in bases
        lines.append(f"  {wanted}: {'ok' if present else 'missing (ollama pull ' + wanted + ')'}")
    return lines
