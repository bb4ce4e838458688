from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

from livescribe.app.config import app_paths
from livescribe.app.logging_setup import log_event
from livescribe.contracts import SentenceSegment, SentenceStatus, Session
from livescribe.live.translation_orchestrator import UNTRANSLATED_PREFIX
from livescribe.nlp.translator.prompts import language_name

EXPORT_FORMATS = ("txt", "json", "srt")


def format_srt_time(seconds: float) -> str:
    """00:01:02,345"""
    total_ms = int(round(max(0.0, float(seconds)) * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def format_timestamp(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def display_translation(sentence: SentenceSegment) -> str:
    """What the reader sees on the translated side, whatever the status."""
    if sentence.status is SentenceStatus.TRANSLATED and sentence.translated_text:
        return sentence.translated_text
    if sentence.status is SentenceStatus.ERROR and sentence.translated_text:
        return sentence.translated_text
    return UNTRANSLATED_PREFIX + sentence.text


def _header(title: str, session: Session, languages: str) -> str:
    started = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(session.start_time))
    return f"{title} - {started}\n{languages}\n" + "=" * 50 + "\n\n"


def bilingual_text(session: Session) -> str:
    out = [
        _header(
            "Bilingual Transcript",
            session,
            f"{language_name(session.source_language)} -> {language_name(session.target_language)}",
        )
    ]
    for i, s in enumerate(session.segments, start=1):
        out.append(f"[{i}] {format_timestamp(s.start_time)}\n")
        out.append(f"Original: {s.text}\n")
        out.append(f"Translation: {display_translation(s)}\n\n")
    return "".join(out)


def original_text(session: Session) -> str:
    out = [_header("Original Transcript", session, f"Language: {language_name(session.source_language)}")]
    for i, s in enumerate(session.segments, start=1):
        out.append(f"[{i}] {format_timestamp(s.start_time)}\n{s.text}\n\n")
    return "".join(out)


def translated_text(session: Session) -> str:
    out = [_header("Translated Transcript", session, f"Language: {language_name(session.target_language)}")]
    translated = [s for s in session.segments if s.status is SentenceStatus.TRANSLATED and s.translated_text]
    for i, s in enumerate(translated, start=1):
        out.append(f"[{i}] {format_timestamp(s.start_time)}\n{s.translated_text}\n\n")
    return "".join(out)


def _srt(entries: Sequence[tuple[float, float, str]]) -> str:
    blocks: List[str] = []
    for i, (t0, t1, body) in enumerate(entries, start=1):
        blocks.append(f"{i}\n{format_srt_time(t0)} --> {format_srt_time(t1)}\n{body}\n")
    return "\n".join(blocks)


def bilingual_srt(session: Session) -> str:
    return _srt([(s.start_time, s.end_time, f"{s.text}\n{display_translation(s)}") for s in session.segments])


def original_srt(session: Session) -> str:
    return _srt([(s.start_time, s.end_time, s.text) for s in session.segments])


def translated_srt(session: Session) -> str:
    return _srt(
        [
            (s.start_time, s.end_time, s.translated_text or "")
            for s in session.segments
            if s.status is SentenceStatus.TRANSLATED and s.translated_text
        ]
    )


def export_session(session: Session, fmt: str = "txt") -> str:
    fmt = (fmt or "").lower()
    if fmt == "txt":
        return bilingual_text(session)
    if fmt == "json":
        return json.dumps(session.to_dict(), ensure_ascii=False, indent=2)
    if fmt == "srt":
        return bilingual_srt(session)
    raise ValueError(f"Unsupported export format: {fmt}")


_EXPORTS = {
    "bilingual_text": ("bilingual.txt", bilingual_text),
    "original_text": ("original.txt", original_text),
    "translated_text": ("translated.txt", translated_text),
    "bilingual_srt": ("bilingual_subtitles.srt", bilingual_srt),
    "original_srt": ("original_subtitles.srt", original_srt),
    "translated_srt": ("translated_subtitles.srt", translated_srt),
}


@dataclass
class SavedSession:
    session_id: str
    session_dir: Path
    session_path: Path
    exports: Dict[str, Path] = field(default_factory=dict)


class SessionStore:
    """
    One directory per finalized session plus an index.json listing them all.
    """

    def __init__(self, root: str | Path | None = None, *, logger: logging.Logger | None = None) -> None:
        self.root = Path(root) if root else app_paths().data_dir / "sessions"
        self.logger = logger

    @property
    def index_path(self) -> Path:
        return self.root / "index.json"

    def save(self, session: Session) -> SavedSession:
        if not session.finalized:
            raise ValueError("only finalized sessions can be saved")
        session_dir = self.root / session.id
        session_dir.mkdir(parents=True, exist_ok=True)

        session_path = session_dir / "session.json"
        _write_json(session_path, session.to_dict())

        saved = SavedSession(session_id=session.id, session_dir=session_dir, session_path=session_path)
        for key, (filename, render) in _EXPORTS.items():
            path = session_dir / filename
            path.write_text(render(session), encoding="utf-8")
            saved.exports[key] = path

        self._update_index(session, session_dir)
        log_event(
            self.logger,
            logging.INFO,
            "session_saved",
            session_id=session.id,
            session_dir=str(session_dir),
            sentences=len(session.segments),
        )
        return saved

    def list_sessions(self) -> List[Dict[str, Any]]:
        if not self.index_path.exists():
            return []
        with self.index_path.open("r", encoding="utf-8") as f:
            loaded = json.load(f)
        return loaded if isinstance(loaded, list) else []

    def load(self, session_id: str) -> Dict[str, Any]:
        path = self.root / session_id / "session.json"
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _update_index(self, session: Session, session_dir: Path) -> None:
        entries = [e for e in self.list_sessions() if e.get("id") != session.id]
        entries.append(
            {
                "id": session.id,
                "start_time": session.start_time,
                "end_time": session.end_time,
                "source_language": session.source_language,
                "target_language": session.target_language,
                "sentences": len(session.segments),
                "translated": session.stats.sentences_translated,
                "dir": str(session_dir),
            }
        )
        _write_json(self.index_path, entries)


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")
