from __future__ import annotations

import json

import pytest

from livescribe.contracts import SentenceSegment, SentenceStatus, Session
from livescribe.storage import (
    SessionStore,
    bilingual_srt,
    bilingual_text,
    display_translation,
    export_session,
    format_srt_time,
    format_timestamp,
    original_srt,
    translated_srt,
    translated_text,
)


def _session(finalized: bool = True) -> Session:
    s1 = SentenceSegment(id="sent_00001", text="Hello there.", start_time=0.0, end_time=5.0, source_language="en", target_language="es")
    s1.status = SentenceStatus.TRANSLATED
    s1.translated_text = "Hola."
    s2 = SentenceSegment(id="sent_00002", text="How are you?", start_time=65.5, end_time=70.25, source_language="en", target_language="es")
    s2.status = SentenceStatus.ERROR
    s2.translated_text = "[untranslated] How are you?"
    s2.error = "timeout"
    s3 = SentenceSegment(id="sent_00003", text="Bye.", start_time=71.0, end_time=72.0, source_language="en", target_language="es")
    return Session(
        id="20240101-120000-abc123",
        start_time=1_704_110_400.0,
        end_time=1_704_110_500.0 if finalized else None,
        source_language="en",
        target_language="es",
        segments=[s1, s2, s3],
    )


def test_time_formats():
    assert format_srt_time(3723.4567) == "01:02:03,457"
    assert format_srt_time(-1) == "00:00:00,000"
    assert format_timestamp(65.9) == "01:05"


def test_display_translation_per_status():
    s1, s2, s3 = _session().segments
    assert display_translation(s1) == "Hola."
    assert display_translation(s2) == "[untranslated] How are you?"
    assert display_translation(s3) == "[untranslated] Bye."


def test_bilingual_text_lists_every_sentence():
    text = bilingual_text(_session())
    assert "English -> Spanish" in text
    assert "=" * 50 in text
    assert "[1] 00:00\nOriginal: Hello there.\nTranslation: Hola.\n" in text
    assert "[2] 01:05\nOriginal: How are you?\nTranslation: [untranslated] How are you?\n" in text
    assert "[3] 01:11" in text


def test_translated_exports_skip_untranslated_sentences():
    assert "Hola." in translated_text(_session())
    assert "How are you?" not in translated_text(_session())
    assert translated_srt(_session()) == "1\n00:00:00,000 --> 00:00:05,000\nHola.\n"


def test_srt_numbering_and_bodies():
    srt = bilingual_srt(_session())
    blocks = srt.split("\n\n")
    assert blocks[0] == "1\n00:00:00,000 --> 00:00:05,000\nHello there.\nHola."
    assert blocks[1].startswith("2\n00:01:05,500 --> 00:01:10,250\n")
    assert original_srt(_session()).count("-->") == 3


def test_export_session_formats():
    session = _session()
    assert export_session(session, "TXT") == bilingual_text(session)
    assert json.loads(export_session(session, "json"))["segments"][1]["status"] == "error"
    assert export_session(session, "srt") == bilingual_srt(session)
    with pytest.raises(ValueError):
        export_session(session, "docx")


def test_store_writes_session_and_exports(tmp_path):
    store = SessionStore(tmp_path)
    saved = store.save(_session())

    assert saved.session_dir == tmp_path / "20240101-120000-abc123"
    assert sorted(p.name for p in saved.session_dir.iterdir()) == [
        "bilingual.txt",
        "bilingual_subtitles.srt",
        "original.txt",
        "original_subtitles.srt",
        "session.json",
        "translated.txt",
        "translated_subtitles.srt",
    ]
    loaded = store.load("20240101-120000-abc123")
    assert loaded["segments"][0]["translated_text"] == "Hola."
    assert loaded["end_time"] == 1_704_110_500.0

    index = store.list_sessions()
    assert [e["id"] for e in index] == ["20240101-120000-abc123"]
    assert index[0]["sentences"] == 3


def test_store_resave_replaces_index_entry(tmp_path):
    store = SessionStore(tmp_path)
    store.save(_session())
    store.save(_session())
    assert len(store.list_sessions()) == 1


def test_store_rejects_unfinished_session(tmp_path):
    with pytest.raises(ValueError):
        SessionStore(tmp_path).save(_session(finalized=False))
    assert SessionStore(tmp_path).list_sessions() == []
