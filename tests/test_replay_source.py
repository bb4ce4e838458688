from __future__ import annotations

import wave
from array import array

import pytest

from livescribe.audio.mic import MicError
from livescribe.audio.replay import WavFileSource


def _write_wav(path, *, frames: int, sample_rate: int = 16000, channels: int = 1, sampwidth: int = 2):
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sampwidth)
        wf.setframerate(sample_rate)
        if sampwidth == 2:
            wf.writeframes(array("h", [1000] * (frames * channels)).tobytes())
        else:
            wf.writeframes(b"\x80" * (frames * channels))


def test_replay_yields_blocks_with_stream_timing(tmp_path):
    path = tmp_path / "speech.wav"
    _write_wav(path, frames=16000 + 800)

    chunks = list(WavFileSource(path, block_seconds=0.25).chunks())

    assert len(chunks) == 5
    assert [c.start_time for c in chunks] == [0.0, 0.25, 0.5, 0.75, 1.0]
    assert chunks[0].duration == 0.25
    assert chunks[-1].duration == 0.05
    assert all(c.sample_rate == 16000 and c.channels == 1 for c in chunks)
    assert sum(len(c.pcm16) for c in chunks) == (16000 + 800) * 2


def test_replay_stops_after_close(tmp_path):
    path = tmp_path / "speech.wav"
    _write_wav(path, frames=16000)
    source = WavFileSource(path, block_seconds=0.1)

    seen = []
    for chunk in source.chunks():
        seen.append(chunk)
        source.close()

    assert len(seen) == 1


def test_replay_rejects_non_16_bit_audio(tmp_path):
    path = tmp_path / "eight_bit.wav"
    _write_wav(path, frames=800, sampwidth=1)

    with pytest.raises(MicError, match="16-bit"):
        list(WavFileSource(path).chunks())


def test_replay_missing_file_raises_mic_error(tmp_path):
    with pytest.raises(MicError, match="replay file"):
        list(WavFileSource(tmp_path / "missing.wav").chunks())


def test_replay_rejects_non_positive_block():
    with pytest.raises(ValueError):
        WavFileSource("x.wav", block_seconds=0)
