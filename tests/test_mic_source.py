from __future__ import annotations

import sys
import types

import pytest

from livescribe.audio.mic import MicError, SoundDeviceMicSource


class _FakeStream:
    def __init__(self, blocks, **kwargs) -> None:
        self.kwargs = kwargs
        self.blocks = blocks
        self.active = False

    def __enter__(self):
        self.active = True
        callback = self.kwargs["callback"]
        for i, block in enumerate(self.blocks):
            callback(block, len(block) // 2, None, "input overflow" if i == 0 else None)
        self.active = False
        return self

    def __exit__(self, *exc) -> None:
        self.active = False


def _install_fake_sounddevice(monkeypatch, blocks, opened):
    def raw_input_stream(**kwargs):
        stream = _FakeStream(blocks, **kwargs)
        opened.append(stream)
        return stream

    fake = types.SimpleNamespace(RawInputStream=raw_input_stream, query_devices=lambda: "0 Fake Mic")
    monkeypatch.setitem(sys.modules, "sounddevice", fake)


def test_chunks_carry_running_timestamps_and_stop_on_close(monkeypatch) -> None:
    opened = []
    block = b"\x01\x00" * 1600
    _install_fake_sounddevice(monkeypatch, [block, block, block], opened)
    src = SoundDeviceMicSource(block_seconds=0.1, read_timeout_s=0.01)

    got = []
    for chunk in src.chunks():
        got.append(chunk)
        if len(got) == 3:
            src.close()

    assert [c.start_time for c in got] == pytest.approx([0.0, 0.1, 0.2])
    assert all(c.duration == pytest.approx(0.1) for c in got)
    assert opened[0].kwargs["blocksize"] == 1600
    assert opened[0].kwargs["dtype"] == "int16"
    assert src.overflows == 1


def test_stream_that_goes_inactive_raises_mic_error(monkeypatch) -> None:
    _install_fake_sounddevice(monkeypatch, [b"\x00\x00" * 160], [])
    src = SoundDeviceMicSource(block_seconds=0.01, read_timeout_s=0.01)

    it = src.chunks()
    next(it)
    with pytest.raises(MicError, match="stopped"):
        next(it)


def test_open_failure_is_reported_as_mic_error(monkeypatch) -> None:
    def broken(**kwargs):
        raise OSError("no such device")

    monkeypatch.setitem(sys.modules, "sounddevice", types.SimpleNamespace(RawInputStream=broken))
    with pytest.raises(MicError, match="--list-devices"):
        next(SoundDeviceMicSource(device=42).chunks())


def test_list_devices_and_argument_validation(monkeypatch) -> None:
    _install_fake_sounddevice(monkeypatch, [], [])
    assert SoundDeviceMicSource.list_devices() == "0 Fake Mic"
    with pytest.raises(ValueError):
        SoundDeviceMicSource(channels=3)
    with pytest.raises(ValueError):
        SoundDeviceMicSource(block_seconds=0)


def test_close_still_delivers_blocks_already_captured(monkeypatch) -> None:
    block = b"\x01\x00" * 1600
    _install_fake_sounddevice(monkeypatch, [block] * 5, [])
    src = SoundDeviceMicSource(block_seconds=0.1, read_timeout_s=0.01)

    got = []
    for chunk in src.chunks():
        got.append(chunk)
        if len(got) == 1:
            src.close()

    assert len(got) == 5
    assert [c.start_time for c in got] == pytest.approx([0.0, 0.1, 0.2, 0.3, 0.4])
