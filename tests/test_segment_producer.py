from __future__ import annotations

import io
import threading
import wave
from typing import Iterator, List

import numpy as np
import pytest

from livescribe import events as ev
from livescribe.audio.level import level_percent, pcm16_rms
from livescribe.audio.mic import MicError
from livescribe.audio.segment_producer import CutAction, CutPolicy, SegmentProducer, decide_cut, encode_wav
from livescribe.contracts import AudioChunk, AudioSegment

SR = 16000
BLOCK_S = 0.1


def _block(amplitude: int, t0: float) -> AudioChunk:
    n = int(SR * BLOCK_S)
    pcm = (np.ones(n, dtype=np.int16) * amplitude).tobytes()
    return AudioChunk(pcm16=pcm, sample_rate=SR, channels=1, start_time=t0, duration=BLOCK_S)


def _blocks(pattern: List[int], t0: float = 0.0) -> List[AudioChunk]:
    return [_block(a, t0 + i * BLOCK_S) for i, a in enumerate(pattern)]


LOUD = 3000
QUIET = 100


def test_level_percent_scale():
    assert level_percent(b"") == 0.0
    assert level_percent(_block(0, 0.0).pcm16) == 0.0
    assert level_percent(_block(QUIET, 0.0).pcm16) < 15.0
    assert 40.0 < level_percent(_block(LOUD, 0.0).pcm16) < 80.0
    assert pcm16_rms(_block(LOUD, 0.0).pcm16) == 3000.0


def test_decide_cut_waits_until_nominal_duration():
    policy = CutPolicy()
    assert decide_cut(4900, 0.0, policy) is CutAction.WAIT
    assert decide_cut(5000, 5.0, policy) is CutAction.CUT_QUIET


def test_decide_cut_extends_while_loud_and_forces_at_limit():
    policy = CutPolicy(chunk_duration_ms=5000, max_extension_ms=2000, quiet_threshold=15.0)
    assert decide_cut(5000, 60.0, policy) is CutAction.EXTEND
    assert decide_cut(6900, 60.0, policy) is CutAction.EXTEND
    assert decide_cut(7000, 60.0, policy) is CutAction.CUT_FORCED
    assert decide_cut(5300, 10.0, policy) is CutAction.CUT_QUIET
    assert CutAction.CUT_FORCED.is_cut and not CutAction.EXTEND.is_cut


def test_continuous_speech_is_cut_at_seven_seconds():
    out: List[AudioSegment] = []
    producer = SegmentProducer(on_segment=out.append)
    for chunk in _blocks([LOUD] * 75):
        producer.feed(chunk)
    assert len(out) == 1
    assert out[0].duration_ms == 7000
    assert out[0].start_time == 0.0
    assert abs(out[0].end_time - 7.0) < 1e-6


def test_quiet_moment_after_nominal_duration_cuts_at_5300ms():
    out: List[AudioSegment] = []
    producer = SegmentProducer(on_segment=out.append)
    for chunk in _blocks([LOUD] * 52 + [QUIET] * 5):
        producer.feed(chunk)
    assert len(out) == 1
    assert out[0].duration_ms == 5300


def test_explicit_level_overrides_measured_level():
    producer = SegmentProducer()
    segment = None
    for chunk in _blocks([LOUD] * 50):
        segment = producer.feed(chunk, level=0.0)
    assert segment is not None
    assert segment.duration_ms == 5000


def test_segments_are_complete_wav_files_with_monotonic_ids():
    out: List[AudioSegment] = []
    producer = SegmentProducer(on_segment=out.append)
    for chunk in _blocks([QUIET] * 100):
        producer.feed(chunk)
    assert [s.id for s in out] == ["seg_00001", "seg_00002"]
    assert [s.ordinal for s in out] == [1, 2]
    assert out[1].start_time == 5.0
    with wave.open(io.BytesIO(out[0].audio_bytes), "rb") as wf:
        assert wf.getframerate() == SR
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getnframes() == SR * 5


def test_flush_emits_short_in_flight_segment():
    out: List[AudioSegment] = []
    hub = ev.EventHub()
    ready: List[AudioSegment] = []
    hub.on(ev.SEGMENT_READY, ready.append)
    producer = SegmentProducer(on_segment=out.append, events=hub)
    for chunk in _blocks([LOUD] * 12):
        producer.feed(chunk)
    assert out == []
    seg = producer.flush()
    assert seg is not None and seg.duration_ms == 1200
    assert out == [seg] and ready == [seg]
    assert producer.flush() is None


def test_encode_wav_round_trips_pcm():
    pcm = _block(LOUD, 0.0).pcm16
    with wave.open(io.BytesIO(encode_wav(pcm, SR, 1)), "rb") as wf:
        assert wf.readframes(wf.getnframes()) == pcm


class _ListSource:
    def __init__(self, chunks: List[AudioChunk]) -> None:
        self._chunks = chunks
        self.closed = False

    def chunks(self) -> Iterator[AudioChunk]:
        for c in self._chunks:
            if self.closed:
                return
            yield c

    def close(self) -> None:
        self.closed = True


class _BrokenSource:
    def chunks(self) -> Iterator[AudioChunk]:
        yield _block(LOUD, 0.0)
        raise OSError("device unplugged")

    def close(self) -> None:
        pass


def test_capture_thread_feeds_source_and_stop_flushes():
    out: List[AudioSegment] = []
    producer = SegmentProducer(on_segment=out.append)
    producer.start_session(_ListSource(_blocks([QUIET] * 60)))
    assert producer.wait(timeout=5.0)
    tail = producer.stop()
    assert [s.duration_ms for s in out] == [5000, 1000]
    assert tail is out[-1]


def test_capture_failure_is_reported_once_as_event():
    hub = ev.EventHub()
    failures: List[BaseException] = []
    hub.on(ev.CAPTURE_FAILED, failures.append)
    producer = SegmentProducer(events=hub)
    producer.start_session(_BrokenSource())
    assert producer.wait(timeout=5.0)
    assert len(failures) == 1
    assert isinstance(failures[0], MicError)
    assert isinstance(producer.capture_error, MicError)
    # the captured block before the failure is still delivered on stop
    seg = producer.stop()
    assert seg is not None and seg.duration_ms == 100


def test_start_session_twice_is_rejected():
    gate = threading.Event()

    class _BlockingSource:
        def chunks(self) -> Iterator[AudioChunk]:
            gate.wait(5.0)
            return iter(())

        def close(self) -> None:
            gate.set()

    producer = SegmentProducer()
    producer.start_session(_BlockingSource())
    try:
        with pytest.raises(RuntimeError):
            producer.start_session(_BlockingSource())
    finally:
        producer.stop()


class _QueuedSource:
    """Hands over its blocks only once close() is called, like a mic with a backlog."""

    def __init__(self, chunks: List[AudioChunk]) -> None:
        self._closed = threading.Event()
        self._pending = list(chunks)

    def chunks(self) -> Iterator[AudioChunk]:
        self._closed.wait(5.0)
        while self._pending:
            yield self._pending.pop(0)

    def close(self) -> None:
        self._closed.set()


def test_stop_keeps_blocks_still_queued_in_the_source():
    out: List[AudioSegment] = []
    producer = SegmentProducer(on_segment=out.append)
    producer.start_session(_QueuedSource(_blocks([LOUD] * 5)))

    producer.stop()

    assert sum(s.duration_ms for s in out) == 500
    assert len(out) == 1
