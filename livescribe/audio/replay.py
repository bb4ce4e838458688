from __future__ import annotations

import time
import wave
from pathlib import Path
from typing import Iterator

from livescribe.audio.mic import MicError
from livescribe.contracts import AudioChunk


class WavFileSource:
    """
    Feed a PCM16 WAV file through the live pipeline block by block.

    realtime=True paces blocks at capture speed, which keeps segment timing
    and queue behaviour close to a real microphone.
    """

    def __init__(self, path: str | Path, *, block_seconds: float = 0.1, realtime: bool = False) -> None:
        if block_seconds <= 0:
            raise ValueError("block_seconds must be > 0")
        self.path = Path(path)
        self.block_seconds = float(block_seconds)
        self.realtime = realtime
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def chunks(self) -> Iterator[AudioChunk]:
        try:
            wf = wave.open(str(self.path), "rb")
        except (OSError, wave.Error) as e:
            raise MicError(f"Failed to open replay file: {self.path}") from e

        self._closed = False
        with wf:
            if wf.getsampwidth() != 2:
                raise MicError("replay file must be 16-bit PCM")
            sample_rate = wf.getframerate()
            channels = wf.getnchannels()
            frames_per_block = max(1, int(round(self.block_seconds * sample_rate)))
            frames_seen = 0
            while not self._closed:
                data = wf.readframes(frames_per_block)
                if not data:
                    return
                frames = len(data) // (2 * channels)
                yield AudioChunk(
                    pcm16=data,
                    sample_rate=sample_rate,
                    channels=channels,
                    start_time=frames_seen / sample_rate,
                    duration=frames / sample_rate,
                )
                frames_seen += frames
                if self.realtime:
                    time.sleep(frames / sample_rate)
