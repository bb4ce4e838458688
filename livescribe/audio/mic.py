from __future__ import annotations

import queue
import threading
from typing import Any, Iterator, Optional

from livescribe.contracts import AudioChunk


class MicError(RuntimeError):
    pass


class SoundDeviceMicSource:
    """
    Microphone source on top of a PortAudio callback stream (`sounddevice`).

    The callback only copies each block into a queue, so a slow consumer
    never stalls the device; blocks wait in the queue instead of being lost.
    """

    def __init__(
        self,
        *,
        block_seconds: float = 0.1,
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[int] = None,
        read_timeout_s: float = 2.0,
    ) -> None:
        if block_seconds <= 0:
            raise ValueError("block_seconds must be > 0")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")

        self.block_seconds = float(block_seconds)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.device = device
        self.read_timeout_s = float(read_timeout_s)
        self.overflows = 0
        self._blocks: "queue.Queue[bytes]" = queue.Queue()
        self._closed = threading.Event()

    @property
    def frames_per_block(self) -> int:
        return max(1, int(round(self.block_seconds * self.sample_rate)))

    @staticmethod
    def list_devices() -> str:
        import sounddevice as sd

        return str(sd.query_devices())

    def close(self) -> None:
        self._closed.set()

    def _on_block(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            # input overflow: PortAudio dropped frames before we saw them
            self.overflows += 1
        self._blocks.put_nowait(bytes(indata))

    def _open_stream(self):
        import sounddevice as sd

        try:
            return sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                blocksize=self.frames_per_block,
                callback=self._on_block,
            )
        except Exception as e:
            raise MicError(
                "Failed to open microphone stream. "
                "Try --list-devices and select a device id with --device."
            ) from e

    def _chunk(self, data: bytes, frames_seen: int) -> Optional[AudioChunk]:
        frames = len(data) // (2 * self.channels)
        if frames <= 0:
            return None
        return AudioChunk(
            pcm16=data,
            sample_rate=self.sample_rate,
            channels=self.channels,
            start_time=frames_seen / self.sample_rate,
            duration=frames / self.sample_rate,
        )

    def chunks(self) -> Iterator[AudioChunk]:
        frames_seen = 0

        stream = self._open_stream()
        with stream:
            while not self._closed.is_set():
                try:
                    data = self._blocks.get(timeout=self.read_timeout_s)
                except queue.Empty:
                    if not stream.active:
                        raise MicError("Microphone stream stopped unexpectedly.")
                    continue
                chunk = self._chunk(data, frames_seen)
                if chunk is not None:
                    frames_seen += len(data) // (2 * self.channels)
                    yield chunk

        # Stream is closed now; hand over what the callback queued before close().
        while True:
            try:
                data = self._blocks.get_nowait()
            except queue.Empty:
                return
            chunk = self._chunk(data, frames_seen)
            if chunk is not None:
                frames_seen += len(data) // (2 * self.channels)
                yield chunk
