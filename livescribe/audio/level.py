from __future__ import annotations

import math

import numpy as np

_INT16_FULL_SCALE = 32768.0
# RMS of -50 dBFS maps to 0%, 0 dBFS maps to 100%.
_FLOOR_DB = -50.0


def pcm16_rms(pcm16: bytes) -> float:
    """Return RMS energy for little-endian int16 PCM bytes."""
    if len(pcm16) < 2:
        return 0.0
    usable = len(pcm16) - (len(pcm16) % 2)
    x = np.frombuffer(pcm16[:usable], dtype=np.int16).astype(np.float32)
    if x.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(x * x)))


def level_percent(pcm16: bytes) -> float:
    """
    Audio level of a block as a 0-100 percentage on a dB scale.

    Room noise sits around 5-12%, normal speech around 40-75%.
    """
    rms = pcm16_rms(pcm16)
    if rms <= 0.0:
        return 0.0
    db = 20.0 * math.log10(rms / _INT16_FULL_SCALE)
    pct = (db - _FLOOR_DB) / -_FLOOR_DB * 100.0
    return max(0.0, min(100.0, pct))
