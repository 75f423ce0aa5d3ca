"""Pitch shifting of synthesized int16 PCM."""

from __future__ import annotations

import numpy as np


def shift_pitch(pcm: bytes, channels: int, factor: float) -> bytes:
    """Resample ``pcm`` so it plays ``factor`` times higher and shorter.

    Callers synthesize ``factor`` times slower beforehand, so the duration
    set by the speaking rate is kept.
    """
    channels = max(1, channels)
    frame_count = len(pcm) // (2 * channels)
    if factor <= 0 or abs(factor - 1.0) < 1e-3 or frame_count < 2:
        return pcm
    samples = np.frombuffer(pcm[: frame_count * 2 * channels], dtype=np.int16).reshape(frame_count, channels)
    out_count = max(1, int(round(frame_count / factor)))
    positions = np.minimum(np.arange(out_count, dtype=np.float64) * factor, frame_count - 1)
    source = np.arange(frame_count, dtype=np.float64)
    shifted = np.empty((out_count, channels), dtype=np.float64)
    for channel in range(channels):
        shifted[:, channel] = np.interp(positions, source, samples[:, channel].astype(np.float64))
    return np.clip(np.rint(shifted), -32768, 32767).astype(np.int16).tobytes()
