"""
Silence-aware chunking: split long buffers at the quietest point near each
target boundary so a model invocation never cuts through a word.
"""

import logging

import numpy as np

from . import config
from .signal import window_rms
from .types import ChunkBoundary

logger = logging.getLogger(__name__)


def split_at_silence(
    samples: np.ndarray,
    sample_rate: int,
    target_duration_s: float,
    search_window_s: float,
    rms_window_ms: float = config.RMS_WINDOW_MS,
) -> list[ChunkBoundary]:
    """
    Split a buffer into contiguous chunks cut at low-energy points.

    Args:
        samples: Mono audio
        sample_rate: Sample rate of samples
        target_duration_s: Ideal chunk length
        search_window_s: How far either side of each ideal cut to look for silence
        rms_window_ms: Energy analysis window

    Returns:
        Ordered, contiguous boundaries covering [0, len(samples))
    """
    total = len(samples)
    max_chunk = int((target_duration_s + search_window_s) * sample_rate)

    # Short inputs are never split
    if total <= max_chunk:
        return [ChunkBoundary(0, total)]

    rms_win = max(1, int(rms_window_ms / 1000.0 * sample_rate))
    rms_values = window_rms(samples, rms_win)
    num_windows = len(rms_values)

    target = int(target_duration_s * sample_rate)
    search = int(search_window_s * sample_rate)

    chunks: list[ChunkBoundary] = []
    start = 0
    while start < total:
        if total - start <= max_chunk:
            chunks.append(ChunkBoundary(start, total))
            break

        ideal_cut = start + target
        win_lo = max(0, ideal_cut - search) // rms_win
        win_hi = min(min(ideal_cut + search, total) // rms_win, num_windows)

        # argmin returns the first occurrence on ties
        best = win_lo
        if win_hi > win_lo:
            best = win_lo + int(np.argmin(rms_values[win_lo:win_hi]))

        cut = min(best * rms_win + rms_win // 2, total)
        if cut <= start:
            # Degenerate parameters (search >= target) must still make progress
            cut = min(ideal_cut, total)

        chunks.append(ChunkBoundary(start, cut))
        start = cut

    logger.debug(
        "Split %.1fs into %d chunks: %s",
        total / sample_rate,
        len(chunks),
        [(c.start_sample, c.end_sample) for c in chunks],
    )
    return chunks
