"""
Stateless numeric routines: resampling, FFT, mel filterbank and log-mel features.

Everything on the feature path is computed in float32 so the features match
what the models saw at training time.
"""

from dataclasses import dataclass
from functools import lru_cache
from math import gcd

import numpy as np
from scipy import signal as scipy_signal

from . import config
from .errors import ResampleError

_F32 = np.float32


@dataclass(frozen=True)
class MelConfig:
    """Mel spectrogram parameters. n_fft must be a power of two."""

    sample_rate: int = config.SAMPLE_RATE
    n_fft: int = config.N_FFT
    hop_length: int = config.HOP_LENGTH
    win_length: int = config.WIN_LENGTH
    n_mels: int = config.CTC_N_MELS
    fmin: float = 0.0
    fmax: float = 0.0  # 0 = sample_rate / 2
    log_scale: bool = True
    normalize_per_feature: bool = True

    def __post_init__(self):
        if self.n_fft <= 0 or self.n_fft & (self.n_fft - 1):
            raise ValueError(f"n_fft must be a power of two, got {self.n_fft}")
        if not 0 < self.win_length <= self.n_fft:
            raise ValueError(
                f"win_length must be in (0, n_fft], got {self.win_length} for n_fft={self.n_fft}"
            )
        if self.hop_length <= 0:
            raise ValueError(f"hop_length must be positive, got {self.hop_length}")

    @property
    def effective_fmax(self) -> float:
        return self.fmax if self.fmax > 0 else self.sample_rate / 2.0


# -------------------------
# TIME DOMAIN
# -------------------------
def rms(samples: np.ndarray) -> float:
    """Root mean square of a buffer (0.0 when empty)."""
    if len(samples) == 0:
        return 0.0
    x = np.asarray(samples, dtype=np.float32)
    return float(np.sqrt(np.mean(x * x)))


def window_rms(samples: np.ndarray, window: int) -> np.ndarray:
    """RMS of consecutive non-overlapping windows (a trailing partial window is dropped)."""
    num_windows = len(samples) // window
    if num_windows == 0:
        return np.zeros(0, dtype=np.float32)
    frames = np.asarray(samples[: num_windows * window], dtype=np.float32).reshape(
        num_windows, window
    )
    return np.sqrt(np.mean(frames * frames, axis=1))


def normalize(samples: np.ndarray) -> None:
    """Peak-normalize in place to [-1, 1]. Silent or unit-peak input is left alone."""
    if len(samples) == 0:
        return
    peak = float(np.max(np.abs(samples)))
    if peak > 0.0 and peak != 1.0:
        samples /= peak


def reflect_pad(samples: np.ndarray, pad_len: int) -> np.ndarray:
    """
    Mirror pad_len samples on each side, excluding the edge sample.

    Signals shorter than the pad clamp their mirror index to the buffer, and
    an empty signal pads with zeros.
    """
    samples = np.asarray(samples, dtype=np.float32)
    n = len(samples)
    if n == 0:
        return np.zeros(2 * pad_len, dtype=np.float32)

    left_idx = np.minimum(np.arange(pad_len, 0, -1), n - 1)
    offsets = np.arange(1, pad_len + 1)
    right_idx = np.where(n > offsets + 1, n - 1 - offsets, 0)
    return np.concatenate([samples[left_idx], samples, samples[right_idx]])


# -------------------------
# RESAMPLING
# -------------------------
@lru_cache(maxsize=8)
def _polyphase_filter(up: int, down: int) -> np.ndarray:
    """Kaiser-windowed low-pass FIR at the upsampled rate, cut just below the lower Nyquist."""
    max_rate = max(up, down)
    half_len = config.RESAMPLE_HALF_ZEROS * max_rate
    return scipy_signal.firwin(
        2 * half_len + 1,
        config.RESAMPLE_CUTOFF / max_rate,
        window=("kaiser", config.RESAMPLE_KAISER_BETA),
    )


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """
    Band-limited polyphase resampling of a whole mono buffer.

    Identity when the rates match. Output length is round(len * to/from).

    Raises:
        ResampleError: If either rate is not positive
    """
    if from_rate <= 0 or to_rate <= 0:
        raise ResampleError(f"Invalid sample rates: {from_rate} -> {to_rate}")

    samples = np.asarray(samples, dtype=np.float32)
    if from_rate == to_rate:
        return samples

    n_out = int(round(len(samples) * to_rate / from_rate))
    if len(samples) == 0 or n_out == 0:
        return np.zeros(0, dtype=np.float32)

    g = gcd(from_rate, to_rate)
    up, down = to_rate // g, from_rate // g
    out = scipy_signal.resample_poly(
        samples.astype(np.float64), up, down, window=_polyphase_filter(up, down)
    )

    # resample_poly yields ceil(len * up / down) samples
    if len(out) < n_out:
        out = np.pad(out, (0, n_out - len(out)))
    return out[:n_out].astype(np.float32)


# -------------------------
# FFT
# -------------------------
@lru_cache(maxsize=8)
def _bit_reverse_indices(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    idx = np.arange(n)
    rev = np.zeros(n, dtype=np.int64)
    for b in range(bits):
        rev |= ((idx >> b) & 1) << (bits - 1 - b)
    return rev


def fft_in_place(re: np.ndarray, im: np.ndarray) -> None:
    """
    Iterative radix-2 Cooley-Tukey FFT over the last axis.

    re and im are C-contiguous float32 arrays of identical shape [..., n],
    overwritten with the transform. n must be a power of two.
    """
    n = re.shape[-1]
    if n <= 0 or n & (n - 1):
        raise ValueError(f"FFT size must be a power of two, got {n}")
    if re.shape != im.shape:
        raise ValueError("re and im must have the same shape")
    if not (re.flags.c_contiguous and im.flags.c_contiguous):
        raise ValueError("re and im must be C-contiguous")

    rev = _bit_reverse_indices(n)
    re[...] = re[..., rev]
    im[...] = im[..., rev]

    lead = re.shape[:-1]
    half = 1
    while half < n:
        step = half * 2
        angle = _F32(-np.pi / half) * np.arange(half, dtype=_F32)
        w_re = np.cos(angle)
        w_im = np.sin(angle)

        r = re.reshape(lead + (n // step, step))
        i = im.reshape(lead + (n // step, step))
        a_re, b_re = r[..., :half], r[..., half:]
        a_im, b_im = i[..., :half], i[..., half:]

        tr = w_re * b_re - w_im * b_im
        ti = w_re * b_im + w_im * b_re
        b_re[...] = a_re - tr
        b_im[...] = a_im - ti
        a_re += tr
        a_im += ti
        half = step


# -------------------------
# MEL
# -------------------------
def hann_window(length: int) -> np.ndarray:
    """Periodic Hann window."""
    i = np.arange(length, dtype=_F32)
    return (_F32(0.5) * (_F32(1.0) - np.cos(_F32(2.0 * np.pi) * i / _F32(length)))).astype(_F32)


def hz_to_mel(hz):
    """HTK mel scale."""
    return _F32(2595.0) * np.log10(_F32(1.0) + np.asarray(hz, dtype=_F32) / _F32(700.0))


def mel_to_hz(mel):
    return _F32(700.0) * (np.power(_F32(10.0), np.asarray(mel, dtype=_F32) / _F32(2595.0)) - _F32(1.0))


def mel_filterbank(
    n_mels: int, n_fft: int, sample_rate: int, fmin: float, fmax: float
) -> np.ndarray:
    """Triangular filters, shape [n_mels, n_fft // 2 + 1]."""
    n_bins = n_fft // 2 + 1
    mel_min = hz_to_mel(fmin)
    mel_max = hz_to_mel(fmax)
    mel_points = mel_min + (mel_max - mel_min) * np.arange(n_mels + 2, dtype=_F32) / _F32(n_mels + 1)
    bin_points = mel_to_hz(mel_points) * _F32(n_bins - 1) * _F32(2.0) / _F32(sample_rate)

    k = np.arange(n_bins, dtype=_F32)[None, :]
    left = bin_points[:-2, None]
    center = bin_points[1:-1, None]
    right = bin_points[2:, None]
    rise_den = center - left
    fall_den = right - center

    with np.errstate(divide="ignore", invalid="ignore"):
        rising = np.where(np.abs(rise_den) < 1e-6, _F32(0.0), (k - left) / rise_den)
        falling = np.where(np.abs(fall_den) < 1e-6, _F32(0.0), (right - k) / fall_den)

    bank = np.where(
        (k >= left) & (k <= center),
        rising,
        np.where((k > center) & (k <= right), falling, _F32(0.0)),
    )
    return bank.astype(_F32)


def mel_num_frames(num_samples: int, cfg: MelConfig) -> int:
    """Frame count mel_spectrogram produces for num_samples, without computing it."""
    if num_samples <= 0:
        return 0
    padded_len = num_samples + 2 * (cfg.n_fft // 2)
    if padded_len < cfg.n_fft:
        return 0
    return (padded_len - cfg.n_fft) // cfg.hop_length + 1


def mel_spectrogram(samples: np.ndarray, cfg: MelConfig) -> np.ndarray:
    """
    Log-mel spectrogram as a C-contiguous float32 array [n_mels, n_frames].

    Steps: reflect-pad by n_fft/2, Hann-windowed frames of win_length
    zero-padded to n_fft every hop_length samples, radix-2 FFT, power
    spectrum, HTK mel filterbank, optional log(x + 1e-10), optional
    per-row zero-mean / unit-variance normalization.
    """
    samples = np.asarray(samples, dtype=_F32)
    n_frames = mel_num_frames(len(samples), cfg)
    if n_frames == 0:
        return np.zeros((cfg.n_mels, 0), dtype=_F32)

    padded = reflect_pad(samples, cfg.n_fft // 2)
    starts = np.arange(n_frames) * cfg.hop_length
    frames = padded[starts[:, None] + np.arange(cfg.win_length)[None, :]]

    re = np.zeros((n_frames, cfg.n_fft), dtype=_F32)
    re[:, : cfg.win_length] = frames * hann_window(cfg.win_length)
    im = np.zeros_like(re)
    fft_in_place(re, im)

    n_bins = cfg.n_fft // 2 + 1
    power = re[:, :n_bins] ** 2 + im[:, :n_bins] ** 2
    bank = mel_filterbank(cfg.n_mels, cfg.n_fft, cfg.sample_rate, cfg.fmin, cfg.effective_fmax)
    mel = bank @ power.T

    if cfg.log_scale:
        mel = np.log(mel + _F32(config.LOG_FLOOR))

    if cfg.normalize_per_feature and n_frames > 1:
        mean = mel.mean(axis=1, keepdims=True)
        std = np.sqrt(((mel - mean) ** 2).mean(axis=1, keepdims=True))
        mel = (mel - mean) / np.maximum(std, _F32(config.STD_FLOOR))

    return np.ascontiguousarray(mel, dtype=_F32)
