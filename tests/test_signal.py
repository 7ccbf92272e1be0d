"""Tests for signal module."""

import time

import numpy as np
import pytest

from conftest import sine
from localscribe.core.errors import ResampleError
from localscribe.core.features import CTC_MEL_CONFIG, TRANSDUCER_MEL_CONFIG, FeatureExtractor
from localscribe.core.signal import (
    MelConfig,
    fft_in_place,
    hann_window,
    mel_filterbank,
    mel_num_frames,
    mel_spectrogram,
    normalize,
    reflect_pad,
    resample,
    rms,
    window_rms,
)


class TestTimeDomain:
    """Tests for RMS, normalization and padding helpers."""

    def test_rms(self):
        """Test RMS of a constant-magnitude signal."""
        assert rms(np.array([1.0, -1.0, 1.0, -1.0])) == pytest.approx(1.0)
        assert rms(np.zeros(0)) == 0.0

    def test_window_rms_drops_partial_window(self):
        """Test that a trailing partial window is ignored."""
        samples = np.concatenate([np.ones(4), np.zeros(4), np.ones(2)])
        result = window_rms(samples, 4)
        assert result.tolist() == [1.0, 0.0]

    def test_normalize_peak(self):
        """Test in-place peak normalization."""
        samples = np.array([0.5, -0.25], dtype=np.float32)
        normalize(samples)
        assert samples.tolist() == [1.0, -0.5]

    def test_normalize_silence_untouched(self):
        """Test that silence is left alone."""
        samples = np.zeros(4, dtype=np.float32)
        normalize(samples)
        assert not samples.any()

    def test_reflect_pad(self):
        """Test mirror padding excludes the edge sample."""
        padded = reflect_pad(np.array([1, 2, 3, 4], dtype=np.float32), 2)
        assert padded.tolist() == [3, 2, 1, 2, 3, 4, 3, 2]

    def test_reflect_pad_empty(self):
        """Test padding an empty signal yields zeros."""
        padded = reflect_pad(np.zeros(0, dtype=np.float32), 3)
        assert padded.tolist() == [0.0] * 6

    def test_reflect_pad_short_signal(self):
        """Test signals shorter than the pad clamp the mirror index."""
        padded = reflect_pad(np.array([1, 2], dtype=np.float32), 3)
        assert len(padded) == 8
        assert padded[3:5].tolist() == [1, 2]


class TestResample:
    """Tests for polyphase resampling."""

    def test_identity_when_rates_match(self):
        """Test same-rate resampling returns the input unchanged."""
        samples = np.random.default_rng(0).standard_normal(1000).astype(np.float32)
        out = resample(samples, 16000, 16000)
        np.testing.assert_array_equal(out, samples)

    @pytest.mark.parametrize(
        "from_rate,to_rate,n_in,n_out",
        [(48000, 16000, 48000, 16000), (44100, 16000, 44100, 16000), (16000, 48000, 1000, 3000)],
    )
    def test_output_length(self, from_rate, to_rate, n_in, n_out):
        """Test output length is round(len * to / from)."""
        out = resample(np.zeros(n_in, dtype=np.float32), from_rate, to_rate)
        assert len(out) == n_out
        assert out.dtype == np.float32

    def test_invalid_rate(self):
        """Test non-positive rates raise ResampleError."""
        with pytest.raises(ResampleError):
            resample(np.zeros(10), 0, 16000)
        with pytest.raises(ResampleError):
            resample(np.zeros(10), 16000, -1)

    def test_empty_input(self):
        """Test empty input resamples to empty output."""
        assert len(resample(np.zeros(0), 48000, 16000)) == 0

    def test_passband_tone_preserved(self):
        """Test a 440 Hz tone keeps its level through 48k -> 16k."""
        tone = sine(440, 1.0, sample_rate=48000)
        out = resample(tone, 48000, 16000)
        middle = out[2000:-2000]
        assert rms(middle) == pytest.approx(0.5 / np.sqrt(2), abs=0.01)

    def test_stopband_tone_rejected(self):
        """Test a 10 kHz tone is removed when downsampling to 16 kHz."""
        tone = sine(10000, 1.0, sample_rate=48000)
        out = resample(tone, 48000, 16000)
        assert rms(out[2000:-2000]) < 0.05

    def test_fractional_ratio_tone_preserved(self):
        """Test 44.1k -> 16k keeps a passband tone."""
        tone = sine(1000, 1.0, sample_rate=44100)
        out = resample(tone, 44100, 16000)
        assert len(out) == 16000
        assert rms(out[2000:-2000]) == pytest.approx(0.5 / np.sqrt(2), abs=0.01)

    def test_long_recording_is_fast(self):
        """Test a minute of 48 kHz audio resamples well under real time."""
        samples = np.random.default_rng(1).standard_normal(48000 * 60).astype(np.float32)
        started = time.perf_counter()
        out = resample(samples, 48000, 16000)
        assert time.perf_counter() - started < 5.0
        assert len(out) == 16000 * 60


class TestFFT:
    """Tests for the radix-2 FFT."""

    def test_matches_numpy(self):
        """Test against numpy's FFT."""
        rng = np.random.default_rng(1)
        signal = rng.uniform(-1, 1, 512).astype(np.float32)
        re = signal.copy()
        im = np.zeros_like(re)
        fft_in_place(re, im)

        expected = np.fft.fft(signal.astype(np.float64))
        np.testing.assert_allclose(re, expected.real, atol=1e-3)
        np.testing.assert_allclose(im, expected.imag, atol=1e-3)

    def test_batched_rows(self):
        """Test transforming several rows at once."""
        rng = np.random.default_rng(2)
        signal = rng.uniform(-1, 1, (3, 64)).astype(np.float32)
        re = signal.copy()
        im = np.zeros_like(re)
        fft_in_place(re, im)

        expected = np.fft.fft(signal.astype(np.float64), axis=1)
        np.testing.assert_allclose(re, expected.real, atol=1e-4)
        np.testing.assert_allclose(im, expected.imag, atol=1e-4)

    def test_non_power_of_two(self):
        """Test that other sizes are rejected."""
        with pytest.raises(ValueError):
            fft_in_place(np.zeros(100, dtype=np.float32), np.zeros(100, dtype=np.float32))

    def test_shape_mismatch(self):
        """Test that re and im must match."""
        with pytest.raises(ValueError):
            fft_in_place(np.zeros(64, dtype=np.float32), np.zeros(32, dtype=np.float32))


class TestMel:
    """Tests for mel filterbank and spectrogram."""

    def test_hann_window_periodic(self):
        """Test periodic Hann window values."""
        np.testing.assert_allclose(hann_window(4), [0.0, 0.5, 1.0, 0.5], atol=1e-6)

    def test_filterbank_shape(self):
        """Test filterbank shape and value range."""
        bank = mel_filterbank(80, 512, 16000, 0.0, 8000.0)
        assert bank.shape == (80, 257)
        assert bank.dtype == np.float32
        assert bank.min() >= 0.0
        assert bank.max() <= 1.0 + 1e-5

    def test_num_frames(self):
        """Test frame count formula."""
        assert mel_num_frames(16000, CTC_MEL_CONFIG) == 101
        assert mel_num_frames(1, CTC_MEL_CONFIG) == 1
        assert mel_num_frames(0, CTC_MEL_CONFIG) == 0

    @pytest.mark.parametrize("cfg", [CTC_MEL_CONFIG, TRANSDUCER_MEL_CONFIG])
    def test_num_frames_matches_spectrogram(self, cfg):
        """Test the frame count equals the spectrogram width for every length up to 2 * n_fft."""
        samples = np.random.default_rng(7).standard_normal(2 * cfg.n_fft).astype(np.float32)
        for n in range(0, 2 * cfg.n_fft):
            assert mel_num_frames(n, cfg) == mel_spectrogram(samples[:n], cfg).shape[1], n

    def test_spectrogram_shape(self):
        """Test spectrogram layout and dtype."""
        samples = sine(440, 1.0)
        mel = mel_spectrogram(samples, CTC_MEL_CONFIG)
        assert mel.shape == (80, 101)
        assert mel.dtype == np.float32
        assert mel.flags.c_contiguous

    def test_spectrogram_empty(self):
        """Test empty input gives zero frames."""
        mel = mel_spectrogram(np.zeros(0, dtype=np.float32), TRANSDUCER_MEL_CONFIG)
        assert mel.shape == (128, 0)

    def test_per_feature_normalization(self):
        """Test every mel row is zero-mean, unit-variance."""
        noise = np.random.default_rng(3).standard_normal(16000).astype(np.float32) * 0.1
        mel = mel_spectrogram(noise, CTC_MEL_CONFIG)
        np.testing.assert_allclose(mel.mean(axis=1), 0.0, atol=1e-3)
        np.testing.assert_allclose(mel.std(axis=1), 1.0, rtol=1e-2)

    def test_single_frame_not_normalized(self):
        """Test a single frame keeps raw log-mel values."""
        mel = mel_spectrogram(np.full(100, 0.1, dtype=np.float32), CTC_MEL_CONFIG)
        assert mel.shape == (80, 1)
        assert np.isfinite(mel).all()
        assert np.abs(mel).max() > 1.0

    def test_invalid_config(self):
        """Test MelConfig validation."""
        with pytest.raises(ValueError):
            MelConfig(n_fft=500)
        with pytest.raises(ValueError):
            MelConfig(n_fft=512, win_length=600)
        with pytest.raises(ValueError):
            MelConfig(hop_length=0)


class TestFeatureExtractor:
    """Tests for batched model features."""

    def test_ctc_features(self):
        """Test CTC feature tensor shapes and dtypes."""
        features, lengths = FeatureExtractor(CTC_MEL_CONFIG)(sine(300, 0.5))
        assert features.shape == (1, 80, 51)
        assert features.dtype == np.float32
        assert lengths.dtype == np.int64
        assert lengths.tolist() == [51]

    def test_transducer_features(self):
        """Test transducer models use 128 mel bins."""
        extractor = FeatureExtractor(TRANSDUCER_MEL_CONFIG)
        features, lengths = extractor(sine(300, 1.0))
        assert features.shape == (1, 128, 101)
        assert extractor.num_frames(16000) == lengths[0]
