"""
Mel feature extraction per model family.
"""

import numpy as np

from . import config
from .signal import MelConfig, mel_num_frames, mel_spectrogram


def mel_config_for(n_mels: int) -> MelConfig:
    """NeMo preprocessor settings: 25 ms Hann window, 10 ms hop, 512-point FFT."""
    return MelConfig(
        sample_rate=config.SAMPLE_RATE,
        n_fft=config.N_FFT,
        hop_length=config.HOP_LENGTH,
        win_length=config.WIN_LENGTH,
        n_mels=n_mels,
        fmin=0.0,
        fmax=0.0,
        log_scale=True,
        normalize_per_feature=True,
    )


CTC_MEL_CONFIG = mel_config_for(config.CTC_N_MELS)
TRANSDUCER_MEL_CONFIG = mel_config_for(config.TRANSDUCER_N_MELS)


class FeatureExtractor:
    """Turns a 16 kHz sample window into a batched mel tensor."""

    def __init__(self, mel_config: MelConfig):
        self.mel_config = mel_config

    def num_frames(self, num_samples: int) -> int:
        return mel_num_frames(num_samples, self.mel_config)

    def __call__(self, samples: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Compute model input features.

        Returns:
            (features [1, n_mels, n_frames] float32, lengths [1] int64)
        """
        mel = mel_spectrogram(samples, self.mel_config)
        n_frames = mel.shape[1]
        return mel[np.newaxis, :, :], np.array([n_frames], dtype=np.int64)
