"""
Microphone capture using PyAudio.
"""

import logging
import queue
import threading

import numpy as np
import pyaudio

from ..core import config
from ..core.errors import DeviceUnavailableError
from ..core.signal import resample, rms
from ..core.types import AudioBuffer

logger = logging.getLogger(__name__)


class AudioCapture:
    """
    Microphone input using PyAudio.

    Opens the default input device at its native rate and channel count.
    The PyAudio callback keeps only the first channel of each block and hands
    it to a queue; it never blocks on consumers. Everything else (level,
    draining, stopping) runs on the consumer side.
    """

    def __init__(
        self,
        target_rate: int = config.SAMPLE_RATE,
        level_window_ms: int = config.LEVEL_WINDOW_MS,
        frames_per_buffer: int = 1024,
    ):
        self.target_rate = target_rate
        self.level_window_ms = level_window_ms
        self.frames_per_buffer = frames_per_buffer

        self.device_rate = target_rate
        self.device_channels = config.CHANNELS
        self.stream_errors = 0

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None

        self._blocks: queue.SimpleQueue[np.ndarray] = queue.SimpleQueue()
        self._recording = threading.Event()

        # Consumer-side buffer
        self._lock = threading.Lock()
        self._pending: list[np.ndarray] = []
        self._pending_samples = 0
        self._recent = np.zeros(0, dtype=np.float32)

    def _callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[None, int]:
        """PyAudio callback."""
        if status_flags:
            self.stream_errors += 1
            logger.warning("Audio stream error (status flags %#x)", status_flags)
        if in_data is not None and self._recording.is_set():
            # Down-mix by keeping the first channel
            block = np.frombuffer(in_data, dtype=np.float32)[:: self.device_channels]
            self._blocks.put(block)
        return (None, pyaudio.paContinue)

    @staticmethod
    def list_input_devices() -> list[tuple[int, str]]:
        """(index, name) of every device with at least one input channel."""
        pa = pyaudio.PyAudio()
        try:
            devices = []
            for index in range(pa.get_device_count()):
                info = pa.get_device_info_by_index(index)
                if int(info.get("maxInputChannels", 0)) > 0:
                    devices.append((index, str(info.get("name", f"device {index}"))))
            return devices
        finally:
            pa.terminate()

    def start(self) -> None:
        """
        Start capturing audio from the default microphone.

        Raises:
            DeviceUnavailableError: If there is no usable input device
        """
        if self._stream is not None:
            return  # Already running

        self._pa = pyaudio.PyAudio()
        try:
            info = self._pa.get_default_input_device_info()
            channels = int(info["maxInputChannels"])
            if channels < 1:
                raise DeviceUnavailableError(f"{info.get('name')} has no input channels")
            self.device_rate = int(info["defaultSampleRate"])
            self.device_channels = channels

            self._reset_buffer()
            self.stream_errors = 0
            self._recording.set()
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=self.device_channels,
                rate=self.device_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._callback,
            )
            self._stream.start_stream()
        except OSError as exc:
            self._close_stream()
            raise DeviceUnavailableError(f"No input device available: {exc}") from exc
        except DeviceUnavailableError:
            self._close_stream()
            raise

        logger.info(
            "Audio capture started (%s, %dHz, %d channels)",
            info.get("name", "default input"),
            self.device_rate,
            self.device_channels,
        )

    def stop(self) -> AudioBuffer:
        """
        Stop capturing and return everything not yet drained, resampled to target_rate.
        """
        self._recording.clear()
        self._close_stream()

        with self._lock:
            self._collect()
            raw = self._take_pending()

        logger.info("Audio capture stopped: %d samples at %dHz", len(raw), self.device_rate)
        samples = resample(raw, self.device_rate, self.target_rate)
        return AudioBuffer(samples, self.target_rate, 1)

    def current_level(self) -> float:
        """RMS of the most recent level window of buffered audio, clamped to [0, 1]."""
        with self._lock:
            self._collect()
            if len(self._recent) == 0:
                return 0.0
            return min(rms(self._recent), 1.0)

    def buffered_seconds(self) -> float:
        """Seconds of audio captured since the last drain."""
        with self._lock:
            self._collect()
            return self._pending_samples / self.device_rate

    def drain(self) -> AudioBuffer:
        """Take the buffered audio at the device rate, leaving capture running."""
        with self._lock:
            self._collect()
            samples = self._take_pending()
        return AudioBuffer(samples, self.device_rate, 1)

    def _collect(self) -> None:
        """Move queued callback blocks into the pending buffer. Caller holds _lock."""
        window = max(1, int(self.device_rate * self.level_window_ms / 1000))
        while True:
            try:
                block = self._blocks.get_nowait()
            except queue.Empty:
                break
            self._pending.append(block)
            self._pending_samples += len(block)
            self._recent = np.concatenate([self._recent, block])[-window:]

    def _take_pending(self) -> np.ndarray:
        """Caller holds _lock."""
        if self._pending:
            samples = np.concatenate(self._pending).astype(np.float32, copy=False)
        else:
            samples = np.zeros(0, dtype=np.float32)
        self._pending = []
        self._pending_samples = 0
        self._recent = np.zeros(0, dtype=np.float32)
        return samples

    def _reset_buffer(self) -> None:
        with self._lock:
            while True:
                try:
                    self._blocks.get_nowait()
                except queue.Empty:
                    break
            self._take_pending()

    def _close_stream(self) -> None:
        self._recording.clear()
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as exc:
                logger.warning("Error closing audio stream: %s", exc)
            self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None

    def __enter__(self) -> "AudioCapture":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
