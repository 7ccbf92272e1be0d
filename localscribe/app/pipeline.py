"""
Recording session pipeline: microphone -> chunking -> ASR -> merged transcript.

A session runs Idle -> Recording -> Transcribing -> Idle. Cancel from
Recording or Transcribing discards everything and returns to Idle.
"""

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Callable

import numpy as np

from ..core import config
from ..core.asr import EngineManager, TranscriptionEngine
from ..core.chunker import split_at_silence
from ..core.errors import (
    LocalScribeError,
    NoActiveSessionError,
    ResampleError,
    SessionActiveError,
    SessionError,
)
from ..core.runtime_config import ConfigStore, RuntimeConfig
from ..core.signal import resample
from ..core.types import (
    AudioBuffer,
    StreamingState,
    StreamingUpdate,
    TranscriptionResult,
)

if TYPE_CHECKING:
    from ..interfaces.microphone import AudioCapture

logger = logging.getLogger(__name__)


def default_capture() -> "AudioCapture":
    from ..interfaces.microphone import AudioCapture

    return AudioCapture()


class SessionStatus(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class StreamingOrchestrator:
    """
    Runs one recording session at a time.

    In streaming mode a chunk worker transcribes the captured audio every
    streaming_chunk_s seconds while recording continues, so stop() only has
    the tail left to do. In single-shot mode everything is transcribed on
    stop(). A level worker publishes the input level in both modes.

    Callbacks run on worker threads (on_level, on_partial) or on the caller
    of stop()/cancel() (on_status, on_result). A failing callback is logged.
    """

    def __init__(
        self,
        engines: EngineManager,
        config_store: ConfigStore | None = None,
        capture_factory: Callable[[], "AudioCapture"] | None = None,
        on_level: Callable[[float], None] | None = None,
        on_status: Callable[[SessionStatus], None] | None = None,
        on_partial: Callable[[StreamingUpdate], None] | None = None,
        on_result: Callable[[TranscriptionResult], None] | None = None,
    ):
        self.engines = engines
        self.config_store = config_store or ConfigStore()
        self.capture_factory = capture_factory or default_capture
        self.on_level = on_level
        self.on_status = on_status
        self.on_partial = on_partial
        self.on_result = on_result

        self._status = SessionStatus.IDLE
        self._status_lock = threading.Lock()
        self._closing = False

        # Per-session
        self._config: RuntimeConfig | None = None
        self._streaming = False
        self._engine: TranscriptionEngine | None = None
        self._capture: "AudioCapture | None" = None
        self._state: StreamingState | None = None
        self._state_lock = threading.Lock()
        self._carry_over: list[np.ndarray] = []
        self._failure: SessionError | None = None

        self._stop_event = threading.Event()
        self._cancelled = threading.Event()
        self._level_thread: threading.Thread | None = None
        self._chunk_thread: threading.Thread | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    # -------------------------
    # Session control
    # -------------------------
    def start(self, streaming: bool | None = None) -> None:
        """
        Begin recording.

        Args:
            streaming: Override the configured mode for this session

        Raises:
            SessionActiveError: A session is already running
            EngineNotLoadedError: No engine is active
            DeviceUnavailableError: The microphone could not be opened
        """
        with self._status_lock:
            if self._status is not SessionStatus.IDLE:
                raise SessionActiveError("Already recording")

            cfg = self.config_store.get()
            engine = self.engines.acquire()
            try:
                capture = self.capture_factory()
                capture.start()
            except Exception:
                self.engines.release(engine)
                raise

            self._config = cfg
            self._streaming = cfg.streaming if streaming is None else streaming
            self._engine = engine
            self._capture = capture
            self._state = StreamingState()
            self._carry_over = []
            self._failure = None
            self._stop_event.clear()
            self._cancelled.clear()
            self._closing = False
            self._status = SessionStatus.RECORDING

            self._level_thread = threading.Thread(target=self._level_worker, daemon=True)
            self._level_thread.start()
            if self._streaming:
                self._chunk_thread = threading.Thread(target=self._chunk_worker, daemon=True)
                self._chunk_thread.start()

        logger.info("Recording started (%s)", "streaming" if self._streaming else "single-shot")
        self._emit(self.on_status, SessionStatus.RECORDING)

    def stop(self) -> TranscriptionResult | None:
        """
        Stop recording and transcribe what has not been transcribed yet.

        Returns the merged transcript, or None if the session was cancelled
        while transcribing.

        Raises:
            NoActiveSessionError: Nothing is recording
            EngineNotLoadedError: The engine was unloaded under the session
            InferenceError, ResampleError: Single-shot transcription failed
        """
        with self._status_lock:
            if self._status is not SessionStatus.RECORDING or self._closing:
                raise NoActiveSessionError("Not recording")
            self._closing = True
            self._status = SessionStatus.TRANSCRIBING
        self._emit(self.on_status, SessionStatus.TRANSCRIBING)

        cfg = self._config
        result = None
        chunks = 0
        try:
            self._stop_event.set()
            self._join_workers()
            if self._failure is not None and not self._cancelled.is_set():
                raise self._failure
            try:
                tail = self._stop_capture()
            except ResampleError as exc:
                if not self._streaming:
                    raise
                logger.warning("Dropping recording tail: %s", exc)
                tail = None

            if self._streaming:
                self._transcribe_tail(
                    tail,
                    cfg.streaming_split_target_s,
                    cfg.streaming_split_search_s,
                    isolate_errors=True,
                )
            else:
                self._transcribe_tail(
                    tail,
                    cfg.single_shot_split_target_s,
                    cfg.single_shot_split_search_s,
                    isolate_errors=False,
                )

            if not self._cancelled.is_set():
                with self._state_lock:
                    result = self._state.to_result()
                    chunks = self._state.chunks_completed
        finally:
            self._finish_session()

        if result is None:
            logger.info("Transcription cancelled")
            return None

        logger.info("Session transcribed: %d chunks, %dms inference", chunks, result.duration_ms)
        self._emit(self.on_result, result)
        return result

    def cancel(self) -> None:
        """
        Abandon the session and discard all audio and text.

        Raises:
            NoActiveSessionError: Nothing is recording or transcribing
        """
        with self._status_lock:
            if self._status is SessionStatus.IDLE:
                raise NoActiveSessionError("Nothing to cancel")
            self._cancelled.set()
            self._stop_event.set()
            if self._closing:
                # stop() is transcribing; it sees the flag and cleans up
                return
            self._closing = True

        self._join_workers()
        try:
            self._stop_capture()
        except LocalScribeError as exc:
            logger.warning("Error stopping capture on cancel: %s", exc)
        finally:
            self._finish_session()
        logger.info("Recording cancelled")

    # -------------------------
    # Workers
    # -------------------------
    def _level_worker(self) -> None:
        capture = self._capture
        while not self._stop_event.wait(self._config.level_poll_s):
            self._emit(self.on_level, capture.current_level())

    def _chunk_worker(self) -> None:
        try:
            self._warm_up()
            self._chunk_loop()
        except SessionError as exc:
            # Reported by stop()
            logger.error("Streaming transcription stopped: %s", exc)
            self._failure = exc

    def _chunk_loop(self) -> None:
        cfg = self._config
        capture = self._capture
        while not self._stop_event.wait(cfg.chunk_poll_s):
            if capture.buffered_seconds() < cfg.streaming_chunk_s:
                continue
            block = capture.drain()
            try:
                samples = resample(block.samples, block.sample_rate, config.SAMPLE_RATE)
                self._transcribe_samples(
                    samples,
                    cfg.streaming_split_target_s,
                    cfg.streaming_split_search_s,
                    interruptible=True,
                    isolate_errors=True,
                )
            except ResampleError as exc:
                logger.warning("Dropping %.1fs of audio: %s", block.duration_s, exc)
            except SessionError:
                raise
            except Exception:
                logger.exception("Streaming chunk failed")

    def _warm_up(self) -> None:
        try:
            self._engine.warm_up()
        except SessionError:
            raise
        except Exception as exc:
            logger.warning("Engine warm-up failed: %s", exc)

    # -------------------------
    # Transcription
    # -------------------------
    def _transcribe_tail(
        self,
        tail: AudioBuffer | None,
        target_s: float,
        search_s: float,
        isolate_errors: bool,
    ) -> None:
        pieces = list(self._carry_over)
        if tail is not None:
            pieces.append(tail.samples)
        self._carry_over = []
        if not pieces:
            return

        samples = np.concatenate(pieces).astype(np.float32, copy=False)
        if len(samples) == 0:
            return
        logger.info("Transcribing remaining %.1fs", len(samples) / config.SAMPLE_RATE)
        self._transcribe_samples(
            samples, target_s, search_s, interruptible=False, isolate_errors=isolate_errors
        )

    def _transcribe_samples(
        self,
        samples: np.ndarray,
        target_s: float,
        search_s: float,
        interruptible: bool,
        isolate_errors: bool,
    ) -> None:
        """
        Split 16 kHz audio at silences and transcribe chunk by chunk.

        Liveness is checked before and after every chunk. On cancel the work
        is dropped. On stop (interruptible only) the untranscribed remainder
        is kept for the tail.
        """
        cfg = self._config
        bounds = split_at_silence(
            samples, config.SAMPLE_RATE, target_s, search_s, rms_window_ms=cfg.rms_window_ms
        )
        for bound in bounds:
            if self._cancelled.is_set():
                return
            if interruptible and self._stop_event.is_set():
                self._carry_over.append(samples[bound.start_sample :])
                return

            chunk = AudioBuffer(samples[bound.start_sample : bound.end_sample], config.SAMPLE_RATE)
            chunk_ms = int(chunk.duration_s * 1000)
            try:
                result = self._engine.transcribe(chunk, language=cfg.language_hint)
            except SessionError:
                raise
            except LocalScribeError as exc:
                if not isolate_errors:
                    raise
                logger.warning("Chunk transcription failed (%.1fs): %s", chunk.duration_s, exc)
                with self._state_lock:
                    self._state.skip_chunk(chunk_ms)
                continue

            if self._cancelled.is_set():
                return
            with self._state_lock:
                self._state.append_chunk(result, chunk_ms)
                update = StreamingUpdate(
                    text=self._state.completed_text,
                    chunks_completed=self._state.chunks_completed,
                )
            logger.debug("Chunk %d transcribed", update.chunks_completed)
            self._emit(self.on_partial, update)

    # -------------------------
    # Teardown
    # -------------------------
    def _join_workers(self) -> None:
        current = threading.current_thread()
        for thread in (self._chunk_thread, self._level_thread):
            if thread is not None and thread is not current:
                thread.join()
        self._chunk_thread = None
        self._level_thread = None

    def _stop_capture(self) -> AudioBuffer | None:
        capture = self._capture
        self._capture = None
        if capture is None:
            return None
        return capture.stop()

    def _finish_session(self) -> None:
        engine = self._engine
        self._engine = None
        if self._capture is not None:
            try:
                self._stop_capture()
            except LocalScribeError as exc:
                logger.warning("Error stopping capture: %s", exc)
        if engine is not None:
            try:
                engine.cool_down()
            except Exception as exc:
                logger.warning("Engine cool-down failed: %s", exc)
            self.engines.release(engine)

        with self._state_lock:
            self._state = None
        self._carry_over = []
        with self._status_lock:
            self._status = SessionStatus.IDLE
            self._closing = False
        self._emit(self.on_status, SessionStatus.IDLE)

    @staticmethod
    def _emit(callback: Callable | None, payload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Event callback failed")
