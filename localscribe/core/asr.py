"""
ASR engines: Whisper (faster-whisper), Parakeet CTC and Parakeet TDT (ONNX).
This module is independent of any transport or UI.

The three families form a closed set. A single TranscriptionEngine holds
whichever model files its kind needs and dispatches on EngineKind.
"""

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable

import numpy as np

from . import config
from .decoders import DecoderJoint, TransducerDecoder, ctc_greedy_decode
from .errors import (
    EngineNotLoadedError,
    InferenceError,
    LocalScribeError,
    ModelLoadError,
)
from .features import CTC_MEL_CONFIG, TRANSDUCER_MEL_CONFIG, FeatureExtractor
from .runtime import OnnxSession, TensorSession
from .types import AudioBuffer, Segment, TranscriptionResult
from .vocabulary import Vocabulary, load_vocabulary

logger = logging.getLogger(__name__)

CTC_MODEL_FILE = "model.onnx"
ENCODER_MODEL_FILE = "encoder-model.onnx"
DECODER_MODEL_FILE = "decoder_joint-model.onnx"
WHISPER_MODEL_FILE = "model.bin"

# Transducer encoder output names
ENCODER_OUTPUT = "outputs"
ENCODED_LENGTHS = "encoded_lengths"

SessionFactory = Callable[[Path], TensorSession]


class EngineKind(str, Enum):
    WHISPER = "whisper"
    CTC = "ctc"
    TRANSDUCER = "transducer"

    @classmethod
    def from_model_id(cls, model_id: str) -> "EngineKind":
        """Infer the architecture from a catalog id such as 'parakeet-tdt-0.6b-v3'."""
        lowered = model_id.lower()
        if "whisper" in lowered:
            return cls.WHISPER
        if "tdt" in lowered:
            return cls.TRANSDUCER
        return cls.CTC


def resolve_model_dir(model_path: Path) -> Path:
    """A model path may name the directory or any file inside it."""
    model_path = Path(model_path)
    return model_path if model_path.is_dir() else model_path.parent


def _require_file(path: Path) -> Path:
    if not path.exists():
        raise ModelLoadError(f"{path.name} not found in {path.parent}")
    return path


def _load_whisper(model_dir: Path):
    from faster_whisper import WhisperModel

    try:
        return WhisperModel(
            str(model_dir),
            device=config.WHISPER_DEVICE,
            compute_type=config.WHISPER_COMPUTE_TYPE,
        )
    except Exception as exc:
        raise ModelLoadError(f"Failed to load Whisper model from {model_dir}: {exc}") from exc


class TranscriptionEngine:
    """
    Speech-to-text over one loaded model.

    Inference calls are serialized by an internal lock; a model session is
    never used by two threads at once.
    """

    def __init__(
        self,
        kind: EngineKind,
        model_id: str,
        *,
        vocabulary: Vocabulary | None = None,
        model_session: TensorSession | None = None,
        decoder_session: TensorSession | None = None,
        whisper_model=None,
        max_symbols_per_step: int = config.MAX_SYMBOLS_PER_STEP,
    ):
        self.kind = kind
        self.model_id = model_id
        self.vocabulary = vocabulary
        self._model_session = model_session
        self._whisper_model = whisper_model
        self._decoder: TransducerDecoder | None = None
        self.features: FeatureExtractor | None = None

        if kind is EngineKind.WHISPER:
            if whisper_model is None:
                raise ValueError("Whisper engine needs a whisper_model")
        else:
            if model_session is None or vocabulary is None:
                raise ValueError(f"{kind.value} engine needs a model session and vocabulary")
            if kind is EngineKind.CTC:
                self.features = FeatureExtractor(CTC_MEL_CONFIG)
            else:
                if decoder_session is None:
                    raise ValueError("Transducer engine needs a decoder session")
                self.features = FeatureExtractor(TRANSDUCER_MEL_CONFIG)
                self._decoder = TransducerDecoder(
                    DecoderJoint(decoder_session),
                    vocabulary,
                    max_symbols_per_step=max_symbols_per_step,
                )

        self._lock = threading.Lock()
        self._loaded = True
        self._warm = False

    @classmethod
    def load(
        cls,
        model_id: str,
        model_path: Path,
        *,
        session_factory: SessionFactory = OnnxSession.from_file,
        max_symbols_per_step: int = config.MAX_SYMBOLS_PER_STEP,
    ) -> "TranscriptionEngine":
        """
        Locate and load the files for model_id's family.

        Raises:
            ModelLoadError: Missing files, bad vocabulary or runtime init failure
        """
        kind = EngineKind.from_model_id(model_id)
        model_dir = resolve_model_dir(Path(model_path))
        logger.info("Loading %s model %s from %s", kind.value, model_id, model_dir)

        if kind is EngineKind.WHISPER:
            _require_file(model_dir / WHISPER_MODEL_FILE)
            return cls(kind, model_id, whisper_model=_load_whisper(model_dir))

        if kind is EngineKind.CTC:
            model_file = _require_file(model_dir / CTC_MODEL_FILE)
            vocabulary = load_vocabulary(model_dir)
            engine = cls(
                kind,
                model_id,
                vocabulary=vocabulary,
                model_session=session_factory(model_file),
            )
        else:
            encoder_file = _require_file(model_dir / ENCODER_MODEL_FILE)
            decoder_file = _require_file(model_dir / DECODER_MODEL_FILE)
            vocabulary = load_vocabulary(model_dir)
            engine = cls(
                kind,
                model_id,
                vocabulary=vocabulary,
                model_session=session_factory(encoder_file),
                decoder_session=session_factory(decoder_file),
                max_symbols_per_step=max_symbols_per_step,
            )

        mel = engine.features.mel_config
        logger.info(
            "%s engine loaded (n_mels=%d, win_length=%d)", kind.value, mel.n_mels, mel.win_length
        )
        return engine

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def unload(self) -> None:
        """Drop model sessions. Later transcribe calls raise EngineNotLoadedError."""
        with self._lock:
            self._model_session = None
            self._whisper_model = None
            self._decoder = None
            self._loaded = False
            self._warm = False
        logger.info("Unloaded %s", self.model_id)

    def transcribe(self, audio: AudioBuffer, language: str | None = None) -> TranscriptionResult:
        """
        Transcribe 16 kHz mono audio.

        Args:
            audio: Buffer at config.SAMPLE_RATE
            language: ISO 639-1 hint, or None / "auto" to detect

        Raises:
            EngineNotLoadedError: After unload()
            InferenceError: Runtime failure or unexpected tensor shapes
        """
        if audio.sample_rate != config.SAMPLE_RATE:
            raise InferenceError(
                f"Expected {config.SAMPLE_RATE}Hz audio, got {audio.sample_rate}Hz"
            )
        hint = None if language in (None, "", "auto") else language
        samples = np.asarray(audio.samples, dtype=np.float32)

        start = time.perf_counter()
        with self._lock:
            if not self._loaded:
                raise EngineNotLoadedError(f"{self.model_id} is not loaded")
            if len(samples) == 0:
                return TranscriptionResult(text="", language=hint, duration_ms=0)

            segments = None
            if self.kind is EngineKind.WHISPER:
                text, language, segments = self._transcribe_whisper(samples, hint)
            elif self.kind is EngineKind.CTC:
                text = self._transcribe_ctc(samples)
                language = hint or "en"
            else:
                text = self._transcribe_transducer(samples)
                language = hint or "en"

        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info('Transcription (%dms): "%s"', duration_ms, text)
        return TranscriptionResult(
            text=text, language=language, duration_ms=duration_ms, segments=segments
        )

    def warm_up(self) -> None:
        """Run one short silent inference so the first real chunk is not slowed down."""
        if self._warm:
            return
        silence = np.zeros(int(config.WARMUP_SECONDS * config.SAMPLE_RATE), dtype=np.float32)
        self.transcribe(AudioBuffer(silence, config.SAMPLE_RATE))
        self._warm = True
        logger.debug("Warmed up %s", self.model_id)

    def cool_down(self) -> None:
        self._warm = False

    # -------------------------
    # Per-family inference
    # -------------------------
    def _run_features(self, session: TensorSession, samples: np.ndarray) -> dict[str, np.ndarray]:
        features, lengths = self.features(samples)
        names = session.input_names
        inputs = {names[0]: features}
        if len(names) > 1:
            inputs[names[1]] = lengths
        logger.debug("Mel features: %s", features.shape)
        return session.run(inputs)

    def _transcribe_ctc(self, samples: np.ndarray) -> str:
        session = self._model_session
        outputs = self._run_features(session, samples)
        logits = np.asarray(outputs[session.output_names[0]], dtype=np.float32)
        logger.debug("CTC output shape: %s", logits.shape)

        if logits.ndim == 3:
            logits = logits[0]
        elif logits.ndim != 2:
            raise InferenceError(f"Unexpected CTC output shape: {logits.shape}")
        return ctc_greedy_decode(logits, self.vocabulary)

    def _transcribe_transducer(self, samples: np.ndarray) -> str:
        outputs = self._run_features(self._model_session, samples)
        if ENCODER_OUTPUT not in outputs or ENCODED_LENGTHS not in outputs:
            raise InferenceError(
                f"Encoder outputs must include '{ENCODER_OUTPUT}' and '{ENCODED_LENGTHS}'"
            )

        encoded = np.asarray(outputs[ENCODER_OUTPUT], dtype=np.float32)
        if encoded.ndim != 3:
            raise InferenceError(f"Unexpected encoder output shape: {encoded.shape}")

        # [1, D, T'] -> [T', D] for frame-by-frame access
        frames = np.ascontiguousarray(encoded[0].T)
        encoded_length = int(np.asarray(outputs[ENCODED_LENGTHS]).reshape(-1)[0])
        logger.debug("Encoder: %d frames x %d dim, encoded_length=%d", *frames.shape, encoded_length)
        return self._decoder.decode_text(frames, encoded_length)

    def _transcribe_whisper(
        self, samples: np.ndarray, language: str | None
    ) -> tuple[str, str | None, list[Segment]]:
        try:
            segments_iter, info = self._whisper_model.transcribe(
                samples,
                language=language,
                beam_size=config.WHISPER_BEAM_SIZE,
                condition_on_previous_text=False,
            )
            raw_segments = list(segments_iter)
        except LocalScribeError:
            raise
        except Exception as exc:
            raise InferenceError(f"Whisper transcription failed: {exc}") from exc

        segments = [
            Segment(
                start_ms=int(seg.start * 1000),
                end_ms=int(seg.end * 1000),
                text=seg.text.strip(),
            )
            for seg in raw_segments
        ]
        text = "".join(seg.text for seg in raw_segments).strip()
        return text, info.language or language, segments


class EngineManager:
    """
    Owns the active engine.

    Constructed explicitly and passed to whoever needs an engine. Sessions
    acquire() the engine for their lifetime; when nothing holds it for
    idle_timeout_s the engine is unloaded. An engine replaced or deactivated
    while borrowed is unloaded on its last release().
    """

    def __init__(
        self,
        loader: Callable[..., TranscriptionEngine] = TranscriptionEngine.load,
        idle_timeout_s: float | None = None,
    ):
        self._loader = loader
        self.idle_timeout_s = idle_timeout_s
        self._engine: TranscriptionEngine | None = None
        # id(engine) -> number of sessions holding it
        self._holders: dict[int, int] = {}
        self._retired: dict[int, TranscriptionEngine] = {}
        self._idle_timer: threading.Timer | None = None
        self._lock = threading.RLock()

    @property
    def active(self) -> TranscriptionEngine | None:
        with self._lock:
            return self._engine

    def in_use(self) -> bool:
        with self._lock:
            return bool(self._holders)

    def activate(self, model_id: str, model_path: Path, **load_kwargs) -> TranscriptionEngine:
        """
        Load a new engine and make it active.

        The previous engine stays active if loading fails.
        """
        engine = self._loader(model_id, model_path, **load_kwargs)
        with self._lock:
            previous = self._engine if self._engine is not engine else None
            self._engine = engine
            self._arm_idle_timer()
            previous = self._retire(previous)
        if previous is not None:
            previous.unload()
        return engine

    def deactivate(self) -> None:
        with self._lock:
            engine = self._engine
            self._engine = None
            self._cancel_idle_timer()
            engine = self._retire(engine)
        if engine is not None:
            engine.unload()

    def acquire(self) -> TranscriptionEngine:
        """
        Borrow the active engine until release().

        Raises:
            EngineNotLoadedError: If no engine is active
        """
        with self._lock:
            if self._engine is None:
                raise EngineNotLoadedError("No STT model loaded")
            key = id(self._engine)
            self._holders[key] = self._holders.get(key, 0) + 1
            self._cancel_idle_timer()
            return self._engine

    def release(self, engine: TranscriptionEngine) -> None:
        """Return an engine taken with acquire()."""
        with self._lock:
            key = id(engine)
            count = self._holders.get(key, 0) - 1
            if count > 0:
                self._holders[key] = count
                return
            self._holders.pop(key, None)
            retired = self._retired.pop(key, None)
            if retired is None:
                self._arm_idle_timer()
        if retired is not None:
            logger.info("Unloading replaced engine %s", retired.model_id)
            retired.unload()

    def _retire(self, engine: TranscriptionEngine | None) -> TranscriptionEngine | None:
        """Return engine if it can be unloaded now, else park it until its last release."""
        if engine is None or id(engine) not in self._holders:
            return engine
        self._retired[id(engine)] = engine
        logger.info("Engine %s still in use, unloading after the session ends", engine.model_id)
        return None

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        if not self.idle_timeout_s or self._engine is None or id(self._engine) in self._holders:
            return
        self._idle_timer = threading.Timer(self.idle_timeout_s, self._on_idle)
        self._idle_timer.daemon = True
        self._idle_timer.start()

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _on_idle(self) -> None:
        with self._lock:
            if self._engine is None or id(self._engine) in self._holders:
                return
            engine = self._engine
            self._engine = None
            self._idle_timer = None
        logger.info("Engine idle for %.0fs, unloading", self.idle_timeout_s)
        engine.unload()
