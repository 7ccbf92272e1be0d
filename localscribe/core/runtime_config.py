"""
Runtime configuration that can be modified during execution.
Thread-safe configuration store for tunable parameters.
"""

import dataclasses
import threading
from dataclasses import dataclass

from . import config


@dataclass
class RuntimeConfig:
    """
    Runtime-tunable configuration values.
    A session reads a snapshot when it starts; later changes apply to the next one.
    """

    # Language hint ("auto" lets the engine detect)
    language: str = "auto"

    # Streaming vs record-then-transcribe
    streaming: bool = True
    streaming_chunk_s: float = config.STREAMING_CHUNK_S
    streaming_split_target_s: float = config.STREAMING_SPLIT_TARGET_S
    streaming_split_search_s: float = config.STREAMING_SPLIT_SEARCH_S
    single_shot_split_target_s: float = config.SINGLE_SHOT_SPLIT_TARGET_S
    single_shot_split_search_s: float = config.SINGLE_SHOT_SPLIT_SEARCH_S
    rms_window_ms: float = config.RMS_WINDOW_MS

    # Loop cadence
    chunk_poll_s: float = config.CHUNK_POLL_S
    level_poll_s: float = config.LEVEL_POLL_MS / 1000.0

    # Transducer safety cap
    max_symbols_per_step: int = config.MAX_SYMBOLS_PER_STEP

    # Engine lifetime
    engine_idle_timeout_s: float | None = config.ENGINE_IDLE_TIMEOUT_S

    @property
    def language_hint(self) -> str | None:
        if not self.language or self.language == "auto":
            return None
        return self.language


class ConfigStore:
    """
    Thread-safe configuration store.
    """

    def __init__(self, initial: RuntimeConfig | None = None):
        self._config = initial or RuntimeConfig()
        self._lock = threading.RLock()

    def get(self) -> RuntimeConfig:
        """Get a copy of the current configuration."""
        with self._lock:
            return dataclasses.replace(self._config)

    def update(self, **kwargs) -> None:
        """
        Update configuration values.

        Args:
            **kwargs: Configuration fields to update

        Raises:
            ValueError: For unknown fields or an invalid symbol cap
        """
        known = {f.name for f in dataclasses.fields(RuntimeConfig)}
        unknown = set(kwargs) - known
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")
        if "max_symbols_per_step" in kwargs and kwargs["max_symbols_per_step"] < 1:
            raise ValueError("max_symbols_per_step must be >= 1")

        with self._lock:
            self._config = dataclasses.replace(self._config, **kwargs)
