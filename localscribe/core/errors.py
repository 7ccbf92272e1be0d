"""
Exception hierarchy for capture, signal processing, inference and sessions.
"""


class LocalScribeError(Exception):
    """Base class for all localscribe errors."""


# -------------------------
# AUDIO
# -------------------------
class DeviceUnavailableError(LocalScribeError):
    """No usable input device; a session cannot start."""


class ResampleError(LocalScribeError):
    """Invalid resampling parameters. Fatal to the current buffer only."""


# -------------------------
# MODELS
# -------------------------
class ModelLoadError(LocalScribeError):
    """Missing model files, bad vocabulary or runtime init failure."""


class InferenceError(LocalScribeError):
    """Runtime execution error or unexpected tensor shape for one utterance."""


class DecodeShapeMismatchError(InferenceError):
    """Decoder logits are smaller than the vocabulary."""


# -------------------------
# SESSIONS
# -------------------------
class SessionError(LocalScribeError):
    """Session-level failure, distinct from transient per-chunk errors."""


class SessionActiveError(SessionError):
    """A recording session is already active."""


class NoActiveSessionError(SessionError):
    """There is no recording session to stop or cancel."""


class EngineNotLoadedError(SessionError):
    """No transcription engine has been activated."""
