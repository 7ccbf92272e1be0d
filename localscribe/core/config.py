"""
Core configuration constants for capture, features and decoding.
These are transport-agnostic settings.
"""

# -------------------------
# AUDIO CONFIG
# -------------------------
SAMPLE_RATE = 16000  # every engine consumes 16 kHz mono
CHANNELS = 1
LEVEL_WINDOW_MS = 100  # RMS window for the live input level
LEVEL_POLL_MS = 50  # ~20 Hz level updates

# -------------------------
# RESAMPLER (polyphase FIR)
# -------------------------
RESAMPLE_CUTOFF = 0.95  # fraction of the lower Nyquist
RESAMPLE_HALF_ZEROS = 32  # filter half-length in zero crossings
RESAMPLE_KAISER_BETA = 8.6

# -------------------------
# SILENCE CHUNKING
# -------------------------
RMS_WINDOW_MS = 100

# Streaming: drain once this much audio is buffered
STREAMING_CHUNK_S = 20.0
STREAMING_SPLIT_TARGET_S = 20.0
STREAMING_SPLIT_SEARCH_S = 2.0
CHUNK_POLL_S = 0.5

# Single-shot: whole recording split just under the 30 s model window
SINGLE_SHOT_SPLIT_TARGET_S = 28.0
SINGLE_SHOT_SPLIT_SEARCH_S = 3.0

# -------------------------
# MEL FEATURES (NeMo-compatible)
# -------------------------
N_FFT = 512
HOP_LENGTH = 160  # 10 ms
WIN_LENGTH = 400  # 25 ms
CTC_N_MELS = 80
TRANSDUCER_N_MELS = 128
LOG_FLOOR = 1e-10
STD_FLOOR = 1e-5

# -------------------------
# DECODING
# -------------------------
WORD_BOUNDARY = "▁"
MAX_SYMBOLS_PER_STEP = 10
TDT_DURATIONS = (0, 1, 2, 3, 4)
DEFAULT_STATE_SHAPE = (2, 1, 640)  # Parakeet TDT 0.6B decoder LSTM

# -------------------------
# ENGINES
# -------------------------
ONNX_INTRA_THREADS = 4
WHISPER_DEVICE = "cpu"
WHISPER_COMPUTE_TYPE = "int8"
WHISPER_BEAM_SIZE = 1
WARMUP_SECONDS = 1.0
ENGINE_IDLE_TIMEOUT_S = 300  # unload the engine after 5 min unused
