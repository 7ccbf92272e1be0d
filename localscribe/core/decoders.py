"""
Greedy decoders for CTC and token-and-duration transducer (TDT) models.
"""

import logging

import numpy as np

from . import config
from .errors import DecodeShapeMismatchError, InferenceError
from .runtime import TensorSession
from .vocabulary import Vocabulary

logger = logging.getLogger(__name__)


# -------------------------
# CTC
# -------------------------
def ctc_greedy_decode(logits: np.ndarray, vocabulary: Vocabulary) -> str:
    """
    Greedy CTC decoding of per-frame logits [T, V].

    Arg-max per frame, drop blanks, collapse immediate repeats (a blank in
    between starts a new token), then detokenize.

    Raises:
        DecodeShapeMismatchError: If logits are not 2-D or narrower than the vocabulary
    """
    logits = np.asarray(logits)
    if logits.ndim != 2:
        raise DecodeShapeMismatchError(f"Expected [T, V] logits, got shape {logits.shape}")
    if logits.shape[0] == 0:
        return ""
    if logits.shape[1] < vocabulary.size:
        raise DecodeShapeMismatchError(
            f"Logits width {logits.shape[1]} < vocabulary size {vocabulary.size}"
        )

    blank = vocabulary.blank_id
    token_ids: list[int] = []
    prev: int | None = None
    for token_id in np.argmax(logits, axis=1).tolist():
        if token_id == blank:
            prev = None
            continue
        if token_id == prev:
            continue
        prev = token_id
        token_ids.append(token_id)

    return vocabulary.detokenize(token_ids)


# -------------------------
# TRANSDUCER
# -------------------------
class DecoderJoint:
    """
    One prediction + joint network step of an exported TDT decoder.

    Wraps the decoder_joint session: feeds one encoder frame, the previous
    token and the two recurrent states; returns flat logits and new states.
    """

    ENCODER_INPUT = "encoder_outputs"
    TARGETS = "targets"
    TARGET_LENGTH = "target_length"
    STATE_INPUTS = ("input_states_1", "input_states_2")
    LOGITS = "outputs"
    STATE_OUTPUTS = ("output_states_1", "output_states_2")

    def __init__(self, session: TensorSession):
        self.session = session

    def declared_state_shapes(self) -> tuple[tuple[int, ...], tuple[int, ...]]:
        """
        Initial guess for the recurrent state shapes.

        Uses the session's declared input shape when every dimension is
        static, otherwise the Parakeet TDT 0.6B default (2, 1, 640).
        """
        shapes = []
        for name in self.STATE_INPUTS:
            try:
                declared = self.session.input_shape(name)
            except KeyError:
                declared = ()
            if declared and all(isinstance(d, int) and d > 0 for d in declared):
                shapes.append(tuple(declared))
            else:
                shapes.append(config.DEFAULT_STATE_SHAPE)
        return shapes[0], shapes[1]

    def step(
        self,
        encoder_frame: np.ndarray,
        prev_token: int,
        state1: np.ndarray,
        state2: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        inputs = {
            self.ENCODER_INPUT: np.asarray(encoder_frame, dtype=np.float32).reshape(1, -1, 1),
            self.TARGETS: np.array([[prev_token]], dtype=np.int32),
            self.TARGET_LENGTH: np.array([1], dtype=np.int32),
            self.STATE_INPUTS[0]: state1,
            self.STATE_INPUTS[1]: state2,
        }
        outputs = self.session.run(inputs)

        missing = [
            name for name in (self.LOGITS,) + self.STATE_OUTPUTS if name not in outputs
        ]
        if missing:
            raise InferenceError(f"Decoder outputs missing: {missing}")

        logits = np.asarray(outputs[self.LOGITS], dtype=np.float32).reshape(-1)
        new1 = np.asarray(outputs[self.STATE_OUTPUTS[0]], dtype=np.float32)
        new2 = np.asarray(outputs[self.STATE_OUTPUTS[1]], dtype=np.float32)
        return logits, new1, new2


class TransducerDecoder:
    """
    Greedy TDT decoding over encoder frames.

    Each step predicts a token and a duration (frames to skip). Non-blank
    tokens are emitted and become the next step's context. The cursor moves
    by the predicted duration; a zero duration moves one frame after a blank
    or once max_symbols_per_step tokens were emitted on the same frame, and
    otherwise stays put. The cap is what guarantees termination.
    """

    def __init__(
        self,
        joint: DecoderJoint,
        vocabulary: Vocabulary,
        durations: tuple[int, ...] = config.TDT_DURATIONS,
        max_symbols_per_step: int = config.MAX_SYMBOLS_PER_STEP,
    ):
        if max_symbols_per_step < 1:
            raise ValueError("max_symbols_per_step must be >= 1")
        self.joint = joint
        self.vocabulary = vocabulary
        self.durations = tuple(durations)
        self.max_symbols_per_step = max_symbols_per_step

    def _negotiate_states(
        self,
        state1: np.ndarray,
        state2: np.ndarray,
        new1: np.ndarray,
        new2: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Adopt the state shapes reported by the first step."""
        logger.debug("Decoder state shapes: %s, %s", new1.shape, new2.shape)
        if new1.shape != state1.shape:
            logger.info("Decoder state 1 shape %s (assumed %s)", new1.shape, state1.shape)
            state1 = np.zeros(new1.shape, dtype=np.float32)
        if new2.shape != state2.shape:
            logger.info("Decoder state 2 shape %s (assumed %s)", new2.shape, state2.shape)
            state2 = np.zeros(new2.shape, dtype=np.float32)
        return state1, state2

    def decode(self, encoder_out: np.ndarray, encoded_length: int) -> list[int]:
        """
        Decode encoder frames [T, D] into token ids.

        Raises:
            DecodeShapeMismatchError: If a step returns fewer logits than the vocabulary
        """
        length = min(int(encoded_length), len(encoder_out))
        vocab_size = self.vocabulary.size
        blank = self.vocabulary.blank_id
        n_durations = len(self.durations)

        shape1, shape2 = self.joint.declared_state_shapes()
        state1 = np.zeros(shape1, dtype=np.float32)
        state2 = np.zeros(shape2, dtype=np.float32)
        negotiated = False

        tokens: list[int] = []
        prev_token = blank
        t = 0
        emitted = 0

        while t < length:
            logits, new1, new2 = self.joint.step(encoder_out[t], prev_token, state1, state2)
            if not negotiated:
                state1, state2 = self._negotiate_states(state1, state2, new1, new2)
                negotiated = True

            if logits.size < vocab_size:
                raise DecodeShapeMismatchError(
                    f"Decoder logits {logits.size} < vocabulary size {vocab_size}"
                )

            token = int(np.argmax(logits[:vocab_size]))
            if n_durations and logits.size >= vocab_size + n_durations:
                skip = self.durations[int(np.argmax(logits[vocab_size : vocab_size + n_durations]))]
            else:
                skip = 0

            if token != blank:
                state1, state2 = new1, new2
                prev_token = token
                tokens.append(token)
                emitted += 1

            if skip > 0:
                t += skip
                emitted = 0
            elif token == blank or emitted >= self.max_symbols_per_step:
                t += 1
                emitted = 0

        return tokens

    def decode_text(self, encoder_out: np.ndarray, encoded_length: int) -> str:
        return self.vocabulary.detokenize(self.decode(encoder_out, encoded_length))
