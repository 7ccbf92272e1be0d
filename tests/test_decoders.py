"""Tests for CTC and transducer greedy decoding."""

import numpy as np
import pytest

from conftest import FakeSession, one_hot
from localscribe.core.config import TDT_DURATIONS
from localscribe.core.decoders import DecoderJoint, TransducerDecoder, ctc_greedy_decode
from localscribe.core.errors import DecodeShapeMismatchError, InferenceError

BLANK = 4
VOCAB_SIZE = 5


class TestCTCGreedyDecode:
    """Tests for ctc_greedy_decode."""

    def test_collapse_and_blanks(self, vocabulary):
        """Test repeats collapse and blanks are dropped."""
        logits = one_hot([0, 0, BLANK, 1, 1, BLANK, 2], VOCAB_SIZE)
        assert ctc_greedy_decode(logits, vocabulary) == "hello world"

    def test_blank_separates_repeats(self, vocabulary):
        """Test a blank between identical tokens keeps both."""
        logits = one_hot([1, BLANK, 1], VOCAB_SIZE)
        assert ctc_greedy_decode(logits, vocabulary) == "llollo"

    def test_blank_insertion_at_edges_is_neutral(self, vocabulary):
        """Test extra blanks at either end or next to blanks do not change the text."""
        base = [0, BLANK, 1, 2]
        padded = [BLANK, BLANK, 0, BLANK, BLANK, 1, 2, BLANK]
        assert ctc_greedy_decode(one_hot(base, VOCAB_SIZE), vocabulary) == ctc_greedy_decode(
            one_hot(padded, VOCAB_SIZE), vocabulary
        )

    def test_all_blank(self, vocabulary):
        """Test silence decodes to an empty string."""
        assert ctc_greedy_decode(one_hot([BLANK] * 10, VOCAB_SIZE), vocabulary) == ""

    def test_zero_frames(self, vocabulary):
        """Test an empty time axis."""
        assert ctc_greedy_decode(np.zeros((0, VOCAB_SIZE), dtype=np.float32), vocabulary) == ""

    def test_wider_logits_allowed(self, vocabulary):
        """Test logits wider than the vocabulary are accepted."""
        logits = np.zeros((2, VOCAB_SIZE + 3), dtype=np.float32)
        logits[0, 0] = 1.0
        logits[1, 1] = 1.0
        assert ctc_greedy_decode(logits, vocabulary) == "hello"

    def test_narrow_logits(self, vocabulary):
        """Test logits narrower than the vocabulary are rejected."""
        with pytest.raises(DecodeShapeMismatchError):
            ctc_greedy_decode(np.zeros((3, 3), dtype=np.float32), vocabulary)

    def test_wrong_rank(self, vocabulary):
        """Test non-2-D logits are rejected."""
        with pytest.raises(DecodeShapeMismatchError):
            ctc_greedy_decode(np.zeros(5, dtype=np.float32), vocabulary)


def scripted_joint(script, state_shape=(2, 1, 640), input_shapes=None, width=None):
    """
    Decoder session replaying (token, duration) pairs in order.

    Returns the session and the list of encoder frame indices it was fed.
    """
    steps = iter(script)
    width = width or VOCAB_SIZE + len(TDT_DURATIONS)

    def run(inputs):
        token, duration = next(steps)
        logits = np.full(width, -10.0, dtype=np.float32)
        logits[token] = 10.0
        if width >= VOCAB_SIZE + len(TDT_DURATIONS):
            logits[VOCAB_SIZE + TDT_DURATIONS.index(duration)] = 10.0
        return {
            "outputs": logits.reshape(1, 1, 1, -1),
            "output_states_1": np.ones(state_shape, dtype=np.float32),
            "output_states_2": np.ones(state_shape, dtype=np.float32),
        }

    session = FakeSession(
        run,
        input_names=[
            "encoder_outputs",
            "targets",
            "target_length",
            "input_states_1",
            "input_states_2",
        ],
        output_names=["outputs", "output_states_1", "output_states_2"],
        input_shapes=input_shapes or {
            "input_states_1": (2, "batch", 640),
            "input_states_2": (2, "batch", 640),
        },
    )
    return session


def frames(n: int, dim: int = 4) -> np.ndarray:
    """Encoder output [n, dim] whose row t is filled with t."""
    return np.repeat(np.arange(n, dtype=np.float32)[:, None], dim, axis=1)


def fed_frames(session) -> list[int]:
    return [int(call["encoder_outputs"][0, 0, 0]) for call in session.calls]


class TestDecoderJoint:
    """Tests for one decoder/joint step."""

    def test_step_inputs(self):
        """Test tensor shapes and dtypes fed to the session."""
        session = scripted_joint([(0, 1)])
        joint = DecoderJoint(session)
        state = np.zeros((2, 1, 640), dtype=np.float32)

        logits, new1, new2 = joint.step(np.ones(4), 3, state, state)

        inputs = session.calls[0]
        assert inputs["encoder_outputs"].shape == (1, 4, 1)
        assert inputs["encoder_outputs"].dtype == np.float32
        assert inputs["targets"].tolist() == [[3]]
        assert inputs["targets"].dtype == np.int32
        assert inputs["target_length"].tolist() == [1]
        assert inputs["target_length"].dtype == np.int32
        assert logits.ndim == 1
        assert new1.shape == (2, 1, 640)

    def test_missing_outputs(self):
        """Test a session without state outputs."""
        session = FakeSession(
            lambda inputs: {"outputs": np.zeros(10, dtype=np.float32)},
            input_names=[],
            output_names=["outputs"],
        )
        with pytest.raises(InferenceError):
            DecoderJoint(session).step(np.ones(4), 0, np.zeros(1), np.zeros(1))

    def test_declared_state_shapes(self):
        """Test static declared shapes are used and dynamic ones fall back."""
        static = scripted_joint([], input_shapes={
            "input_states_1": (1, 1, 8),
            "input_states_2": (1, 1, 8),
        })
        assert DecoderJoint(static).declared_state_shapes() == ((1, 1, 8), (1, 1, 8))

        dynamic = scripted_joint([])
        assert DecoderJoint(dynamic).declared_state_shapes() == ((2, 1, 640), (2, 1, 640))

        undeclared = scripted_joint([], input_shapes={})
        assert DecoderJoint(undeclared).declared_state_shapes() == ((2, 1, 640), (2, 1, 640))


class TestTransducerDecoder:
    """Tests for greedy TDT decoding."""

    def test_token_and_duration_rules(self, vocabulary):
        """Test emissions stay on a frame for duration 0 and skip frames otherwise."""
        session = scripted_joint([(0, 0), (1, 1), (BLANK, 0), (2, 2)])
        decoder = TransducerDecoder(DecoderJoint(session), vocabulary)

        tokens = decoder.decode(frames(4), 4)

        assert tokens == [0, 1, 2]
        assert fed_frames(session) == [0, 0, 1, 2]

    def test_previous_token_feedback(self, vocabulary):
        """Test the last emitted token is fed back, starting from blank."""
        session = scripted_joint([(0, 0), (BLANK, 1), (1, 1)])
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(2), 2)

        targets = [int(call["targets"][0, 0]) for call in session.calls]
        assert targets == [BLANK, 0, 0]

    def test_decode_text(self, vocabulary):
        """Test detokenized output."""
        session = scripted_joint([(0, 0), (1, 1), (2, 1), (3, 1)])
        text = TransducerDecoder(DecoderJoint(session), vocabulary).decode_text(frames(3), 3)
        assert text == "hello world!"

    def test_emission_cap_terminates(self, vocabulary):
        """Test a model that never advances is forced on after the cap."""
        session = scripted_joint([(3, 0)] * 100)
        decoder = TransducerDecoder(DecoderJoint(session), vocabulary, max_symbols_per_step=3)

        tokens = decoder.decode(frames(2), 2)

        assert tokens == [3] * 6
        assert fed_frames(session) == [0, 0, 0, 1, 1, 1]

    def test_encoded_length_limits_frames(self, vocabulary):
        """Test frames past encoded_length are not decoded."""
        session = scripted_joint([(BLANK, 0)] * 10)
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(5), 2)
        assert fed_frames(session) == [0, 1]

    def test_encoded_length_clamped_to_frames(self, vocabulary):
        """Test an encoded_length larger than the frame count."""
        session = scripted_joint([(BLANK, 0)] * 10)
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(2), 50)
        assert fed_frames(session) == [0, 1]

    def test_logits_without_durations(self, vocabulary):
        """Test a plain RNN-T joint (no duration logits) advances on blank only."""
        session = scripted_joint([(0, 0), (BLANK, 0), (BLANK, 0)], width=VOCAB_SIZE)
        tokens = TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(2), 2)
        assert tokens == [0]

    def test_state_shape_negotiation(self, vocabulary):
        """Test the state shape reported by the first step is adopted."""
        session = scripted_joint([(BLANK, 1), (BLANK, 1), (0, 1)], state_shape=(1, 1, 8))
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(3), 3)

        shapes = [call["input_states_1"].shape for call in session.calls]
        assert shapes == [(2, 1, 640), (1, 1, 8), (1, 1, 8)]
        # Blank steps do not advance the recurrent state
        assert not session.calls[2]["input_states_1"].any()

    def test_static_declared_state_shape(self, vocabulary):
        """Test a statically declared state shape is used from the first step."""
        session = scripted_joint(
            [(BLANK, 1)],
            state_shape=(1, 1, 8),
            input_shapes={"input_states_1": (1, 1, 8), "input_states_2": (1, 1, 8)},
        )
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(1), 1)
        assert session.calls[0]["input_states_1"].shape == (1, 1, 8)

    def test_state_updated_after_emission(self, vocabulary):
        """Test recurrent state advances only when a token is emitted."""
        session = scripted_joint([(0, 1), (BLANK, 1)], state_shape=(2, 1, 640))
        TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(2), 2)
        assert session.calls[1]["input_states_1"].all()

    def test_narrow_logits(self, vocabulary):
        """Test logits narrower than the vocabulary."""
        session = scripted_joint([(0, 0)], width=3)
        with pytest.raises(DecodeShapeMismatchError):
            TransducerDecoder(DecoderJoint(session), vocabulary).decode(frames(1), 1)

    def test_invalid_cap(self, vocabulary):
        """Test the emission cap must be positive."""
        with pytest.raises(ValueError):
            TransducerDecoder(DecoderJoint(scripted_joint([])), vocabulary, max_symbols_per_step=0)
