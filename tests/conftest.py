"""Pytest configuration and fixtures."""

from typing import Callable

import numpy as np
import pytest

from localscribe.core.vocabulary import Vocabulary


class FakeSession:
    """In-memory TensorSession driven by a callable."""

    def __init__(
        self,
        run_fn: Callable[[dict], dict],
        input_names: list[str],
        output_names: list[str],
        input_shapes: dict | None = None,
    ):
        self._run_fn = run_fn
        self._input_names = list(input_names)
        self._output_names = list(output_names)
        self._input_shapes = input_shapes or {}
        self.calls: list[dict] = []

    @property
    def input_names(self) -> list[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> list[str]:
        return list(self._output_names)

    def input_shape(self, name: str) -> tuple:
        return self._input_shapes[name]

    def run(self, inputs: dict) -> dict:
        self.calls.append(inputs)
        return self._run_fn(inputs)


def one_hot(ids: list[int], width: int) -> np.ndarray:
    """Logits [T, width] whose arg-max per row is ids[t]."""
    logits = np.zeros((len(ids), width), dtype=np.float32)
    logits[np.arange(len(ids)), ids] = 1.0
    return logits


def sine(freq: float, seconds: float, sample_rate: int = 16000, amplitude: float = 0.5):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture
def vocabulary():
    """Five-token vocabulary; id 4 is blank."""
    return Vocabulary(("▁he", "llo", "▁world", "!", "<blk>"))


@pytest.fixture
def fake_session_cls():
    return FakeSession
