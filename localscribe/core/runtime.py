"""
Tensor-execution runtime seam.

Engines talk to models only through TensorSession: named numpy inputs in,
named numpy outputs back. OnnxSession is the onnxruntime implementation.
"""

import logging
from pathlib import Path
from typing import Protocol

import numpy as np

from . import config
from .errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)


class TensorSession(Protocol):
    """Protocol for a loaded model session."""

    @property
    def input_names(self) -> list[str]: ...

    @property
    def output_names(self) -> list[str]: ...

    def input_shape(self, name: str) -> tuple: ...

    def run(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]: ...


class OnnxSession:
    """onnxruntime InferenceSession behind the TensorSession protocol."""

    def __init__(self, session):
        self._session = session
        self._inputs = {arg.name: tuple(arg.shape) for arg in session.get_inputs()}
        self._outputs = [arg.name for arg in session.get_outputs()]

    @classmethod
    def from_file(cls, path: Path, intra_threads: int = config.ONNX_INTRA_THREADS) -> "OnnxSession":
        """
        Load an ONNX model file.

        Raises:
            ModelLoadError: If the file is missing or the runtime rejects it
        """
        import onnxruntime as ort

        path = Path(path)
        if not path.exists():
            raise ModelLoadError(f"{path.name} not found in {path.parent}")

        options = ort.SessionOptions()
        options.intra_op_num_threads = intra_threads
        try:
            session = ort.InferenceSession(
                str(path), sess_options=options, providers=["CPUExecutionProvider"]
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load {path}: {exc}") from exc

        wrapped = cls(session)
        logger.info(
            "Loaded %s: inputs=%s outputs=%s", path.name, wrapped.input_names, wrapped.output_names
        )
        return wrapped

    @property
    def input_names(self) -> list[str]:
        return list(self._inputs)

    @property
    def output_names(self) -> list[str]:
        return list(self._outputs)

    def input_shape(self, name: str) -> tuple:
        return self._inputs[name]

    def run(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        try:
            values = self._session.run(None, inputs)
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc
        return dict(zip(self._outputs, values))
