from typing import Any

import numpy as np
from silero_vad import load_silero_vad  # type: ignore

from speech_segmenter.core.logger import get_logger
from speech_segmenter.domain.errors import ClassifierLoadError
from speech_segmenter.domain.models import ClassifierResult
from speech_segmenter.ports.classifier import SpeechClassifierPort

logger = get_logger("adapters.audio.silerovad")


SUPPORTED_SAMPLE_RATES = (8000, 16000)
_STATE_SHAPE = (2, 1, 128)


class SileroClassifierAdapter(SpeechClassifierPort):
    """Speech probability classifier backed by the Silero VAD ONNX model.

    Runs the ONNX graph directly instead of the packaged iterator so that
    context and recurrent state stay owned by the caller. Each adapter holds
    its own inference session.
    """

    def __init__(self, *, opset_version: int = 16) -> None:
        self._opset_version = int(opset_version)
        self._session: Any | None = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    def open(self) -> None:
        if self._session is not None:
            return
        try:
            model = load_silero_vad(onnx=True, opset_version=self._opset_version)
        except Exception as exc:
            logger.exception("Failed to load Silero VAD model")
            raise ClassifierLoadError(f"Failed to initialize Silero VAD model: {exc}") from exc
        self._session = model.session
        logger.info("Silero VAD session opened (opset=%d)", self._opset_version)

    def close(self) -> None:
        if self._session is not None:
            logger.info("Silero VAD session closed")
        self._session = None

    def initial_state(self) -> np.ndarray:
        return np.zeros(_STATE_SHAPE, dtype=np.float32)

    def classify(self, frame: np.ndarray, state: Any, sample_rate: int) -> ClassifierResult:
        if self._session is None:
            raise RuntimeError("Silero VAD session is not open")
        if sample_rate not in SUPPORTED_SAMPLE_RATES:
            raise ValueError(f"Unsupported sample rate {sample_rate}, expected one of {SUPPORTED_SAMPLE_RATES}")

        ort_inputs = {
            "input": np.asarray(frame, dtype=np.float32).reshape(1, -1),
            "state": state,
            "sr": np.array(sample_rate, dtype=np.int64),
        }
        output, new_state = self._session.run(None, ort_inputs)
        probability = float(np.asarray(output).reshape(-1)[0])
        return ClassifierResult(probability=probability, state=new_state)


def preload_model(*, opset_version: int = 16) -> None:
    """Load the Silero model once so the first stream does not pay load latency.

    Raises:
        ClassifierLoadError: If the model cannot be loaded.
    """
    adapter = SileroClassifierAdapter(opset_version=opset_version)
    adapter.open()
    adapter.close()
    logger.info("Silero VAD model preloaded")
