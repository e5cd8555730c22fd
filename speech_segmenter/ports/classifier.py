from typing import Any, Protocol

import numpy as np

from speech_segmenter.domain.models import ClassifierResult


class SpeechClassifierPort(Protocol):
    """Frame-level speech probability model.

    The engine owns one classifier instance for its whole lifetime:
    `open()` is called before the first frame and `close()` at shutdown.
    Model state is opaque; the engine only stores what `classify` returns
    and feeds it back on the next call.
    """

    def open(self) -> None:
        """Acquire the inference session. Must be idempotent."""
        ...

    def close(self) -> None:
        """Release the inference session."""
        ...

    def initial_state(self) -> Any:
        """Return the canonical zero model state."""
        ...

    def classify(self, frame: np.ndarray, state: Any, sample_rate: int) -> ClassifierResult:
        """Score one contextual frame.

        Args:
            frame: float32 array of context + frame samples.
            state: Model state returned by the previous call, or
                `initial_state()` after a reset.
            sample_rate: Sample rate of `frame` in Hz.

        Returns:
            ClassifierResult with speech probability in [0, 1] and the
            updated model state.

        Raises:
            Exception: Any failure is treated by the engine as a transient
                per-frame error.
        """
        ...
