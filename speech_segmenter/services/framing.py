from collections import deque
from typing import Iterator

import numpy as np


def as_samples(chunk: np.ndarray | list[float]) -> np.ndarray:
    """Convert an incoming chunk to a flat float32 array."""
    arr = np.asarray(chunk)
    if arr.ndim > 1:
        arr = arr.reshape(-1)
    if arr.dtype == np.int16:
        return arr.astype(np.float32) / 32768.0
    return arr.astype(np.float32, copy=False)


class FrameAccumulator:
    """Cuts arbitrarily sized chunks into fixed-size analysis frames.

    Leftover samples are kept until the next push; nothing is dropped.
    """

    def __init__(self, frame_size: int) -> None:
        if frame_size <= 0:
            raise ValueError(f"frame_size must be positive, got {frame_size}")
        self._frame_size = int(frame_size)
        self._buffer: deque[np.ndarray] = deque()
        self._buffer_samples = 0

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def pending(self) -> int:
        """Number of buffered samples not yet forming a full frame."""
        return self._buffer_samples

    def push(self, chunk: np.ndarray | list[float]) -> list[np.ndarray]:
        samples = as_samples(chunk)
        if samples.shape[0] == 0:
            return []
        self._buffer.append(samples)
        self._buffer_samples += samples.shape[0]
        return list(self._emit_frames())

    def clear(self) -> None:
        self._buffer.clear()
        self._buffer_samples = 0

    def _emit_frames(self) -> Iterator[np.ndarray]:
        if self._buffer_samples < self._frame_size:
            return
        combined = np.concatenate(list(self._buffer))
        self._buffer.clear()

        offset = 0
        while combined.shape[0] - offset >= self._frame_size:
            # copy so emitted frames never alias caller memory
            yield combined[offset:offset + self._frame_size].copy()
            offset += self._frame_size

        remainder = combined[offset:]
        if remainder.shape[0] > 0:
            self._buffer.append(remainder.copy())
        self._buffer_samples = remainder.shape[0]


class ContextWindow:
    """Trailing sample history prepended to each frame before classification."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"context size must be non-negative, got {size}")
        self._size = int(size)
        self._samples = np.zeros(self._size, dtype=np.float32)

    @property
    def size(self) -> int:
        return self._size

    @property
    def samples(self) -> np.ndarray:
        return self._samples.copy()

    def contextualize(self, frame: np.ndarray) -> np.ndarray:
        """Return context ++ frame as a new float32 array."""
        return np.concatenate([self._samples, frame.astype(np.float32, copy=False)])

    def advance(self, contextual: np.ndarray) -> None:
        """Keep the trailing `size` samples of the last classifier input."""
        if self._size == 0:
            return
        self._samples = contextual[-self._size:].astype(np.float32, copy=True)

    def reset(self) -> None:
        self._samples = np.zeros(self._size, dtype=np.float32)
