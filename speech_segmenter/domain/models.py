from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

import numpy as np


T = TypeVar("T")


def _empty_audio() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


class VadState(str, Enum):
    """Hysteresis states of the VAD engine."""

    SILENT = "silent"
    DETECTING = "detecting"
    SPEAKING = "speaking"
    INTERMEDIATE = "intermediate"


SpeechClass = Literal["speech", "intermediate", "non-speech"]


@dataclass(frozen=True, slots=True)
class ClassifierResult:
    """Output of a single classifier call. `state` is opaque to the engine."""

    probability: float
    state: Any


@dataclass(frozen=True, slots=True)
class SpeechStartEvent:
    frame_index: int
    kind: Literal["speech_start"] = "speech_start"


@dataclass(frozen=True, slots=True)
class SpeechEndEvent:
    """Speech segment finished. `audio` is the concatenated segment audio."""

    frame_index: int
    audio: np.ndarray = field(default_factory=_empty_audio)
    duration_seconds: float = 0.0
    kind: Literal["speech_end"] = "speech_end"

    @property
    def num_samples(self) -> int:
        return int(self.audio.shape[0])


@dataclass(frozen=True, slots=True)
class MisfireEvent:
    """Confirmed speech that ended before reaching the minimum duration."""

    frame_index: int
    duration_seconds: float = 0.0
    kind: Literal["misfire"] = "misfire"


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Non-fatal failure: classifier error or pause buffer overflow."""

    error: Exception
    kind: Literal["error"] = "error"

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass(frozen=True, slots=True)
class DebugEvent:
    message: str
    kind: Literal["debug"] = "debug"


@dataclass(frozen=True, slots=True)
class BufferedEvent:
    """Pause buffer released an utterance."""

    item_count: int
    duration_seconds: float
    kind: Literal["buffered"] = "buffered"


VadEvent = SpeechStartEvent | SpeechEndEvent | MisfireEvent | ErrorEvent | DebugEvent | BufferedEvent


@dataclass(slots=True)
class VadStep:
    """Speech frames to emit and events raised while processing input."""

    frames: list[np.ndarray] = field(default_factory=list)
    events: list[VadEvent] = field(default_factory=list)

    def extend(self, other: "VadStep") -> None:
        self.frames.extend(other.frames)
        self.events.extend(other.events)


@dataclass(slots=True)
class Release(Generic[T]):
    """A pause buffer release. `items` is None when output is suppressed."""

    items: list[T] | None
    event: BufferedEvent


@dataclass(frozen=True, slots=True)
class Utterance:
    """Group of speech frames bounded by pauses."""

    frames: tuple[np.ndarray, ...]
    sample_rate: int

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def num_samples(self) -> int:
        return sum(int(f.shape[0]) for f in self.frames)

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / self.sample_rate

    def to_array(self) -> np.ndarray:
        """Concatenate all frames into one float32 array."""
        if not self.frames:
            return _empty_audio()
        return np.concatenate(self.frames).astype(np.float32, copy=False)


@dataclass(frozen=True, slots=True)
class UtteranceEvent:
    """Utterance released by the pause buffer."""

    utterance: Utterance
    kind: Literal["utterance"] = "utterance"


PipelineEvent = VadEvent | UtteranceEvent
