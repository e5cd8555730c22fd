from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable
import logging
import math
import time

import numpy as np

from speech_segmenter.core.logger import FRAME_LOGGER_NAME, get_logger
from speech_segmenter.domain.errors import ClassifierFailure
from speech_segmenter.domain.models import (
    DebugEvent,
    ErrorEvent,
    MisfireEvent,
    SpeechClass,
    SpeechEndEvent,
    SpeechStartEvent,
    VadState,
    VadStep,
)
from speech_segmenter.ports.classifier import SpeechClassifierPort
from speech_segmenter.services.framing import ContextWindow, FrameAccumulator

logger = get_logger("services.vad")
# per-frame traces, enabled separately through logging.frame_level
frame_logger = get_logger(FRAME_LOGGER_NAME)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _frames(duration_ms: float, frame_ms: float) -> int:
    # half-up, so 400ms at 32ms frames is 13 frames
    return math.floor(duration_ms / frame_ms + 0.5)


@dataclass(slots=True)
class VadConfig:
    """VAD tuning. Out-of-range values are clamped, never rejected."""

    threshold: float = 0.5
    min_speech_duration_ms: float = 160.0
    redemption_duration_ms: float = 400.0
    lookback_duration_ms: float = 384.0

    # Stream format (16 kHz Silero sizing)
    sample_rate: int = 16000
    frame_size: int = 512
    context_size: int = 64

    emit_debug: bool = False

    def __post_init__(self) -> None:
        threshold = _clamp(float(self.threshold), 0.01, 0.99)
        if threshold != self.threshold:
            logger.warning("VAD threshold %s out of range, clamped to %.2f", self.threshold, threshold)
        self.threshold = threshold

        if self.sample_rate <= 0:
            logger.warning("sample_rate %s invalid, using 16000", self.sample_rate)
            self.sample_rate = 16000
        if self.frame_size <= 0:
            logger.warning("frame_size %s invalid, using 512", self.frame_size)
            self.frame_size = 512
        if self.context_size < 0:
            logger.warning("context_size %s invalid, using 0", self.context_size)
            self.context_size = 0

    @property
    def negative_threshold(self) -> float:
        return _clamp(self.threshold - 0.15, 0.01, self.threshold - 0.01)

    @property
    def frame_ms(self) -> float:
        return self.frame_size * 1000.0 / self.sample_rate

    @property
    def min_speech_frames(self) -> int:
        return max(1, _frames(self.min_speech_duration_ms, self.frame_ms))

    @property
    def redemption_frames(self) -> int:
        return max(1, _frames(self.redemption_duration_ms, self.frame_ms))

    @property
    def lookback_frames(self) -> int:
        return max(0, _frames(self.lookback_duration_ms, self.frame_ms))

    @property
    def min_speech_seconds(self) -> float:
        return self.min_speech_frames * self.frame_size / self.sample_rate


@dataclass(slots=True)
class VadEngine:
    """Streaming speech/non-speech state machine around a frame classifier.

    State machine:
    - SILENT: collecting lookback frames, waiting for a speech frame
    - DETECTING: counting consecutive speech frames until min_speech_frames
    - SPEAKING: confirmed speech, every speech frame is emitted
    - INTERMEDIATE: redemption period, frames are emitted until speech
      resumes or redemption_frames non-speech frames have passed

    Not thread-safe: one caller drives one engine, one frame at a time.
    """

    classifier: SpeechClassifierPort
    config: VadConfig = field(default_factory=VadConfig)
    clock: Callable[[], float] = time.monotonic

    _accumulator: FrameAccumulator = field(init=False)
    _context: ContextWindow = field(init=False)
    _model_state: Any = field(default=None, init=False)
    _lookback: deque[np.ndarray] = field(init=False)
    _speech_frames: list[np.ndarray] = field(default_factory=list, init=False)
    _segment_frames: list[np.ndarray] = field(default_factory=list, init=False)
    _state: VadState = field(default=VadState.SILENT, init=False)
    _speech_frame_count: int = field(default=0, init=False)
    _redemption_count: int = field(default=0, init=False)
    _speech_start_time: float = field(default=0.0, init=False)
    _frame_index: int = field(default=0, init=False)
    _initialized: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self._accumulator = FrameAccumulator(self.config.frame_size)
        self._context = ContextWindow(self.config.context_size)
        self._lookback = deque(maxlen=self.config.lookback_frames or None)

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def frame_index(self) -> int:
        return self._frame_index

    @property
    def context(self) -> np.ndarray:
        return self._context.samples

    @property
    def model_state(self) -> Any:
        return self._model_state

    @property
    def lookback_size(self) -> int:
        return len(self._lookback)

    @property
    def pending_samples(self) -> int:
        return self._accumulator.pending

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Acquire the classifier session and reset to a fresh state."""
        if self._initialized:
            return
        self.classifier.open()
        self._initialized = True
        self.reset()
        cfg = self.config
        logger.info(
            "VAD engine initialized: threshold=%.2f, negative=%.2f, min_speech=%d, redemption=%d, lookback=%d",
            cfg.threshold,
            cfg.negative_threshold,
            cfg.min_speech_frames,
            cfg.redemption_frames,
            cfg.lookback_frames,
        )

    def reset(self) -> None:
        """Return to the state of a freshly initialized engine."""
        self._model_state = self.classifier.initial_state()
        self._context.reset()
        self._accumulator.clear()
        self._lookback.clear()
        self._state = VadState.SILENT
        self._frame_index = 0
        self._speech_start_time = 0.0
        self._reset_speech_state()

    def destroy(self) -> None:
        """Drop all buffers and release the classifier session."""
        self.reset()
        self._model_state = None
        if self._initialized:
            self.classifier.close()
            self._initialized = False

    def process_chunk(self, chunk: np.ndarray | list[float]) -> VadStep:
        """Feed raw samples; every complete frame is classified in order."""
        step = VadStep()
        for frame in self._accumulator.push(chunk):
            step.extend(self.process_frame(frame))
        return step

    def process_frame(self, frame: np.ndarray) -> VadStep:
        if not self._initialized:
            raise RuntimeError("VAD engine not initialized")

        step = VadStep()
        frame = np.array(frame, dtype=np.float32, copy=True).reshape(-1)

        was_silent = self._state == VadState.SILENT
        probability = self._classify(frame, step)
        if probability > 0:
            self._debug(
                step,
                f"VAD: Frame {self._frame_index}, probability: {probability:.3f}, state: {self._state.value}",
                log=frame_logger,
            )

        self._transition(self._speech_class(probability), frame, step)
        # the frame that opens detection lives in the speech accumulator, not the lookback
        if was_silent and self._state == VadState.SILENT and self.config.lookback_frames > 0:
            self._lookback.append(frame)
        self._frame_index += 1
        return step

    def finalize(self) -> VadStep:
        """Close the stream: end an open segment and drop internal buffers."""
        step = VadStep()
        if self._state in (VadState.SPEAKING, VadState.INTERMEDIATE):
            self._end_segment(step)
        elif self._state == VadState.DETECTING:
            logger.debug("Stream ended while detecting; discarding %d frames", len(self._speech_frames))

        self._reset_speech_state()
        self._state = VadState.SILENT
        self._lookback.clear()
        self._accumulator.clear()
        return step

    def _classify(self, frame: np.ndarray, step: VadStep) -> float:
        contextual = self._context.contextualize(frame)
        try:
            result = self.classifier.classify(contextual, self._model_state, self.config.sample_rate)
        except Exception as exc:
            logger.warning("Classifier failed on frame %d: %s", self._frame_index, exc)
            failure = ClassifierFailure(self._frame_index, str(exc))
            failure.__cause__ = exc
            step.events.append(ErrorEvent(error=failure))
            # context still advances so it stays aligned with the audio timeline
            self._context.advance(contextual)
            return 0.0

        self._model_state = result.state
        self._context.advance(contextual)
        return float(result.probability)

    def _speech_class(self, probability: float) -> SpeechClass:
        if probability >= self.config.threshold:
            return "speech"
        if probability >= self.config.negative_threshold:
            return "intermediate"
        return "non-speech"

    def _transition(self, speech: SpeechClass, frame: np.ndarray, step: VadStep) -> None:
        state = self._state

        if state == VadState.SILENT:
            if speech == "speech":
                self._state = VadState.DETECTING
                self._speech_frame_count = 1
                self._speech_frames = [frame]

        elif state == VadState.DETECTING:
            if speech == "speech":
                self._speech_frame_count += 1
                self._speech_frames.append(frame)
                self._confirm_if_ready(step)
            else:
                logger.debug("False start after %d speech frames", self._speech_frame_count)
                self._reset_speech_state()
                self._state = VadState.SILENT

        elif state == VadState.SPEAKING:
            if speech == "speech":
                self._emit(step, frame)
            else:
                self._state = VadState.INTERMEDIATE
                self._redemption_count = 1

        elif state == VadState.INTERMEDIATE:
            self._emit(step, frame)
            if speech == "speech":
                self._state = VadState.SPEAKING
                self._redemption_count = 0
            else:
                self._redemption_count += 1
                if self._redemption_count >= self.config.redemption_frames:
                    self._end_segment(step)

    def _confirm_if_ready(self, step: VadStep) -> None:
        if self._speech_frame_count < self.config.min_speech_frames:
            return

        self._state = VadState.SPEAKING
        self._speech_start_time = self.clock()
        self._redemption_count = 0

        lookback = list(self._lookback)
        speech = self._speech_frames
        self._lookback.clear()
        self._speech_frames = []
        self._segment_frames = []

        self._debug(
            step,
            f"VAD: Speech confirmed! Outputting {len(lookback) + len(speech)} frames "
            f"({len(lookback)} lookback + {len(speech)} speech)",
        )
        for frame in (*lookback, *speech):
            self._emit(step, frame)
        step.events.append(SpeechStartEvent(frame_index=self._frame_index))
        logger.info("Speech start detected at frame %d", self._frame_index)

    def _end_segment(self, step: VadStep) -> None:
        duration = self.clock() - self._speech_start_time
        segment = self._segment_frames
        self._reset_speech_state()
        self._state = VadState.SILENT

        if duration >= self.config.min_speech_seconds:
            audio = np.concatenate(segment) if segment else np.zeros(0, dtype=np.float32)
            step.events.append(SpeechEndEvent(frame_index=self._frame_index, audio=audio, duration_seconds=duration))
            logger.info("Speech end detected at frame %d after %.2fs", self._frame_index, duration)
        else:
            step.events.append(MisfireEvent(frame_index=self._frame_index, duration_seconds=duration))
            logger.info("Speech misfire at frame %d (%.3fs)", self._frame_index, duration)

    def _emit(self, step: VadStep, frame: np.ndarray) -> None:
        step.frames.append(frame)
        self._segment_frames.append(frame)

    def _reset_speech_state(self) -> None:
        self._speech_frame_count = 0
        self._redemption_count = 0
        self._speech_frames = []
        self._segment_frames = []

    def _debug(self, step: VadStep, message: str, log: logging.Logger = logger) -> None:
        log.debug(message)
        if self.config.emit_debug:
            step.events.append(DebugEvent(message=message))
