from dataclasses import dataclass, field
from typing import Generic, TypeVar

from speech_segmenter.core.logger import get_logger
from speech_segmenter.domain.errors import BufferOverflowError
from speech_segmenter.domain.models import BufferedEvent, DebugEvent, ErrorEvent, Release, VadEvent

logger = get_logger("services.pause_buffer")

T = TypeVar("T")

_MIN_DURATION_MS = 1.0


@dataclass(slots=True)
class PauseBufferConfig:
    """Pause segmentation tuning. Non-positive durations are clamped."""

    pause_duration_ms: float = 2000.0
    max_buffer_ms: float = 60000.0
    suppress_output: bool = False
    emit_debug: bool = False

    def __post_init__(self) -> None:
        if self.pause_duration_ms < _MIN_DURATION_MS:
            logger.warning("pause_duration_ms %s too small, clamped to %.0f", self.pause_duration_ms, _MIN_DURATION_MS)
            self.pause_duration_ms = _MIN_DURATION_MS
        if self.max_buffer_ms < _MIN_DURATION_MS:
            logger.warning("max_buffer_ms %s too small, clamped to %.0f", self.max_buffer_ms, _MIN_DURATION_MS)
            self.max_buffer_ms = _MIN_DURATION_MS

    @property
    def pause_seconds(self) -> float:
        return self.pause_duration_ms / 1000.0

    @property
    def max_buffer_seconds(self) -> float:
        return self.max_buffer_ms / 1000.0


@dataclass(slots=True)
class PauseBuffer(Generic[T]):
    """Accumulates items and releases them once no item arrived for a pause.

    Timing is explicit: callers pass a monotonic `now` (seconds) to every
    call and poll `due()` / `time_until_release()`. Each append moves the
    single release deadline to `now + pause`.
    """

    config: PauseBufferConfig = field(default_factory=PauseBufferConfig)

    _items: list[T] = field(default_factory=list, init=False)
    _started_at: float | None = field(default=None, init=False)
    _deadline: float | None = field(default=None, init=False)

    @property
    def items(self) -> list[T]:
        return list(self._items)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def started_at(self) -> float | None:
        return self._started_at

    def __len__(self) -> int:
        return len(self._items)

    def append(self, item: T, now: float) -> list[VadEvent]:
        events: list[VadEvent] = []
        if self._started_at is None:
            self._started_at = now
            self._debug(events, "Started new buffer")

        self._items.append(item)
        self._deadline = now + self.config.pause_seconds
        self._debug(events, f"Buffered chunk {len(self._items)}")

        elapsed_ms = (now - self._started_at) * 1000.0
        if elapsed_ms > self.config.max_buffer_ms:
            error = BufferOverflowError(len(self._items), elapsed_ms, self.config.max_buffer_ms)
            logger.warning("%s", error)
            events.append(ErrorEvent(error=error))
        return events

    def due(self, now: float) -> bool:
        return self._deadline is not None and now >= self._deadline

    def time_until_release(self, now: float) -> float | None:
        """Seconds until the pending release, or None when nothing is buffered."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - now)

    def release(self, now: float) -> Release[T] | None:
        """Hand out the buffered items and reset. Returns None when empty."""
        if not self._items:
            self.clear()
            return None

        started = self._started_at if self._started_at is not None else now
        items = self._items
        duration = max(0.0, now - started)
        self.clear()

        logger.debug("Releasing buffer: %d chunks after %.0fms", len(items), duration * 1000.0)
        event = BufferedEvent(item_count=len(items), duration_seconds=duration)
        return Release(items=None if self.config.suppress_output else items, event=event)

    def clear(self) -> None:
        self._items = []
        self._started_at = None
        self._deadline = None

    def _debug(self, events: list[VadEvent], message: str) -> None:
        logger.debug("SpeechBuffer: %s", message)
        if self.config.emit_debug:
            events.append(DebugEvent(message=f"SpeechBuffer: {message}"))
