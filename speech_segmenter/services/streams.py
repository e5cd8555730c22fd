"""Async stream stages wrapping the VAD engine and the pause buffer.

Both stages follow a start / process / flush / cancel lifecycle and can be
used directly, or through the `speech_filter` and `buffer_speech` async
generators which drive that lifecycle over any async source.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Callable, Generic, TypeVar
import time

import numpy as np

from speech_segmenter.core.logger import get_logger
from speech_segmenter.domain.models import PipelineEvent, Release, VadEvent, VadStep
from speech_segmenter.ports.classifier import SpeechClassifierPort
from speech_segmenter.services.pause_buffer import PauseBuffer, PauseBufferConfig
from speech_segmenter.services.vad import VadConfig, VadEngine

logger = get_logger("services.streams")

T = TypeVar("T")

EventSink = Callable[[PipelineEvent], None]


def dispatch(events: list[VadEvent], sink: EventSink | None) -> None:
    """Deliver events in order. A failing sink is logged and never breaks the stream."""
    if sink is None:
        return
    for event in events:
        try:
            sink(event)
        except Exception:
            logger.exception("Event handler failed for %s event", event.kind)


@dataclass(slots=True)
class SpeechFilter:
    """Speech-only stage: raw chunks in, speech frames out.

    With `emit=False` nothing is returned downstream and the stage only
    reports events, for event-only branches of a split stream.
    """

    classifier: SpeechClassifierPort
    config: VadConfig = field(default_factory=VadConfig)
    on_event: EventSink | None = None
    emit: bool = True
    clock: Callable[[], float] = time.monotonic

    _engine: VadEngine | None = field(default=None, init=False)
    _pending: asyncio.Task | None = field(default=None, init=False)
    _cancelled: bool = field(default=False, init=False)

    @property
    def engine(self) -> VadEngine | None:
        return self._engine

    async def start(self) -> None:
        if self._engine is not None:
            return
        engine = VadEngine(classifier=self.classifier, config=self.config, clock=self.clock)
        await asyncio.to_thread(engine.initialize)
        self._engine = engine
        self._cancelled = False

    async def process(self, chunk: np.ndarray) -> list[np.ndarray]:
        """Run one chunk through the engine. Callers must await before sending the next."""
        engine = self._engine
        if engine is None:
            raise RuntimeError("VAD processor not initialized")

        # shielded so a cancelled caller never leaves the worker thread racing a teardown
        self._pending = asyncio.ensure_future(asyncio.to_thread(engine.process_chunk, chunk))
        try:
            step: VadStep = await asyncio.shield(self._pending)
        finally:
            if self._pending.done():
                self._pending = None

        if step.frames:
            logger.debug("VAD Transform: Processing %d speech chunks", len(step.frames))
        dispatch(step.events, self.on_event)
        return step.frames if self.emit else []

    async def flush(self) -> list[np.ndarray]:
        """End of input: close any open segment and release the engine."""
        engine = self._engine
        if engine is None:
            return []
        step = engine.finalize()
        dispatch(step.events, self.on_event)
        await asyncio.to_thread(engine.destroy)
        self._engine = None
        return step.frames if self.emit else []

    def cancel(self) -> None:
        """Abort without waiting; teardown is deferred until in-flight work returns."""
        if self._cancelled:
            return
        self._cancelled = True
        engine = self._engine
        self._engine = None
        if engine is None:
            return

        pending = self._pending
        self._pending = None
        if pending is not None and not pending.done():
            pending.add_done_callback(lambda _: _destroy_quietly(engine))
        else:
            _destroy_quietly(engine)
        logger.debug("Speech filter cancelled")


def _destroy_quietly(engine: VadEngine) -> None:
    try:
        engine.destroy()
    except Exception:
        logger.exception("Failed to release VAD engine")


@dataclass(slots=True)
class SpeechBuffer(Generic[T]):
    """Pause segmentation stage: items in, groups of items out after a pause."""

    config: PauseBufferConfig = field(default_factory=PauseBufferConfig)
    on_event: EventSink | None = None
    clock: Callable[[], float] = time.monotonic

    _buffer: PauseBuffer[T] = field(init=False)

    def __post_init__(self) -> None:
        self._buffer = PauseBuffer(self.config)

    def __len__(self) -> int:
        return len(self._buffer)

    def start(self) -> None:
        logger.debug(
            "SpeechBuffer: Initialized with %.0fms speech buffering, %.0fms max buffer",
            self.config.pause_duration_ms,
            self.config.max_buffer_ms,
        )

    def process(self, item: T) -> None:
        dispatch(self._buffer.append(item, self.clock()), self.on_event)

    def time_until_release(self) -> float | None:
        return self._buffer.time_until_release(self.clock())

    def poll(self) -> list[T] | None:
        """Release if the pause deadline has passed."""
        now = self.clock()
        if not self._buffer.due(now):
            return None
        return self._release(now)

    def flush(self) -> list[T] | None:
        logger.debug("SpeechBuffer: Stream ending, releasing final buffer")
        return self._release(self.clock())

    def cancel(self) -> None:
        self._buffer.clear()

    def _release(self, now: float) -> list[T] | None:
        release: Release[T] | None = self._buffer.release(now)
        if release is None:
            return None
        dispatch([release.event], self.on_event)
        return release.items


async def speech_filter(
    source: AsyncIterable[np.ndarray],
    classifier: SpeechClassifierPort,
    config: VadConfig | None = None,
    *,
    on_event: EventSink | None = None,
    emit: bool = True,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[np.ndarray]:
    """Yield speech-only frames from `source`.

    Usage:
        async for frame in speech_filter(chunks, SileroClassifierAdapter()):
            ...
    """
    stage = SpeechFilter(
        classifier=classifier,
        config=config or VadConfig(),
        on_event=on_event,
        emit=emit,
        clock=clock,
    )
    await stage.start()
    completed = False
    try:
        async for chunk in source:
            for frame in await stage.process(chunk):
                yield frame
        for frame in await stage.flush():
            yield frame
        completed = True
    finally:
        if not completed:
            stage.cancel()


_END = object()


@dataclass(frozen=True, slots=True)
class _SourceFailure:
    error: BaseException


async def _pump(source: AsyncIterable[T], queue: "asyncio.Queue[object]") -> None:
    try:
        async for item in source:
            await queue.put(item)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        await queue.put(_SourceFailure(exc))
        return
    await queue.put(_END)


async def buffer_speech(
    source: AsyncIterable[T],
    config: PauseBufferConfig | None = None,
    *,
    on_event: EventSink | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[list[T]]:
    """Group items from `source` into lists separated by pauses.

    A group is released once no item arrived for `pause_duration_ms`, and
    once more when the source ends. With `suppress_output` only the
    buffered event fires and nothing is yielded.
    """
    stage: SpeechBuffer[T] = SpeechBuffer(config=config or PauseBufferConfig(), on_event=on_event, clock=clock)
    stage.start()

    # size 1 keeps the upstream producer in step with this consumer
    queue: asyncio.Queue[object] = asyncio.Queue(maxsize=1)
    pump = asyncio.create_task(_pump(source, queue))
    try:
        while True:
            # an expired deadline always wins over an item that is already queued
            released = stage.poll()
            if released is not None:
                yield released
            try:
                message = await asyncio.wait_for(queue.get(), timeout=stage.time_until_release())
            except asyncio.TimeoutError:
                continue

            if message is _END:
                break
            if isinstance(message, _SourceFailure):
                raise message.error
            stage.process(message)  # type: ignore[arg-type]

        released = stage.flush()
        if released is not None:
            yield released
    finally:
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump
        stage.cancel()
