import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable
import time

import numpy as np

from speech_segmenter.core.logger import get_logger
from speech_segmenter.domain.models import ErrorEvent, PipelineEvent, Utterance, UtteranceEvent
from speech_segmenter.ports.classifier import SpeechClassifierPort
from speech_segmenter.services.pause_buffer import PauseBufferConfig
from speech_segmenter.services.streams import buffer_speech, speech_filter
from speech_segmenter.services.vad import VadConfig

logger = get_logger("services.pipeline")

_CLOSED = object()


@dataclass(slots=True)
class SegmentationPipeline:
    """Async orchestrator: raw chunks -> speech frames -> utterances.

    Owns one speech filter and one pause buffer. Chunks are pushed with
    `feed()`; every VAD/buffer event and every released utterance is
    published on a single queue read through `events()`, in arrival order.
    Each pipeline builds its own classifier, so pipelines share no state.
    """

    classifier_factory: Callable[[], SpeechClassifierPort]
    vad_config: VadConfig = field(default_factory=VadConfig)
    pause_config: PauseBufferConfig = field(default_factory=PauseBufferConfig)
    vad_clock: Callable[[], float] = time.monotonic

    _chunks: asyncio.Queue = field(default_factory=asyncio.Queue, init=False)
    _events: asyncio.Queue = field(default_factory=asyncio.Queue, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)
    _running: bool = field(default=False, init=False)
    _failure: Exception | None = field(default=None, init=False)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def failure(self) -> Exception | None:
        """Error that stopped processing, if any."""
        return self._failure

    async def start(self) -> None:
        """Start processing in a background task.

        Raises:
            RuntimeError: If the pipeline is already running.
        """
        if self._running:
            raise RuntimeError("Pipeline already running")
        self._running = True
        self._failure = None
        self._chunks = asyncio.Queue(maxsize=64)
        self._events = asyncio.Queue()
        self._task = asyncio.create_task(self._run())

    async def feed(self, chunk: np.ndarray) -> None:
        """Queue one chunk of float32 samples. Blocks when the pipeline lags behind."""
        if not self._running:
            raise RuntimeError("Pipeline is not running")
        await self._chunks.put(chunk)

    async def finish(self) -> None:
        """Signal end of input and wait until the final utterance is released."""
        if self._task is None:
            return
        if not self._task.done():
            await self._chunks.put(None)
        await self._task
        self._task = None
        self._running = False

    async def stop(self) -> None:
        """Abort processing and release resources without flushing."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Segmentation pipeline task failed during stop")
            self._task = None

    async def events(self) -> AsyncIterator[PipelineEvent]:
        """Yield published events until the pipeline has shut down."""
        while True:
            event = await self._events.get()
            if event is _CLOSED:
                return
            yield event

    def _publish(self, event: PipelineEvent) -> None:
        self._events.put_nowait(event)

    async def _source(self) -> AsyncIterator[np.ndarray]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                return
            yield chunk

    async def _run(self) -> None:
        try:
            frames = speech_filter(
                self._source(),
                self.classifier_factory(),
                self.vad_config,
                on_event=self._publish,
                clock=self.vad_clock,
            )
            async for group in buffer_speech(frames, self.pause_config, on_event=self._publish):
                utterance = Utterance(frames=tuple(group), sample_rate=self.vad_config.sample_rate)
                logger.info(
                    "Utterance released: %d frames, %.2fs",
                    utterance.num_frames,
                    utterance.duration_seconds,
                )
                self._publish(UtteranceEvent(utterance=utterance))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # reported to listeners, the task itself ends cleanly
            logger.exception("Segmentation pipeline failed")
            self._failure = exc
            self._publish(ErrorEvent(error=exc))
        finally:
            self._running = False
            self._release_feeders()
            self._publish(_CLOSED)  # type: ignore[arg-type]

    def _release_feeders(self) -> None:
        # nothing reads the chunk queue any more, free a blocked feed()
        while not self._chunks.empty():
            self._chunks.get_nowait()
