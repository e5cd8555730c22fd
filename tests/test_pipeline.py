import asyncio

import pytest

from fakes import BlockingClassifier, FakeClock, LevelClassifier, UnloadableClassifier, make_frame
from speech_segmenter.domain.errors import ClassifierLoadError
from speech_segmenter.domain.models import (
    BufferedEvent,
    ErrorEvent,
    PipelineEvent,
    SpeechEndEvent,
    SpeechStartEvent,
    UtteranceEvent,
)
from speech_segmenter.services.pause_buffer import PauseBufferConfig
from speech_segmenter.services.pipeline import SegmentationPipeline
from speech_segmenter.services.vad import VadConfig

SILENCE = 0.0
SPEECH = 0.9


def make_pipeline(classifier: LevelClassifier, clock: FakeClock, pause_ms: float = 10_000) -> SegmentationPipeline:
    return SegmentationPipeline(
        classifier_factory=lambda: classifier,
        vad_config=VadConfig(),
        pause_config=PauseBufferConfig(pause_duration_ms=pause_ms),
        vad_clock=clock,
    )


async def run_stream(pipeline: SegmentationPipeline, values: list[float]) -> list[PipelineEvent]:
    await pipeline.start()
    for value in values:
        await pipeline.feed(make_frame(value))
    await pipeline.finish()
    return [event async for event in pipeline.events()]


def test_pipeline_turns_speech_into_one_utterance(clock: FakeClock) -> None:
    classifier = LevelClassifier(clock=clock)
    pipeline = make_pipeline(classifier, clock)
    values = [SILENCE] * 3 + [SPEECH] * 10 + [SILENCE] * 14

    events = asyncio.run(run_stream(pipeline, values))

    assert [type(e) for e in events] == [SpeechStartEvent, SpeechEndEvent, BufferedEvent, UtteranceEvent]
    utterance = events[-1].utterance  # type: ignore[union-attr]
    # three lookback frames, ten speech frames, twelve redemption frames
    assert utterance.num_frames == 25
    assert utterance.num_samples == 25 * 512
    assert utterance.to_array().shape == (25 * 512,)
    assert utterance.duration_seconds == pytest.approx(0.8)
    assert events[1].num_samples == 25 * 512  # type: ignore[union-attr]
    assert classifier.opened == 1
    assert classifier.closed == 1
    assert not pipeline.is_running


def test_pipeline_with_only_silence_publishes_nothing(clock: FakeClock) -> None:
    pipeline = make_pipeline(LevelClassifier(clock=clock), clock)
    events = asyncio.run(run_stream(pipeline, [SILENCE] * 20))
    assert events == []


def test_pipeline_separates_utterances_on_pause(clock: FakeClock) -> None:
    classifier = LevelClassifier(clock=clock)
    pipeline = make_pipeline(classifier, clock, pause_ms=100)

    async def run() -> list[PipelineEvent]:
        await pipeline.start()
        for _ in range(2):
            for value in [SPEECH] * 6 + [SILENCE] * 13:
                await pipeline.feed(make_frame(value))
            await asyncio.sleep(0.5)
        await pipeline.finish()
        return [event async for event in pipeline.events()]

    events = asyncio.run(run())

    utterances = [e for e in events if isinstance(e, UtteranceEvent)]
    assert len(utterances) == 2
    assert [u.utterance.num_frames for u in utterances] == [18, 18]


def test_pipeline_rejects_double_start_and_feed_before_start(clock: FakeClock) -> None:
    pipeline = make_pipeline(LevelClassifier(clock=clock), clock)

    async def run() -> None:
        with pytest.raises(RuntimeError):
            await pipeline.feed(make_frame(SILENCE))
        await pipeline.start()
        with pytest.raises(RuntimeError):
            await pipeline.start()
        await pipeline.stop()

    asyncio.run(run())


def test_pipeline_stop_releases_classifier_without_flushing(clock: FakeClock) -> None:
    classifier = LevelClassifier(clock=clock)
    pipeline = make_pipeline(classifier, clock)

    async def run() -> list[PipelineEvent]:
        await pipeline.start()
        for _ in range(10):
            await pipeline.feed(make_frame(SPEECH))
        await asyncio.sleep(0.2)
        await pipeline.stop()
        return [event async for event in pipeline.events()]

    events = asyncio.run(run())

    assert [type(e) for e in events] == [SpeechStartEvent]
    assert classifier.closed == 1
    assert not pipeline.is_running


def test_pipeline_reports_classifier_load_failure() -> None:
    pipeline = SegmentationPipeline(classifier_factory=UnloadableClassifier)

    async def run() -> list[PipelineEvent]:
        await pipeline.start()
        events = [event async for event in pipeline.events()]
        assert not pipeline.is_running
        with pytest.raises(RuntimeError):
            await pipeline.feed(make_frame(SPEECH))
        await pipeline.finish()
        await pipeline.stop()
        return events

    events = asyncio.run(run())

    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert isinstance(events[0].error, ClassifierLoadError)
    assert pipeline.failure is events[0].error


def test_pipeline_stop_does_not_wait_for_blocked_classifier() -> None:
    classifier = BlockingClassifier()
    pipeline = SegmentationPipeline(classifier_factory=lambda: classifier)

    async def run() -> tuple[float, int]:
        loop = asyncio.get_running_loop()
        await pipeline.start()
        await pipeline.feed(make_frame(SILENCE))
        await asyncio.to_thread(classifier.entered.wait, 5.0)

        started = loop.time()
        await pipeline.stop()
        stop_seconds = loop.time() - started
        closed_while_blocked = classifier.closed

        classifier.release.set()
        for _ in range(200):
            if classifier.closed:
                break
            await asyncio.sleep(0.01)
        return stop_seconds, closed_while_blocked

    stop_seconds, closed_while_blocked = asyncio.run(run())

    assert stop_seconds < 1.0
    assert closed_while_blocked == 0
    assert classifier.closed == 1
