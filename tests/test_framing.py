import numpy as np
import pytest

from speech_segmenter.services.framing import ContextWindow, FrameAccumulator, as_samples


def test_accumulator_holds_partial_frames_until_complete() -> None:
    acc = FrameAccumulator(512)

    assert acc.push(np.ones(300, dtype=np.float32)) == []
    assert acc.pending == 300

    frames = acc.push(np.ones(300, dtype=np.float32))
    assert len(frames) == 1
    assert frames[0].shape == (512,)
    assert acc.pending == 88


def test_accumulator_never_drops_samples() -> None:
    acc = FrameAccumulator(512)
    source = np.arange(2000, dtype=np.float32)

    frames: list[np.ndarray] = []
    for start in range(0, 2000, 333):
        frames.extend(acc.push(source[start:start + 333]))

    assert len(frames) == 3
    emitted = np.concatenate(frames)
    np.testing.assert_array_equal(emitted, source[:1536])
    assert acc.pending == 2000 - 1536


def test_accumulator_splits_large_chunk_into_many_frames() -> None:
    acc = FrameAccumulator(4)
    frames = acc.push(np.arange(10, dtype=np.float32))
    assert [f.tolist() for f in frames] == [[0, 1, 2, 3], [4, 5, 6, 7]]
    assert acc.pending == 2


def test_accumulator_ignores_empty_chunks() -> None:
    acc = FrameAccumulator(512)
    assert acc.push(np.zeros(0, dtype=np.float32)) == []
    assert acc.push([]) == []
    assert acc.pending == 0


def test_accumulator_frames_do_not_alias_input() -> None:
    acc = FrameAccumulator(4)
    chunk = np.zeros(4, dtype=np.float32)
    frame = acc.push(chunk)[0]
    chunk[:] = 9.0
    assert frame.tolist() == [0, 0, 0, 0]


def test_accumulator_clear_drops_remainder() -> None:
    acc = FrameAccumulator(512)
    acc.push(np.ones(100, dtype=np.float32))
    acc.clear()
    assert acc.pending == 0


def test_accumulator_rejects_non_positive_frame_size() -> None:
    with pytest.raises(ValueError):
        FrameAccumulator(0)


def test_as_samples_normalizes_int16_and_flattens() -> None:
    out = as_samples(np.array([[16384], [-32768]], dtype=np.int16))
    assert out.dtype == np.float32
    assert out.tolist() == [0.5, -1.0]


def test_context_window_keeps_trailing_samples() -> None:
    window = ContextWindow(4)
    frame = np.arange(8, dtype=np.float32)

    contextual = window.contextualize(frame)
    assert contextual.tolist() == [0, 0, 0, 0, 0, 1, 2, 3, 4, 5, 6, 7]

    window.advance(contextual)
    assert window.samples.tolist() == [4, 5, 6, 7]
    assert window.contextualize(np.zeros(2, dtype=np.float32)).tolist() == [4, 5, 6, 7, 0, 0]


def test_context_window_reset_zeroes_history() -> None:
    window = ContextWindow(64)
    window.advance(np.ones(600, dtype=np.float32))
    window.reset()
    assert window.samples.shape == (64,)
    assert not window.samples.any()
