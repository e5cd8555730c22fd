"""Exceptions raised or reported by the segmenter."""


class SpeechSegmenterError(Exception):
    """Base class for segmenter errors."""


class ConfigurationError(SpeechSegmenterError):
    """Raised when a config file is structurally invalid."""


class ClassifierLoadError(SpeechSegmenterError):
    """Raised when the speech classifier model cannot be loaded."""


class ClassifierFailure(SpeechSegmenterError):
    """Reported when a single classification call fails.

    The frame is treated as non-speech and processing continues.
    """

    def __init__(self, frame_index: int, message: str) -> None:
        super().__init__(f"Classifier failed on frame {frame_index}: {message}")
        self.frame_index = frame_index


class BufferOverflowError(SpeechSegmenterError):
    """Reported when the pause buffer runs past its time ceiling without a pause."""

    def __init__(self, item_count: int, elapsed_ms: float, max_buffer_ms: float) -> None:
        super().__init__(
            f"Buffer overflow: {item_count} chunks accumulated over {elapsed_ms / 1000:.1f}s "
            f"(limit {max_buffer_ms / 1000:.1f}s). Consider increasing max_buffer_ms "
            "or checking for continuous input without pauses."
        )
        self.item_count = item_count
        self.elapsed_ms = elapsed_ms
        self.max_buffer_ms = max_buffer_ms
