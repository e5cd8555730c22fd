from functools import lru_cache
from typing import Callable

from speech_segmenter.adapters.audio.silerovad import SileroClassifierAdapter
from speech_segmenter.core.config import AppConfig, load_config
from speech_segmenter.ports.classifier import SpeechClassifierPort
from speech_segmenter.services.pipeline import SegmentationPipeline

PipelineFactory = Callable[[], SegmentationPipeline]


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get singleton AppConfig instance."""
    return load_config()


def get_classifier_factory() -> Callable[[], SpeechClassifierPort]:
    """Classifier constructor. Every pipeline gets its own session."""
    return SileroClassifierAdapter


def get_pipeline_factory() -> PipelineFactory:
    """Factory for per-connection segmentation pipelines."""
    cfg = get_config()
    classifier_factory = get_classifier_factory()

    def build() -> SegmentationPipeline:
        return SegmentationPipeline(
            classifier_factory=classifier_factory,
            vad_config=cfg.vad,
            pause_config=cfg.pause,
        )

    return build
