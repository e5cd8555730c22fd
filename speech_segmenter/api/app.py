from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from speech_segmenter.adapters.audio.silerovad import preload_model
from speech_segmenter.api import segment_router
from speech_segmenter.core.di import get_config
from speech_segmenter.core.logger import get_logger, setup_logging

logger = get_logger("api.app")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging and optionally warm the classifier model."""
    cfg = get_config()
    setup_logging(cfg.logging, cfg.logging.log_dir)
    if cfg.server.preload_model:
        preload_model()
    logger.info("speech-segmenter ready on %s:%d", cfg.server.host, cfg.server.port)
    yield
    logger.info("speech-segmenter shutting down")


app = FastAPI(
    title="speech-segmenter",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(segment_router.router)
