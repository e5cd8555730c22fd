import asyncio
from datetime import datetime, timezone

import numpy as np
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from speech_segmenter.api.response_models import (
    HealthResponse,
    PauseSettingsResponse,
    VadSettingsResponse,
    WsClosedEvent,
    WsCommand,
    WsConnectedEvent,
    WsErrorEvent,
    to_ws_event,
)
from speech_segmenter.core.config import AppConfig
from speech_segmenter.core.di import PipelineFactory, get_config, get_pipeline_factory
from speech_segmenter.core.logger import get_logger
from speech_segmenter.services.pipeline import SegmentationPipeline

logger = get_logger("api.segment_router")

router = APIRouter(tags=["segmentation"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/health", response_model=HealthResponse)
def health(config: AppConfig = Depends(get_config)) -> HealthResponse:
    """Report service status and the effective segmentation settings."""
    return HealthResponse(
        vad=VadSettingsResponse.from_config(config.vad),
        pause=PauseSettingsResponse.from_config(config.pause),
    )


@router.websocket("/segment/ws")
async def websocket_segment(
    websocket: WebSocket,
    pipeline_factory: PipelineFactory = Depends(get_pipeline_factory),
) -> None:
    """WebSocket endpoint for streaming speech segmentation.

    Connection lifecycle:
    1. Client connects to /segment/ws
    2. Server sends 'connected' event
    3. Client streams 16 kHz mono little-endian float32 PCM as binary messages
    4. Server pushes speech_start / speech_end / misfire events as they happen
       and an utterance event each time a pause closes a turn
    5. Client sends {"action": "end"}; server flushes, sends 'closed' and
       closes the socket

    If the pipeline fails (for example the classifier model cannot be
    loaded) the client gets an 'error' event followed by 'closed'.

    Each connection runs its own pipeline and classifier session.
    """
    await websocket.accept()
    pipeline = pipeline_factory()

    connected = WsConnectedEvent(sample_rate=pipeline.vad_config.sample_rate)
    await websocket.send_json(connected.model_dump(mode="json"))

    await pipeline.start()
    sender = asyncio.create_task(_forward_events(websocket, pipeline))
    receiver = asyncio.create_task(_receive_audio(websocket, pipeline))

    try:
        # the sender ends on its own when the pipeline shuts down after a failure
        done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
        if receiver in done:
            receiver.result()
            await pipeline.finish()
        else:
            logger.warning("Pipeline stopped before end of input: %s", pipeline.failure)
        await sender
        closed = WsClosedEvent(timestamp=_utcnow())
        await websocket.send_json(closed.model_dump(mode="json"))
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("Client disconnected")
    finally:
        await pipeline.stop()
        for task in (receiver, sender):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass


async def _receive_audio(websocket: WebSocket, pipeline: SegmentationPipeline) -> None:
    """Feed binary PCM into the pipeline until the client ends the stream.

    Returns early once the pipeline is no longer running.

    Raises:
        WebSocketDisconnect: If the client goes away.
    """
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000))

        payload = message.get("bytes")
        if payload is not None:
            if len(payload) % 4 != 0:
                await _send_error(websocket, f"Binary payload must be float32 samples, got {len(payload)} bytes")
                continue
            if not pipeline.is_running:
                return
            await pipeline.feed(np.frombuffer(payload, dtype="<f4").astype(np.float32))
            continue

        text = message.get("text")
        if text is None:
            continue
        try:
            command = WsCommand.model_validate_json(text)
        except ValidationError as e:
            await _send_error(websocket, f"Invalid command: {e.errors()}")
            continue
        if command.action == "end":
            return


async def _forward_events(websocket: WebSocket, pipeline: SegmentationPipeline) -> None:
    async for event in pipeline.events():
        ws_event = to_ws_event(event, _utcnow())
        await websocket.send_json(ws_event.model_dump(mode="json"))


async def _send_error(websocket: WebSocket, message: str) -> None:
    error = WsErrorEvent(message=message, timestamp=_utcnow())
    await websocket.send_json(error.model_dump(mode="json"))
