from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from speech_segmenter.domain.models import (
    BufferedEvent,
    DebugEvent,
    ErrorEvent,
    MisfireEvent,
    PipelineEvent,
    SpeechEndEvent,
    SpeechStartEvent,
    UtteranceEvent,
)
from speech_segmenter.services.pause_buffer import PauseBufferConfig
from speech_segmenter.services.vad import VadConfig


class VadSettingsResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	threshold: float
	negative_threshold: float
	min_speech_frames: int
	redemption_frames: int
	lookback_frames: int
	sample_rate: int
	frame_size: int

	@classmethod
	def from_config(cls, config: VadConfig) -> "VadSettingsResponse":
		return cls(
			threshold=config.threshold,
			negative_threshold=config.negative_threshold,
			min_speech_frames=config.min_speech_frames,
			redemption_frames=config.redemption_frames,
			lookback_frames=config.lookback_frames,
			sample_rate=config.sample_rate,
			frame_size=config.frame_size,
		)


class PauseSettingsResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	pause_duration_ms: float
	max_buffer_ms: float
	suppress_output: bool

	@classmethod
	def from_config(cls, config: PauseBufferConfig) -> "PauseSettingsResponse":
		return cls(
			pause_duration_ms=config.pause_duration_ms,
			max_buffer_ms=config.max_buffer_ms,
			suppress_output=config.suppress_output,
		)


class HealthResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	status: Literal["ok"] = "ok"
	vad: VadSettingsResponse
	pause: PauseSettingsResponse


# WebSocket message models for the segmentation stream

class WsCommand(BaseModel):
	"""Incoming WebSocket command from client."""
	model_config = ConfigDict(extra="forbid")

	action: Literal["end"]


class WsConnectedEvent(BaseModel):
	"""WebSocket event sent on successful connection."""
	model_config = ConfigDict(extra="forbid")

	type: Literal["connected"] = "connected"
	sample_rate: int
	message: str = "WebSocket connected. Send float32 PCM as binary messages, {\"action\": \"end\"} to finish."


class WsSpeechStartEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["speech_start"] = "speech_start"
	frame_index: int
	timestamp: datetime


class WsSpeechEndEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["speech_end"] = "speech_end"
	frame_index: int
	num_samples: int
	duration_seconds: float
	timestamp: datetime


class WsMisfireEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["misfire"] = "misfire"
	frame_index: int
	timestamp: datetime


class WsBufferedEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["buffered"] = "buffered"
	item_count: int
	duration_seconds: float
	timestamp: datetime


class WsUtteranceEvent(BaseModel):
	"""WebSocket event when the pause buffer releases an utterance."""
	model_config = ConfigDict(extra="forbid")

	type: Literal["utterance"] = "utterance"
	num_frames: int
	num_samples: int
	duration_seconds: float
	timestamp: datetime


class WsErrorEvent(BaseModel):
	"""WebSocket event for errors."""
	model_config = ConfigDict(extra="forbid")

	type: Literal["error"] = "error"
	message: str
	timestamp: datetime


class WsDebugEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["debug"] = "debug"
	message: str
	timestamp: datetime


class WsClosedEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["closed"] = "closed"
	timestamp: datetime


WsEvent = (
	WsSpeechStartEvent
	| WsSpeechEndEvent
	| WsMisfireEvent
	| WsBufferedEvent
	| WsUtteranceEvent
	| WsErrorEvent
	| WsDebugEvent
)


def to_ws_event(event: PipelineEvent, timestamp: datetime) -> WsEvent:
	"""Convert a pipeline event to its WebSocket message."""
	if isinstance(event, SpeechStartEvent):
		return WsSpeechStartEvent(frame_index=event.frame_index, timestamp=timestamp)
	if isinstance(event, SpeechEndEvent):
		return WsSpeechEndEvent(
			frame_index=event.frame_index,
			num_samples=event.num_samples,
			duration_seconds=event.duration_seconds,
			timestamp=timestamp,
		)
	if isinstance(event, MisfireEvent):
		return WsMisfireEvent(frame_index=event.frame_index, timestamp=timestamp)
	if isinstance(event, BufferedEvent):
		return WsBufferedEvent(
			item_count=event.item_count,
			duration_seconds=event.duration_seconds,
			timestamp=timestamp,
		)
	if isinstance(event, UtteranceEvent):
		utterance = event.utterance
		return WsUtteranceEvent(
			num_frames=utterance.num_frames,
			num_samples=utterance.num_samples,
			duration_seconds=utterance.duration_seconds,
			timestamp=timestamp,
		)
	if isinstance(event, ErrorEvent):
		return WsErrorEvent(message=event.message, timestamp=timestamp)
	if isinstance(event, DebugEvent):
		return WsDebugEvent(message=event.message, timestamp=timestamp)
	raise TypeError(f"Unknown pipeline event: {event!r}")
