import numpy as np
import pytest
from fastapi.testclient import TestClient

from fakes import FakeClock, LevelClassifier, UnloadableClassifier
from speech_segmenter.api.app import app
from speech_segmenter.core.config import AppConfig
from speech_segmenter.core.di import get_config, get_pipeline_factory
from speech_segmenter.services.pause_buffer import PauseBufferConfig
from speech_segmenter.services.pipeline import SegmentationPipeline
from speech_segmenter.services.vad import VadConfig


@pytest.fixture
def client():
    config = AppConfig(vad=VadConfig(threshold=0.6), pause=PauseBufferConfig(pause_duration_ms=10_000))

    def pipeline_factory():
        clock = FakeClock()

        def build() -> SegmentationPipeline:
            return SegmentationPipeline(
                classifier_factory=lambda: LevelClassifier(clock=clock),
                vad_config=config.vad,
                pause_config=config.pause,
                vad_clock=clock,
            )

        return build

    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_pipeline_factory] = pipeline_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def pcm(values: list[float]) -> bytes:
    return np.concatenate([np.full(512, v, dtype="<f4") for v in values]).tobytes()


def receive_until_closed(ws) -> list[dict]:
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if message["type"] == "closed":
            return messages


def test_health_reports_effective_settings(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["vad"]["threshold"] == pytest.approx(0.6)
    assert body["vad"]["negative_threshold"] == pytest.approx(0.45)
    assert body["vad"]["redemption_frames"] == 13
    assert body["pause"]["pause_duration_ms"] == 10_000


def test_websocket_streams_segmentation_events(client: TestClient) -> None:
    with client.websocket_connect("/segment/ws") as ws:
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["sample_rate"] == 16000

        ws.send_bytes(pcm([0.0] * 2 + [0.9] * 8))
        ws.send_bytes(pcm([0.0] * 14))
        ws.send_json({"action": "end"})

        messages = receive_until_closed(ws)

    types = [m["type"] for m in messages]
    assert types == ["speech_start", "speech_end", "buffered", "utterance", "closed"]
    utterance = messages[3]
    assert utterance["num_frames"] == 2 + 8 + 12
    assert utterance["num_samples"] == 22 * 512
    assert messages[1]["num_samples"] == 22 * 512
    assert all("timestamp" in m for m in messages)


def test_websocket_reports_bad_input_and_keeps_going(client: TestClient) -> None:
    with client.websocket_connect("/segment/ws") as ws:
        ws.receive_json()

        ws.send_bytes(b"\x00\x01\x02")
        truncated = ws.receive_json()
        ws.send_text('{"action": "rewind"}')
        invalid = ws.receive_json()
        ws.send_json({"action": "end"})
        messages = receive_until_closed(ws)

    assert truncated["type"] == "error"
    assert "3 bytes" in truncated["message"]
    assert invalid["type"] == "error"
    assert invalid["message"].startswith("Invalid command")
    assert [m["type"] for m in messages] == ["closed"]


def test_websocket_reports_classifier_load_failure_and_closes(client: TestClient) -> None:
    def pipeline_factory():
        def build() -> SegmentationPipeline:
            return SegmentationPipeline(classifier_factory=UnloadableClassifier)

        return build

    app.dependency_overrides[get_pipeline_factory] = pipeline_factory

    with client.websocket_connect("/segment/ws") as ws:
        assert ws.receive_json()["type"] == "connected"
        ws.send_bytes(pcm([0.5]))
        ws.send_json({"action": "end"})
        messages = receive_until_closed(ws)

    assert [m["type"] for m in messages] == ["error", "closed"]
    assert "model file missing" in messages[0]["message"]
