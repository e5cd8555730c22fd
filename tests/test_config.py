from pathlib import Path

import pytest

from speech_segmenter.core.config import load_config
from speech_segmenter.domain.errors import ConfigurationError


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file() -> None:
    cfg = load_config(env={})

    assert cfg.config_path is None
    assert cfg.vad.threshold == 0.5
    assert cfg.vad.redemption_frames == 13
    assert cfg.pause.pause_duration_ms == 2000
    assert cfg.pause.max_buffer_ms == 60000
    assert cfg.logging.level == "INFO"
    assert cfg.logging.frame_level == "WARNING"
    assert cfg.logging.log_dir is None
    assert (cfg.server.host, cfg.server.port) == ("127.0.0.1", 8000)


def test_yaml_sections_override_defaults(tmp_path: Path) -> None:
    path = write(
        tmp_path,
        """
audio:
  sample_rate: 8000
  frame_size: 256
  context_size: 32
vad:
  threshold: 0.7
  lookback_duration_ms: 0
pause:
  pause_duration_ms: 500
  suppress_output: true
logging:
  level: debug
  frame_level: debug
  json_output: true
  log_dir: /tmp/segmenter-logs
server:
  port: 9001
  preload_model: true
""",
    )

    cfg = load_config(path, env={})

    assert cfg.config_path == path
    assert cfg.vad.sample_rate == 8000
    assert cfg.vad.frame_size == 256
    assert cfg.vad.context_size == 32
    assert cfg.vad.threshold == pytest.approx(0.7)
    assert cfg.vad.lookback_frames == 0
    assert cfg.pause.pause_duration_ms == 500
    assert cfg.pause.suppress_output is True
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.frame_level == "DEBUG"
    assert cfg.logging.json_output is True
    assert cfg.logging.log_dir == Path("/tmp/segmenter-logs")
    assert cfg.server.port == 9001
    assert cfg.server.preload_model is True


def test_environment_overrides_server_and_log_level(tmp_path: Path) -> None:
    path = write(tmp_path, "server:\n  host: 0.0.0.0\n  port: 9001\n")
    env = {"SERVER_ADDR": "10.0.0.5", "SERVER_PORT": "7000", "LOG_LEVEL": "warning"}

    cfg = load_config(path, env=env)

    assert cfg.server.host == "10.0.0.5"
    assert cfg.server.port == 7000
    assert cfg.logging.level == "WARNING"


def test_config_path_from_environment(tmp_path: Path) -> None:
    path = write(tmp_path, "vad:\n  threshold: 0.3\n")
    cfg = load_config(env={"CONFIG_PATH": str(path)})
    assert cfg.vad.threshold == pytest.approx(0.3)
    assert cfg.config_path == path


def test_out_of_range_values_are_clamped(tmp_path: Path) -> None:
    path = write(tmp_path, "vad:\n  threshold: 3\npause:\n  pause_duration_ms: -5\n")
    cfg = load_config(path, env={})
    assert cfg.vad.threshold == pytest.approx(0.99)
    assert cfg.pause.pause_duration_ms == 1.0


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    cfg = load_config(write(tmp_path, ""), env={})
    assert cfg.vad.threshold == 0.5


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml", env={})


@pytest.mark.parametrize("text", ["- a\n- b\n", "vad: 0.5\n"])
def test_malformed_structure_raises(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, text), env={})
