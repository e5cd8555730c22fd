import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import dotenv
import yaml

from speech_segmenter.domain.errors import ConfigurationError
from speech_segmenter.services.pause_buffer import PauseBufferConfig
from speech_segmenter.services.vad import VadConfig

_DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    frame_level: str = "WARNING"
    json_output: bool = False
    format: str = _DEFAULT_LOG_FORMAT
    rotate_max_bytes: int = 10 * 1024 * 1024
    rotate_backup_count: int = 5
    log_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    preload_model: bool = False


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Effective application settings."""

    vad: VadConfig = field(default_factory=VadConfig)
    pause: PauseBufferConfig = field(default_factory=PauseBufferConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    config_path: Path | None = None


def load_config(path: Path | str | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    """Build the app config from `.env`, environment and an optional YAML file.

    The YAML file is taken from `path`, or from `CONFIG_PATH` when unset.
    Every section is optional; missing values fall back to defaults.
    """
    if env is None:
        repo_root = Path(__file__).resolve().parents[2]
        dotenv.load_dotenv(repo_root / ".env")
        env = os.environ

    config_path: Path | None = None
    raw: dict[str, Any] = {}
    if path is None and env.get("CONFIG_PATH"):
        path = env["CONFIG_PATH"]
    if path is not None:
        config_path = Path(path).expanduser()
        raw = _load_yaml(config_path)

    return AppConfig(
        vad=_load_vad(raw),
        pause=_load_pause(raw),
        logging=_load_logging(raw, env),
        server=_load_server(raw, env),
        config_path=config_path,
    )


def _load_vad(raw: Mapping[str, Any]) -> VadConfig:
    audio = _get_optional_mapping(raw, "audio")
    vad = _get_optional_mapping(raw, "vad")
    return VadConfig(
        threshold=float(vad.get("threshold", 0.5)),
        min_speech_duration_ms=float(vad.get("min_speech_duration_ms", 160)),
        redemption_duration_ms=float(vad.get("redemption_duration_ms", 400)),
        lookback_duration_ms=float(vad.get("lookback_duration_ms", 384)),
        sample_rate=int(audio.get("sample_rate", 16000)),
        frame_size=int(audio.get("frame_size", 512)),
        context_size=int(audio.get("context_size", 64)),
        emit_debug=bool(vad.get("emit_debug", False)),
    )


def _load_pause(raw: Mapping[str, Any]) -> PauseBufferConfig:
    pause = _get_optional_mapping(raw, "pause")
    return PauseBufferConfig(
        pause_duration_ms=float(pause.get("pause_duration_ms", 2000)),
        max_buffer_ms=float(pause.get("max_buffer_ms", 60000)),
        suppress_output=bool(pause.get("suppress_output", False)),
        emit_debug=bool(pause.get("emit_debug", False)),
    )


def _load_logging(raw: Mapping[str, Any], env: Mapping[str, str]) -> LoggingConfig:
    section = _get_optional_mapping(raw, "logging")
    log_dir_raw = section.get("log_dir")
    return LoggingConfig(
        level=str(env.get("LOG_LEVEL") or section.get("level", "INFO")).upper(),
        frame_level=str(section.get("frame_level", "WARNING")).upper(),
        json_output=bool(section.get("json_output", False)),
        format=str(section.get("format", _DEFAULT_LOG_FORMAT)),
        rotate_max_bytes=int(section.get("rotate_max_bytes", 10 * 1024 * 1024)),
        rotate_backup_count=int(section.get("rotate_backup_count", 5)),
        log_dir=Path(str(log_dir_raw)).expanduser() if log_dir_raw else None,
    )


def _load_server(raw: Mapping[str, Any], env: Mapping[str, str]) -> ServerConfig:
    section = _get_optional_mapping(raw, "server")
    return ServerConfig(
        host=str(env.get("SERVER_ADDR") or section.get("host", "127.0.0.1")),
        port=int(env.get("SERVER_PORT") or section.get("port", 8000)),
        preload_model=bool(section.get("preload_model", False)),
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping")
    return cast(dict[str, Any], data)


def _get_optional_mapping(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    v = raw.get(key, {})
    if v is None:
        return {}
    if not isinstance(v, Mapping):
        raise ConfigurationError(f"Section '{key}' must be a mapping")
    return dict(cast(Mapping[str, Any], v))
