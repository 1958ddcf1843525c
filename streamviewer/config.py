# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, ClassVar

import tomllib
import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "udp": {
        "default_port": 1234,
        "packet_buffer_size": 65536,  # Large enough for a burst of TS packets in one datagram
        "receive_buffer_size": 1 << 20,
        "timeout_s": 5.0,  # A stalled source yields end-of-input instead of blocking forever
        "interface": None,  # e.g. "eth0"; best-effort SO_BINDTODEVICE
        "stats_interval_s": 5.0,
    },
    "transcode": {
        "output_dir": str(Path(tempfile.gettempdir()) / "streamviewer" / "hls"),
        "playlist_name": "stream.m3u8",
        "segment_time": 2,
        "list_size": 6,
        "input_timeout_us": 10_000_000,
        "ready_timeout_s": 15.0,
        "ready_poll_s": 0.5,
        "cancel_grace_s": 5.0,
        "log_lines": 2000,
        "primary_audio_codec": "aac",
        "fallback": {
            "max_width": 1280,
            "max_height": 720,
            "fps": 30,
            "keyframe_interval_s": 1,
            "profile": "baseline",
            "level": "3.1",
            "preset": "ultrafast",
            "audio_codec": "aac",
            "audio_bitrate": "128k",
            "audio_rate": 44100,
        },
    },
    "oracle": {
        # Multicast ranges that usually carry high-bitrate OBS/encoder output
        "force_ranges": ["239.0.0.0/8"],
        "codec": "h264",
        "hd_width": 1920,
        "hd_height": 1080,
        "max_decode_size": None,  # e.g. [1280, 720] on hosts that cannot decode full HD
        "cache": False,
    },
    "hw": {"prefer": "auto"},
    "log": {
        "level": "info",
        "dir": None,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8790,
    },
}


def load_config_file(path: str) -> dict[str, Any]:
    """Load configuration from a file (YAML, TOML, or JSON)."""
    logger = logging.getLogger("config")
    path_obj = Path(path)
    ext = path_obj.suffix.lower()

    if not path_obj.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    try:
        if ext in (".yaml", ".yml"):
            with path_obj.open(encoding="utf-8") as f:
                return yaml.safe_load(f) or {}

        elif ext == ".toml":
            with path_obj.open("rb") as f:
                return tomllib.load(f) or {}

        elif ext == ".json":
            with path_obj.open(encoding="utf-8") as f:
                return json.load(f) or {}

        else:
            logger.warning(f"Unknown config extension: {ext}")
            return {}

    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load {path}: {e}")
        return {}


def deep_update(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Deep merge configuration dictionaries."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(path: str | None = None) -> dict[str, Any]:
    """Load configuration with defaults and optional file override."""
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))  # Deep copy

    if path:
        deep_update(cfg, load_config_file(path))

    return cfg


class Config:
    """Configuration singleton."""

    _instance: ClassVar["Config | None"] = None
    _config: ClassVar[dict[str, Any]] = load_config()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def load(cls, path: str | None = None) -> None:
        """Load configuration from file."""
        cls._config = load_config(path)

    @classmethod
    def get(cls, key: str | None = None, default: Any = ...) -> Any:
        """Get configuration value by key path (e.g., 'udp.timeout_s')."""
        if key is None:
            return cls._config

        value: Any = cls._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            elif default is not ...:
                return default
            else:
                raise KeyError(f"Configuration key not found: {key}")

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value by key path."""
        keys = key.split(".")
        target = self._config

        for k in keys[:-1]:
            if k not in target:
                target[k] = {}
            target = target[k]

        target[keys[-1]] = value

    def update(self, updates: dict[str, Any]) -> None:
        """Update configuration with dictionary."""
        deep_update(self._config, updates)

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)
