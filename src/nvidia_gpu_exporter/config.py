"""Configuration loading and validation for nvidia_gpu_exporter."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_FILE = "nvidia_gpu_exporter.yaml"
ENV_PREFIX = "NVIDIA_GPU_EXPORTER_"

LOG_LEVELS = ("debug", "info", "warn", "error")
_METRIC_NAMESPACE = re.compile(r"(?:[a-zA-Z_][a-zA-Z0-9_]*)?")


class ConfigError(Exception):
    """Raised for unreadable or invalid configuration."""


@dataclass
class WebConfig:
    """HTTP listener settings."""

    listen_address: str = ":9445"
    telemetry_path: str = "/metrics"
    config_file: str = ""


@dataclass
class TLSConfig:
    """TLS settings read from the web config file."""

    cert_file: str
    key_file: str


@dataclass
class CollectorConfig:
    """GPU collector settings."""

    namespace: str = "nvidia_gpu"
    process_metrics: bool = True


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class ExporterConfig:
    """Top-level nvidia_gpu_exporter configuration."""

    web: WebConfig = field(default_factory=WebConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise :class:`ConfigError` on values the exporter cannot run with."""
        if not self.web.telemetry_path.startswith("/"):
            raise ConfigError(
                f"telemetry path must start with '/': {self.web.telemetry_path!r}"
            )
        if self.web.telemetry_path == "/":
            raise ConfigError("telemetry path must not be the landing page '/'")
        if not _METRIC_NAMESPACE.fullmatch(self.collector.namespace):
            raise ConfigError(
                f"invalid metric namespace {self.collector.namespace!r}, "
                "expected letters, digits and underscores not starting with a digit"
            )
        if self.logging.level.lower() not in LOG_LEVELS:
            raise ConfigError(
                f"unknown log level {self.logging.level!r}, expected one of {', '.join(LOG_LEVELS)}"
            )


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"invalid boolean value: {value!r}")


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides using the NVIDIA_GPU_EXPORTER_ prefix."""
    env_map = {
        f"{ENV_PREFIX}LISTEN_ADDRESS": ("web", "listen_address"),
        f"{ENV_PREFIX}TELEMETRY_PATH": ("web", "telemetry_path"),
        f"{ENV_PREFIX}WEB_CONFIG_FILE": ("web", "config_file"),
        f"{ENV_PREFIX}NAMESPACE": ("collector", "namespace"),
        f"{ENV_PREFIX}PROCESS_METRICS": ("collector", "process_metrics"),
        f"{ENV_PREFIX}LOG_LEVEL": ("logging", "level"),
    }
    for env_key, path in env_map.items():
        value = os.environ.get(env_key)
        if value is not None:
            obj = data
            for part in path[:-1]:
                obj = obj.setdefault(part, {})
            final_key = path[-1]
            if final_key == "process_metrics":
                obj[final_key] = _parse_bool(value)
            else:
                obj[final_key] = value
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"section {name!r} must be a mapping")
    return section


def _dict_to_config(data: dict[str, Any]) -> ExporterConfig:
    """Convert a raw dictionary to an ExporterConfig dataclass."""
    web_data = _section(data, "web")
    collector_data = _section(data, "collector")
    logging_data = _section(data, "logging")

    return ExporterConfig(
        web=WebConfig(**{
            k: v for k, v in web_data.items()
            if k in WebConfig.__dataclass_fields__
        }),
        collector=CollectorConfig(**{
            k: v for k, v in collector_data.items()
            if k in CollectorConfig.__dataclass_fields__
        }),
        logging=LoggingConfig(**{
            k: v for k, v in logging_data.items()
            if k in LoggingConfig.__dataclass_fields__
        }),
    )


def load_config(path: str | Path | None = None) -> ExporterConfig:
    """Load configuration from a YAML file with environment overrides.

    Looks for ``nvidia_gpu_exporter.yaml`` in the current directory if *path* is None.
    """
    data: dict[str, Any] = {}
    if path is None:
        path = Path(DEFAULT_CONFIG_FILE)
    else:
        path = Path(path)

    if path.exists():
        try:
            with open(path, encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"failed to read {path}: {exc}") from exc
        if isinstance(loaded, dict):
            data = loaded

    data = _apply_env_overrides(data)
    return _dict_to_config(data)


def load_web_config(path: str | Path) -> TLSConfig | None:
    """Read the TLS section of a web config file.

    Returns None when the file has no ``tls_server_config`` section.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read web config {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"web config {path} must be a mapping")

    tls = loaded.get("tls_server_config")
    if not tls:
        return None
    if not isinstance(tls, dict):
        raise ConfigError(f"web config {path}: tls_server_config must be a mapping")
    cert_file = tls.get("cert_file")
    key_file = tls.get("key_file")
    if not cert_file or not key_file:
        raise ConfigError(f"web config {path}: tls_server_config needs cert_file and key_file")

    # relative paths resolve against the web config file
    base = path.parent
    return TLSConfig(
        cert_file=str(base / cert_file),
        key_file=str(base / key_file),
    )
