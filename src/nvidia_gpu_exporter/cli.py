"""CLI interface for nvidia_gpu_exporter."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading

from prometheus_client import generate_latest

from . import __version__
from .collector.gpu import GpuCollector
from .collector.source import NvmlSource, TelemetryError, TelemetrySource, nvml_session
from .config import LOG_LEVELS, ConfigError, ExporterConfig, load_config, load_web_config

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _setup_logging(cfg: ExporterConfig) -> None:
    logging.basicConfig(
        level=_LEVELS[cfg.logging.level.lower()],
        format=cfg.logging.format,
    )


def _resolve_config(args: argparse.Namespace) -> ExporterConfig:
    """Load file/env configuration and apply command-line overrides."""
    cfg = load_config(args.config)
    if args.listen_address is not None:
        cfg.web.listen_address = args.listen_address
    if args.telemetry_path is not None:
        cfg.web.telemetry_path = args.telemetry_path
    if args.web_config_file is not None:
        cfg.web.config_file = args.web_config_file
    if args.log_level is not None:
        cfg.logging.level = args.log_level
    if args.no_process_metrics:
        cfg.collector.process_metrics = False
    cfg.validate()
    return cfg


def _cmd_serve(args: argparse.Namespace, cfg: ExporterConfig, source: TelemetrySource) -> int:
    """Serve metrics until SIGINT/SIGTERM."""
    from .exporter.prometheus import build_registry
    from .exporter.server import MetricsServer

    tls = load_web_config(cfg.web.config_file) if cfg.web.config_file else None

    with nvml_session(source):
        driver_version = source.driver_version()
        if driver_version.ok:
            logger.info("System driver version %s", driver_version.value)
        else:
            logger.error("Unable to get system driver version: %s", driver_version.describe_error())

        collector = GpuCollector(source, namespace=cfg.collector.namespace)
        registry = build_registry(collector, include_process_metrics=cfg.collector.process_metrics)
        try:
            server = MetricsServer(registry, cfg.web, tls)
        except OSError as exc:
            logger.error("Error starting HTTP server on %s: %s", cfg.web.listen_address, exc)
            return 1

        stop = threading.Event()

        def _handle_signal(_sig: int, _frame: object) -> None:
            stop.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        server.start()
        try:
            while not stop.is_set():
                stop.wait(0.5)
        finally:
            server.shutdown()
    return 0


def _cmd_collect(args: argparse.Namespace, cfg: ExporterConfig, source: TelemetrySource) -> int:
    """Run a single collection cycle and print the result."""
    from .exporter.prometheus import build_registry

    with nvml_session(source):
        collector = GpuCollector(source, namespace=cfg.collector.namespace)
        if args.format == "json":
            print(json.dumps(collector.to_dict(collector.collect()), indent=2))
        else:
            registry = build_registry(collector, include_process_metrics=False)
            sys.stdout.write(generate_latest(registry).decode("utf-8"))
    return 0


def _cmd_version(_args: argparse.Namespace, _cfg: ExporterConfig, _source: TelemetrySource) -> int:
    print(f"nvidia_gpu_exporter {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvidia-gpu-exporter",
        description="Prometheus exporter for NVIDIA GPU telemetry via NVML",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to nvidia_gpu_exporter.yaml")
    parser.add_argument(
        "--web.listen-address", dest="listen_address", default=None,
        help="Address to listen on for web interface and telemetry (default :9445)",
    )
    parser.add_argument(
        "--web.telemetry-path", dest="telemetry_path", default=None,
        help="Path under which to expose metrics (default /metrics)",
    )
    parser.add_argument(
        "--web.config.file", dest="web_config_file", default=None,
        help="Path to a web config file enabling TLS",
    )
    parser.add_argument(
        "--log.level", dest="log_level", default=None, choices=LOG_LEVELS,
        help="Only log messages with the given severity or above",
    )
    parser.add_argument(
        "--no-process-metrics", action="store_true",
        help="Do not export process and platform metrics of the exporter itself",
    )
    sub = parser.add_subparsers(dest="command")

    # serve
    serve_p = sub.add_parser("serve", help="Serve metrics over HTTP (default)")
    serve_p.set_defaults(func=_cmd_serve)

    # collect
    collect_p = sub.add_parser("collect", help="Run one collection cycle and print it")
    collect_p.add_argument(
        "--format", choices=("text", "json"), default="text",
        help="Output format (default text exposition)",
    )
    collect_p.set_defaults(func=_cmd_collect)

    # version
    ver_p = sub.add_parser("version", help="Print version")
    ver_p.set_defaults(func=_cmd_version)

    return parser


def main(argv: list[str] | None = None, source: TelemetrySource | None = None) -> int:
    """Entry point for the nvidia-gpu-exporter CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        args.func = _cmd_serve

    try:
        cfg = _resolve_config(args)
    except ConfigError as exc:
        print(f"nvidia-gpu-exporter: configuration error: {exc}", file=sys.stderr)
        return 1
    _setup_logging(cfg)

    if source is None:
        source = NvmlSource()
    try:
        return args.func(args, cfg, source)
    except TelemetryError as exc:
        logger.error("%s. Make sure NVML is in the shared library search path.", exc)
        return 1
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
